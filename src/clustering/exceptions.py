"""Exceptions raised by the clustering pipeline."""


class ClusteringError(Exception):
    """Base class for clustering pipeline errors."""


class WriterLockBusy(ClusteringError):
    """Another rebuild or incremental run holds the cluster store."""

    def __init__(self, kind: str, owner: str = "unknown", mode: str = "unknown", since=None):
        self.kind = kind
        self.owner = owner
        self.mode = mode
        self.since = since
        super().__init__(
            f"Cluster store for '{kind}' is locked by {owner} ({mode})"
            + (f" since {since}" if since else "")
        )


class WriterLockLost(ClusteringError):
    """Our lease expired and another writer took the cluster store over."""

    def __init__(self, kind: str, owner: str = "unknown"):
        self.kind = kind
        self.owner = owner
        super().__init__(f"Lost the writer lock for '{kind}' to {owner}")


class RebuildCancelled(ClusteringError):
    """A full rebuild was cancelled between stages; nothing was written."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Rebuild cancelled before stage: {stage}")


class StoreWriteError(ClusteringError):
    """A store write still failed after retries."""
