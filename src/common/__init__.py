"""Shared helpers used by the embedding, labeling and storage layers."""

from .retry import RetryPolicy, is_transient_error

__all__ = ['RetryPolicy', 'is_transient_error']
