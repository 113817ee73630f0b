"""
Entry point for running clustering as a module.

Usage:
    python -m clustering rebuild --kind questions [--dry-run] [--offline]
    python -m clustering assign --kind cancellation_reasons [--limit 20]
    python -m clustering faqs --kind questions [--limit 10]
"""

from .cli import main

if __name__ == '__main__':
    main()
