"""Default-safe WSGI building blocks: middleware chains, access sets, report page, mounting and service lifecycle."""

__version__ = "0.1.0"