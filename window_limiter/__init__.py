"""Fixed-window rate limiting middleware backed by a shared counter store."""

__version__ = "0.1.0"
