"""Counter store adapters.

This package provides a small abstraction layer so the limiter can run against
a shared Redis instance in production and an in-memory map for tests or a
single process, without changing the decision engine or the HTTP layer.
"""
