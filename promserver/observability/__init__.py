"""Request instrumentation: metric registry, ASGI middleware and exposition.

Logging goes through structlog on top of stdlib logging, JSON by default.
"""
