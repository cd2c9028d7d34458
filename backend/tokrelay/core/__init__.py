"""
Core infrastructure for the TokRelay backend.

This package contains the components the services and routers are built on:
- http_client: outbound GET / streaming client with randomized browser headers
- result_cache: in-memory TTL cache for extracted metadata
- auth: optional API-key dependency
- rate_limit: slowapi limiter and 429 handler
- middleware: security headers middleware

The fetch client and the result cache are constructed once in the application
lifespan and shared through ``app.state``.
"""
