"""
TokRelay API Package.

Package Structure:
    - dependencies.py: FastAPI dependencies returning the lifespan-built services
    - v1/: Version 1 API endpoints (current stable version)
        - fetch.py: Video metadata endpoint
        - download.py: Media download (streaming relay) endpoint

The v1 routers are mounted under /api/v1 and, for older clients, under /api.
"""
