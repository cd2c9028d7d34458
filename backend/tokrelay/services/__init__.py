"""
Services module for the TokRelay backend.

Business logic behind the fetch and download endpoints:

- metadata_extractor: page-scraping and companion-API extraction back-ends
- resolution_service: validation, caching, extraction and download preparation
- streaming_relay: chunked relay of media bytes with disconnect handling

Services are constructed in the application lifespan and reached by the
routers through FastAPI dependencies.
"""
