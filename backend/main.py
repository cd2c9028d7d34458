#!/usr/bin/env python3
"""
TokRelay Server Launcher

Runs the TokRelay FastAPI application under uvicorn with host, port, reload
and log level taken from the environment settings.

Usage:
    # Run with uvicorn directly
    uvicorn main:app --host 0.0.0.0 --port 3000

    # Run as Python script
    python main.py
"""

import uvicorn

from tokrelay.config import get_settings
from tokrelay.main import app


__all__ = ["app"]


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
        access_log=settings.debug,
    )
