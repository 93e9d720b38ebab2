"""Entry point for running XXXo via ``python -m xxxo``."""

from __future__ import annotations

import logging

import uvicorn

from .config import settings


def main() -> None:
    """Start the FastAPI-powered XXXo server."""

    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run(
        "xxxo.server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
