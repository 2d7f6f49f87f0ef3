"""Module executed when running ``python -m aiocatalogs``."""

from __future__ import annotations

import uvicorn

from app.config import settings


def main() -> None:
    """Serve the aggregator with uvicorn using the configured host and port."""

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
