"""Run the relay with uvicorn: ``python -m app``."""
from __future__ import annotations

import argparse

import uvicorn

from .config import get_settings


def main(argv: list[str] | None = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="WhatsApp session relay")
    parser.add_argument("--host", default=settings.relay_host)
    parser.add_argument("--port", type=int, default=settings.relay_port)
    args = parser.parse_args(argv)

    # Logging is configured by app.main; keep uvicorn from replacing it.
    uvicorn.run(
        "app.main:build_default_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
