"""Module executed when running ``python -m cinehub [serve|precompute]``."""

from __future__ import annotations

import sys

import uvicorn

from app.config import settings
from app.precompute import main as run_precompute


def serve() -> None:
    """Start the uvicorn server using the configured settings."""

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    command = args[0] if args else "serve"
    if command == "precompute":
        return run_precompute()
    if command == "serve":
        serve()
        return 0
    print(f"Unknown command {command!r}; expected 'serve' or 'precompute'", file=sys.stderr)
    return 2


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    sys.exit(main())
