"""
Run the compose worker HTTP API under uvicorn.

Example:
    astradio-serve --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
from typing import Optional

import uvicorn

APP_PATH = "astradio_worker.app.main:app"


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the Astradio compose worker.")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address.")
    parser.add_argument("--port", type=int, default=8000, help="Bind port.")
    parser.add_argument("--reload", action="store_true", help="Reload on source changes.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    uvicorn.run(APP_PATH, host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
