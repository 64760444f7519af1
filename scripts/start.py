#!/usr/bin/env python3
"""
Container entrypoint: run the release phase, then exec gunicorn on $PORT.

Usage:
    python scripts/start.py
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

log = logging.getLogger("golfpoi.start")


def _port() -> int:
    raw = (os.environ.get("PORT") or "8080").strip()
    try:
        port = int(raw)
    except ValueError:
        port = 0
    if not 1 <= port <= 65535:
        log.error("Invalid PORT %r; expected an integer 1-65535", raw)
        sys.exit(1)
    return port


def gunicorn_argv(port: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", os.environ.get("WEB_CONCURRENCY", "2"),
        "--timeout", "60",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = _port()

    from scripts.release import run_release

    try:
        run_release()
    except Exception:
        log.exception("Release phase failed; not starting the web server")
        sys.exit(1)

    argv = gunicorn_argv(port)
    log.info("Starting %s", " ".join(argv))
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
