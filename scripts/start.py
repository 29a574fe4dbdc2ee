#!/usr/bin/env python3
"""
Production entry point: run the release phase, then exec gunicorn.

Usage:
    PORT=8080 python scripts/start.py

os.execvp replaces this process so gunicorn receives signals directly.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _port() -> str:
    port = (os.environ.get("PORT") or "").strip() or "8080"
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        print(f"ERROR: Invalid PORT value '{port}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)
    return port


def main() -> None:
    port = _port()
    workers = (os.environ.get("WEB_CONCURRENCY") or "2").strip()

    print("=== Running release phase ===", flush=True)
    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== Starting gunicorn on 0.0.0.0:{port} ({workers} workers) ===", flush=True)
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", workers,
            "--timeout", "60",
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
