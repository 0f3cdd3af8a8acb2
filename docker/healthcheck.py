#!/usr/bin/env python3
"""Docker health check script for musicdash.

Pre-flight (default):
  Verifies musicdash and its configuration are importable/functional.

Liveness (``--http``):
  Hits the local /health endpoint to verify the server is responding.

Exit 0 = healthy, Exit 1 = unhealthy.
"""

import os
import sys


def check_health(argv: list[str]) -> bool:
    if "--http" in argv:
        return _check_http()
    return _check_imports()


def _check_http() -> bool:
    """Verify the HTTP server is responding."""
    import httpx

    port = os.environ.get("MUSICDASH_PORT", "5001")
    try:
        resp = httpx.get(f"http://127.0.0.1:{port}/health", timeout=3)
        return resp.status_code == 200
    except httpx.HTTPError as exc:
        print(f"HTTP health check failed: {exc}", file=sys.stderr)
        return False


def _check_imports() -> bool:
    """Verify the musicdash package is importable and its config valid."""
    try:
        from musicdash import __version__

        assert __version__, "Version string is empty"

        from musicdash.config import MusicDashConfig

        config = MusicDashConfig.from_env()
        assert config.queue_concurrency > 0, "queue_concurrency must be positive"

        from musicdash.server import create_app

        app = create_app(config)
        assert app.state.dashboard is not None, "Dashboard was not wired"

        return True
    except Exception:
        import traceback

        traceback.print_exc(file=sys.stderr)
        return False


if __name__ == "__main__":
    sys.exit(0 if check_health(sys.argv[1:]) else 1)
