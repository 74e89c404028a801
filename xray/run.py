"""Programmatic uvicorn entry point for the Analytics X-Ray panel service.

Reads host and port from the loaded config (127.0.0.1:7717 by default).

Usage:
    python -m xray.run          # reads .xray/config.yaml
    xray-panel                  # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from xray.config import load_config

# ─── Uvicorn defaults ─────────────────────────────────────────────────────────
# The panel has one local client; keep the connection budget small.

UVICORN_LIMIT_CONCURRENCY: int = 20

UVICORN_BACKLOG: int = 16

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the panel service.

    Raises:
        SystemExit: Propagated from load_config() on config parse errors.
    """
    config = load_config()

    uvicorn.run(
        "xray.main:app",
        host=config.panel.host,
        port=config.panel.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
