"""Console entry point: ``keyledger`` (or ``python -m app.run``).

Loads the config once for the bind address, then hands the import string
``app.main:app`` to uvicorn. The app loads the config again inside its
lifespan, so a reload picks up file edits.

Connection limits are fixed here rather than configurable: keyledger is a
small local service and the limits only guard against a misbehaving client
holding sockets open.
"""

from __future__ import annotations

from typing import Any

import uvicorn

from app.config import Config, load_config

# Concurrent connections before uvicorn starts answering 503.
LIMIT_CONCURRENCY: int = 100
# Pending-accept queue handed to listen().
BACKLOG: int = 50
# Seconds an idle keep-alive connection is held.
TIMEOUT_KEEP_ALIVE: int = 5


def uvicorn_options(config: Config) -> dict[str, Any]:
    """Keyword arguments for uvicorn.run() derived from config."""
    return {
        "host": config.server.host,
        "port": config.server.port,
        "limit_concurrency": LIMIT_CONCURRENCY,
        "backlog": BACKLOG,
        "timeout_keep_alive": TIMEOUT_KEEP_ALIVE,
    }


def main() -> None:
    # SystemExit from load_config() on a bad file ends the process here.
    config = load_config()
    uvicorn.run("app.main:app", **uvicorn_options(config))


if __name__ == "__main__":
    main()
