from __future__ import annotations

import asyncio
import sys
import uvicorn

# Install uvloop for better async performance (Linux/macOS only)
if sys.platform != "win32":
    try:
        import uvloop

        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    except ImportError:
        pass

from .envs.tracker_env import get_settings


def main() -> None:
    settings = get_settings()

    print(f"Starting {settings.app_name} Tracker v{settings.app_version}")
    print(f"Database: {settings.database_url}")
    print(f"Settlement node: {settings.node_base_url}")
    print(
        f"Tracker API will be available at: http://{settings.api_host}:{settings.api_port}"
    )
    print(f"Docs: http://{settings.api_host}:{settings.api_port}/docs")

    # The ledger service owns the in-memory tree and its write lock, so a
    # single worker process serves the API.
    uvicorn.run(
        "basis.api.tracker_api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
