from __future__ import annotations

import asyncio
import logging
import sys

# Install uvloop for better async performance (Linux/macOS only)
if sys.platform != "win32":
    try:
        import uvloop

        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    except ImportError:
        pass

from .application.reconciler.use_cases.reconciler import TrackerReconciler
from .envs.tracker_env import Settings, get_settings
from .infrastructure.database import get_database_client
from .infrastructure.node.node_client import NodeClient
from .infrastructure.repositories import (
    ReconcilerRepositoryImpl,
    TrackerStateRepositoryImpl,
)
from .infrastructure.scripts import register_scripts
from .infrastructure.storage import RedisKeyValueStore

logger = logging.getLogger("basis.reconciler")


async def run(settings: Settings) -> None:
    db_client = get_database_client(settings)
    store = RedisKeyValueStore(db_client)
    await register_scripts(store)

    async with NodeClient(
        settings.node_base_url,
        timeout=settings.node_timeout_seconds,
        api_key=settings.node_api_key,
    ) as node:
        reconciler = TrackerReconciler(
            ReconcilerRepositoryImpl(store),
            TrackerStateRepositoryImpl(store),
            node,
            reserve_script_hash=settings.reserve_script_hash_hex,
            tracker_id_hex=settings.tracker_id_hex,
            my_public_key_hex=settings.owner_public_key_hex,
            start_height=settings.start_height,
        )
        for token_id in settings.note_token_ids:
            await reconciler.register_note_token(token_id)

        try:
            while True:
                applied = await reconciler.process_pending_blocks()
                if applied:
                    logger.info("Applied %d blocks", applied)
                await asyncio.sleep(settings.poll_interval_seconds)
        finally:
            await db_client.close()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.api_debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"Starting {settings.app_name} Reconciler v{settings.app_version}")
    print(f"Database: {settings.database_url}")
    print(f"Settlement node: {settings.node_base_url}")
    print(f"Polling every {settings.poll_interval_seconds}s from height {settings.start_height}")

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        print("Reconciler stopped")


if __name__ == "__main__":
    main()
