"""Ingestion worker process: runs the parse, embed and upsert pools.

Run with ``ragstream-worker`` (or ``python -m ragstream.ingestion.worker``).
The HTTP process only enqueues; this process does the work.
"""

from __future__ import annotations

import asyncio
import logging

from ragstream.config import settings
from ragstream.container import build_components

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    logging.basicConfig(level=(settings.log_level or "INFO"))

    components = build_components(settings)
    await components.queue.start()
    logger.info("Ingestion worker started (queue backend: %s)", settings.queue_backend)
    try:
        await asyncio.Event().wait()
    finally:
        await components.aclose()
        logger.info("Ingestion worker stopped")


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
