#!/usr/bin/env python3
"""
Command line entry point: python -m vuln_mirror

Runs one NVD mirror run against PostgreSQL (or an in-memory store with
--dry-run) and exits 0 on success, 1 on failure.
"""

import argparse
import asyncio
import logging
import sys

from .config.database_config import get_database_config, get_database_url
from .config.settings import Settings
from .events import EventService, IndexEvent
from .logging_config import setup_logging
from .mirror_task import NistMirrorTask
from .persistence.memory import MemoryStore
from .persistence.postgres import PostgresStore
from .sync.checkpoint import CheckpointStore

logger = logging.getLogger("vuln_mirror")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mirror the NVD CVE API 2.0 into the vulnerability database")
    parser.add_argument("--environment", "-e", type=str,
                        help="Database environment (development, testing, container, production)")
    parser.add_argument("--init-schema", action="store_true",
                        help="Create missing tables before mirroring")
    parser.add_argument("--reset-checkpoint", action="store_true",
                        help="Forget the last-modified checkpoint and mirror the whole feed")
    parser.add_argument("--dry-run", action="store_true",
                        help="Mirror into an in-memory store instead of PostgreSQL")
    parser.add_argument("--max-queue-size", type=int, default=None,
                        help="Converted CVEs that may wait for the writer; 0 = unbounded")
    parser.add_argument("--log-level", type=str, default=None,
                        help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


def log_index_event(event: IndexEvent):
    target = event.vulnerability.vuln_id if event.vulnerability else event.entity
    logger.debug(f"🔔 Index {event.action.value}: {target}")


async def run_mirror(args: argparse.Namespace, settings: Settings) -> int:
    try:
        if args.dry_run:
            logger.info("🧪 Dry run: mirroring into an in-memory store")
            store = MemoryStore()
        else:
            db_config = get_database_config(args.environment, settings)
            logger.info(f"🔧 Using database {get_database_url(db_config, mask_password=True)}")
            store = await PostgresStore.create(db_config)
    except Exception as e:
        logger.error(f"❌ Could not set up the store: {e}")
        return 1

    try:
        if args.init_schema and isinstance(store, PostgresStore):
            await store.initialize_schema()
        if args.reset_checkpoint:
            await CheckpointStore(store).reset()

        event_service = EventService()
        event_service.subscribe(IndexEvent, log_index_event)

        task = NistMirrorTask(store, settings, event_service, max_queue_size=args.max_queue_size)
        result = await task.run()
        return 0 if result['success'] else 1
    except Exception as e:
        logger.error(f"❌ Mirror failed: {e}", exc_info=True)
        return 1
    finally:
        await store.close()


def main(argv=None):
    args = parse_args(argv)
    settings = Settings()
    setup_logging(args.log_level or settings.LOG_LEVEL, settings.LOG_FILE)

    exit_code = asyncio.run(run_mirror(args, settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
