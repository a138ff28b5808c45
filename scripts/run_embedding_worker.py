#!/usr/bin/env python3
# FILE: scripts/run_embedding_worker.py
"""
Run a standalone embedding worker.

Usage:
    python scripts/run_embedding_worker.py            # Poll until Ctrl+C
    python scripts/run_embedding_worker.py --once     # Process one batch and exit

Any number of these may run against the same database.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from kbcore.config import KnowledgeBaseSettings
from kbcore.db import init_db, make_engine, make_session_factory
from kbcore.service import build_knowledge_base


async def run_forever(worker):
    await worker.start()
    try:
        await worker.wait()
    finally:
        await worker.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Process pending knowledge-base embedding jobs"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single batch and exit"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Jobs per polling cycle (default: KB_WORKER_BATCH_SIZE)"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between cycles (default: KB_WORKER_POLL_INTERVAL)"
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    try:
        settings = KnowledgeBaseSettings.from_env().with_overrides(
            worker_batch_size=args.batch_size,
            worker_poll_interval=args.poll_interval,
        )
    except ValueError as e:
        parser.error(str(e))

    engine = make_engine(settings.database_url)
    init_db(bind=engine)
    kb = build_knowledge_base(settings, session_factory=make_session_factory(engine))
    worker = kb.build_worker()

    print("Embedding Worker")
    print("=" * 50)
    print(f"Database: {settings.database_url}")
    print(f"Batch size: {worker.batch_size}")
    print(f"Poll interval: {worker.poll_interval}s")
    print()

    if args.once:
        result = worker.run_once()
        print(f"  Claimed: {result['claimed']}")
        print(f"  Completed: {result['completed']}")
        print(f"  Failed: {result['failed']}")
        print(f"  Retried: {result['retried']}")
        return

    try:
        asyncio.run(run_forever(worker))
    except KeyboardInterrupt:
        print("Worker stopped")


if __name__ == "__main__":
    main()
