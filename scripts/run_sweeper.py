#!/usr/bin/env python3
"""
Vectorization Sweep

Cron entry point: vectorizes messages that are not yet in the vector index.
Exits 0 on success and 1 on failure so the scheduler can alert.

Usage:
    python scripts/run_sweeper.py                 # one page
    python scripts/run_sweeper.py --drain         # until nothing is pending
    python scripts/run_sweeper.py --loop          # every SWEEP_INTERVAL_SECONDS
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)

from message_rag.embeddings import EmbeddingService
from message_rag.ingestion import BatchIngestionEngine
from message_rag.message_store import MongoMessageStore
from message_rag.sweeper import PendingMessageSweeper
from message_rag.vector_store import VectorIndexClient


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Vectorize pending chat messages")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--drain", action="store_true", help="Sweep until nothing is pending")
    mode.add_argument("--loop", action="store_true", help="Sweep on a fixed interval")
    parser.add_argument(
        "--max-runs",
        type=int,
        default=None,
        help="Stop --loop after this many sweeps",
    )
    return parser.parse_args(argv)


async def run(args) -> int:
    embedding_service = EmbeddingService()
    vector_index = VectorIndexClient(dimension=embedding_service.dimension)
    store = MongoMessageStore()

    try:
        await embedding_service.initialize()
        await vector_index.initialize()

        engine = BatchIngestionEngine(embedding_service, vector_index)
        sweeper = PendingMessageSweeper(store, engine)

        if args.loop:
            return await sweeper.run_periodically(max_runs=args.max_runs)
        if args.drain:
            return await sweeper.run_until_drained()
        return await sweeper.run()
    finally:
        await embedding_service.close()
        await vector_index.close()
        await store.close()


def main(argv=None) -> int:
    """Run the sweep and return the process exit code."""
    args = parse_args(argv)
    logger.info("Starting vectorization sweep")

    try:
        processed = asyncio.run(run(args))
    except Exception as e:
        logger.error(f"Vectorization sweep failed: {e}")
        return 1

    logger.info(f"Vectorization sweep finished: {processed} messages vectorized")
    return 0


if __name__ == "__main__":
    sys.exit(main())
