#!/usr/bin/env python3
# FILE: scripts/backfill_embeddings.py
"""
Queue embedding jobs for published articles that have no chunks yet.

Usage:
    python scripts/backfill_embeddings.py
    python scripts/backfill_embeddings.py --organization-id org1
"""

import argparse
import sys
from pathlib import Path

# Add project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from kbcore.config import KnowledgeBaseSettings
from kbcore.db import init_db, make_engine, make_session_factory
from kbcore.errors import KnowledgeBaseError
from kbcore.service import build_knowledge_base


def main():
    parser = argparse.ArgumentParser(
        description="Enqueue embedding jobs for unindexed published articles"
    )
    parser.add_argument(
        "--organization-id",
        default=None,
        help="Only backfill this organization"
    )
    args = parser.parse_args()

    settings = KnowledgeBaseSettings.from_env()
    engine = make_engine(settings.database_url)
    init_db(bind=engine)
    kb = build_knowledge_base(settings, session_factory=make_session_factory(engine))

    print("Embedding Backfill")
    print("=" * 50)
    print(f"Organization: {args.organization_id or 'all'}")
    print()

    try:
        jobs = kb.backfill(args.organization_id)
    except KnowledgeBaseError as e:
        print(f"Backfill failed: {e}")
        sys.exit(1)

    print(f"Enqueued {len(jobs)} jobs")
    for job in jobs:
        print(f"  - {job.article_id}: {job.job_id}")
    print()
    print(f"Job counts: {kb.job_stats()}")


if __name__ == "__main__":
    main()
