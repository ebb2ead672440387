#!/usr/bin/env python3
"""Embedding backfill worker.

Embeds title (+ AI summary when present) for recent Links that have none.
Only the last EMBEDDING_WINDOW_DAYS are considered, so cold Links are never
re-embedded. Without VOYAGE_API_KEY / OPENAI_API_KEY this is a no-op.
"""

from __future__ import annotations

import argparse
import logging
import time
from typing import Optional

import schedule
from dotenv import load_dotenv

from linkpulse.config import PipelineConfig
from linkpulse.pipeline import build_pipeline
from linkpulse.storage.postgres_repo import PostgresLinkStore
from linkpulse.storage.postgres_schema import ensure_postgres_schema

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def run_once(config: PipelineConfig, limit: Optional[int] = None) -> None:
    pipeline = build_pipeline(config, PostgresLinkStore(config.pg_dsn))
    s = pipeline.embeddings.generate_missing(limit)
    print(f"[embeddings] processed={s.processed} success={s.success} failed={s.failed} skipped={s.skipped}")


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate missing Link embeddings.")
    parser.add_argument("--limit", type=int, default=None, help="max links per cycle (default EMBEDDING_BATCH_LIMIT)")
    parser.add_argument("--env-file", default=".env")
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)
    config = PipelineConfig.from_env()
    ensure_postgres_schema(config.pg_dsn)
    if config.worker_mode in ("scheduled", "daemon"):
        schedule.every(10).minutes.do(run_once, config, args.limit)
        run_once(config, args.limit)
        while True:
            schedule.run_pending()
            time.sleep(5)
    run_once(config, args.limit)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
