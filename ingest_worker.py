#!/usr/bin/env python3
"""RSS ingestion worker.

Runs one polling cycle (or scheduled) over every active RSS Source:
- downloads each feed and mines entries for outbound links
- canonicalizes + blacklists + upserts Links, records Mentions

Enrichment, embeddings and clustering run as their own workers.
"""

from __future__ import annotations

import logging
import time

import schedule
from dotenv import load_dotenv

from linkpulse.config import PipelineConfig
from linkpulse.pipeline import build_pipeline
from linkpulse.storage.postgres_repo import PostgresLinkStore
from linkpulse.storage.postgres_schema import ensure_postgres_schema

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def run_once(config: PipelineConfig) -> None:
    ensure_postgres_schema(config.pg_dsn)
    pipeline = build_pipeline(config, PostgresLinkStore(config.pg_dsn))
    summary = pipeline.fetch_rss_sources()
    print(
        f"[ingest] feeds={summary['total_feeds']} ok={summary['successful_feeds']} "
        f"failed={summary['failed_feeds']} links_found={summary['total_links_found']} "
        f"links_added={summary['total_links_added']}"
    )
    for r in summary["results"]:
        if not r["success"]:
            logger.warning(f"feed {r['source_id']} failed: {r.get('error')}")


def run_scheduled(config: PipelineConfig) -> None:
    # Every 30 minutes: lightweight polling
    schedule.every(30).minutes.do(run_once, config)
    run_once(config)
    while True:
        schedule.run_pending()
        time.sleep(5)


def main() -> int:
    load_dotenv()
    config = PipelineConfig.from_env()
    if config.worker_mode in ("scheduled", "daemon"):
        run_scheduled(config)
    else:
        run_once(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
