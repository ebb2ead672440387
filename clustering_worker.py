#!/usr/bin/env python3
"""Story clustering worker.

Groups the last CLUSTER_WINDOW_DAYS of embedded Links into Stories
(single-linkage, cosine >= SIMILARITY_THRESHOLD). Safe to re-run: Links
already in a Story are never reassigned.
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


def run_once(config: PipelineConfig) -> None:
    pipeline = build_pipeline(config, PostgresLinkStore(config.pg_dsn))
    s = pipeline.clusterer.run()
    print(
        f"[clustering] processed={s.processed} clusters_found={s.clusters_found} "
        f"clusters_created={s.clusters_created} links_grouped={s.links_grouped} skipped_vectors={s.skipped_vectors}"
    )


def main() -> int:
    load_dotenv()
    config = PipelineConfig.from_env()
    ensure_postgres_schema(config.pg_dsn)
    if config.worker_mode in ("scheduled", "daemon"):
        schedule.every(1).hours.do(run_once, config)
        run_once(config)
        while True:
            schedule.run_pending()
            time.sleep(5)
    run_once(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
