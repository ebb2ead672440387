#!/usr/bin/env python3
"""Link enrichment worker.

Each cycle resets stale garbage titles, then claims a small batch of pending
Links and runs them through the metadata provider chain (direct fetch, then
the JS-rendering reader). Several copies may run at once; the processing
status is the lease.
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
    s = pipeline.enrichment.run_batch()
    print(
        f"[enrich] processed={s.processed} success={s.success} fallback={s.fallback} "
        f"blocked={s.blocked} failed={s.failed} skipped={s.skipped} reset_garbage={s.reset_garbage} "
        f"remaining_pending={s.remaining_pending} duration_ms={s.duration_ms}"
    )


def run_scheduled(config: PipelineConfig) -> None:
    schedule.every(2).minutes.do(run_once, config)
    run_once(config)
    while True:
        schedule.run_pending()
        time.sleep(5)


def main() -> int:
    load_dotenv()
    config = PipelineConfig.from_env()
    ensure_postgres_schema(config.pg_dsn)
    if config.worker_mode in ("scheduled", "daemon"):
        run_scheduled(config)
    else:
        run_once(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
