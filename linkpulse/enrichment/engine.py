"""Enrichment batch runner.

One call to run_batch() is one cron tick: a housekeeping pass over already
enriched titles, then a small claimed batch pushed through the provider chain.
All state lives on the Link rows; the ``processing`` status is the lease that
keeps overlapping batches from working the same Link.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from linkpulse.config import PipelineConfig
from linkpulse.enrichment.blocked import classify_title
from linkpulse.enrichment.providers import EnrichmentResult, ProviderChain
from linkpulse.enrichment.state import EnrichmentStatus, transition
from linkpulse.storage.records import Link

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentSummary:
    processed: int = 0
    success: int = 0
    fallback: int = 0
    blocked: int = 0
    failed: int = 0
    skipped: int = 0
    reset_garbage: int = 0
    remaining_pending: int = 0
    duration_ms: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class EnrichmentEngine:
    def __init__(self, store, providers: ProviderChain, config: Optional[PipelineConfig] = None, *, sleep=time.sleep):
        self.store = store
        self.providers = providers
        self.config = config or PipelineConfig()
        self._sleep = sleep

    def reset_garbage_titles(self) -> int:
        """Send enriched Links whose titles now read as blocked content back to pending."""
        reset = 0
        for link in self.store.sample_titled_links(limit=self.config.garbage_sample_size):
            reason = classify_title(link.title)
            if reason is None:
                continue
            transition(link.enrichment_status, EnrichmentStatus.PENDING)
            self.store.reset_to_pending(link.id)
            logger.info(f"reset garbage title ({reason.value}) on link {link.id}: {link.title!r}")
            reset += 1
        return reset

    def run_batch(self, *, now: Optional[datetime] = None) -> EnrichmentSummary:
        started = time.monotonic()
        summary = EnrichmentSummary()
        if not self.providers:
            logger.info("no metadata provider configured; enrichment skipped")
            return summary

        now = now or datetime.now(timezone.utc)
        summary.reset_garbage = self.reset_garbage_titles()

        claimed = self.store.claim_links(
            limit=self.config.enrich_batch_size,
            max_retries=self.config.enrich_max_retries,
            now=now,
            stale_before=now - timedelta(minutes=self.config.stale_lease_minutes),
            fallback_before=now - timedelta(hours=self.config.fallback_retry_hours),
        )
        for i, link in enumerate(claimed):
            if i:
                self._sleep(self.config.enrich_item_delay)
            self._process(link, summary, now)

        summary.remaining_pending = self.store.count_pending(max_retries=self.config.enrich_max_retries)
        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"enrichment batch: {summary.as_dict()}")
        return summary

    def _process(self, link: Link, summary: EnrichmentSummary, now: datetime) -> None:
        # claim_links already moved the row to processing
        status = EnrichmentStatus.PROCESSING
        title = (link.title or "").strip()
        if title:
            if classify_title(title) is None:
                self.store.update_link(
                    link.id,
                    enrichment_status=transition(status, EnrichmentStatus.SUCCESS),
                    enrichment_source=link.enrichment_source or "html",
                    enrichment_error=None,
                )
                summary.skipped += 1
                return
            logger.info(f"clearing blocked title on link {link.id}: {title!r}")
            self.store.update_link(link.id, title=None)

        summary.processed += 1
        try:
            result = self.providers.fetch_metadata(link.canonical_url)
        except Exception as e:
            logger.warning(f"enrichment failed for link {link.id} ({link.canonical_url}): {e}")
            self.store.update_link(
                link.id,
                enrichment_status=transition(status, EnrichmentStatus.PENDING),
                enrichment_retry_count=link.enrichment_retry_count + 1,
                enrichment_error=str(e)[:1000],
                enrichment_last_attempt=now,
            )
            summary.failed += 1
            return

        if result.status == "fallback":
            self._save_fallback(link, result, now)
            summary.fallback += 1
            return

        reason = classify_title(result.title)
        if reason is not None:
            # the blocked title is kept as evidence; blocked links are never retried
            self.store.update_link(
                link.id,
                title=result.title,
                is_blocked=True,
                blocked_reason=reason,
                enrichment_status=transition(status, EnrichmentStatus.SUCCESS),
                enrichment_source=result.source,
                enrichment_error=None,
                enrichment_last_attempt=now,
            )
            logger.info(f"link {link.id} blocked ({reason.value}): {result.title!r}")
            summary.blocked += 1
            return

        self._save_success(link, result, now)
        summary.success += 1

    def _save_success(self, link: Link, result: EnrichmentResult, now: datetime) -> None:
        fields = {
            "title": result.title,
            "enrichment_status": transition(EnrichmentStatus.PROCESSING, EnrichmentStatus.SUCCESS),
            "enrichment_source": result.source,
            "enrichment_error": None,
            "enrichment_last_attempt": now,
        }
        # never clobber metadata a previous step already filled in
        for name in ("description", "image_url", "author", "published_at"):
            value = getattr(result, name)
            if value and not getattr(link, name):
                fields[name] = value
        self.store.update_link(link.id, **fields)

    def _save_fallback(self, link: Link, result: EnrichmentResult, now: datetime) -> None:
        self.store.update_link(
            link.id,
            fallback_title=result.title,
            fallback_title_source=result.source,
            enrichment_status=transition(EnrichmentStatus.PROCESSING, EnrichmentStatus.FALLBACK),
            enrichment_source=result.source,
            # counts toward the ceiling so fallback re-attempts stay bounded
            enrichment_retry_count=link.enrichment_retry_count + 1,
            enrichment_error=None,
            enrichment_last_attempt=now,
        )
