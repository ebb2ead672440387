"""Backfill embeddings for recent Links that lack one."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from linkpulse.config import PipelineConfig
from linkpulse.embeddings.providers import EmbeddingClient
from linkpulse.embeddings.vectors import serialize_embedding
from linkpulse.storage.records import Link

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingSummary:
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def build_embedding_text(link: Link) -> str:
    title = link.display_title or ""
    if not title:
        return ""
    summary = (link.ai_summary or "").strip()
    return f"{title}\n\n{summary}" if summary else title


class EmbeddingGenerator:
    def __init__(self, store, client: Optional[EmbeddingClient], config: Optional[PipelineConfig] = None, *, sleep=time.sleep):
        self.store = store
        self.client = client
        self.config = config or PipelineConfig()
        self._sleep = sleep

    def generate_missing(self, limit: Optional[int] = None, *, now: Optional[datetime] = None) -> EmbeddingSummary:
        summary = EmbeddingSummary()
        if not self.client:
            logger.info("no embedding provider configured; embeddings skipped")
            return summary
        now = now or datetime.now(timezone.utc)
        limit = self.config.embedding_batch_limit if limit is None else max(1, int(limit))
        since = now - timedelta(days=self.config.embedding_window_days)

        links = self.store.links_missing_embeddings(since=since, limit=limit)
        for i, link in enumerate(links):
            text = build_embedding_text(link)
            if not text:
                summary.skipped += 1
                continue
            if i:
                self._sleep(self.config.embedding_item_delay)
            summary.processed += 1
            try:
                vec = self.client.embed(text)
            except Exception as e:
                logger.warning(f"embedding failed for link {link.id}: {e}")
                vec = None
            if not vec:
                summary.failed += 1
                continue
            self.store.save_embedding(link.id, serialize_embedding(vec), now=now)
            summary.success += 1

        logger.info(f"embeddings: {summary.as_dict()}")
        return summary
