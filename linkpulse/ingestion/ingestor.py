"""Turn batches of raw URLs from a Source into Links and Mentions."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from linkpulse.enrichment.blocked import classify_title
from linkpulse.ingestion.blacklist import find_match
from linkpulse.ingestion.canonicalizer import Canonicalizer
from linkpulse.ingestion.link_types import IngestSummary, LinkCandidate
from linkpulse.ingestion.url_utils import extract_base_domain

logger = logging.getLogger(__name__)


class UnknownSource(LookupError):
    pass


class Ingestor:
    def __init__(self, store, canonicalizer: Canonicalizer):
        self.store = store
        self.canonicalizer = canonicalizer

    def ingest(self, urls: Iterable[Any], source_id: str, *, now: Optional[datetime] = None) -> IngestSummary:
        """Ingest one batch of URLs observed by ``source_id``.

        Every URL in the batch shares one batch id, so a Source repeating the
        same link inside a single fetch only produces one Mention.
        """
        source = self.store.get_source(source_id)
        if source is None:
            raise UnknownSource(f"unknown source: {source_id}")
        now = now or datetime.now(timezone.utc)
        batch_id = uuid.uuid4().hex
        blacklist = self.store.list_blacklist()
        candidates: List[LinkCandidate] = [LinkCandidate.coerce(u) for u in urls]

        summary = IngestSummary(total=len(candidates))
        for cand in candidates:
            raw = (cand.url or "").strip()
            if not raw:
                summary.failed += 1
                continue
            hit = find_match(blacklist, raw)
            if hit:
                logger.info(f"blacklisted ({hit.type}:{hit.pattern}) {raw}")
                summary.blacklisted += 1
                continue

            result = self.canonicalizer.canonicalize(raw)
            if not result.canonical_url:
                logger.info(f"skipping unusable url {raw}: {result.error}")
                summary.failed += 1
                continue
            hit = find_match(blacklist, result.canonical_url)
            if hit:
                logger.info(f"blacklisted after canonicalization ({hit.type}:{hit.pattern}) {result.canonical_url}")
                summary.blacklisted += 1
                continue

            if not source.include_own_links and source.base_domain:
                if extract_base_domain(result.canonical_url) == source.base_domain:
                    summary.self_links += 1
                    continue

            if result.title and classify_title(result.title) is not None:
                # a robot-check or paywall title is not a title; leave the link pending
                result = replace(result, title=None)

            link, created = self.store.upsert_link(result, original_url=raw, now=now)
            if created:
                summary.new += 1
            else:
                summary.existing += 1

            if self.store.add_mention(link.id, source.id, seen_at=now, context=cand.context, batch_id=batch_id):
                summary.mentions += 1
            else:
                summary.duplicate_mentions += 1

        logger.info(
            f"ingested source={source_id} total={summary.total} new={summary.new} "
            f"existing={summary.existing} blacklisted={summary.blacklisted} self_links={summary.self_links}"
        )
        return summary
