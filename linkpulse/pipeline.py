"""Wire every stage from one config object, chosen once at process start."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from linkpulse.clustering.clusterer import Clusterer
from linkpulse.config import PipelineConfig
from linkpulse.embeddings.generator import EmbeddingGenerator
from linkpulse.embeddings.providers import build_embedding_client
from linkpulse.enrichment.engine import EnrichmentEngine
from linkpulse.enrichment.providers import build_provider_chain
from linkpulse.ingestion.canonicalizer import Canonicalizer
from linkpulse.ingestion.feeds import fetch_feed_links
from linkpulse.ingestion.ingestor import Ingestor
from linkpulse.scoring.velocity import VelocityScorer

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    config: PipelineConfig
    store: Any
    canonicalizer: Canonicalizer
    ingestor: Ingestor
    enrichment: EnrichmentEngine
    embeddings: EmbeddingGenerator
    clusterer: Clusterer
    velocity: VelocityScorer
    session: Any = None

    def fetch_rss_sources(self, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Poll every active RSS Source and ingest what it links to."""
        results: List[Dict[str, Any]] = []
        sources = [] if self.config.offline else self.store.list_sources(kind="rss")
        for source in sources:
            fetched = fetch_feed_links(
                source,
                timeout=self.config.request_timeout,
                user_agent=self.config.user_agent,
                session=self.session,
            )
            entry: Dict[str, Any] = {
                "source_id": source.id,
                "success": fetched.success,
                "links_found": len(fetched.links),
                "links_added": 0,
            }
            if fetched.success and fetched.links:
                summary = self.ingestor.ingest(fetched.links, source.id, now=now)
                entry["links_added"] = summary.new
            if fetched.error:
                entry["error"] = fetched.error
            self.store.mark_source_fetched(source.id, now=now or datetime.now(timezone.utc), error=fetched.error)
            results.append(entry)
        return {
            "total_feeds": len(results),
            "successful_feeds": sum(1 for r in results if r["success"]),
            "failed_feeds": sum(1 for r in results if not r["success"]),
            "total_links_found": sum(r["links_found"] for r in results),
            "total_links_added": sum(r["links_added"] for r in results),
            "results": results,
        }


def build_pipeline(config: PipelineConfig, store, *, session=None) -> Pipeline:
    session = session if session is not None else requests.Session()
    canonicalizer = Canonicalizer(config, session=session)
    chain = build_provider_chain(config, session=session)
    client = build_embedding_client(config)
    if not chain:
        logger.info("enrichment providers disabled")
    if client is None:
        logger.info("no embedding provider key configured")
    return Pipeline(
        config=config,
        store=store,
        canonicalizer=canonicalizer,
        ingestor=Ingestor(store, canonicalizer),
        enrichment=EnrichmentEngine(store, chain, config),
        embeddings=EmbeddingGenerator(store, client, config),
        clusterer=Clusterer(store, config),
        velocity=VelocityScorer(store),
        session=session,
    )
