"""Group recent embedded Links into Stories.

Single-linkage over cosine similarity: a Link joins a cluster when it is close
enough to *any* member, so chains A~B~C end up together even when A and C are
far apart. Seeds are taken in velocity order, which makes the most-mentioned
Link of each cluster its representative.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from linkpulse.config import PipelineConfig
from linkpulse.embeddings.vectors import parse_embedding, similarity_matrix
from linkpulse.enrichment.titles import clean_story_title
from linkpulse.storage.records import Link, Story

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterItem:
    link_id: int
    velocity: int
    first_seen_at: datetime
    vector: Sequence[float]


@dataclass
class ClusterSummary:
    processed: int = 0
    clusters_created: int = 0
    links_grouped: int = 0
    clusters_found: int = 0
    skipped_vectors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def single_linkage_clusters(items: Sequence[ClusterItem], threshold: float) -> List[List[ClusterItem]]:
    """Clusters of size >= 2, each listed seed first and then in velocity order."""
    ordered = sorted(items, key=lambda it: (-it.velocity, -it.first_seen_at.timestamp(), it.link_id))
    n = len(ordered)
    if n < 2:
        return []
    sims = similarity_matrix([it.vector for it in ordered])
    assigned = [False] * n
    clusters: List[List[ClusterItem]] = []
    for seed in range(n):
        if assigned[seed]:
            continue
        assigned[seed] = True
        members = [seed]
        frontier = deque([seed])
        while frontier:
            cur = frontier.popleft()
            for j in range(n):
                if not assigned[j] and sims[cur, j] >= threshold:
                    assigned[j] = True
                    members.append(j)
                    frontier.append(j)
        if len(members) >= 2:
            clusters.append([ordered[k] for k in sorted(members)])
    return clusters


class Clusterer:
    def __init__(self, store, config: Optional[PipelineConfig] = None):
        self.store = store
        self.config = config or PipelineConfig()

    def _load_items(self, links: List[Link], summary: ClusterSummary) -> List[ClusterItem]:
        parsed = []
        for link in links:
            if link.is_blocked or not link.display_title:
                continue
            vec = parse_embedding(link.embedding)
            if vec is None:
                logger.warning(f"skipping link {link.id}: malformed embedding")
                summary.skipped_vectors += 1
                continue
            parsed.append((link, vec))
        if not parsed:
            return []

        dim = Counter(len(vec) for _, vec in parsed).most_common(1)[0][0]
        counts = self.store.mention_counts([link.id for link, _ in parsed])
        items = []
        for link, vec in parsed:
            if len(vec) != dim:
                logger.warning(f"skipping link {link.id}: embedding has {len(vec)} dims, expected {dim}")
                summary.skipped_vectors += 1
                continue
            items.append(ClusterItem(link.id, int(counts.get(link.id) or 1), link.first_seen_at, vec))
        return items

    def run(self, *, now: Optional[datetime] = None) -> ClusterSummary:
        now = now or datetime.now(timezone.utc)
        summary = ClusterSummary()
        since = now - timedelta(days=self.config.cluster_window_days)
        links = self.store.clustering_candidates(since=since)
        by_id = {link.id: link for link in links}

        items = self._load_items(links, summary)
        summary.processed = len(items)
        clusters = single_linkage_clusters(items, self.config.similarity_threshold)
        summary.clusters_found = len(clusters)

        for cluster in clusters:
            ids = [it.link_id for it in cluster]
            assigned = self.store.story_assignments(ids)
            new_ids = [i for i in ids if i not in assigned]
            if not new_ids:
                continue
            first_at = min(it.first_seen_at for it in cluster)
            last_at = max(it.first_seen_at for it in cluster)

            if assigned:
                votes = Counter(assigned.values())
                story_id = min(votes, key=lambda sid: (-votes[sid], sid))
                self.store.widen_story(story_id, first_at, last_at)
            else:
                seed = by_id[cluster[0].link_id]
                title = clean_story_title(seed.display_title) or seed.display_title
                story_id = self.store.create_story(title, first_at, last_at)
                summary.clusters_created += 1
                logger.info(f"created story {story_id} ({len(ids)} links): {title!r}")

            for link_id in new_ids:
                if self.store.attach_link(story_id, link_id):
                    summary.links_grouped += 1

        logger.info(f"clustering: {summary.as_dict()}")
        return summary

    def get_stories(self, limit: int = 20) -> List[Story]:
        stories = self.store.list_stories(limit=max(1, int(limit)))
        link_ids = [link.id for story in stories for link in story.links]
        counts = self.store.mention_counts(link_ids) if link_ids else {}
        for story in stories:
            story.combined_velocity = sum(int(counts.get(link.id) or 0) for link in story.links)
        return stories
