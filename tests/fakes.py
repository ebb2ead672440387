"""In-memory stand-ins for Postgres and HTTP used across the test suite."""

from __future__ import annotations

import copy
import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from linkpulse.enrichment.blocked import BlockedReason
from linkpulse.enrichment.providers import EnrichmentResult, MetadataProvider
from linkpulse.enrichment.state import EnrichmentStatus
from linkpulse.storage.postgres_repo import UPDATABLE_LINK_COLUMNS
from linkpulse.storage.records import BlacklistEntry, Link, MentionObservation, Source, Story


class InMemoryLinkStore:
    """Same method surface and semantics as PostgresLinkStore."""

    def __init__(self):
        self.sources: Dict[str, Source] = {}
        self.links: Dict[int, Link] = {}
        self.mentions: List[Dict[str, Any]] = []
        self.blacklist: List[BlacklistEntry] = []
        self.stories: Dict[int, Story] = {}
        self.story_links: Dict[int, int] = {}  # link_id -> story_id
        self.fetch_log: List[Tuple[str, Optional[str]]] = []
        self._next_link_id = 1
        self._next_story_id = 1

    # sources
    def upsert_source(self, source: Source) -> None:
        self.sources[source.id] = source

    def get_source(self, source_id):
        return self.sources.get(source_id)

    def list_sources(self, *, kind=None, active_only=True):
        out = [s for s in self.sources.values() if (kind is None or s.kind == kind) and (s.active or not active_only)]
        return sorted(out, key=lambda s: s.id)

    def mark_source_fetched(self, source_id, *, now, error=None):
        self.fetch_log.append((source_id, error))

    # blacklist
    def list_blacklist(self):
        return list(self.blacklist)

    def add_blacklist_entry(self, type, pattern, reason=None):
        if type not in ("domain", "url"):
            raise ValueError(f"blacklist type must be 'domain' or 'url', got {type!r}")
        pattern = (pattern or "").strip().lower()
        if not pattern:
            raise ValueError("blacklist pattern is required")
        for e in self.blacklist:
            if e.type == type and e.pattern == pattern:
                return e
        entry = BlacklistEntry(id=len(self.blacklist) + 1, type=type, pattern=pattern, reason=reason)
        self.blacklist.append(entry)
        return entry

    # links
    def _by_url(self, url):
        for link in self.links.values():
            if link.canonical_url == url:
                return link
        return None

    def add_link(self, **fields) -> Link:
        """Test helper: insert a Link row directly."""
        link = Link(id=self._next_link_id, **fields)
        self.links[link.id] = link
        self._next_link_id += 1
        return link

    def upsert_link(self, result, *, original_url, now):
        existing = self._by_url(result.canonical_url)
        has_title = bool((result.title or "").strip())
        if existing is not None:
            existing.last_seen_at = max(existing.last_seen_at, now)
            for name in ("title", "description", "image_url", "author", "published_at"):
                value = getattr(result, name)
                if getattr(existing, name) is None and value:
                    setattr(existing, name, value)
            return copy.copy(existing), False
        link = self.add_link(
            canonical_url=result.canonical_url,
            original_url=original_url,
            domain=result.domain or "",
            first_seen_at=now,
            last_seen_at=now,
            title=result.title if has_title else None,
            description=result.description,
            image_url=result.image_url,
            author=result.author,
            published_at=result.published_at,
            canonical_status=result.status,
            canonical_error=result.error,
            enrichment_status=EnrichmentStatus.SUCCESS if has_title else EnrichmentStatus.PENDING,
            enrichment_source="html" if has_title else None,
        )
        return copy.copy(link), True

    def add_mention(self, link_id, source_id, *, seen_at, context=None, batch_id):
        for m in self.mentions:
            if m["link_id"] == link_id and m["source_id"] == source_id and m["batch_id"] == batch_id:
                return False
        self.mentions.append(
            {"link_id": link_id, "source_id": source_id, "seen_at": seen_at, "context": context, "batch_id": batch_id}
        )
        return True

    def update_link(self, link_id, **fields):
        unknown = set(fields) - UPDATABLE_LINK_COLUMNS
        if unknown:
            raise ValueError(f"cannot update link columns: {sorted(unknown)}")
        link = self.links[link_id]
        for name, value in fields.items():
            if name == "enrichment_status":
                value = EnrichmentStatus(value)
            elif name == "blocked_reason" and value is not None:
                value = BlockedReason(value)
            setattr(link, name, value)

    # enrichment queue
    def sample_titled_links(self, *, limit):
        out = [
            copy.copy(l)
            for l in sorted(self.links.values(), key=lambda l: l.id)
            if not l.is_blocked
            and l.enrichment_status in (EnrichmentStatus.SUCCESS, EnrichmentStatus.FALLBACK)
            and l.title is not None
        ]
        return out[:limit]

    def reset_to_pending(self, link_id):
        link = self.links[link_id]
        if link.enrichment_status in (EnrichmentStatus.SUCCESS, EnrichmentStatus.FALLBACK):
            link.title = None
            link.enrichment_status = EnrichmentStatus.PENDING
            link.enrichment_retry_count = 0
            link.enrichment_error = None

    def claim_links(self, *, limit, max_retries, now, stale_before, fallback_before):
        def eligible(l: Link) -> bool:
            if l.is_blocked:
                return False
            last = l.enrichment_last_attempt
            if l.enrichment_status == EnrichmentStatus.PENDING:
                return l.enrichment_retry_count < max_retries
            if l.enrichment_status == EnrichmentStatus.FALLBACK:
                return l.enrichment_retry_count < max_retries and (last is None or last < fallback_before)
            if l.enrichment_status == EnrichmentStatus.PROCESSING:
                return last is None or last < stale_before
            return False

        picked = sorted(
            (l for l in self.links.values() if eligible(l)),
            key=lambda l: (
                l.enrichment_status != EnrichmentStatus.PENDING,
                l.enrichment_retry_count,
                -l.first_seen_at.timestamp(),
                -l.id,
            ),
        )[:limit]
        for l in picked:
            l.enrichment_status = EnrichmentStatus.PROCESSING
            l.enrichment_last_attempt = now
        out = [copy.copy(l) for l in picked]
        out.sort(key=lambda l: (l.enrichment_retry_count, -l.first_seen_at.timestamp(), -l.id))
        return out

    def count_pending(self, *, max_retries):
        return sum(
            1
            for l in self.links.values()
            if l.enrichment_status == EnrichmentStatus.PENDING and l.enrichment_retry_count < max_retries and not l.is_blocked
        )

    # velocity
    def velocity_candidates(self, window_start, filters=None):
        filters = filters or {}
        out = []
        for link in sorted(self.links.values(), key=lambda l: l.id):
            if link.first_seen_at < window_start or link.is_blocked or not link.display_title:
                continue
            if filters.get("domain") and link.domain != str(filters["domain"]).strip().lower():
                continue
            in_window = [
                m
                for m in self.mentions
                if m["link_id"] == link.id
                and m["seen_at"] >= window_start
                and self.sources[m["source_id"]].show_on_dashboard
            ]
            if not in_window:
                continue
            if filters.get("source_id") and not any(m["source_id"] == filters["source_id"] for m in in_window):
                continue
            span: Dict[str, Tuple[datetime, datetime]] = {}
            for m in in_window:
                first, last = span.get(m["source_id"], (m["seen_at"], m["seen_at"]))
                span[m["source_id"]] = (min(first, m["seen_at"]), max(last, m["seen_at"]))
            obs = [
                MentionObservation(source_id=sid, source_name=self.sources[sid].name, seen_at=last, first_seen_at=first)
                for sid, (first, last) in span.items()
            ]
            out.append((copy.copy(link), obs))
        return out

    def mention_counts(self, link_ids: Iterable[int]):
        ids = set(link_ids)
        counts: Dict[int, set] = {}
        for m in self.mentions:
            if m["link_id"] in ids:
                counts.setdefault(m["link_id"], set()).add(m["source_id"])
        return {lid: len(srcs) for lid, srcs in counts.items()}

    # embeddings
    def links_missing_embeddings(self, *, since, limit):
        out = [
            copy.copy(l)
            for l in self.links.values()
            if l.embedding is None and not l.is_blocked and l.first_seen_at >= since and l.display_title
        ]
        out.sort(key=lambda l: (-l.first_seen_at.timestamp(), -l.id))
        return out[:limit]

    def save_embedding(self, link_id, embedding, *, now):
        self.links[link_id].embedding = embedding
        self.links[link_id].embedding_generated_at = now

    # stories
    def clustering_candidates(self, *, since):
        return [
            copy.copy(l)
            for l in sorted(self.links.values(), key=lambda l: l.id)
            if not l.is_blocked and l.embedding is not None and l.first_seen_at >= since and l.display_title
        ]

    def story_assignments(self, link_ids):
        return {lid: self.story_links[lid] for lid in link_ids if lid in self.story_links}

    def create_story(self, title, first_link_at, last_link_at):
        story = Story(id=self._next_story_id, title=title, first_link_at=first_link_at, last_link_at=last_link_at)
        self.stories[story.id] = story
        self._next_story_id += 1
        return story.id

    def widen_story(self, story_id, first_link_at, last_link_at):
        story = self.stories[story_id]
        story.first_link_at = min(story.first_link_at, first_link_at)
        story.last_link_at = max(story.last_link_at, last_link_at)

    def attach_link(self, story_id, link_id):
        if link_id in self.story_links:
            return False
        self.story_links[link_id] = story_id
        return True

    def list_stories(self, *, limit=20, status="active"):
        stories = sorted(
            (s for s in self.stories.values() if s.status == status),
            key=lambda s: (s.last_link_at, s.id),
            reverse=True,
        )[:limit]
        out = []
        for s in stories:
            members = sorted(
                (self.links[lid] for lid, sid in self.story_links.items() if sid == s.id),
                key=lambda l: (l.first_seen_at, l.id),
            )
            out.append(
                Story(
                    id=s.id,
                    title=s.title,
                    first_link_at=s.first_link_at,
                    last_link_at=s.last_link_at,
                    status=s.status,
                    links=[copy.copy(l) for l in members],
                )
            )
        return out


class FakeResponse:
    def __init__(self, status_code=200, *, headers=None, body=b"", url=None, json_data=None, encoding="utf-8"):
        self.status_code = status_code
        self.headers = headers or {}
        self.content = body if isinstance(body, bytes) else body.encode("utf-8")
        self.url = url
        self.encoding = encoding
        self._json = json_data
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def iter_content(self, chunk_size=1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i: i + chunk_size]

    def json(self):
        if self._json is None:
            return json.loads(self.content.decode("utf-8"))
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"http_{self.status_code}")

    def close(self):
        self.closed = True


class FakeSession:
    """Routes (method, url) to canned responses; unknown URLs raise ConnectionError.

    A route value may be a FakeResponse or an exception instance to raise.
    """

    def __init__(self, routes=None):
        self.routes: Dict[Tuple[str, str], Any] = dict(routes or {})
        self.calls: List[Tuple[str, str]] = []

    def _dispatch(self, method, url):
        self.calls.append((method, url))
        route = self.routes.get((method, url))
        if route is None:
            raise requests.ConnectionError(f"no route for {method} {url}")
        if isinstance(route, Exception):
            raise route
        return route

    def head(self, url, **kwargs):
        return self._dispatch("HEAD", url)

    def get(self, url, **kwargs):
        return self._dispatch("GET", url)


class FakeProvider(MetadataProvider):
    """Returns queued results per URL; an Exception in the queue is raised."""

    def __init__(self, name="fake", results=None):
        self.name = name
        self.results: Dict[str, Any] = dict(results or {})
        self.calls: List[str] = []

    def fetch_metadata(self, url):
        self.calls.append(url)
        result = self.results.get(url)
        if isinstance(result, Exception):
            raise result
        return result


def html_page(title: str, *, description: str = "", image: str = "", author: str = "") -> str:
    metas = [f'<meta property="og:title" content="{title}">']
    if description:
        metas.append(f'<meta name="description" content="{description}">')
    if image:
        metas.append(f'<meta property="og:image" content="{image}">')
    if author:
        metas.append(f'<meta name="author" content="{author}">')
    return (
        "<html><head><title>" + title + "</title>" + "".join(metas) + "</head>"
        "<body><article><p>Body text for the page.</p></article></body></html>"
    )


def success(title: str, source: str = "fake", **kwargs) -> EnrichmentResult:
    return EnrichmentResult(status="success", source=source, title=title, **kwargs)
