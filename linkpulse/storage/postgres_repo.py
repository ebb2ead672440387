"""Postgres repository for Links, Mentions, Sources, the blacklist and Stories.

Intentionally lightweight (psycopg + SQL). Each call opens its own
connection; stages never share Link/Story state in memory.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg

from linkpulse.enrichment.blocked import BlockedReason
from linkpulse.enrichment.state import EnrichmentStatus
from linkpulse.ingestion.canonicalizer import CanonicalResult
from linkpulse.storage.records import BlacklistEntry, Link, MentionObservation, Source, Story


LINK_COLUMNS: Tuple[str, ...] = (
    "id",
    "canonical_url",
    "original_url",
    "domain",
    "first_seen_at",
    "last_seen_at",
    "title",
    "fallback_title",
    "fallback_title_source",
    "description",
    "image_url",
    "author",
    "published_at",
    "ai_summary",
    "enrichment_status",
    "enrichment_source",
    "enrichment_retry_count",
    "enrichment_last_attempt",
    "enrichment_error",
    "is_blocked",
    "blocked_reason",
    "embedding",
    "embedding_generated_at",
    "canonical_status",
    "canonical_error",
)

# Columns stages may write through update_link()
UPDATABLE_LINK_COLUMNS = frozenset(LINK_COLUMNS) - {"id", "canonical_url", "original_url", "first_seen_at"}

_SOURCE_COLUMNS = "id, name, url, kind, include_own_links, show_on_dashboard, active"

_HAS_DISPLAY_TITLE = "COALESCE(NULLIF(TRIM(l.title), ''), NULLIF(TRIM(l.fallback_title), '')) IS NOT NULL"


def _cols(prefix: str = "l.") -> str:
    return ", ".join(prefix + c for c in LINK_COLUMNS)


def _row_to_link(row: Sequence[Any]) -> Link:
    data = dict(zip(LINK_COLUMNS, row))
    data["id"] = int(data["id"])
    data["enrichment_status"] = EnrichmentStatus(data["enrichment_status"] or "pending")
    data["blocked_reason"] = BlockedReason(data["blocked_reason"]) if data["blocked_reason"] else None
    data["enrichment_retry_count"] = int(data["enrichment_retry_count"] or 0)
    data["is_blocked"] = bool(data["is_blocked"])
    return Link(**data)


def _row_to_source(row: Sequence[Any]) -> Source:
    sid, name, url, kind, include_own, show, active = row
    return Source(
        id=sid,
        name=name,
        url=url,
        kind=kind,
        include_own_links=bool(include_own),
        show_on_dashboard=bool(show),
        active=bool(active),
    )


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class PostgresLinkStore:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    def _connect(self):
        return psycopg.connect(self.pg_dsn, autocommit=True)

    # --- sources -------------------------------------------------------

    def upsert_source(self, source: Source) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO sources (id, name, url, kind, include_own_links, show_on_dashboard, active)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                      name = EXCLUDED.name,
                      url = COALESCE(EXCLUDED.url, sources.url),
                      kind = EXCLUDED.kind,
                      include_own_links = EXCLUDED.include_own_links,
                      show_on_dashboard = EXCLUDED.show_on_dashboard,
                      active = EXCLUDED.active
                    """,
                    (
                        source.id,
                        source.name,
                        source.url,
                        source.kind,
                        source.include_own_links,
                        source.show_on_dashboard,
                        source.active,
                    ),
                )

    def get_source(self, source_id: str) -> Optional[Source]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = %s", (source_id,))
                row = cur.fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, *, kind: Optional[str] = None, active_only: bool = True) -> List[Source]:
        where = ["1=1"]
        params: List[Any] = []
        if kind:
            where.append("kind = %s")
            params.append(kind)
        if active_only:
            where.append("active")
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE {' AND '.join(where)} ORDER BY id", params)
                rows = cur.fetchall()
        return [_row_to_source(r) for r in rows]

    def mark_source_fetched(self, source_id: str, *, now: datetime, error: Optional[str] = None) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE sources SET last_fetched_at = %s, last_error = %s WHERE id = %s",
                    (now, error, source_id),
                )

    # --- blacklist -----------------------------------------------------

    def list_blacklist(self) -> List[BlacklistEntry]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id, type, pattern, reason FROM blacklist ORDER BY id")
                rows = cur.fetchall()
        return [BlacklistEntry(id=int(i), type=t, pattern=p, reason=r) for i, t, p, r in rows]

    def add_blacklist_entry(self, type: str, pattern: str, reason: Optional[str] = None) -> BlacklistEntry:
        if type not in ("domain", "url"):
            raise ValueError(f"blacklist type must be 'domain' or 'url', got {type!r}")
        pattern = (pattern or "").strip().lower()
        if not pattern:
            raise ValueError("blacklist pattern is required")
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO blacklist (type, pattern, reason)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (type, pattern) DO UPDATE SET reason = COALESCE(EXCLUDED.reason, blacklist.reason)
                    RETURNING id, reason
                    """,
                    (type, pattern, reason),
                )
                eid, stored_reason = cur.fetchone()
        return BlacklistEntry(id=int(eid), type=type, pattern=pattern, reason=stored_reason)

    # --- links + mentions ----------------------------------------------

    def upsert_link(self, result: CanonicalResult, *, original_url: str, now: datetime) -> Tuple[Link, bool]:
        """Insert or refresh a Link keyed on canonical_url; returns (link, created).

        Updates only fill empty metadata so enriched values are never clobbered.
        """
        has_title = bool((result.title or "").strip())
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO links AS l (
                      canonical_url, original_url, domain, title, description, image_url, author, published_at,
                      canonical_status, canonical_error, enrichment_status, enrichment_source,
                      first_seen_at, last_seen_at
                    )
                    VALUES (
                      %(canonical_url)s, %(original_url)s, %(domain)s, %(title)s, %(description)s, %(image_url)s,
                      %(author)s, %(published_at)s, %(canonical_status)s, %(canonical_error)s,
                      %(enrichment_status)s, %(enrichment_source)s, %(now)s, %(now)s
                    )
                    ON CONFLICT (canonical_url) DO UPDATE SET
                      last_seen_at = GREATEST(l.last_seen_at, EXCLUDED.last_seen_at),
                      title = COALESCE(l.title, EXCLUDED.title),
                      description = COALESCE(l.description, EXCLUDED.description),
                      image_url = COALESCE(l.image_url, EXCLUDED.image_url),
                      author = COALESCE(l.author, EXCLUDED.author),
                      published_at = COALESCE(l.published_at, EXCLUDED.published_at)
                    RETURNING {_cols()}, (xmax = 0) AS inserted
                    """,
                    {
                        "canonical_url": result.canonical_url,
                        "original_url": original_url,
                        "domain": result.domain or "",
                        "title": result.title if has_title else None,
                        "description": result.description,
                        "image_url": result.image_url,
                        "author": result.author,
                        "published_at": result.published_at,
                        "canonical_status": result.status,
                        "canonical_error": result.error,
                        "enrichment_status": (EnrichmentStatus.SUCCESS if has_title else EnrichmentStatus.PENDING).value,
                        "enrichment_source": "html" if has_title else None,
                        "now": now,
                    },
                )
                row = cur.fetchone()
        *link_row, inserted = row
        return _row_to_link(link_row), bool(inserted)

    def add_mention(
        self,
        link_id: int,
        source_id: str,
        *,
        seen_at: datetime,
        context: Optional[str] = None,
        batch_id: str,
    ) -> bool:
        """Record a Mention; False when this source already mentioned the link in this batch."""
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO mentions (link_id, source_id, seen_at, context, batch_id)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (link_id, source_id, batch_id) DO NOTHING
                    """,
                    (link_id, source_id, seen_at, context, batch_id),
                )
                return cur.rowcount == 1

    def update_link(self, link_id: int, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_LINK_COLUMNS
        if unknown:
            raise ValueError(f"cannot update link columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = %s" for name in fields)
        params = [_db_value(v) for v in fields.values()] + [link_id]
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"UPDATE links SET {assignments} WHERE id = %s", params)

    # --- enrichment queue ----------------------------------------------

    def sample_titled_links(self, *, limit: int) -> List[Link]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_cols()} FROM links l
                    WHERE l.is_blocked = FALSE
                      AND l.enrichment_status IN ('success', 'fallback')
                      AND l.title IS NOT NULL
                    ORDER BY random()
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = cur.fetchall()
        return [_row_to_link(r) for r in rows]

    def reset_to_pending(self, link_id: int) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE links
                    SET title = NULL, enrichment_status = 'pending', enrichment_retry_count = 0, enrichment_error = NULL
                    WHERE id = %s AND enrichment_status IN ('success', 'fallback')
                    """,
                    (link_id,),
                )

    def claim_links(
        self,
        *,
        limit: int,
        max_retries: int,
        now: datetime,
        stale_before: datetime,
        fallback_before: datetime,
    ) -> List[Link]:
        """Atomically lease up to ``limit`` Links by moving them to processing.

        SKIP LOCKED keeps overlapping batches from claiming the same rows.
        """
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    WITH picked AS (
                      SELECT id FROM links
                      WHERE is_blocked = FALSE
                        AND (
                          (enrichment_status = 'pending' AND enrichment_retry_count < %(max_retries)s)
                          OR (enrichment_status = 'fallback' AND enrichment_retry_count < %(max_retries)s
                              AND (enrichment_last_attempt IS NULL OR enrichment_last_attempt < %(fallback_before)s))
                          OR (enrichment_status = 'processing'
                              AND (enrichment_last_attempt IS NULL OR enrichment_last_attempt < %(stale_before)s))
                        )
                      ORDER BY (enrichment_status = 'pending') DESC, enrichment_retry_count ASC, first_seen_at DESC, id DESC
                      LIMIT %(limit)s
                      FOR UPDATE SKIP LOCKED
                    )
                    UPDATE links l
                    SET enrichment_status = 'processing', enrichment_last_attempt = %(now)s
                    FROM picked
                    WHERE l.id = picked.id
                    RETURNING {_cols()}
                    """,
                    {
                        "limit": limit,
                        "max_retries": max_retries,
                        "now": now,
                        "stale_before": stale_before,
                        "fallback_before": fallback_before,
                    },
                )
                rows = cur.fetchall()
        links = [_row_to_link(r) for r in rows]
        links.sort(key=lambda l: (l.enrichment_retry_count, -l.first_seen_at.timestamp(), -l.id))
        return links

    def count_pending(self, *, max_retries: int) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT COUNT(*) FROM links WHERE enrichment_status = 'pending' AND enrichment_retry_count < %s AND is_blocked = FALSE",
                    (max_retries,),
                )
                return int(cur.fetchone()[0] or 0)

    # --- velocity ------------------------------------------------------

    def velocity_candidates(
        self, window_start: datetime, filters: Optional[Dict[str, Any]] = None
    ) -> List[Tuple[Link, List[MentionObservation]]]:
        """Links first seen in the window with their Mention span per dashboard Source."""
        filters = filters or {}
        where = [
            "l.first_seen_at >= %s",
            "m.seen_at >= %s",
            "l.is_blocked = FALSE",
            _HAS_DISPLAY_TITLE,
            "s.show_on_dashboard",
        ]
        params: List[Any] = [window_start, window_start]
        if filters.get("domain"):
            where.append("l.domain = %s")
            params.append(str(filters["domain"]).strip().lower())
        if filters.get("source_id"):
            where.append(
                "EXISTS (SELECT 1 FROM mentions m2 WHERE m2.link_id = l.id AND m2.source_id = %s AND m2.seen_at >= %s)"
            )
            params.extend([filters["source_id"], window_start])

        sql = f"""
        SELECT {_cols()}, m.source_id, s.name, MAX(m.seen_at) AS last_seen, MIN(m.seen_at) AS first_seen
        FROM links l
        JOIN mentions m ON m.link_id = l.id
        JOIN sources s ON s.id = m.source_id
        WHERE {' AND '.join(where)}
        GROUP BY l.id, m.source_id, s.name
        """
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()

        grouped: Dict[int, Tuple[Link, List[MentionObservation]]] = {}
        n = len(LINK_COLUMNS)
        for row in rows:
            link_id = int(row[0])
            if link_id not in grouped:
                grouped[link_id] = (_row_to_link(row[:n]), [])
            source_id, source_name, last_seen, first_seen = row[n:]
            grouped[link_id][1].append(
                MentionObservation(source_id=source_id, source_name=source_name, seen_at=last_seen, first_seen_at=first_seen)
            )
        return list(grouped.values())

    def mention_counts(self, link_ids: Iterable[int]) -> Dict[int, int]:
        ids = [int(i) for i in link_ids]
        if not ids:
            return {}
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT link_id, COUNT(DISTINCT source_id)
                    FROM mentions
                    WHERE link_id = ANY(%s)
                    GROUP BY link_id
                    """,
                    (ids,),
                )
                rows = cur.fetchall()
        return {int(lid): int(cnt or 0) for lid, cnt in rows}

    # --- embeddings ----------------------------------------------------

    def links_missing_embeddings(self, *, since: datetime, limit: int) -> List[Link]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_cols()} FROM links l
                    WHERE l.embedding IS NULL
                      AND l.is_blocked = FALSE
                      AND l.first_seen_at >= %s
                      AND {_HAS_DISPLAY_TITLE}
                    ORDER BY l.first_seen_at DESC, l.id DESC
                    LIMIT %s
                    """,
                    (since, limit),
                )
                rows = cur.fetchall()
        return [_row_to_link(r) for r in rows]

    def save_embedding(self, link_id: int, embedding: str, *, now: datetime) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE links SET embedding = %s, embedding_generated_at = %s WHERE id = %s",
                    (embedding, now, link_id),
                )

    # --- stories -------------------------------------------------------

    def clustering_candidates(self, *, since: datetime) -> List[Link]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_cols()} FROM links l
                    WHERE l.is_blocked = FALSE
                      AND l.embedding IS NOT NULL
                      AND l.first_seen_at >= %s
                      AND {_HAS_DISPLAY_TITLE}
                    ORDER BY l.id
                    """,
                    (since,),
                )
                rows = cur.fetchall()
        return [_row_to_link(r) for r in rows]

    def story_assignments(self, link_ids: Iterable[int]) -> Dict[int, int]:
        ids = [int(i) for i in link_ids]
        if not ids:
            return {}
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT link_id, story_id FROM story_links WHERE link_id = ANY(%s)", (ids,))
                rows = cur.fetchall()
        return {int(lid): int(sid) for lid, sid in rows}

    def create_story(self, title: str, first_link_at: datetime, last_link_at: datetime) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO stories (title, first_link_at, last_link_at, status)
                    VALUES (%s, %s, %s, 'active')
                    RETURNING id
                    """,
                    (title, first_link_at, last_link_at),
                )
                return int(cur.fetchone()[0])

    def widen_story(self, story_id: int, first_link_at: datetime, last_link_at: datetime) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE stories
                    SET first_link_at = LEAST(first_link_at, %s),
                        last_link_at = GREATEST(last_link_at, %s),
                        updated_at = now()
                    WHERE id = %s
                    """,
                    (first_link_at, last_link_at, story_id),
                )

    def attach_link(self, story_id: int, link_id: int) -> bool:
        """Add a Link to a Story; False when the Link already belongs to one."""
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO story_links (story_id, link_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
                    (story_id, link_id),
                )
                return cur.rowcount == 1

    def list_stories(self, *, limit: int = 20, status: str = "active") -> List[Story]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, title, narrative, first_link_at, last_link_at, status
                    FROM stories
                    WHERE status = %s
                    ORDER BY last_link_at DESC, id DESC
                    LIMIT %s
                    """,
                    (status, limit),
                )
                story_rows = cur.fetchall()
                stories = [
                    Story(id=int(sid), title=title, narrative=narrative, first_link_at=first, last_link_at=last, status=st)
                    for sid, title, narrative, first, last, st in story_rows
                ]
                if not stories:
                    return []
                cur.execute(
                    f"""
                    SELECT sl.story_id, {_cols()}
                    FROM story_links sl
                    JOIN links l ON l.id = sl.link_id
                    WHERE sl.story_id = ANY(%s)
                    ORDER BY l.first_seen_at ASC, l.id ASC
                    """,
                    ([s.id for s in stories],),
                )
                link_rows = cur.fetchall()
        by_id = {s.id: s for s in stories}
        for story_id, *rest in link_rows:
            by_id[int(story_id)].links.append(_row_to_link(rest))
        return stories
