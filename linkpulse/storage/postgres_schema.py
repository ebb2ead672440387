"""Postgres schema management for linkpulse.

Schema creation is idempotent (CREATE IF NOT EXISTS) so every worker can call
ensure_postgres_schema() on startup.
"""

from __future__ import annotations

from typing import Iterable, Optional

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    # Sources (feeds, inboxes, manual entry)
    """
    CREATE TABLE IF NOT EXISTS sources (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      url TEXT,
      kind TEXT NOT NULL DEFAULT 'rss', -- rss|newsletter|manual
      include_own_links BOOLEAN NOT NULL DEFAULT FALSE,
      show_on_dashboard BOOLEAN NOT NULL DEFAULT TRUE,
      active BOOLEAN NOT NULL DEFAULT TRUE,
      last_fetched_at TIMESTAMPTZ,
      last_error TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    # Links (one row per canonical URL)
    """
    CREATE TABLE IF NOT EXISTS links (
      id BIGSERIAL PRIMARY KEY,
      canonical_url TEXT NOT NULL UNIQUE,
      original_url TEXT NOT NULL,
      domain TEXT NOT NULL DEFAULT '',
      title TEXT,
      fallback_title TEXT,
      fallback_title_source TEXT,
      description TEXT,
      image_url TEXT,
      author TEXT,
      published_at TIMESTAMPTZ,
      ai_summary TEXT,
      canonical_status TEXT,
      canonical_error TEXT,
      enrichment_status TEXT NOT NULL DEFAULT 'pending', -- pending|processing|success|fallback
      enrichment_source TEXT,
      enrichment_retry_count INTEGER NOT NULL DEFAULT 0,
      enrichment_last_attempt TIMESTAMPTZ,
      enrichment_error TEXT,
      is_blocked BOOLEAN NOT NULL DEFAULT FALSE,
      blocked_reason TEXT,
      embedding TEXT,
      embedding_generated_at TIMESTAMPTZ,
      first_seen_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      last_seen_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      CONSTRAINT links_enrichment_status_chk
        CHECK (enrichment_status IN ('pending', 'processing', 'success', 'fallback'))
    );
    """,
    # Backward-compatible column adds (safe if table already exists)
    "ALTER TABLE links ADD COLUMN IF NOT EXISTS ai_summary TEXT;",
    "ALTER TABLE links ADD COLUMN IF NOT EXISTS canonical_status TEXT;",
    "ALTER TABLE links ADD COLUMN IF NOT EXISTS canonical_error TEXT;",
    "ALTER TABLE links ADD COLUMN IF NOT EXISTS fallback_title_source TEXT;",
    "CREATE INDEX IF NOT EXISTS idx_links_first_seen ON links (first_seen_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_links_enrichment_queue ON links (enrichment_status, enrichment_retry_count, first_seen_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_links_domain ON links (domain);",
    "CREATE INDEX IF NOT EXISTS idx_links_missing_embedding ON links (first_seen_at DESC) WHERE embedding IS NULL;",
    # Mentions (one observation of a link by a source)
    """
    CREATE TABLE IF NOT EXISTS mentions (
      id BIGSERIAL PRIMARY KEY,
      link_id BIGINT NOT NULL REFERENCES links(id) ON DELETE CASCADE,
      source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
      seen_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      context TEXT,
      batch_id TEXT NOT NULL,
      UNIQUE (link_id, source_id, batch_id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_mentions_link_seen ON mentions (link_id, seen_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_mentions_source ON mentions (source_id);",
    # Blacklist
    """
    CREATE TABLE IF NOT EXISTS blacklist (
      id BIGSERIAL PRIMARY KEY,
      type TEXT NOT NULL, -- domain|url
      pattern TEXT NOT NULL,
      reason TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (type, pattern),
      CONSTRAINT blacklist_type_chk CHECK (type IN ('domain', 'url'))
    );
    """,
    # Stories + membership (a link belongs to at most one story)
    """
    CREATE TABLE IF NOT EXISTS stories (
      id BIGSERIAL PRIMARY KEY,
      title TEXT NOT NULL,
      narrative TEXT,
      first_link_at TIMESTAMPTZ NOT NULL,
      last_link_at TIMESTAMPTZ NOT NULL,
      status TEXT NOT NULL DEFAULT 'active', -- active|archived
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_stories_status_last ON stories (status, last_link_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS story_links (
      story_id BIGINT NOT NULL REFERENCES stories(id) ON DELETE CASCADE,
      link_id BIGINT NOT NULL UNIQUE REFERENCES links(id) ON DELETE CASCADE,
      added_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      PRIMARY KEY (story_id, link_id)
    );
    """,
]


def ensure_postgres_schema(pg_dsn: str, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
