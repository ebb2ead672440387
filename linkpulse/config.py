"""Runtime configuration for the pipeline stages.

Loaded once per process by the entry scripts and passed into every stage;
business logic never reads the environment directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_PG_DSN = "dbname=linkpulse user=linkpulse password=linkpulsepass host=localhost port=5432"


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Pipeline configuration with validation"""
    pg_dsn: str = DEFAULT_PG_DSN
    cron_secret: str = ""

    # Network
    offline: bool = False
    user_agent: str = "linkpulse/1.0 (+link canonicalizer)"
    request_timeout: float = 10.0      # seconds, per redirect hop
    metadata_timeout: float = 10.0
    max_redirects: int = 5
    max_html_bytes: int = 2_000_000

    # JS-rendering reader
    jina_enabled: bool = True
    jina_api_key: str = ""
    jina_timeout: float = 15.0

    # Enrichment engine
    enrich_batch_size: int = 10
    enrich_max_retries: int = 5
    enrich_item_delay: float = 0.05
    garbage_sample_size: int = 20
    stale_lease_minutes: int = 15
    fallback_retry_hours: int = 24

    # Embeddings
    embeddings_provider: str = "voyage"
    voyage_api_key: str = ""
    voyage_model: str = "voyage-3-large"
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_timeout: float = 15.0
    embedding_batch_limit: int = 50
    embedding_window_days: int = 7
    embedding_item_delay: float = 0.1

    # Clustering
    cluster_window_days: int = 7
    similarity_threshold: float = 0.8

    # Workers
    worker_mode: str = "once"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Load and validate configuration from environment variables"""
        env = os.environ if env is None else env
        voyage_key = env.get("VOYAGE_API_KEY", "").strip()
        config = cls(
            pg_dsn=env.get("PG_DSN", DEFAULT_PG_DSN),
            cron_secret=env.get("CRON_SECRET", "").strip(),
            offline=_env_bool(env, "LINKPULSE_OFFLINE", False),
            request_timeout=float(env.get("REQUEST_TIMEOUT", "10")),
            metadata_timeout=float(env.get("METADATA_TIMEOUT", "10")),
            jina_enabled=_env_bool(env, "JINA_ENABLED", True),
            jina_api_key=env.get("JINA_API_KEY", "").strip(),
            jina_timeout=float(env.get("JINA_TIMEOUT", "15")),
            enrich_batch_size=int(env.get("ENRICH_BATCH_SIZE", "10")),
            enrich_max_retries=int(env.get("ENRICH_MAX_RETRIES", "5")),
            enrich_item_delay=float(env.get("ENRICH_ITEM_DELAY", "0.05")),
            garbage_sample_size=int(env.get("GARBAGE_SAMPLE_SIZE", "20")),
            stale_lease_minutes=int(env.get("STALE_LEASE_MINUTES", "15")),
            fallback_retry_hours=int(env.get("FALLBACK_RETRY_HOURS", "24")),
            embeddings_provider=(env.get("EMBEDDINGS_PROVIDER") or ("voyage" if voyage_key else "openai")).strip().lower(),
            voyage_api_key=voyage_key,
            voyage_model=env.get("VOYAGE_MODEL", "voyage-3-large"),
            openai_api_key=env.get("OPENAI_API_KEY", "").strip(),
            openai_embedding_model=env.get("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_timeout=float(env.get("EMBEDDING_TIMEOUT", "15")),
            embedding_batch_limit=int(env.get("EMBEDDING_BATCH_LIMIT", "50")),
            embedding_window_days=int(env.get("EMBEDDING_WINDOW_DAYS", "7")),
            embedding_item_delay=float(env.get("EMBEDDING_ITEM_DELAY", "0.1")),
            cluster_window_days=int(env.get("CLUSTER_WINDOW_DAYS", "7")),
            similarity_threshold=float(env.get("SIMILARITY_THRESHOLD", "0.8")),
            worker_mode=(env.get("WORKER_MODE") or "once").strip().lower(),
        )
        config._validate()
        return config

    def _validate(self):
        """Validate configuration values"""
        errors = []
        if not self.pg_dsn:
            errors.append("PG_DSN is required")
        if self.embeddings_provider not in ("voyage", "openai"):
            errors.append(f"EMBEDDINGS_PROVIDER must be 'voyage' or 'openai', got {self.embeddings_provider!r}")
        if not 0.0 < self.similarity_threshold <= 1.0:
            errors.append("SIMILARITY_THRESHOLD must be in (0, 1]")
        if self.enrich_batch_size < 1:
            errors.append("ENRICH_BATCH_SIZE must be positive")
        if self.enrich_max_retries < 1:
            errors.append("ENRICH_MAX_RETRIES must be positive")
        if self.max_redirects < 0:
            errors.append("max_redirects cannot be negative")
        for name in ("request_timeout", "metadata_timeout", "jina_timeout", "embedding_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")
        if self.worker_mode not in ("once", "scheduled", "daemon"):
            errors.append(f"WORKER_MODE must be once|scheduled, got {self.worker_mode!r}")
        if errors:
            raise ValueError("Configuration errors: " + "; ".join(errors))

    @property
    def has_embedding_keys(self) -> bool:
        return bool(self.voyage_api_key or self.openai_api_key)
