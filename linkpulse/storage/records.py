"""Row types shared by the stores and pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from linkpulse.enrichment.blocked import BlockedReason
from linkpulse.enrichment.state import EnrichmentStatus
from linkpulse.ingestion.url_utils import extract_base_domain


@dataclass
class Link:
    id: int
    canonical_url: str
    original_url: str
    domain: str
    first_seen_at: datetime
    last_seen_at: datetime
    title: Optional[str] = None
    fallback_title: Optional[str] = None
    fallback_title_source: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    ai_summary: Optional[str] = None
    enrichment_status: EnrichmentStatus = EnrichmentStatus.PENDING
    enrichment_source: Optional[str] = None
    enrichment_retry_count: int = 0
    enrichment_last_attempt: Optional[datetime] = None
    enrichment_error: Optional[str] = None
    is_blocked: bool = False
    blocked_reason: Optional[BlockedReason] = None
    embedding: Optional[str] = None
    embedding_generated_at: Optional[datetime] = None
    canonical_status: Optional[str] = None
    canonical_error: Optional[str] = None

    @property
    def display_title(self) -> Optional[str]:
        return (self.title or "").strip() or (self.fallback_title or "").strip() or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "canonical_url": self.canonical_url,
            "original_url": self.original_url,
            "domain": self.domain,
            "title": self.title,
            "fallback_title": self.fallback_title,
            "display_title": self.display_title,
            "description": self.description,
            "image_url": self.image_url,
            "author": self.author,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "enrichment_status": self.enrichment_status.value,
            "is_blocked": self.is_blocked,
            "blocked_reason": self.blocked_reason.value if self.blocked_reason else None,
            "first_seen_at": self.first_seen_at.isoformat() if self.first_seen_at else None,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
        }


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    url: Optional[str] = None
    kind: str = "rss"
    include_own_links: bool = False
    show_on_dashboard: bool = True
    active: bool = True

    @property
    def base_domain(self) -> str:
        return extract_base_domain(self.url or "")


@dataclass(frozen=True)
class BlacklistEntry:
    type: str  # domain|url
    pattern: str
    id: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class MentionObservation:
    """One Source's Mentions of a Link inside a scoring window.

    ``seen_at`` is the latest Mention, ``first_seen_at`` the earliest.
    """

    source_id: str
    source_name: str
    seen_at: datetime
    first_seen_at: Optional[datetime] = None


@dataclass
class Story:
    id: int
    title: str
    first_link_at: datetime
    last_link_at: datetime
    status: str = "active"
    narrative: Optional[str] = None
    links: List[Link] = field(default_factory=list)
    combined_velocity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "narrative": self.narrative,
            "status": self.status,
            "first_link_at": self.first_link_at.isoformat() if self.first_link_at else None,
            "last_link_at": self.last_link_at.isoformat() if self.last_link_at else None,
            "combined_velocity": self.combined_velocity,
            "links": [link.to_dict() for link in self.links],
        }
