from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class LinkCandidate:
    url: str
    context: Optional[str] = None

    @classmethod
    def coerce(cls, item: Any) -> "LinkCandidate":
        if isinstance(item, LinkCandidate):
            return item
        if isinstance(item, str):
            return cls(url=item)
        if isinstance(item, dict):
            ctx = item.get("context")
            return cls(url=str(item.get("url") or ""), context=str(ctx) if ctx else None)
        raise TypeError(f"cannot build a LinkCandidate from {type(item).__name__}")


@dataclass
class IngestSummary:
    total: int = 0
    new: int = 0
    blacklisted: int = 0
    existing: int = 0
    mentions: int = 0
    duplicate_mentions: int = 0
    self_links: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)
