"""Cross-source velocity scoring.

Velocity is the number of distinct Sources that mentioned a Link inside the
window; weighted velocity sums a recency weight per Source, taken from that
Source's most recent Mention.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from linkpulse.storage.records import Link, MentionObservation


# (max age in hours, weight); anything older inside the window gets FLOOR_WEIGHT
DECAY_STEPS: Sequence[Tuple[int, float]] = ((24, 1.0), (48, 0.7), (72, 0.4))
FLOOR_WEIGHT = 0.2

TRENDING_MIN_VELOCITY = 2
TRENDING_MIN_WEIGHTED = 1.5
TRENDING_WINDOW_DAYS = 7


def time_weight(age: timedelta) -> float:
    hours = age.total_seconds() / 3600.0
    for max_hours, weight in DECAY_STEPS:
        if hours <= max_hours:
            return weight
    return FLOOR_WEIGHT


def is_trending(velocity: int, weighted_velocity: float) -> bool:
    return velocity >= TRENDING_MIN_VELOCITY and weighted_velocity >= TRENDING_MIN_WEIGHTED


def score_mentions(observations: Iterable[MentionObservation], *, now: datetime) -> Tuple[int, float]:
    """Return (velocity, weighted_velocity) for one Link's Mentions."""
    latest: Dict[str, datetime] = {}
    for obs in observations:
        prev = latest.get(obs.source_id)
        if prev is None or obs.seen_at > prev:
            latest[obs.source_id] = obs.seen_at
    weighted = sum(time_weight(now - seen) for seen in latest.values())
    # round away float noise so equal scores compare equal when ranking
    return len(latest), round(weighted, 6)


@dataclass
class VelocityLink:
    link: Link
    velocity: int
    weighted_velocity: float
    is_trending: bool
    hours_since_first_mention: float
    source_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out = self.link.to_dict()
        out.update(
            {
                "velocity": self.velocity,
                "weighted_velocity": self.weighted_velocity,
                "is_trending": self.is_trending,
                "hours_since_first_mention": round(self.hours_since_first_mention, 2),
                "source_names": self.source_names,
            }
        )
        return out


def rank_key(item: VelocityLink):
    return (
        -item.weighted_velocity,
        -item.velocity,
        -item.link.first_seen_at.timestamp(),
        -item.link.id,
    )


class VelocityScorer:
    def __init__(self, store):
        self.store = store

    def get_velocity_links(
        self,
        window_start: datetime,
        limit: int = 50,
        filters: Optional[Dict[str, Any]] = None,
        *,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[VelocityLink]:
        """Ranked Links first seen since ``window_start``.

        Supported filters: ``domain``, ``source_id``, ``min_velocity``,
        ``trending_only``. Blocked and untitled Links never appear.
        """
        now = now or datetime.now(timezone.utc)
        filters = dict(filters or {})
        min_velocity = int(filters.pop("min_velocity", 1) or 1)
        trending_only = bool(filters.pop("trending_only", False))

        scored: List[VelocityLink] = []
        for link, observations in self.store.velocity_candidates(window_start, filters):
            if link.is_blocked or not link.display_title:
                continue
            velocity, weighted = score_mentions(observations, now=now)
            if velocity < min_velocity:
                continue
            trending = is_trending(velocity, weighted)
            if trending_only and not trending:
                continue
            first_mention = min((o.first_seen_at or o.seen_at for o in observations), default=link.first_seen_at)
            scored.append(
                VelocityLink(
                    link=link,
                    velocity=velocity,
                    weighted_velocity=weighted,
                    is_trending=trending,
                    hours_since_first_mention=max(0.0, (now - first_mention).total_seconds() / 3600.0),
                    source_names=sorted({o.source_name for o in observations}),
                )
            )
        scored.sort(key=rank_key)
        offset = max(0, int(offset))
        return scored[offset: offset + max(0, int(limit))]

    def get_trending_links(self, limit: int = 20, *, now: Optional[datetime] = None) -> List[VelocityLink]:
        now = now or datetime.now(timezone.utc)
        return self.get_velocity_links(
            now - timedelta(days=TRENDING_WINDOW_DAYS),
            limit,
            {"trending_only": True},
            now=now,
        )
