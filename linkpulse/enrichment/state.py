"""Enrichment lifecycle states and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class EnrichmentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FALLBACK = "fallback"


class InvalidTransition(ValueError):
    pass


ALLOWED_TRANSITIONS: Dict[EnrichmentStatus, FrozenSet[EnrichmentStatus]] = {
    EnrichmentStatus.PENDING: frozenset({EnrichmentStatus.PROCESSING}),
    # processing -> processing is a stale lease being reclaimed
    EnrichmentStatus.PROCESSING: frozenset(
        {
            EnrichmentStatus.PROCESSING,
            EnrichmentStatus.SUCCESS,
            EnrichmentStatus.FALLBACK,
            EnrichmentStatus.PENDING,
        }
    ),
    # back to pending only when the stored title is reclassified as garbage
    EnrichmentStatus.SUCCESS: frozenset({EnrichmentStatus.PENDING}),
    EnrichmentStatus.FALLBACK: frozenset({EnrichmentStatus.PROCESSING, EnrichmentStatus.PENDING}),
}


def coerce_status(value) -> EnrichmentStatus:
    if isinstance(value, EnrichmentStatus):
        return value
    return EnrichmentStatus(str(value or "pending").strip().lower())


def can_transition(current, target) -> bool:
    return coerce_status(target) in ALLOWED_TRANSITIONS[coerce_status(current)]


def transition(current, target) -> EnrichmentStatus:
    """Validate a status change and return the target state."""
    cur = coerce_status(current)
    tgt = coerce_status(target)
    if tgt not in ALLOWED_TRANSITIONS[cur]:
        raise InvalidTransition(f"enrichment status cannot move from {cur.value} to {tgt.value}")
    return tgt
