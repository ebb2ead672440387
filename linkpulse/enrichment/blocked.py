"""Blocked-content title classification.

Pages behind robot checks, paywalls or error screens still return a <title>;
those titles must never be accepted as display titles. Patterns are checked in
order and the first match decides the reason.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional, Pattern, Tuple


class BlockedReason(str, Enum):
    ROBOT = "robot"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "404"
    EXPIRED = "expired"
    PAYWALL = "paywall"
    GARBAGE = "garbage"


def _p(expr: str) -> Pattern[str]:
    return re.compile(expr, re.IGNORECASE)


BLOCKED_TITLE_PATTERNS: List[Tuple[Pattern[str], BlockedReason]] = [
    # robot checks / bot walls
    (_p(r"are you a robot"), BlockedReason.ROBOT),
    (_p(r"captcha"), BlockedReason.ROBOT),
    (_p(r"just a moment"), BlockedReason.ROBOT),
    (_p(r"checking your browser"), BlockedReason.ROBOT),
    (_p(r"verify you are human"), BlockedReason.ROBOT),
    (_p(r"cloudflare"), BlockedReason.ROBOT),
    (_p(r"ddos protection"), BlockedReason.ROBOT),
    (_p(r"please update your browser"), BlockedReason.ROBOT),
    # access denied
    (_p(r"access denied"), BlockedReason.ACCESS_DENIED),
    (_p(r"403 forbidden"), BlockedReason.ACCESS_DENIED),
    (_p(r"age verification"), BlockedReason.ACCESS_DENIED),
    (_p(r"restricted content"), BlockedReason.ACCESS_DENIED),
    # not found / error pages
    (_p(r"page not found"), BlockedReason.NOT_FOUND),
    (_p(r"404 error"), BlockedReason.NOT_FOUND),
    (_p(r"^404\b"), BlockedReason.NOT_FOUND),
    (_p(r"error \d{3}"), BlockedReason.NOT_FOUND),
    # expired links
    (_p(r"link.*has expired"), BlockedReason.EXPIRED),
    # paywalls / login walls
    (_p(r"subscribe to continue"), BlockedReason.PAYWALL),
    (_p(r"subscribe to read"), BlockedReason.PAYWALL),
    (_p(r"subscription required"), BlockedReason.PAYWALL),
    (_p(r"please log in"), BlockedReason.PAYWALL),
    (_p(r"sign in to continue"), BlockedReason.PAYWALL),
    (_p(r"sign in to read"), BlockedReason.PAYWALL),
    (_p(r"create.*account to"), BlockedReason.PAYWALL),
    (_p(r"members only"), BlockedReason.PAYWALL),
    # placeholder titles
    (_p(r"^untitled$"), BlockedReason.GARBAGE),
    (_p(r"^home$"), BlockedReason.GARBAGE),
    (_p(r"^index$"), BlockedReason.GARBAGE),
    (_p(r"^loading"), BlockedReason.GARBAGE),
    (_p(r"^please wait"), BlockedReason.GARBAGE),
    (_p(r"^redirecting"), BlockedReason.GARBAGE),
]


def classify_title(title: Optional[str]) -> Optional[BlockedReason]:
    """Return the blocked reason for a title, or None when it looks like real content."""
    t = (title or "").strip()
    if not t:
        return None
    for pattern, reason in BLOCKED_TITLE_PATTERNS:
        if pattern.search(t):
            return reason
    return None


def is_blocked_title(title: Optional[str]) -> bool:
    return classify_title(title) is not None
