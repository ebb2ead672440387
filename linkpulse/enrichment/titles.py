"""Display-title helpers shared by enrichment and clustering."""

from __future__ import annotations

import html
import re
from typing import Optional
from urllib.parse import unquote, urlparse

from linkpulse.ingestion.url_utils import extract_domain


_SUFFIX_SEPARATORS = (" - ", " | ", " — ", " – ")
_MAX_SUFFIX_WORDS = 5
_MAX_SUFFIX_CHARS = 40

_SLUG_NOISE = re.compile(r"\.(html?|php|aspx?|jsp)$", re.IGNORECASE)
_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-f]{8,}|[0-9a-f-]{20,})$", re.IGNORECASE)
_GENERIC_SEGMENTS = {"index", "amp", "story", "article", "post", "p", "news", "blog"}


def decode_html_entities(text: Optional[str]) -> str:
    """Decode named, decimal and hex entities. Double-encoded input is decoded twice."""
    if not text:
        return ""
    out = html.unescape(text)
    if "&" in out and out != text:
        out = html.unescape(out)
    return out


def strip_publication_suffix(title: Optional[str]) -> str:
    """Drop a trailing " - CNN" style publication name from a title."""
    t = (title or "").strip()
    for sep in _SUFFIX_SEPARATORS:
        idx = t.rfind(sep)
        if idx <= 0:
            continue
        head, tail = t[:idx].strip(), t[idx + len(sep):].strip()
        if not head or not tail:
            continue
        if len(tail) > _MAX_SUFFIX_CHARS or len(tail.split()) > _MAX_SUFFIX_WORDS:
            continue
        # the remaining title must still carry more text than the suffix
        if len(head) < len(tail):
            continue
        return head
    return t


def clean_story_title(title: Optional[str]) -> str:
    return strip_publication_suffix(decode_html_entities(title))


def format_url_as_title(url: str) -> str:
    """Derive a readable title from the URL path, falling back to the domain."""
    try:
        path = urlparse(url or "").path or ""
    except ValueError:
        path = ""
    segments = [s for s in path.split("/") if s]
    for seg in reversed(segments):
        seg = _SLUG_NOISE.sub("", unquote(seg))
        if not seg or _ID_SEGMENT.match(seg) or seg.lower() in _GENERIC_SEGMENTS:
            continue
        words = [w for w in re.split(r"[-_+\s]+", seg) if w]
        if not words:
            continue
        return " ".join(w if w.isupper() else w.capitalize() for w in words)
    return extract_domain(url) or url
