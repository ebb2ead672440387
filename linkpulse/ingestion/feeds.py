"""RSS/Atom polling for feed Sources.

Feeds are newsletters and link blogs: the interesting URLs are the ones an
entry links out to, so entry content is mined for hrefs and the entry's own
link is only used when the body has none.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import feedparser
import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from linkpulse.ingestion.link_types import LinkCandidate
from linkpulse.storage.records import Source

logger = logging.getLogger(__name__)

_HREF = re.compile(r"""href=["']([^"']+)["']""", re.IGNORECASE)

SKIP_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        # images / assets
        r"\.(jpg|jpeg|png|gif|webp|heic|svg|ico|bmp)(\?|$)",
        r"substackcdn\.com",
        r"substack-post-media\.s3",
        r"cloudinary\.com.*/image/",
        r"fonts\.googleapis\.com",
        r"fonts\.gstatic\.com",
        # subscription / auth pages
        r"/subscribe/?(\?|$)",
        r"/login/?(\?|$)",
        r"/account/?(\?|$)",
        r"/settings/?(\?|$)",
        r"/email-capture",
        # social profiles
        r"linkedin\.com",
        r"twitter\.com/(?!.*/status/)",
        r"instagram\.com/[^/]+/?$",
        # email tracking hosts
        r"trk\.email\.",
        r"click\.email\.",
        r"email\.mg\.",
        # newsletter platforms themselves
        r"substack\.com/p/",
        r"beehiiv\.com",
        r"buttondown\.email",
        r"convertkit\.com",
        r"mailchi\.mp",
        r"campaign-archive\.com",
    )
]


@dataclass
class FeedFetchResult:
    source_id: str
    links: List[LinkCandidate] = field(default_factory=list)
    entries: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def should_skip_url(url: str) -> bool:
    return any(p.search(url) for p in SKIP_URL_PATTERNS)


def extract_links_from_html(content: Optional[str]) -> List[str]:
    """Outbound http(s) links in document order, de-duplicated."""
    seen = set()
    out: List[str] = []
    for m in _HREF.finditer(content or ""):
        href = m.group(1).strip()
        if not href.startswith(("http://", "https://")):
            continue
        if should_skip_url(href) or href in seen:
            continue
        seen.add(href)
        out.append(href)
    return out


def _entry_html(entry) -> str:
    content = entry.get("content") or []
    parts = [c.get("value") or "" for c in content if isinstance(c, dict)]
    if not any(parts):
        parts = [entry.get("summary") or entry.get("description") or ""]
    return "\n".join(parts)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=8),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    reraise=True,
)
def _download(url: str, *, timeout: float, user_agent: str, session=None) -> bytes:
    http = session or requests
    resp = http.get(url, headers={"User-Agent": user_agent}, timeout=(5, timeout))
    resp.raise_for_status()
    return resp.content


def fetch_feed_links(
    source: Source,
    *,
    limit: int = 200,
    timeout: float = 15.0,
    user_agent: str = "linkpulse/1.0",
    session=None,
) -> FeedFetchResult:
    result = FeedFetchResult(source_id=source.id)
    if not source.url:
        result.error = "missing_feed_url"
        return result
    try:
        body = _download(source.url, timeout=timeout, user_agent=user_agent, session=session)
    except requests.RequestException as e:
        logger.warning(f"feed download failed for {source.id} ({source.url}): {e}")
        result.error = str(e)
        return result

    parsed = feedparser.parse(body)
    if parsed.get("bozo") and not parsed.entries:
        result.error = f"unparseable_feed: {parsed.get('bozo_exception')}"
        return result

    seen = set()
    for entry in parsed.entries or []:
        result.entries += 1
        title = (entry.get("title") or "").strip() or None
        urls = extract_links_from_html(_entry_html(entry))
        if not urls and entry.get("link"):
            urls = [str(entry.get("link")).strip()]
        for url in urls:
            if url in seen:
                continue
            seen.add(url)
            result.links.append(LinkCandidate(url=url, context=title))
            if len(result.links) >= limit:
                return result
    return result
