"""HTML fetch + page metadata extraction.

Policy:
- Only http(s) to public hosts is fetched (SSRF guard).
- Bodies are read up to a byte cap; we only need the <head>.
- Metadata comes from trafilatura, with Open Graph tags as a fallback.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from html import unescape
from typing import Optional

import requests
import trafilatura

from linkpulse.ingestion.url_utils import exclusion_reason


@dataclass(frozen=True)
class PageMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    site_name: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    html: Optional[str]
    status: str
    final_url: Optional[str] = None
    error: Optional[str] = None


_META_PATTERNS = {
    "og_title": [
        r'<meta[^>]+property=["\']og:title["\'][^>]+content=["\']([^"\']+)["\']',
        r'<meta[^>]+content=["\']([^"\']+)["\'][^>]+property=["\']og:title["\']',
    ],
    "title": [r"<title[^>]*>([^<]+)</title>"],
    "description": [
        r'<meta[^>]+property=["\']og:description["\'][^>]+content=["\']([^"\']+)["\']',
        r'<meta[^>]+name=["\']description["\'][^>]+content=["\']([^"\']+)["\']',
        r'<meta[^>]+content=["\']([^"\']+)["\'][^>]+name=["\']description["\']',
    ],
    "image": [
        r'<meta[^>]+property=["\']og:image["\'][^>]+content=["\']([^"\']+)["\']',
        r'<meta[^>]+content=["\']([^"\']+)["\'][^>]+property=["\']og:image["\']',
    ],
    "author": [
        r'<meta[^>]+name=["\']author["\'][^>]+content=["\']([^"\']+)["\']',
        r'<meta[^>]+property=["\']article:author["\'][^>]+content=["\']([^"\']+)["\']',
    ],
    "published": [
        r'<meta[^>]+property=["\']article:published_time["\'][^>]+content=["\']([^"\']+)["\']',
        r'<meta[^>]+name=["\'](?:date|pubdate|publish-date)["\'][^>]+content=["\']([^"\']+)["\']',
    ],
}


def _first_match(html: str, key: str) -> Optional[str]:
    for pat in _META_PATTERNS[key]:
        m = re.search(pat, html, re.IGNORECASE)
        if m:
            val = unescape(m.group(1)).strip()
            if val:
                return val
    return None


def parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value).strip()
    if not s:
        return None
    s = s.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_page_metadata(html: str, *, url: Optional[str] = None) -> PageMetadata:
    """Extract title/description/image/author/date from an HTML document."""
    if not html or not html.strip():
        return PageMetadata()
    doc = trafilatura.extract_metadata(html, default_url=url)
    title = getattr(doc, "title", None) if doc else None
    description = getattr(doc, "description", None) if doc else None
    image = getattr(doc, "image", None) if doc else None
    author = getattr(doc, "author", None) if doc else None
    date = getattr(doc, "date", None) if doc else None
    site_name = getattr(doc, "sitename", None) if doc else None

    title = _first_match(html, "og_title") or title or _first_match(html, "title")
    return PageMetadata(
        title=(title or "").strip() or None,
        description=description or _first_match(html, "description"),
        image_url=image or _first_match(html, "image"),
        author=author or _first_match(html, "author"),
        published_at=parse_datetime(date) or parse_datetime(_first_match(html, "published")),
        site_name=site_name,
    )


def fetch_html(
    url: str,
    *,
    session=None,
    timeout: float = 10.0,
    max_bytes: int = 2_000_000,
    user_agent: str = "linkpulse/1.0",
) -> FetchResult:
    if not url:
        return FetchResult(html=None, status="error", error="empty_url")
    err = exclusion_reason(url)
    if err:
        return FetchResult(html=None, status="blocked", error=err)
    http = session or requests
    try:
        with http.get(
            url,
            headers={"User-Agent": user_agent, "Accept": "text/html,application/xhtml+xml"},
            timeout=(5, timeout),
            allow_redirects=True,
            stream=True,
        ) as resp:
            status_code = resp.status_code
            if status_code >= 400:
                return FetchResult(html=None, status=f"http_{status_code}", error=f"http_{status_code}")
            # Size guardrail: keep what we have once the cap is hit, the head is at the top
            content = b""
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                content += chunk
                if len(content) > max_bytes:
                    break
            encoding = resp.encoding or "utf-8"
            final_url = getattr(resp, "url", None) or url
        try:
            html = content.decode(encoding, errors="replace")
        except LookupError:
            html = content.decode("utf-8", errors="replace")
        if not html.strip():
            return FetchResult(html=None, status="empty", error="empty_html")
        return FetchResult(html=html, status="ok", final_url=final_url)
    except requests.RequestException as e:
        return FetchResult(html=None, status="error", error=str(e))
