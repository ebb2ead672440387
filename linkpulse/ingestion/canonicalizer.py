"""Resolve raw URLs to a canonical identity plus lightweight page metadata.

canonicalize() never raises: network problems, bad input and error pages all
come back as status="failed" with the best URL we could establish.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urljoin

import requests

from linkpulse.config import PipelineConfig
from linkpulse.extraction.html_metadata import PageMetadata, extract_page_metadata, fetch_html
from linkpulse.ingestion.url_utils import (
    canonicalize_url,
    exclusion_reason,
    extract_domain,
    unwrap_tracking_redirect,
)

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
# Servers that refuse HEAD usually answer GET fine
HEAD_REFUSED_STATUSES = {403, 405, 501}


@dataclass(frozen=True)
class CanonicalResult:
    canonical_url: str
    domain: str
    status: str  # success|failed
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        if self.published_at:
            out["published_at"] = self.published_at.isoformat()
        return out


def _failed(url: str, error: str) -> CanonicalResult:
    return CanonicalResult(canonical_url=url, domain=extract_domain(url), status="failed", error=error)


class Canonicalizer:
    def __init__(self, config: Optional[PipelineConfig] = None, *, session=None):
        self.config = config or PipelineConfig()
        self.session = session if session is not None else requests.Session()
        self.headers = {"User-Agent": self.config.user_agent}

    def canonicalize(self, raw_url: str) -> CanonicalResult:
        raw = (raw_url or "").strip()
        normalized = canonicalize_url(raw)
        if not normalized:
            return _failed("", "invalid_url")
        reason = exclusion_reason(raw)
        if reason:
            return _failed(normalized, reason)

        start = unwrap_tracking_redirect(raw) or raw
        if self.config.offline:
            url = canonicalize_url(start) or normalized
            return CanonicalResult(canonical_url=url, domain=extract_domain(url), status="success")

        try:
            final_url, status_code = self._resolve(start)
        except requests.RequestException as e:
            logger.warning(f"redirect resolution failed for {raw}: {e}")
            return _failed(normalized, f"redirect_failed: {e}")
        except Exception as e:
            logger.warning(f"unexpected canonicalization error for {raw}: {e}")
            return _failed(normalized, f"unexpected: {e}")

        canonical = canonicalize_url(final_url) or normalized
        blocked = exclusion_reason(final_url)
        if blocked:
            return _failed(normalized, f"redirected_to_{blocked}")
        if status_code is not None and status_code >= 400:
            return _failed(canonical, f"http_{status_code}")

        meta = self._fetch_metadata(final_url)
        return CanonicalResult(
            canonical_url=canonical,
            domain=extract_domain(canonical),
            status="success",
            title=meta.title,
            description=meta.description,
            image_url=meta.image_url,
            author=meta.author,
            published_at=meta.published_at,
        )

    def _request(self, url: str, *, first_hop: bool):
        timeout = (5, self.config.request_timeout)
        try:
            resp = self.session.head(url, headers=self.headers, timeout=timeout, allow_redirects=False)
            if resp.status_code not in HEAD_REFUSED_STATUSES:
                return resp
        except requests.RequestException:
            if not first_hop:
                raise
            logger.debug(f"HEAD failed for {url}, retrying with GET")
        resp = self.session.get(url, headers=self.headers, timeout=timeout, allow_redirects=False, stream=True)
        resp.close()
        return resp

    def _resolve(self, url: str) -> Tuple[str, Optional[int]]:
        """Follow redirects by hand so every hop can be unwrapped and checked."""
        current = url
        seen = set()
        for hop in range(self.config.max_redirects + 1):
            if current in seen:
                logger.warning(f"redirect loop detected at {current}")
                return current, None
            seen.add(current)
            if exclusion_reason(current):
                return current, None
            resp = self._request(current, first_hop=(hop == 0))
            if resp.status_code not in REDIRECT_STATUSES:
                return current, resp.status_code
            location = resp.headers.get("Location") or resp.headers.get("location")
            if not location:
                return current, resp.status_code
            nxt = urljoin(current, location)
            current = unwrap_tracking_redirect(nxt) or nxt
        logger.warning(f"redirect depth {self.config.max_redirects} exceeded for {url}")
        return current, None

    def _fetch_metadata(self, url: str) -> PageMetadata:
        # Metadata degrades independently of URL resolution.
        try:
            res = fetch_html(
                url,
                session=self.session,
                timeout=self.config.metadata_timeout,
                max_bytes=self.config.max_html_bytes,
                user_agent=self.config.user_agent,
            )
            if not res.html:
                logger.info(f"no metadata for {url}: {res.error}")
                return PageMetadata()
            return extract_page_metadata(res.html, url=url)
        except Exception as e:
            logger.warning(f"metadata extraction failed for {url}: {e}")
            return PageMetadata()
