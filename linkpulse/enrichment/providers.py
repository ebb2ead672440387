"""Metadata providers for the enrichment engine.

Every provider exposes ``fetch_metadata(url) -> EnrichmentResult | None``:
``None`` means the provider ran but found nothing usable, an exception means
the provider itself failed (timeout, 5xx, rate limit).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
from urllib.parse import quote

import requests

from linkpulse.config import PipelineConfig
from linkpulse.enrichment.titles import format_url_as_title
from linkpulse.extraction.html_metadata import extract_page_metadata, fetch_html, parse_datetime

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    pass


@dataclass(frozen=True)
class EnrichmentResult:
    status: str  # success|fallback
    source: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None


class MetadataProvider:
    name: str = "base"

    def fetch_metadata(self, url: str) -> Optional[EnrichmentResult]:
        raise NotImplementedError


class DirectFetchProvider(MetadataProvider):
    """Plain GET of the page and <head> metadata parsing."""

    name = "html"

    def __init__(self, *, timeout: float = 10.0, max_bytes: int = 2_000_000, user_agent: str = "linkpulse/1.0", session=None):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent
        self.session = session

    def fetch_metadata(self, url: str) -> Optional[EnrichmentResult]:
        res = fetch_html(url, session=self.session, timeout=self.timeout, max_bytes=self.max_bytes, user_agent=self.user_agent)
        if res.status == "error" or res.status.startswith("http_5") or res.status == "http_429":
            raise ProviderError(f"{self.name}: {res.error}")
        if not res.html:
            return None
        meta = extract_page_metadata(res.html, url=res.final_url or url)
        if not meta.title:
            return None
        return EnrichmentResult(
            status="success",
            source=self.name,
            title=meta.title,
            description=meta.description,
            image_url=meta.image_url,
            author=meta.author,
            published_at=meta.published_at,
        )


class JinaReaderProvider(MetadataProvider):
    """JS-rendering fetch through the r.jina.ai reader service."""

    name = "jina"
    endpoint = "https://r.jina.ai/"

    def __init__(self, *, api_key: str = "", timeout: float = 15.0, session=None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session

    def fetch_metadata(self, url: str) -> Optional[EnrichmentResult]:
        headers = {"Accept": "application/json", "X-Return-Format": "json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        http = self.session or requests
        try:
            resp = http.get(self.endpoint + quote(url, safe=":/?&=%"), headers=headers, timeout=(5, self.timeout))
        except requests.RequestException as e:
            raise ProviderError(f"{self.name}: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderError(f"{self.name}: http_{resp.status_code}")
        if resp.status_code >= 400:
            return None
        try:
            payload = resp.json() or {}
        except ValueError:
            return None
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return None
        title = (data.get("title") or "").strip()
        if not title:
            return None
        return EnrichmentResult(
            status="success",
            source=self.name,
            title=title,
            description=(data.get("description") or "").strip() or None,
            image_url=data.get("image") or None,
            published_at=parse_datetime(data.get("publishedTime")),
        )


def url_path_fallback(url: str) -> EnrichmentResult:
    return EnrichmentResult(status="fallback", source="url_path", title=format_url_as_title(url))


class ProviderChain:
    """Ordered providers, first usable result wins.

    If every provider raised, the chain raises too so the caller can retry
    later. If at least one provider answered but none had data, the URL path
    is turned into a low-confidence fallback title.
    """

    def __init__(self, providers: Sequence[MetadataProvider]):
        self.providers: List[MetadataProvider] = list(providers)

    def __bool__(self) -> bool:
        return bool(self.providers)

    def fetch_metadata(self, url: str) -> EnrichmentResult:
        errors = []
        for provider in self.providers:
            try:
                result = provider.fetch_metadata(url)
            except Exception as e:
                logger.warning(f"provider {provider.name} failed for {url}: {e}")
                errors.append(f"{provider.name}: {e}")
                continue
            if result is not None and result.title:
                return result
        if errors and len(errors) == len(self.providers):
            raise ProviderError("; ".join(errors))
        return url_path_fallback(url)


def build_provider_chain(config: PipelineConfig, *, session=None) -> ProviderChain:
    if config.offline:
        return ProviderChain([])
    providers: List[MetadataProvider] = [
        DirectFetchProvider(
            timeout=config.metadata_timeout,
            max_bytes=config.max_html_bytes,
            user_agent=config.user_agent,
            session=session,
        )
    ]
    if config.jina_enabled:
        providers.append(JinaReaderProvider(api_key=config.jina_api_key, timeout=config.jina_timeout, session=session))
    return ProviderChain(providers)
