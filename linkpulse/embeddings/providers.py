"""Embedding providers (voyage-3-large by default, OpenAI as fallback)."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from tenacity import retry, stop_after_attempt, wait_exponential

from linkpulse.config import PipelineConfig

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 8000


class EmbeddingProvider:
    name: str = "base"

    def embed(self, text: str) -> List[float]:
        raise NotImplementedError


class VoyageEmbeddingProvider(EmbeddingProvider):
    name = "voyage"

    def __init__(self, api_key: str, *, model: str = "voyage-3-large", timeout: float = 15.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            import voyageai as _voy
            self._client = _voy.Client(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=8), reraise=True)
    def embed(self, text: str) -> List[float]:
        res = self._get_client().embed(texts=[text[:MAX_INPUT_CHARS]], model=self.model)
        return list(res.embeddings[0])


class OpenAIEmbeddingProvider(EmbeddingProvider):
    name = "openai"

    def __init__(self, api_key: str, *, model: str = "text-embedding-3-small", timeout: float = 15.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            import openai as _openai
            self._client = _openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=8), reraise=True)
    def embed(self, text: str) -> List[float]:
        resp = self._get_client().embeddings.create(model=self.model, input=text[:MAX_INPUT_CHARS])
        return list(resp.data[0].embedding)


class EmbeddingClient:
    """Provider-aware embed with fallback down the list."""

    def __init__(self, providers: Sequence[EmbeddingProvider]):
        self.providers = list(providers)

    def __bool__(self) -> bool:
        return bool(self.providers)

    def embed(self, text: str) -> Optional[List[float]]:
        text = (text or "").strip()
        if not text:
            return None
        for provider in self.providers:
            try:
                vec = provider.embed(text)
            except Exception as e:
                logger.warning(f"{provider.name} embed failed: {e}")
                continue
            if vec:
                return vec
        return None


def build_embedding_client(config: PipelineConfig) -> Optional[EmbeddingClient]:
    """Return None when no provider key is configured (the stage becomes a no-op).

    Note: mixing providers yields vectors of different dimensions; the
    configured primary is used first and the other only when it fails.
    """
    if config.offline:
        return None
    voyage = (
        VoyageEmbeddingProvider(config.voyage_api_key, model=config.voyage_model, timeout=config.embedding_timeout)
        if config.voyage_api_key
        else None
    )
    openai = (
        OpenAIEmbeddingProvider(config.openai_api_key, model=config.openai_embedding_model, timeout=config.embedding_timeout)
        if config.openai_api_key
        else None
    )
    ordered = [voyage, openai] if config.embeddings_provider == "voyage" else [openai, voyage]
    providers = [p for p in ordered if p is not None]
    if not providers:
        return None
    return EmbeddingClient(providers)
