from __future__ import annotations

import hashlib
import math
import re
from typing import Protocol

import httpx

from learnai.config import Settings

_API_KEY_PATTERN = re.compile(r"\b(sk-[A-Za-z0-9]{6})[A-Za-z0-9_-]{10,}\b")


def redact_api_key(message: str) -> str:
    return _API_KEY_PATTERN.sub(r"\1…", message)


class EmbeddingProviderError(RuntimeError):
    def __init__(self, message: str, *, auth_failure: bool = False) -> None:
        super().__init__(redact_api_key(message))
        self.auth_failure = auth_failure


class EmbeddingClient(Protocol):
    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingClient:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    @property
    def model(self) -> str:
        return self._model

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            response = httpx.post(
                f"{self._base_url}/embeddings",
                json={"model": self._model, "input": texts},
                headers=headers,
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            raise EmbeddingProviderError(
                f"embedding request failed with status {status_code}: {exc}",
                auth_failure=status_code in {401, 403},
            ) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(str(exc)) from exc

        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise EmbeddingProviderError("Invalid embeddings payload: missing data")

        vectors: list[list[float]] = []
        for item in data:
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list) or not embedding:
                raise EmbeddingProviderError("Invalid embeddings payload: missing embedding vector")
            vectors.append([float(value) for value in embedding])

        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Invalid embeddings payload: expected {len(texts)} vectors, got {len(vectors)}"
            )

        return vectors


class HashingEmbeddingClient:
    """Deterministic, offline embeddings derived from SHA-256 digests.

    Only useful for local development: vectors carry no semantic meaning.
    """

    def __init__(self, *, dimensions: int = 64) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        self._dimensions = dimensions

    @property
    def model(self) -> str:
        return f"hashing-{self._dimensions}"

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        seed = hashlib.sha256(text.encode("utf-8")).digest()
        values: list[int] = []
        digest = seed

        while len(values) < self._dimensions:
            digest = hashlib.sha256(digest + seed).digest()
            values.extend(digest)

        vector = [((value / 127.5) - 1.0) for value in values[: self._dimensions]]
        norm = math.sqrt(sum(value * value for value in vector))
        if norm > 0:
            return [value / norm for value in vector]

        return vector


def create_embedding_client(settings: Settings) -> OpenAIEmbeddingClient | HashingEmbeddingClient:
    if settings.embed_provider == "hashing":
        return HashingEmbeddingClient(dimensions=settings.embed_dimensions)
    if settings.embed_provider != "openai":
        raise ValueError(f"Unsupported EMBED_PROVIDER: {settings.embed_provider!r}")
    return OpenAIEmbeddingClient(
        base_url=settings.openai_base_url,
        model=settings.openai_embed_model,
        api_key=settings.openai_api_key,
        timeout_seconds=settings.openai_timeout_seconds,
    )


def embedding_model_name(settings: Settings) -> str:
    if settings.embed_provider == "hashing":
        return HashingEmbeddingClient(dimensions=settings.embed_dimensions).model
    return settings.openai_embed_model
