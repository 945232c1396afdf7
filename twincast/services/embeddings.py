"""Embedding service for an OpenAI-compatible embeddings endpoint."""

import logging
from typing import List, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from twincast.config import settings
from twincast.errors import ExternalServiceError
from twincast.services.llm_client import is_retryable

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Service for generating text embeddings."""

    def __init__(
        self,
        api_key: str = settings.LLM_API_KEY,
        base_url: str = settings.LLM_BASE_URL,
        model: str = settings.EMBEDDING_MODEL,
        embed_dim: int = settings.EMBED_DIM,
        batch_size: int = settings.EMBEDDING_BATCH_SIZE,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the embedding service."""
        self.model = model
        self.embed_dim = embed_dim
        self.batch_size = batch_size
        self.http = http_client or httpx.Client(
            base_url=base_url,
            timeout=60.0,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        logger.info(f"Embedding service ready: {model} ({embed_dim} dimensions)")

    def close(self) -> None:
        self.http.close()

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order

        Raises:
            ExternalServiceError: On API errors or dimension mismatch
        """
        embeddings: List[List[float]] = []

        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            logger.info(f"Generating embeddings {start + 1}-{start + len(batch)}/{len(texts)}")

            try:
                vectors = self._request(batch)
            except httpx.HTTPStatusError as e:
                raise ExternalServiceError("embeddings", str(e), e.response.status_code) from e
            except (httpx.HTTPError, KeyError, ValueError) as e:
                raise ExternalServiceError("embeddings", str(e)) from e

            for embedding in vectors:
                if len(embedding) != self.embed_dim:
                    raise ExternalServiceError(
                        "embeddings",
                        f"Embedding dimension mismatch: expected {self.embed_dim}, got {len(embedding)}",
                    )
            embeddings.extend(vectors)

        return embeddings

    def embed_query(self, text: str) -> List[float]:
        """Embed a single query text."""
        return self.embed_texts([text])[0]

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _request(self, batch: List[str]) -> List[List[float]]:
        response = self.http.post(
            "/embeddings",
            json={"model": self.model, "input": batch, "dimensions": self.embed_dim},
        )
        response.raise_for_status()
        data = sorted(response.json()["data"], key=lambda item: item["index"])
        return [item["embedding"] for item in data]
