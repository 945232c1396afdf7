"""Retrieval augmentation: index a user's content and fetch context for a query."""

import logging
from typing import List, Sequence

from sqlalchemy.exc import SQLAlchemyError

from twincast.config import settings
from twincast.errors import TwincastError
from twincast.services.chunking import chunk_contents
from twincast.services.embeddings import EmbeddingService
from twincast.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class RetrievalService:
    """Chunk, embed and index content per owner; retrieve owner-scoped context."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        index: VectorIndex,
        max_chunk_chars: int = settings.MAX_CHUNK_CHARS,
    ):
        """Initialize retrieval."""
        self.embedding_service = embedding_service
        self.index = index
        self.max_chunk_chars = max_chunk_chars

    def index_contents(self, owner_fid: int, texts: Sequence[str]) -> int:
        """
        Rebuild the owner's vectors from ``texts``.

        Returns:
            Number of chunks indexed

        Raises:
            ExternalServiceError: If embedding fails
        """
        chunks = chunk_contents(texts, owner_fid, self.max_chunk_chars)
        if not chunks:
            self.index.delete_owner(owner_fid)
            logger.warning(f"No content to index for fid {owner_fid}")
            return 0

        vectors = self.embedding_service.embed_texts([c.text for c in chunks])
        return self.index.upsert(owner_fid, chunks, vectors)

    def retrieve(self, owner_fid: int, query: str, top_k: int = settings.RETRIEVAL_TOP_K) -> List[str]:
        """
        Fetch the chunks of ``owner_fid`` most relevant to ``query``.

        Context is optional for answering, so failures yield an empty list.
        """
        try:
            vector = self.embedding_service.embed_query(query)
            contexts = self.index.query(owner_fid, vector, top_k)
        except (TwincastError, SQLAlchemyError) as e:
            logger.error(f"Error retrieving context for fid {owner_fid}: {e}")
            return []

        logger.info(f"Retrieved {len(contexts)} relevant chunks for fid {owner_fid}")
        return contexts
