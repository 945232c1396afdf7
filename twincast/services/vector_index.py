"""Per-owner vector index over the vector_records table."""

import logging
from typing import List, Sequence

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from twincast.config import settings
from twincast.models.vector import VectorRecord
from twincast.schemas.content import ContentChunk

logger = logging.getLogger(__name__)


def similarity_query(owner_fid: int, vector: Sequence[float], top_k: int):
    """pgvector query ordering the owner's chunks by cosine distance to ``vector``."""
    return (
        select(VectorRecord.text)
        .where(VectorRecord.owner_fid == owner_fid)
        .order_by(VectorRecord.embedding.cosine_distance([float(v) for v in vector]))
        .limit(top_k)
    )


class VectorIndex:
    """Cosine-similarity index whose records are always scoped to an owner."""

    def __init__(self, session_factory: sessionmaker, dim: int = settings.EMBED_DIM):
        """Initialize the index."""
        self.session_factory = session_factory
        self.dim = dim

    def upsert(self, owner_fid: int, chunks: Sequence[ContentChunk], vectors: Sequence[Sequence[float]]) -> int:
        """
        Store chunk vectors under deterministic ids.

        Re-running for the same owner overwrites earlier records; records with
        chunk numbers beyond the new chunk count are removed.

        Returns:
            Number of records written
        """
        if len(chunks) != len(vectors):
            raise ValueError(f"Mismatch: {len(chunks)} chunks but {len(vectors)} embeddings")

        db = self.session_factory()
        try:
            for chunk, vector in zip(chunks, vectors):
                if chunk.owner_fid != owner_fid:
                    raise ValueError(f"Chunk {chunk.vector_id} does not belong to fid {owner_fid}")
                if len(vector) != self.dim:
                    raise ValueError(f"Vector for {chunk.vector_id} has {len(vector)} dimensions, expected {self.dim}")
                db.merge(
                    VectorRecord(
                        id=chunk.vector_id,
                        owner_fid=owner_fid,
                        chunk_number=chunk.chunk_number,
                        text=chunk.text,
                        embedding=[float(v) for v in vector],
                    )
                )

            db.execute(
                delete(VectorRecord).where(
                    VectorRecord.owner_fid == owner_fid,
                    VectorRecord.chunk_number >= len(chunks),
                )
            )
            db.commit()
        finally:
            db.close()

        logger.info(f"Upserted {len(chunks)} vectors for fid {owner_fid}")
        return len(chunks)

    def query(self, owner_fid: int, vector: Sequence[float], top_k: int = settings.RETRIEVAL_TOP_K) -> List[str]:
        """
        Return the texts of the ``top_k`` most similar chunks of ``owner_fid``.

        Records of other owners are never considered.
        """
        db = self.session_factory()
        try:
            if db.get_bind().dialect.name == "postgresql":
                return list(db.execute(similarity_query(owner_fid, vector, top_k)).scalars().all())

            records = db.execute(
                select(VectorRecord.text, VectorRecord.embedding).where(VectorRecord.owner_fid == owner_fid)
            ).all()
        finally:
            db.close()

        if not records:
            return []

        query_vec = np.array(vector, dtype=float)
        matrix = np.array([embedding for _, embedding in records], dtype=float)
        # Cosine similarity
        scores = matrix @ query_vec / (np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec) + 1e-10)
        order = np.argsort(-scores)[:top_k]
        return [records[i][0] for i in order]

    def delete_owner(self, owner_fid: int) -> int:
        """Remove every record of ``owner_fid``."""
        db = self.session_factory()
        try:
            result = db.execute(delete(VectorRecord).where(VectorRecord.owner_fid == owner_fid))
            db.commit()
            return result.rowcount
        finally:
            db.close()
