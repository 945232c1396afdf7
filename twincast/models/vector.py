"""Embedded content chunks."""

from sqlalchemy import BigInteger, Column, Index, Integer, String, Text

from twincast.database import Base
from twincast.models.types import EmbeddingType


class VectorRecord(Base):
    """One embedded chunk, id ``chunk-{owner_fid}-{chunk_number}``."""

    __tablename__ = "vector_records"

    id = Column(String(128), primary_key=True)
    owner_fid = Column(BigInteger, nullable=False)
    chunk_number = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    embedding = Column(EmbeddingType, nullable=False)

    __table_args__ = (Index("idx_vector_records_owner", "owner_fid"),)
