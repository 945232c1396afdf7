"""Retrieval content schemas."""

from pydantic import BaseModel


class ContentChunk(BaseModel):
    """A bounded group of whole content items, consumed by the embedding step."""

    chunk_number: int
    text: str
    owner_fid: int

    @property
    def vector_id(self) -> str:
        return f"chunk-{self.owner_fid}-{self.chunk_number}"
