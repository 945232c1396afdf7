"""Greedy packing of whole content items into bounded chunks."""

import logging
from typing import List, Sequence

from twincast.config import settings
from twincast.schemas.content import ContentChunk

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n\n"


def chunk_contents(
    items: Sequence[str],
    owner_fid: int,
    max_chunk_chars: int = settings.MAX_CHUNK_CHARS,
) -> List[ContentChunk]:
    """
    Pack content items into chunks of at most ``max_chunk_chars`` characters.

    Items are never split: the current chunk is flushed when appending the
    next item (plus separator) would exceed the budget. An item longer than
    the budget on its own becomes a chunk by itself.

    Args:
        items: Content texts, in order
        owner_fid: Owner of the content; recorded on every chunk
        max_chunk_chars: Size budget per chunk

    Returns:
        List of ContentChunk numbered from 0
    """
    chunks: List[ContentChunk] = []
    current: List[str] = []
    current_size = 0

    for item in items:
        added = len(item) + (len(CHUNK_SEPARATOR) if current else 0)

        if current and current_size + added > max_chunk_chars:
            chunks.append(_make_chunk(current, len(chunks), owner_fid))
            current = [item]
            current_size = len(item)
        else:
            current.append(item)
            current_size += added

    if current:
        chunks.append(_make_chunk(current, len(chunks), owner_fid))

    logger.info(f"Created {len(chunks)} chunks from {len(items)} items for fid {owner_fid}")
    return chunks


def _make_chunk(items: List[str], chunk_number: int, owner_fid: int) -> ContentChunk:
    return ContentChunk(
        chunk_number=chunk_number,
        text=CHUNK_SEPARATOR.join(items),
        owner_fid=owner_fid,
    )
