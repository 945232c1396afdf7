"""Tests for chunking service."""

from twincast.services.chunking import CHUNK_SEPARATOR, chunk_contents


def test_chunk_contents_packs_items():
    """Test that small items share a chunk."""
    items = ["first cast", "second cast", "third cast"]

    chunks = chunk_contents(items, owner_fid=42, max_chunk_chars=3000)

    assert len(chunks) == 1
    assert chunks[0].chunk_number == 0
    assert chunks[0].text == CHUNK_SEPARATOR.join(items)
    assert chunks[0].vector_id == "chunk-42-0"


def test_chunk_contents_respects_budget():
    """Test that no chunk exceeds the budget and items are never split."""
    items = ["a" * 40, "b" * 40, "c" * 40, "d" * 10]

    chunks = chunk_contents(items, owner_fid=7, max_chunk_chars=100)

    assert [c.chunk_number for c in chunks] == [0, 1]
    assert all(len(c.text) <= 100 for c in chunks)
    rebuilt = CHUNK_SEPARATOR.join(c.text for c in chunks).split(CHUNK_SEPARATOR)
    assert rebuilt == items


def test_chunk_boundary_is_inclusive():
    """Test that a chunk may be exactly the budget long."""
    items = ["x" * 49, "y" * 49]

    chunks = chunk_contents(items, owner_fid=1, max_chunk_chars=100)

    assert len(chunks) == 1
    assert len(chunks[0].text) == 100


def test_oversized_item_is_its_own_chunk():
    """Test that an item longer than the budget is kept whole."""
    items = ["short", "z" * 500, "tail"]

    chunks = chunk_contents(items, owner_fid=3, max_chunk_chars=100)

    assert [c.text for c in chunks] == ["short", "z" * 500, "tail"]


def test_empty_input():
    assert chunk_contents([], owner_fid=3) == []
