"""Tests for structured output validators."""

from twincast.services.validators import extract_json, generate_corrective_prompt


def test_extract_plain_json():
    """Test extraction of a bare JSON object."""
    assert extract_json('{"to_reply": true}') == '{"to_reply": true}'


def test_extract_from_code_block():
    """Test extraction from a fenced code block."""
    text = 'Here you go:\n```json\n{"is_trivial": false}\n```\nThanks'

    assert extract_json(text) == '{"is_trivial": false}'


def test_extract_outer_braces():
    """Test extraction from surrounding prose."""
    text = 'Sure! {"text": "gm"} hope that helps'

    assert extract_json(text) == '{"text": "gm"}'


def test_extract_rejects_non_objects():
    """Test that arrays and garbage yield nothing."""
    assert extract_json("[1, 2, 3]") is None
    assert extract_json("no json here") is None
    assert extract_json("{broken: json") is None


def test_corrective_prompt_mentions_fields():
    prompt = generate_corrective_prompt("missing field", 'the fields "text"')

    assert "missing field" in prompt
    assert '"text"' in prompt
    assert "Start your response with {" in prompt
