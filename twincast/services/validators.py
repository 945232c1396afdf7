"""Validation helpers for structured model output."""

import json
import re
from typing import Optional

_CODE_BLOCK = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_OUTER_BRACES = re.compile(r"\{[\s\S]*\}")


def extract_json(text: str) -> Optional[str]:
    """
    Extract a JSON object from model output.

    Tries the text as-is, then a fenced code block, then the outermost pair
    of braces.

    Args:
        text: Raw model output

    Returns:
        The JSON object text, or None if none parses
    """
    candidates = [text.strip()]

    block = _CODE_BLOCK.search(text)
    if block:
        candidates.append(block.group(1))

    braces = _OUTER_BRACES.search(text)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            if isinstance(json.loads(candidate), dict):
                return candidate
        except ValueError:
            continue
    return None


def generate_corrective_prompt(error: str, fields: str) -> str:
    """
    Generate the stricter instruction appended for the structured-output retry.

    Args:
        error: Why the previous output was rejected
        fields: Description of the expected JSON fields

    Returns:
        Corrective prompt string
    """
    return f"""VALIDATION ERROR: Your previous response could not be used ({error[:200]}).

Respond with ONLY a valid JSON object with {fields}.
No markdown formatting, no code blocks, no explanations, and no additional text.
Start your response with {{ and end with }}."""
