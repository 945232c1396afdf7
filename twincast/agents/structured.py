"""Structured generation with one stricter retry and a deterministic fallback."""

import json
import logging
from typing import Callable, Dict, List, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from twincast.errors import MalformedModelOutput
from twincast.services.llm_client import LLMClient
from twincast.services.validators import extract_json, generate_corrective_prompt

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def parse_structured(text: str, schema: Type[T]) -> T:
    """
    Parse model output into ``schema``.

    Raises:
        MalformedModelOutput: If no JSON object is found or it fails validation
    """
    extracted = extract_json(text)
    if extracted is None:
        raise MalformedModelOutput("no JSON object in model output", raw_text=text)
    try:
        return schema.model_validate(json.loads(extracted))
    except PydanticValidationError as e:
        raise MalformedModelOutput(f"model output does not match {schema.__name__}: {e}", raw_text=text) from e


def describe_fields(schema: Type[BaseModel]) -> str:
    """Short field listing used in corrective prompts."""
    return "the fields " + ", ".join(f'"{name}"' for name in schema.model_fields)


def generate_structured(
    llm: LLMClient,
    messages: List[Dict[str, str]],
    schema: Type[T],
    fallback: Callable[[str], T],
    label: str = "",
    **completion_kwargs,
) -> T:
    """
    Ask the model for a JSON object matching ``schema``.

    A malformed first answer is retried once with a stricter instruction; if
    the retry is malformed too, ``fallback`` builds the result from the raw
    retry text. Transport failures (ExternalServiceError) propagate.

    Args:
        llm: Chat client
        messages: Prompt messages
        schema: Pydantic model the output must validate against
        fallback: Salvage constructor receiving the raw model text
        label: Stage name for logging

    Returns:
        A ``schema`` instance, parsed or salvaged
    """
    label = label or schema.__name__
    first = llm.chat_completion(messages, json_mode=True, **completion_kwargs)
    try:
        result = parse_structured(first, schema)
        logger.info(f"[{label}] structured output parsed on first attempt")
        return result
    except MalformedModelOutput as e:
        logger.warning(f"[{label}] malformed output, retrying with stricter prompt: {e}")
        error = str(e)

    retry_messages = list(messages) + [
        {"role": "assistant", "content": first},
        {"role": "user", "content": generate_corrective_prompt(error, describe_fields(schema))},
    ]
    second = llm.chat_completion(retry_messages, json_mode=True, **completion_kwargs)
    try:
        result = parse_structured(second, schema)
        logger.info(f"[{label}] structured output parsed on retry")
        return result
    except MalformedModelOutput as e:
        logger.warning(f"[{label}] malformed output on retry, using fallback: {e}")
        return fallback(second or first)
