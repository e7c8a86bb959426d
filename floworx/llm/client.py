"""Parsing helpers for LLM classification output."""

from __future__ import annotations

import json
import re
from typing import Any

from floworx.observability.logging import get_logger

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class LLMError(RuntimeError):
    """LLM call failed or returned something that is not a JSON object."""


def extract_json(text: str) -> dict[str, Any]:
    """
    Pull the JSON object out of a model response.

    Handles markdown code fences, prose around the object, and trailing
    commas before ``}``/``]``.

    Raises:
        LLMError: If no JSON object can be recovered
    """
    if not text or not text.strip():
        raise LLMError("Empty LLM response")

    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        match = _OBJECT_RE.search(candidate)
        if match:
            candidate = match.group(0)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        repaired = re.sub(r",\s*([\}\]])", r"\1", candidate)
        try:
            data = json.loads(repaired)
            logger.info("JSON repair succeeded (trailing commas removed)")
        except json.JSONDecodeError as e:
            logger.warning("Could not parse LLM response as JSON: %s", e)
            raise LLMError(f"LLM response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise LLMError(f"Expected a JSON object, got {type(data).__name__}")
    return data
