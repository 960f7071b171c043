"""
LLM utility functions: timeout-bound Gemini calls with retry, plus JSON parsing helpers.

Shared by the signal extractor, the response composer and the interaction
summariser.  Every caller has a deterministic fallback for total failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

logger = logging.getLogger("engine.llm_utils")


def strip_code_fence(raw: str) -> str:
    """Remove a leading ```json fence the model sometimes wraps JSON in."""
    raw = raw.strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1]
        if raw.endswith("```"):
            raw = raw[:-3]
        raw = raw.strip()
    return raw


def parse_json_object(raw: str) -> dict[str, Any]:
    """Parse a JSON object out of model text.  Raises ValueError otherwise."""
    data = json.loads(strip_code_fence(raw))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


async def llm_call(
    client: Any,
    model: str,
    contents: Any,
    config: Any = None,
    timeout: float = 20.0,
    max_retries: int = 1,
) -> Any:
    """
    Call ``client.aio.models.generate_content`` with a timeout and retries.

    Returns the raw response object.  Raises the last exception once
    all attempts are exhausted so the caller can fall back.
    """
    last_exc: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            return await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=model,
                    contents=contents,
                    config=config,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            last_exc = exc
            logger.warning(
                "LLM call timed out after %.1fs (attempt %d/%d)",
                timeout, attempt + 1, max_retries + 1,
            )
        except Exception as exc:
            last_exc = exc
            logger.warning(
                "LLM call failed (attempt %d/%d): %s",
                attempt + 1, max_retries + 1, exc,
            )

        if attempt < max_retries:
            await asyncio.sleep(0.5 * (2 ** attempt))

    assert last_exc is not None
    raise last_exc


async def llm_generate(
    client: Any,
    model: str,
    contents: Any,
    config: Any = None,
    timeout: float = 20.0,
    max_retries: int = 1,
) -> str | None:
    """
    Text-only convenience wrapper over ``llm_call``.

    Returns the response text, or None if the call failed or came back
    empty so callers use their existing fallback.
    """
    try:
        response = await llm_call(
            client, model, contents, config=config,
            timeout=timeout, max_retries=max_retries,
        )
    except Exception:
        logger.error("LLM call exhausted all %d attempts, returning None", max_retries + 1)
        return None

    text = getattr(response, "text", None)
    if isinstance(text, str) and text.strip():
        return text
    logger.warning("LLM returned empty response")
    return None
