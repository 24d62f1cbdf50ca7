"""
extractor.py -- Claude completion and strict parsing of the classifier contract.

Sends the rendered instructions as the system prompt and one user turn with
the transcript. Uses a low temperature and a bounded output ceiling, and
bounds every call with a timeout. The SDK's own retries are switched off:
re-running a failed classification is the caller's decision.

The response is parsed as JSON and validated against ClassifierOutput. Any
unknown enum value or missing key is a SchemaViolation; nothing is coerced.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Mapping, Optional, Protocol

import anthropic
import pydantic

from memo_ingest.errors import ModelCallFailure, SchemaViolation
from memo_ingest.models import ClassifierOutput

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MODEL: str = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "90"))
MAX_TOKENS: int = 4096
TEMPERATURE: float = 0.2
RAW_LOG_LIMIT: int = 2000


class Completion(Protocol):
    """Anything that turns (system, user) into raw model text."""

    model: str

    async def complete(self, system: str, user: str) -> str: ...


class ClaudeCompletion:
    """Completion backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = MODEL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
    ) -> None:
        key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not key:
            raise ValueError(
                "ANTHROPIC_API_KEY is required. Set it as an environment variable "
                "or pass api_key to ClaudeCompletion()."
            )
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = anthropic.AsyncAnthropic(api_key=key, max_retries=0, timeout=timeout)

    async def complete(self, system: str, user: str) -> str:
        logger.info("Calling Claude (model=%s, system_len=%d)", self.model, len(system))
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.APITimeoutError as exc:
            raise ModelCallFailure(f"Claude call timed out after {self.timeout:.0f}s") from exc
        except anthropic.APIStatusError as exc:
            raise ModelCallFailure(f"Claude returned {exc.status_code}: {exc.message}") from exc
        except anthropic.APIError as exc:
            raise ModelCallFailure(f"Claude call failed: {exc}") from exc
        text_blocks = [block.text for block in response.content if block.type == "text"]
        if response.stop_reason == "max_tokens":
            logger.warning("Claude response hit max_tokens=%d; output is likely truncated", self.max_tokens)
        return "\n".join(text_blocks)


async def call_model(
    completion: Completion,
    system: str,
    user: str,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> str:
    """One bounded completion call. Errors and timeouts become ModelCallFailure."""
    try:
        return await asyncio.wait_for(completion.complete(system, user), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ModelCallFailure(f"Model call exceeded {timeout:.0f}s") from exc
    except ModelCallFailure:
        raise
    except Exception as exc:
        raise ModelCallFailure(f"Model call failed: {exc}") from exc


def _strip_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1]).strip()
    return text


def _describe_errors(exc: pydantic.ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors()[:10]:
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_classifier_output(
    raw: str,
    entities: Optional[Mapping[str, Any]] = None,
) -> ClassifierOutput:
    """
    Parse raw model text into a validated ClassifierOutput.

    Raises SchemaViolation for invalid JSON, a non-object payload, a missing
    key or any value outside its closed set. The raw text travels on the
    exception for logging.
    """
    text = _strip_fence(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SchemaViolation(f"Response is not valid JSON: {exc}", raw) from exc
    if not isinstance(data, dict):
        raise SchemaViolation(f"Expected a JSON object, got {type(data).__name__}", raw)

    context = {"entities": entities} if entities else None
    try:
        output = ClassifierOutput.model_validate(data, context=context)
    except pydantic.ValidationError as exc:
        raise SchemaViolation(f"Response breaks the output contract: {_describe_errors(exc)}", raw) from exc

    claimed = data.get("has_prophetic_content")
    if claimed is not output.has_prophetic_content:
        logger.info(
            "Model claimed has_prophetic_content=%s; derived %s from %d prophetic words",
            claimed, output.has_prophetic_content, len(output.prophetic_words),
        )
    return output


def log_rejected_response(exc: SchemaViolation) -> None:
    raw = exc.raw_response or ""
    logger.error("Schema violation: %s | raw=%s", exc, raw[:RAW_LOG_LIMIT])
