"""
OpenAI-backed embedding provider and fact splitter.

The ``openai`` SDK is imported lazily so the rest of localmem works without
network access.  SDK failures are mapped onto the localmem error taxonomy:

    401              → AuthenticationError
    402, 429, 5xx    → ProviderError (with a hint to switch to a local mode)
    anything else    → ProviderError
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, List, Optional, Sequence

import numpy as np

from localmem.errors import AuthenticationError, ProviderError
from localmem.modes import EmbeddingMode, mode_spec

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_CHAT_MODEL = "gpt-4o-mini"

_SWITCH_HINT = "Use 'switch_embedding_mode' to switch to a local mode"

SPLIT_SYSTEM_PROMPT = """You extract discrete facts from memory entries.

CRITICAL RULES:
1. Extract ONLY what is explicitly stated - no inference, no expansion, no interpretation
2. Each fact is one complete semantic unit from the original text
3. Preserve the exact meaning and wording from the source
4. If the memory is a single statement (e.g., "User likes ice-cream"), return it as ONE fact unchanged
5. If the memory contains multiple statements, extract 2-4 separate facts
6. DO NOT add context, implications, or related information not present in the original

Respond with a JSON object: {"facts": ["...", "..."]}

Examples:
- Input: "User likes ice-cream" → Output: {"facts": ["User likes ice-cream"]}
- Input: "User likes ice-cream. Prefers chocolate flavor." → Output: {"facts": ["User likes ice-cream", "User prefers chocolate flavor ice-cream"]}"""


def _make_client(api_key: Optional[str]):
    try:
        from openai import OpenAI
    except ImportError:
        raise ProviderError("OpenAI mode requires the 'openai' library") from None
    key = api_key or os.environ.get("OPENAI_API_KEY")
    if not key:
        raise AuthenticationError(
            "OpenAI API key required. Set OPENAI_API_KEY or pass api_key"
        )
    return OpenAI(api_key=key)


def map_openai_error(exc: Exception) -> Exception:
    """Translate an OpenAI SDK exception into a localmem error."""
    status = getattr(exc, "status_code", None)
    if status == 401:
        return AuthenticationError(
            f"OpenAI API authentication failed. Your API key is invalid. "
            f"{_SWITCH_HINT}, or update OPENAI_API_KEY."
        )
    if status == 429:
        return ProviderError(
            f"OpenAI API rate limit exceeded. {_SWITCH_HINT}, or try again later."
        )
    if status == 402:
        return ProviderError(
            f"OpenAI API payment required. {_SWITCH_HINT} (no API key needed)."
        )
    if status is not None and status >= 500:
        return ProviderError(
            f"OpenAI API service error ({status}). {_SWITCH_HINT}, "
            f"or try again in a few minutes."
        )
    return ProviderError(f"OpenAI API call failed: {exc}")


def _openai_error_types():
    from openai import OpenAIError
    return OpenAIError


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

class OpenAIEmbeddingProvider:
    """Embedding provider using the OpenAI embeddings endpoint (1536-D)."""

    mode = EmbeddingMode.OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        client: Any = None,
    ):
        self.model = model
        self._client = client if client is not None else _make_client(api_key)

    @property
    def dimension(self) -> int:
        return mode_spec(self.mode).dimension

    def identifier(self) -> str:
        return f"openai:{self.model}"

    def requires_manual_facts(self) -> bool:
        return False

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        if not texts:
            return []
        try:
            response = self._client.embeddings.create(
                model=self.model, input=list(texts),
            )
        except _openai_error_types() as exc:
            raise map_openai_error(exc) from exc
        vectors = [np.asarray(item.embedding, dtype=np.float64) for item in response.data]
        if len(vectors) != len(texts):
            raise ProviderError(
                f"OpenAI returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        return vectors


def validate_openai_key(
    api_key: str, model: str = DEFAULT_EMBEDDING_MODEL, client: Any = None,
) -> bool:
    """Check a key with a one-word embedding call.

    Quota (429) and billing (402) failures mean the key itself is valid.
    """
    if not api_key or not api_key.strip():
        return False
    try:
        client = client if client is not None else _make_client(api_key)
        client.embeddings.create(model=model, input="test")
        return True
    except _openai_error_types() as exc:
        status = getattr(exc, "status_code", None)
        if status in (402, 429):
            logger.warning("OpenAI key accepted but quota/billing limited (%s)", status)
            return True
        if status == 401:
            logger.error("OpenAI API key is invalid")
        else:
            logger.error("OpenAI API validation error: %s", exc)
        return False


# ---------------------------------------------------------------------------
# Fact splitting
# ---------------------------------------------------------------------------

class OpenAIFactSplitter:
    """Fact splitter using OpenAI chat completions with JSON output."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_CHAT_MODEL,
        max_facts: int = 4,
        client: Any = None,
    ):
        self.model = model
        self.max_facts = max_facts
        self._client = client if client is not None else _make_client(api_key)

    def split(self, text: str) -> List[str]:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SPLIT_SYSTEM_PROMPT},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                temperature=0,
            )
        except _openai_error_types() as exc:
            raise map_openai_error(exc) from exc

        content = response.choices[0].message.content if response.choices else None
        try:
            payload = json.loads(content or "")
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Fact splitter returned invalid JSON: {exc}") from exc

        raw = payload.get("facts") if isinstance(payload, dict) else None
        if not isinstance(raw, list):
            raise ProviderError("Fact splitter response has no 'facts' list")
        facts = [f.strip() for f in raw if isinstance(f, str) and f.strip()]
        if not facts:
            raise ProviderError("Fact splitter returned no facts")
        logger.debug("split memory into %d facts", len(facts))
        return facts[: self.max_facts]
