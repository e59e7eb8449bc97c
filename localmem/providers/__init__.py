"""Embedding providers and fact splitters."""

from __future__ import annotations

from typing import Optional

from localmem.config import EmbeddingConfig, SplitterConfig
from localmem.modes import EmbeddingMode, parse_mode
from localmem.providers.base import EmbeddingProvider, FactSplitter
from localmem.providers.local import SentenceTransformerProvider
from localmem.providers.openai import (
    OpenAIEmbeddingProvider,
    OpenAIFactSplitter,
    validate_openai_key,
)

__all__ = [
    "EmbeddingProvider",
    "FactSplitter",
    "OpenAIEmbeddingProvider",
    "OpenAIFactSplitter",
    "SentenceTransformerProvider",
    "create_provider",
    "create_splitter",
    "validate_openai_key",
]


def create_provider(mode, config: Optional[EmbeddingConfig] = None) -> EmbeddingProvider:
    """Build the provider for a mode from embedding config."""
    config = config or EmbeddingConfig()
    mode = parse_mode(mode)
    if mode == EmbeddingMode.OPENAI:
        return OpenAIEmbeddingProvider(
            api_key=config.openai_api_key or None,
            model=config.openai_embedding_model,
        )
    if mode == EmbeddingMode.LOCAL_ENGLISH:
        return SentenceTransformerProvider(mode, config.local_english_model)
    return SentenceTransformerProvider(mode, config.local_multilingual_model)


def create_splitter(
    config: SplitterConfig, embedding: EmbeddingConfig,
) -> Optional[FactSplitter]:
    """Build the fact splitter, or None when disabled or keyless."""
    if not config.enabled or not embedding.openai_api_key:
        return None
    return OpenAIFactSplitter(
        api_key=embedding.openai_api_key,
        model=config.model,
        max_facts=config.max_facts,
    )
