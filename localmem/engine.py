"""
Memory Engine — the operations exposed to agents.

A MemoryEngine binds one store, one context id, a ModeManager and an
optional fact splitter.  It owns the rules that sit above the store:

- facts are either supplied by the caller or produced by the splitter;
  modes whose provider requires manual facts (and engines without a
  splitter) refuse to add or update without them;
- all embedding happens before the database transaction, so a provider
  failure leaves stored state untouched;
- direct-access-only memories have no facts and cannot get them later.

Not-found results are None/False, never exceptions.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from localmem.config import MemoryConfig, load_config
from localmem.errors import LocalMemError, ProviderError, ValidationError
from localmem.mode_manager import ModeManager
from localmem.modes import EmbeddingMode, mode_spec
from localmem.providers import (
    FactSplitter,
    create_provider,
    create_splitter,
    validate_openai_key,
)
from localmem.search import search_facts
from localmem.store import MemoryStore
from localmem.types import Fact, Memory, MemoryHit, SwitchResult, TagSummary, WriteResult
from localmem.vector import as_array

logger = logging.getLogger(__name__)

MANUAL_FACTS_MESSAGE = (
    "Manual facts are required when using local embedding mode. "
    "Provide a 'facts' array, or switch to openai mode for automatic "
    "fact extraction."
)

NO_SPLITTER_MESSAGE = (
    "Manual facts are required: automatic fact extraction is not "
    "configured. Provide a 'facts' array, or set OPENAI_API_KEY to enable it."
)


def _require_text(value: Any, name: str = "text") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list of strings")
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(f"{name} must be a list of strings")
    return list(value)


class MemoryEngine:
    """Agent-facing memory operations for one context."""

    def __init__(
        self,
        store: MemoryStore,
        mode_manager: ModeManager,
        context_id: str = "default",
        splitter: Optional[FactSplitter] = None,
        boost_lambda: float = 0.1,
        default_limit: int = 10,
        list_limit: int = 50,
    ):
        self.store = store
        self.modes = mode_manager
        self.context_id = context_id
        self.splitter = splitter
        self.boost_lambda = boost_lambda
        self.default_limit = default_limit
        self.list_limit = list_limit

    @classmethod
    def from_config(cls, config: Optional[MemoryConfig] = None) -> MemoryEngine:
        """Build an engine (store, providers, splitter) from configuration."""
        config = config or load_config()
        emb = config.embedding
        store = MemoryStore(
            db_path=config.store.db_path,
            wal_mode=config.store.wal_mode,
            busy_retries=config.store.busy_retries,
            busy_backoff=config.store.busy_backoff,
        )
        manager = ModeManager(
            store,
            config.context_id,
            active_mode=emb.default_mode(),
            batch_sizes={m: emb.batch_size_for(m) for m in EmbeddingMode},
            credential_validator=lambda mode: validate_openai_key(
                emb.openai_api_key, emb.openai_embedding_model,
            ),
            provider_factory=lambda mode: create_provider(mode, emb),
        )
        engine = cls(
            store,
            manager,
            context_id=config.context_id,
            splitter=create_splitter(config.splitter, emb),
            boost_lambda=config.search.boost_lambda,
            default_limit=config.search.default_limit,
            list_limit=config.search.list_limit,
        )
        logger.info(
            "MemoryEngine ready: context=%s mode=%s splitter=%s",
            config.context_id, manager.active_mode.value,
            "on" if engine.splitter is not None else "off",
        )
        return engine

    # -- Mode --------------------------------------------------------------

    @property
    def current_mode(self) -> EmbeddingMode:
        return self.modes.active_mode

    def switch_mode(self, mode) -> SwitchResult:
        return self.modes.switch_mode(mode)

    def preview_switch(self, mode) -> Dict[str, Any]:
        return self.modes.preview_switch(mode)

    # -- Facts -------------------------------------------------------------

    def _resolve_facts(self, text: str, facts: Optional[Sequence[str]]) -> Tuple[List[str], bool]:
        """Return (fact_texts, ai_extracted) for a new memory body."""
        manual = _string_list(facts, "facts")
        if manual:
            for fact in manual:
                if not fact.strip():
                    raise ValidationError("facts must not contain empty strings")
            return manual, False
        if mode_spec(self.current_mode).requires_manual_facts:
            raise ValidationError(MANUAL_FACTS_MESSAGE)
        if self.splitter is None:
            raise ValidationError(NO_SPLITTER_MESSAGE)
        if self.modes.provider().requires_manual_facts():
            raise ValidationError(MANUAL_FACTS_MESSAGE)
        try:
            split = self.splitter.split(text)
        except LocalMemError:
            raise
        except Exception as exc:
            raise ProviderError(f"Fact splitter failed: {exc}") from exc
        if not split:
            raise ProviderError("Fact splitter returned no facts")
        return list(split), True

    def _embed(self, texts: List[str], mode: EmbeddingMode) -> List[np.ndarray]:
        """Embed texts in ``mode``; any provider failure is a ProviderError."""
        provider = self.modes.provider(mode)
        dim = mode_spec(mode).dimension
        try:
            raw = provider.embed_batch(texts)
        except LocalMemError:
            raise
        except Exception as exc:
            raise ProviderError(f"Embedding with {provider.identifier()} failed: {exc}") from exc
        try:
            vectors = [as_array(v) for v in raw]
        except ValidationError as exc:
            raise ProviderError(f"{provider.identifier()} returned a malformed vector: {exc}") from exc
        if len(vectors) != len(texts):
            raise ProviderError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        for v in vectors:
            if v.shape[0] != dim:
                raise ProviderError(
                    f"Provider returned a {v.shape[0]}-D vector, {mode.value} expects {dim}"
                )
        return vectors

    # -- Memories ----------------------------------------------------------

    def add_memory(
        self,
        text: str,
        tags: Optional[Sequence[str]] = None,
        facts: Optional[Sequence[str]] = None,
        direct_access_only: bool = False,
    ) -> WriteResult:
        """Store a memory with its facts, each embedded in the active mode.

        Direct-access-only memories skip facts entirely; ``facts`` is ignored.
        """
        text = _require_text(text)
        tags = _string_list(tags, "context_tags")
        if direct_access_only:
            memory = self.store.create_memory(
                self.context_id, text, tags, direct_access_only=True,
            )
            logger.info("added direct-access memory %s", memory.id)
            return WriteResult(memory=memory)

        mode = self.current_mode
        fact_texts, ai_extracted = self._resolve_facts(text, facts)
        vectors = self._embed(fact_texts, mode)
        memory, stored = self.store.insert_memory_with_facts(
            self.context_id, text, tags, fact_texts, vectors, mode,
        )
        return WriteResult(memory=memory, facts=stored, ai_extracted=ai_extracted)

    def get_memory(self, memory_id: str) -> Optional[Tuple[Memory, List[Fact]]]:
        """Memory and its facts, or None if absent from this context."""
        memory_id = _require_text(memory_id, "memory_id")
        memory = self.store.get_memory(memory_id, self.context_id)
        if memory is None:
            return None
        return memory, self.store.list_facts(memory_id)

    def update_memory(
        self,
        memory_id: str,
        text: str,
        tags: Optional[Sequence[str]] = None,
        facts: Optional[Sequence[str]] = None,
    ) -> Optional[WriteResult]:
        """Replace text, tags and facts; version + 1.  None if not found."""
        memory_id = _require_text(memory_id, "memory_id")
        text = _require_text(text)
        tags = _string_list(tags, "context_tags")
        existing = self.store.get_memory(memory_id, self.context_id)
        if existing is None:
            return None
        if existing.direct_access_only:
            raise ValidationError(
                "Cannot update text for direct-access-only memories. Delete it "
                "and create a new one, or use add_tags/remove_tags to change tags."
            )
        mode = self.current_mode
        fact_texts, ai_extracted = self._resolve_facts(text, facts)
        vectors = self._embed(fact_texts, mode)
        result = self.store.replace_memory_content(
            memory_id, self.context_id, text, tags, fact_texts, vectors, mode,
        )
        if result is None:
            return None
        memory, stored = result
        return WriteResult(memory=memory, facts=stored, ai_extracted=ai_extracted)

    def update_tags(
        self,
        memory_id: str,
        add_tags: Optional[Sequence[str]] = None,
        remove_tags: Optional[Sequence[str]] = None,
    ) -> Optional[Memory]:
        """Add/remove tags without touching facts.  None if not found."""
        memory_id = _require_text(memory_id, "memory_id")
        if add_tags is None and remove_tags is None:
            raise ValidationError("add_tags or remove_tags is required")
        return self.store.update_memory_tags(
            memory_id,
            self.context_id,
            _string_list(add_tags, "add_tags"),
            _string_list(remove_tags, "remove_tags"),
        )

    def delete_memory(self, memory_id: str) -> bool:
        memory_id = _require_text(memory_id, "memory_id")
        return self.store.delete_memory(memory_id, self.context_id)

    def delete_all_memories(self) -> int:
        return self.store.delete_all_memories(self.context_id)

    def list_memories(
        self,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        direct_access_only: bool = False,
    ) -> List[Memory]:
        limit = self.list_limit if limit is None else limit
        if limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit}")
        return self.store.list_memories(
            self.context_id,
            _string_list(tags, "context_tags") or None,
            limit,
            direct_access_only=direct_access_only,
        )

    # -- Search ------------------------------------------------------------

    def search_memory(
        self,
        query: str,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[MemoryHit]:
        """Semantic search in the active mode; tags boost, never filter."""
        query = _require_text(query, "query")
        limit = self.default_limit if limit is None else limit
        mode = self.current_mode
        query_vector = self._embed([query], mode)[0]
        return search_facts(
            self.store,
            self.context_id,
            query_vector,
            mode,
            limit=limit,
            boost_tags=_string_list(tags, "context_tags"),
            boost_lambda=self.boost_lambda,
        )

    # -- Tags & stats ------------------------------------------------------

    def get_tags(self, pattern: Optional[str] = None) -> List[TagSummary]:
        return self.store.get_all_tags(self.context_id, pattern or None)

    def stats(self) -> Dict[str, Any]:
        """Store counts for this context plus mode state."""
        d = self.store.stats(self.context_id)
        d["context_id"] = self.context_id
        d["active_mode"] = self.current_mode.value
        d["previous_mode"] = (
            self.modes.previous_mode.value if self.modes.previous_mode else None
        )
        d["missing_embeddings"] = self.modes.get_missing_count()
        return d

    def close(self) -> None:
        self.store.close()
