"""
Mode Manager — active embedding mode and backfill on switch.

Switching to a mode embeds every fact of the context that has no vector in
the target namespace yet, in batches.  Each batch is committed on its own,
so a failure keeps earlier batches and leaves the active mode unchanged;
retrying the switch only embeds what is still missing.  Vectors already
present in a namespace are never recomputed or overwritten.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from localmem.errors import (
    AuthenticationError,
    ConsistencyError,
    ProviderError,
)
from localmem.modes import EmbeddingMode, estimate_duration, mode_spec, parse_mode
from localmem.providers.base import EmbeddingProvider
from localmem.store import MemoryStore
from localmem.types import Fact, SwitchResult

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[EmbeddingMode], EmbeddingProvider]
CredentialValidator = Callable[[EmbeddingMode], bool]


class ModeManager:
    """
    Holds the active mode and the providers for each mode of one context.

    Args:
        store: Backing MemoryStore.
        context_id: Tenant whose facts are backfilled.
        providers: Pre-built providers by mode.
        active_mode: Mode in effect at startup.
        batch_sizes: Backfill batch size per mode (defaults from MODE_SPECS).
        credential_validator: Called before switching to a mode that
            requires a credential; False aborts the switch.
        provider_factory: Builds providers missing from ``providers``.
    """

    def __init__(
        self,
        store: MemoryStore,
        context_id: str,
        providers: Optional[Dict[EmbeddingMode, EmbeddingProvider]] = None,
        active_mode=EmbeddingMode.LOCAL_MULTILINGUAL,
        batch_sizes: Optional[Dict[EmbeddingMode, int]] = None,
        credential_validator: Optional[CredentialValidator] = None,
        provider_factory: Optional[ProviderFactory] = None,
    ):
        self.store = store
        self.context_id = context_id
        self._providers: Dict[EmbeddingMode, EmbeddingProvider] = {
            parse_mode(m): p for m, p in (providers or {}).items()
        }
        self._batch_sizes = {parse_mode(m): n for m, n in (batch_sizes or {}).items()}
        self._credential_validator = credential_validator
        self._provider_factory = provider_factory
        self.active_mode: EmbeddingMode = parse_mode(active_mode)
        self.previous_mode: Optional[EmbeddingMode] = None

    # -- Providers ---------------------------------------------------------

    def provider(self, mode=None) -> EmbeddingProvider:
        """Provider for ``mode`` (default: the active mode), built on demand."""
        mode = self.active_mode if mode is None else parse_mode(mode)
        provider = self._providers.get(mode)
        if provider is None:
            if self._provider_factory is None:
                raise ProviderError(f"No embedding provider configured for {mode.value}")
            provider = self._provider_factory(mode)
            self._providers[mode] = provider
        return provider

    def batch_size(self, mode) -> int:
        mode = parse_mode(mode)
        return self._batch_sizes.get(mode, mode_spec(mode).batch_size)

    # -- Queries -----------------------------------------------------------

    def get_missing_count(self, mode=None) -> int:
        """Facts of this context with no vector in ``mode``."""
        mode = self.active_mode if mode is None else parse_mode(mode)
        return self.store.count_missing(mode, self.context_id)

    def get_missing_facts(self, mode=None) -> List[Fact]:
        mode = self.active_mode if mode is None else parse_mode(mode)
        return self.store.missing_facts(mode, self.context_id)

    def preview_switch(self, mode) -> Dict[str, object]:
        """What a switch to ``mode`` would do, without doing it."""
        mode = parse_mode(mode)
        missing = self.get_missing_count(mode)
        return {
            "current_mode": self.active_mode.value,
            "target_mode": mode.value,
            "missing_embeddings": missing,
            "estimated_time": estimate_duration(missing, mode),
            "requires_credential": mode_spec(mode).requires_credential,
        }

    # -- Switching ---------------------------------------------------------

    def switch_mode(self, target) -> SwitchResult:
        """Make ``target`` active after embedding every missing fact.

        Raises:
            ValidationError: Unknown mode name.
            AuthenticationError: Credential check failed; nothing changed.
            ProviderError: A batch failed; earlier batches are kept and the
                active mode is unchanged.  ``completed`` counts vectors
                written before the failure.
        """
        target = parse_mode(target)
        spec = mode_spec(target)

        if spec.requires_credential and self._credential_validator is not None:
            if not self._credential_validator(target):
                raise AuthenticationError(
                    f"Cannot switch to {target.value} mode: API key validation "
                    f"failed. Check OPENAI_API_KEY or use a local embedding mode."
                )

        provider = self.provider(target)
        missing = self.store.missing_facts(target, self.context_id)
        start = time.monotonic()
        embedded = 0

        if missing:
            logger.info(
                "Found %d facts without %s embeddings (estimated: %s)",
                len(missing), target.value, estimate_duration(len(missing), target),
            )
        size = self.batch_size(target)
        for i in range(0, len(missing), size):
            batch = missing[i:i + size]
            try:
                vectors = provider.embed_batch([f.text for f in batch])
                if len(vectors) != len(batch):
                    raise ProviderError(
                        f"Provider returned {len(vectors)} vectors for {len(batch)} facts"
                    )
                embedded += self.store.insert_missing_vectors(
                    [(f.id, v) for f, v in zip(batch, vectors)], target,
                )
            except ConsistencyError:
                raise
            except Exception as exc:
                logger.error(
                    "Backfill of %s stopped after %d/%d facts: %s",
                    target.value, embedded, len(missing), exc,
                )
                raise ProviderError(
                    f"Switch to {target.value} failed after embedding "
                    f"{embedded}/{len(missing)} facts: {exc}",
                    completed=embedded,
                ) from exc
            logger.info("  Progress: %d/%d facts embedded", embedded, len(missing))

        elapsed = time.monotonic() - start
        previous = self.active_mode
        self.previous_mode = previous
        self.active_mode = target
        logger.info(
            "Switched embedding mode %s -> %s (%d facts embedded in %.1fs)",
            previous.value, target.value, embedded, elapsed,
        )
        return SwitchResult(
            active_mode=target.value,
            previous_mode=previous.value,
            missing_before=len(missing),
            embedded_count=embedded,
            elapsed_seconds=round(elapsed, 3),
            estimated_time=estimate_duration(len(missing), target) if missing else None,
        )
