"""
Tests for localmem.mode_manager — mode switching and backfill.
"""

import pytest

from conftest import FakeProvider, MatrixProvider, TransportFailureProvider
from localmem.errors import AuthenticationError, ProviderError, ValidationError
from localmem.mode_manager import ModeManager
from localmem.modes import EmbeddingMode

ML = EmbeddingMode.LOCAL_MULTILINGUAL
EN = EmbeddingMode.LOCAL_ENGLISH
OPENAI = EmbeddingMode.OPENAI


def seed(engine, n_memories=3, facts_per_memory=1):
    """Add memories in the engine's current mode."""
    for i in range(n_memories):
        engine.add_memory(
            f"memory {i}",
            tags=[f"t{i}"],
            facts=[f"fact {i}.{j}" for j in range(facts_per_memory)],
        )


class TestSwitch:
    def test_switch_embeds_missing(self, engine, store, providers):
        seed(engine, 3, 2)
        result = engine.switch_mode(EN)
        assert result.active_mode == "local_english"
        assert result.previous_mode == "local_multilingual"
        assert result.missing_before == 6
        assert result.embedded_count == 6
        assert store.count_vectors(EN) == 6
        assert engine.current_mode is EN
        assert engine.modes.previous_mode is ML

    def test_zero_missing_makes_no_calls(self, engine, providers):
        result = engine.switch_mode(EN)
        assert result.missing_before == 0
        assert result.embedded_count == 0
        assert result.estimated_time is None
        assert providers[EN].calls == 0
        assert engine.current_mode is EN

    def test_round_trip_reuses_vectors(self, engine, store, providers):
        seed(engine, 3)
        fact_ids = [f.id for f in store.missing_facts(EN, "default")]
        before = {fid: store.read_vector_blob(fid, ML) for fid in fact_ids}
        ml_calls = providers[ML].calls

        engine.switch_mode(EN)
        result = engine.switch_mode(ML)

        assert result.missing_before == 0
        assert providers[ML].calls == ml_calls
        assert {fid: store.read_vector_blob(fid, ML) for fid in fact_ids} == before
        assert engine.current_mode is ML
        assert engine.modes.previous_mode is EN

    def test_switch_to_same_mode(self, engine, providers):
        seed(engine, 2)
        result = engine.switch_mode(ML)
        assert result.embedded_count == 0
        assert result.previous_mode == "local_multilingual"

    def test_batches(self, make_engine, store, providers):
        engine = make_engine(batch_sizes={EN: 2})
        seed(engine, 5)
        engine.switch_mode(EN)
        assert providers[EN].calls == 3

    def test_batch_failure_keeps_completed_batches(self, make_engine, store, providers):
        engine = make_engine(batch_sizes={EN: 2})
        seed(engine, 5)
        providers[EN].fail_on_call = 2

        with pytest.raises(ProviderError) as exc_info:
            engine.switch_mode(EN)
        assert exc_info.value.completed == 2
        assert engine.current_mode is ML
        assert store.count_vectors(EN) == 2

        providers[EN].fail_on_call = None
        result = engine.switch_mode(EN)
        assert result.missing_before == 3
        assert result.embedded_count == 3
        assert store.count_vectors(EN) == 5
        assert len(set(providers[EN].embedded)) == 5

    def test_only_this_context_backfilled(self, make_engine, store, providers):
        seed(make_engine(context_id="other"), 2)
        engine = make_engine()
        seed(engine, 1)
        result = engine.switch_mode(EN)
        assert result.embedded_count == 1
        assert store.count_missing(EN, "other") == 2

    def test_unknown_mode(self, engine):
        with pytest.raises(ValidationError, match="Invalid mode"):
            engine.switch_mode("quantum")


    def test_non_localmem_failure_keeps_completed_batches(self, make_engine, store, providers):
        providers[EN] = TransportFailureProvider(EN, fail_on_call=2)
        engine = make_engine(batch_sizes={EN: 2})
        seed(engine, 5)

        with pytest.raises(ProviderError) as exc_info:
            engine.switch_mode(EN)
        assert exc_info.value.completed == 2
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "connection reset" in str(exc_info.value)
        assert engine.current_mode is ML
        assert store.count_vectors(EN) == 2

    def test_malformed_vectors_are_provider_error(self, make_engine, store, providers):
        providers[EN] = MatrixProvider(EN)
        engine = make_engine()
        seed(engine, 2)
        with pytest.raises(ProviderError) as exc_info:
            engine.switch_mode(EN)
        assert exc_info.value.completed == 0
        assert engine.current_mode is ML
        assert store.count_vectors(EN) == 0


class TestCredentials:
    def test_rejected_key_changes_nothing(self, make_engine, store, providers):
        engine = make_engine(validator=lambda mode: False)
        seed(engine, 2)
        with pytest.raises(AuthenticationError):
            engine.switch_mode(OPENAI)
        assert engine.current_mode is ML
        assert providers[OPENAI].calls == 0
        assert store.count_vectors(OPENAI) == 0

    def test_accepted_key(self, make_engine, store):
        checked = []
        engine = make_engine(validator=lambda mode: checked.append(mode) or True)
        seed(engine, 2)
        engine.switch_mode(OPENAI)
        assert checked == [OPENAI]
        assert store.count_vectors(OPENAI) == 2

    def test_local_modes_skip_validation(self, make_engine):
        engine = make_engine(validator=lambda mode: False)
        engine.switch_mode(EN)
        assert engine.current_mode is EN


class TestProviders:
    def test_missing_provider(self, store):
        manager = ModeManager(store, "default", providers={}, active_mode=ML)
        with pytest.raises(ProviderError, match="No embedding provider"):
            manager.provider()

    def test_factory_is_lazy_and_cached(self, store):
        built = []

        def factory(mode):
            built.append(mode)
            return FakeProvider(mode)

        manager = ModeManager(store, "default", active_mode=ML, provider_factory=factory)
        assert built == []
        p1 = manager.provider()
        p2 = manager.provider(ML)
        assert p1 is p2
        assert built == [ML]

    def test_default_batch_sizes(self, store):
        manager = ModeManager(store, "default")
        assert manager.batch_size(OPENAI) == 100
        assert manager.batch_size(EN) == 50


class TestPreview:
    def test_preview(self, engine):
        seed(engine, 4)
        preview = engine.preview_switch("local_english")
        assert preview == {
            "current_mode": "local_multilingual",
            "target_mode": "local_english",
            "missing_embeddings": 4,
            "estimated_time": "< 10 seconds",
            "requires_credential": False,
        }
        assert engine.current_mode is ML

    def test_missing_count_defaults_to_active(self, engine):
        seed(engine, 2)
        assert engine.modes.get_missing_count() == 0
        assert engine.modes.get_missing_count(EN) == 2
        assert len(engine.modes.get_missing_facts(EN)) == 2
