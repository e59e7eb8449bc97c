"""
Tests for localmem.store — MemoryStore CRUD, namespaces, transactions, tags.
"""

import sqlite3

import numpy as np
import pytest

from conftest import hashed_vector
from localmem.errors import ConsistencyError, ValidationError
from localmem.modes import EmbeddingMode
from localmem.store import SCHEMA_VERSION, MemoryStore, compile_tag_pattern
from localmem.vector import is_unit

ML = EmbeddingMode.LOCAL_MULTILINGUAL
EN = EmbeddingMode.LOCAL_ENGLISH
OPENAI = EmbeddingMode.OPENAI


def vec(text, dim=384):
    return hashed_vector(text, dim)


def add(store, text="memory", tags=None, facts=("fact one",), context_id="default",
        mode=ML):
    dim = 1536 if mode == OPENAI else 384
    return store.insert_memory_with_facts(
        context_id, text, list(tags or []), list(facts),
        [vec(f, dim) for f in facts], mode,
    )


def table_count(store, table):
    return store._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestSchema:
    def test_schema_version(self, store):
        row = store._conn.execute(
            "SELECT value FROM schema_meta WHERE key='schema_version'"
        ).fetchone()
        assert row["value"] == str(SCHEMA_VERSION)

    def test_all_tables_exist(self, store):
        tables = {
            r["name"] for r in store._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        required = {
            "memories", "facts", "schema_meta", "fact_vectors_openai",
            "fact_vectors_local_en", "fact_vectors_local_ml",
        }
        assert required.issubset(tables), f"Missing: {required - tables}"

    def test_foreign_keys_enabled(self, store):
        assert store._conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_wal_mode_on_disk(self, disk_store):
        mode = disk_store._conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"

    def test_reopen_persists(self, tmp_path):
        path = str(tmp_path / "m.db")
        s = MemoryStore(path)
        memory, _ = add(s, "persisted")
        s.close()
        s = MemoryStore(path)
        assert s.get_memory(memory.id).text == "persisted"
        s.close()

    def test_migrates_missing_direct_access_column(self, tmp_path):
        path = str(tmp_path / "old.db")
        conn = sqlite3.connect(path)
        conn.execute(
            """CREATE TABLE memories (
                id TEXT PRIMARY KEY, context_id TEXT NOT NULL, text TEXT NOT NULL,
                tags TEXT NOT NULL DEFAULT '[]', created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL, version INTEGER NOT NULL DEFAULT 1)"""
        )
        conn.execute(
            "INSERT INTO memories VALUES ('abc', 'default', 'old', '[\"x\"]', "
            "'2024-01-01T00:00:00+00:00', '2024-01-01T00:00:00+00:00', 1)"
        )
        conn.commit()
        conn.close()

        s = MemoryStore(path)
        memory = s.get_memory("abc")
        assert memory.text == "old"
        assert memory.direct_access_only is False
        s.close()


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class TestMemories:
    def test_create_and_get(self, store):
        m = store.create_memory("default", "hello", ["a", "b", "a"])
        assert len(m.id) == 12
        assert m.version == 1
        got = store.get_memory(m.id)
        assert got.text == "hello"
        assert got.tags == ["a", "b"]

    def test_get_scoped_by_context(self, store):
        m = store.create_memory("default", "hello")
        assert store.get_memory(m.id, "other") is None
        assert store.get_memory(m.id, "default") is not None

    def test_update_bumps_version(self, store):
        m = store.create_memory("default", "v1", ["t"])
        updated = store.update_memory(m.id, "default", "v2", ["u"])
        assert updated.text == "v2"
        assert updated.tags == ["u"]
        assert updated.version == 2
        assert updated.created_at == m.created_at

    def test_update_other_context_is_not_found(self, store):
        m = store.create_memory("default", "v1")
        assert store.update_memory(m.id, "other", "hijack", []) is None
        assert store.get_memory(m.id).text == "v1"

    def test_update_missing(self, store):
        assert store.update_memory("nope", "default", "x", []) is None

    def test_id_collision_draws_new_id(self, store, monkeypatch):
        ids = iter(["aaaaaaaaaaaa", "aaaaaaaaaaaa", "bbbbbbbbbbbb"])
        monkeypatch.setattr("localmem.store._generate_id", lambda: next(ids))
        first = store.create_memory("default", "one")
        second = store.create_memory("default", "two")
        assert first.id == "aaaaaaaaaaaa"
        assert second.id == "bbbbbbbbbbbb"

    def test_id_collision_exhausted(self, store, monkeypatch):
        monkeypatch.setattr("localmem.store._generate_id", lambda: "cccccccccccc")
        store.create_memory("default", "one")
        with pytest.raises(ConsistencyError, match="unique id"):
            store.create_memory("default", "two")


class TestTagUpdates:
    def test_remove_then_add(self, store):
        m, facts = add(store, tags=["a", "b"])
        updated = store.update_memory_tags(m.id, "default", ["b", "c"], ["a"])
        assert updated.tags == ["b", "c"]
        assert updated.version == 2

    def test_add_and_remove_same_tag_keeps_it(self, store):
        m, _ = add(store, tags=["x"])
        updated = store.update_memory_tags(m.id, "default", ["x"], ["x"])
        assert updated.tags == ["x"]

    def test_facts_and_vectors_untouched(self, store):
        m, facts = add(store, tags=["a"], facts=["f1", "f2"])
        blob = store.read_vector_blob(facts[0].id, ML)
        store.update_memory_tags(m.id, "default", ["new"], [])
        assert [f.id for f in store.list_facts(m.id)] == [f.id for f in facts]
        assert store.read_vector_blob(facts[0].id, ML) == blob

    def test_other_context(self, store):
        m, _ = add(store, tags=["a"])
        assert store.update_memory_tags(m.id, "other", ["b"], []) is None
        assert store.get_memory(m.id).tags == ["a"]
        assert store.get_memory(m.id).version == 1


class TestListMemories:
    def test_newest_first(self, store):
        a = store.create_memory("default", "first")
        b = store.create_memory("default", "second")
        c = store.create_memory("default", "third")
        assert [m.id for m in store.list_memories("default")] == [c.id, b.id, a.id]

    def test_limit(self, store):
        for i in range(5):
            store.create_memory("default", f"m{i}")
        assert len(store.list_memories("default", limit=2)) == 2

    def test_filter_is_exact_and_case_insensitive(self, store):
        py = store.create_memory("default", "py", ["Python"])
        store.create_memory("default", "js", ["javascript"])
        assert [m.id for m in store.list_memories("default", ["python"])] == [py.id]
        assert store.list_memories("default", ["pyth"]) == []

    def test_filter_matches_any_tag(self, store):
        store.create_memory("default", "a", ["x"])
        store.create_memory("default", "b", ["y"])
        store.create_memory("default", "c", ["z"])
        assert len(store.list_memories("default", ["X", "y"])) == 2

    def test_direct_access_listed_separately(self, store):
        normal = store.create_memory("default", "normal")
        hidden = store.create_memory("default", "blob", direct_access_only=True)
        assert [m.id for m in store.list_memories("default")] == [normal.id]
        listed = store.list_memories("default", direct_access_only=True)
        assert [m.id for m in listed] == [hidden.id]

    def test_context_isolation(self, store):
        store.create_memory("default", "mine")
        store.create_memory("other", "theirs")
        assert [m.text for m in store.list_memories("default")] == ["mine"]


# ---------------------------------------------------------------------------
# Facts and vectors
# ---------------------------------------------------------------------------


class TestVectors:
    def test_insert_with_facts(self, store):
        m, facts = add(store, facts=["f1", "f2", "f3"])
        assert [f.text for f in store.list_facts(m.id)] == ["f1", "f2", "f3"]
        assert store.count_vectors(ML) == 3
        assert store.count_vectors(EN) == 0
        assert store.count_vectors(OPENAI) == 0

    def test_stored_vectors_are_unit(self, store):
        f = store.create_fact(store.create_memory("default", "m").id, "f")
        store.write_vector(f.id, np.full(384, 7.0), ML)
        v = store.read_vector(f.id, ML)
        assert is_unit(v)
        assert v[0] == pytest.approx(1 / np.sqrt(384), abs=1e-6)

    def test_row_records_dimension(self, store):
        _, facts = add(store)
        row = store._conn.execute(
            "SELECT dim, unit_norm, length(embedding) AS n FROM fact_vectors_local_ml"
        ).fetchone()
        assert row["dim"] == 384
        assert row["unit_norm"] == 1
        assert row["n"] == 384 * 4

    def test_dimension_mismatch_rejected(self, store):
        with pytest.raises(ValidationError, match="dimension"):
            store.insert_memory_with_facts(
                "default", "m", [], ["f"], [np.ones(1536)], ML,
            )
        assert table_count(store, "memories") == 0

    def test_zero_vector_rejected(self, store):
        with pytest.raises(ValidationError, match="unit-normalized"):
            store.insert_memory_with_facts(
                "default", "m", [], ["f"], [np.zeros(384)], ML,
            )
        assert table_count(store, "facts") == 0

    def test_fact_vector_count_mismatch(self, store):
        with pytest.raises(ValidationError):
            store.insert_memory_with_facts("default", "m", [], ["a", "b"], [vec("a")], ML)

    def test_missing_facts_anti_join(self, store):
        _, facts = add(store, facts=["f1", "f2"])
        assert store.count_missing(EN, "default") == 2
        store.write_vector(facts[0].id, vec("x"), EN)
        missing = store.missing_facts(EN, "default")
        assert [f.id for f in missing] == [facts[1].id]
        assert store.count_missing(ML, "default") == 0

    def test_missing_scoped_by_context(self, store):
        add(store, facts=["mine"])
        add(store, facts=["theirs"], context_id="other")
        assert store.count_missing(EN, "default") == 1
        assert store.count_vectors(ML, "default") == 1
        assert store.count_vectors(ML) == 2

    def test_insert_missing_never_overwrites(self, store):
        _, facts = add(store, facts=["f"])
        before = store.read_vector_blob(facts[0].id, ML)
        inserted = store.insert_missing_vectors([(facts[0].id, vec("other"))], ML)
        assert inserted == 0
        assert store.read_vector_blob(facts[0].id, ML) == before

    def test_search_rows(self, store):
        m, facts = add(store, tags=["t"], facts=["f1", "f2"])
        store.create_memory("default", "hidden", direct_access_only=True)
        rows = store.search_rows(ML, "default")
        assert [r[0].id for r in rows] == [f.id for f in facts]
        assert rows[0][1] is rows[1][1]
        assert rows[0][1].tags == ["t"]
        assert store.search_rows(EN, "default") == []


# ---------------------------------------------------------------------------
# Deletes
# ---------------------------------------------------------------------------


class TestCascade:
    def test_delete_reaches_every_namespace(self, store):
        m, facts = add(store, facts=["a", "b", "c"])
        for f in facts:
            store.write_vector(f.id, vec(f.text), EN)
            store.write_vector(f.id, vec(f.text, 1536), OPENAI)
        other, _ = add(store, facts=["keep"])

        assert store.delete_memory(m.id, "default") is True
        assert store.list_facts(m.id) == []
        assert store.count_vectors(ML) == 1
        assert store.count_vectors(EN) == 0
        assert store.count_vectors(OPENAI) == 0
        assert store.count_orphan_vectors() == {
            "openai": 0, "local_english": 0, "local_multilingual": 0,
        }
        assert store.get_memory(other.id) is not None

    def test_delete_twice(self, store):
        m, _ = add(store)
        assert store.delete_memory(m.id, "default")
        assert not store.delete_memory(m.id, "default")

    def test_delete_other_context(self, store):
        m, _ = add(store)
        assert store.delete_memory(m.id, "other") is False
        assert store.get_memory(m.id) is not None

    def test_delete_all(self, store):
        add(store, facts=["a"])
        add(store, facts=["b"])
        add(store, facts=["c"], context_id="other")
        assert store.delete_all_memories("default") == 2
        assert store.list_memories("default") == []
        assert store.count_vectors(ML) == 1

    def test_delete_facts_for_memory(self, store):
        m, facts = add(store, facts=["a", "b"])
        assert store.delete_facts_for_memory(m.id) == 2
        assert store.count_vectors(ML) == 0
        assert store.get_memory(m.id) is not None


class TestReplaceContent:
    def test_replaces_facts_and_bumps_version(self, store):
        m, old = add(store, tags=["a"], facts=["old1", "old2"])
        for f in old:
            store.write_vector(f.id, vec(f.text), EN)
        memory, facts = store.replace_memory_content(
            m.id, "default", "new text", ["b"], ["new"], [vec("new")], ML,
        )
        assert memory.version == 2
        assert memory.text == "new text"
        assert [f.text for f in store.list_facts(m.id)] == ["new"]
        assert store.count_vectors(EN) == 0
        assert store.count_vectors(ML) == 1

    def test_other_context_changes_nothing(self, store):
        m, old = add(store, facts=["keep"])
        result = store.replace_memory_content(
            m.id, "other", "x", [], ["y"], [vec("y")], ML,
        )
        assert result is None
        assert [f.id for f in store.list_facts(m.id)] == [old[0].id]
        assert store.get_memory(m.id).version == 1


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.create_memory("default", "doomed")
                raise RuntimeError("boom")
        assert store.list_memories("default") == []

    def test_sqlite_error_becomes_consistency_error(self, store):
        with pytest.raises(ConsistencyError) as exc_info:
            with store.transaction():
                store.create_memory("default", "doomed")
                store.write_vector("no-such-fact", vec("x"), ML)
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
        assert store.list_memories("default") == []

    def test_nested_joins_outer(self, store):
        with pytest.raises(ValueError):
            with store.transaction():
                store.create_memory("default", "outer")
                with store.transaction():
                    store.create_memory("default", "inner")
                raise ValueError("abort")
        assert store.list_memories("default") == []

    def test_commit(self, store):
        with store.transaction():
            store.create_memory("default", "a")
            store.create_memory("default", "b")
        assert len(store.list_memories("default")) == 2


class TestBusyRetry:
    def test_retries_locked(self):
        s = MemoryStore(":memory:", busy_retries=3, busy_backoff=0.0)
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert s._retry(flaky) == "ok"
        assert len(attempts) == 3
        s.close()

    def test_gives_up(self):
        s = MemoryStore(":memory:", busy_retries=2, busy_backoff=0.0)

        def locked():
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            s._retry(locked)
        s.close()

    def test_other_errors_not_retried(self):
        s = MemoryStore(":memory:", busy_retries=5, busy_backoff=0.0)
        attempts = []

        def broken():
            attempts.append(1)
            raise sqlite3.OperationalError("no such table: nope")

        with pytest.raises(sqlite3.OperationalError):
            s._retry(broken)
        assert len(attempts) == 1
        s.close()


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TestGetAllTags:
    def test_aggregates(self, store):
        a = store.create_memory("default", "a", ["python", "db"])
        b = store.create_memory("default", "b", ["python"])
        store.create_memory("other", "c", ["python"])
        tags = {t.tag: t for t in store.get_all_tags("default")}
        assert set(tags) == {"python", "db"}
        assert tags["python"].memory_count == 2
        assert tags["python"].first_memory_date == a.created_at
        assert tags["python"].last_memory_date == b.updated_at

    def test_sorted(self, store):
        store.create_memory("default", "a", ["zeta", "Alpha", "beta"])
        assert [t.tag for t in store.get_all_tags("default")] == ["Alpha", "beta", "zeta"]

    def test_pattern_with_inline_flag(self, store):
        store.create_memory("default", "a", ["Deploy-prod", "testing", "deploy"])
        tags = store.get_all_tags("default", "(?i)DEPLOY")
        assert [t.tag for t in tags] == ["deploy", "Deploy-prod"]
        assert [t.tag for t in store.get_all_tags("default", "^test")] == ["testing"]

    def test_invalid_pattern(self, store):
        with pytest.raises(ValidationError, match=r"Invalid regex pattern '\(\['"):
            store.get_all_tags("default", "([")

    def test_unknown_flag(self):
        with pytest.raises(ValidationError, match="unknown flag"):
            compile_tag_pattern("(?q)abc")


class TestStats:
    def test_counts(self, store):
        add(store, facts=["a", "b"])
        add(store, facts=["c"], context_id="other")
        s = store.stats("default")
        assert s["memories"] == 1
        assert s["facts"] == 2
        assert s["vectors"]["local_multilingual"] == 2
        assert store.stats()["memories"] == 2
