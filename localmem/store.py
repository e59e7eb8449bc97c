"""
Memory Store — SQLite Persistent Backend

Tables:
    memories               - Narrative records (tags as JSON array)
    facts                  - Atomic statements, FK → memories (cascade)
    fact_vectors_openai    - 1536-D vectors, FK → facts (cascade)
    fact_vectors_local_en  - 384-D vectors, FK → facts (cascade)
    fact_vectors_local_ml  - 384-D vectors, FK → facts (cascade)
    schema_meta            - Schema version and provenance

Every update and delete is scoped by context_id in the WHERE clause, so a
memory owned by another context reads as "not found" (None / False) rather
than raising.  Compound writes run inside ``transaction()`` and either land
completely or not at all.

Thread safety: uses sqlite3 check_same_thread=False with explicit
serialization through a re-entrant lock.  Single writer per database file;
transient "database is locked" errors are retried with bounded backoff.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from localmem.errors import ConsistencyError, LocalMemError, ValidationError
from localmem.modes import VectorNamespace, all_namespaces, namespace_for
from localmem.types import (
    Fact,
    Memory,
    TagSummary,
    _generate_id,
    _now_iso,
    dedupe_tags,
)
from localmem.vector import VectorLike, normalize, pack_vector, unpack_vector

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Attempts at drawing a fresh random id before giving up on an insert
_ID_ATTEMPTS = 5

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS memories (
    id                 TEXT PRIMARY KEY,
    context_id         TEXT NOT NULL,
    text               TEXT NOT NULL,
    tags               TEXT NOT NULL DEFAULT '[]',   -- JSON array
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    version            INTEGER NOT NULL DEFAULT 1,
    direct_access_only INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS facts (
    id         TEXT PRIMARY KEY,
    memory_id  TEXT NOT NULL,
    text       TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version    INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (memory_id) REFERENCES memories(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_context_id ON memories(context_id);
CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at);
CREATE INDEX IF NOT EXISTS idx_memories_direct_access_only ON memories(direct_access_only);
CREATE INDEX IF NOT EXISTS idx_facts_memory_id ON facts(memory_id);
"""

# Leading inline-flags group, e.g. "(?i)" or "(?im)"
_INLINE_FLAGS_RE = re.compile(r"^\(\?([a-zA-Z]+)\)")

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "u": 0,  # str patterns are unicode already
    "g": 0,  # global/sticky have no meaning for a per-tag test
    "y": 0,
}


def compile_tag_pattern(pattern: str) -> "re.Pattern[str]":
    """Compile a tag filter pattern with an optional ``(?flags)`` prefix.

    Raises:
        ValidationError: Naming the pattern and the compiler message.
    """
    flags = 0
    body = pattern
    match = _INLINE_FLAGS_RE.match(pattern)
    if match:
        for ch in match.group(1):
            if ch not in _FLAG_MAP:
                raise ValidationError(
                    f"Invalid regex pattern {pattern!r}: unknown flag {ch!r}"
                )
            flags |= _FLAG_MAP[ch]
        body = pattern[match.end():]
    try:
        return re.compile(body, flags)
    except re.error as exc:
        raise ValidationError(f"Invalid regex pattern {pattern!r}: {exc}") from exc


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class MemoryStore:
    """
    SQLite-backed store for memories, facts, and per-mode fact vectors.

    Thread-safe via explicit lock.  Compound writes are atomic.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        wal_mode: bool = True,
        busy_retries: int = 5,
        busy_backoff: float = 0.05,
    ):
        """Open (or create) the store and ensure the schema exists.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for concurrent readers.
            busy_retries: Retries for "database is locked" before failing.
            busy_backoff: Base delay in seconds; doubles on every retry.
        """
        self._db_path = db_path
        self._lock = threading.RLock()
        self._busy_retries = busy_retries
        self._busy_backoff = busy_backoff
        self._tx_depth = 0
        # Auto-create parent directory for disk-backed databases.
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: autocommit, transactions are explicit
        self._conn = sqlite3.connect(
            db_path, check_same_thread=False, isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        if wal_mode and db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._migrate(self._conn)
        self._conn.executescript(_SCHEMA_SQL)
        for ns in all_namespaces():
            self._conn.executescript(ns.ddl())
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_at', datetime('now'))",
        )
        logger.info(
            f"MemoryStore initialized: {db_path} "
            f"(namespaces={', '.join(ns.mode.value for ns in all_namespaces())})"
        )

    @staticmethod
    def _migrate(conn):
        """Add columns introduced after the first release (safe if present)."""
        cols = {r[1] for r in conn.execute("PRAGMA table_info(memories)").fetchall()}
        if cols and "direct_access_only" not in cols:
            conn.execute(
                "ALTER TABLE memories ADD COLUMN direct_access_only "
                "INTEGER NOT NULL DEFAULT 0"
            )
            logger.info("Migrated memories table: added direct_access_only")

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()

    # -- Low-level execution -----------------------------------------------

    def _retry(self, fn: Callable, *args):
        """Call fn, retrying on transient lock contention."""
        for attempt in range(self._busy_retries + 1):
            try:
                return fn(*args)
            except sqlite3.OperationalError as exc:
                if not _is_busy(exc) or attempt >= self._busy_retries:
                    raise
                delay = self._busy_backoff * (2 ** attempt)
                logger.warning(
                    "database is locked (attempt %d/%d), retrying in %.2fs",
                    attempt + 1, self._busy_retries, delay,
                )
                time.sleep(delay)

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        return self._retry(self._conn.execute, sql, params)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic unit (BEGIN IMMEDIATE … COMMIT).

        Nested use joins the outer transaction.  On failure everything is
        rolled back; SQLite errors surface as ConsistencyError, localmem
        errors propagate unchanged.
        """
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self._conn
                finally:
                    self._tx_depth -= 1
                return

            self._retry(self._conn.execute, "BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield self._conn
                self._retry(self._conn.execute, "COMMIT")
            except LocalMemError:
                self._rollback()
                raise
            except sqlite3.Error as exc:
                self._rollback()
                raise ConsistencyError(
                    f"Transaction rolled back: {exc}"
                ) from exc
            except BaseException:
                self._rollback()
                raise
            finally:
                self._tx_depth = 0

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            # No transaction left to roll back; the original error propagates.
            logger.warning("ROLLBACK failed: %s", exc)

    def _insert_with_fresh_id(self, sql: str, params: Tuple[Any, ...], table: str) -> str:
        """INSERT a row whose first parameter is a new random id.

        Draws a new id on a primary-key collision, up to _ID_ATTEMPTS times.
        """
        for attempt in range(_ID_ATTEMPTS):
            new_id = _generate_id()
            try:
                self._execute(sql, (new_id,) + params)
                return new_id
            except sqlite3.IntegrityError as exc:
                if f"{table}.id" not in str(exc):
                    raise
                logger.warning("id collision on %s (attempt %d)", table, attempt + 1)
        raise ConsistencyError(
            f"Could not allocate a unique id in {table} after {_ID_ATTEMPTS} attempts"
        )

    # -- Memories ----------------------------------------------------------

    def create_memory(
        self,
        context_id: str,
        text: str,
        tags: Optional[List[str]] = None,
        *,
        direct_access_only: bool = False,
    ) -> Memory:
        """Insert a new memory (version 1)."""
        now = _now_iso()
        tags = dedupe_tags(list(tags or []))
        with self._lock:
            memory_id = self._insert_with_fresh_id(
                """INSERT INTO memories
                   (id, context_id, text, tags, created_at, updated_at,
                    version, direct_access_only)
                   VALUES (?,?,?,?,?,?,1,?)""",
                (context_id, text, json.dumps(tags), now, now, int(direct_access_only)),
                "memories",
            )
        logger.debug("created memory %s (context=%s)", memory_id, context_id)
        return Memory(
            id=memory_id, context_id=context_id, text=text, tags=tags,
            created_at=now, updated_at=now, version=1,
            direct_access_only=direct_access_only,
        )

    def get_memory(
        self, memory_id: str, context_id: Optional[str] = None,
    ) -> Optional[Memory]:
        """Read a memory by id; with context_id, only if owned by it."""
        with self._lock:
            if context_id is None:
                row = self._execute(
                    "SELECT * FROM memories WHERE id=?", (memory_id,)
                ).fetchone()
            else:
                row = self._execute(
                    "SELECT * FROM memories WHERE id=? AND context_id=?",
                    (memory_id, context_id),
                ).fetchone()
        return self._row_to_memory(row) if row is not None else None

    def update_memory(
        self, memory_id: str, context_id: str, text: str, tags: List[str],
    ) -> Optional[Memory]:
        """Replace text and tags, bump version.  None if not found/not owned."""
        with self._lock:
            cur = self._execute(
                """UPDATE memories
                   SET text=?, tags=?, updated_at=?, version=version+1
                   WHERE id=? AND context_id=?""",
                (text, json.dumps(dedupe_tags(list(tags))), _now_iso(),
                 memory_id, context_id),
            )
            if cur.rowcount == 0:
                return None
            return self.get_memory(memory_id)

    def update_memory_tags(
        self,
        memory_id: str,
        context_id: str,
        add_tags: Optional[List[str]] = None,
        remove_tags: Optional[List[str]] = None,
    ) -> Optional[Memory]:
        """Tag-only update: remove, then add, dedupe, bump version.

        Facts and vectors are never touched.
        """
        with self.transaction():
            memory = self.get_memory(memory_id, context_id)
            if memory is None:
                return None
            removed = set(remove_tags or [])
            tags = [t for t in memory.tags if t not in removed]
            tags = dedupe_tags(tags + list(add_tags or []))
            self._execute(
                """UPDATE memories
                   SET tags=?, updated_at=?, version=version+1
                   WHERE id=? AND context_id=?""",
                (json.dumps(tags), _now_iso(), memory_id, context_id),
            )
            return self.get_memory(memory_id)

    def delete_memory(self, memory_id: str, context_id: str) -> bool:
        """Delete a memory, its facts, and their vectors in every namespace."""
        with self.transaction():
            row = self._execute(
                "SELECT id FROM memories WHERE id=? AND context_id=?",
                (memory_id, context_id),
            ).fetchone()
            if row is None:
                return False
            fact_ids = self._fact_ids_for(memory_id)
            self._delete_facts(memory_id)
            self._execute("DELETE FROM memories WHERE id=?", (memory_id,))
            self._check_no_orphans(fact_ids)
        logger.info("deleted memory %s (%d facts)", memory_id, len(fact_ids))
        return True

    def delete_all_memories(self, context_id: str) -> int:
        """Delete every memory in a context.  Returns the number deleted."""
        with self.transaction():
            ids = [
                r["id"] for r in self._execute(
                    "SELECT id FROM memories WHERE context_id=?", (context_id,)
                ).fetchall()
            ]
            fact_ids: List[str] = []
            for memory_id in ids:
                fact_ids.extend(self._fact_ids_for(memory_id))
                self._delete_facts(memory_id)
            self._execute("DELETE FROM memories WHERE context_id=?", (context_id,))
            self._check_no_orphans(fact_ids)
        logger.info("deleted %d memories in context %s", len(ids), context_id)
        return len(ids)

    def list_memories(
        self,
        context_id: str,
        filter_tags: Optional[List[str]] = None,
        limit: int = 50,
        *,
        direct_access_only: bool = False,
    ) -> List[Memory]:
        """List memories newest-first, optionally by exact tag (any match).

        Tag comparison is case-insensitive.  Lists either searchable
        memories (default) or only direct-access ones, never both.
        """
        with self._lock:
            rows = self._execute(
                """SELECT * FROM memories
                   WHERE context_id=? AND direct_access_only=?
                   ORDER BY created_at DESC, rowid DESC""",
                (context_id, int(direct_access_only)),
            ).fetchall()

        # Filter by tag in Python (tags are a JSON column)
        memories = [self._row_to_memory(row) for row in rows]
        if filter_tags:
            memories = [
                m for m in memories
                if any(m.has_tag(t) for t in filter_tags)
            ]
        return memories[:limit]

    # -- Facts -------------------------------------------------------------

    def create_fact(self, memory_id: str, text: str) -> Fact:
        """Insert a fact for an existing memory."""
        now = _now_iso()
        with self._lock:
            fact_id = self._insert_with_fresh_id(
                """INSERT INTO facts
                   (id, memory_id, text, created_at, updated_at, version)
                   VALUES (?,?,?,?,?,1)""",
                (memory_id, text, now, now),
                "facts",
            )
        return Fact(
            id=fact_id, memory_id=memory_id, text=text,
            created_at=now, updated_at=now, version=1,
        )

    def list_facts(self, memory_id: str) -> List[Fact]:
        """Facts of a memory in insertion order."""
        with self._lock:
            rows = self._execute(
                "SELECT * FROM facts WHERE memory_id=? ORDER BY rowid",
                (memory_id,),
            ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def delete_facts_for_memory(self, memory_id: str) -> int:
        """Delete all facts of a memory (and their vectors everywhere)."""
        with self.transaction():
            fact_ids = self._fact_ids_for(memory_id)
            count = self._delete_facts(memory_id)
            self._check_no_orphans(fact_ids)
        return count

    def _fact_ids_for(self, memory_id: str) -> List[str]:
        return [
            r["id"] for r in self._execute(
                "SELECT id FROM facts WHERE memory_id=?", (memory_id,)
            ).fetchall()
        ]

    def _delete_facts(self, memory_id: str) -> int:
        """Delete vectors in every namespace, then the facts (in a tx)."""
        for ns in all_namespaces():
            self._execute(
                f"DELETE FROM {ns.table} WHERE fact_id IN "
                "(SELECT id FROM facts WHERE memory_id=?)",
                (memory_id,),
            )
        cur = self._execute("DELETE FROM facts WHERE memory_id=?", (memory_id,))
        return cur.rowcount

    def _check_no_orphans(self, fact_ids: List[str]) -> None:
        """Raise ConsistencyError if any namespace still references fact_ids."""
        if not fact_ids:
            return
        placeholders = ",".join("?" for _ in fact_ids)
        for ns in all_namespaces():
            left = self._execute(
                f"SELECT COUNT(*) AS cnt FROM {ns.table} "
                f"WHERE fact_id IN ({placeholders})",
                fact_ids,
            ).fetchone()["cnt"]
            if left:
                raise ConsistencyError(
                    f"{left} vector rows left in {ns.table} after cascading delete"
                )

    # -- Vectors -----------------------------------------------------------

    @staticmethod
    def prepare_vector(vector: VectorLike, ns: VectorNamespace) -> np.ndarray:
        """Normalize and dimension-check a vector for a namespace."""
        arr = normalize(vector)
        if arr.shape[0] != ns.dimension:
            raise ValidationError(
                f"Vector has dimension {arr.shape[0]}, namespace "
                f"{ns.mode.value} expects {ns.dimension}"
            )
        if not np.all(np.isfinite(arr)) or not np.any(arr):
            raise ValidationError("Vector cannot be unit-normalized (zero or non-finite)")
        return arr

    def write_vector(self, fact_id: str, vector: VectorLike, mode) -> None:
        """Insert the (normalized) vector of a fact into one namespace."""
        ns = namespace_for(mode)
        arr = self.prepare_vector(vector, ns)
        with self._lock:
            self._execute(
                f"INSERT INTO {ns.table} (fact_id, dim, unit_norm, embedding) "
                "VALUES (?,?,1,?)",
                (fact_id, ns.dimension, pack_vector(arr)),
            )

    def insert_missing_vectors(
        self, pairs: Sequence[Tuple[str, VectorLike]], mode,
    ) -> int:
        """Insert vectors for facts lacking one in ``mode``; one transaction.

        Existing rows are never overwritten.  Returns rows inserted.
        """
        ns = namespace_for(mode)
        prepared = [(fid, self.prepare_vector(v, ns)) for fid, v in pairs]
        inserted = 0
        with self.transaction():
            for fact_id, arr in prepared:
                cur = self._execute(
                    f"INSERT OR IGNORE INTO {ns.table} "
                    "(fact_id, dim, unit_norm, embedding) VALUES (?,?,1,?)",
                    (fact_id, ns.dimension, pack_vector(arr)),
                )
                inserted += cur.rowcount
        return inserted

    def read_vector(self, fact_id: str, mode) -> Optional[np.ndarray]:
        """Read a fact's vector in one namespace."""
        blob = self.read_vector_blob(fact_id, mode)
        if blob is None:
            return None
        return unpack_vector(blob, namespace_for(mode).dimension)

    def read_vector_blob(self, fact_id: str, mode) -> Optional[bytes]:
        """Raw stored bytes of a fact's vector in one namespace."""
        ns = namespace_for(mode)
        with self._lock:
            row = self._execute(
                f"SELECT embedding FROM {ns.table} WHERE fact_id=?", (fact_id,)
            ).fetchone()
        return bytes(row["embedding"]) if row is not None else None

    def count_vectors(self, mode, context_id: Optional[str] = None) -> int:
        """Rows in a namespace, optionally restricted to one context."""
        ns = namespace_for(mode)
        with self._lock:
            if context_id is None:
                row = self._execute(
                    f"SELECT COUNT(*) AS cnt FROM {ns.table}"
                ).fetchone()
            else:
                row = self._execute(
                    f"""SELECT COUNT(*) AS cnt FROM {ns.table} v
                        JOIN facts f ON f.id = v.fact_id
                        JOIN memories m ON m.id = f.memory_id
                        WHERE m.context_id=?""",
                    (context_id,),
                ).fetchone()
        return row["cnt"]

    def count_orphan_vectors(self) -> Dict[str, int]:
        """Vector rows without a live fact, per mode (expected all zero)."""
        out: Dict[str, int] = {}
        with self._lock:
            for ns in all_namespaces():
                out[ns.mode.value] = self._execute(
                    f"""SELECT COUNT(*) AS cnt FROM {ns.table} v
                        LEFT JOIN facts f ON f.id = v.fact_id
                        WHERE f.id IS NULL"""
                ).fetchone()["cnt"]
        return out

    def missing_facts(self, mode, context_id: str) -> List[Fact]:
        """Facts in a context with no vector row in ``mode`` (anti-join)."""
        ns = namespace_for(mode)
        with self._lock:
            rows = self._execute(
                f"""SELECT f.* FROM facts f
                    JOIN memories m ON m.id = f.memory_id
                    LEFT JOIN {ns.table} v ON v.fact_id = f.id
                    WHERE m.context_id=? AND v.fact_id IS NULL
                    ORDER BY f.rowid""",
                (context_id,),
            ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def count_missing(self, mode, context_id: str) -> int:
        """Number of facts in a context lacking a vector in ``mode``."""
        ns = namespace_for(mode)
        with self._lock:
            row = self._execute(
                f"""SELECT COUNT(*) AS cnt FROM facts f
                    JOIN memories m ON m.id = f.memory_id
                    LEFT JOIN {ns.table} v ON v.fact_id = f.id
                    WHERE m.context_id=? AND v.fact_id IS NULL""",
                (context_id,),
            ).fetchone()
        return row["cnt"]

    def search_rows(
        self, mode, context_id: str,
    ) -> List[Tuple[Fact, Memory, bytes]]:
        """Every (fact, owning memory, vector blob) in a namespace for a context.

        Rows come in fact insertion order, which search uses to break ties.
        """
        ns = namespace_for(mode)
        with self._lock:
            rows = self._execute(
                f"""SELECT f.id, f.memory_id, f.text, f.created_at,
                           f.updated_at, f.version, v.embedding,
                           m.context_id, m.text AS m_text, m.tags,
                           m.created_at AS m_created_at,
                           m.updated_at AS m_updated_at,
                           m.version AS m_version,
                           m.direct_access_only
                    FROM facts f
                    JOIN {ns.table} v ON v.fact_id = f.id
                    JOIN memories m ON m.id = f.memory_id
                    WHERE m.context_id=? AND m.direct_access_only=0
                    ORDER BY f.rowid""",
                (context_id,),
            ).fetchall()

        memories: Dict[str, Memory] = {}
        out: List[Tuple[Fact, Memory, bytes]] = []
        for row in rows:
            memory = memories.get(row["memory_id"])
            if memory is None:
                memory = Memory(
                    id=row["memory_id"],
                    context_id=row["context_id"],
                    text=row["m_text"],
                    tags=json.loads(row["tags"]),
                    created_at=row["m_created_at"],
                    updated_at=row["m_updated_at"],
                    version=row["m_version"],
                    direct_access_only=bool(row["direct_access_only"]),
                )
                memories[memory.id] = memory
            out.append((self._row_to_fact(row), memory, bytes(row["embedding"])))
        return out

    # -- Compound writes ---------------------------------------------------

    def insert_memory_with_facts(
        self,
        context_id: str,
        text: str,
        tags: List[str],
        fact_texts: List[str],
        vectors: Sequence[VectorLike],
        mode,
        *,
        direct_access_only: bool = False,
    ) -> Tuple[Memory, List[Fact]]:
        """Create a memory, its facts, and their vectors atomically."""
        ns = namespace_for(mode)
        if len(fact_texts) != len(vectors):
            raise ValidationError(
                f"Got {len(fact_texts)} facts but {len(vectors)} vectors"
            )
        prepared = [self.prepare_vector(v, ns) for v in vectors]
        with self.transaction():
            memory = self.create_memory(
                context_id, text, tags, direct_access_only=direct_access_only,
            )
            facts = self._insert_facts(memory.id, fact_texts, prepared, ns)
        logger.info(
            "added memory %s with %d facts (%s)", memory.id, len(facts), ns.mode.value,
        )
        return memory, facts

    def replace_memory_content(
        self,
        memory_id: str,
        context_id: str,
        text: str,
        tags: List[str],
        fact_texts: List[str],
        vectors: Sequence[VectorLike],
        mode,
    ) -> Optional[Tuple[Memory, List[Fact]]]:
        """Full update: new text/tags, old facts (and vectors) replaced.

        Returns None, with nothing changed, if the memory is not found or
        not owned by context_id.
        """
        ns = namespace_for(mode)
        if len(fact_texts) != len(vectors):
            raise ValidationError(
                f"Got {len(fact_texts)} facts but {len(vectors)} vectors"
            )
        prepared = [self.prepare_vector(v, ns) for v in vectors]
        with self.transaction():
            memory = self.update_memory(memory_id, context_id, text, tags)
            if memory is None:
                return None
            old_ids = self._fact_ids_for(memory_id)
            self._delete_facts(memory_id)
            self._check_no_orphans(old_ids)
            facts = self._insert_facts(memory_id, fact_texts, prepared, ns)
        logger.info(
            "updated memory %s to version %d (%d facts replaced by %d)",
            memory_id, memory.version, len(old_ids), len(facts),
        )
        return memory, facts

    def _insert_facts(
        self,
        memory_id: str,
        fact_texts: List[str],
        prepared: List[np.ndarray],
        ns: VectorNamespace,
    ) -> List[Fact]:
        facts: List[Fact] = []
        for fact_text, arr in zip(fact_texts, prepared):
            fact = self.create_fact(memory_id, fact_text)
            self._execute(
                f"INSERT INTO {ns.table} (fact_id, dim, unit_norm, embedding) "
                "VALUES (?,?,1,?)",
                (fact.id, ns.dimension, pack_vector(arr)),
            )
            facts.append(fact)
        return facts

    # -- Tags --------------------------------------------------------------

    def get_all_tags(
        self, context_id: str, pattern: Optional[str] = None,
    ) -> List[TagSummary]:
        """Every tag in a context with count and first/last memory dates.

        Args:
            context_id: Context to enumerate.
            pattern: Optional regex, with optional leading ``(?i)`` flags.

        Raises:
            ValidationError: If the pattern does not compile.
        """
        regex = compile_tag_pattern(pattern) if pattern else None
        with self._lock:
            rows = self._execute(
                "SELECT tags, created_at, updated_at FROM memories WHERE context_id=?",
                (context_id,),
            ).fetchall()

        agg: Dict[str, List[Any]] = {}
        for row in rows:
            for tag in json.loads(row["tags"]):
                entry = agg.get(tag)
                if entry is None:
                    agg[tag] = [1, row["created_at"], row["updated_at"]]
                else:
                    entry[0] += 1
                    entry[1] = min(entry[1], row["created_at"])
                    entry[2] = max(entry[2], row["updated_at"])

        summaries = [
            TagSummary(tag=tag, memory_count=c, first_memory_date=first,
                       last_memory_date=last)
            for tag, (c, first, last) in agg.items()
        ]
        summaries.sort(key=lambda s: (s.tag.lower(), s.tag))
        if regex is not None:
            summaries = [s for s in summaries if regex.search(s.tag)]
        return summaries

    # -- Stats -------------------------------------------------------------

    def stats(self, context_id: Optional[str] = None) -> Dict[str, Any]:
        """Summary counts for memories, facts, and each namespace."""
        with self._lock:
            if context_id is None:
                memories = self._execute(
                    "SELECT COUNT(*) AS cnt FROM memories"
                ).fetchone()["cnt"]
                facts = self._execute(
                    "SELECT COUNT(*) AS cnt FROM facts"
                ).fetchone()["cnt"]
            else:
                memories = self._execute(
                    "SELECT COUNT(*) AS cnt FROM memories WHERE context_id=?",
                    (context_id,),
                ).fetchone()["cnt"]
                facts = self._execute(
                    """SELECT COUNT(*) AS cnt FROM facts f
                       JOIN memories m ON m.id = f.memory_id
                       WHERE m.context_id=?""",
                    (context_id,),
                ).fetchone()["cnt"]
            vectors = {
                ns.mode.value: self.count_vectors(ns.mode, context_id)
                for ns in all_namespaces()
            }
        return {
            "db_path": self._db_path,
            "schema_version": SCHEMA_VERSION,
            "memories": memories,
            "facts": facts,
            "vectors": vectors,
        }

    # -- Internal helpers --------------------------------------------------

    @staticmethod
    def _row_to_memory(row: sqlite3.Row) -> Memory:
        """Convert a SQLite Row to Memory."""
        return Memory(
            id=row["id"],
            context_id=row["context_id"],
            text=row["text"],
            tags=json.loads(row["tags"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
            direct_access_only=bool(row["direct_access_only"]),
        )

    @staticmethod
    def _row_to_fact(row: sqlite3.Row) -> Fact:
        """Convert a SQLite Row to Fact."""
        return Fact(
            id=row["id"],
            memory_id=row["memory_id"],
            text=row["text"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )
