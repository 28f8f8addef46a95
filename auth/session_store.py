"""
auth/session_store.py -- Two-layer session storage (memory + SQL table).

Where a session lives depends on its store flag:

  store=True   the durable `sessions` table is the only copy. Every load
               reads the row, so a logout, id rotation or purge done by any
               process sharing the database takes effect on the next request
               everywhere.
  store=False  the in-process memory layer holds it. It never reaches the
               table and is lost on restart (and is invisible to other worker
               processes).

Flipping the flag moves the record: setting it upserts the row and drops the
memory entry, clearing it deletes the row. A session that was memory-only
already is re-saved without touching the table.

Each entry carries an absolute expires_at (epoch seconds) computed at save
time from the configured TTLs: remember_ttl for remembered sessions, ttl
otherwise. Expired entries are ignored on load and deleted by
purge_expired(), which the app runs on a timer.

Concurrency:
  Writes to one session id are serialized by a striped set of
  threading.Locks (a fixed pool indexed by the id's hash); two requests
  carrying the same cookie cannot interleave a save. The last writer wins --
  there is no merge. Across processes the row upsert is a single statement.

  load() hands out copies, so a request mutating its record does not affect
  other in-flight requests until it calls save().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

from sqlalchemy import Column, Float, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import SessionRecord
from auth.store import dialect_insert, make_engine

logger = logging.getLogger("gatehouse.sessions")

_DEFAULT_DB_URL = "sqlite:///gatehouse.db"
_DEFAULT_TTL = 6 * 60 * 60
_DEFAULT_REMEMBER_TTL = 60 * 24 * 60 * 60
_LOCK_STRIPES = 64

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("session_id", String(64), primary_key=True),
    Column("data", Text, nullable=False),  # JSON attribute blob
    Column("expires_at", Float, nullable=False, index=True),
)


def new_session_id() -> str:
    """Return an unguessable session id (256 bits from the OS CSPRNG)."""
    return secrets.token_urlsafe(32)


class SessionStore:
    """Persist SessionRecords keyed by session id.

    Usage:
        store = SessionStore("sqlite:///gatehouse.db", ttl=3600)
        record = store.create()
        record.user_id = 42
        record.store = True
        store.save(record)
        same = store.load(record.session_id)
        store.purge_expired()
        store.close()
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        ttl: int = _DEFAULT_TTL,
        remember_ttl: int = _DEFAULT_REMEMBER_TTL,
    ) -> None:
        self.ttl = ttl
        self.remember_ttl = remember_ttl
        self.engine: Engine = make_engine(db_url)
        self._insert = dialect_insert(self.engine)
        _metadata.create_all(self.engine)
        self._memory: dict[str, SessionRecord] = {}
        self._memory_lock = threading.Lock()
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Hold the write lock for one session id."""
        with self._locks[hash(session_id) % _LOCK_STRIPES]:
            yield

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self) -> SessionRecord:
        """Allocate a fresh anonymous record. Nothing is written until save()."""
        return SessionRecord(session_id=new_session_id(), expires_at=time.time() + self.ttl)

    def load(self, session_id: str) -> SessionRecord | None:
        """Return a copy of the live record for session_id, or None.

        Expired records are treated as missing.
        """
        if not session_id:
            return None
        now = time.time()
        with self._memory_lock:
            record = self._memory.get(session_id)
        if record is not None:
            if record.expires_at <= now:
                return None
            return _copy(record)

        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.session_id == session_id)).fetchone()
        if row is None or row.expires_at <= now:
            return None
        return _row_to_record(row)

    def save(self, record: SessionRecord, *, was_stored: bool | None = None) -> SessionRecord:
        """Upsert record and return it with its refreshed expiry.

        was_stored tells a memory-only save whether a durable row may exist
        for this id and has to be deleted. Left as None, the row is deleted
        unless the memory layer already holds the session.
        """
        lifetime = self.remember_ttl if record.remember else self.ttl
        record.expires_at = time.time() + lifetime
        with self.lock(record.session_id):
            if record.store:
                with self.engine.begin() as conn:
                    conn.execute(self._upsert(record))
                with self._memory_lock:
                    self._memory.pop(record.session_id, None)
                return record

            with self._memory_lock:
                in_memory = record.session_id in self._memory
                self._memory[record.session_id] = _copy(record)
            if was_stored or (was_stored is None and not in_memory):
                with self.engine.begin() as conn:
                    conn.execute(_sessions.delete().where(_sessions.c.session_id == record.session_id))
        return record

    def destroy(self, session_id: str) -> None:
        """Remove session_id from both layers."""
        with self.lock(session_id):
            with self._memory_lock:
                self._memory.pop(session_id, None)
            with self.engine.begin() as conn:
                conn.execute(_sessions.delete().where(_sessions.c.session_id == session_id))

    def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number of durable rows removed."""
        now = time.time()
        with self._memory_lock:
            expired = [sid for sid, rec in self._memory.items() if rec.expires_at <= now]
            for sid in expired:
                del self._memory[sid]
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now))
        removed = result.rowcount
        logger.info("Purged %d expired sessions (%d in memory)", removed, len(expired))
        return removed

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # SQL helpers
    # ------------------------------------------------------------------

    def _upsert(self, record: SessionRecord):
        """Build an INSERT ... ON CONFLICT DO UPDATE for the engine's dialect."""
        stmt = self._insert(_sessions).values(
            session_id=record.session_id,
            data=_serialize(record),
            expires_at=record.expires_at,
        )
        return stmt.on_conflict_do_update(
            index_elements=[_sessions.c.session_id],
            set_={"data": stmt.excluded.data, "expires_at": stmt.excluded.expires_at},
        )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _copy(record: SessionRecord) -> SessionRecord:
    return replace(record, data=dict(record.data))


def _serialize(record: SessionRecord) -> str:
    return json.dumps(
        {
            "user_id": record.user_id,
            "store": record.store,
            "remember": record.remember,
            "data": record.data,
        }
    )


def _row_to_record(row) -> SessionRecord:
    blob = json.loads(row.data)
    return SessionRecord(
        session_id=row.session_id,
        user_id=blob.get("user_id"),
        store=bool(blob.get("store", True)),
        remember=bool(blob.get("remember", False)),
        data=blob.get("data") or {},
        expires_at=row.expires_at,
    )
