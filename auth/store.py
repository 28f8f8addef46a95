"""
auth/store.py -- SQLAlchemy Core persistence layer for users and permissions.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Flows and dependencies never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Username uniqueness is enforced by the UNIQUE constraint on users.username,
  not by application locking. Two concurrent signups for the same name both
  reach INSERT; the database lets one commit and the other gets an
  IntegrityError, which insert() turns into DuplicateUsernameError.
  Permission grants go the other way: INSERT ... ON CONFLICT DO NOTHING, so
  a grant racing another grant of the same token just reports no change.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateUsernameError
from auth.models import User

_DEFAULT_DB_URL = "sqlite:///gatehouse.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("credential_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_user_permissions = Table(
    "user_permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(255), nullable=False),
    UniqueConstraint("user_id", "token", name="uq_user_permissions_user_token"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    WAL lets readers proceed while a writer holds the lock. PRAGMAs are
    per-connection, so this runs on each connect from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite tweaks both stores rely on."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


_DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def dialect_insert(engine: Engine):
    """Return the dialect-specific insert() that supports ON CONFLICT clauses.

    Raises ValueError for databases other than SQLite and PostgreSQL.
    """
    try:
        return _DIALECT_INSERTS[engine.dialect.name]
    except KeyError:
        raise ValueError(
            f"Unsupported database dialect {engine.dialect.name!r}. Gatehouse runs on SQLite or PostgreSQL."
        ) from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their permission tokens.

    Usage:
        store = UserStore()
        user_id = store.insert("alice", "Alice", hasher.hash("secret"))
        store.grant_permission(user_id, "todos:write")
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        self._insert = dialect_insert(self.engine)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, _load_permissions(conn, row.id))

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, _load_permissions(conn, row.id))

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, username: str, display_name: str, credential_hash: str) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateUsernameError if the username is already taken,
        including when a concurrent request committed the same name first.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=username,
                        display_name=display_name,
                        credential_hash=credential_hash,
                        created_at=_now_iso(),
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateUsernameError() from exc

    def update_credential_hash(self, user_id: int, credential_hash: str) -> bool:
        """Replace a user's stored hash (used to upgrade outdated parameters).

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(credential_hash=credential_hash)
            )
        return result.rowcount > 0

    def grant_permission(self, user_id: int, token: str) -> bool:
        """Add token to the user's permission set.

        Returns True if the grant was new, False if the user already had it,
        including when a concurrent grant of the same token committed first.
        Raises IntegrityError if user_id does not exist.
        """
        stmt = (
            self._insert(_user_permissions)
            .values(user_id=user_id, token=token)
            .on_conflict_do_nothing(index_elements=[_user_permissions.c.user_id, _user_permissions.c.token])
        )
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount > 0

    def revoke_permission(self, user_id: int, token: str) -> bool:
        """Remove token from the user's permission set. Returns True if removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _user_permissions.delete().where(
                    (_user_permissions.c.user_id == user_id) & (_user_permissions.c.token == token)
                )
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _load_permissions(conn: Connection, user_id: int) -> frozenset[str]:
    rows = conn.execute(select(_user_permissions.c.token).where(_user_permissions.c.user_id == user_id)).fetchall()
    return frozenset(r.token for r in rows)


def _row_to_user(row, permissions: frozenset[str]) -> User:
    return User(
        id=row.id,
        username=row.username,
        display_name=row.display_name,
        credential_hash=row.credential_hash,
        permissions=permissions,
        created_at=row.created_at,
    )
