"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_user /
_row_to_session are the mappers. Route and service code never touches SQL
directly.

Both stores receive an Engine built by create_db_engine(). Nothing in this
module holds a process-wide connection: the engine is constructed in the
app lifespan (or a test fixture) and injected.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  upsert_user() is one INSERT ... ON CONFLICT (uuid) DO UPDATE statement, so
  two callbacks racing for the same Google account cannot create duplicate
  rows -- the UNIQUE(uuid) constraint arbitrates, not a read-then-write.
  Session rows are independent and keyed by a unique token.

Timestamps:
  Stored as UTC ISO 8601 strings with fixed microsecond precision. A fixed
  width keeps lexical order equal to time order, so expires_at > :now works
  the same on SQLite and PostgreSQL.

Layer rule: no imports from api/ or kv/. Import from core/ is not needed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from auth.errors import ConfigurationError
from auth.models import Session, User

logger = logging.getLogger("resumelens.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("uuid", String(255), nullable=False, unique=True),  # provider's stable user ID
    Column("name", String(255), nullable=False),
    Column("email", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("session_token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_sessions_expires_at", "expires_at"),
)

# Dialect-specific INSERT constructs that support ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite,
    which would leave ON DELETE CASCADE inert.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine for db_url and create the users/sessions tables if missing."""
    if not db_url:
        raise ConfigurationError("DATABASE_URL is not configured.")
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=not db_url.startswith("sqlite"))
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    logger.info("Auth tables ready (dialect=%s)", engine.dialect.name)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Render a datetime as a fixed-width UTC ISO 8601 string.

    Naive datetimes are taken to be UTC already.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def upsert_insert(engine: Engine):
    """Return the dialect insert() that supports ON CONFLICT DO UPDATE.

    Raises ConfigurationError for dialects other than SQLite and PostgreSQL.
    """
    insert = _UPSERT_INSERTS.get(engine.dialect.name)
    if insert is None:
        raise ConfigurationError(f"Unsupported database dialect for upsert: {engine.dialect.name!r}")
    return insert


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_db_engine("sqlite:///resumelens.db")
        store = UserStore(engine)
        user = store.upsert_user("108234", "Ada", "ada@example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def upsert_user(self, external_id: str, name: str, email: str | None) -> User:
        """Create the user on first sight of external_id, else refresh name/email.

        Atomic with respect to UNIQUE(uuid): the conflict is resolved by the
        database inside one statement. created_at is only written on insert;
        updated_at is refreshed on every call.
        """
        insert = upsert_insert(self.engine)
        now = now_iso()
        stmt = insert(users).values(uuid=external_id, name=name, email=email, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[users.c.uuid],
            set_={
                "name": stmt.excluded.name,
                "email": stmt.excluded.email,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self.engine.connect() as conn:
            conn.execute(stmt)
            row = conn.execute(users.select().where(users.c.uuid == external_id)).fetchone()
            conn.commit()
        return _row_to_user(row)

    def get_by_external_id(self, external_id: str) -> User | None:
        """Look up a user by provider subject id. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.uuid == external_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def count(self) -> int:
        """Number of user rows. Inspection helper for tests; no request path calls it."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return result or 0


class SessionStore:
    """Repository for Session entities.

    Expired rows are never returned by get_valid_session(); they stay in the
    table until delete_session() or purge_expired_sessions() removes them.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_session(self, user_id: int, token: str, expires_at: datetime) -> Session:
        """Insert a new session row and return it.

        Raises sqlalchemy.exc.IntegrityError on a duplicate token or an
        unknown user_id.
        """
        created = now_iso()
        expires = to_iso(expires_at)
        with self.engine.connect() as conn:
            result = conn.execute(
                sessions.insert().values(
                    user_id=user_id,
                    session_token=token,
                    expires_at=expires,
                    created_at=created,
                )
            )
            conn.commit()
            session_id = result.inserted_primary_key[0]
        return Session(id=session_id, user_id=user_id, token=token, expires_at=expires, created_at=created)

    def get_valid_session(self, token: str, now: datetime | None = None) -> tuple[Session, User] | None:
        """Return (session, owner) if token names a session with expires_at > now.

        Expired and nonexistent sessions are indistinguishable: both give None.
        """
        cutoff = to_iso(now) if now is not None else now_iso()
        query = (
            select(
                sessions.c.id.label("session_id"),
                sessions.c.user_id,
                sessions.c.session_token,
                sessions.c.expires_at,
                sessions.c.created_at.label("session_created_at"),
                users.c.id,
                users.c.uuid,
                users.c.name,
                users.c.email,
                users.c.created_at,
                users.c.updated_at,
            )
            .select_from(sessions.join(users, sessions.c.user_id == users.c.id))
            .where((sessions.c.session_token == token) & (sessions.c.expires_at > cutoff))
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        session = Session(
            id=row.session_id,
            user_id=row.user_id,
            token=row.session_token,
            expires_at=row.expires_at,
            created_at=row.session_created_at,
        )
        return session, _row_to_user(row)

    def delete_session(self, token: str) -> None:
        """Delete the session for token. A missing row is not an error."""
        with self.engine.connect() as conn:
            conn.execute(sessions.delete().where(sessions.c.session_token == token))
            conn.commit()

    def purge_expired_sessions(self, now: datetime | None = None) -> int:
        """Delete every session whose expiry has passed. Returns rows removed."""
        cutoff = to_iso(now) if now is not None else now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def list_for_user(self, user_id: int) -> list[Session]:
        """Return all session rows for a user, expired ones included (newest first).

        Inspection helper for tests; no request path calls it.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                sessions.select().where(sessions.c.user_id == user_id).order_by(sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        uuid=row.uuid,
        name=row.name,
        email=row.email,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.session_token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
