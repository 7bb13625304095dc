"""
kv/store.py -- SQLAlchemy Core key/value store shared by the frontend.

Pattern: Repository, same shape as auth/store.py. KVStore receives an
Engine (normally the one built by auth.store.create_db_engine()) and owns
only the kv_store table.

Scoping:
  Every operation takes an optional user_id. With a user_id the operation
  sees only that user's rows; without one it sees only global rows
  (user_id IS NULL). Keys are unique across the whole table, so clients
  namespace them (e.g. "resume:<id>").

Pattern matching:
  list() accepts shell-style patterns where "*" matches any run of
  characters. The pattern is translated to a LIKE expression with "%" and
  "_" escaped, so only "*" is a wildcard.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text
from sqlalchemy.engine import Engine

from auth.store import metadata, now_iso, upsert_insert

_LIKE_ESCAPE = "\\"

# Declared on the auth MetaData so the user_id foreign key resolves against
# users. KVStore() creates only this table; create_db_engine() creates users.
_kv = Table(
    "kv_store",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(512), nullable=False, unique=True),
    Column("value", Text, nullable=False),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def wildcard_to_like(pattern: str) -> str:
    """Translate a "*" wildcard pattern into a LIKE pattern (escape char "\\").

    >>> wildcard_to_like("resume:*")
    'resume:%'
    """
    escaped = (
        pattern.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )
    return escaped.replace("*", "%")


class KVStore:
    """Repository for user-scoped and global key/value pairs.

    Usage:
        kv = KVStore(engine)
        kv.set("resume:42:analysis", payload, user_id=7)
        kv.list("resume:42:*", user_id=7)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine, tables=[_kv])

    def _scope(self, user_id: int | None):
        if user_id is None:
            return _kv.c.user_id.is_(None)
        return _kv.c.user_id == user_id

    def get(self, key: str, user_id: int | None = None) -> str | None:
        """Return the value for key in the given scope, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _kv.select().with_only_columns(_kv.c.value).where((_kv.c.key == key) & self._scope(user_id))
            ).fetchone()
        return row.value if row is not None else None

    def set(self, key: str, value: str, user_id: int | None = None) -> bool:
        """Insert or overwrite key. One atomic statement keyed on UNIQUE(key).

        On conflict only value and updated_at change; the row keeps the
        scope it was created with.
        """
        insert = upsert_insert(self.engine)
        now = now_iso()
        stmt = insert(_kv).values(key=key, value=value, user_id=user_id, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_kv.c.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()
        return True

    def delete(self, key: str, user_id: int | None = None) -> bool:
        """Delete key in the given scope. A missing key is not an error."""
        with self.engine.connect() as conn:
            conn.execute(_kv.delete().where((_kv.c.key == key) & self._scope(user_id)))
            conn.commit()
        return True

    def list(self, pattern: str, return_values: bool = False, user_id: int | None = None) -> list:
        """Return keys matching pattern (ordered by key), or {key, value} dicts."""
        like = wildcard_to_like(pattern)
        with self.engine.connect() as conn:
            rows = conn.execute(
                _kv.select()
                .with_only_columns(_kv.c.key, _kv.c.value)
                .where(_kv.c.key.like(like, escape=_LIKE_ESCAPE) & self._scope(user_id))
                .order_by(_kv.c.key)
            ).fetchall()
        if return_values:
            return [{"key": r.key, "value": r.value} for r in rows]
        return [r.key for r in rows]

    def flush(self, user_id: int | None = None) -> bool:
        """Delete every row in the given scope."""
        with self.engine.connect() as conn:
            conn.execute(_kv.delete().where(self._scope(user_id)))
            conn.commit()
        return True
