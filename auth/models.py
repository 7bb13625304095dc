"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service layer do the work; api/models.py owns the wire shape.

Layer rule: no imports from api/ or kv/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An account keyed by the provider's stable subject id.

    uuid is the Google account id, not a locally generated value. It is the
    upsert key: a second sign-in with the same uuid refreshes name/email on
    the existing row instead of creating a new one.
    """

    uuid: str
    name: str
    email: str | None = None
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session:
    """A server-side session backing the session cookie.

    Valid while now < expires_at. Several sessions per user may coexist
    (one per browser/device).
    """

    user_id: int
    token: str
    expires_at: str  # UTC ISO 8601, microsecond precision
    id: int | None = None
    created_at: str | None = None


@dataclass
class OAuthIdentity:
    """Identity returned by the provider after a successful code exchange."""

    provider_id: str
    name: str
    email: str
