"""
auth/service.py -- Sign-in, session lookup, and sign-out, composed.

AuthService is the one object the HTTP layer talks to. It is built
explicitly in the app lifespan (or a test fixture) from its collaborators:

  user_store / session_store -- None when DATABASE_URL is not configured
  oauth                      -- anything with build_authorization_url() and
                                async exchange_code_for_identity()

No module-level store handle exists anywhere; swapping the database or the
provider in tests means constructing a different AuthService.

Layer rule: no imports from api/ or kv/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.errors import ConfigurationError, UpstreamAuthError
from auth.models import Session, User
from auth.store import SessionStore, UserStore
from auth.tokens import (
    generate_session_token,
    generate_state_token,
    safe_redirect_path,
    session_expiry,
    verify_state_token,
)

logger = logging.getLogger("resumelens.auth")

DEFAULT_SIGN_IN_PATH = "/"
DEFAULT_POST_LOGIN_PATH = "/upload"


class AuthService:
    def __init__(
        self,
        user_store: UserStore | None,
        session_store: SessionStore | None,
        oauth,
    ) -> None:
        self.user_store = user_store
        self.session_store = session_store
        self.oauth = oauth

    @property
    def database_configured(self) -> bool:
        return self.user_store is not None and self.session_store is not None

    def _stores(self) -> tuple[UserStore, SessionStore]:
        if self.user_store is None or self.session_store is None:
            raise ConfigurationError("DATABASE_URL is not configured.")
        return self.user_store, self.session_store

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    def begin_sign_in(self, next_path: str | None) -> str:
        """Return the provider URL to redirect to, with next_path sealed in the state."""
        redirect_to = safe_redirect_path(next_path, DEFAULT_SIGN_IN_PATH)
        state = generate_state_token(redirect_to)
        return self.oauth.build_authorization_url(state)

    async def complete_sign_in(self, code: str) -> tuple[User, Session]:
        """Exchange code for an identity, upsert the user, and open a session.

        An identity without an email is rejected before anything is written.
        """
        user_store, session_store = self._stores()
        identity = await self.oauth.exchange_code_for_identity(code)
        if not identity.email:
            raise UpstreamAuthError("Google account has no email address.", code="no_email")

        user = user_store.upsert_user(identity.provider_id, identity.name, identity.email)
        session = session_store.create_session(user.id, generate_session_token(), session_expiry())
        logger.info("Signed in user id=%s (session expires %s)", user.id, session.expires_at)
        return user, session

    @staticmethod
    def resolve_post_login_redirect(state: str | None) -> str:
        """Return the path sealed in a valid state token, else /upload.

        A tampered or expired state is never trusted for the redirect target.
        """
        payload = verify_state_token(state)
        if payload is None:
            if state:
                logger.warning("Discarding invalid or expired OAuth state token")
            return DEFAULT_POST_LOGIN_PATH
        return safe_redirect_path(payload["redirect_to"], DEFAULT_POST_LOGIN_PATH)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_authenticated_user(self, token: str | None) -> User | None:
        """Return the owner of a valid session, or None."""
        if not token:
            return None
        _, session_store = self._stores()
        found = session_store.get_valid_session(token)
        return found[1] if found is not None else None

    def sign_out(self, token: str) -> None:
        """Destroy the server-side session for token (idempotent)."""
        _, session_store = self._stores()
        session_store.delete_session(token)

    def purge_expired_sessions(self, now: datetime | None = None) -> int:
        _, session_store = self._stores()
        removed = session_store.purge_expired_sessions(now or datetime.now(timezone.utc))
        if removed:
            logger.info("Purged %d expired session(s)", removed)
        return removed
