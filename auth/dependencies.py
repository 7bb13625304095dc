"""
auth/dependencies.py -- FastAPI request helpers for the auth endpoint.

get_auth_service() returns the AuthService wired into app.state by the
lifespan (or the test fixture). get_session_token() reads the opaque session
token from the cookie.

Layer rule: no imports from kv/ or api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.service import AuthService
from core.config import get_settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_session_token(request: Request) -> str | None:
    """Return the session token from the cookie, or None when absent/empty."""
    return request.cookies.get(get_settings().session_cookie_name) or None
