"""
auth/tokens.py -- OAuth state tokens, session tokens, and the session cookie.

Security design decisions:
  State token: python-jose with HS256. The token round-trips the post-login
       redirect path through the provider's `state` parameter. It is signed
       with SECRET_KEY and carries an expiry, so the server keeps no state
       between the authorization redirect and the callback. Verification
       returns None on any failure -- the callback treats that as "use the
       default redirect", never as a hard error.

       A random nonce makes every state value unique, and the `purpose`
       claim keeps a state token from ever being confused with another JWT
       signed by the same key.

  Session token: secrets.token_hex(32) gives 256 bits of entropy. The token
       is opaque; its meaning lives in the sessions table, so sign-out can
       revoke it server-side (a stateless JWT could not be revoked).

  Redirect paths: safe_redirect_path() only accepts server-local paths [C2].
       The state token is signed, but the path inside it came from the
       ?next= query param of an unauthenticated request.

Layer rule: no imports from api/ or kv/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_STATE_PURPOSE = "oauth_state"

# ---------------------------------------------------------------------------
# State token encode / decode
# ---------------------------------------------------------------------------


def generate_state_token(redirect_to: str, ttl_seconds: int = 0, now: datetime | None = None) -> str:
    """Encode a signed, short-lived state token carrying the post-login path.

    Args:
        redirect_to: Path to send the browser to once sign-in completes.
        ttl_seconds: Freshness window. If 0 (default), uses
                     Settings.state_token_ttl_seconds.
        now:         Issuance time; defaults to the current UTC time.
    """
    duration = ttl_seconds if ttl_seconds > 0 else _settings.state_token_ttl_seconds
    issued = now or datetime.now(timezone.utc)
    payload = {
        "redirect_to": redirect_to,
        "purpose": _STATE_PURPOSE,
        "nonce": secrets.token_urlsafe(16),
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_state_token(token: str | None) -> dict | None:
    """Decode and verify a state token. Returns {"redirect_to": path} or None.

    None covers every failure: empty input, malformed token, bad signature,
    non-canonical signature encoding, expired token, or a payload without a
    string redirect_to.
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not _signature_is_canonical(token):
        return None
    if payload.get("purpose") != _STATE_PURPOSE:
        return None
    redirect_to = payload.get("redirect_to")
    if not isinstance(redirect_to, str):
        return None
    return {"redirect_to": redirect_to}


def _signature_is_canonical(token: str) -> bool:
    """True if the signature segment is the exact base64url of its bytes.

    The decoder ignores the spare low bits of the last character and skips
    characters outside the alphabet, so several strings decode to one valid
    signature. Only the canonical spelling is accepted.
    """
    signature = token.rsplit(".", 1)[-1].encode("utf-8")
    return base64url_encode(base64url_decode(signature)) == signature


def safe_redirect_path(path: str | None, default: str) -> str:
    """Return path if it is a server-local path, otherwise default. [C2]

    Rejects absolute URLs (https://attacker.com), protocol-relative URLs
    (//attacker.com) and the backslash variant (/\\attacker.com) that some
    browsers normalize to a protocol-relative URL.
    """
    if path and path.startswith("/") and not path.startswith(("//", "/\\")):
        return path
    return default


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Return a fresh opaque session token (64 hex chars, 256 bits)."""
    return secrets.token_hex(32)


def session_expiry(now: datetime | None = None) -> datetime:
    """Return the expiry timestamp for a session created at `now`."""
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=_settings.session_ttl_seconds)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": sent on top-level navigations, which the OAuth callback
        redirect chain relies on, but not on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side session TTL so both expire together.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_ttl_seconds,
        path="/",
    )


def clear_session_cookie(response) -> None:
    """Expire the session cookie on the client."""
    response.delete_cookie(
        _settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )
