"""
api/routes/auth.py -- The action-routed authentication endpoint.

Routes (single path, dispatched on ?action=):
  GET  /auth?action=signin&next=<path>             -- 302 to Google
  GET  /auth?action=callback&code=<c>&state=<s>    -- 302 to post-login path, sets cookie
  POST /auth?action=signout                        -- 200 {success, message}, clears cookie
  GET  /auth?action=status                         -- 200 {isAuthenticated, user}
  OPTIONS /auth                                    -- 200 empty (CORS preflight)

A missing action means status. Unknown actions are 400, a known action with
the wrong method is 405.

Failure policy per action:
  signin   -- 500 JSON envelope (caller is a browser about to leave the site).
  callback -- always a 302. Failures go to /?error=<code> so the browser is
              never stranded on a raw error page halfway through the flow.
  signout  -- the cookie is cleared whether or not the server-side delete
              worked; the response is still 200.
  status   -- always 200. Internal errors downgrade to isAuthenticated=false
              plus an error hint.

Security:
  [C2] The post-login path is checked by safe_redirect_path() both when it
       is sealed into the state token and when it comes back out.
  [M5] Cache-Control: no-store on responses that set or reveal session state.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import ErrorDetail, ErrorResponse, PublicUser, SignOutResponse, StatusResponse, TrialInfo
from auth.dependencies import get_auth_service, get_session_token
from auth.errors import AuthError, ConfigurationError, ValidationError
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

logger = logging.getLogger("resumelens.api.auth")

router = APIRouter()

# action -> the only HTTP method it accepts
_ACTION_METHODS: dict[str, str] = {
    "signin": "GET",
    "callback": "GET",
    "signout": "POST",
    "status": "GET",
}


@router.api_route("/auth", methods=["GET", "POST", "OPTIONS"])
@limiter.limit(AUTH_RATE_LIMIT)
async def auth_endpoint(request: Request) -> Response:
    """Dispatch one /auth request to its action handler.

    Validation errors raise ValidationError, which the app-level handler
    renders as a JSON envelope. Anything unexpected inside a handler is
    caught here so no action can escape as an unhandled fault.
    """
    if request.method == "OPTIONS":
        return Response(status_code=200)

    action = request.query_params.get("action") or "status"
    expected_method = _ACTION_METHODS.get(action)
    if expected_method is None:
        raise ValidationError(f"Unknown action: {action}", code="unknown_action")
    if request.method != expected_method:
        raise ValidationError("Method not allowed", code="method_not_allowed", status_code=405)

    service = get_auth_service(request)
    handler = _HANDLERS[action]
    try:
        return await handler(request, service)
    except Exception:
        logger.exception("Auth endpoint error (action=%s)", action)
        return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Action handlers
# ---------------------------------------------------------------------------


async def _handle_sign_in(request: Request, service: AuthService) -> Response:
    """Seal ?next= into a state token and redirect to Google."""
    try:
        url = service.begin_sign_in(request.query_params.get("next"))
    except ConfigurationError as exc:
        logger.error("Sign-in unavailable: %s", exc.message)
        return _error_response(500, exc.code, exc.message)
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


async def _handle_callback(request: Request, service: AuthService) -> Response:
    """Complete sign-in: code -> identity -> user -> session -> cookie -> redirect.

    Flow:
      1. A provider ?error= short-circuits before any code exchange.
      2. Missing ?code= is rejected.
      3. Code exchange and identity fetch (UpstreamAuthError on failure,
         code="no_email" when the account has no email).
      4. Upsert the user and create a session with a fresh token.
      5. Set the cookie and redirect to the path sealed in ?state=, or
         /upload when the state is absent, tampered, or expired.
    """
    params = request.query_params

    provider_error = params.get("error")
    if provider_error:
        logger.warning("OAuth provider returned error: %r", provider_error)
        return _error_redirect(provider_error)

    code = params.get("code")
    if not code:
        return _error_redirect("missing_code")

    try:
        _user, session = await service.complete_sign_in(code)
    except AuthError as exc:
        logger.warning("OAuth callback failed (%s): %s", exc.code, exc.message)
        return _error_redirect(exc.code)
    except Exception:
        logger.exception("OAuth callback error")
        return _error_redirect("server_error")

    target = service.resolve_post_login_redirect(params.get("state"))
    resp = RedirectResponse(target, status_code=302)
    set_session_cookie(resp, session.token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


async def _handle_sign_out(request: Request, service: AuthService) -> Response:
    """Destroy the server-side session if there is one; always clear the cookie."""
    token = get_session_token(request)
    if token:
        try:
            service.sign_out(token)
        except AuthError as exc:
            logger.warning("Session not destroyed on sign-out: %s", exc.message)
        except Exception:
            logger.exception("Failed to destroy session on sign-out")

    resp = JSONResponse(content=SignOutResponse().model_dump())
    clear_session_cookie(resp)
    return resp


async def _handle_status(request: Request, service: AuthService) -> Response:
    """Report whether the session cookie names a valid session. Always 200."""
    if not service.database_configured:
        logger.error("DATABASE_URL is not configured")
        return _status_response(StatusResponse(is_authenticated=False, user=None, error="Database not configured"))

    token = get_session_token(request)
    if not token:
        return _status_response(StatusResponse(is_authenticated=False, user=None))

    try:
        user = service.get_authenticated_user(token)
    except Exception:
        logger.exception("Status check failed")
        return _status_response(StatusResponse(is_authenticated=False, user=None, error="Session lookup failed"))

    if user is None:
        return _status_response(StatusResponse(is_authenticated=False, user=None))

    return _status_response(
        StatusResponse(
            is_authenticated=True,
            user=PublicUser.from_user(user),
            trial=TrialInfo(),
            plan_type="unlimited",
        )
    )


_HANDLERS = {
    "signin": _handle_sign_in,
    "callback": _handle_callback,
    "signout": _handle_sign_out,
    "status": _handle_status,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_redirect(reason: str) -> RedirectResponse:
    resp = RedirectResponse("/?" + urlencode({"error": reason}), status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


def _status_response(body: StatusResponse) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=body.to_content())
    resp.headers["Cache-Control"] = "no-store"
    return resp
