"""
auth/oauth.py -- Google OAuth 2.0 authorization-code client (authlib).

The adapter covers the two provider-facing steps of sign-in:
  1. build_authorization_url() -- where to send the browser. Pure URL
     construction, no network.
  2. exchange_code_for_identity() -- trade the callback's code for an access
     token, then fetch the userinfo document with it.

OAuth state (CSRF protection) is NOT kept in a server-side session here. The
caller passes a signed state token from auth/tokens.py and this module hands
it to Google verbatim. That keeps the endpoint stateless: no
SessionMiddleware, no server-side state between redirect and callback.

Security notes:
  [H1] A userinfo document without an email is a terminal failure. Accounts
       are keyed by Google's id, but the product has no use for an account
       it cannot contact, and we never create a user without one.

Every provider-side failure (rejected code, network error, malformed
response) surfaces as UpstreamAuthError so the callback has exactly one
exception type to turn into a redirect.

Layer rule: no imports from api/ or kv/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from auth.errors import ConfigurationError, UpstreamAuthError
from auth.models import OAuthIdentity
from core.config import Settings

logger = logging.getLogger("resumelens.auth.oauth")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = "openid email profile"

_HTTP_TIMEOUT = 10.0


class GoogleOAuthClient:
    """Thin adapter over authlib's AsyncOAuth2Client for the Google code flow.

    Usage:
        client = GoogleOAuthClient.from_settings(get_settings())
        url = client.build_authorization_url(state)
        identity = await client.exchange_code_for_identity(code)

    http_kwargs are passed through to the underlying httpx.AsyncClient. Tests
    use it to install an httpx.MockTransport.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_kwargs: dict | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._http_kwargs = {"timeout": _HTTP_TIMEOUT, **(http_kwargs or {})}

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleOAuthClient:
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("Google OAuth is not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.")

    def build_authorization_url(self, state: str) -> str:
        """Return Google's authorization URL with state passed through unmodified."""
        self._require_configured()
        return prepare_grant_uri(
            GOOGLE_AUTHORIZE_URL,
            client_id=self.client_id,
            response_type="code",
            redirect_uri=self.redirect_uri,
            scope=GOOGLE_SCOPES,
            state=state,
            access_type="online",
            prompt="select_account",
        )

    async def exchange_code_for_identity(self, code: str) -> OAuthIdentity:
        """Exchange an authorization code for the signed-in user's identity.

        Raises:
            ConfigurationError: client credentials are missing.
            UpstreamAuthError:  Google rejected the code, the network call
                                failed, the response was malformed, or the
                                identity has no email (code="no_email").
        """
        self._require_configured()
        async with AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=GOOGLE_SCOPES,
            redirect_uri=self.redirect_uri,
            token_endpoint_auth_method="client_secret_post",
            **self._http_kwargs,
        ) as client:
            try:
                await client.fetch_token(GOOGLE_TOKEN_URL, code=code, grant_type="authorization_code")
                resp = await client.get(GOOGLE_USERINFO_URL)
                resp.raise_for_status()
                info = resp.json()
            except OAuthError as exc:
                logger.warning("Google rejected the authorization code: %s", exc.error)
                raise UpstreamAuthError("Google rejected the authorization code.") from exc
            except httpx.HTTPError as exc:
                logger.warning("Google OAuth request failed: %s", type(exc).__name__)
                raise UpstreamAuthError("Could not reach Google to complete sign-in.") from exc
            except ValueError as exc:
                # json.JSONDecodeError is a ValueError subclass
                raise UpstreamAuthError("Google returned a malformed response.") from exc

        return _identity_from_userinfo(info)


def _identity_from_userinfo(info) -> OAuthIdentity:
    """Normalize a Google userinfo document into an OAuthIdentity.

    The v2 endpoint names the subject "id"; the OIDC endpoint names it "sub".
    Both are accepted.
    """
    if not isinstance(info, dict):
        raise UpstreamAuthError("Google returned a malformed userinfo document.")
    provider_id = info.get("id") or info.get("sub")
    if not provider_id:
        raise UpstreamAuthError("Google userinfo did not include a subject id.")
    email = info.get("email")
    if not email:
        raise UpstreamAuthError("Google account has no email address.", code="no_email")
    name = info.get("name") or email.split("@", 1)[0]
    return OAuthIdentity(provider_id=str(provider_id), name=name, email=email)
