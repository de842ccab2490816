"""Credential manager: OAuth PKCE sign-in with just-in-time refresh, or an API key.

The OAuth credential lives in the ``auth`` record. The API key is part of the
runtime config. :meth:`CredentialManager.current_credential` prefers OAuth and
refreshes it transparently when it is within five minutes of expiry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
from pydantic import Field, ValidationError

from conductor.auth.pkce import extract_account_info, generate_pkce, generate_state, parse_jwt
from conductor.config import settings
from conductor.errors import AuthError, RefreshFailure
from conductor.models import Record
from conductor.runtime import mask_secret

if TYPE_CHECKING:
    from conductor.runtime import RuntimeConfigStore
    from conductor.storage import DurableStore

logger = logging.getLogger(__name__)

AUTH_PATH = "auth"
REFRESH_WINDOW = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)
TOKEN_TIMEOUT = 15.0


class Account(Record):
    """Identity derived from the id-token claims."""

    email: str = ""
    name: str = ""
    account_id: str = ""
    plan_type: str = ""
    organizations: list[Any] = Field(default_factory=list)


class OAuthCredential(Record):
    type: Literal["oauth"] = "oauth"
    access_token: str
    refresh_token: str = ""
    id_token: str = ""
    id_token_claims: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime
    account: Account = Field(default_factory=Account)
    authenticated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def expires_within(self, window: timedelta) -> bool:
        return datetime.now(UTC) + window >= self.expires_at

    @property
    def expired(self) -> bool:
        return self.expires_within(timedelta(0))


class ApiKeyCredential(Record):
    type: Literal["apikey"] = "apikey"
    key: str


Credential = OAuthCredential | ApiKeyCredential


@dataclass
class AuthSession:
    """A pending PKCE flow. Lives only in memory and is used at most once."""

    verifier: str
    state: str
    authorization_url: str
    created_at: float = field(default_factory=time.monotonic)

    @property
    def expired(self) -> bool:
        return time.monotonic() - self.created_at > settings.oauth_session_ttl_seconds


class CredentialManager:
    """Owns the pending auth session and the stored OAuth credential."""

    def __init__(
        self,
        store: DurableStore,
        config: RuntimeConfigStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._transport = transport
        self._session: AuthSession | None = None
        self._refresh_lock = asyncio.Lock()

    # -- PKCE flow -------------------------------------------------------------

    def begin_auth(self) -> AuthSession:
        """Start a PKCE flow, replacing any flow already pending."""
        verifier, challenge = generate_pkce()
        state = generate_state()
        params = {
            "response_type": "code",
            "client_id": settings.oauth_client_id,
            "redirect_uri": settings.oauth_redirect_uri,
            "scope": settings.oauth_scope,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
            "id_token_add_organizations": "true",
            "codex_cli_simplified_flow": "true",
        }
        self._session = AuthSession(
            verifier=verifier,
            state=state,
            authorization_url=f"{settings.oauth_authorize_url}?{urlencode(params)}",
        )
        logger.info("Started OAuth flow")
        return self._session

    async def complete_auth(self, callback_url: str) -> OAuthCredential:
        """Exchange the code in *callback_url* for tokens and persist them.

        The pending session is consumed whether or not this succeeds.

        Raises:
            AuthError: no pending flow, bad callback URL, state mismatch, or a
                failed token exchange.
        """
        session, self._session = self._session, None
        if session is None or session.expired:
            msg = "No pending auth flow. Start a new sign-in."
            raise AuthError(msg)

        parts = urlsplit(callback_url or "")
        if not parts.scheme or not parts.netloc:
            msg = "Invalid callback URL"
            raise AuthError(msg)
        query = parse_qs(parts.query)
        code = (query.get("code") or [""])[0]
        state = (query.get("state") or [""])[0]
        if not code:
            msg = "No authorization code found in callback URL"
            raise AuthError(msg)
        if state != session.state:
            msg = "State mismatch. Start a new sign-in."
            raise AuthError(msg)

        try:
            resp = await self._post_token(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": settings.oauth_redirect_uri,
                    "client_id": settings.oauth_client_id,
                    "code_verifier": session.verifier,
                }
            )
        except httpx.HTTPError as exc:
            msg = f"Token exchange error: {exc}"
            raise AuthError(msg) from exc
        if resp.status_code != 200:
            msg = f"Token exchange failed ({resp.status_code}): {resp.text[:200]}"
            raise AuthError(msg)

        credential = _credential_from_tokens(_token_payload(resp, AuthError))
        await self._store.write(AUTH_PATH, credential.to_record())
        logger.info(
            "OAuth sign-in complete for %s",
            credential.account.email or credential.account.account_id or "unknown account",
        )
        return credential

    # -- Access ----------------------------------------------------------------

    async def current_credential(self) -> Credential | None:
        """A usable credential, refreshing OAuth tokens near expiry.

        Falls back to the configured API key when there is no OAuth
        credential or its refresh failed. Returns None if neither exists.
        """
        oauth = await self._load_oauth()
        if oauth is not None and not oauth.expires_within(REFRESH_WINDOW):
            return oauth

        if oauth is not None:
            async with self._refresh_lock:
                # Another caller may have refreshed while we waited.
                oauth = await self._load_oauth()
                if oauth is not None and not oauth.expires_within(REFRESH_WINDOW):
                    return oauth
                if oauth is not None:
                    try:
                        return await self._refresh(oauth)
                    except RefreshFailure as exc:
                        logger.warning("OAuth credential unusable: %s", exc)

        config = await self._config.load()
        if config.api_key:
            return ApiKeyCredential(key=config.api_key)
        return None

    async def refresh(self) -> OAuthCredential:
        """Refresh the stored OAuth credential now.

        Raises:
            RefreshFailure: no OAuth credential, or the refresh failed.
        """
        async with self._refresh_lock:
            oauth = await self._load_oauth()
            if oauth is None or not oauth.refresh_token:
                msg = "No OAuth session to refresh"
                raise RefreshFailure(msg)
            return await self._refresh(oauth)

    async def logout(self) -> bool:
        """Forget the stored OAuth credential and any pending flow."""
        self._session = None
        removed = await self._store.delete(AUTH_PATH)
        logger.info("Auth cleared")
        return removed

    async def status(self) -> dict[str, Any]:
        """Which credential is active, without refreshing anything."""
        oauth = await self._load_oauth()
        if oauth is not None:
            account = oauth.account.to_record()
            account["accountId"] = mask_secret(oauth.account.account_id)
            account["email"] = _mask_email(oauth.account.email)
            return {
                "method": "oauth",
                "authenticated": not oauth.expired,
                "expired": oauth.expired,
                "account": account,
                "expiresAt": oauth.expires_at.isoformat(),
                "authenticatedAt": oauth.authenticated_at.isoformat(),
            }
        config = await self._config.load()
        if config.api_key:
            return {
                "method": "apikey",
                "authenticated": True,
                "keyHint": mask_secret(config.api_key),
            }
        return {"method": "none", "authenticated": False}

    @property
    def pending(self) -> bool:
        return self._session is not None and not self._session.expired

    # -- Internals -------------------------------------------------------------

    async def _load_oauth(self) -> OAuthCredential | None:
        raw = await self._store.read(AUTH_PATH, None)
        if not isinstance(raw, dict) or raw.get("type") != "oauth":
            return None
        try:
            return OAuthCredential.model_validate(raw)
        except ValidationError:
            logger.warning("Stored OAuth credential is invalid; ignoring it", exc_info=True)
            return None

    async def _refresh(self, oauth: OAuthCredential) -> OAuthCredential:
        """Exchange the refresh token. Caller holds ``_refresh_lock``.

        A rejected refresh deletes the stored credential. A transport failure
        leaves it for a later attempt.
        """
        if not oauth.refresh_token:
            msg = "OAuth credential has no refresh token"
            raise RefreshFailure(msg)

        logger.info("Refreshing OAuth access token (expires %s)", oauth.expires_at.isoformat())
        try:
            resp = await self._post_token(
                {
                    "grant_type": "refresh_token",
                    "client_id": settings.oauth_client_id,
                    "refresh_token": oauth.refresh_token,
                }
            )
        except httpx.HTTPError as exc:
            msg = f"Token refresh request failed: {exc}"
            raise RefreshFailure(msg) from exc

        if 400 <= resp.status_code < 500:
            await self._store.delete(AUTH_PATH)
            msg = f"Token refresh rejected ({resp.status_code}); sign in again"
            raise RefreshFailure(msg)
        if resp.status_code != 200:
            msg = f"Token refresh failed ({resp.status_code}): {resp.text[:200]}"
            raise RefreshFailure(msg)

        refreshed = _credential_from_tokens(_token_payload(resp, RefreshFailure), previous=oauth)
        await self._store.write(AUTH_PATH, refreshed.to_record())
        logger.info("OAuth token refreshed (expires %s)", refreshed.expires_at.isoformat())
        return refreshed

    async def _post_token(self, form: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=TOKEN_TIMEOUT, transport=self._transport) as client:
            return await client.post(
                settings.oauth_token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )


def _mask_email(email: str) -> str:
    """``ada@example.com`` → ``a***@example.com``; empty stays empty."""
    local, sep, domain = email.partition("@")
    if not sep:
        return mask_secret(email)
    return f"{local[:1]}***@{domain}"


def _token_payload(resp: httpx.Response, error: type[AuthError]) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        msg = "Token endpoint returned invalid JSON"
        raise error(msg) from exc
    if not isinstance(data, dict) or not data.get("access_token"):
        msg = "Token endpoint response has no access_token"
        raise error(msg)
    return data


def _credential_from_tokens(
    data: dict[str, Any],
    previous: OAuthCredential | None = None,
) -> OAuthCredential:
    """Build a credential from a token response.

    Expiry comes from the access token's ``exp`` claim, then ``expires_in``,
    then one hour. On refresh, a missing refresh token or id token keeps
    the previous one (and the identity derived from it).
    """
    now = datetime.now(UTC)
    access_claims = parse_jwt(data["access_token"]) or {}
    if isinstance(access_claims.get("exp"), int | float):
        expires_at = datetime.fromtimestamp(access_claims["exp"], UTC)
    elif isinstance(data.get("expires_in"), int | float):
        expires_at = now + timedelta(seconds=data["expires_in"])
    else:
        expires_at = now + DEFAULT_TOKEN_LIFETIME

    id_token = data.get("id_token") or ""
    if id_token:
        id_claims = parse_jwt(id_token) or {}
        account = Account.model_validate(extract_account_info(id_token))
    elif previous is not None:
        id_token = previous.id_token
        id_claims = previous.id_token_claims
        account = previous.account
    else:
        id_claims = {}
        account = Account()

    return OAuthCredential(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else ""),
        id_token=id_token,
        id_token_claims=id_claims,
        expires_at=expires_at,
        account=account,
        authenticated_at=previous.authenticated_at if previous else now,
    )
