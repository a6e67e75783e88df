"""Authorization-server client: PKCE, authorize URL and token endpoint calls."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from ..config_loader import OAuthSettings
from ..core.exceptions import TokenRefreshError
from ..logging import mask_token
from .token_store import TokenSet, now_ms

logger = logging.getLogger("codex-bridge")

TOKEN_TIMEOUT = 30.0
ACCOUNT_CLAIM = "https://api.openai.com/auth"


@dataclass(frozen=True)
class PkcePair:
    code_verifier: str
    code_challenge: str
    method: str = "S256"


@dataclass(frozen=True)
class AuthorizationDetails:
    authorization_url: str
    state: str
    pkce: PkcePair


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_pkce_pair() -> PkcePair:
    """Generate a PKCE code_verifier and its S256 code_challenge."""
    code_verifier = _b64url(secrets.token_bytes(32))
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return PkcePair(code_verifier=code_verifier, code_challenge=_b64url(digest))


def generate_state() -> str:
    return _b64url(secrets.token_bytes(18))


def build_authorization_details(settings: OAuthSettings) -> AuthorizationDetails:
    """Build the authorize URL with a fresh state nonce and PKCE pair."""
    state = generate_state()
    pkce = generate_pkce_pair()
    params = {
        "client_id": settings.client_id,
        "response_type": "code",
        "redirect_uri": settings.redirect_uri,
        "scope": settings.scope,
        "state": state,
        "code_challenge": pkce.code_challenge,
        "code_challenge_method": pkce.method,
    }
    parts = urlsplit(settings.authorize_url)
    query = f"{parts.query}&{urlencode(params)}" if parts.query else urlencode(params)
    url = urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))
    return AuthorizationDetails(authorization_url=url, state=state, pkce=pkce)


def decode_jwt_claims(token: str) -> Optional[dict[str, Any]]:
    """Decode the claims segment of a JWT **without** verifying it."""
    parts = token.split(".")
    if len(parts) < 2:
        return None
    payload_b64 = parts[1]
    payload_b64 += "=" * ((4 - len(payload_b64) % 4) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (ValueError, TypeError) as exc:
        logger.debug("Failed to decode access token %s: %s", mask_token(token), exc)
        return None
    return claims if isinstance(claims, dict) else None


def extract_account_id(access_token: str) -> Optional[str]:
    """Best-effort account id lookup from the access token's claims."""
    claims = decode_jwt_claims(access_token)
    if not claims:
        return None
    auth_claims = claims.get(ACCOUNT_CLAIM)
    if isinstance(auth_claims, dict):
        account_id = auth_claims.get("chatgpt_account_id")
        if isinstance(account_id, str) and account_id:
            return account_id
    for key in ("sub", "user_id"):
        value = claims.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class OAuthClient:
    """Talks to the token endpoint for code exchange and refresh."""

    def __init__(
        self,
        settings: OAuthSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    def build_authorization(self) -> AuthorizationDetails:
        return build_authorization_details(self.settings)

    async def exchange_code(self, code: str, pkce: PkcePair) -> TokenSet:
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
                "code_verifier": pkce.code_verifier,
                "client_id": self.settings.client_id,
            }
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        return await self._request_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.client_id,
            }
        )

    async def _request_token(self, form: dict[str, str]) -> TokenSet:
        url = self.settings.token_url
        try:
            async with httpx.AsyncClient(timeout=TOKEN_TIMEOUT, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Token endpoint unreachable: {exc.__class__.__name__}: {exc}") from exc

        if resp.status_code >= 400:
            raise TokenRefreshError(
                f"Token endpoint returned {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise TokenRefreshError("Token endpoint returned a non-JSON body") from exc
        return parse_token_response(payload)


def parse_token_response(payload: Any) -> TokenSet:
    """Turn a token endpoint body into a stamped ``TokenSet``."""
    if not isinstance(payload, dict):
        raise TokenRefreshError("Token endpoint returned an unexpected body")
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise TokenRefreshError("Token endpoint response is missing access_token")
    refresh_token = payload.get("refresh_token")
    try:
        expires_in = float(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        expires_in = 0.0
    return TokenSet(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) else "",
        expires_at=now_ms() + int(expires_in * 1000),
        account_id=extract_account_id(access_token),
    )
