"""Backend credential lifecycle: cached token, refresh, interactive grant."""

from __future__ import annotations

import logging
import uuid
from typing import Awaitable, Callable, Optional

from ..config_loader import ProxyConfig
from ..core.exceptions import StateMismatchError, TokenRefreshError
from ..logging import mask_token
from .callback import callback_port, open_browser, wait_for_oauth_callback
from .oauth import AuthorizationDetails, OAuthClient
from .token_store import TokenSet, TokenStore, is_expired

logger = logging.getLogger("codex-bridge")

BrowserLauncher = Callable[[str], Awaitable[None]]
CallbackWaiter = Callable[..., Awaitable[tuple[str, str]]]


class AuthManager:
    """Hands out a non-expired backend credential.

    The credential file is the only state. Every call re-reads it, so two
    processes sharing a file see each other's refreshes. Concurrent refreshes
    are not serialized; the last writer wins.
    """

    def __init__(
        self,
        config: ProxyConfig,
        store: Optional[TokenStore] = None,
        oauth: Optional[OAuthClient] = None,
        launch_browser: Optional[BrowserLauncher] = None,
        wait_for_callback: Optional[CallbackWaiter] = None,
    ) -> None:
        self.config = config
        self.store = store or TokenStore(config.auth_path)
        self.oauth = oauth or OAuthClient(config.oauth)
        self._launch_browser = launch_browser or open_browser
        self._wait_for_callback = wait_for_callback or wait_for_oauth_callback

    async def get_token(self) -> TokenSet:
        token = self.store.read()
        if token is not None and not is_expired(token):
            return self._with_account(token)

        if token is not None and token.refresh_token:
            try:
                refreshed = await self.oauth.refresh(token.refresh_token)
            except TokenRefreshError as exc:
                logger.warning("Token refresh failed, falling back to browser login: %s", exc.message)
            else:
                refreshed = self._keep_refresh_token(refreshed, token)
                self.store.write(refreshed)
                logger.info("Refreshed backend credential %s", mask_token(refreshed.access_token))
                return self._with_account(refreshed)

        return await self.login()

    async def login(self) -> TokenSet:
        """Run the interactive PKCE grant and persist the result."""
        details = self.authorization_details()
        await self._launch_browser(details.authorization_url)
        code, state = await self._wait_for_callback(
            details.state, port=callback_port(self.config.oauth.redirect_uri)
        )
        if state != details.state:
            raise StateMismatchError("OAuth callback state mismatch")

        token = await self.oauth.exchange_code(code, details.pkce)
        self.store.write(token)
        logger.info("Stored new backend credential %s", mask_token(token.access_token))
        return self._with_account(token)

    def authorization_details(self) -> AuthorizationDetails:
        return self.oauth.build_authorization()

    def logout(self) -> None:
        self.store.clear()
        logger.info("Cleared stored credential at %s", self.store.file_path)

    @staticmethod
    def create_session_id() -> str:
        return str(uuid.uuid4())

    def _with_account(self, token: TokenSet) -> TokenSet:
        if token.account_id or not self.config.account_id:
            return token
        return TokenSet(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=token.expires_at,
            account_id=self.config.account_id,
        )

    @staticmethod
    def _keep_refresh_token(refreshed: TokenSet, previous: TokenSet) -> TokenSet:
        # Some token endpoints omit refresh_token on refresh; keep the old one.
        if refreshed.refresh_token:
            return refreshed
        return TokenSet(
            access_token=refreshed.access_token,
            refresh_token=previous.refresh_token,
            expires_at=refreshed.expires_at,
            account_id=refreshed.account_id or previous.account_id,
        )
