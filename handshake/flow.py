from __future__ import annotations

import logging
from dataclasses import dataclass

from handshake import google_oauth2
from handshake.errors import InvalidRequest, InvalidSession, SessionNotFound
from handshake.exchange import CodeExchange
from handshake.models import ChatPlatform, TokenBundle, UserInfo
from handshake.session_store import SessionStore
from handshake.state_token import generate_state, short
from relay.constants import CALLBACK_PATH, LOGGER

DEMO_CLIENT_ID = "demo_client_id"
DEFAULT_FAILURE_REASON = "authentication_failed"


@dataclass(frozen=True)
class InitResult:
    state: str
    auth_url: str
    expires_in: int


@dataclass(frozen=True)
class CallbackResult:
    tokens: TokenBundle
    user_info: UserInfo
    demo: bool = False


@dataclass(frozen=True)
class NotifyResult:
    updated: bool


def _require_text(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


class AuthFlow:
    """Drives auth sessions from Init through Callback or Notify."""

    def __init__(
        self,
        store: SessionStore,
        exchange: CodeExchange,
        *,
        client_id: str = "",
        public_url: str | None = None,
        scopes: list[str] | None = None,
        redirect_path: str = CALLBACK_PATH,
        state_factory=generate_state,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.client_id = client_id
        self.public_url = public_url.rstrip("/") if public_url else None
        self.scopes = list(scopes) if scopes else list(google_oauth2.DEFAULT_SCOPES)
        self.redirect_path = redirect_path
        self._state_factory = state_factory
        self._logger = logger or LOGGER

    def redirect_uri(self, base_url: str | None = None) -> str:
        base = self.public_url or (base_url or "").rstrip("/")
        if not base:
            raise InvalidRequest("Cannot resolve redirect URI without a base URL.")
        return f"{base}{self.redirect_path}"

    async def init(
        self,
        minion_id: object,
        chat_id: object,
        chat_platform: object,
        scopes: object = None,
        *,
        base_url: str | None = None,
    ) -> InitResult:
        if not (_require_text(minion_id) and _require_text(chat_id) and chat_platform):
            raise InvalidRequest("Missing required fields: minionId, chatId, chatPlatform")

        platform = ChatPlatform.parse(chat_platform)
        if platform is None:
            raise InvalidRequest('Invalid chatPlatform. Must be "whatsapp" or "telegram"')

        auth_scopes = self._resolve_scopes(scopes)
        redirect_uri = self.redirect_uri(base_url)

        state = self._state_factory()
        while await self.store.get(state) is not None:
            state = self._state_factory()

        await self.store.create(
            state,
            minion_id=minion_id,
            chat_id=chat_id,
            chat_platform=platform,
        )

        auth_url = google_oauth2.build_authorization_url(
            client_id=self.client_id or DEMO_CLIENT_ID,
            redirect_uri=redirect_uri,
            scopes=auth_scopes,
            state=state,
            # consent + offline so Google hands out a refresh token every time
            prompt="consent",
            access_type="offline",
        )

        self._logger.info(
            "Created auth session %s for minion %s, chat %s (%s)",
            short(state),
            minion_id,
            chat_id,
            platform.value,
        )
        return InitResult(state=state, auth_url=auth_url, expires_in=self.store.ttl_seconds)

    def _resolve_scopes(self, scopes: object) -> list[str]:
        if scopes is None:
            return list(self.scopes)
        if not isinstance(scopes, list) or not all(_require_text(s) for s in scopes):
            raise InvalidRequest("scopes must be a list of non-empty strings.")
        return list(scopes) or list(self.scopes)

    async def callback(
        self,
        code: object,
        state: object,
        *,
        base_url: str | None = None,
    ) -> CallbackResult:
        if not _require_text(code) or not _require_text(state):
            raise InvalidRequest("Missing code or state")

        session = await self.store.get(state)
        if session is None:
            raise InvalidSession()
        if session.status.terminal:
            raise InvalidSession(f"Session already {session.status.value}.")

        if self.exchange.demo:
            self._logger.info("Demo mode: simulating token exchange for %s", short(state))

        result = await self.exchange.exchange(code, self.redirect_uri(base_url))

        if not await self.store.complete(state, result.tokens, result.user_info):
            raise InvalidSession("Session expired or finished during token exchange.")

        return CallbackResult(
            tokens=result.tokens,
            user_info=result.user_info,
            demo=self.exchange.demo,
        )

    async def notify(
        self,
        state: object,
        success: object,
        error: object = None,
        error_description: object = None,
    ) -> NotifyResult:
        if not _require_text(state):
            raise InvalidRequest("Missing state parameter")

        session = await self.store.get(state)
        if session is None:
            raise SessionNotFound()

        if success:
            return NotifyResult(updated=False)

        reason = next(
            (value for value in (error_description, error) if _require_text(value)),
            DEFAULT_FAILURE_REASON,
        )
        updated = await self.store.fail(state, reason)
        if updated:
            self._logger.info("Auth failed for session %s: %s", short(state), error or reason)
        return NotifyResult(updated=updated)
