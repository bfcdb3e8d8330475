from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from handshake import google_oauth2
from handshake.models import TokenBundle, UserInfo
from relay.constants import LOGGER

DEMO_EXPIRES_IN = 3600


@dataclass(frozen=True)
class ExchangeResult:
    tokens: TokenBundle
    user_info: UserInfo


class CodeExchange(ABC):
    """Turns an authorization code into tokens plus the user's profile."""

    demo: bool = False

    @property
    def mode(self) -> str:
        return "demo" if self.demo else "google"

    @abstractmethod
    async def exchange(self, code: str, redirect_uri: str) -> ExchangeResult:
        raise NotImplementedError


class GoogleCodeExchange(CodeExchange):
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        client: httpx.AsyncClient | None = None,
        exchange_code_fn=google_oauth2.exchange_code,
        fetch_user_info_fn=google_oauth2.fetch_user_info,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self._client = client
        self._exchange_code_fn = exchange_code_fn
        self._fetch_user_info_fn = fetch_user_info_fn

    async def exchange(self, code: str, redirect_uri: str) -> ExchangeResult:
        tokens = await self._exchange_code_fn(
            client_id=self.client_id,
            client_secret=self._client_secret,
            code=code,
            redirect_uri=redirect_uri,
            client=self._client,
        )
        user_info = await self._fetch_user_info_fn(tokens.access_token, client=self._client)
        return ExchangeResult(tokens=tokens, user_info=user_info)


class DemoCodeExchange(CodeExchange):
    """Synthetic exchange used when no provider credentials are configured."""

    demo = True

    def __init__(self, *, clock=time.time) -> None:
        self._clock = clock

    async def exchange(self, code: str, redirect_uri: str) -> ExchangeResult:
        del code, redirect_uri
        stamp = int(self._clock() * 1000)
        return ExchangeResult(
            tokens=TokenBundle(
                access_token=f"demo_token_{stamp}",
                refresh_token=f"demo_refresh_{stamp}",
                expires_in=DEMO_EXPIRES_IN,
            ),
            user_info=UserInfo(email="user@example.com", name="Demo User"),
        )


def build_code_exchange(
    client_id: str,
    client_secret: str,
    *,
    client: httpx.AsyncClient | None = None,
    logger: logging.Logger | None = None,
) -> CodeExchange:
    if not client_id or not client_secret:
        (logger or LOGGER).warning(
            "Google OAuth credentials are not configured; using demo token exchange."
        )
        return DemoCodeExchange()
    return GoogleCodeExchange(client_id, client_secret, client=client)
