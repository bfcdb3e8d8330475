from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Callable

from handshake.models import (
    AuthSession,
    ChatPlatform,
    SessionStatus,
    TokenBundle,
    UserInfo,
)
from handshake.state_token import short
from relay.constants import (
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    LOGGER,
)


class SessionStore:
    """In-memory table of auth sessions keyed by state token.

    Reads never look at session age. Expired sessions disappear only when
    ``sweep`` runs, either directly or from the task owned via ``start``/``stop``.
    Terminal transitions are compare-and-set from ``pending``.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        if ttl_seconds <= 0 or sweep_interval_seconds <= 0:
            raise ValueError("ttl_seconds and sweep_interval_seconds must be positive.")
        if ttl_seconds < sweep_interval_seconds:
            raise ValueError("ttl_seconds must be at least sweep_interval_seconds.")

        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or LOGGER
        self._sessions: dict[str, AuthSession] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    # -- table operations ------------------------------------------------------

    async def create(
        self,
        token: str,
        *,
        minion_id: str,
        chat_id: str,
        chat_platform: ChatPlatform,
    ) -> AuthSession:
        session = AuthSession(
            token=token,
            minion_id=minion_id,
            chat_id=chat_id,
            chat_platform=chat_platform,
            created_at=self._clock(),
        )
        async with self._lock:
            self._sessions[token] = session
        return session

    async def get(self, token: str) -> AuthSession | None:
        return self._sessions.get(token)

    async def complete(self, token: str, tokens: TokenBundle, user_info: UserInfo) -> bool:
        return await self._transition(
            token,
            status=SessionStatus.COMPLETED,
            tokens=tokens,
            user_info=user_info,
        )

    async def fail(self, token: str, error: str) -> bool:
        return await self._transition(token, status=SessionStatus.FAILED, error=error)

    async def _transition(self, token: str, *, status: SessionStatus, **changes) -> bool:
        async with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return False
            if session.status.terminal:
                self._logger.info(
                    "Ignoring %s for session %s already %s",
                    status.value,
                    short(token),
                    session.status.value,
                )
                return False
            self._sessions[token] = dataclasses.replace(session, status=status, **changes)

        self._logger.info("Session %s is now %s", short(token), status.value)
        return True

    # -- expiry ----------------------------------------------------------------

    async def sweep(self) -> int:
        now = self._clock()
        snapshot = list(self._sessions.items())
        expired = [
            (token, session)
            for token, session in snapshot
            if session.age(now) > self.ttl_seconds
        ]
        if not expired:
            return 0

        evicted = 0
        async with self._lock:
            for token, session in expired:
                current = self._sessions.get(token)
                # Re-created under the same token after the snapshot.
                if current is None or current.created_at != session.created_at:
                    continue
                del self._sessions[token]
                evicted += 1

        self._logger.info("Evicted %d expired auth session(s)", evicted)
        return evicted

    async def start(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._run_sweeper())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _run_sweeper(self) -> None:
        while True:
            await self._sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception:
                self._logger.exception("Auth session sweep failed")
