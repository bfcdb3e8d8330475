from __future__ import annotations

from dataclasses import dataclass

from handshake.errors import InvalidRequest, NotFound
from handshake.models import SessionStatus, TokenBundle, UserInfo
from handshake.session_store import SessionStore


@dataclass(frozen=True)
class PollResult:
    status: SessionStatus
    tokens: TokenBundle | None = None
    user_info: UserInfo | None = None
    error: str | None = None

    def to_payload(self) -> dict:
        payload: dict = {"status": self.status.value}
        if self.user_info is not None:
            payload["userInfo"] = self.user_info.to_payload()
        if self.error is not None:
            payload["error"] = self.error
        if self.tokens is not None:
            payload["access_token"] = self.tokens.access_token
            if self.tokens.refresh_token:
                payload["refresh_token"] = self.tokens.refresh_token
            payload["expires_in"] = self.tokens.expires_in
        return payload


async def poll(store: SessionStore, state: object) -> PollResult:
    """Project the current state of a session for the polling minion."""
    if not isinstance(state, str) or not state:
        raise InvalidRequest("Missing state parameter")

    session = await store.get(state)
    if session is None:
        raise NotFound()

    if session.status is SessionStatus.COMPLETED:
        return PollResult(
            status=session.status,
            tokens=session.tokens,
            user_info=session.user_info,
        )
    if session.status is SessionStatus.FAILED:
        return PollResult(status=session.status, error=session.error)
    return PollResult(status=session.status)
