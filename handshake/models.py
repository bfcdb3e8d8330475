from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ChatPlatform(str, Enum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"

    @classmethod
    def parse(cls, value: object) -> "ChatPlatform | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class SessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not SessionStatus.PENDING


@dataclass(frozen=True)
class TokenBundle:
    access_token: str
    expires_in: int
    refresh_token: str | None = None


@dataclass(frozen=True)
class UserInfo:
    email: str
    name: str
    picture: str | None = None

    def to_payload(self) -> dict:
        payload = {"email": self.email, "name": self.name}
        if self.picture:
            payload["picture"] = self.picture
        return payload


@dataclass(frozen=True)
class AuthSession:
    token: str
    minion_id: str
    chat_id: str
    chat_platform: ChatPlatform
    created_at: float
    status: SessionStatus = SessionStatus.PENDING
    tokens: TokenBundle | None = None
    user_info: UserInfo | None = None
    error: str | None = None

    def age(self, now: float) -> float:
        return now - self.created_at
