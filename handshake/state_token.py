from __future__ import annotations

import secrets

STATE_TOKEN_BYTES = 32


def generate_state(nbytes: int = STATE_TOKEN_BYTES) -> str:
    """Return a hex encoded CSPRNG token, usable as OAuth ``state`` and store key."""
    if nbytes < 16:
        raise ValueError("State tokens need at least 16 random bytes.")
    return secrets.token_hex(nbytes)


def short(token: str) -> str:
    return f"{token[:8]}..."
