from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """
    Already-authenticated user performing a mutation.

    Resolution (login, tokens, roles) happens upstream; the engine only
    records user_id on what it writes and forwards role to audit listeners.
    """
    user_id: int
    role: str | None = None

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "role": self.role}
