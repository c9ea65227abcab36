from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class Role(StrEnum):
    ADMIN = "admin"
    SELLER = "seller"


class AuthenticatedUser(BaseModel):
    """Identity returned by a successful credential check. Never carries the password."""

    login: str
    role: Role

    def has_role(self, role: Role) -> bool:
        return self.role == role


__all__ = ["AuthenticatedUser", "Role"]
