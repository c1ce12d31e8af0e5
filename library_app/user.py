from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class UserRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class User:
    """Kimlik profili. Parola özeti burada taşınmaz."""

    def __init__(self, id: str, email: str, name: str, role: str = UserRole.MEMBER.value,
                 avatar_url: str | None = None, created_at: str | None = None,
                 updated_at: str | None = None) -> None:
        self.id = id
        self.email = email.strip().lower()
        self.name = name.strip()
        self.role = role
        self.avatar_url = avatar_url
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def can_borrow(self) -> bool:
        return self.role in (UserRole.ADMIN.value, UserRole.MEMBER.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "avatar_url": self.avatar_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            email=data["email"],
            name=data["name"],
            role=data.get("role", UserRole.MEMBER.value),
            avatar_url=data.get("avatar_url"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
