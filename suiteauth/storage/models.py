from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Closed set of roles an account can hold."""

    ADMIN = "admin"
    TEAM = "team"
    CLIENT = "client"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown role: {value!r}") from None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Account:
    id: int
    email: str
    first_name: str
    last_name: str
    role: Role = Role.CLIENT
    is_active: bool = True
    password_hash: Optional[str] = None
    client_id: Optional[int] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_login: Optional[datetime] = None

    def to_public(self, *, detailed: bool = False) -> Dict[str, Any]:
        """Display payload for API responses; never includes the password hash."""
        payload: Dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "clientId": self.client_id,
        }
        if detailed:
            payload.update(
                {
                    "avatarUrl": self.avatar_url,
                    "phone": self.phone,
                    "isActive": self.is_active,
                    "createdAt": _iso(self.created_at),
                    "lastLogin": _iso(self.last_login),
                }
            )
        return payload


@dataclass
class MagicLink:
    id: int
    user_id: int
    token: str
    expires_at: datetime
    used: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class SessionRecord:
    """Server-side proof that a login is still live.

    Serialized as JSON under ``session:{session_id}`` in the session store.
    """

    session_id: str
    user_id: int
    email: str
    role: Role
    client_id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def for_account(cls, account: Account, session_id: str) -> "SessionRecord":
        return cls(
            session_id=session_id,
            user_id=account.id,
            email=account.email,
            role=account.role,
            client_id=account.client_id,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "user_id": self.user_id,
                "email": self.email,
                "role": self.role.value,
                "client_id": self.client_id,
                "created_at": self.created_at.isoformat(),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, session_id: str, raw: str) -> "SessionRecord":
        data = json.loads(raw)
        return cls(
            session_id=session_id,
            user_id=int(data["user_id"]),
            email=data["email"],
            role=Role.parse(data["role"]),
            client_id=data.get("client_id"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
