from __future__ import annotations

import itertools
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from suiteauth.logging import get_logger
from suiteauth.storage.errors import ConstraintViolation
from suiteauth.storage.models import (
    Account,
    MagicLink,
    Role,
    SessionRecord,
    normalize_email,
)
from suiteauth.storage.redis_cache import session_key


class MemoryStore:
    """In-process credential store for tests and single-node development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, Account] = {}
        self.magic_links: Dict[int, MagicLink] = {}
        self._user_ids = itertools.count(1)
        self._link_ids = itertools.count(1)
        # RLock so helpers can re-enter while a caller holds the lock
        self._data_lock = threading.RLock()

    # accounts
    def create_user(
        self,
        email: str,
        *,
        first_name: str,
        last_name: str,
        password_hash: Optional[str] = None,
        role: Role = Role.CLIENT,
        client_id: Optional[int] = None,
        is_active: bool = True,
    ) -> Account:
        normalized = normalize_email(email)
        with self._data_lock:
            if any(existing.email == normalized for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            account = Account(
                id=next(self._user_ids),
                email=normalized,
                first_name=first_name,
                last_name=last_name,
                role=Role.parse(role),
                is_active=is_active,
                password_hash=password_hash,
                client_id=client_id,
            )
            self.users[account.id] = account
            return account

    def get_user(self, user_id: int) -> Optional[Account]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[Account]:
        normalized = normalize_email(email)
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == normalized), None)

    def list_users(self, *, role: Optional[Role] = None) -> List[Account]:
        with self._data_lock:
            return [u for u in self.users.values() if role is None or u.role == role]

    def touch_last_login(self, user_id: int, when: datetime) -> None:
        with self._data_lock:
            account = self.users.get(user_id)
            if account:
                account.last_login = when

    def set_user_active(self, user_id: int, active: bool) -> Optional[Account]:
        with self._data_lock:
            account = self.users.get(user_id)
            if not account:
                return None
            account.is_active = active
            return account

    def update_user_role(self, user_id: int, role: Role) -> Optional[Account]:
        with self._data_lock:
            account = self.users.get(user_id)
            if not account:
                return None
            account.role = Role.parse(role)
            return account

    # magic links
    def create_magic_link(self, user_id: int, token: str, expires_at: datetime) -> MagicLink:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user not found for magic link", {"user_id": user_id})
            if any(link.token == token for link in self.magic_links.values()):
                raise ConstraintViolation("magic link token collision", {"field": "token"})
            link = MagicLink(
                id=next(self._link_ids), user_id=user_id, token=token, expires_at=expires_at
            )
            self.magic_links[link.id] = link
            return link

    def get_magic_link(self, token: str) -> Optional[MagicLink]:
        with self._data_lock:
            return next((l for l in self.magic_links.values() if l.token == token), None)

    def consume_magic_link(self, link_id: int) -> bool:
        """Flip ``used`` exactly once; False when already consumed or unknown."""
        with self._data_lock:
            link = self.magic_links.get(link_id)
            if link is None or link.used:
                return False
            link.used = True
            return True

    def count_magic_links(self, user_id: Optional[int] = None) -> int:
        with self._data_lock:
            return sum(
                1 for l in self.magic_links.values() if user_id is None or l.user_id == user_id
            )

    def close(self) -> None:
        return None


class MemorySessionStore:
    """Session store backed by a dict, expiring entries lazily on read.

    ``clock`` returns epoch seconds and can be swapped in tests to move time.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def put(self, session_id: str, record: SessionRecord, ttl_seconds: int) -> None:
        now = self._clock()
        expires_at = now + max(1, ttl_seconds)
        with self._lock:
            self._sweep(now)
            self._entries[session_key(session_id)] = (expires_at, record.to_json())

    def _sweep(self, now: float) -> None:
        """Drop expired entries; caller holds ``_lock``."""
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        key = session_key(session_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, raw = entry
            if self._clock() >= expires_at:
                self._entries.pop(key, None)
                return None
        return SessionRecord.from_json(session_id, raw)

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_key(session_id), None)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for expires_at, _ in self._entries.values() if expires_at > now)

    async def close(self) -> None:
        return None
