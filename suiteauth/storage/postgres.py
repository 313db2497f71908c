from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from suiteauth.logging import get_logger
from suiteauth.storage.errors import ConstraintViolation
from suiteauth.storage.models import Account, MagicLink, Role, normalize_email, utcnow

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        email TEXT NOT NULL,
        password_hash TEXT,
        role TEXT NOT NULL DEFAULT 'client' CHECK (role IN ('admin', 'team', 'client')),
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        client_id BIGINT,
        avatar_url TEXT,
        phone TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        last_login TIMESTAMPTZ
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS users_email_lower_idx ON users (lower(email))",
    """
    CREATE TABLE IF NOT EXISTS magic_links (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL REFERENCES users(id),
        token TEXT NOT NULL UNIQUE,
        expires_at TIMESTAMPTZ NOT NULL,
        used BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS magic_links_user_idx ON magic_links (user_id)",
)


def _account_from_row(row: Dict[str, Any]) -> Account:
    return Account(
        id=int(row["id"]),
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        role=Role.parse(row.get("role") or Role.CLIENT),
        is_active=bool(row.get("is_active", True)),
        password_hash=row.get("password_hash"),
        client_id=row.get("client_id"),
        avatar_url=row.get("avatar_url"),
        phone=row.get("phone"),
        created_at=row.get("created_at") or utcnow(),
        last_login=row.get("last_login"),
    )


def _link_from_row(row: Dict[str, Any]) -> MagicLink:
    return MagicLink(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        token=row["token"],
        expires_at=row["expires_at"],
        used=bool(row["used"]),
        created_at=row.get("created_at") or utcnow(),
    )


class PostgresStore:
    """Credential store over PostgreSQL; every read goes to the database."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``users`` and ``magic_links`` tables if they are missing."""
        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (email, password_hash, role, first_name, last_name, client_id, is_active)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        normalize_email(email),
                        password_hash,
                        Role.parse(role).value,
                        first_name,
                        last_name,
                        client_id,
                        is_active,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return _account_from_row(row)

    def get_user(self, user_id: int) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        return _account_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE lower(email) = %s", (normalize_email(email),)
            ).fetchone()
        return _account_from_row(row) if row else None

    def list_users(self, *, role: Optional[Role] = None) -> List[Account]:
        with self._connect() as conn:
            if role is None:
                rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM users WHERE role = %s ORDER BY id", (Role.parse(role).value,)
                ).fetchall()
        return [_account_from_row(row) for row in rows]

    def touch_last_login(self, user_id: int, when: datetime) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE users SET last_login = %s WHERE id = %s", (when, user_id))

    def set_user_active(self, user_id: int, active: bool) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE users SET is_active = %s WHERE id = %s RETURNING *", (active, user_id)
            ).fetchone()
        return _account_from_row(row) if row else None

    def update_user_role(self, user_id: int, role: Role) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE users SET role = %s WHERE id = %s RETURNING *",
                (Role.parse(role).value, user_id),
            ).fetchone()
        return _account_from_row(row) if row else None

    # magic links
    def create_magic_link(self, user_id: int, token: str, expires_at: datetime) -> MagicLink:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO magic_links (user_id, token, expires_at, used)
                    VALUES (%s, %s, %s, FALSE)
                    RETURNING *
                    """,
                    (user_id, token, expires_at),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user not found for magic link", {"user_id": user_id})
        except errors.UniqueViolation:
            raise ConstraintViolation("magic link token collision", {"field": "token"})
        return _link_from_row(row)

    def get_magic_link(self, token: str) -> Optional[MagicLink]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM magic_links WHERE token = %s", (token,)
            ).fetchone()
        return _link_from_row(row) if row else None

    def consume_magic_link(self, link_id: int) -> bool:
        """Flip ``used`` in a single statement so concurrent redemptions race safely."""
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE magic_links SET used = TRUE WHERE id = %s AND used = FALSE RETURNING id",
                (link_id,),
            ).fetchone()
        return row is not None

    def count_magic_links(self, user_id: Optional[int] = None) -> int:
        with self._connect() as conn:
            if user_id is None:
                row = conn.execute("SELECT count(*) AS n FROM magic_links").fetchone()
            else:
                row = conn.execute(
                    "SELECT count(*) AS n FROM magic_links WHERE user_id = %s", (user_id,)
                ).fetchone()
        return int(row["n"])

    def close(self) -> None:
        self.pool.close()
