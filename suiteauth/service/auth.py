from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

from suiteauth.config import Settings
from suiteauth.logging import get_logger
from suiteauth.service import crypto
from suiteauth.service.email import EmailService
from suiteauth.service.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SessionExpiredError,
    ValidationError,
)
from suiteauth.service.validation import (
    is_valid_email,
    password_problems,
    sanitize_string,
    validate_required,
)
from suiteauth.storage.errors import ConstraintViolation
from suiteauth.storage.models import Account, MagicLink, Role, SessionRecord

logger = get_logger(__name__)

SESSION_ID_BYTES = 16
MAGIC_LINK_TOKEN_BYTES = 48

NO_TOKEN = "no authentication token provided"
INVALID_TOKEN = "invalid or expired token"
SESSION_EXPIRED = "session expired"
USER_INACTIVE = "user not found or inactive"
INSUFFICIENT_PERMISSIONS = "insufficient permissions"
INVALID_CREDENTIALS = "invalid email or password"
WEAK_PASSWORD = (
    "password must be at least 8 characters with uppercase, lowercase, and number"
)


class CredentialStore(Protocol):
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
    ) -> Account: ...

    def get_user(self, user_id: int) -> Optional[Account]: ...

    def get_user_by_email(self, email: str) -> Optional[Account]: ...

    def list_users(self, *, role: Optional[Role] = None) -> List[Account]: ...

    def touch_last_login(self, user_id: int, when: datetime) -> None: ...

    def set_user_active(self, user_id: int, active: bool) -> Optional[Account]: ...

    def update_user_role(self, user_id: int, role: Role) -> Optional[Account]: ...

    def create_magic_link(
        self, user_id: int, token: str, expires_at: datetime
    ) -> MagicLink: ...

    def get_magic_link(self, token: str) -> Optional[MagicLink]: ...

    def consume_magic_link(self, link_id: int) -> bool: ...

    def count_magic_links(self, user_id: Optional[int] = None) -> int: ...


class SessionStore(Protocol):
    """Key/value store for live sessions; entries expire after ``ttl_seconds``."""

    async def put(
        self, session_id: str, record: SessionRecord, ttl_seconds: int
    ) -> None: ...

    async def get(self, session_id: str) -> Optional[SessionRecord]: ...

    async def delete(self, session_id: str) -> None: ...


@dataclass
class Principal:
    """Identity attached to a request once every credential check has passed."""

    id: int
    email: str
    role: Role
    client_id: Optional[int] = None
    session_id: Optional[str] = None

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles


@dataclass
class LoginResult:
    token: str
    account: Account
    session: SessionRecord


def _email_hash(email: str) -> str:
    return hashlib.sha256(email.strip().lower().encode()).hexdigest()


class AuthService:
    """Registration, password and magic-link login, logout and token redemption.

    Holds no per-request state: accounts and magic links live in the
    credential store, live sessions in the session store.
    """

    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionStore,
        settings: Settings,
        *,
        mailer: Optional[EmailService] = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.settings = settings
        self.mailer = mailer
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # registration
    async def register(
        self,
        *,
        email: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        password: Optional[str] = None,
        role: Optional[str] = None,
        client_id: Optional[int] = None,
        actor: Optional[Principal] = None,
    ) -> Account:
        missing = validate_required(
            {"email": email, "firstName": first_name, "lastName": last_name},
            ("email", "firstName", "lastName"),
        )
        if missing:
            raise ValidationError("missing required fields", detail={"missing": missing})
        if not is_valid_email(email):
            raise ValidationError("invalid email format")
        if password:
            problems = password_problems(password)
            if problems:
                raise ValidationError(WEAK_PASSWORD, detail={"problems": problems})

        assigned_role = Role.CLIENT
        if role is not None:
            try:
                assigned_role = Role.parse(role)
            except ValueError:
                raise ValidationError("invalid role", detail={"role": role}) from None
        # Only an administrator may mint staff accounts or bind a client id
        if (assigned_role is not Role.CLIENT or client_id is not None) and (
            actor is None or actor.role is not Role.ADMIN
        ):
            self.logger.warning(
                "register_elevation_denied",
                requested_role=assigned_role.value,
                actor_id=actor.id if actor else None,
            )
            raise AuthorizationError(INSUFFICIENT_PERMISSIONS)

        if self.store.get_user_by_email(email):
            raise ConflictError("user already exists")

        password_hash = (
            crypto.hash_password(password, iterations=self.settings.pbkdf2_iterations)
            if password
            else None
        )
        try:
            account = self.store.create_user(
                email,
                first_name=sanitize_string(first_name),
                last_name=sanitize_string(last_name),
                password_hash=password_hash,
                role=assigned_role,
                client_id=client_id,
            )
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration for the same address
            raise ConflictError("user already exists", detail=exc.detail) from exc
        self.logger.info(
            "user_registered",
            user_id=account.id,
            role=account.role.value,
            email_hash=_email_hash(account.email),
        )
        return account

    # sessions
    async def _start_session(self, account: Account) -> LoginResult:
        session_id = crypto.generate_token(SESSION_ID_BYTES)
        record = SessionRecord.for_account(account, session_id)
        await self.sessions.put(session_id, record, self.settings.session_ttl_seconds)
        now = self._now()
        self.store.touch_last_login(account.id, now)
        account.last_login = now
        token = crypto.sign(
            {
                "sub": str(account.id),
                "email": account.email,
                "role": account.role.value,
                "sid": session_id,
            },
            self.settings.jwt_secret,
            self.settings.token_ttl_seconds,
        )
        return LoginResult(token=token, account=account, session=record)

    async def login(self, email: Optional[str], password: Optional[str]) -> LoginResult:
        if not email or not password:
            raise ValidationError("email and password are required")
        account = self.store.get_user_by_email(email)
        # Unknown, inactive and password-less accounts share one answer
        if account is None or not account.is_active:
            self.logger.info("login_rejected", reason="unknown_or_inactive", email_hash=_email_hash(email))
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not account.password_hash:
            self.logger.info("login_rejected", reason="no_password", user_id=account.id)
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not crypto.verify_password(
            password, account.password_hash, iterations=self.settings.pbkdf2_iterations
        ):
            self.logger.warning("password_verification_failed", user_id=account.id)
            raise AuthenticationError(INVALID_CREDENTIALS)

        result = await self._start_session(account)
        self.logger.info("login_succeeded", user_id=account.id, method="password")
        return result

    # magic links
    async def request_magic_link(self, email: Optional[str]) -> Optional[MagicLink]:
        """Issue a sign-in link when ``email`` belongs to an active account.

        Returns None, and persists nothing, for unknown or inactive addresses;
        callers must answer both cases identically.
        """
        if not email:
            raise ValidationError("email is required")
        if not is_valid_email(email):
            raise ValidationError("invalid email format")
        account = self.store.get_user_by_email(email)
        if account is None or not account.is_active:
            self.logger.info("magic_link_suppressed", email_hash=_email_hash(email))
            return None

        token = crypto.generate_token(MAGIC_LINK_TOKEN_BYTES)
        expires_at = self._now() + timedelta(minutes=self.settings.magic_link_ttl_minutes)
        link = self.store.create_magic_link(account.id, token, expires_at)
        self.logger.info("magic_link_issued", user_id=account.id, link_id=link.id)
        if self.mailer is not None:
            delivered = self.mailer.send_magic_link(
                account.email, token, ttl_minutes=self.settings.magic_link_ttl_minutes
            )
            if not delivered:
                self.logger.error("magic_link_delivery_failed", user_id=account.id, link_id=link.id)
        return link

    async def verify_magic_link(self, token: Optional[str]) -> LoginResult:
        if not token:
            raise ValidationError("token is required")
        link = self.store.get_magic_link(token)
        if link is None:
            self.logger.warning("magic_link_rejected", reason="not_found")
            raise AuthenticationError(INVALID_TOKEN)
        if link.used:
            self.logger.warning("magic_link_rejected", reason="used", link_id=link.id)
            raise AuthenticationError(INVALID_TOKEN)
        if link.is_expired(self._now()):
            self.logger.warning("magic_link_rejected", reason="expired", link_id=link.id)
            raise AuthenticationError(INVALID_TOKEN)
        account = self.store.get_user(link.user_id)
        if account is None or not account.is_active:
            self.logger.warning("magic_link_rejected", reason="inactive", link_id=link.id)
            raise AuthenticationError(INVALID_TOKEN)
        if not self.store.consume_magic_link(link.id):
            # Another request redeemed the link between our read and the update
            self.logger.warning("magic_link_rejected", reason="race", link_id=link.id)
            raise AuthenticationError(INVALID_TOKEN)

        result = await self._start_session(account)
        self.logger.info("login_succeeded", user_id=account.id, method="magic_link")
        return result

    async def logout(self, token: Optional[str]) -> Optional[str]:
        """Delete the session behind ``token`` if one can be recovered.

        Returns the revoked session id. A missing, forged or expired token is
        not an error here.
        """
        claims = crypto.verify(token, self.settings.jwt_secret) if token else None
        session_id = claims.get("sid") if claims else None
        if not isinstance(session_id, str) or not session_id:
            self.logger.info("logout_without_session")
            return None
        try:
            await self.sessions.delete(session_id)
        except Exception as exc:
            self.logger.warning("logout_session_delete_failed", error=str(exc))
            return None
        self.logger.info("logout", user_id=claims.get("sub"))
        return session_id

    # token redemption
    async def resolve_principal(self, token: str) -> Principal:
        """Redeem a bearer token: signature and expiry, then session, then account.

        Each step short-circuits; a valid signature never skips the session lookup.
        """
        claims = crypto.verify(token, self.settings.jwt_secret)
        if claims is None:
            raise AuthenticationError(INVALID_TOKEN)
        session_id = claims.get("sid")
        try:
            user_id = int(claims.get("sub"))
        except (TypeError, ValueError):
            user_id = None
        if not isinstance(session_id, str) or user_id is None:
            raise AuthenticationError(INVALID_TOKEN)

        session = await self.sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise SessionExpiredError(SESSION_EXPIRED)

        account = self.store.get_user(user_id)
        if account is None or not account.is_active:
            raise AuthenticationError(USER_INACTIVE)

        return Principal(
            id=account.id,
            email=account.email,
            role=account.role,
            client_id=account.client_id,
            session_id=session_id,
        )

    def whoami(self, principal: Principal) -> Account:
        account = self.store.get_user(principal.id)
        if account is None:
            raise NotFoundError("user not found")
        return account

    # administration
    def get_account(self, user_id: int, *, actor: Principal) -> Account:
        """Staff may read any account; clients only their own."""
        if actor.role is Role.CLIENT and actor.id != user_id:
            raise AuthorizationError(INSUFFICIENT_PERMISSIONS)
        account = self.store.get_user(user_id)
        if account is None:
            raise NotFoundError("user not found", detail={"id": user_id})
        return account

    def list_accounts(self, *, role: Optional[Role] = None) -> List[Account]:
        return self.store.list_users(role=role)

    def deactivate_user(self, user_id: int, *, actor: Principal) -> Account:
        if actor.id == user_id:
            raise ValidationError("administrators cannot deactivate their own account")
        account = self.store.set_user_active(user_id, False)
        if account is None:
            raise NotFoundError("user not found", detail={"id": user_id})
        self.logger.info("user_deactivated", user_id=user_id, actor_id=actor.id)
        return account
