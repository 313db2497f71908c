from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from suiteauth.api.error_handling import error_response
from suiteauth.logging import get_logger
from suiteauth.service.auth import (
    INSUFFICIENT_PERMISSIONS,
    NO_TOKEN,
    AuthenticationError,
    AuthService,
    Principal,
)
from suiteauth.storage.models import Role

logger = get_logger(__name__)

STAFF_ROLES = (Role.ADMIN, Role.TEAM)


def extract_token(request: Request, cookie_name: str = "auth_token") -> Optional[str]:
    """Bearer header first, then the session cookie."""
    header = request.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        token = header.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get(cookie_name) or None


@dataclass
class AuthResult:
    """Either an authenticated principal or the exact failure response to return."""

    valid: bool
    principal: Optional[Principal] = None
    response: Optional[JSONResponse] = None

    @classmethod
    def allow(cls, principal: Principal) -> "AuthResult":
        return cls(valid=True, principal=principal)

    @classmethod
    def deny(cls, status_code: int, message: str) -> "AuthResult":
        return cls(valid=False, response=error_response(status_code, message))


class AccessControl:
    """Gatekeeper run by every protected handler before it touches data."""

    def __init__(self, auth: AuthService, *, cookie_name: str = "auth_token") -> None:
        self.auth = auth
        self.cookie_name = cookie_name

    async def authenticate(self, request: Request) -> AuthResult:
        token = extract_token(request, self.cookie_name)
        if not token:
            return AuthResult.deny(401, NO_TOKEN)
        try:
            principal = await self.auth.resolve_principal(token)
        except AuthenticationError as exc:
            logger.info("auth_rejected", path=request.url.path, reason=exc.message)
            return AuthResult.deny(401, exc.message)
        request.state.principal = principal
        return AuthResult.allow(principal)

    async def require_role(self, request: Request, *allowed: Role) -> AuthResult:
        result = await self.authenticate(request)
        if not result.valid:
            return result
        if not result.principal.has_role(*allowed):
            logger.warning(
                "role_denied",
                path=request.url.path,
                user_id=result.principal.id,
                role=result.principal.role.value,
                allowed=[r.value for r in allowed],
            )
            return AuthResult.deny(403, INSUFFICIENT_PERMISSIONS)
        return result

    async def require_admin(self, request: Request) -> AuthResult:
        return await self.require_role(request, Role.ADMIN)

    async def require_team(self, request: Request) -> AuthResult:
        """Admins or team members."""
        return await self.require_role(request, *STAFF_ROLES)
