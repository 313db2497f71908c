from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Stable error codes carried in every error body
_VALID_ERROR_CODES = frozenset(
    {
        "validation_error",
        "unauthorized",
        "forbidden",
        "not_found",
        "conflict",
        "server_error",
    }
)


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"invalid error code {value!r}, must be one of {sorted(_VALID_ERROR_CODES)}"
            )
        return value


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody
    request_id: Optional[str] = None


class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterRequest(_CamelRequest):
    email: Optional[str] = Field(default=None, max_length=254)
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=255)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)
    role: Optional[str] = Field(default=None, max_length=16)
    client_id: Optional[int] = Field(default=None, alias="clientId")


class LoginRequest(_CamelRequest):
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=1024)


class MagicLinkRequest(_CamelRequest):
    email: Optional[str] = Field(default=None, max_length=254)


class VerifyMagicLinkRequest(_CamelRequest):
    token: Optional[str] = Field(default=None, max_length=256)


class UserSummary(BaseModel):
    """Account fields returned alongside a fresh token."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    email: str
    role: str
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    client_id: Optional[int] = Field(default=None, alias="clientId")


class UserProfile(UserSummary):
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")
    phone: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")


class RegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    user_id: int = Field(alias="userId")


class TokenResponse(BaseModel):
    success: bool = True
    token: str
    user: UserSummary


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class MagicLinkResponse(MessageResponse):
    # Populated only under TEST_MODE so the flow can be driven without a mailbox
    dev_token: Optional[str] = Field(default=None, alias="devToken")

    model_config = ConfigDict(populate_by_name=True)


class UserResponse(BaseModel):
    success: bool = True
    user: UserProfile


class UserListResponse(BaseModel):
    success: bool = True
    users: list[UserProfile]


class HealthResponse(BaseModel):
    status: str
    environment: str
    version: str
    timestamp: str
