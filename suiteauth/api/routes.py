from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, Type, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from suiteauth.api.access import extract_token
from suiteauth.api.dispatch import Dispatcher
from suiteauth.api.schemas import (
    HealthResponse,
    LoginRequest,
    MagicLinkRequest,
    MagicLinkResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserListResponse,
    UserProfile,
    UserResponse,
    UserSummary,
    VerifyMagicLinkRequest,
)
from suiteauth.config import Settings
from suiteauth.service.auth import LoginResult
from suiteauth.service.errors import ValidationError
from suiteauth.service.runtime import get_runtime
from suiteauth.service.validation import is_valid_role
from suiteauth.storage.models import Account, Role

ModelT = TypeVar("ModelT", bound=BaseModel)

MAGIC_LINK_SENT = "if that email is registered, a sign-in link has been sent"

dispatcher = Dispatcher()


def _json(model: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(by_alias=True))


def _profile(account: Account) -> UserProfile:
    return UserProfile.model_validate(account.to_public(detailed=True))


async def _read_body(request: Request, model: Type[ModelT]) -> ModelT:
    raw = await request.body()
    if raw.strip():
        try:
            data = json.loads(raw)
        except ValueError:
            raise ValidationError("request body must be valid JSON") from None
    else:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
        raise ValidationError("invalid request body", detail={"errors": errors}) from None


def _parse_id(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError("invalid user id", detail={"id": raw}) from None
    if value <= 0:
        raise ValidationError("invalid user id", detail={"id": raw})
    return value


def _apply_auth_cookie(response: JSONResponse, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.auth_cookie_name,
        token,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def _login_response(result: LoginResult, settings: Settings) -> JSONResponse:
    summary = UserSummary.model_validate(result.account.to_public())
    response = _json(TokenResponse(token=result.token, user=summary))
    _apply_auth_cookie(response, result.token, settings)
    return response


@dispatcher.route("GET", "/api/health")
async def health(request: Request, params: Dict[str, str]) -> JSONResponse:
    settings = get_runtime().settings
    return _json(
        HealthResponse(
            status="healthy",
            environment=settings.environment,
            version=settings.app_version,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
    )


@dispatcher.route("POST", "/api/auth/register")
async def register(request: Request, params: Dict[str, str]) -> JSONResponse:
    """Create an account. Registration never logs the caller in.

    Staff roles and client bindings are only honoured for an admin caller.
    """
    runtime = get_runtime()
    body = await _read_body(request, RegisterRequest)
    actor = None
    elevated = (
        body.role is not None
        and is_valid_role(body.role)
        and Role.parse(body.role) is not Role.CLIENT
    )
    if elevated or body.client_id is not None:
        gate = await runtime.access.require_admin(request)
        if not gate.valid:
            return gate.response
        actor = gate.principal
    account = await runtime.auth.register(
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        password=body.password,
        role=body.role,
        client_id=body.client_id,
        actor=actor,
    )
    return _json(RegisterResponse(message="user registered successfully", user_id=account.id))


@dispatcher.route("POST", "/api/auth/login")
async def login(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    body = await _read_body(request, LoginRequest)
    result = await runtime.auth.login(body.email, body.password)
    return _login_response(result, runtime.settings)


@dispatcher.route("POST", "/api/auth/magic-link")
async def magic_link(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    body = await _read_body(request, MagicLinkRequest)
    link = await runtime.auth.request_magic_link(body.email)
    dev_token = link.token if runtime.settings.test_mode and link is not None else None
    payload = MagicLinkResponse(message=MAGIC_LINK_SENT, dev_token=dev_token)
    return JSONResponse(content=payload.model_dump(by_alias=True, exclude_none=True))


@dispatcher.route("POST", "/api/auth/verify-magic-link")
async def verify_magic_link(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    body = await _read_body(request, VerifyMagicLinkRequest)
    result = await runtime.auth.verify_magic_link(body.token)
    return _login_response(result, runtime.settings)


@dispatcher.route("POST", "/api/auth/logout")
async def logout(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    settings = runtime.settings
    await runtime.auth.logout(extract_token(request, settings.auth_cookie_name))
    response = _json(MessageResponse(message="logged out successfully"))
    response.delete_cookie(
        settings.auth_cookie_name,
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )
    return response


@dispatcher.route("GET", "/api/auth/me")
async def me(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    result = await runtime.access.authenticate(request)
    if not result.valid:
        return result.response
    account = runtime.auth.whoami(result.principal)
    return _json(UserResponse(user=_profile(account)))


@dispatcher.route("GET", "/api/users")
async def list_users(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    gate = await runtime.access.require_team(request)
    if not gate.valid:
        return gate.response
    role_filter = request.query_params.get("role")
    if role_filter is not None and not is_valid_role(role_filter):
        raise ValidationError("invalid role", detail={"role": role_filter})
    accounts = runtime.auth.list_accounts(role=Role.parse(role_filter) if role_filter else None)
    return _json(UserListResponse(users=[_profile(a) for a in accounts]))


@dispatcher.route("GET", "/api/users/:id")
async def get_user(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    result = await runtime.access.authenticate(request)
    if not result.valid:
        return result.response
    account = runtime.auth.get_account(_parse_id(params["id"]), actor=result.principal)
    return _json(UserResponse(user=_profile(account)))


@dispatcher.route("POST", "/api/users/:id/deactivate")
async def deactivate_user(request: Request, params: Dict[str, str]) -> JSONResponse:
    runtime = get_runtime()
    gate = await runtime.access.require_admin(request)
    if not gate.valid:
        return gate.response
    account = runtime.auth.deactivate_user(_parse_id(params["id"]), actor=gate.principal)
    return _json(UserResponse(user=_profile(account)))
