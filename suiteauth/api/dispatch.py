"""Method + path routing for the ``/api`` surface.

Rules are tried in registration order and the first match wins, so literal
paths that overlap a parameterised pattern must be added before it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from fastapi import Request
from fastapi.responses import Response

from suiteauth.api.error_handling import error_response, response_for_exception
from suiteauth.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Request, Dict[str, str]], Awaitable[Response]]


def match_path(pathname: str, pattern: str) -> Optional[Dict[str, str]]:
    """Bind ``:name`` segments of ``pattern`` against ``pathname``.

    >>> match_path("/api/clients/42", "/api/clients/:id")
    {'id': '42'}
    >>> match_path("/api/clients/42/x", "/api/clients/:id") is None
    True
    """
    path_parts = pathname.split("/")
    pattern_parts = pattern.split("/")
    if len(path_parts) != len(pattern_parts):
        return None
    params: Dict[str, str] = {}
    for actual, expected in zip(path_parts, pattern_parts):
        if expected.startswith(":") and len(expected) > 1:
            params[expected[1:]] = actual
        elif actual != expected:
            return None
    return params


@dataclass(frozen=True)
class Rule:
    method: str
    pattern: str
    handler: Handler

    @property
    def is_literal(self) -> bool:
        return ":" not in self.pattern

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        if method.upper() != self.method:
            return None
        if self.is_literal:
            return {} if path == self.pattern else None
        return match_path(path, self.pattern)


class Dispatcher:
    def __init__(self) -> None:
        self._rules: List[Rule] = []

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return tuple(self._rules)

    def add(self, method: str, pattern: str, handler: Handler) -> Rule:
        rule = Rule(method=method.upper(), pattern=pattern, handler=handler)
        self._rules.append(rule)
        return rule

    def route(self, method: str, pattern: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add(method, pattern, handler)
            return handler

        return decorator

    def resolve(self, method: str, path: str) -> Optional[Tuple[Rule, Dict[str, str]]]:
        for rule in self._rules:
            params = rule.match(method, path)
            if params is not None:
                return rule, params
        return None

    async def dispatch(self, request: Request) -> Response:
        path = request.url.path
        resolved = self.resolve(request.method, path)
        if resolved is None:
            logger.info("route_not_found", method=request.method, path=path)
            return error_response(
                404,
                f"endpoint {request.method} {path} not found",
                {"path": path},
                code="not_found",
            )
        rule, params = resolved
        try:
            return await rule.handler(request, params)
        except Exception as exc:
            return response_for_exception(request, exc)
