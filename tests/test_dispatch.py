import pytest
from fastapi.responses import JSONResponse

from suiteauth.api.dispatch import Dispatcher, Rule, match_path
from suiteauth.api.routes import dispatcher as api_dispatcher


async def _noop(request, params):
    return JSONResponse({"ok": True})


async def _other(request, params):
    return JSONResponse({"ok": False})


@pytest.mark.parametrize(
    "path,pattern,expected",
    [
        ("/api/clients/42", "/api/clients/:id", {"id": "42"}),
        ("/api/clients/42/x", "/api/clients/:id", None),
        ("/api/clients", "/api/clients/:id", None),
        ("/api/users/7/deactivate", "/api/users/:id/deactivate", {"id": "7"}),
        ("/api/users/7/activate", "/api/users/:id/deactivate", None),
        ("/api/a/1/b/2", "/api/a/:x/b/:y", {"x": "1", "y": "2"}),
        ("/api/health", "/api/health", {}),
    ],
)
def test_match_path(path, pattern, expected):
    assert match_path(path, pattern) == expected


class TestRule:
    def test_literal_rule_requires_exact_path(self):
        rule = Rule(method="GET", pattern="/api/health", handler=_noop)
        assert rule.is_literal
        assert rule.match("GET", "/api/health") == {}
        assert rule.match("GET", "/api/health/") is None

    def test_method_must_match(self):
        rule = Rule(method="POST", pattern="/api/auth/login", handler=_noop)
        assert rule.match("GET", "/api/auth/login") is None
        assert rule.match("post", "/api/auth/login") == {}

    def test_pattern_rule_binds_params(self):
        rule = Rule(method="GET", pattern="/api/users/:id", handler=_noop)
        assert not rule.is_literal
        assert rule.match("GET", "/api/users/3") == {"id": "3"}


class TestDispatcher:
    def test_first_registered_rule_wins(self):
        dispatcher = Dispatcher()
        dispatcher.add("GET", "/api/users/me", _noop)
        dispatcher.add("GET", "/api/users/:id", _other)

        rule, params = dispatcher.resolve("GET", "/api/users/me")
        assert rule.handler is _noop
        assert params == {}

        rule, params = dispatcher.resolve("GET", "/api/users/9")
        assert rule.handler is _other
        assert params == {"id": "9"}

    def test_unmatched_returns_none(self):
        dispatcher = Dispatcher()
        dispatcher.add("GET", "/api/health", _noop)
        assert dispatcher.resolve("POST", "/api/health") is None
        assert dispatcher.resolve("GET", "/api/nothing") is None

    def test_route_decorator_registers_in_order(self):
        dispatcher = Dispatcher()

        @dispatcher.route("get", "/api/first")
        async def first(request, params):
            return JSONResponse({})

        @dispatcher.route("POST", "/api/second")
        async def second(request, params):
            return JSONResponse({})

        assert [(r.method, r.pattern) for r in dispatcher.rules] == [
            ("GET", "/api/first"),
            ("POST", "/api/second"),
        ]


def test_api_routes_registered():
    table = {(r.method, r.pattern) for r in api_dispatcher.rules}
    assert {
        ("GET", "/api/health"),
        ("POST", "/api/auth/register"),
        ("POST", "/api/auth/login"),
        ("POST", "/api/auth/magic-link"),
        ("POST", "/api/auth/verify-magic-link"),
        ("POST", "/api/auth/logout"),
        ("GET", "/api/auth/me"),
        ("GET", "/api/users"),
        ("GET", "/api/users/:id"),
        ("POST", "/api/users/:id/deactivate"),
    } <= table
