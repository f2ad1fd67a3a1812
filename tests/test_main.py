"""Integration tests for src/main.py: full request pipeline via ASGI transport."""

import httpx
import pytest

from src.config.settings import get_settings
from src.context import build_context
from src.main import app
from src.security.auth import Gatekeeper
from src.tokens.config import TokenRole, TokenSpec
from src.tokens.registry import TokenRegistry
from src.upstream.errors import UpstreamHTTPError, UpstreamTimeoutError

ADMIN = {"Authorization": "Bearer admin-token"}
ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}

BASE_ENV = {
    "EXA_API_KEY": "",
    "USER_TOKENS": "",
    "MCP_AUTH_TOKEN": "",
    "STATE_STORE_BACKEND": "none",
    "ENABLED_TOOLS": "",
}


async def _client_for(settings_env: dict, override_settings, mock_transport):
    override_settings(**{**BASE_ENV, **settings_env})
    app.state.context = await build_context(get_settings(), transport=mock_transport)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def reset_context():
    """ASGITransport skips lifespan, so each test installs its own context."""
    yield
    app.state.context = None


@pytest.fixture
async def pool_client(override_settings, mock_transport):
    """Pool mode with two upstream keys, two users and one admin."""
    client = await _client_for({"EXA_API_KEYS": "K1,K2"}, override_settings, mock_transport)
    context = app.state.context
    context.registry = TokenRegistry(
        [
            TokenSpec("tok-alice", owner_id="alice"),
            TokenSpec("tok-bob", owner_id="bob"),
            TokenSpec("admin-token", role=TokenRole.ADMIN),
        ],
        persistence=context.persistence,
    )
    context.gatekeeper = Gatekeeper(context.registry)
    async with client:
        yield client


@pytest.fixture
async def passthrough_client(override_settings, mock_transport):
    client = await _client_for({"EXA_API_KEYS": ""}, override_settings, mock_transport)
    async with client:
        yield client


class TestHealth:

    async def test_pool_mode(self, pool_client):
        resp = await pool_client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["mode"] == "pool"
        assert data["auth_required"] is True
        assert data["pool"] == {"total": 2, "active": 2, "cooldown": 0, "dead": 0}

    async def test_passthrough_mode(self, passthrough_client):
        data = (await passthrough_client.get("/health")).json()
        assert data["mode"] == "passthrough"
        assert data["auth_required"] is False

    async def test_tools_listing(self, pool_client):
        tools = (await pool_client.get("/tools")).json()["tools"]
        assert any(t["id"] == "web_search_exa" and t["enabled"] for t in tools)


class TestToolCalls:

    async def test_success_records_usage(self, pool_client, mock_transport):
        mock_transport.send.return_value = {"results": [{"title": "t"}]}

        resp = await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=ALICE)

        assert resp.status_code == 200
        assert resp.json() == {"tool": "web_search_exa", "result": {"results": [{"title": "t"}]}}
        assert resp.headers["X-Request-Id"]
        assert mock_transport.send.call_args.args[2] == "K1"
        assert app.state.context.registry.validate("tok-alice").token.usage_count == 1

    async def test_missing_token(self, pool_client):
        resp = await pool_client.post("/tools/web_search_exa", json={"query": "q"})
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "missing_token"
        assert "Bearer" in resp.headers["WWW-Authenticate"]

    async def test_unknown_token(self, pool_client):
        resp = await pool_client.post(
            "/tools/web_search_exa", json={"query": "q"}, headers={"Authorization": "Bearer wrong"}
        )
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "token_not_found"

    async def test_disabled_token_forbidden(self, pool_client):
        await app.state.context.registry.disable_token("tok-bob")
        resp = await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=BOB)
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "token_disabled"

    async def test_unknown_tool(self, pool_client):
        resp = await pool_client.post("/tools/nope", json={}, headers=ALICE)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "unknown_tool"

    async def test_invalid_arguments(self, pool_client, mock_transport):
        resp = await pool_client.post("/tools/web_search_exa", json={"numResults": 3}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_arguments"
        mock_transport.send.assert_not_awaited()

    async def test_invalid_json(self, pool_client):
        resp = await pool_client.post(
            "/tools/web_search_exa",
            content=b"{not json",
            headers={**ALICE, "content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_json"

    async def test_quota_failover_is_transparent(self, pool_client, mock_transport):
        mock_transport.send.side_effect = [UpstreamHTTPError(429, "rate limited"), {"ok": True}]

        resp = await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=ALICE)

        assert resp.status_code == 200
        assert [c.args[2] for c in mock_transport.send.call_args_list] == ["K1", "K2"]
        assert app.state.context.pool.status().cooldown == 1

    async def test_upstream_error_passes_status(self, pool_client, mock_transport):
        mock_transport.send.side_effect = UpstreamHTTPError(500, "internal")
        resp = await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=ALICE)
        assert resp.status_code == 500
        assert resp.json()["error"] == {"code": "upstream_error", "message": "internal"}

    async def test_timeout_is_504(self, pool_client, mock_transport):
        mock_transport.send.side_effect = UpstreamTimeoutError(25.0)
        resp = await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=ALICE)
        assert resp.status_code == 504
        assert resp.json()["error"]["code"] == "upstream_timeout"


class TestPoolExhausted:

    async def test_single_key_exhaustion_is_503(self, override_settings, mock_transport):
        client = await _client_for(
            {"EXA_API_KEYS": "K1", "USER_TOKENS": "tok-alice:alice"}, override_settings, mock_transport
        )
        mock_transport.send.side_effect = UpstreamHTTPError(402, "Payment required")

        async with client:
            resp = await client.post("/tools/web_search_exa", json={"query": "q"}, headers=ALICE)

        assert resp.status_code == 503
        error = resp.json()["error"]
        assert error["code"] == "pool_exhausted"
        assert error["pool"] == {"total": 1, "active": 0, "cooldown": 1, "dead": 0}
        assert "All API keys exhausted" in error["message"]


class TestPassthrough:

    async def test_requires_upstream_key(self, passthrough_client, mock_transport):
        resp = await passthrough_client.post("/tools/web_search_exa", json={"query": "q"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_upstream_key"
        mock_transport.send.assert_not_awaited()

    async def test_header_key_is_used(self, passthrough_client, mock_transport):
        resp = await passthrough_client.post(
            "/tools/web_search_exa", json={"query": "q"}, headers={"X-Exa-Api-Key": "caller-key"}
        )
        assert resp.status_code == 200
        assert mock_transport.send.call_args.args[2] == "caller-key"

    async def test_query_key_is_used(self, passthrough_client, mock_transport):
        resp = await passthrough_client.post(
            "/tools/web_search_exa", params={"exaApiKey": "query-key"}, json={"query": "q"}
        )
        assert resp.status_code == 200
        assert mock_transport.send.call_args.args[2] == "query-key"

    async def test_admin_unavailable(self, passthrough_client):
        resp = await passthrough_client.get("/admin/pool")
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "admin_unavailable"


class TestAdmin:

    async def test_user_is_forbidden(self, pool_client):
        resp = await pool_client.get("/admin/pool", headers=ALICE)
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "insufficient_role"

    async def test_anonymous_is_unauthenticated(self, pool_client):
        resp = await pool_client.get("/admin/pool")
        assert resp.status_code == 401

    async def test_pool_status_and_reset(self, pool_client):
        await app.state.context.pool.record_failure("quota")
        assert (await pool_client.get("/admin/pool", headers=ADMIN)).json()["cooldown"] == 1

        resp = await pool_client.post("/admin/pool/reset", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json() == {"total": 2, "active": 2, "cooldown": 0, "dead": 0}

    async def test_token_listing_is_masked(self, pool_client):
        resp = await pool_client.get("/admin/tokens", headers=ADMIN)
        assert resp.status_code == 200
        assert "tok-alice" not in resp.text
        assert len(resp.json()["tokens"]) == 3

    async def test_stats(self, pool_client):
        await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=ALICE)
        stats = (await pool_client.get("/admin/tokens/stats", headers=ADMIN)).json()
        assert stats["total_tokens"] == 3
        assert stats["usage_by_owner"]["alice"] == 1

    async def test_disable_then_enable(self, pool_client):
        resp = await pool_client.post("/admin/tokens/disable", json={"token": "tok-bob"}, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert (await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=BOB)).status_code == 403

        resp = await pool_client.post("/admin/tokens/enable", json={"token": "tok-bob"}, headers=ADMIN)
        assert resp.json()["is_active"] is True
        assert (await pool_client.post("/tools/web_search_exa", json={"query": "q"}, headers=BOB)).status_code == 200

    async def test_disable_unknown_token(self, pool_client):
        resp = await pool_client.post("/admin/tokens/disable", json={"token": "ghost"}, headers=ADMIN)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "token_not_found"

    async def test_disable_requires_token_field(self, pool_client):
        resp = await pool_client.post("/admin/tokens/disable", json={}, headers=ADMIN)
        assert resp.status_code == 400
