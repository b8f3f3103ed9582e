"""
Credential extraction and route gating: 401 without a usable credential,
403 on admin routes without the admin role.
"""
import pytest
from starlette.requests import Request

from core.auth import extract_credential
from core.errors import NoCredential


def _request(headers=None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


class TestExtractCredential:

    def test_bearer_header(self):
        req = _request({"Authorization": "Bearer abc.def.ghi"})

        assert extract_credential(req, "header") == "abc.def.ghi"
        assert extract_credential(req, "any") == "abc.def.ghi"

    def test_cookie(self):
        req = _request({"Cookie": "id_token=tok123; access_token=at456"})

        assert extract_credential(req, "cookie") == "tok123"
        assert extract_credential(req, "any") == "tok123"

    def test_any_prefers_header_over_cookie(self):
        req = _request({"Authorization": "Bearer from-header", "Cookie": "id_token=from-cookie"})

        assert extract_credential(req, "any") == "from-header"

    def test_cookie_mode_ignores_header(self):
        req = _request({"Authorization": "Bearer from-header"})

        with pytest.raises(NoCredential):
            extract_credential(req, "cookie")

    def test_header_mode_ignores_cookie(self):
        req = _request({"Cookie": "id_token=from-cookie"})

        with pytest.raises(NoCredential):
            extract_credential(req, "header")

    @pytest.mark.parametrize("value", ["Basic dXNlcjpwYXNz", "Bearer", "Bearer   ", "tokenwithoutscheme"])
    def test_wrong_scheme_is_rejected(self, value):
        with pytest.raises(NoCredential):
            extract_credential(_request({"Authorization": value}), "any")

    def test_nothing_presented(self):
        with pytest.raises(NoCredential):
            extract_credential(_request(), "any")

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            extract_credential(_request(), "query")


class TestRouteGating:

    @pytest.mark.asyncio
    async def test_user_route_without_credential(self, client):
        resp = await client.get("/orders")

        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_user_route_with_wrong_scheme(self, client):
        resp = await client.get("/orders", headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token_is_unauthorized(self, client, make_token):
        token = make_token("user-1", expires_in=-120)

        resp = await client.get("/orders", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 401
        assert resp.text == "invalid token"

    @pytest.mark.asyncio
    async def test_cookie_credential_is_accepted(self, client, make_token):
        resp = await client.get("/orders", headers={"Cookie": f"id_token={make_token('user-1')}"})

        assert resp.status_code == 200
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_non_admin_token_rejected_from_admin_route(self, client, bearer):
        resp = await client.post(
            "/items/update", json={"item_id": 1, "stock": 3}, headers=bearer("user-1", ["buyer"])
        )

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_non_admin_token_accepted_on_user_route(self, client, bearer):
        resp = await client.get("/orders", headers=bearer("user-1", ["buyer"]))

        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_admin_token_reaches_admin_route(self, client, bearer):
        resp = await client.get("/orders/all", headers=bearer("staff-1", ["admin"]))

        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_admin_route_without_credential(self, client):
        resp = await client.post("/items/add", json={"name": "Widget", "price": 1, "stock": 1})

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_public_catalog_needs_no_credential(self, client):
        resp = await client.get("/items")

        assert resp.status_code == 200
