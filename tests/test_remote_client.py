"""Tests for remote call classification and response decoding."""

import asyncio
import json

import httpx
import pytest

from messmate.models import Meal, User
from messmate.services.remote import (
    AuthTokenStore,
    RemoteClient,
    RemoteRequest,
    ResponseShapeError,
    decode_list,
    decode_one,
    decode_optional,
    decode_value,
)

BASE_URL = "http://backend.test/api"


def _client(handler, timeout: float = 2.0, token_store=None) -> RemoteClient:
    return RemoteClient(
        BASE_URL,
        timeout_seconds=timeout,
        token_store=token_store,
        transport=httpx.MockTransport(handler),
    )


def _send(handler, request=None, **kwargs):
    async def scenario():
        client = _client(handler, **kwargs)
        try:
            return await client.request(request or RemoteRequest(path="/meals"))
        finally:
            await client.aclose()

    return asyncio.run(scenario())


class TestClassification:
    """Tests for connectivity vs application classification."""

    def test_success(self):
        result = _send(lambda r: httpx.Response(200, json={"success": True, "meals": []}))
        assert result.success is True
        assert result.data == {"success": True, "meals": []}
        assert result.is_connectivity_failure is False

    def test_transport_error_is_connectivity(self):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        result = _send(refuse)
        assert result.success is False
        assert result.is_connectivity_failure is True

    def test_timeout_is_connectivity(self):
        """Test that a slow server is cut off at the configured timeout."""
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"success": True})

        result = _send(slow, timeout=0.05)
        assert result.is_connectivity_failure is True

    def test_unparseable_body_is_connectivity(self):
        result = _send(lambda r: httpx.Response(200, text="<html>proxy</html>"))
        assert result.is_connectivity_failure is True

    def test_non_object_json_is_connectivity(self):
        result = _send(lambda r: httpx.Response(200, json=[1, 2]))
        assert result.is_connectivity_failure is True

    @pytest.mark.parametrize("status", [502, 503, 504])
    def test_gateway_errors_are_connectivity(self, status):
        result = _send(lambda r: httpx.Response(status, json={"error": "upstream"}))
        assert result.is_connectivity_failure is True
        assert result.status_code == status

    def test_store_disconnected_is_connectivity(self):
        result = _send(lambda r: httpx.Response(200, json={"success": True, "mongodb": "disconnected"}))
        assert result.is_connectivity_failure is True
        assert result.store_connected is False

    def test_store_connected_is_reported(self):
        result = _send(lambda r: httpx.Response(200, json={"success": True, "mongodb": "connected"}))
        assert result.success is True
        assert result.store_connected is True

    def test_application_error_keeps_server_message(self):
        """Test that a 409 is an application error with the server's text."""
        result = _send(lambda r: httpx.Response(
            409, json={"success": False, "error": "Email already registered"}
        ))
        assert result.success is False
        assert result.is_connectivity_failure is False
        assert result.error == "Email already registered"
        assert result.status_code == 409

    def test_success_false_body_is_application_error(self):
        result = _send(lambda r: httpx.Response(200, json={"success": False, "message": "Nope"}))
        assert result.is_connectivity_failure is False
        assert result.error == "Nope"

    def test_internal_server_error_is_application_error(self):
        result = _send(lambda r: httpx.Response(500, json={"success": False, "error": "Failed to get meals"}))
        assert result.is_connectivity_failure is False
        assert result.error == "Failed to get meals"


class TestRequestShape:
    """Tests for what the client sends."""

    def test_path_params_body_and_token(self):
        seen = {}

        def capture(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = request.content
            return httpx.Response(200, json={"success": True})

        _send(
            capture,
            RemoteRequest(method="POST", path="/meals", params={"monthId": "mo1"}, body={"lunch": 1}),
            token_store=AuthTokenStore("tok"),
        )
        assert seen["url"] == "http://backend.test/api/meals?monthId=mo1"
        assert seen["auth"] == "Bearer tok"
        assert json.loads(seen["body"]) == {"lunch": 1}

    def test_no_token_for_public_endpoints(self):
        seen = {}

        def capture(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"success": True})

        _send(capture, RemoteRequest(path="/auth/login", auth_required=False),
              token_store=AuthTokenStore("tok"))
        assert seen["auth"] is None


class TestHealth:
    """Tests for check_health."""

    def _health(self, handler):
        async def scenario():
            client = _client(handler)
            try:
                return await client.check_health()
            finally:
                await client.aclose()

        return asyncio.run(scenario())

    def test_healthy(self):
        health = self._health(lambda r: httpx.Response(200, json={"success": True, "mongodb": "connected"}))
        assert health.backend_available is True
        assert health.data_store_connected is True

    def test_backend_up_store_down(self):
        health = self._health(lambda r: httpx.Response(200, json={"success": True, "mongodb": "disconnected"}))
        assert health.backend_available is True
        assert health.data_store_connected is False

    def test_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        health = self._health(refuse)
        assert health.backend_available is False
        assert health.data_store_connected is False


class TestDecoding:
    """Tests for per-endpoint decode helpers."""

    def test_decode_one(self):
        user = decode_one({"user": {"_id": "u1", "name": "Rafi", "email": "r@x.co"}}, "user", User)
        assert user.id == "u1"
        assert user.full_name == "Rafi"

    def test_decode_list(self):
        meals = decode_list(
            {"meals": [{"monthId": "mo1", "userId": "u1", "date": "2024-03-01", "lunch": 1}]},
            "meals",
            Meal,
        )
        assert meals[0].lunch == 1

    def test_decode_optional_null(self):
        assert decode_optional({"month": None}, "month", Meal) is None

    def test_missing_key_is_shape_error(self):
        with pytest.raises(ResponseShapeError, match="missing 'meals'"):
            decode_list({"success": True}, "meals", Meal)

    def test_wrong_type_is_shape_error(self):
        with pytest.raises(ResponseShapeError):
            decode_list({"meals": {"not": "a list"}}, "meals", Meal)

    def test_invalid_item_is_shape_error(self):
        with pytest.raises(ResponseShapeError):
            decode_list({"meals": [{"monthId": "mo1"}]}, "meals", Meal)

    def test_decode_value(self):
        assert decode_value({"isUnique": True}, "isUnique", bool) is True
        with pytest.raises(ResponseShapeError):
            decode_value({"count": "many"}, "count", int)
