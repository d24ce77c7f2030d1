"""
Tests for the Portal HTTP client

Tests cover:
- URL and query composition
- Header composition from the SessionContext
- Error normalization order
- Transport failures
"""

import httpx
import pytest

from portal_sync.services.errors import NetworkError, PortalApplicationError
from portal_sync.services.portal_client import PortalClient, normalize_portal_error
from portal_sync.services.portal_session import PortalCredential, SessionContext

from conftest import PORTAL_BASE


def capture_client(responder=None):
    """Client whose transport records every request"""
    seen = []

    def handler(request):
        seen.append(request)
        if responder:
            return responder(request)
        return httpx.Response(200, json={"status": "ok", "data": []})

    return PortalClient(base_url=PORTAL_BASE, timeout=5, transport=httpx.MockTransport(handler)), seen


class TestRequestComposition:

    def test_base_url_gets_trailing_slash(self):
        client = PortalClient(base_url="https://portal.test/ords/portal")
        assert client.build_url("reservas") == "https://portal.test/ords/portal/reservas"
        assert client.build_url("/reservas") == "https://portal.test/ords/portal/reservas"

    def test_empty_query_params_are_dropped(self):
        client, seen = capture_client()
        client.request(None, "dashboard/incidencias", params={"estado": "ABIERTA", "titulo": None, "page": ""})

        params = dict(seen[0].url.params)
        assert params == {"estado": "ABIERTA"}

    def test_headers_without_body_or_credential(self):
        client, seen = capture_client()
        client.request(SessionContext(), "propiedades")

        headers = seen[0].headers
        assert headers["accept"] == "application/json"
        assert "authorization" not in headers
        assert "content-type" not in headers

    def test_authorization_from_session(self):
        client, seen = capture_client()
        session = SessionContext(credential=PortalCredential(token="abc", token_type="Bearer"))
        client.request(session, "reservas", method="POST", body={"fecha": "2026-01-10"})

        headers = seen[0].headers
        assert headers["authorization"] == "Bearer abc"
        assert headers["content-type"] == "application/json"

    def test_caller_headers_are_merged(self):
        client, seen = capture_client()
        client.request(None, "propiedades", headers={"X-Trace": "t-1"})
        assert seen[0].headers["x-trace"] == "t-1"


class TestResponses:

    def test_success_returns_payload(self):
        client, _ = capture_client(lambda r: httpx.Response(200, json={"data": [{"idPropiedad": 1}]}))
        result = client.request(None, "propiedades")

        assert result.ok
        assert result.data == {"data": [{"idPropiedad": 1}]}
        assert result.status_code == 200

    def test_unparseable_body_is_empty_dict(self):
        client, _ = capture_client(lambda r: httpx.Response(200, content=b"<html>"))
        result = client.request(None, "propiedades")

        assert result.ok
        assert result.data == {}

    def test_status_error_body_with_200(self):
        client, _ = capture_client(
            lambda r: httpx.Response(200, json={"status": "error", "message": "Fecha ocupada"})
        )
        result = client.request(None, "reservas", method="POST", body={})

        assert isinstance(result.error, PortalApplicationError)
        assert result.error.message == "Fecha ocupada"
        assert result.error.status == 200

    def test_transport_failure_is_network_error(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = capture_client(boom)
        result = client.request(None, "propiedades")

        assert isinstance(result.error, NetworkError)
        assert "connection refused" in result.error.message
        assert result.error.retryable


class TestErrorNormalization:

    def test_nested_error_wins(self):
        error = normalize_portal_error(
            {"error": {"message": "Token vencido", "code": 401, "description": "expired"}, "message": "outer"},
            400,
        )
        assert error.message == "Token vencido"
        assert error.status == 401
        assert error.details == "expired"

    def test_nested_error_without_code_uses_http_status(self):
        error = normalize_portal_error({"error": {"message": "Malo"}}, 422)
        assert error.status == 422

    def test_top_level_message(self):
        error = normalize_portal_error({"message": "Unidad inexistente"}, 400)
        assert error.message == "Unidad inexistente"
        assert error.status == 400

    def test_not_found(self):
        error = normalize_portal_error({}, 404)
        assert error.message == "No record found"
        assert error.status == 404

    @pytest.mark.parametrize("payload", [{}, None, ["x"]])
    def test_fallback(self, payload):
        error = normalize_portal_error(payload, 500)
        assert error.message == "Unexpected portal API error"
        assert error.status == 500


class TestEndpointHelpers:

    def test_update_incident_uses_put(self, portal, client):
        portal.on("PUT", "incidencias/55", (200, {"status": "ok"}))
        result = client.update_incident(None, 55, {"estado": "RESUELTA"})

        assert result.ok
        assert portal.bodies("PUT", "incidencias/55") == [{"estado": "RESUELTA"}]

    def test_approve_reservation_uses_configured_path(self, portal, client):
        portal.on("PUT", "approvals/reservations/77", (200, {"status": "ok"}))
        assert client.approve_reservation(None, 77).ok
        assert portal.count("PUT", "approvals/reservations/77") == 1
