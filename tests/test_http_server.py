import json

import pytest
from fastapi.testclient import TestClient
from mcp.types import LATEST_PROTOCOL_VERSION, METHOD_NOT_FOUND, PARSE_ERROR

from pricecheck.server.dispatcher import SERVER_NAME, SERVER_VERSION
from pricecheck.server.http_server import PROTOCOL_HEADER, SESSION_HEADER, create_app


@pytest.fixture
def test_client(settings, backend):
    """TestClient with the lifespan running against the scripted backend."""
    app = create_app(settings, http_client=backend.client())
    with TestClient(app) as client:
        yield client


def _request(method, params=None, request_id=1) -> dict:
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def _price_check(itinerary: dict) -> dict:
    return _request("tools/call", {"name": "flight_pricecheck", "arguments": {"flightData": itinerary}}, request_id=7)


def _sse_frames(body: str) -> list[dict]:
    frames = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            frames.append(json.loads(block[len("data: "):]))
    return frames


class TestMetadataEndpoints:
    """Test suite for the GET endpoints."""

    def test_health_endpoint(self, test_client: TestClient):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "server": SERVER_NAME, "version": SERVER_VERSION}

    def test_server_metadata(self, test_client: TestClient):
        response = test_client.get("/mcp")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == SERVER_NAME
        assert data["transport"] == "http"
        assert data["protocolVersion"] == LATEST_PROTOCOL_VERSION
        assert "flight_pricecheck" in [tool["name"] for tool in data["tools"]]


class TestMcpEndpoint:
    """Test suite for JSON-RPC over POST /mcp."""

    def test_ping(self, test_client: TestClient):
        response = test_client.post("/mcp", json=_request("ping"))
        assert response.status_code == 200
        assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_session_id_is_echoed(self, test_client: TestClient):
        response = test_client.post("/mcp", json=_request("ping"), headers={SESSION_HEADER: "abc"})
        assert response.headers[SESSION_HEADER] == "abc"

    def test_session_id_is_assigned(self, test_client: TestClient):
        first = test_client.post("/mcp", json=_request("ping"))
        second = test_client.post("/mcp", json=_request("ping"))
        assert first.headers[SESSION_HEADER]
        assert first.headers[SESSION_HEADER] != second.headers[SESSION_HEADER]

    def test_protocol_version_header(self, test_client: TestClient):
        response = test_client.post("/mcp", json=_request("ping"))
        assert response.headers[PROTOCOL_HEADER] == LATEST_PROTOCOL_VERSION

    def test_initialize(self, test_client: TestClient):
        params = {"protocolVersion": LATEST_PROTOCOL_VERSION, "capabilities": {}, "clientInfo": {"name": "t", "version": "1"}}
        response = test_client.post("/mcp", json=_request("initialize", params))
        result = response.json()["result"]
        assert result["serverInfo"]["name"] == SERVER_NAME
        assert result["protocolVersion"] == LATEST_PROTOCOL_VERSION

    def test_notification_is_accepted(self, test_client: TestClient):
        response = test_client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202
        assert response.content == b""

    def test_parse_error(self, test_client: TestClient):
        response = test_client.post("/mcp", content=b"{oops", headers={"content-type": "application/json"})
        assert response.status_code == 400
        body = response.json()
        assert body["id"] is None
        assert body["error"]["code"] == PARSE_ERROR

    def test_invalid_envelope(self, test_client: TestClient):
        response = test_client.post("/mcp", json={"jsonrpc": "1.0", "id": 3, "method": "ping"})
        assert response.status_code == 400
        assert response.json()["id"] == 3

    def test_unknown_tool_is_json_rpc_error(self, test_client: TestClient):
        response = test_client.post("/mcp", json=_request("tools/call", {"name": "nope", "arguments": {}}))
        assert response.status_code == 200
        assert response.json()["error"]["code"] == METHOD_NOT_FOUND

    def test_buffered_price_check(self, test_client: TestClient, backend, round_trip, offer_record):
        """Without SSE only the final response is returned."""
        backend.script_polls(backend.session("COMPLETED", [offer_record(1), offer_record(2)]))

        response = test_client.post("/mcp", json=_price_check(round_trip))

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == 7
        payload = json.loads(body["result"]["content"][0]["text"])
        assert payload["status"] == "COMPLETED"
        assert payload["searchResult"]["totalResults"] == 2

    @pytest.mark.parametrize(
        "path, headers",
        [
            ("/mcp", {"accept": "application/json, text/event-stream"}),
            ("/mcp?stream=true", {}),
            ("/mcp", {"mcp-stream": "true"}),
        ],
    )
    def test_streamed_price_check(self, test_client: TestClient, backend, round_trip, offer_record, path, headers):
        backend.script_polls(backend.session("COMPLETED", [offer_record(1)]))

        response = test_client.post(path, json=_price_check(round_trip), headers=headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = _sse_frames(response.text)
        assert frames[0]["method"] == "notifications/message"
        assert frames[0]["params"]["logger"] == "http"
        assert frames[-1]["id"] == 7
        assert "result" in frames[-1]

    def test_validation_failure_is_tool_error(self, test_client: TestClient, backend, itinerary_factory):
        itinerary = itinerary_factory()
        itinerary["trip"]["legs"] = itinerary["trip"]["legs"][:1]

        response = test_client.post("/mcp", json=_price_check(itinerary))

        result = response.json()["result"]
        assert result["isError"] is True
        assert backend.submitted == []
