"""Tests for the built-in JSON-RPC engine."""

import json

import pytest

from agentgate.server.engine import EngineRequest, JsonRpcEngine, Resource, Tool


def post(message) -> EngineRequest:
    return EngineRequest(method="POST", path="/mcp", body=json.dumps(message).encode())


def call(method: str, id: int = 1, **params) -> EngineRequest:
    return post({"jsonrpc": "2.0", "id": id, "method": method, "params": params})


@pytest.fixture
def engine() -> JsonRpcEngine:
    async def get_price(arguments):
        return {"symbol": arguments["symbol"], "price": "1.00"}

    def fail(arguments):
        raise RuntimeError("upstream down")

    tools = {
        "get-price": Tool(name="get-price", handler=get_price, description="Price quote"),
        "fail": Tool(name="fail", handler=fail),
    }
    resources = {
        "agent://identity": Resource(uri="agent://identity", name="identity", reader=lambda: {"globalId": "x"}),
    }
    return JsonRpcEngine("session-1", tools=tools, resources=resources, server_name="test")


class TestJsonRpcEngine:
    """Tests for JsonRpcEngine request handling."""

    @pytest.mark.asyncio
    async def test_initialize(self, engine):
        response = await engine.handle(call("initialize", protocolVersion="2025-03-26"))
        body = json.loads(response.body)

        assert response.status_code == 200
        assert body["id"] == 1
        assert body["result"]["serverInfo"]["name"] == "test"
        assert body["result"]["protocolVersion"] == "2025-03-26"

    @pytest.mark.asyncio
    async def test_tools_list_includes_ping(self, engine):
        body = json.loads((await engine.handle(call("tools/list"))).body)

        assert [tool["name"] for tool in body["result"]["tools"]] == ["ping", "get-price", "fail"]

    @pytest.mark.asyncio
    async def test_tools_call(self, engine):
        body = json.loads((await engine.handle(call("tools/call", name="get-price", arguments={"symbol": "ETH"}))).body)

        assert json.loads(body["result"]["content"][0]["text"]) == {"symbol": "ETH", "price": "1.00"}

    @pytest.mark.asyncio
    async def test_tool_failure_is_reported_in_result(self, engine):
        body = json.loads((await engine.handle(call("tools/call", name="fail"))).body)

        assert body["result"]["isError"] is True
        assert body["result"]["content"][0]["text"] == "upstream down"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, engine):
        body = json.loads((await engine.handle(call("tools/call", name="nope"))).body)

        assert body["error"]["code"] == -32602

    @pytest.mark.asyncio
    async def test_resources_read(self, engine):
        body = json.loads((await engine.handle(call("resources/read", uri="agent://identity"))).body)

        content = body["result"]["contents"][0]
        assert content["uri"] == "agent://identity"
        assert json.loads(content["text"]) == {"globalId": "x"}

    @pytest.mark.asyncio
    async def test_missing_resource(self, engine):
        body = json.loads((await engine.handle(call("resources/read", uri="agent://nope"))).body)

        assert body["error"]["code"] == -32002

    @pytest.mark.asyncio
    async def test_unknown_method(self, engine):
        body = json.loads((await engine.handle(call("sampling/createMessage"))).body)

        assert body["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_notification_gets_202(self, engine):
        response = await engine.handle(post({"jsonrpc": "2.0", "method": "notifications/initialized"}))

        assert response.status_code == 202
        assert response.body == b""

    @pytest.mark.asyncio
    async def test_batch(self, engine):
        response = await engine.handle(post([
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
        ]))
        body = json.loads(response.body)

        assert [reply["id"] for reply in body] == [1, 2]

    @pytest.mark.asyncio
    async def test_parse_error(self, engine):
        response = await engine.handle(EngineRequest(method="POST", path="/mcp", body=b"{oops"))

        assert response.status_code == 400
        assert json.loads(response.body)["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, engine):
        response = await engine.handle(EngineRequest(method="GET", path="/mcp"))

        assert response.status_code == 405


class TestEngineClose:
    """Tests for closing an engine connection."""

    @pytest.mark.asyncio
    async def test_delete_closes_and_signals_once(self, engine):
        signals = []
        engine.on_close = lambda: signals.append(engine.session_id)

        response = await engine.handle(EngineRequest(method="DELETE", path="/mcp"))
        await engine.close()

        assert response.status_code == 204
        assert engine.closed is True
        assert signals == ["session-1"]

    @pytest.mark.asyncio
    async def test_closed_engine_answers_410(self, engine):
        await engine.close()

        response = await engine.handle(call("ping"))

        assert response.status_code == 410

    @pytest.mark.asyncio
    async def test_async_close_callback(self, engine):
        signals = []

        async def on_close():
            signals.append("closed")

        engine.on_close = on_close
        await engine.close()

        assert signals == ["closed"]
