"""
Protocol engine seam.

The router never interprets protocol messages; it hands each HTTP exchange
to an ``EngineConnection`` and relays what comes back. Any engine can be
plugged in through ``EngineFactory``.

``JsonRpcEngine`` is a small MCP-style JSON-RPC adapter (``initialize``,
``ping``, ``tools/list``, ``tools/call``, ``resources/list``,
``resources/read``) used by ``GateServer`` when no other engine is given.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol, Union

from ..payments.models import PaymentDetails

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"

CloseCallback = Callable[[], Union[Awaitable[None], None]]


@dataclass
class EngineRequest:
    """One inbound HTTP exchange, as handed to an engine connection."""
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    session_id: Optional[str] = None
    payment: Optional[PaymentDetails] = None


@dataclass
class EngineResponse:
    """Engine answer, relayed verbatim by the router."""
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: Union[bytes, AsyncIterator[bytes]] = b""
    media_type: Optional[str] = "application/json"

    @classmethod
    def json(cls, data: Any, status_code: int = 200) -> "EngineResponse":
        return cls(status_code=status_code, body=json.dumps(data).encode("utf-8"))


class EngineConnection(Protocol):
    """A live protocol-engine channel."""

    # Invoked once when the connection closes, whoever closed it
    on_close: Optional[CloseCallback]

    async def handle(self, request: EngineRequest) -> EngineResponse:
        ...

    async def close(self) -> None:
        ...


# session_id (None for stateless) -> connection
EngineFactory = Callable[[Optional[str]], Awaitable[EngineConnection]]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class Tool:
    """A callable tool exposed through ``tools/list`` and ``tools/call``."""
    name: str
    handler: Callable[[dict[str, Any]], Any]
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


@dataclass
class Resource:
    """A readable resource exposed through ``resources/read``."""
    uri: str
    name: str
    reader: Callable[[], Any]
    description: str = ""
    mime_type: str = "application/json"

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def _ping_tool() -> Tool:
    return Tool(name="ping", handler=lambda arguments: "pong", description="Health check")


class JsonRpcEngine:
    """
    Minimal JSON-RPC engine connection.

    Requests on one connection are handled one at a time, in arrival order.
    ``DELETE`` closes the connection.
    """

    def __init__(
        self,
        session_id: Optional[str],
        tools: Optional[dict[str, Tool]] = None,
        resources: Optional[dict[str, Resource]] = None,
        server_name: str = "agentgate",
        server_version: str = "0.1.0",
    ):
        self.session_id = session_id
        self.on_close: Optional[CloseCallback] = None
        self.tools = {"ping": _ping_tool(), **(tools or {})}
        self.resources = dict(resources or {})
        self.server_name = server_name
        self.server_version = server_version
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    def factory(
        cls,
        tools: Optional[dict[str, Tool]] = None,
        resources: Optional[dict[str, Resource]] = None,
        **kwargs: Any,
    ) -> EngineFactory:
        """An EngineFactory producing connections that share these tools and resources."""

        async def create(session_id: Optional[str]) -> "JsonRpcEngine":
            return cls(session_id, tools=tools, resources=resources, **kwargs)

        return create

    @property
    def closed(self) -> bool:
        return self._closed

    async def handle(self, request: EngineRequest) -> EngineResponse:
        if self._closed:
            return EngineResponse.json({"error": "Connection closed"}, status_code=410)

        if request.method == "DELETE":
            await self.close()
            return EngineResponse(status_code=204, body=b"", media_type=None)

        if request.method != "POST":
            return EngineResponse.json({"error": "Method not allowed"}, status_code=405)

        try:
            message = json.loads(request.body)
        except ValueError:
            return EngineResponse.json(
                {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}},
                status_code=400,
            )

        async with self._lock:
            if isinstance(message, list):
                replies = [r for r in [await self._dispatch(m, request) for m in message] if r is not None]
                if not replies:
                    return EngineResponse(status_code=202, body=b"", media_type=None)
                return EngineResponse.json(replies)

            reply = await self._dispatch(message, request)
            if reply is None:
                return EngineResponse(status_code=202, body=b"", media_type=None)
            return EngineResponse.json(reply)

    async def _dispatch(self, message: Any, request: EngineRequest) -> Optional[dict[str, Any]]:
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            return {"jsonrpc": "2.0", "id": None, "error": {"code": -32600, "message": "Invalid Request"}}

        message_id = message.get("id")
        params = message.get("params") or {}
        try:
            result = await self._call(message["method"], params, request)
        except JsonRpcError as e:
            if message_id is None:
                return None
            return {"jsonrpc": "2.0", "id": message_id, "error": {"code": e.code, "message": e.message}}

        # Notifications get no reply
        if message_id is None:
            return None
        return {"jsonrpc": "2.0", "id": message_id, "result": result}

    async def _call(self, method: str, params: dict[str, Any], request: EngineRequest) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {}, "resources": {}},
                "serverInfo": {"name": self.server_name, "version": self.server_version},
            }
        if method == "ping" or method.startswith("notifications/"):
            return {}
        if method == "tools/list":
            return {"tools": [tool.to_dict() for tool in self.tools.values()]}
        if method == "tools/call":
            return await self._call_tool(params)
        if method == "resources/list":
            return {"resources": [resource.to_dict() for resource in self.resources.values()]}
        if method == "resources/read":
            return await self._read_resource(params)
        raise JsonRpcError(-32601, f"Method not found: {method}")

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        tool = self.tools.get(params.get("name", ""))
        if tool is None:
            raise JsonRpcError(-32602, f"Unknown tool: {params.get('name')}")
        try:
            output = await maybe_await(tool.handler(params.get("arguments") or {}))
        except Exception as e:
            logger.warning(f"Tool {tool.name} failed: {e}")
            return {"content": [{"type": "text", "text": str(e)}], "isError": True}
        text = output if isinstance(output, str) else json.dumps(output)
        return {"content": [{"type": "text", "text": text}]}

    async def _read_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri", "")
        resource = self.resources.get(uri)
        if resource is None:
            raise JsonRpcError(-32002, f"Resource not found: {uri}")
        content = await maybe_await(resource.reader())
        text = content if isinstance(content, str) else json.dumps(content, indent=2)
        return {"contents": [{"uri": uri, "mimeType": resource.mime_type, "text": text}]}

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.on_close is not None:
            await maybe_await(self.on_close())
