"""
Agent connector.

Connects to another agent's protocol endpoint, either by global reference
(verified on-chain first) or by direct URL (trusted as given). All traffic
goes through ``PaymentTransport``, so challenged calls are paid and retried
once when a signer is configured.

Usage:
    from agentgate.connector import AgentConnector

    connector = AgentConnector(payment=PaymentClientConfig(signer=signer, max_amount_per_request="100000"))
    async with await connector.connect("eip155:8453:0x8004A169FB4a3325136EB29fA0ceB6D2e539a432#2376") as agent:
        tools = await agent.list_tools()
        result = await agent.call_tool("get-price", {"symbol": "ETH"})
"""

import itertools
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from .config import config
from .errors import (
    AgentConnectionError,
    AgentGateError,
    EngineCallError,
    IdentityInvalid,
    NoEngineEndpoint,
    PaymentRequired,
)
from .identity.constants import MCP_SERVICE
from .identity.models import VerificationResult
from .identity.resolver import IdentityResolver
from .metrics import get_metrics_emitter
from .payments.client import PaymentClientConfig
from .payments.codec import decode_requirements_header
from .payments.constants import PAYMENT_REQUIRED_HEADER
from .server.engine import PROTOCOL_VERSION
from .server.router import IDENTITY_RESOURCE_URI, SESSION_HEADER
from .tracing import get_tracer

logger = logging.getLogger(__name__)


class EngineClient(Protocol):
    """Client side of a protocol-engine connection."""

    async def list_capabilities(self) -> list[dict[str, Any]]:
        ...

    async def invoke(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        ...

    async def list_resources(self) -> list[dict[str, Any]]:
        ...

    async def read_resource(self, uri: str) -> list[dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


# (endpoint url, payment-aware http client) -> opened engine client
EngineClientFactory = Callable[[str, httpx.AsyncClient], Awaitable[EngineClient]]


def _parse_event_stream(text: str) -> list[Any]:
    messages = []
    for line in text.splitlines():
        if line.startswith("data:"):
            data = line[len("data:"):].strip()
            if data:
                messages.append(json.loads(data))
    return messages


class JsonRpcEngineClient:
    """
    JSON-RPC engine client over HTTP.

    Speaks the session protocol served by ``GateServer``: the session id
    returned on ``initialize`` is sent on every later request, and ``close``
    ends the session with DELETE.
    """

    def __init__(self, url: str, http: httpx.AsyncClient, client_name: str = "agentgate-client"):
        self.url = url
        self.http = http
        self.client_name = client_name
        self.session_id: Optional[str] = None
        self.server_info: dict[str, Any] = {}
        self._ids = itertools.count(1)

    @classmethod
    async def open(cls, url: str, http: httpx.AsyncClient) -> "JsonRpcEngineClient":
        """Connect and run the initialize handshake."""
        client = cls(url, http)
        await client.initialize()
        return client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    async def _post(self, message: dict[str, Any]) -> httpx.Response:
        response = await self.http.post(self.url, content=json.dumps(message), headers=self._headers())
        if response.status_code == 402:
            challenge = decode_requirements_header(response.headers.get(PAYMENT_REQUIRED_HEADER))
            accepted = challenge["accepts"][0] if challenge and challenge["accepts"] else None
            amount = accepted.get("maxAmountRequired") if isinstance(accepted, dict) else None
            raise PaymentRequired(
                f"Payment required by {self.url}" + (f" ({amount} base units)" if amount else ""),
                requirements=accepted if isinstance(accepted, dict) else None,
            )
        response.raise_for_status()
        return response

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Send one JSON-RPC request and return its result.

        Raises:
            PaymentRequired: If the call was challenged and not paid
            EngineCallError: If the engine answered with an error
            httpx.HTTPError: On transport failures and other HTTP errors
        """
        message_id = next(self._ids)
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": message_id, "method": method}
        if params is not None:
            message["params"] = params
        response = await self._post(message)

        if response.headers.get("content-type", "").startswith("text/event-stream"):
            replies = _parse_event_stream(response.text)
        else:
            body = response.json()
            replies = body if isinstance(body, list) else [body]

        reply = next((r for r in replies if isinstance(r, dict) and r.get("id") == message_id), None)
        if reply is None:
            raise EngineCallError(f"No response to {method}")
        if "error" in reply:
            error = reply["error"] or {}
            raise EngineCallError(
                f"{method} failed: {error.get('message', 'unknown error')}", code=error.get("code")
            )
        return reply.get("result")

    async def notify(self, method: str, params: Optional[dict[str, Any]] = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._post(message)

    async def initialize(self) -> None:
        message_id = next(self._ids)
        response = await self._post({
            "jsonrpc": "2.0",
            "id": message_id,
            "method": "initialize",
            "params": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": "0.1.0"},
            },
        })
        self.session_id = response.headers.get(SESSION_HEADER)
        body = response.json()
        if isinstance(body, dict) and "error" in body:
            raise EngineCallError(f"initialize failed: {body['error'].get('message')}")
        self.server_info = (body.get("result") or {}).get("serverInfo", {}) if isinstance(body, dict) else {}
        await self.notify("notifications/initialized")

    async def list_capabilities(self) -> list[dict[str, Any]]:
        result = await self.request("tools/list")
        return result.get("tools", [])

    async def invoke(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})

    async def list_resources(self) -> list[dict[str, Any]]:
        result = await self.request("resources/list")
        return result.get("resources", [])

    async def read_resource(self, uri: str) -> list[dict[str, Any]]:
        result = await self.request("resources/read", {"uri": uri})
        return result.get("contents", [])

    async def close(self) -> None:
        if not self.session_id:
            return
        try:
            await self.http.delete(self.url, headers={SESSION_HEADER: self.session_id})
        except httpx.HTTPError as e:
            logger.warning(f"Failed to end session {self.session_id}: {e}")
        self.session_id = None


class ConnectedSession:
    """
    An open engine connection plus the identity it was verified against.

    Attributes:
        url: Endpoint the connection is open to
        verification: VerificationResult when connected by reference, else None
    """

    def __init__(
        self,
        client: EngineClient,
        http: httpx.AsyncClient,
        url: str,
        verification: Optional[VerificationResult] = None,
    ):
        self.client = client
        self.url = url
        self.verification = verification
        self._http = http

    async def list_tools(self) -> list[dict[str, Any]]:
        return await self.client.list_capabilities()

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return await self.client.invoke(name, arguments)

    async def list_resources(self) -> list[dict[str, Any]]:
        return await self.client.list_resources()

    async def read_resource(self, uri: str) -> list[dict[str, Any]]:
        return await self.client.read_resource(uri)

    async def get_agent_identity(self) -> Optional[dict[str, Any]]:
        """The peer's published identity document, or None if it has none."""
        try:
            contents = await self.read_resource(IDENTITY_RESOURCE_URI)
            if not contents or not contents[0].get("text"):
                return None
            return json.loads(contents[0]["text"])
        except (AgentGateError, httpx.HTTPError, ValueError) as e:
            logger.debug(f"No identity resource at {self.url}: {e}")
            return None

    async def close(self) -> None:
        try:
            await self.client.close()
        finally:
            await self._http.aclose()

    async def __aenter__(self) -> "ConnectedSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def _is_url(target: str) -> bool:
    return target.startswith("https://") or target.startswith("http://")


class AgentConnector:
    """
    Opens verified, payment-aware connections to other agents.

    Attributes:
        payment: Default payment configuration for connections
        service_name: Registration service whose endpoint is used
    """

    def __init__(
        self,
        resolver: Optional[IdentityResolver] = None,
        payment: Optional[PaymentClientConfig] = None,
        engine_client_factory: EngineClientFactory = JsonRpcEngineClient.open,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: float = 30.0,
        service_name: str = MCP_SERVICE,
    ):
        """
        Initialize the connector.

        Args:
            resolver: Identity resolver (defaults to one built from config)
            payment: Default payment configuration
            engine_client_factory: Opens the engine client over an http client
            transport: Inner httpx transport under the payment layer
            timeout_seconds: HTTP timeout for engine traffic
            service_name: Registration service kind to connect to
        """
        self.resolver = resolver or IdentityResolver()
        self.payment = payment or PaymentClientConfig(max_amount_per_request=config.max_amount_per_request)
        self.service_name = service_name
        self.timeout_seconds = timeout_seconds
        self._engine_client_factory = engine_client_factory
        self._transport = transport

    async def resolve_target(self, target: str) -> tuple[str, Optional[VerificationResult]]:
        """
        Turn a reference or URL into an endpoint URL.

        Raises:
            IdentityInvalid: If the reference does not verify
            NoEngineEndpoint: If the record declares no engine service
        """
        if _is_url(target):
            logger.warning(f"Connecting to {target} without identity verification")
            return target, None

        verification = await self.resolver.resolve(target)
        if not verification.valid:
            raise IdentityInvalid(
                f'Cannot connect to agent "{target}": {verification.error or "Identity verification failed"}',
                verification=verification,
            )

        endpoint = self.resolver.select_endpoint(verification, self.service_name)
        if not endpoint:
            raise NoEngineEndpoint(
                f'Agent "{target}" does not expose an {self.service_name} endpoint. '
                f'Check their registration\'s services array for a "{self.service_name}" service entry.'
            )
        return endpoint, verification

    async def connect(
        self,
        target: str,
        payment: Optional[PaymentClientConfig] = None,
    ) -> ConnectedSession:
        """
        Connect to an agent.

        Args:
            target: Global reference or direct endpoint URL
            payment: Payment configuration for this connection

        Returns:
            ConnectedSession

        Raises:
            IdentityInvalid: If the reference does not verify
            NoEngineEndpoint: If the record declares no engine service
            AgentConnectionError: If the engine connection cannot be opened
        """
        with get_tracer().start_as_current_span("connector.connect") as span:
            url, verification = await self.resolve_target(target)
            span.set_attribute("connector.url", url)
            span.set_attribute("connector.verified", verification is not None)

            payment = payment or self.payment
            http = httpx.AsyncClient(
                transport=payment.transport(self._transport),
                timeout=self.timeout_seconds,
            )
            try:
                client = await self._engine_client_factory(url, http)
            except Exception as e:
                await http.aclose()
                span.set_attribute("error.type", type(e).__name__)
                detail = e.message if isinstance(e, AgentGateError) else (str(e) or type(e).__name__)
                get_metrics_emitter().record_error(type(e).__name__, detail, operation="connector.connect")
                raise AgentConnectionError(f"Failed to connect: {detail}", url) from e

            logger.info(f"Connected to {url}")
            return ConnectedSession(client, http, url, verification)
