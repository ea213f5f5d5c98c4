"""
HTTP front door for a payment-gated protocol engine.

Per request the router:

1. Applies CORS headers and answers preflight ``OPTIONS`` with 204
2. Serves only the protocol path (404 with a hint elsewhere)
3. Runs the payment gate on POST
4. Picks the engine connection from the ``Mcp-Session-Id`` header
5. Relays the engine response verbatim

Usage:
    from agentgate.server.router import GateServer

    server = GateServer(payment=PaymentServerConfig(pay_to="0x...", amount="10000"))

    @server.tool("get-price", "Current price for a symbol")
    async def get_price(arguments):
        return {"symbol": arguments["symbol"], "price": "1.00"}

    await server.listen(3000)
"""

import asyncio
import contextlib
import logging
from typing import Any, Callable, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..config import GateConfig, config
from ..errors import SessionNotFound
from ..identity.models import GlobalReference
from ..identity.resolver import IdentityResolver
from ..metrics import get_metrics_emitter
from ..payments.constants import PAYMENT_HEADER, PAYMENT_REQUIRED_HEADER
from ..payments.gate import PaymentGate, resource_names_from_body
from ..payments.models import PaymentServerConfig
from ..tracing import get_tracer
from .engine import (
    EngineConnection,
    EngineFactory,
    EngineRequest,
    EngineResponse,
    JsonRpcEngine,
    Resource,
    Tool,
)
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
IDENTITY_RESOURCE_URI = "agent://identity"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, MCP-Session-Id, {PAYMENT_HEADER}, {PAYMENT_REQUIRED_HEADER}",
    "Access-Control-Expose-Headers": f"MCP-Session-Id, {PAYMENT_REQUIRED_HEADER}",
}


def _relay(engine_response: EngineResponse, background: Optional[BackgroundTasks] = None) -> Response:
    if isinstance(engine_response.body, (bytes, bytearray)):
        return Response(
            content=bytes(engine_response.body),
            status_code=engine_response.status_code,
            headers=engine_response.headers,
            media_type=engine_response.media_type,
            background=background,
        )
    return StreamingResponse(
        engine_response.body,
        status_code=engine_response.status_code,
        headers=engine_response.headers,
        media_type=engine_response.media_type,
        background=background,
    )


def _bad_request(message: str, error_type: Optional[str] = None) -> JSONResponse:
    body = {"error": "Bad Request", "message": message}
    if error_type:
        body["errorType"] = error_type
    return JSONResponse(body, status_code=400)


def create_app(
    registry: SessionRegistry,
    gate: PaymentGate,
    engine_factory: EngineFactory,
    protocol_path: str = "/mcp",
    cors_enabled: bool = True,
    sweep_interval_seconds: Optional[float] = None,
) -> FastAPI:
    """
    Build the gate's FastAPI application.

    Args:
        registry: Session registry owned by the caller
        gate: Payment gate applied to POST requests
        engine_factory: Opens engine connections
        protocol_path: The one path that accepts protocol traffic
        cors_enabled: Whether to add CORS headers and answer preflight
        sweep_interval_seconds: Idle sweep period; defaults to the registry's
            idle timeout (no sweep when that is disabled)

    Returns:
        FastAPI application
    """
    interval = sweep_interval_seconds or registry.idle_timeout_seconds

    async def sweep_forever() -> None:
        while True:
            await asyncio.sleep(interval)
            closed = await registry.sweep_idle()
            if closed:
                logger.info(f"Idle sweep closed {len(closed)} session(s)")

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        if registry.idle_timeout_seconds > 0:
            sweeper = asyncio.create_task(sweep_forever())
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper
            await registry.close_all()

    app = FastAPI(
        title="agentgate",
        description="Payment-gated protocol endpoint",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def apply_cors(request: Request, call_next):
        if cors_enabled and request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        response = await call_next(request)
        if cors_enabled:
            response.headers.update(CORS_HEADERS)
        return response

    async def handle_protocol(request: Request) -> Response:
        metrics = get_metrics_emitter()
        with get_tracer().start_as_current_span("router.request") as span:
            span.set_attribute("http.method", request.method)
            body = await request.body()
            session_id = request.headers.get(SESSION_HEADER)

            payment = None
            if request.method == "POST":
                decision = gate.evaluate(
                    resource_names_from_body(body),
                    request.url.path,
                    request.headers.get(PAYMENT_HEADER),
                )
                span.set_attribute("payment.outcome", decision.outcome.value)
                if not decision.allowed:
                    return JSONResponse(
                        decision.body,
                        status_code=decision.status_code,
                        headers=decision.headers,
                    )
                payment = decision.payment
                request.state.payment = payment

            new_session_id = None
            stateless = False
            if session_id:
                try:
                    session = await registry.get(session_id)
                except SessionNotFound as e:
                    metrics.record_session_event("rejected", session_id)
                    span.set_attribute("error.type", e.error_type)
                    return _bad_request(e.message, e.error_type)
                connection: EngineConnection = session.connection
                metrics.record_session_event("reused", session_id)
            elif request.method == "POST":
                session = await registry.create(engine_factory)
                connection = session.connection
                session_id = new_session_id = session.id
            elif request.method == "GET":
                connection = await engine_factory(None)
                stateless = True
                metrics.record_session_event("stateless")
            else:
                metrics.record_session_event("rejected")
                return _bad_request("Missing MCP-Session-Id")

            span.set_attribute("session.stateless", stateless)
            if session_id:
                span.set_attribute("session.id", session_id)

            engine_request = EngineRequest(
                method=request.method,
                path=request.url.path,
                headers=dict(request.headers),
                body=body,
                session_id=session_id,
                payment=payment,
            )

            background = None
            try:
                engine_response = await connection.handle(engine_request)
            except Exception as e:
                metrics.record_error(type(e).__name__, str(e), operation="engine.handle")
                # A session minted by this request never reached the client
                if stateless or new_session_id:
                    await connection.close()
                if new_session_id:
                    await registry.remove(new_session_id, connection)
                raise
            if stateless:
                background = BackgroundTasks()
                background.add_task(connection.close)

            response = _relay(engine_response, background)
            if new_session_id:
                response.headers[SESSION_HEADER] = new_session_id
            span.set_attribute("http.status_code", response.status_code)
            return response

    app.add_api_route(protocol_path, handle_protocol, methods=["GET", "POST", "DELETE"])

    @app.api_route("/{path:path}", methods=["GET", "POST", "DELETE", "PUT", "PATCH"])
    async def not_found(path: str):
        return JSONResponse(
            {"error": "Not found", "hint": f"Protocol endpoint is at {protocol_path}"},
            status_code=404,
        )

    return app


class GateServer:
    """
    Payment-gated protocol server.

    Wires the payment gate, session registry and a protocol engine behind
    one FastAPI app, served with uvicorn.

    Attributes:
        settings: Gate configuration
        payment: Payment configuration (None disables the gate)
        identity: This server's own identity reference, if any
        registry: Live sessions
        app: The FastAPI application
    """

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        payment: Optional[PaymentServerConfig] = None,
        identity: Optional[str] = None,
        settings: Optional[GateConfig] = None,
        resolver: Optional[IdentityResolver] = None,
        name: str = "agentgate",
        version: str = "0.1.0",
    ):
        """
        Initialize the server.

        Args:
            engine_factory: Custom engine; defaults to JsonRpcEngine with the
                tools and resources registered on this server
            payment: Payment configuration; defaults to the environment
            identity: Global reference published at ``agent://identity``
            settings: Gate configuration; defaults to the environment
            resolver: Resolver used to build the identity document
            name: Server name reported on initialize
            version: Server version reported on initialize
        """
        self.settings = settings or config
        self.payment = payment if payment is not None else self.settings.payment_config()
        self.identity = str(GlobalReference.parse(identity)) if identity else None
        self.tools: dict[str, Tool] = {}
        self.resources: dict[str, Resource] = {}
        self._resolver = resolver
        self._server: Optional[uvicorn.Server] = None

        if self.identity:
            self.resources[IDENTITY_RESOURCE_URI] = Resource(
                uri=IDENTITY_RESOURCE_URI,
                name="identity",
                reader=self.identity_document,
                description="On-chain identity of this server",
            )

        self.engine_factory = engine_factory or JsonRpcEngine.factory(
            tools=self.tools,
            resources=self.resources,
            server_name=name,
            server_version=version,
        )
        self.registry = SessionRegistry(self.settings.session_idle_timeout_seconds)
        self.gate = PaymentGate(self.payment)
        self.app = create_app(
            self.registry,
            self.gate,
            self.engine_factory,
            protocol_path=self.settings.protocol_path,
            cors_enabled=self.settings.cors_enabled,
        )

    def tool(
        self,
        name: str,
        description: str = "",
        input_schema: Optional[dict[str, Any]] = None,
    ) -> Callable[[Callable], Callable]:
        """Decorator registering a tool handler (``handler(arguments)``)."""

        def decorator(handler: Callable) -> Callable:
            tool = Tool(name=name, handler=handler, description=description)
            if input_schema is not None:
                tool.input_schema = input_schema
            self.tools[name] = tool
            return handler

        return decorator

    def resource(self, uri: str, name: str, description: str = "") -> Callable[[Callable], Callable]:
        """Decorator registering a resource reader (``reader()``)."""

        def decorator(reader: Callable) -> Callable:
            self.resources[uri] = Resource(uri=uri, name=name, reader=reader, description=description)
            return reader

        return decorator

    async def identity_document(self) -> dict[str, Any]:
        """
        This server's identity reference and its registration record.

        Returns:
            ``{"globalId", ...registration}``, or ``{"globalId", "error"}`` when
            the identity cannot be resolved
        """
        if not self.identity:
            return {"error": "No identity configured"}
        if self._resolver is None:
            self._resolver = IdentityResolver()
        result = await self._resolver.resolve(self.identity)
        if result.registration is None:
            return {"globalId": self.identity, "error": result.error}
        return {"globalId": self.identity, **result.registration.to_dict()}

    async def listen(self, port: Optional[int] = None, host: str = "0.0.0.0") -> None:
        """Serve until stopped."""
        listen_port = port or self.settings.port
        logger.info(f"Starting gate server on {host}:{listen_port}{self.settings.protocol_path}")
        cfg = uvicorn.Config(self.app, host=host, port=listen_port, log_level="info")
        self._server = uvicorn.Server(cfg)
        await self._server.serve()

    async def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        await self.registry.close_all()
