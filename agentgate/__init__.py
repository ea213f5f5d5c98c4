"""agentgate - verified, payment-gated connections between AI agents."""

from .config import GateConfig, config
from .connector import AgentConnector, ConnectedSession, JsonRpcEngineClient
from .errors import (
    AgentConnectionError,
    AgentGateError,
    IdentityInvalid,
    NoEngineEndpoint,
    PaymentRequired,
)
from .identity import GlobalReference, IdentityRegistrar, IdentityResolver, VerificationResult
from .metrics import MetricsEmitter, get_metrics_emitter, init_metrics
from .payments import (
    LocalAccountSigner,
    PaymentClientConfig,
    PaymentGate,
    PaymentServerConfig,
    PaymentTransport,
)
from .server import GateServer, SessionRegistry
from .tracing import init_tracing

__all__ = [
    # Configuration
    "GateConfig",
    "config",
    # Client side
    "AgentConnector",
    "ConnectedSession",
    "JsonRpcEngineClient",
    "LocalAccountSigner",
    "PaymentClientConfig",
    "PaymentTransport",
    # Server side
    "GateServer",
    "PaymentGate",
    "PaymentServerConfig",
    "SessionRegistry",
    # Identity
    "GlobalReference",
    "IdentityRegistrar",
    "IdentityResolver",
    "VerificationResult",
    # Errors
    "AgentConnectionError",
    "AgentGateError",
    "IdentityInvalid",
    "NoEngineEndpoint",
    "PaymentRequired",
    # Observability
    "MetricsEmitter",
    "get_metrics_emitter",
    "init_metrics",
    "init_tracing",
]
