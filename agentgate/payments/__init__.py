"""x402 payments: challenge codec, server gate and paying client transport."""

from .client import (
    LocalAccountSigner,
    PaymentBalance,
    PaymentClientConfig,
    PaymentSigner,
    PaymentTransport,
    RequirementsCheck,
    check_payment_requirements,
    decode_receipt,
    get_balance,
)
from .codec import PaymentChallengeCodec, decode_requirements_header
from .constants import DEFAULT_MAX_AMOUNT, DEFAULT_NETWORK, NETWORK_USDC
from .gate import GateDecision, GateOutcome, PaymentGate, resource_names_from_body
from .models import (
    AuthorizationRequest,
    PaymentDetails,
    PaymentRequirements,
    PaymentServerConfig,
    ProofEnvelope,
)

__all__ = [
    "AuthorizationRequest",
    "DEFAULT_MAX_AMOUNT",
    "DEFAULT_NETWORK",
    "GateDecision",
    "GateOutcome",
    "LocalAccountSigner",
    "NETWORK_USDC",
    "PaymentBalance",
    "PaymentChallengeCodec",
    "PaymentClientConfig",
    "PaymentDetails",
    "PaymentGate",
    "PaymentRequirements",
    "PaymentServerConfig",
    "PaymentSigner",
    "PaymentTransport",
    "ProofEnvelope",
    "RequirementsCheck",
    "check_payment_requirements",
    "decode_receipt",
    "decode_requirements_header",
    "get_balance",
    "resource_names_from_body",
]
