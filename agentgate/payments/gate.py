"""
Server-side payment gate.

Each guarded request ends in one of three outcomes:

- ALLOW: free resource, gate disabled, or a structurally valid proof
- CHALLENGE: no proof presented; 402 with ``X-PAYMENT-REQUIRED``
- REJECT: a proof was presented but failed decoding or validation; 402
  with an error body

Usage:
    from agentgate.payments.gate import PaymentGate

    gate = PaymentGate(PaymentServerConfig(pay_to="0x...", amount="10000"))
    decision = gate.evaluate(["get-price"], "/mcp", request.headers.get("X-PAYMENT"))
    if decision.outcome is not GateOutcome.ALLOW:
        return JSONResponse(decision.body, decision.status_code, decision.headers)
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from ..errors import PaymentProofInvalid, PaymentRequired
from ..metrics import get_metrics_emitter
from ..tracing import add_payment_span_attributes, get_tracer
from .codec import PaymentChallengeCodec
from .constants import PAYMENT_REQUIRED_HEADER
from .models import PaymentDetails, PaymentRequirements, PaymentServerConfig

logger = logging.getLogger(__name__)


class GateOutcome(str, Enum):
    ALLOW = "allow"
    CHALLENGE = "challenge"
    REJECT = "reject"


@dataclass
class GateDecision:
    """Result of evaluating one request."""
    outcome: GateOutcome
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[dict[str, Any]] = None
    payment: Optional[PaymentDetails] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is GateOutcome.ALLOW


def _name_from_message(message: Any) -> Optional[str]:
    if not isinstance(message, dict):
        return None
    method = message.get("method")
    if method == "tools/call":
        params = message.get("params")
        name = params.get("name") if isinstance(params, dict) else None
        return name if isinstance(name, str) else None
    return method if isinstance(method, str) else None


def resource_names_from_body(body: bytes) -> list[str]:
    """
    Names the gate checks against the free list for a JSON-RPC body.

    ``tools/call`` contributes the tool name, other requests their method.
    An empty list means the body could not be read, which the gate treats
    as guarded.
    """
    try:
        message = json.loads(body)
    except (ValueError, TypeError):
        return []

    messages = message if isinstance(message, list) else [message]
    names = [_name_from_message(m) for m in messages]
    if not names or any(name is None for name in names):
        return []
    return names


class PaymentGate:
    """
    Decides whether a request may reach the protocol engine.

    Attributes:
        config: Payment configuration, or None to disable the gate
        codec: Header codec
    """

    def __init__(
        self,
        config: Optional[PaymentServerConfig],
        codec: Optional[PaymentChallengeCodec] = None,
    ):
        self.config = config
        if codec is None and config is not None:
            codec = PaymentChallengeCodec(config.network, config.asset)
        self.codec = codec or PaymentChallengeCodec()

    @property
    def enabled(self) -> bool:
        return self.config is not None

    def is_free(self, resource_names: Iterable[str]) -> bool:
        """True when every name is on the free list (and there is at least one)."""
        names = list(resource_names)
        if self.config is None:
            return True
        return bool(names) and all(name in self.config.free_tools for name in names)

    def requirements_for(self, resource: str) -> PaymentRequirements:
        if self.config is None:
            raise PaymentRequired("Payment gate is not configured")
        return PaymentRequirements.for_resource(self.config, resource)

    def evaluate(
        self,
        resource_names: Iterable[str],
        resource: str,
        proof_header: Optional[str],
    ) -> GateDecision:
        """
        Evaluate one inbound request.

        Args:
            resource_names: Tool/method names the request targets
            resource: Resource path advertised in a challenge
            proof_header: Raw ``X-PAYMENT`` header value

        Returns:
            GateDecision
        """
        names = list(resource_names)
        if self.config is None or self.is_free(names):
            return GateDecision(outcome=GateOutcome.ALLOW)

        metrics = get_metrics_emitter()
        with get_tracer().start_as_current_span("payment.gate") as span:
            add_payment_span_attributes(
                span,
                amount=self.config.amount,
                network=self.config.network,
                recipient=self.config.pay_to,
                resource=resource,
            )

            if not proof_header:
                decision = self._challenge(resource)
                add_payment_span_attributes(span, status="challenged")
                metrics.record_payment_gate("challenge", network=self.config.network)
                logger.info(f"Payment required for {', '.join(names) or resource}")
                return decision

            envelope = self.codec.decode_proof_header(proof_header)
            if envelope is None:
                return self._reject(
                    span, PaymentProofInvalid("Invalid X-PAYMENT header format")
                )

            try:
                payment = self.codec.validate_structure(envelope.payload, envelope.network)
            except PaymentProofInvalid as e:
                return self._reject(span, e)

            add_payment_span_attributes(span, status="accepted")
            metrics.record_payment_gate("allow", network=envelope.network)
            return GateDecision(outcome=GateOutcome.ALLOW, payment=payment)

    def _challenge(self, resource: str) -> GateDecision:
        requirements = self.requirements_for(resource)
        return GateDecision(
            outcome=GateOutcome.CHALLENGE,
            status_code=402,
            headers={PAYMENT_REQUIRED_HEADER: self.codec.encode_requirements(requirements)},
            body={
                "error": "Payment Required",
                "message": requirements.description,
                "amount": f"{requirements.max_amount_required} USDC base units",
                "network": requirements.network,
            },
        )

    def _reject(self, span, error: PaymentProofInvalid) -> GateDecision:
        span.set_attribute("error.type", error.error_type)
        add_payment_span_attributes(span, status="rejected")
        get_metrics_emitter().record_payment_gate(
            "reject", network=self.config.network if self.config else None, error=error.message
        )
        logger.warning(f"Rejected payment proof: {error.message}")
        return GateDecision(
            outcome=GateOutcome.REJECT,
            status_code=402,
            body={
                "error": "Invalid Payment",
                "message": error.message,
                "errorType": error.error_type,
            },
        )
