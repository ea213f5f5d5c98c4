"""
x402 header codec.

Both payment headers carry base64-encoded JSON:

- ``X-PAYMENT-REQUIRED`` (server to client): ``{"version": 2, "accepts": [requirements]}``
- ``X-PAYMENT`` (client to server): ``{"payload": ..., "network": ...}``

``validate_structure`` only checks that a proof payload is complete enough
to read transfer semantics from. Signature verification and settlement
belong to the facilitator.
"""

import base64
import binascii
import json
from typing import Any, Optional

from pydantic import ValidationError

from ..errors import PaymentProofInvalid, UnrecognizedPayloadFormat
from .constants import DEFAULT_NETWORK, NETWORK_USDC, X402_VERSION
from .models import (
    DirectAuthorization,
    PaymentDetails,
    PaymentRequirements,
    PermitAuthorization,
    ProofEnvelope,
)


def encode_json_header(data: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(data, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_json_header(raw: Optional[str]) -> Optional[Any]:
    """Decode a base64 JSON header value, or None if missing or malformed."""
    if not raw:
        return None
    try:
        return json.loads(base64.b64decode(raw.strip()).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def decode_requirements_header(raw: Optional[str]) -> Optional[dict[str, Any]]:
    """
    Decode an ``X-PAYMENT-REQUIRED`` header.

    A bare requirements object (no ``accepts`` list) is wrapped so callers
    can always read ``accepts[0]``.
    """
    decoded = decode_json_header(raw)
    if not isinstance(decoded, dict):
        return None
    if not isinstance(decoded.get("accepts"), list):
        return {"version": decoded.get("version", X402_VERSION), "accepts": [decoded]}
    return decoded


class PaymentChallengeCodec:
    """
    Encodes payment challenges and decodes payment proofs.

    Attributes:
        default_network: Network assumed when a proof does not name one
        default_asset: Asset reported for direct authorizations
    """

    def __init__(self, default_network: str = DEFAULT_NETWORK, default_asset: Optional[str] = None):
        self.default_network = default_network
        self.default_asset = default_asset or NETWORK_USDC.get(default_network, NETWORK_USDC[DEFAULT_NETWORK])

    def encode_requirements(self, requirements: PaymentRequirements) -> str:
        """Build the ``X-PAYMENT-REQUIRED`` header value."""
        return encode_json_header({"version": X402_VERSION, "accepts": [requirements.to_dict()]})

    def encode_proof(self, payload: Any, network: Optional[str] = None) -> str:
        """Build an ``X-PAYMENT`` header value."""
        return encode_json_header({"payload": payload, "network": network or self.default_network})

    def decode_proof_header(self, raw: Optional[str]) -> Optional[ProofEnvelope]:
        """
        Decode an ``X-PAYMENT`` header.

        Args:
            raw: Header value (may be None)

        Returns:
            ProofEnvelope, or None if the header is missing or malformed
        """
        decoded = decode_json_header(raw)
        if not isinstance(decoded, dict):
            return None
        payload = decoded.get("payload")
        if payload is None:
            payload = decoded
        network = decoded.get("network")
        if not isinstance(network, str) or not network:
            network = self.default_network
        return ProofEnvelope(payload=payload, network=network)

    def validate_structure(self, payload: Any, network: Optional[str] = None) -> PaymentDetails:
        """
        Check a proof payload's shape and extract its transfer semantics.

        Args:
            payload: ``ProofEnvelope.payload``
            network: Network the proof was presented for

        Returns:
            PaymentDetails

        Raises:
            PaymentProofInvalid: If a known shape is missing required fields
            UnrecognizedPayloadFormat: If the payload matches no known shape
        """
        network = network or self.default_network

        match payload:
            case {"authorization": dict() as fields}:
                try:
                    auth = DirectAuthorization.model_validate(fields)
                except ValidationError as e:
                    raise PaymentProofInvalid("Invalid EIP-3009 authorization structure") from e
                return PaymentDetails(
                    from_address=auth.from_address,
                    to=auth.to,
                    amount=auth.value,
                    asset=self.default_asset,
                    network=network,
                )
            case {"permit2Authorization": dict() as fields}:
                try:
                    permit = PermitAuthorization.model_validate(fields)
                except ValidationError as e:
                    raise PaymentProofInvalid("Invalid Permit2 authorization structure") from e
                return PaymentDetails(
                    from_address=permit.from_address,
                    to=permit.witness.to,
                    amount=permit.permitted.amount,
                    asset=permit.permitted.token,
                    network=network,
                )
            case {"authorization": _} | {"permit2Authorization": _}:
                raise PaymentProofInvalid("Payment authorization must be a JSON object")
            case _:
                raise UnrecognizedPayloadFormat("Unrecognized payment payload format")
