"""
Payment data model.

``PaymentRequirements`` and ``PaymentDetails`` are produced by this package
and serialized to the x402 wire names. The two proof payload shapes are
pydantic models because they are parsed from client-supplied JSON.
"""

import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from .constants import (
    DEFAULT_DESCRIPTION,
    DEFAULT_NETWORK,
    DEFAULT_TIMEOUT_SECONDS,
    NETWORK_USDC,
    PAYMENT_SCHEME,
)

NonEmpty = Annotated[str, StringConstraints(min_length=1)]


@dataclass
class PaymentServerConfig:
    """
    Price and recipient a server charges for guarded calls.

    Attributes:
        pay_to: Address receiving payments
        amount: Required amount in token base units (USDC has 6 decimals)
        network: Network in CAIP-2 format
        asset: Token address (defaults to USDC on ``network``)
        description: Shown to payers in the requirements
        max_timeout_seconds: How long a proof stays acceptable
        free_tools: Resource names that bypass the gate
    """
    pay_to: str
    amount: str
    network: str = DEFAULT_NETWORK
    asset: Optional[str] = None
    description: str = DEFAULT_DESCRIPTION
    max_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    free_tools: tuple[str, ...] = ("ping",)

    def __post_init__(self):
        if self.asset is None:
            self.asset = NETWORK_USDC.get(self.network, NETWORK_USDC[DEFAULT_NETWORK])
        self.free_tools = tuple(self.free_tools)


@dataclass(frozen=True)
class PaymentRequirements:
    """One accepted way to pay, as advertised in a 402 challenge."""
    network: str
    max_amount_required: str
    resource: str
    pay_to: str
    asset: str
    max_timeout_seconds: int
    scheme: str = PAYMENT_SCHEME
    description: Optional[str] = None

    @classmethod
    def for_resource(cls, config: PaymentServerConfig, resource: str) -> "PaymentRequirements":
        return cls(
            network=config.network,
            max_amount_required=config.amount,
            resource=resource,
            pay_to=config.pay_to,
            asset=config.asset or NETWORK_USDC[DEFAULT_NETWORK],
            max_timeout_seconds=config.max_timeout_seconds,
            description=config.description,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the x402 wire representation."""
        data: dict[str, Any] = {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
        }
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class PaymentDetails:
    """Transfer semantics extracted from a structurally valid proof."""
    from_address: Optional[str]
    to: str
    amount: str
    asset: str
    network: str
    tx_hash: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to,
            "amount": self.amount,
            "asset": self.asset,
            "network": self.network,
            "txHash": self.tx_hash,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ProofEnvelope:
    """Decoded ``X-PAYMENT`` header."""
    payload: Any
    network: str


class DirectAuthorization(BaseModel):
    """EIP-3009 ``transferWithAuthorization`` fields."""
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    from_address: NonEmpty = Field(alias="from")
    to: NonEmpty
    value: NonEmpty
    nonce: NonEmpty


class PermittedToken(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    amount: NonEmpty
    token: NonEmpty


class PermitWitness(BaseModel):
    model_config = ConfigDict(extra="allow")

    to: NonEmpty


class PermitAuthorization(BaseModel):
    """Permit2 witness-transfer fields."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    from_address: Optional[str] = Field(default=None, alias="from")
    permitted: PermittedToken
    witness: PermitWitness


@dataclass(frozen=True)
class AuthorizationRequest:
    """What a signer is asked to authorize in answer to a challenge."""
    network: str
    chain_id: int
    pay_to: str
    amount: str
    asset: str
    max_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    scheme: str = PAYMENT_SCHEME
    resource: Optional[str] = None

    @classmethod
    def from_requirements(cls, accepted: dict[str, Any]) -> "AuthorizationRequest":
        """
        Build a request from one ``accepts`` entry of a 402 challenge.

        Raises:
            ValueError: If the entry lacks a usable network, recipient or amount
        """
        network = str(accepted.get("network") or DEFAULT_NETWORK)
        namespace, _, chain = network.partition(":")
        if namespace != "eip155" or not chain.isdigit():
            raise ValueError(f"Unsupported network: {network}")
        pay_to = accepted.get("payTo")
        amount = accepted.get("maxAmountRequired") or accepted.get("amount")
        if not pay_to or not amount:
            raise ValueError("Payment requirements missing payTo or amount")
        return cls(
            network=network,
            chain_id=int(chain),
            pay_to=str(pay_to),
            amount=str(amount),
            asset=str(accepted.get("asset") or NETWORK_USDC.get(network, NETWORK_USDC[DEFAULT_NETWORK])),
            max_timeout_seconds=int(accepted.get("maxTimeoutSeconds") or DEFAULT_TIMEOUT_SECONDS),
            scheme=str(accepted.get("scheme") or PAYMENT_SCHEME),
            resource=accepted.get("resource"),
        )
