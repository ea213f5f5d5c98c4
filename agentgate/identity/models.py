"""
Identity data model.

``GlobalReference`` and the result types are plain immutable dataclasses;
the registration record and its parts are pydantic models because they are
parsed from untrusted JSON fetched off-chain.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import MalformedReference
from .constants import DEFAULT_NAMESPACE, REGISTRATION_TYPE

# "eip155:8453:0x8004...#2376", with "/" accepted in place of "#"
_REFERENCE_PATTERN = re.compile(
    r"^(?P<namespace>[-a-z0-9]{3,8}):(?P<chain_id>\d+):"
    r"(?P<registry>0x[0-9a-fA-F]{40})[#/](?P<local_id>\d+)$"
)


@dataclass(frozen=True)
class GlobalReference:
    """Chain-qualified, registry-qualified pointer to an on-ledger identity."""
    namespace: str
    chain_id: int
    registry_address: str
    local_id: int

    @classmethod
    def parse(cls, value: str) -> "GlobalReference":
        """
        Parse a reference string.

        Args:
            value: ``namespace:chainId:registryAddress#localId`` (or ``/localId``)

        Returns:
            Parsed GlobalReference

        Raises:
            MalformedReference: If the string does not match the pattern
        """
        match = _REFERENCE_PATTERN.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise MalformedReference(
                f'Invalid agent global ID format: "{value}". '
                f'Expected "eip155:{{chainId}}:{{registry}}#{{agentId}}"'
            )
        return cls(
            namespace=match.group("namespace"),
            chain_id=int(match.group("chain_id")),
            registry_address=match.group("registry"),
            local_id=int(match.group("local_id")),
        )

    @property
    def registry_ref(self) -> str:
        """``namespace:chainId:registry`` prefix used in cross-references."""
        return f"{self.namespace}:{self.chain_id}:{self.registry_address}"

    def __str__(self) -> str:
        return f"{self.registry_ref}#{self.local_id}"


class ServiceEndpoint(BaseModel):
    """A service declared in a registration record."""
    model_config = ConfigDict(extra="allow")

    name: str
    endpoint: str
    version: Optional[str] = None
    skills: Optional[list[str]] = None
    domains: Optional[list[str]] = None

    def matches(self, service_name: str) -> bool:
        return self.name.upper() == service_name.upper()


class CrossReference(BaseModel):
    """A registration record's pointer to a ledger entry that hosts it."""
    model_config = ConfigDict(populate_by_name=True)

    local_id: int = Field(alias="agentId")
    registry_ref: str = Field(alias="agentRegistry")

    def points_to(self, reference: GlobalReference) -> bool:
        return (
            self.local_id == reference.local_id
            and self.registry_ref.lower() == reference.registry_ref.lower()
        )


class RegistrationRecord(BaseModel):
    """Off-chain JSON document describing an identity's services."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = REGISTRATION_TYPE
    name: str
    description: str = ""
    image: Optional[str] = None
    services: list[ServiceEndpoint] = Field(default_factory=list)
    supports_payment: bool = Field(default=False, alias="x402Support")
    active: bool = True
    cross_references: list[CrossReference] = Field(default_factory=list, alias="registrations")
    supported_trust: Optional[list[str]] = Field(default=None, alias="supportedTrust")

    def has_backreference(self, reference: GlobalReference) -> bool:
        return any(entry.points_to(reference) for entry in self.cross_references)

    def find_service(self, service_name: str) -> Optional[ServiceEndpoint]:
        for service in self.services:
            if service.matches(service_name):
                return service
        return None

    def to_dict(self) -> dict[str, Any]:
        """Wire form using the registration file's field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one identity verification call."""
    valid: bool
    reference: str
    owner: Optional[str] = None
    payment_wallet: Optional[str] = None
    registration: Optional[RegistrationRecord] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "valid": self.valid,
            "reference": self.reference,
            "owner": self.owner,
            "paymentWallet": self.payment_wallet,
            "registration": self.registration.to_dict() if self.registration else None,
            "error": self.error,
            "errorType": self.error_type,
        }


@dataclass
class RegistrationScan:
    """Registrations held by one wallet on one network."""
    chain_id: int
    chain_name: str
    count: int = 0
    references: list[str] = field(default_factory=list)
    error: Optional[str] = None
    # Set when the count is known but the mint log search failed
    references_error: Optional[str] = None

    @property
    def reachable(self) -> bool:
        return self.error is None


@dataclass
class EndpointProbe:
    """Result of probing a declared service endpoint."""
    url: str
    reachable: bool = False
    status_code: int = 0
    payment_required: bool = False
    max_amount_required: Optional[str] = None
    network: Optional[str] = None
    error: Optional[str] = None


def make_reference(chain_id: int, registry_address: str, local_id: int) -> GlobalReference:
    """Build a reference in the default namespace."""
    return GlobalReference(DEFAULT_NAMESPACE, chain_id, registry_address, local_id)
