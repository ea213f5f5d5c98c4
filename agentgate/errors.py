"""
Error taxonomy for agentgate.

Identity verification failures are normally reported through
``VerificationResult.error_type`` rather than raised; the classes below give
those failures stable names and are raised where a caller must stop
(malformed input, connector failures, structural payment checks).
"""

from typing import Any, Optional


class AgentGateError(Exception):
    """Base class for all agentgate errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def error_type(self) -> str:
        """Taxonomy name of this error."""
        return type(self).__name__


class MalformedReference(AgentGateError):
    """Reference string does not match ``namespace:chainId:registry#localId``."""


class UnsupportedChain(AgentGateError):
    """No ledger endpoint is configured for the requested chain."""

    def __init__(self, chain_id: int, message: Optional[str] = None):
        self.chain_id = chain_id
        super().__init__(
            message
            or f"No RPC URL available for chain {chain_id}. "
            f"Add it to SUPPORTED_CHAINS, set RPC_URL_{chain_id}, or pass rpc_url."
        )


class IdentityNotFound(AgentGateError):
    """The ledger reports no identity for the local id."""


class RegistrationUnreachable(AgentGateError):
    """The registration record could not be fetched or parsed."""


class BackreferenceMissing(AgentGateError):
    """The registration record does not point back to the identity that hosts it."""


class NoEngineEndpoint(AgentGateError):
    """The registration record declares no protocol-engine service."""


class IdentityInvalid(AgentGateError):
    """Connector refused to connect because verification failed."""

    def __init__(self, message: str, verification: Any = None):
        self.verification = verification
        super().__init__(message)


class PaymentRequired(AgentGateError):
    """A guarded request carried no payment proof, or the client would not pay."""

    def __init__(self, message: str, requirements: Optional[dict[str, Any]] = None):
        self.requirements = requirements
        super().__init__(message)


class PaymentProofInvalid(AgentGateError):
    """A payment proof is structurally incomplete."""


class UnrecognizedPayloadFormat(PaymentProofInvalid):
    """A payment proof matches none of the known payload shapes."""


class SessionNotFound(AgentGateError):
    """A request named a session the registry does not hold."""


class AgentConnectionError(AgentGateError):
    """The connector could not open an engine connection to the endpoint."""

    def __init__(self, message: str, url: str):
        self.url = url
        super().__init__(f"{message} (endpoint: {url})")


class LedgerRevert(AgentGateError):
    """A ledger contract read reverted."""


class EngineCallError(AgentGateError):
    """The protocol engine answered a call with an error."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)
