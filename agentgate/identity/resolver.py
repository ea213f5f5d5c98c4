"""
Identity resolution against the on-chain registry.

The resolver turns a global reference into a ``VerificationResult``:

1. Parse the reference
2. Pick a ledger endpoint for the chain
3. Read owner, payment wallet and registration URI
4. Fetch the registration record
5. Check the record's back-reference to the identity that hosts it

Failures never raise out of ``resolve``; they come back as ``valid=False``
results carrying ``error`` and ``error_type``.

Usage:
    from agentgate.identity.resolver import IdentityResolver

    resolver = IdentityResolver()
    result = await resolver.resolve("eip155:8453:0x8004A169FB4a3325136EB29fA0ceB6D2e539a432#2376")
    if result.valid:
        url = resolver.select_endpoint(result, "MCP")
"""

import logging
import time
from typing import Optional, Union

from ..config import config, rpc_override
from ..errors import (
    AgentGateError,
    BackreferenceMissing,
    IdentityNotFound,
    LedgerRevert,
    MalformedReference,
    RegistrationUnreachable,
    UnsupportedChain,
)
from ..metrics import get_metrics_emitter
from ..tracing import add_identity_span_attributes, get_tracer
from .constants import MCP_SERVICE, SUPPORTED_CHAINS, ZERO_ADDRESS
from .ledger import LedgerClient, LedgerFactory, Web3LedgerClient
from .models import GlobalReference, RegistrationRecord, VerificationResult
from .registration import fetch_registration_file

logger = logging.getLogger(__name__)


def _failure(
    reference: str,
    error: AgentGateError,
    owner: Optional[str] = None,
    payment_wallet: Optional[str] = None,
    registration: Optional[RegistrationRecord] = None,
) -> VerificationResult:
    return VerificationResult(
        valid=False,
        reference=reference,
        owner=owner,
        payment_wallet=payment_wallet,
        registration=registration,
        error=error.message,
        error_type=error.error_type,
    )


class IdentityResolver:
    """
    Resolves global references to verified registration records.

    Attributes:
        ipfs_gateway: Gateway prefix for ``ipfs://`` registration URIs
        fetch_timeout: Registration fetch timeout in seconds
    """

    def __init__(
        self,
        ledger_factory: LedgerFactory = Web3LedgerClient,
        ipfs_gateway: Optional[str] = None,
        fetch_timeout: Optional[float] = None,
        rpc_overrides: Optional[dict[int, str]] = None,
    ):
        """
        Initialize the resolver.

        Args:
            ledger_factory: Builds a LedgerClient for an RPC URL
            ipfs_gateway: Gateway prefix for ``ipfs://`` URIs
            fetch_timeout: Registration fetch timeout in seconds
            rpc_overrides: Chain id to RPC URL, checked before the environment
        """
        self.ipfs_gateway = ipfs_gateway or config.ipfs_gateway
        self.fetch_timeout = fetch_timeout if fetch_timeout is not None else config.fetch_timeout_seconds
        self._ledger_factory = ledger_factory
        self._rpc_overrides = dict(rpc_overrides or {})
        self._ledgers: dict[str, LedgerClient] = {}

    def rpc_url_for(self, chain_id: int, rpc_url: Optional[str] = None) -> str:
        """
        Pick the ledger endpoint for a chain.

        Raises:
            UnsupportedChain: If no endpoint is known for the chain
        """
        url = (
            rpc_url
            or self._rpc_overrides.get(chain_id)
            or rpc_override(chain_id)
            or SUPPORTED_CHAINS.get(chain_id, {}).get("rpc")
        )
        if not url:
            raise UnsupportedChain(chain_id)
        return url

    def ledger_for(self, rpc_url: str) -> LedgerClient:
        if rpc_url not in self._ledgers:
            self._ledgers[rpc_url] = self._ledger_factory(rpc_url)
        return self._ledgers[rpc_url]

    async def resolve(
        self,
        reference: Union[str, GlobalReference],
        rpc_url: Optional[str] = None,
    ) -> VerificationResult:
        """
        Resolve and verify an identity.

        Args:
            reference: Reference string or parsed GlobalReference
            rpc_url: Explicit ledger endpoint, overriding chain lookup

        Returns:
            VerificationResult (never raises)
        """
        tracer = get_tracer()
        metrics = get_metrics_emitter()
        start_time = time.time()

        with tracer.start_as_current_span("identity.resolve") as span:
            if isinstance(reference, GlobalReference):
                ref = reference
            else:
                try:
                    ref = GlobalReference.parse(reference)
                except MalformedReference as e:
                    span.set_attribute("error.type", e.error_type)
                    logger.warning(f"Rejected reference: {e.message}")
                    return _failure(str(reference), e)

            add_identity_span_attributes(span, str(ref), ref.chain_id, ref.local_id)
            result = await self._resolve(ref, rpc_url)

            latency_ms = (time.time() - start_time) * 1000
            span.set_attribute("identity.valid", result.valid)
            if result.error_type:
                span.set_attribute("error.type", result.error_type)

            metrics.record_identity_verification(
                valid=result.valid,
                latency_ms=latency_ms,
                chain_id=ref.chain_id,
                error_type=result.error_type,
            )

            if result.valid:
                logger.info(f"Verified identity {result.reference}")
            else:
                logger.warning(f"Identity {result.reference} failed verification: {result.error}")
            return result

    async def _resolve(self, ref: GlobalReference, rpc_url: Optional[str]) -> VerificationResult:
        canonical = str(ref)

        try:
            ledger = self.ledger_for(self.rpc_url_for(ref.chain_id, rpc_url))
        except UnsupportedChain as e:
            return _failure(canonical, e)

        try:
            owner = await ledger.read_field(ref.registry_address, "ownerOf", [ref.local_id])
        except LedgerRevert:
            return _failure(
                canonical,
                IdentityNotFound(f"Agent #{ref.local_id} does not exist on chain {ref.chain_id}"),
            )
        except Exception as e:
            return _failure(
                canonical,
                UnsupportedChain(ref.chain_id, f"Ledger read failed on chain {ref.chain_id}: {e}"),
            )

        try:
            wallet = await ledger.read_field(ref.registry_address, "getAgentWallet", [ref.local_id])
            uri = await ledger.read_field(ref.registry_address, "tokenURI", [ref.local_id])
        except LedgerRevert as e:
            return _failure(canonical, IdentityNotFound(e.message), owner=owner)
        except Exception as e:
            return _failure(
                canonical,
                UnsupportedChain(ref.chain_id, f"Ledger read failed on chain {ref.chain_id}: {e}"),
                owner=owner,
            )

        payment_wallet = None if not wallet or wallet.lower() == ZERO_ADDRESS else wallet

        try:
            registration = await fetch_registration_file(
                uri,
                ipfs_gateway=self.ipfs_gateway,
                timeout=self.fetch_timeout,
            )
        except RegistrationUnreachable as e:
            return _failure(
                canonical,
                RegistrationUnreachable(f"Failed to fetch registration file: {e.message}"),
                owner=owner,
                payment_wallet=payment_wallet,
            )

        if not registration.has_backreference(ref):
            expected = ref.registry_ref.lower()
            return _failure(
                canonical,
                BackreferenceMissing(
                    "Registration file does not contain a back-reference to this chain's registry. "
                    f'Expected registrations entry: {{ agentId: {ref.local_id}, agentRegistry: "{expected}" }}'
                ),
                owner=owner,
                payment_wallet=payment_wallet,
                registration=registration,
            )

        return VerificationResult(
            valid=True,
            reference=canonical,
            owner=owner,
            payment_wallet=payment_wallet,
            registration=registration,
        )

    @staticmethod
    def select_endpoint(result: VerificationResult, service_name: str = MCP_SERVICE) -> Optional[str]:
        """Endpoint of the named service in a valid result, or None."""
        if not result.valid or result.registration is None:
            return None
        service = result.registration.find_service(service_name)
        return service.endpoint if service else None

    async def get_endpoint(
        self,
        reference: Union[str, GlobalReference],
        service_name: str = MCP_SERVICE,
        rpc_url: Optional[str] = None,
    ) -> Optional[str]:
        """
        Resolve a reference and return one declared service endpoint.

        Returns:
            The endpoint URL, or None if resolution failed or no service of
            that name is declared
        """
        result = await self.resolve(reference, rpc_url=rpc_url)
        return self.select_endpoint(result, service_name)
