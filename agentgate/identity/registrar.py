"""
Identity registration.

Registering is a two-step write: ``register(uri)`` mints a new local id,
then ``setAgentURI`` replaces the placeholder record with one carrying the
back-reference to the minted id. The placeholder cannot carry it because
the id is only known after the mint.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import AgentGateError
from ..tracing import add_identity_span_attributes, get_tracer, traced
from .constants import IDENTITY_REGISTRY_ADDRESS, ZERO_ADDRESS
from .ledger import LedgerClient
from .models import CrossReference, RegistrationRecord, make_reference
from .registration import build_registration_uri

logger = logging.getLogger(__name__)


@dataclass
class RegisterResult:
    """Outcome of a successful registration."""
    local_id: int
    tx_hash: str
    reference: str
    uri: str


class IdentityRegistrar:
    """
    Writes identities to the registry on one chain.

    Attributes:
        chain_id: Chain the ledger client is connected to
        registry_address: Identity registry contract address
    """

    def __init__(
        self,
        ledger: LedgerClient,
        chain_id: int,
        registry_address: str = IDENTITY_REGISTRY_ADDRESS,
    ):
        self.ledger = ledger
        self.chain_id = chain_id
        self.registry_address = registry_address

    def with_backreference(self, record: RegistrationRecord, local_id: int) -> RegistrationRecord:
        """Copy of ``record`` whose first cross-reference points at ``local_id`` here."""
        ref = make_reference(self.chain_id, self.registry_address, local_id)
        entry = CrossReference(local_id=local_id, registry_ref=ref.registry_ref)
        others = [e for e in record.cross_references if not e.points_to(ref)]
        return record.model_copy(update={"cross_references": [entry, *others]})

    async def register(self, record: RegistrationRecord) -> RegisterResult:
        """
        Register a new identity.

        Args:
            record: Registration record to publish; existing cross-references
                for other chains are kept

        Returns:
            RegisterResult with the minted local id and final record URI

        Raises:
            AgentGateError: If the mint event is missing from the receipt
            LedgerRevert: If a write would revert
        """
        with get_tracer().start_as_current_span("identity.register") as span:
            placeholder = build_registration_uri(record)
            tx_hash = await self.ledger.write_field(self.registry_address, "register", [placeholder])
            receipt = await self.ledger.wait_for_receipt(tx_hash)

            mint = next(
                (
                    t for t in receipt.get("transfers", [])
                    if str(t.get("from", "")).lower() == ZERO_ADDRESS
                ),
                None,
            )
            if mint is None:
                raise AgentGateError("Could not find Transfer event in registration receipt")

            local_id = int(mint["tokenId"])
            final_uri = build_registration_uri(self.with_backreference(record, local_id))
            await self.ledger.write_field(self.registry_address, "setAgentURI", [local_id, final_uri])

            reference = str(make_reference(self.chain_id, self.registry_address, local_id))
            add_identity_span_attributes(span, reference, self.chain_id, local_id)
            logger.info(f"Registered identity {reference} (tx {tx_hash})")
            return RegisterResult(local_id=local_id, tx_hash=tx_hash, reference=reference, uri=final_uri)

    @traced("identity.set_uri")
    async def set_uri(self, local_id: int, uri: str) -> str:
        """Point an existing identity at a new registration URI. Returns the tx hash."""
        return await self.ledger.write_field(self.registry_address, "setAgentURI", [local_id, uri])

    async def get_uri(self, local_id: int) -> str:
        return await self.ledger.read_field(self.registry_address, "tokenURI", [local_id])

    async def get_metadata(self, local_id: int, key: str) -> Optional[str]:
        """
        Read an on-chain metadata entry.

        Args:
            local_id: Identity to read
            key: Metadata key

        Returns:
            The value decoded as UTF-8, or None when the key is unset
        """
        raw = await self.ledger.read_field(self.registry_address, "getMetadata", [local_id, key])
        if not raw:
            return None
        return bytes(raw).decode("utf-8")

    @traced("identity.set_metadata")
    async def set_metadata(self, local_id: int, key: str, value: str) -> str:
        """Write an on-chain metadata entry (owner only). Returns the tx hash."""
        return await self.ledger.write_field(
            self.registry_address, "setMetadata", [local_id, key, value.encode("utf-8")]
        )

    async def owner(self, local_id: int) -> str:
        return await self.ledger.read_field(self.registry_address, "ownerOf", [local_id])

    async def payment_wallet(self, local_id: int) -> Optional[str]:
        """Designated payment wallet, or None when unset."""
        wallet = await self.ledger.read_field(self.registry_address, "getAgentWallet", [local_id])
        if not wallet or wallet.lower() == ZERO_ADDRESS:
            return None
        return wallet

    async def is_registered(self, wallet: str) -> bool:
        balance = await self.ledger.read_field(self.registry_address, "balanceOf", [wallet])
        return int(balance) > 0
