"""
Ledger access for the identity registry.

The resolver and registrar only talk to the ledger through ``LedgerClient``.
``Web3LedgerClient`` implements it over ``web3.AsyncWeb3``; tests supply an
in-memory fake.

Usage:
    from agentgate.identity.ledger import Web3LedgerClient

    ledger = Web3LedgerClient("https://mainnet.base.org")
    owner = await ledger.read_field(IDENTITY_REGISTRY_ADDRESS, "ownerOf", [2376])
"""

import logging
from typing import Any, Callable, Optional, Protocol, Sequence

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD

from ..errors import AgentGateError, LedgerRevert
from .constants import IDENTITY_REGISTRY_ABI, ZERO_ADDRESS

logger = logging.getLogger(__name__)

# Public RPCs cap the eth_getLogs block range
DEFAULT_LOG_LOOKBACK_BLOCKS = 50_000


class LedgerClient(Protocol):
    """Narrow read/write interface to one chain."""

    async def read_field(self, contract_address: str, fn: str, args: Sequence[Any] = ()) -> Any:
        """Call a view function. Raises LedgerRevert when the call reverts."""
        ...

    async def write_field(self, contract_address: str, fn: str, args: Sequence[Any] = ()) -> str:
        """Submit a transaction calling ``fn``. Returns the transaction hash."""
        ...

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """
        Wait for a transaction to be mined.

        Returns a dict with ``transactionHash``, ``status`` and ``transfers``
        (decoded registry Transfer events as ``{"from", "to", "tokenId"}``).
        """
        ...

    async def find_minted(self, contract_address: str, owner: str) -> list[int]:
        """Token ids minted to ``owner`` by the registry (may cover only recent blocks)."""
        ...


# rpc_url -> client
LedgerFactory = Callable[[str], LedgerClient]


def _normalize_arg(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return AsyncWeb3.to_checksum_address(value)
    return value


class Web3LedgerClient:
    """
    LedgerClient over a JSON-RPC endpoint.

    Attributes:
        rpc_url: JSON-RPC endpoint of the chain
        timeout_seconds: Per-request HTTP timeout
        log_lookback_blocks: Window searched for mint events
    """

    def __init__(
        self,
        rpc_url: str,
        account: Optional[Any] = None,
        timeout_seconds: float = 10.0,
        receipt_timeout_seconds: float = 120.0,
        log_lookback_blocks: int = DEFAULT_LOG_LOOKBACK_BLOCKS,
        abi: Sequence[dict[str, Any]] = IDENTITY_REGISTRY_ABI,
    ):
        """
        Initialize the ledger client.

        Args:
            rpc_url: JSON-RPC endpoint of the chain
            account: Optional eth-account LocalAccount used for write_field
            timeout_seconds: Per-request HTTP timeout
            receipt_timeout_seconds: How long wait_for_receipt polls
            log_lookback_blocks: How many recent blocks find_minted searches
            abi: Contract ABI used for every call (the identity registry by default)
        """
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.log_lookback_blocks = log_lookback_blocks
        self.abi = list(abi)
        self._account = account
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds})
        )

    def _contract(self, contract_address: str):
        return self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=self.abi,
        )

    def _function(self, contract_address: str, fn: str, args: Sequence[Any]):
        contract = self._contract(contract_address)
        return contract.get_function_by_name(fn)(*[_normalize_arg(a) for a in args])

    async def read_field(self, contract_address: str, fn: str, args: Sequence[Any] = ()) -> Any:
        try:
            return await self._function(contract_address, fn, args).call()
        except ContractLogicError as e:
            raise LedgerRevert(f"{fn} reverted: {e}") from e

    async def write_field(self, contract_address: str, fn: str, args: Sequence[Any] = ()) -> str:
        if self._account is None:
            raise AgentGateError(
                "Write operations require a signing account. "
                "Pass account=Account.from_key(...) to Web3LedgerClient."
            )
        function = self._function(contract_address, fn, args)
        try:
            tx = await function.build_transaction({
                "from": self._account.address,
                "nonce": await self._w3.eth.get_transaction_count(self._account.address),
            })
        except ContractLogicError as e:
            raise LedgerRevert(f"{fn} would revert: {e}") from e
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info(f"Submitted {fn} transaction to {self.rpc_url}")
        return "0x" + bytes(tx_hash).hex()

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        receipt = await self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout_seconds
        )
        events = self._contract(receipt["to"]).events.Transfer().process_receipt(
            receipt, errors=DISCARD
        )
        return {
            "transactionHash": tx_hash,
            "status": receipt["status"],
            "transfers": [
                {
                    "from": event["args"]["from"],
                    "to": event["args"]["to"],
                    "tokenId": int(event["args"]["tokenId"]),
                }
                for event in events
            ],
        }

    async def find_minted(self, contract_address: str, owner: str) -> list[int]:
        latest = await self._w3.eth.block_number
        events = await self._contract(contract_address).events.Transfer().get_logs(
            argument_filters={"from": ZERO_ADDRESS, "to": _normalize_arg(owner)},
            from_block=max(0, latest - self.log_lookback_blocks),
            to_block=latest,
        )
        return [int(event["args"]["tokenId"]) for event in events]
