"""
Client-side x402 handling.

``PaymentTransport`` wraps any httpx async transport. A 402 answer is
turned into a signed ``X-PAYMENT`` proof and the request is re-sent exactly
once; the second response is returned whatever its status. Without a signer,
or when the price is above the configured ceiling, the 402 is returned
untouched.

Usage:
    from agentgate.payments.client import LocalAccountSigner, PaymentTransport

    transport = PaymentTransport(signer=LocalAccountSigner.from_key(key), max_amount="100000")
    async with httpx.AsyncClient(transport=transport) as client:
        response = await client.post(url, json=message)

    balance = await get_balance(wallet_address)
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx
from eth_account import Account
from web3 import AsyncWeb3

from ..metrics import get_metrics_emitter
from ..tracing import add_payment_span_attributes, get_tracer, traced
from .codec import PaymentChallengeCodec, decode_json_header, decode_requirements_header
from .constants import (
    DEFAULT_MAX_AMOUNT,
    DEFAULT_NETWORK,
    DEFAULT_TOKEN_INFO,
    ERC20_ABI,
    NETWORK_RPC,
    NETWORK_USDC,
    PAYMENT_HEADER,
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    TOKEN_INFO,
)
from .models import AuthorizationRequest, PaymentDetails

logger = logging.getLogger(__name__)


class PaymentSigner(Protocol):
    """Produces proof payloads for payment challenges."""

    @property
    def address(self) -> str:
        ...

    async def sign(self, request: AuthorizationRequest) -> dict[str, Any]:
        """Return a proof payload (``{"signature", "authorization"}`` or a Permit2 shape)."""
        ...


class LocalAccountSigner:
    """
    EIP-3009 signer backed by an eth-account ``LocalAccount``.

    The signature itself is produced by eth-account; this class assembles
    the ``TransferWithAuthorization`` typed data and the proof payload.
    """

    def __init__(self, account: Any, valid_after_skew_seconds: int = 60):
        self._account = account
        self.valid_after_skew_seconds = valid_after_skew_seconds

    @classmethod
    def from_key(cls, private_key: str, **kwargs: Any) -> "LocalAccountSigner":
        """Build a signer from a hex private key."""
        return cls(Account.from_key(private_key), **kwargs)

    @property
    def address(self) -> str:
        return self._account.address

    def typed_data(self, request: AuthorizationRequest, nonce: str, now: int) -> dict[str, Any]:
        token_info = TOKEN_INFO.get(request.chain_id, {}).get(request.asset.lower(), DEFAULT_TOKEN_INFO)
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "TransferWithAuthorization": [
                    {"name": "from", "type": "address"},
                    {"name": "to", "type": "address"},
                    {"name": "value", "type": "uint256"},
                    {"name": "validAfter", "type": "uint256"},
                    {"name": "validBefore", "type": "uint256"},
                    {"name": "nonce", "type": "bytes32"},
                ],
            },
            "primaryType": "TransferWithAuthorization",
            "domain": {
                "name": token_info["name"],
                "version": token_info["version"],
                "chainId": request.chain_id,
                "verifyingContract": request.asset,
            },
            "message": {
                "from": self.address,
                "to": request.pay_to,
                "value": int(request.amount),
                "validAfter": now - self.valid_after_skew_seconds,
                "validBefore": now + request.max_timeout_seconds,
                "nonce": nonce,
            },
        }

    async def sign(self, request: AuthorizationRequest) -> dict[str, Any]:
        nonce = f"0x{secrets.token_bytes(32).hex()}"
        now = int(time.time())
        typed_data = self.typed_data(request, nonce, now)

        signed = self._account.sign_typed_data(full_message=typed_data)
        signature = signed.signature.hex()
        if not signature.startswith("0x"):
            signature = f"0x{signature}"

        message = typed_data["message"]
        return {
            "signature": signature,
            "authorization": {
                "from": self.address,
                "to": request.pay_to,
                "value": request.amount,
                "validAfter": str(message["validAfter"]),
                "validBefore": str(message["validBefore"]),
                "nonce": nonce,
            },
        }


def _within_ceiling(amount: Any, max_amount: str) -> bool:
    try:
        return int(amount) <= int(max_amount)
    except (TypeError, ValueError):
        return False


class PaymentTransport(httpx.AsyncBaseTransport):
    """
    httpx transport that answers 402 challenges once.

    Attributes:
        max_amount: Highest amount (token base units) paid per request
    """

    def __init__(
        self,
        signer: Optional[PaymentSigner] = None,
        max_amount: str = DEFAULT_MAX_AMOUNT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        codec: Optional[PaymentChallengeCodec] = None,
    ):
        """
        Initialize the transport.

        Args:
            signer: Produces proofs; without one, 402s are returned as-is
            max_amount: Per-request ceiling in token base units
            transport: Inner transport (defaults to httpx.AsyncHTTPTransport)
            codec: Header codec
        """
        self.signer = signer
        self.max_amount = max_amount
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._codec = codec or PaymentChallengeCodec()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        response = await self._transport.handle_async_request(request)
        if response.status_code != 402 or self.signer is None:
            return response

        metrics = get_metrics_emitter()
        with get_tracer().start_as_current_span("payment.retry") as span:
            challenge = decode_requirements_header(response.headers.get(PAYMENT_REQUIRED_HEADER))
            accepts = challenge.get("accepts") if challenge else None
            if not accepts or not isinstance(accepts[0], dict):
                span.set_attribute("error.type", "missing_requirements")
                logger.warning(f"402 from {request.url} carried no payment requirements")
                return response

            accepted = accepts[0]
            amount = accepted.get("maxAmountRequired") or accepted.get("amount")
            network = accepted.get("network") or DEFAULT_NETWORK
            add_payment_span_attributes(
                span,
                amount=str(amount) if amount is not None else None,
                network=network,
                recipient=accepted.get("payTo"),
                resource=accepted.get("resource"),
            )

            if not _within_ceiling(amount, self.max_amount):
                add_payment_span_attributes(span, status="declined")
                metrics.record_payment_retry("declined", network=network, amount=str(amount))
                logger.warning(
                    f"Not paying {amount} for {request.url}: above ceiling {self.max_amount}"
                )
                return response

            try:
                auth_request = AuthorizationRequest.from_requirements(accepted)
            except ValueError as e:
                span.set_attribute("error.type", "unsupported_requirements")
                logger.warning(f"Cannot pay {request.url}: {e}")
                return response

            payload = await self.signer.sign(auth_request)
            await response.aclose()

            headers = request.headers.copy()
            headers[PAYMENT_HEADER] = self._codec.encode_proof(payload, auth_request.network)
            retry = httpx.Request(
                request.method,
                request.url,
                headers=headers,
                content=request.content,
                extensions=request.extensions,
            )

            logger.info(f"Paying {auth_request.amount} on {auth_request.network} for {request.url}")
            retried = await self._transport.handle_async_request(retry)

            span.set_attribute("http.status_code", retried.status_code)
            outcome = "success" if retried.status_code < 400 else "failure"
            add_payment_span_attributes(span, status=outcome)
            metrics.record_payment_retry(
                outcome,
                network=auth_request.network,
                amount=auth_request.amount,
                status_code=retried.status_code,
            )
            return retried

    async def aclose(self) -> None:
        await self._transport.aclose()


@dataclass
class PaymentClientConfig:
    """
    How a client pays for challenged calls.

    Attributes:
        signer: Produces proofs (None surfaces every 402)
        max_amount_per_request: Ceiling in token base units
    """
    signer: Optional[PaymentSigner] = None
    max_amount_per_request: str = DEFAULT_MAX_AMOUNT

    def transport(self, inner: Optional[httpx.AsyncBaseTransport] = None) -> PaymentTransport:
        return PaymentTransport(
            signer=self.signer,
            max_amount=self.max_amount_per_request,
            transport=inner,
        )


def decode_receipt(response: httpx.Response) -> Optional[PaymentDetails]:
    """
    Read the settlement receipt a server attached to a paid response.

    Returns:
        PaymentDetails, or None when the response carries no readable receipt
    """
    decoded = decode_json_header(
        response.headers.get(PAYMENT_RESPONSE_HEADER) or response.headers.get("PAYMENT-RESPONSE")
    )
    if not isinstance(decoded, dict):
        return None

    def first(*keys: str) -> Any:
        for key in keys:
            if decoded.get(key) is not None:
                return decoded[key]
        return None

    return PaymentDetails(
        from_address=first("sender", "from"),
        to=first("recipient", "to", "payTo"),
        amount=first("amount", "value"),
        asset=first("asset", "token"),
        network=first("network", "chain") or DEFAULT_NETWORK,
        tx_hash=first("txHash", "hash", "transaction"),
        timestamp=first("timestamp") or time.time(),
    )


@dataclass
class RequirementsCheck:
    """Whether an endpoint is payment-gated, and its first accepted payment."""
    requires_payment: bool
    amount: Optional[str] = None
    asset: Optional[str] = None
    network: Optional[str] = None
    pay_to: Optional[str] = None


async def check_payment_requirements(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
) -> RequirementsCheck:
    """
    Ask an endpoint for its price without paying (HEAD request).

    Raises:
        httpx.RequestError: If the endpoint cannot be reached
    """
    owns_client = client is None
    http = client or httpx.AsyncClient()
    try:
        response = await http.head(url, timeout=timeout)
    finally:
        if owns_client:
            await http.aclose()

    if response.status_code != 402:
        return RequirementsCheck(requires_payment=False)

    challenge = decode_requirements_header(response.headers.get(PAYMENT_REQUIRED_HEADER))
    if not challenge or not challenge["accepts"] or not isinstance(challenge["accepts"][0], dict):
        return RequirementsCheck(requires_payment=True)

    accepted = challenge["accepts"][0]
    return RequirementsCheck(
        requires_payment=True,
        amount=accepted.get("maxAmountRequired"),
        asset=accepted.get("asset"),
        network=accepted.get("network"),
        pay_to=accepted.get("payTo"),
    )


@dataclass
class PaymentBalance:
    """Stablecoin balance of one wallet on one network."""
    amount: int
    formatted: str
    symbol: str
    decimals: int


def _format_units(amount: int, decimals: int) -> str:
    """Base units to a decimal string without trailing zeros (1500000, 6 -> "1.5")."""
    whole, fraction = divmod(amount, 10**decimals)
    digits = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{whole}.{digits}" if digits else str(whole)


@traced("payments.get_balance")
async def get_balance(
    address: str,
    network: str = DEFAULT_NETWORK,
    rpc_url: Optional[str] = None,
    web3: Optional[AsyncWeb3] = None,
) -> PaymentBalance:
    """
    USDC balance of ``address`` on ``network``.

    Args:
        address: Wallet to look up
        network: CAIP-2 network id
        rpc_url: JSON-RPC endpoint; defaults to the network's public RPC
        web3: Optional preconfigured AsyncWeb3 instance

    Raises:
        ValueError: If no USDC contract is known for ``network``
    """
    asset = NETWORK_USDC.get(network)
    if asset is None:
        raise ValueError(
            f'No USDC address configured for network "{network}". '
            f"Supported networks: {', '.join(NETWORK_USDC)}"
        )

    if web3 is None:
        web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url or NETWORK_RPC[network]))
    token = web3.eth.contract(address=AsyncWeb3.to_checksum_address(asset), abi=ERC20_ABI)

    raw, decimals, symbol = await asyncio.gather(
        token.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call(),
        token.functions.decimals().call(),
        token.functions.symbol().call(),
    )
    return PaymentBalance(
        amount=int(raw),
        formatted=_format_units(int(raw), int(decimals)),
        symbol=symbol,
        decimals=int(decimals),
    )
