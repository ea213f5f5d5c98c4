"""Tests for client-side x402 handling.

The transport must:
1. Return non-402 responses untouched
2. Pay a 402 at most once, and only within the configured ceiling
3. Surface the second response whatever its status
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from eth_account import Account
from web3 import AsyncWeb3

from agentgate.payments.client import (
    LocalAccountSigner,
    PaymentBalance,
    PaymentClientConfig,
    PaymentTransport,
    check_payment_requirements,
    decode_receipt,
    get_balance,
)
from agentgate.payments.codec import PaymentChallengeCodec, encode_json_header
from agentgate.payments.constants import (
    PAYMENT_HEADER,
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    USDC_BASE,
)
from agentgate.payments.models import AuthorizationRequest, PaymentRequirements
from tests.conftest import PAY_TO

URL = "https://agent.example.com/mcp"


def challenge_header(amount: str, network: str = "eip155:8453") -> str:
    requirements = PaymentRequirements(
        network=network,
        max_amount_required=amount,
        resource="/mcp",
        pay_to=PAY_TO,
        asset=USDC_BASE,
        max_timeout_seconds=300,
    )
    return PaymentChallengeCodec().encode_requirements(requirements)


class PaidServer:
    """MockTransport handler charging ``amount`` per request."""

    def __init__(self, amount: str = "10000", always_402: bool = False):
        self.amount = amount
        self.always_402 = always_402
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.always_402 or PAYMENT_HEADER not in request.headers:
            return httpx.Response(
                402,
                headers={PAYMENT_REQUIRED_HEADER: challenge_header(self.amount)},
                json={"error": "Payment Required"},
            )
        return httpx.Response(200, json={"ok": True, "body": request.content.decode()})


async def post(transport: httpx.AsyncBaseTransport, body: str = '{"method": "tools/call"}') -> httpx.Response:
    async with httpx.AsyncClient(transport=transport) as client:
        return await client.post(URL, content=body)


class TestPaymentTransport:
    """Tests for PaymentTransport."""

    @pytest.mark.asyncio
    async def test_non_402_passes_through(self, fake_signer):
        inner = httpx.MockTransport(lambda request: httpx.Response(200, json={"free": True}))

        response = await post(PaymentTransport(fake_signer, transport=inner))

        assert response.status_code == 200
        assert fake_signer.requests == []

    @pytest.mark.asyncio
    async def test_pays_once_and_retries(self, fake_signer):
        server = PaidServer(amount="10000")

        response = await post(
            PaymentTransport(fake_signer, max_amount="100000", transport=httpx.MockTransport(server))
        )

        assert response.status_code == 200
        assert len(server.requests) == 2
        assert response.json()["body"] == '{"method": "tools/call"}'

        envelope = PaymentChallengeCodec().decode_proof_header(server.requests[1].headers[PAYMENT_HEADER])
        assert envelope.network == "eip155:8453"
        assert envelope.payload["authorization"]["value"] == "10000"
        assert envelope.payload["authorization"]["to"] == PAY_TO

        request = fake_signer.requests[0]
        assert request.chain_id == 8453
        assert request.asset == USDC_BASE
        assert request.resource == "/mcp"

    @pytest.mark.asyncio
    async def test_above_ceiling_is_not_paid(self, fake_signer):
        server = PaidServer(amount="500000")

        response = await post(
            PaymentTransport(fake_signer, max_amount="100000", transport=httpx.MockTransport(server))
        )

        assert response.status_code == 402
        assert len(server.requests) == 1
        assert fake_signer.requests == []

    @pytest.mark.asyncio
    async def test_amount_equal_to_ceiling_is_paid(self, fake_signer):
        server = PaidServer(amount="100000")

        response = await post(
            PaymentTransport(fake_signer, max_amount="100000", transport=httpx.MockTransport(server))
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_second_402_is_surfaced(self, fake_signer):
        server = PaidServer(always_402=True)

        response = await post(PaymentTransport(fake_signer, transport=httpx.MockTransport(server)))

        assert response.status_code == 402
        assert len(server.requests) == 2
        assert len(fake_signer.requests) == 1

    @pytest.mark.asyncio
    async def test_without_signer_402_is_surfaced(self):
        server = PaidServer()

        response = await post(PaymentTransport(None, transport=httpx.MockTransport(server)))

        assert response.status_code == 402
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_402_without_requirements(self, fake_signer):
        inner = httpx.MockTransport(lambda request: httpx.Response(402, json={}))

        response = await post(PaymentTransport(fake_signer, transport=inner))

        assert response.status_code == 402
        assert fake_signer.requests == []

    @pytest.mark.asyncio
    async def test_unsupported_network_is_not_paid(self, fake_signer):
        header = challenge_header("10", network="solana:mainnet")
        inner = httpx.MockTransport(
            lambda request: httpx.Response(402, headers={PAYMENT_REQUIRED_HEADER: header})
        )

        response = await post(PaymentTransport(fake_signer, transport=inner))

        assert response.status_code == 402
        assert fake_signer.requests == []

    def test_client_config_builds_transport(self, fake_signer):
        transport = PaymentClientConfig(signer=fake_signer, max_amount_per_request="42").transport()

        assert isinstance(transport, PaymentTransport)
        assert transport.signer is fake_signer
        assert transport.max_amount == "42"


class TestLocalAccountSigner:
    """Tests for LocalAccountSigner."""

    @pytest.fixture
    def account(self):
        account = MagicMock()
        account.address = "0x1111111111111111111111111111111111111111"
        signed = MagicMock()
        signed.signature.hex.return_value = "ab" * 65
        account.sign_typed_data.return_value = signed
        return account

    @pytest.fixture
    def auth_request(self) -> AuthorizationRequest:
        return AuthorizationRequest(
            network="eip155:8453",
            chain_id=8453,
            pay_to=PAY_TO,
            amount="10000",
            asset=USDC_BASE,
            max_timeout_seconds=300,
        )

    def test_typed_data(self, account, auth_request):
        typed = LocalAccountSigner(account).typed_data(auth_request, "0x" + "00" * 32, 1_000_000)

        assert typed["primaryType"] == "TransferWithAuthorization"
        assert typed["domain"] == {
            "name": "USD Coin",
            "version": "2",
            "chainId": 8453,
            "verifyingContract": USDC_BASE,
        }
        assert typed["message"]["value"] == 10000
        assert typed["message"]["validAfter"] == 1_000_000 - 60
        assert typed["message"]["validBefore"] == 1_000_000 + 300

    def test_typed_data_unknown_token(self, account, auth_request):
        request = AuthorizationRequest(
            network="eip155:84532",
            chain_id=84532,
            pay_to=PAY_TO,
            amount="1",
            asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        )

        typed = LocalAccountSigner(account).typed_data(request, "0x" + "00" * 32, 0)

        assert typed["domain"]["name"] == "USDC"

    @pytest.mark.asyncio
    async def test_sign(self, account, auth_request):
        payload = await LocalAccountSigner(account).sign(auth_request)

        assert payload["signature"] == "0x" + "ab" * 65
        assert payload["authorization"]["from"] == account.address
        assert payload["authorization"]["to"] == PAY_TO
        assert payload["authorization"]["value"] == "10000"
        assert payload["authorization"]["nonce"].startswith("0x")
        assert len(payload["authorization"]["nonce"]) == 66
        account.sign_typed_data.assert_called_once()
        assert "full_message" in account.sign_typed_data.call_args.kwargs

    @pytest.mark.asyncio
    async def test_signed_payload_passes_gate_structure_check(self, account, auth_request):
        payload = await LocalAccountSigner(account).sign(auth_request)

        payment = PaymentChallengeCodec().validate_structure(payload, "eip155:8453")

        assert payment.amount == "10000"

    def test_from_key(self):
        key = "0x" + "11" * 32

        signer = LocalAccountSigner.from_key(key, valid_after_skew_seconds=5)

        assert signer.address == Account.from_key(key).address
        assert signer.valid_after_skew_seconds == 5


class TestRequirementsHelpers:
    """Tests for check_payment_requirements and decode_receipt."""

    @pytest.mark.asyncio
    async def test_check_gated_endpoint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "HEAD"
            return httpx.Response(402, headers={PAYMENT_REQUIRED_HEADER: challenge_header("777")})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            check = await check_payment_requirements(URL, client=client)

        assert check.requires_payment is True
        assert check.amount == "777"
        assert check.pay_to == PAY_TO
        assert check.network == "eip155:8453"

    @pytest.mark.asyncio
    async def test_check_free_endpoint(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            check = await check_payment_requirements(URL, client=client)

        assert check.requires_payment is False

    def test_decode_receipt(self):
        header = encode_json_header({
            "sender": "0xaaa",
            "recipient": PAY_TO,
            "amount": "10000",
            "asset": USDC_BASE,
            "network": "eip155:8453",
            "txHash": "0xfeed",
        })
        response = httpx.Response(200, headers={PAYMENT_RESPONSE_HEADER: header})

        receipt = decode_receipt(response)

        assert receipt.from_address == "0xaaa"
        assert receipt.to == PAY_TO
        assert receipt.tx_hash == "0xfeed"

    def test_decode_receipt_missing(self):
        assert decode_receipt(httpx.Response(200)) is None


class TestGetBalance:
    """Tests for the USDC balance lookup."""

    @pytest.fixture
    def web3(self):
        web3 = MagicMock()
        functions = web3.eth.contract.return_value.functions
        functions.balanceOf.return_value.call = AsyncMock(return_value=1_500_000)
        functions.decimals.return_value.call = AsyncMock(return_value=6)
        functions.symbol.return_value.call = AsyncMock(return_value="USDC")
        return web3

    @pytest.mark.asyncio
    async def test_reads_balance_decimals_and_symbol(self, web3):
        balance = await get_balance(PAY_TO, network="eip155:8453", web3=web3)

        assert balance == PaymentBalance(amount=1_500_000, formatted="1.5", symbol="USDC", decimals=6)
        assert web3.eth.contract.call_args.kwargs["address"] == USDC_BASE
        web3.eth.contract.return_value.functions.balanceOf.assert_called_once_with(
            AsyncWeb3.to_checksum_address(PAY_TO)
        )

    @pytest.mark.asyncio
    async def test_whole_and_zero_amounts(self, web3):
        functions = web3.eth.contract.return_value.functions

        functions.balanceOf.return_value.call = AsyncMock(return_value=2_000_000)
        assert (await get_balance(PAY_TO, web3=web3)).formatted == "2"

        functions.balanceOf.return_value.call = AsyncMock(return_value=0)
        assert (await get_balance(PAY_TO, web3=web3)).formatted == "0"

        functions.balanceOf.return_value.call = AsyncMock(return_value=1)
        assert (await get_balance(PAY_TO, web3=web3)).formatted == "0.000001"

    @pytest.mark.asyncio
    async def test_unknown_network(self, web3):
        with pytest.raises(ValueError, match="No USDC address configured"):
            await get_balance(PAY_TO, network="eip155:84532", web3=web3)

        web3.eth.contract.assert_not_called()
