"""Tests for the x402 header codec and proof structure checks."""

import base64
import json

import pytest

from agentgate.errors import PaymentProofInvalid, UnrecognizedPayloadFormat
from agentgate.payments.codec import (
    PaymentChallengeCodec,
    decode_json_header,
    decode_requirements_header,
    encode_json_header,
)
from agentgate.payments.constants import USDC_BASE, USDC_POLYGON
from agentgate.payments.models import PaymentRequirements
from tests.conftest import PAY_TO


def b64(data) -> str:
    return base64.b64encode(json.dumps(data).encode()).decode()


@pytest.fixture
def codec() -> PaymentChallengeCodec:
    return PaymentChallengeCodec()


class TestHeaderDecoding:
    """Tests for base64 JSON header decoding."""

    def test_decode_missing(self):
        assert decode_json_header(None) is None
        assert decode_json_header("") is None

    def test_decode_malformed(self):
        assert decode_json_header("%%%") is None
        assert decode_json_header(base64.b64encode(b"{oops").decode()) is None

    def test_encode_decode(self):
        assert decode_json_header(encode_json_header({"a": 1})) == {"a": 1}

    def test_requirements_header_wraps_bare_object(self):
        decoded = decode_requirements_header(b64({"network": "eip155:8453", "maxAmountRequired": "5"}))

        assert decoded["accepts"][0]["maxAmountRequired"] == "5"

    def test_requirements_header_non_object(self):
        assert decode_requirements_header(b64([1, 2])) is None


class TestRequirementsEncoding:
    """Tests for the X-PAYMENT-REQUIRED header."""

    def test_encode_requirements(self, codec):
        requirements = PaymentRequirements(
            network="eip155:8453",
            max_amount_required="10000",
            resource="/mcp",
            pay_to=PAY_TO,
            asset=USDC_BASE,
            max_timeout_seconds=300,
            description="AI agent service payment",
        )

        decoded = decode_requirements_header(codec.encode_requirements(requirements))

        assert decoded["version"] == 2
        assert decoded["accepts"] == [{
            "scheme": "exact",
            "network": "eip155:8453",
            "maxAmountRequired": "10000",
            "resource": "/mcp",
            "payTo": PAY_TO,
            "maxTimeoutSeconds": 300,
            "asset": USDC_BASE,
            "description": "AI agent service payment",
        }]


class TestProofDecoding:
    """Tests for the X-PAYMENT header."""

    def test_envelope(self, codec):
        envelope = codec.decode_proof_header(codec.encode_proof({"x": 1}, "eip155:137"))

        assert envelope.payload == {"x": 1}
        assert envelope.network == "eip155:137"

    def test_bare_payload_uses_default_network(self, codec):
        envelope = codec.decode_proof_header(b64({"authorization": {}}))

        assert envelope.payload == {"authorization": {}}
        assert envelope.network == "eip155:8453"

    def test_malformed(self, codec):
        assert codec.decode_proof_header("not base64 json") is None
        assert codec.decode_proof_header(b64("a string")) is None


class TestValidateStructure:
    """Tests for proof payload shape checks."""

    def test_direct_authorization(self, codec, valid_payment_payload):
        payment = codec.validate_structure(valid_payment_payload, "eip155:8453")

        assert payment.from_address == "0x1111111111111111111111111111111111111111"
        assert payment.to == PAY_TO
        assert payment.amount == "10000"
        assert payment.asset == USDC_BASE
        assert payment.network == "eip155:8453"

    def test_direct_authorization_numeric_value(self, codec, valid_payment_payload):
        valid_payment_payload["authorization"]["value"] = 10000

        assert codec.validate_structure(valid_payment_payload).amount == "10000"

    def test_network_asset_default(self):
        codec = PaymentChallengeCodec(default_network="eip155:137")

        assert codec.default_asset == USDC_POLYGON

    @pytest.mark.parametrize("missing", ["from", "to", "value", "nonce"])
    def test_direct_authorization_missing_field(self, codec, valid_payment_payload, missing):
        del valid_payment_payload["authorization"][missing]

        with pytest.raises(PaymentProofInvalid) as exc_info:
            codec.validate_structure(valid_payment_payload)

        assert exc_info.value.message == "Invalid EIP-3009 authorization structure"
        assert not isinstance(exc_info.value, UnrecognizedPayloadFormat)

    def test_direct_authorization_empty_field(self, codec, valid_payment_payload):
        valid_payment_payload["authorization"]["nonce"] = ""

        with pytest.raises(PaymentProofInvalid):
            codec.validate_structure(valid_payment_payload)

    def test_permit2_authorization(self, codec):
        payload = {
            "signature": "0x" + "cd" * 65,
            "permit2Authorization": {
                "from": "0x3333333333333333333333333333333333333333",
                "permitted": {"token": USDC_BASE, "amount": "2500"},
                "witness": {"to": PAY_TO},
                "nonce": "1",
                "deadline": "9999999999",
            },
        }

        payment = codec.validate_structure(payload, "eip155:8453")

        assert payment.from_address == "0x3333333333333333333333333333333333333333"
        assert payment.to == PAY_TO
        assert payment.amount == "2500"
        assert payment.asset == USDC_BASE

    def test_permit2_missing_witness(self, codec):
        payload = {"permit2Authorization": {"permitted": {"token": USDC_BASE, "amount": "1"}}}

        with pytest.raises(PaymentProofInvalid) as exc_info:
            codec.validate_structure(payload)

        assert exc_info.value.message == "Invalid Permit2 authorization structure"

    def test_authorization_not_an_object(self, codec):
        with pytest.raises(PaymentProofInvalid) as exc_info:
            codec.validate_structure({"authorization": "0xdeadbeef"})

        assert not isinstance(exc_info.value, UnrecognizedPayloadFormat)

    @pytest.mark.parametrize("payload", [{}, {"signature": "0x00"}, "proof", None, [1]])
    def test_unrecognized(self, codec, payload):
        with pytest.raises(UnrecognizedPayloadFormat) as exc_info:
            codec.validate_structure(payload)

        assert exc_info.value.error_type == "UnrecognizedPayloadFormat"
