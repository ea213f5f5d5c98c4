"""Tests for identity references and registration records."""

import pytest

from agentgate.errors import MalformedReference
from agentgate.identity.constants import IDENTITY_REGISTRY_ADDRESS
from agentgate.identity.models import (
    GlobalReference,
    RegistrationRecord,
    VerificationResult,
    make_reference,
)
from tests.conftest import registration_data


class TestGlobalReference:
    """Tests for parsing and formatting global references."""

    def test_parse_hash_form(self):
        ref = GlobalReference.parse(f"eip155:8453:{IDENTITY_REGISTRY_ADDRESS}#2376")

        assert ref.namespace == "eip155"
        assert ref.chain_id == 8453
        assert ref.registry_address == IDENTITY_REGISTRY_ADDRESS
        assert ref.local_id == 2376

    def test_parse_slash_form(self):
        ref = GlobalReference.parse(f"eip155:1:{IDENTITY_REGISTRY_ADDRESS}/5")

        assert ref.local_id == 5
        assert str(ref) == f"eip155:1:{IDENTITY_REGISTRY_ADDRESS}#5"

    def test_format_then_parse_is_identity(self):
        ref = make_reference(42161, IDENTITY_REGISTRY_ADDRESS, 9)

        assert GlobalReference.parse(str(ref)) == ref

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "eip155:8453#1",
            f"eip155:base:{IDENTITY_REGISTRY_ADDRESS}#1",
            "eip155:8453:0x1234#1",
            f"eip155:8453:{IDENTITY_REGISTRY_ADDRESS}#abc",
            f"eip155:8453:{IDENTITY_REGISTRY_ADDRESS}",
        ],
    )
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(MalformedReference) as exc_info:
            GlobalReference.parse(value)

        assert "Invalid agent global ID format" in exc_info.value.message
        assert exc_info.value.error_type == "MalformedReference"

    def test_registry_ref(self):
        ref = make_reference(8453, IDENTITY_REGISTRY_ADDRESS, 1)

        assert ref.registry_ref == f"eip155:8453:{IDENTITY_REGISTRY_ADDRESS}"


class TestRegistrationRecord:
    """Tests for RegistrationRecord parsing."""

    def test_wire_aliases(self):
        record = RegistrationRecord.model_validate(registration_data(7))

        assert record.supports_payment is True
        assert len(record.cross_references) == 1
        assert record.cross_references[0].local_id == 7

    def test_backreference_is_case_insensitive(self):
        data = registration_data()
        data["registrations"] = [
            {"agentId": 7, "agentRegistry": f"eip155:8453:{IDENTITY_REGISTRY_ADDRESS.lower()}"}
        ]
        record = RegistrationRecord.model_validate(data)

        assert record.has_backreference(make_reference(8453, IDENTITY_REGISTRY_ADDRESS, 7))
        assert not record.has_backreference(make_reference(8453, IDENTITY_REGISTRY_ADDRESS, 8))
        assert not record.has_backreference(make_reference(1, IDENTITY_REGISTRY_ADDRESS, 7))

    def test_find_service_ignores_case(self):
        record = RegistrationRecord.model_validate(registration_data(7))

        assert record.find_service("mcp").endpoint == "https://agent.example.com/mcp"
        assert record.find_service("A2A") is None

    def test_to_dict_round_trips_extra_fields(self):
        record = RegistrationRecord.model_validate(registration_data(7, homepage="https://x.example"))
        data = record.to_dict()

        assert data["x402Support"] is True
        assert data["registrations"][0]["agentId"] == 7
        assert data["homepage"] == "https://x.example"


class TestVerificationResult:
    """Tests for VerificationResult serialization."""

    def test_to_dict_failure(self):
        result = VerificationResult(
            valid=False,
            reference="eip155:1:0x0#1",
            error="nope",
            error_type="IdentityNotFound",
        )

        assert result.to_dict() == {
            "valid": False,
            "reference": "eip155:1:0x0#1",
            "owner": None,
            "paymentWallet": None,
            "registration": None,
            "error": "nope",
            "errorType": "IdentityNotFound",
        }
