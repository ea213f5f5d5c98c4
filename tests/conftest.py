"""
Pytest configuration and fixtures for agentgate tests.

This module provides shared fixtures for testing identity resolution,
the payment gate and the gate server without an RPC endpoint or a
deployed agent.

Usage:
    # In your test file, fixtures are automatically available

    @pytest.mark.asyncio
    async def test_something(resolver, fake_ledger, registration_uri):
        fake_ledger.add(7, owner=OWNER, uri=registration_uri(7))
        result = await resolver.resolve(reference(7))
        assert result.valid
"""

import os
from typing import Any, Callable, Optional

import pytest

from agentgate.identity.constants import IDENTITY_REGISTRY_ADDRESS, MCP_SERVICE
from agentgate.identity.models import make_reference
from agentgate.identity.registration import build_registration_uri
from agentgate.identity.resolver import IdentityResolver
from agentgate.payments.models import PaymentServerConfig
from tests.mocks import FakeEngineFactory, FakeLedger, FakeSigner


# ============================================================================
# Test Constants
# ============================================================================

CHAIN_ID = 8453
RPC_URL = "https://rpc.test.example"
OWNER = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"
PAYMENT_WALLET = "0x2222222222222222222222222222222222222222"
PAY_TO = "0x209693Bc6afc0C5328bA36FaF03C514EF312287C"
ENDPOINT_URL = "https://agent.example.com/mcp"


def reference(local_id: int, chain_id: int = CHAIN_ID) -> str:
    return str(make_reference(chain_id, IDENTITY_REGISTRY_ADDRESS, local_id))


def registration_data(
    local_id: Optional[int] = None,
    chain_id: int = CHAIN_ID,
    endpoint: str = ENDPOINT_URL,
    **extra: Any,
) -> dict[str, Any]:
    """Registration file dict, with a back-reference when ``local_id`` is given."""
    data: dict[str, Any] = {
        "type": "https://eips.ethereum.org/EIPS/eip-8004#registration-v1",
        "name": "Price Oracle",
        "description": "Quotes token prices",
        "services": [{"name": MCP_SERVICE, "endpoint": endpoint, "version": "2025-03-26"}],
        "x402Support": True,
        "active": True,
        "registrations": [],
    }
    if local_id is not None:
        data["registrations"].append({
            "agentId": local_id,
            "agentRegistry": f"eip155:{chain_id}:{IDENTITY_REGISTRY_ADDRESS}",
        })
    data.update(extra)
    return data


# ============================================================================
# Identity Fixtures
# ============================================================================

@pytest.fixture
def fake_ledger() -> FakeLedger:
    """Empty in-memory registry."""
    return FakeLedger()


@pytest.fixture
def resolver(fake_ledger: FakeLedger) -> IdentityResolver:
    """
    Resolver whose every chain is served by ``fake_ledger``.

    Returns:
        IdentityResolver with an RPC override for CHAIN_ID
    """
    return IdentityResolver(
        ledger_factory=lambda rpc_url: fake_ledger,
        rpc_overrides={CHAIN_ID: RPC_URL},
    )


@pytest.fixture
def registration_uri() -> Callable[..., str]:
    """Builds an inline registration URI for ``registration_data`` arguments."""

    def build(local_id: Optional[int] = None, **kwargs: Any) -> str:
        return build_registration_uri(registration_data(local_id, **kwargs))

    return build


@pytest.fixture
def registered_ledger(fake_ledger: FakeLedger, registration_uri) -> FakeLedger:
    """Registry holding identity #7 with a valid back-reference and wallet."""
    fake_ledger.add(7, owner=OWNER, uri=registration_uri(7), wallet=PAYMENT_WALLET)
    return fake_ledger


# ============================================================================
# Payment Fixtures
# ============================================================================

@pytest.fixture
def payment_config() -> PaymentServerConfig:
    """Server payment configuration charging 0.01 USDC on Base."""
    return PaymentServerConfig(pay_to=PAY_TO, amount="10000", network="eip155:8453")


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def valid_payment_payload() -> dict:
    """EIP-3009 proof payload matching ``payment_config``."""
    return {
        "signature": "0x" + "ab" * 65,
        "authorization": {
            "from": "0x1111111111111111111111111111111111111111",
            "to": PAY_TO,
            "value": "10000",
            "validAfter": "0",
            "validBefore": "9999999999",
            "nonce": "0x" + "00" * 32,
        },
    }


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


# ============================================================================
# Environment-based Fixtures
# ============================================================================

@pytest.fixture
def live_reference() -> str:
    """
    Get a live identity reference from environment.

    Raises:
        pytest.skip: If AGENT_GLOBAL_ID is not set
    """
    value = os.environ.get("AGENT_GLOBAL_ID")
    if not value:
        pytest.skip("AGENT_GLOBAL_ID not set - skipping integration tests")
    return value


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires live RPC / endpoints)",
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration", default=False):
        return

    skip_integration = pytest.mark.skip(
        reason="Integration tests skipped. Use --run-integration to run."
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires live RPC / endpoints)",
    )
