"""
Test mocks for the agentgate test suite.

This module provides in-memory stand-ins for the ledger, the protocol
engine and the payment signer, enabling local testing without an RPC
endpoint or a running agent.

Available Mocks:
- FakeLedger: LedgerClient over a dict of identities
- FakeEngine / FakeEngineFactory: echoing EngineConnection
- FakeSigner: PaymentSigner with a fixed payload

Usage:
    from tests.mocks import FakeLedger

    ledger = FakeLedger()
    ledger.add(7, owner="0xabc...", uri="data:application/json;base64,...")
"""

from .engine_mock import FakeEngine, FakeEngineFactory, FakeSigner
from .ledger_mock import FakeIdentity, FakeLedger, ledger_factory

__all__ = [
    "FakeEngine",
    "FakeEngineFactory",
    "FakeIdentity",
    "FakeLedger",
    "FakeSigner",
    "ledger_factory",
]
