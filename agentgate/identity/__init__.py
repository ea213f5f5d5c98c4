"""On-chain identity: references, registration records and verification."""

from .constants import A2A_SERVICE, IDENTITY_REGISTRY_ADDRESS, MCP_SERVICE, SUPPORTED_CHAINS
from .discovery import probe_endpoint, scan_registrations
from .ledger import LedgerClient, Web3LedgerClient
from .models import (
    CrossReference,
    EndpointProbe,
    GlobalReference,
    RegistrationRecord,
    RegistrationScan,
    ServiceEndpoint,
    VerificationResult,
    make_reference,
)
from .registrar import IdentityRegistrar, RegisterResult
from .registration import build_registration_uri, fetch_registration_file
from .resolver import IdentityResolver

__all__ = [
    # Constants
    "A2A_SERVICE",
    "IDENTITY_REGISTRY_ADDRESS",
    "MCP_SERVICE",
    "SUPPORTED_CHAINS",
    # Models
    "CrossReference",
    "EndpointProbe",
    "GlobalReference",
    "RegistrationRecord",
    "RegistrationScan",
    "ServiceEndpoint",
    "VerificationResult",
    "make_reference",
    # Ledger
    "LedgerClient",
    "Web3LedgerClient",
    # Resolution and registration
    "IdentityResolver",
    "IdentityRegistrar",
    "RegisterResult",
    "build_registration_uri",
    "fetch_registration_file",
    # Discovery
    "probe_endpoint",
    "scan_registrations",
]
