"""
Cross-network discovery helpers.

``scan_registrations`` looks for identities held by one wallet on every
configured network at once. Each network is queried independently; a
network that does not answer yields a ``RegistrationScan`` with ``error``
set instead of aborting the scan. When only the mint log search fails the
count is kept and ``references_error`` says why the ids are missing.

``probe_endpoint`` checks whether a declared service endpoint is reachable
and whether it answers with a payment challenge.
"""

import asyncio
import json
import logging
from typing import Iterable, Optional

import httpx

from ..config import config, rpc_override
from ..metrics import get_metrics_emitter
from ..payments.codec import decode_requirements_header
from ..payments.constants import PAYMENT_REQUIRED_HEADER
from ..tracing import get_tracer
from .constants import IDENTITY_REGISTRY_ADDRESS, SUPPORTED_CHAINS
from .ledger import LedgerFactory, Web3LedgerClient
from .models import EndpointProbe, RegistrationScan, make_reference

logger = logging.getLogger(__name__)

PING_REQUEST = {"jsonrpc": "2.0", "id": 1, "method": "ping"}


async def _scan_network(
    chain_id: int,
    wallet: str,
    ledger_factory: LedgerFactory,
    registry_address: str,
) -> RegistrationScan:
    chain = SUPPORTED_CHAINS.get(chain_id, {})
    rpc_url = rpc_override(chain_id) or chain.get("rpc")
    name = chain.get("name", f"Chain {chain_id}")
    if not rpc_url:
        return RegistrationScan(chain_id=chain_id, chain_name=name, error="No RPC URL configured")

    ledger = ledger_factory(rpc_url)
    count = int(await ledger.read_field(registry_address, "balanceOf", [wallet]))
    scan = RegistrationScan(chain_id=chain_id, chain_name=name, count=count)
    if count > 0:
        try:
            local_ids = await ledger.find_minted(registry_address, wallet)
        except Exception as e:
            logger.warning(f"Mint log search failed on {name} ({chain_id}), keeping count {count}: {e}")
            scan.references_error = str(e) or type(e).__name__
            return scan
        scan.references = [
            str(make_reference(chain_id, registry_address, local_id)) for local_id in local_ids
        ]
    return scan


async def scan_registrations(
    wallet: str,
    chain_ids: Optional[Iterable[int]] = None,
    ledger_factory: LedgerFactory = Web3LedgerClient,
    registry_address: str = IDENTITY_REGISTRY_ADDRESS,
) -> list[RegistrationScan]:
    """
    Find registrations held by a wallet across networks.

    Args:
        wallet: Owner address to look up
        chain_ids: Networks to scan (defaults to every supported chain)
        ledger_factory: Builds a LedgerClient for an RPC URL
        registry_address: Identity registry contract address

    Returns:
        One RegistrationScan per network, in the order requested. Produced
        only after every network has answered or failed.
    """
    targets = list(chain_ids) if chain_ids is not None else list(SUPPORTED_CHAINS)

    with get_tracer().start_as_current_span("identity.scan_registrations") as span:
        span.set_attribute("scan.networks", len(targets))

        outcomes = await asyncio.gather(
            *(_scan_network(chain_id, wallet, ledger_factory, registry_address) for chain_id in targets),
            return_exceptions=True,
        )

        scans: list[RegistrationScan] = []
        for chain_id, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                name = SUPPORTED_CHAINS.get(chain_id, {}).get("name", f"Chain {chain_id}")
                logger.warning(f"Registration scan failed on {name} ({chain_id}): {outcome}")
                scans.append(RegistrationScan(chain_id=chain_id, chain_name=name, error=str(outcome)))
            else:
                scans.append(outcome)

        failures = sum(1 for scan in scans if not scan.reachable)
        found = sum(scan.count for scan in scans)
        span.set_attribute("scan.failures", failures)
        span.set_attribute("scan.found", found)
        get_metrics_emitter().record_registration_scan(
            networks=len(targets), failures=failures, found=found
        )
        return scans


async def probe_endpoint(
    url: str,
    timeout: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> EndpointProbe:
    """
    Probe a protocol endpoint with a JSON-RPC ping.

    Args:
        url: Endpoint URL declared in a registration record
        timeout: Probe timeout in seconds
        client: Optional shared httpx client

    Returns:
        EndpointProbe; a timeout or connection failure is reported in
        ``error`` rather than raised
    """
    timeout = timeout if timeout is not None else config.probe_timeout_seconds
    probe = EndpointProbe(url=url)

    with get_tracer().start_as_current_span("identity.probe_endpoint") as span:
        span.set_attribute("probe.url", url)
        owns_client = client is None
        http = client or httpx.AsyncClient()
        try:
            response = await http.post(
                url,
                content=json.dumps(PING_REQUEST),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json, text/event-stream",
                },
                timeout=timeout,
            )
        except httpx.TimeoutException:
            probe.error = f"Timed out after {timeout}s"
            span.set_attribute("error.type", "timeout")
            return probe
        except (httpx.RequestError, httpx.InvalidURL) as e:
            probe.error = str(e) or type(e).__name__
            span.set_attribute("error.type", "request_error")
            return probe
        finally:
            if owns_client:
                await http.aclose()

        probe.reachable = True
        probe.status_code = response.status_code
        span.set_attribute("http.status_code", response.status_code)

        if response.status_code == 402:
            probe.payment_required = True
            challenge = decode_requirements_header(response.headers.get(PAYMENT_REQUIRED_HEADER))
            accepts = challenge.get("accepts") if challenge else None
            if accepts and isinstance(accepts[0], dict):
                probe.max_amount_required = accepts[0].get("maxAmountRequired")
                probe.network = accepts[0].get("network")
        return probe
