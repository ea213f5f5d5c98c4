"""
Registration record transport.

Registration records live behind the URI stored on-ledger. Four forms are
accepted:

- ``data:application/json;base64,<b64>``
- ``data:application/json,<percent-encoded json>``
- ``ipfs://<cid>`` (fetched through a configurable HTTP gateway)
- ``http://`` / ``https://``

Usage:
    from agentgate.identity.registration import fetch_registration_file

    record = await fetch_registration_file("ipfs://bafy...")
"""

import base64
import binascii
import json
import logging
from typing import Any, Optional
from urllib.parse import quote, unquote

import httpx
from pydantic import ValidationError

from ..config import config
from ..errors import RegistrationUnreachable
from ..tracing import get_tracer
from .models import RegistrationRecord

logger = logging.getLogger(__name__)

BASE64_PREFIX = "data:application/json;base64,"
INLINE_PREFIX = "data:application/json,"
IPFS_PREFIX = "ipfs://"


def _decode_inline(uri: str) -> str:
    if uri.startswith(BASE64_PREFIX):
        try:
            return base64.b64decode(uri[len(BASE64_PREFIX):]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise RegistrationUnreachable(f"Invalid base64 registration data URI: {e}") from e
    return unquote(uri[len(INLINE_PREFIX):])


async def _fetch_remote(url: str, timeout: float, client: Optional[httpx.AsyncClient]) -> str:
    owns_client = client is None
    http = client or httpx.AsyncClient()
    try:
        response = await http.get(
            url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            follow_redirects=True,
        )
    except httpx.TimeoutException as e:
        raise RegistrationUnreachable(f"Timed out fetching {url} after {timeout}s") from e
    except (httpx.RequestError, httpx.InvalidURL) as e:
        raise RegistrationUnreachable(f"Failed to fetch {url}: {e}") from e
    finally:
        if owns_client:
            await http.aclose()

    if response.status_code != 200:
        raise RegistrationUnreachable(f"Failed to fetch {url} ({response.status_code})")
    return response.text


async def fetch_registration_file(
    uri: str,
    ipfs_gateway: Optional[str] = None,
    timeout: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> RegistrationRecord:
    """
    Fetch and parse a registration record.

    Args:
        uri: URI read from the ledger
        ipfs_gateway: Gateway prefix for ``ipfs://`` URIs
        timeout: Fetch timeout in seconds
        client: Optional shared httpx client

    Returns:
        Parsed RegistrationRecord

    Raises:
        RegistrationUnreachable: If the URI cannot be fetched, is of an
            unsupported form, or does not hold a valid record
    """
    gateway = ipfs_gateway or config.ipfs_gateway
    timeout = timeout if timeout is not None else config.fetch_timeout_seconds

    with get_tracer().start_as_current_span("identity.fetch_registration") as span:
        scheme = uri.split(":", 1)[0] if ":" in uri else ""
        span.set_attribute("registration.uri_scheme", scheme)

        if uri.startswith(BASE64_PREFIX) or uri.startswith(INLINE_PREFIX):
            raw = _decode_inline(uri)
        elif uri.startswith(IPFS_PREFIX):
            raw = await _fetch_remote(f"{gateway}{uri[len(IPFS_PREFIX):]}", timeout, client)
        elif uri.startswith("https://") or uri.startswith("http://"):
            raw = await _fetch_remote(uri, timeout, client)
        else:
            span.set_attribute("error.type", "unsupported_uri")
            raise RegistrationUnreachable(
                f"Unsupported URI scheme: {uri[:50]}. Supported: data:, ipfs://, https://, http://"
            )

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            span.set_attribute("error.type", "invalid_json")
            raise RegistrationUnreachable(f"Registration file is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise RegistrationUnreachable("Registration file must be a JSON object")

        try:
            record = RegistrationRecord.model_validate(data)
        except ValidationError as e:
            span.set_attribute("error.type", "invalid_record")
            raise RegistrationUnreachable(
                f"Registration file is missing required fields: {e.error_count()} error(s)"
            ) from e

        span.set_attribute("registration.services", len(record.services))
        return record


def build_registration_uri(record: RegistrationRecord | dict[str, Any]) -> str:
    """
    Encode a registration record as an inline base64 data URI.

    Args:
        record: Record (or its wire dict)

    Returns:
        ``data:application/json;base64,...`` URI
    """
    data = record.to_dict() if isinstance(record, RegistrationRecord) else dict(record)
    payload = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return BASE64_PREFIX + base64.b64encode(payload).decode("ascii")


def build_inline_uri(record: RegistrationRecord | dict[str, Any]) -> str:
    """Encode a record as a percent-encoded ``data:application/json,`` URI."""
    data = record.to_dict() if isinstance(record, RegistrationRecord) else dict(record)
    return INLINE_PREFIX + quote(json.dumps(data, separators=(",", ":")))
