"""Configuration for agentgate."""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .payments.models import PaymentServerConfig

load_dotenv()

# One hour without a request closes a session
DEFAULT_IDLE_TIMEOUT_SECONDS = 3600.0


def _split_names(raw: str) -> tuple[str, ...]:
    return tuple(name.strip() for name in raw.split(",") if name.strip())


@dataclass
class GateConfig:
    """Configuration shared by the gate server and the agent connector."""

    # HTTP front door
    protocol_path: str = "/mcp"
    port: int = 3000
    cors_enabled: bool = True

    # Identity resolution
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    fetch_timeout_seconds: float = 8.0
    probe_timeout_seconds: float = 5.0

    # Sessions idle longer than this are closed (0 disables eviction)
    session_idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS

    # Server-side payment configuration
    pay_to: str = ""
    payment_amount: str = ""
    payment_network: str = "eip155:8453"
    payment_asset: str = ""
    free_tools: tuple[str, ...] = field(default_factory=lambda: ("ping",))

    # Client-side payment ceiling (USDC base units)
    max_amount_per_request: str = "10000000"

    # OpenTelemetry configuration
    otel_endpoint: str = ""
    otel_console_export: bool = False

    @classmethod
    def from_env(cls) -> "GateConfig":
        """Load configuration from environment variables."""
        return cls(
            protocol_path=os.getenv("AGENTGATE_PROTOCOL_PATH", cls.protocol_path),
            port=int(os.getenv("PORT", str(cls.port))),
            cors_enabled=os.getenv("AGENTGATE_CORS", "true").lower() == "true",
            ipfs_gateway=os.getenv("IPFS_GATEWAY", cls.ipfs_gateway),
            fetch_timeout_seconds=float(
                os.getenv("REGISTRATION_FETCH_TIMEOUT", str(cls.fetch_timeout_seconds))
            ),
            probe_timeout_seconds=float(
                os.getenv("ENDPOINT_PROBE_TIMEOUT", str(cls.probe_timeout_seconds))
            ),
            session_idle_timeout_seconds=float(
                os.getenv("SESSION_IDLE_TIMEOUT", str(cls.session_idle_timeout_seconds))
            ),
            pay_to=os.getenv("PAYMENT_PAY_TO", ""),
            payment_amount=os.getenv("PAYMENT_AMOUNT", ""),
            payment_network=os.getenv("PAYMENT_NETWORK", cls.payment_network),
            payment_asset=os.getenv("PAYMENT_ASSET", ""),
            free_tools=_split_names(os.getenv("PAYMENT_FREE_TOOLS", "ping")),
            max_amount_per_request=os.getenv("PAYMENT_MAX_AMOUNT", cls.max_amount_per_request),
            otel_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", ""),
            otel_console_export=os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true",
        )

    def payment_config(self) -> Optional[PaymentServerConfig]:
        """Build the server payment configuration, or None when payment is off."""
        if not self.pay_to or not self.payment_amount:
            return None
        return PaymentServerConfig(
            pay_to=self.pay_to,
            amount=self.payment_amount,
            network=self.payment_network,
            asset=self.payment_asset or None,
            free_tools=self.free_tools,
        )


def rpc_override(chain_id: int) -> Optional[str]:
    """Per-chain RPC override from ``RPC_URL_<chainId>``."""
    return os.getenv(f"RPC_URL_{chain_id}") or None


# Global config instance
config = GateConfig.from_env()
