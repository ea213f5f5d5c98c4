"""Entry point for running a payment-gated agentgate server."""
import asyncio
import logging
import os
import sys

# Configure logging to stdout - do this FIRST
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG", "").lower() == "true" else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True
)
logger = logging.getLogger(__name__)

from agentgate.config import config
from agentgate.metrics import init_metrics
from agentgate.server import GateServer
from agentgate.tracing import init_tracing


async def main() -> None:
    init_tracing(
        service_name="agentgate",
        otlp_endpoint=config.otel_endpoint or None,
        enable_console_export=config.otel_console_export,
    )
    init_metrics("agentgate")

    server = GateServer(identity=os.getenv("AGENT_GLOBAL_ID") or None)

    @server.tool("echo", "Echo the given arguments back", {"type": "object"})
    async def echo(arguments):
        return arguments

    if server.payment is None:
        logger.warning("PAYMENT_PAY_TO / PAYMENT_AMOUNT not set - serving without payment gate")
    else:
        logger.info(
            f"Payment gate enabled: {server.payment.amount} on {server.payment.network} "
            f"to {server.payment.pay_to}"
        )

    try:
        await server.listen()
    finally:
        await server.close()


if __name__ == "__main__":
    asyncio.run(main())
