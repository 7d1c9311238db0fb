#!/usr/bin/env python3
"""
Raffle Operator Application

Main entry point: deploys the raffle for the configured network, runs the
upkeep operator and, on live networks, the fulfillment watcher, then
serves the HTTP surface until a shutdown signal.
"""

import asyncio
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from vrf_raffle.blockchain.deploy import RaffleDeployment, deploy_raffle
from vrf_raffle.lottery.operator import UpkeepOperator
from vrf_raffle.utils.common import wei_to_eth
from vrf_raffle.utils.config import load_config
from vrf_raffle.utils.logger import get_logger
from vrf_raffle.web_server import RaffleWebServer

logger = get_logger(__name__)


class RaffleOperatorApp:
    """Raffle operator application.

    Responsible for deploying the raffle and its collaborators, the upkeep
    operator and the FastAPI web server. Handles graceful shutdown.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else load_config()
        self.deployment: RaffleDeployment | None = None
        self.operator: UpkeepOperator | None = None
        self.web_server: RaffleWebServer | None = None
        self.running = True

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    def _display_config_summary(self):
        raffle = self.deployment.raffle
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Network: {self.deployment.network}")
        logger.info(f"Entrance Fee: {wei_to_eth(raffle.entrance_fee)} ETH")
        logger.info(f"Interval: {raffle.interval}s")
        logger.info(f"Subscription: {self.deployment.subscription_id}")
        logger.info(f"Callback Gas Limit: {raffle.config.callback_gas_limit}")
        logger.info(f"Request Confirmations: {raffle.request_confirmations}")
        logger.info("=" * 60)

    async def initialize(self):
        logger.info("Initializing Raffle Operator Application")
        self.deployment = await deploy_raffle(self.config)
        self._display_config_summary()

        if str(self.config.get("operator", {}).get("enabled", True)).lower() not in ("false", "0", "no"):
            self.operator = UpkeepOperator(self.deployment.raffle, self.config)

        self.web_server = RaffleWebServer(
            self.config,
            self.deployment.raffle,
            operator=self.operator,
            blockchain_client=self.deployment.blockchain_client,
        )

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()

            if self.operator:
                await self.operator.start()
            else:
                logger.info("In-process upkeep operator disabled; waiting for an external trigger source")

            if self.deployment.fulfillment_watcher:
                await self.deployment.fulfillment_watcher.start()

            server_cfg = self.config.get('server', {})
            host = server_cfg.get('host', '0.0.0.0')
            port = int(server_cfg.get('port', 6080))
            server_task = asyncio.create_task(self.web_server.start(host=host, port=port))

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            if server_task.done() and server_task.exception():
                raise server_task.exception()

            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        """Stop all services and cleanup resources."""
        logger.info("Stopping Raffle Operator Application")
        self.running = False

        if self.operator:
            await self.operator.stop()
        if self.web_server:
            await self.web_server.stop()
        if self.deployment:
            await self.deployment.close()

        logger.info("Raffle Operator Application stopped")


async def main():
    """Main entry point for the Raffle Operator Application"""
    app = RaffleOperatorApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception:
        logger.exception("Application failed")
        sys.exit(1)


def run() -> None:
    load_dotenv(Path.cwd() / '.env')
    asyncio.run(main())


if __name__ == "__main__":
    run()
