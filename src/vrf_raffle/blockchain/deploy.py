"""
Raffle deployment helper.

Development chains get an in-process coordinator mock with a freshly
created and funded subscription plus an in-memory ledger; live networks
get the web3 client for both collaborators plus a watcher that feeds
randomness delivered on chain back into the raffle.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from vrf_raffle.blockchain.client import BlockchainClient
from vrf_raffle.blockchain.mocks import InMemoryLedger, MockVRFCoordinator
from vrf_raffle.blockchain.watcher import FulfillmentWatcher
from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.event_manager import MemoryStore
from vrf_raffle.utils.common import parse_ether
from vrf_raffle.utils.config import build_round_config, get_network_name, is_development_chain
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

# Premium charged per fulfilment by the mock, in LINK
BASE_FEE = "0.25"
# LINK per gas unit
GAS_PRICE_LINK = 10**9
VRF_SUB_FUND_AMOUNT = "2"


@dataclass
class RaffleDeployment:
    raffle: Raffle
    coordinator: Any
    settlement: Any
    network: str
    subscription_id: int
    blockchain_client: Optional[BlockchainClient] = None
    fulfillment_watcher: Optional[FulfillmentWatcher] = None

    async def close(self) -> None:
        if self.fulfillment_watcher:
            await self.fulfillment_watcher.stop()
        if isinstance(self.coordinator, MockVRFCoordinator):
            await self.coordinator.close()
        if self.blockchain_client:
            await self.blockchain_client.close()


def deploy_mocks(config: Dict[str, Any]) -> MockVRFCoordinator:
    mocks_cfg = config.get("mocks", {})
    delay = mocks_cfg.get("auto_fulfill_delay")
    coordinator = MockVRFCoordinator(
        base_fee=parse_ether(mocks_cfg.get("base_fee", BASE_FEE)),
        gas_price_link=int(mocks_cfg.get("gas_price_link", GAS_PRICE_LINK)),
        auto_fulfill_delay=float(delay) if delay not in (None, "") else None,
    )
    logger.info("Local network detected! Mock VRF coordinator deployed")
    return coordinator


async def deploy_raffle(
    config: Dict[str, Any],
    store: Optional[MemoryStore] = None,
    clock: Optional[Callable[[], int]] = None,
) -> RaffleDeployment:
    """Build a raffle wired to collaborators suitable for the configured network."""
    network = get_network_name(config)
    store = store if store is not None else MemoryStore()
    extra = {"clock": clock} if clock is not None else {}

    if is_development_chain(config):
        coordinator = deploy_mocks(config)
        subscription_id = coordinator.create_subscription()
        fund_amount = parse_ether(config.get("mocks", {}).get("subscription_fund", VRF_SUB_FUND_AMOUNT))
        coordinator.fund_subscription(subscription_id, fund_amount)

        ledger = InMemoryLedger()

        round_config = build_round_config(config, subscription_id=subscription_id)
        raffle = Raffle(round_config, coordinator, ledger, store=store, **extra)
        coordinator.add_consumer(subscription_id, raffle)
        logger.info("Raffle deployed on %s with mock subscription %s", network, subscription_id)
        return RaffleDeployment(
            raffle=raffle,
            coordinator=coordinator,
            settlement=ledger,
            network=network,
            subscription_id=subscription_id,
        )

    client = BlockchainClient(config)
    await client.initialize()
    round_config = build_round_config(config)
    raffle = Raffle(round_config, client, client, store=store, **extra)
    logger.info("Raffle deployed on %s using subscription %s", network, round_config.subscription_id)
    return RaffleDeployment(
        raffle=raffle,
        coordinator=client,
        settlement=client,
        network=network,
        subscription_id=round_config.subscription_id,
        blockchain_client=client,
        fulfillment_watcher=FulfillmentWatcher(raffle, client, config),
    )
