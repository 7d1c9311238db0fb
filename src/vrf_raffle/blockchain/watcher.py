"""
Fulfillment watcher.

Live delivery path for randomness: polls the raffle consumer contract for
``RandomWordsDelivered`` logs and hands each delivery to
``Raffle.fulfill_random_words``. Only the coordinator can make the consumer
emit these logs, so words never come from an unauthenticated caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.errors import PayoutFailed, UnknownRequest
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class FulfillmentWatcher:
    """Block-polling loop that feeds on-chain randomness into the raffle.

    ``client`` must provide ``get_latest_block()`` and
    ``get_fulfillments(from_block) -> (deliveries, last_block)``.
    """

    def __init__(self, raffle: Raffle, client: Any, config: Optional[Dict[str, Any]] = None) -> None:
        self._raffle = raffle
        self.client = client
        watcher_cfg = (config or {}).get("watcher", {})
        self.poll_interval = float(watcher_cfg.get("poll_interval", 5))
        self._start_block_offset = int(watcher_cfg.get("start_block_offset", 20))

        self._from_block: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.delivered = 0

    @property
    def from_block(self) -> Optional[int]:
        return self._from_block

    async def initialize(self) -> None:
        latest = await self.client.get_latest_block()
        self._from_block = max(0, latest - self._start_block_offset)
        logger.info("Fulfillment watcher starting from block %s", self._from_block)

    async def start(self) -> None:
        if self._task:
            return
        if self._from_block is None:
            await self.initialize()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Fulfillment watcher stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Fulfillment watcher poll failed: %s", exc)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                break
            except asyncio.TimeoutError:
                continue

    async def poll_once(self) -> int:
        """Process new deliveries once. Returns how many rounds were fulfilled."""
        if self._from_block is None:
            await self.initialize()

        deliveries, last_block = await self.client.get_fulfillments(self._from_block)
        fulfilled = 0
        for request_id, words in deliveries:
            try:
                winner = await self._raffle.fulfill_random_words(request_id, words)
            except UnknownRequest:
                # rescanned or foreign delivery
                logger.debug("Skipping delivery for request %s", request_id)
                continue
            except PayoutFailed as exc:
                logger.error("Request %s fulfilled but payout failed: %s", request_id, exc)
                continue
            fulfilled += 1
            logger.info("Request %s fulfilled on chain, winner %s", request_id, winner)

        self._from_block = max(self._from_block, last_block + 1)
        self.delivered += fulfilled
        return fulfilled
