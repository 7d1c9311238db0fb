"""
Upkeep operator.

In-process trigger source: every ``check_interval`` seconds it probes the
raffle with ``check_upkeep`` and, when a draw is due, calls
``perform_upkeep``. The raffle re-validates inside ``perform_upkeep``, so a
lost race simply shows up as ``UpkeepNotNeeded``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.errors import RandomnessRequestFailed, UpkeepNotNeeded
from vrf_raffle.lottery.models import OperatorStatus
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class UpkeepOperator:
    """Periodic probe-then-act loop around a raffle."""

    def __init__(self, raffle: Raffle, config: Dict[str, Any]) -> None:
        self._raffle = raffle
        operator_cfg = config.get("operator", {})
        self.check_interval = float(operator_cfg.get("check_interval", 10))
        self.status = OperatorStatus()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self.status.is_running:
            logger.warning("Upkeep operator already running")
            return
        self.status.is_running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Upkeep operator started (every %ss)", self.check_interval)

    async def stop(self) -> None:
        if not self.status.is_running:
            return
        logger.info("Stopping upkeep operator")
        self.status.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Upkeep operator stopped")

    async def _loop(self) -> None:
        while self.status.is_running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.status.increment_failures()
                logger.error("Error in upkeep loop: %s", exc)
            await asyncio.sleep(self.check_interval)

    async def run_once(self) -> Optional[int]:
        """Probe once and act if needed. Returns the request id when a draw started."""
        check = self._raffle.check_upkeep()
        self.status.record_check(int(time.time()))
        if not check.upkeep_needed:
            logger.debug("No upkeep needed: %s", check.to_dict())
            return None

        try:
            request_id = await self._raffle.perform_upkeep()
        except UpkeepNotNeeded as exc:
            logger.warning("Upkeep no longer needed: %s", exc.details)
            return None
        except RandomnessRequestFailed as exc:
            self.status.increment_failures()
            logger.error("Draw could not be started: %s", exc)
            return None

        self.status.record_request(request_id)
        logger.info("Draw started with request %s", request_id)
        return request_id

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self.status.is_running else "stopped",
            "checkInterval": self.check_interval,
            "checks": self.status.checks,
            "drawsRequested": self.status.draws_requested,
            "lastRequestId": self.status.last_request_id,
            "consecutiveFailures": self.status.consecutive_failures,
        }
