"""
Raffle Engine - entry ledger and draw state machine
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from vrf_raffle.lottery import upkeep
from vrf_raffle.lottery.collaborators import RandomnessCoordinator, Settlement
from vrf_raffle.lottery.errors import (
    IndexOutOfRange,
    InsufficientPayment,
    NoPayoutPending,
    PayoutFailed,
    RandomnessRequestFailed,
    RoundNotOpen,
    UnknownRequest,
    UpkeepNotNeeded,
)
from vrf_raffle.lottery.event_manager import MemoryStore
from vrf_raffle.lottery.models import (
    EVENT_DRAW_REQUESTED,
    EVENT_ENTRY_RECORDED,
    EVENT_PAYOUT_FAILED,
    EVENT_WINNER_SELECTED,
    PendingRequest,
    RafflePhase,
    RoundConfig,
    RoundState,
    UnpaidPrize,
    UpkeepCheck,
)
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


def _wall_clock() -> int:
    return int(time.time())


class Raffle:
    """Periodic raffle driven by an upkeep trigger and a randomness coordinator.

    All mutations run under one asyncio lock. ``perform_upkeep`` holds it
    while the randomness request is submitted and ``fulfill_random_words``
    holds it while the payout is submitted, so an entry racing a draw is
    either fully part of the round or rejected with ``RoundNotOpen``.
    """

    def __init__(
        self,
        config: RoundConfig,
        coordinator: RandomnessCoordinator,
        settlement: Settlement,
        store: Optional[MemoryStore] = None,
        clock: Callable[[], int] = _wall_clock,
    ) -> None:
        self._config = config
        self._coordinator = coordinator
        self._settlement = settlement
        self._store = store if store is not None else MemoryStore()
        self._clock = clock

        self._state = RoundState(last_timestamp=int(clock()))
        self._pending: Optional[PendingRequest] = None
        self._unpaid: Optional[UnpaidPrize] = None
        self._lock = asyncio.Lock()

        logger.info(
            "Raffle initialized: entrance_fee=%s interval=%ss subscription=%s",
            config.entrance_fee,
            config.interval,
            config.subscription_id,
        )

    # =============== ENTRY LEDGER ===============

    async def enter_raffle(self, participant: str, paid_amount: int) -> int:
        """Record an entry for the open round and return the new player count."""
        if not participant:
            raise ValueError("participant must be a non-empty identifier")

        async with self._lock:
            if paid_amount < self._config.entrance_fee:
                raise InsufficientPayment(paid_amount, self._config.entrance_fee)
            if self._state.phase != RafflePhase.OPEN:
                raise RoundNotOpen(self._state.phase)

            # overpayment stays in the pot
            self._settlement.record_entry(participant, paid_amount)
            self._state.players.append(participant)
            self._state.pot += paid_amount
            player_count = len(self._state.players)

        self._store.publish(
            EVENT_ENTRY_RECORDED,
            {"player": participant, "amount": paid_amount, "playerCount": player_count, "timestamp": self._now()},
        )
        return player_count

    # =============== TRIGGER ===============

    def check_upkeep(self, now: Optional[int] = None) -> UpkeepCheck:
        """Read-only probe for the trigger source."""
        moment = self._now() if now is None else int(now)
        return upkeep.check_upkeep(self._state, self._config, moment, self._state.pot)

    async def perform_upkeep(self) -> int:
        """Close entries and request randomness. Returns the request id."""
        async with self._lock:
            check = self.check_upkeep()
            if not check.upkeep_needed:
                logger.debug("Upkeep rejected: %s", check)
                raise UpkeepNotNeeded(check.balance, check.player_count, check.phase)

            try:
                request_id = await self._coordinator.request_random_words(
                    self._config.key_hash,
                    self._config.subscription_id,
                    self._config.request_confirmations,
                    self._config.callback_gas_limit,
                    self._config.num_words,
                    consumer=self,
                )
            except Exception as exc:
                logger.error("Randomness request failed: %s", exc)
                raise RandomnessRequestFailed(str(exc)) from exc

            request_id = int(request_id)
            self._state.phase = RafflePhase.CALCULATING
            self._pending = PendingRequest(
                request_id=request_id,
                requested_at=self._now(),
                player_count=len(self._state.players),
            )
            details = {
                "requestId": request_id,
                "playerCount": len(self._state.players),
                "balance": self._state.pot,
                "timestamp": self._pending.requested_at,
            }

        logger.info("Draw requested: request %s with %s players", request_id, details["playerCount"])
        self._store.publish(EVENT_DRAW_REQUESTED, details)
        return request_id

    # =============== FULFILLMENT ===============

    async def fulfill_random_words(self, request_id: int, random_words: Sequence[int]) -> str:
        """Select and pay the winner for the outstanding request. Returns the winner."""
        async with self._lock:
            pending_id = self._pending.request_id if self._pending else None
            if pending_id is None or int(request_id) != pending_id:
                logger.warning("Rejected fulfillment for request %s (pending: %s)", request_id, pending_id)
                raise UnknownRequest(int(request_id), pending_id)
            if not random_words:
                raise ValueError("random_words must contain at least one value")

            # the request is consumed even if the payout below fails
            pending = self._pending
            self._pending = None

            players = self._state.players
            index_of_winner = int(random_words[0]) % len(players)
            winner = players[index_of_winner]
            amount = self._state.pot
            logger.info(
                "Request %s fulfilled: index %s of %s players -> %s",
                request_id,
                index_of_winner,
                len(players),
                winner,
            )

            await self._pay_out(UnpaidPrize(
                request_id=pending.request_id,
                winner=winner,
                amount=amount,
                player_count=len(players),
                failed_at=0,
            ))
            return winner

    async def retry_payout(self) -> str:
        """Re-attempt a rejected payout to the already selected winner."""
        async with self._lock:
            if self._unpaid is None:
                raise NoPayoutPending()
            prize = self._unpaid
            logger.info("Retrying payout of %s to %s", prize.amount, prize.winner)
            await self._pay_out(prize)
            return prize.winner

    async def _pay_out(self, prize: UnpaidPrize) -> None:
        # caller holds the lock
        error: Optional[Exception] = None
        try:
            success = await self._settlement.transfer(prize.winner, prize.amount)
        except Exception as exc:
            logger.error("Settlement raised during payout to %s: %s", prize.winner, exc)
            success = False
            error = exc

        if not success:
            now = self._now()
            self._unpaid = UnpaidPrize(
                request_id=prize.request_id,
                winner=prize.winner,
                amount=prize.amount,
                player_count=prize.player_count,
                failed_at=now,
            )
            logger.error("Payout of %s to %s failed; round held in CALCULATING", prize.amount, prize.winner)
            self._store.publish(
                EVENT_PAYOUT_FAILED,
                {"requestId": prize.request_id, "winner": prize.winner, "amount": prize.amount, "timestamp": now},
            )
            reason = str(error) if error else "transfer rejected"
            raise PayoutFailed(prize.winner, prize.amount, reason) from error

        self._close_round(prize)

    def _close_round(self, prize: UnpaidPrize) -> None:
        now = self._now()
        self._state.recent_winner = prize.winner
        self._state.players = []
        self._state.pot = 0
        self._state.phase = RafflePhase.OPEN
        self._state.last_timestamp = now
        self._unpaid = None

        logger.info("Winner %s paid %s; raffle reopened", prize.winner, prize.amount)
        self._store.publish(
            EVENT_WINNER_SELECTED,
            {
                "requestId": prize.request_id,
                "winner": prize.winner,
                "prize": prize.amount,
                "playerCount": prize.player_count,
                "timestamp": now,
            },
        )

    # =============== STATUS AND INFORMATION ===============

    def _now(self) -> int:
        return int(self._clock())

    @property
    def config(self) -> RoundConfig:
        return self._config

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def entrance_fee(self) -> int:
        return self._config.entrance_fee

    @property
    def interval(self) -> int:
        return self._config.interval

    @property
    def num_words(self) -> int:
        return self._config.num_words

    @property
    def request_confirmations(self) -> int:
        return self._config.request_confirmations

    @property
    def raffle_state(self) -> RafflePhase:
        return self._state.phase

    @property
    def number_of_players(self) -> int:
        return len(self._state.players)

    @property
    def players(self) -> List[str]:
        return list(self._state.players)

    def get_player(self, index: int) -> str:
        if index < 0 or index >= len(self._state.players):
            raise IndexOutOfRange(index, len(self._state.players))
        return self._state.players[index]

    @property
    def recent_winner(self) -> Optional[str]:
        return self._state.recent_winner

    @property
    def last_timestamp(self) -> int:
        return self._state.last_timestamp

    @property
    def pot_balance(self) -> int:
        return self._state.pot

    @property
    def pending_request(self) -> Optional[PendingRequest]:
        return self._pending

    @property
    def unpaid_prize(self) -> Optional[UnpaidPrize]:
        return self._unpaid

    def snapshot(self) -> Dict[str, Any]:
        """Serialisable view of the round for the API layer."""
        return {
            "state": self._state.phase.value,
            "stateLabel": self._state.phase.name,
            "entranceFee": self._config.entrance_fee,
            "interval": self._config.interval,
            "playerCount": len(self._state.players),
            "potBalance": self._state.pot,
            "recentWinner": self._state.recent_winner,
            "lastTimestamp": self._state.last_timestamp,
            "pendingRequestId": self._pending.request_id if self._pending else None,
            "unpaidPrize": {
                "winner": self._unpaid.winner,
                "amount": self._unpaid.amount,
                "requestId": self._unpaid.request_id,
            } if self._unpaid else None,
            "requestConfirmations": self._config.request_confirmations,
            "numWords": self._config.num_words,
            "callbackGasLimit": self._config.callback_gas_limit,
            "subscriptionId": self._config.subscription_id,
        }
