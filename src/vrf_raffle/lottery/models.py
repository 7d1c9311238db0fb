"""Core data models for the raffle service."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

# Notification names published through the event store
EVENT_ENTRY_RECORDED = "EntryRecorded"
EVENT_DRAW_REQUESTED = "DrawRequested"
EVENT_WINNER_SELECTED = "WinnerSelected"
EVENT_PAYOUT_FAILED = "PayoutFailed"

DEFAULT_REQUEST_CONFIRMATIONS = 3
NUM_WORDS = 1


class RafflePhase(IntEnum):
    """Raffle phases, numbered as the on-chain raffle exposes them."""

    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class RoundConfig:
    """Immutable raffle configuration, fixed when the raffle is built."""

    entrance_fee: int
    interval: int
    key_hash: str
    subscription_id: int
    callback_gas_limit: int
    request_confirmations: int = DEFAULT_REQUEST_CONFIRMATIONS
    num_words: int = NUM_WORDS

    def __post_init__(self) -> None:
        if self.entrance_fee < 0:
            raise ValueError("entrance_fee must not be negative")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        if self.callback_gas_limit <= 0:
            raise ValueError("callback_gas_limit must be positive")
        if self.request_confirmations < 0:
            raise ValueError("request_confirmations must not be negative")
        if self.num_words != NUM_WORDS:
            raise ValueError(f"num_words is fixed at {NUM_WORDS}")


@dataclass
class RoundState:
    """Live round state. Mutated only by the raffle engine."""

    last_timestamp: int
    phase: RafflePhase = RafflePhase.OPEN
    players: List[str] = field(default_factory=list)
    pot: int = 0
    recent_winner: Optional[str] = None


@dataclass(frozen=True)
class PendingRequest:
    """In-flight correlation record between a randomness request and its fulfillment."""

    request_id: int
    requested_at: int
    player_count: int


@dataclass(frozen=True)
class UnpaidPrize:
    """A winner whose payout was rejected by the settlement layer."""

    request_id: int
    winner: str
    amount: int
    player_count: int
    failed_at: int


@dataclass(frozen=True)
class UpkeepCheck:
    """Result of the dry-run probe, with the diagnostics behind it."""

    upkeep_needed: bool
    is_open: bool
    time_passed: bool
    has_players: bool
    has_balance: bool
    balance: int
    player_count: int
    phase: RafflePhase

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upkeepNeeded": self.upkeep_needed,
            "isOpen": self.is_open,
            "timePassed": self.time_passed,
            "hasPlayers": self.has_players,
            "hasBalance": self.has_balance,
            "balance": self.balance,
            "playerCount": self.player_count,
            "phase": self.phase.name,
        }


@dataclass
class WinnerSnapshot:
    """Historical record of a completed round."""

    request_id: int
    winner: str
    prize: int
    participant_count: int
    finished_at: int


@dataclass
class LiveFeedItem:
    """Entry pushed to the activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any]
    event_time: int

    def get_item_id(self) -> str:
        return f"{self.event_time}-{self.event_type}"


@dataclass
class OperatorStatus:
    """Operational metrics for the upkeep loop."""

    is_running: bool = False
    checks: int = 0
    draws_requested: int = 0
    last_check_time: Optional[int] = None
    last_request_id: Optional[int] = None
    consecutive_failures: int = 0

    def record_check(self, now: int) -> None:
        self.checks += 1
        self.last_check_time = now

    def record_request(self, request_id: int) -> None:
        self.draws_requested += 1
        self.last_request_id = request_id
        self.consecutive_failures = 0

    def increment_failures(self) -> None:
        self.consecutive_failures += 1
