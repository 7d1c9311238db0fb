"""Domain errors raised by the raffle engine.

Every error carries a stable snake_case ``code``, the HTTP status the web
layer answers with, and a ``details`` dict that is safe to expose.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RaffleError(Exception):
    """Base class for raffle domain failures."""

    code = "raffle_error"
    http_status = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InsufficientPayment(RaffleError):
    code = "insufficient_payment"
    http_status = 402

    def __init__(self, paid_amount: int, entrance_fee: int) -> None:
        super().__init__(
            f"Paid {paid_amount} but the entrance fee is {entrance_fee}",
            details={"paidAmount": paid_amount, "entranceFee": entrance_fee},
        )
        self.paid_amount = paid_amount
        self.entrance_fee = entrance_fee


class RoundNotOpen(RaffleError):
    code = "round_not_open"
    http_status = 409

    def __init__(self, phase: Any) -> None:
        super().__init__("Raffle is not accepting entries", details={"phase": getattr(phase, "name", phase)})
        self.phase = phase


class UpkeepNotNeeded(RaffleError):
    """Draw initiation rejected; carries the state that caused the rejection."""

    code = "upkeep_not_needed"
    http_status = 409

    def __init__(self, balance: int, player_count: int, phase: Any) -> None:
        phase_name = getattr(phase, "name", phase)
        super().__init__(
            f"Upkeep not needed (balance={balance}, players={player_count}, phase={phase_name})",
            details={"balance": balance, "playerCount": player_count, "phase": phase_name},
        )
        self.balance = balance
        self.player_count = player_count
        self.phase = phase


class PayoutFailed(RaffleError):
    code = "payout_failed"
    http_status = 502

    def __init__(self, winner: str, amount: int, reason: str = "transfer rejected") -> None:
        super().__init__(
            f"Transfer of {amount} to {winner} failed: {reason}",
            details={"winner": winner, "amount": amount, "reason": reason},
        )
        self.winner = winner
        self.amount = amount


class IndexOutOfRange(RaffleError):
    code = "index_out_of_range"
    http_status = 404

    def __init__(self, index: int, size: int) -> None:
        super().__init__(f"No player at index {index}", details={"index": index, "size": size})
        self.index = index
        self.size = size


class UnknownRequest(RaffleError):
    """Fulfillment for a request that is not the outstanding one."""

    code = "unknown_request"
    http_status = 409

    def __init__(self, request_id: int, pending_id: Optional[int]) -> None:
        super().__init__(
            f"Request {request_id} is not pending",
            details={"requestId": request_id, "pendingRequestId": pending_id},
        )
        self.request_id = request_id
        self.pending_id = pending_id


class RandomnessRequestFailed(RaffleError):
    code = "randomness_request_failed"
    http_status = 502

    def __init__(self, reason: str) -> None:
        super().__init__(f"Randomness request failed: {reason}", details={"reason": reason})


class NoPayoutPending(RaffleError):
    code = "no_payout_pending"
    http_status = 409

    def __init__(self) -> None:
        super().__init__("There is no unpaid prize to retry")
