"""Draw trigger predicate.

Pure functions: they read the round state and never mutate it, so the
external trigger source may call them at any time as a dry run.
"""

from __future__ import annotations

from vrf_raffle.lottery.models import RafflePhase, RoundConfig, RoundState, UpkeepCheck


def check_upkeep(state: RoundState, config: RoundConfig, now: int, pot_balance: int) -> UpkeepCheck:
    """Evaluate every draw condition and report each one."""
    is_open = state.phase == RafflePhase.OPEN
    time_passed = (now - state.last_timestamp) > config.interval
    has_players = len(state.players) > 0
    has_balance = pot_balance > 0
    return UpkeepCheck(
        upkeep_needed=is_open and time_passed and has_players and has_balance,
        is_open=is_open,
        time_passed=time_passed,
        has_players=has_players,
        has_balance=has_balance,
        balance=pot_balance,
        player_count=len(state.players),
        phase=state.phase,
    )


def should_draw(state: RoundState, config: RoundConfig, now: int, pot_balance: int) -> bool:
    return check_upkeep(state, config, now, pot_balance).upkeep_needed
