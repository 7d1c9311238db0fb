"""In-memory notification store for the raffle service."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from vrf_raffle.lottery.models import (
    EVENT_DRAW_REQUESTED,
    EVENT_ENTRY_RECORDED,
    EVENT_PAYOUT_FAILED,
    EVENT_WINNER_SELECTED,
    LiveFeedItem,
    WinnerSnapshot,
)
from vrf_raffle.utils.common import shorten_eth_address
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class MemoryStore:
    """Volatile storage for raffle notifications, winner history and live feed."""

    def __init__(self, *, feed_capacity: int = 100, history_capacity: int = 20) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._history: deque[WinnerSnapshot] = deque(maxlen=history_capacity)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)
        logger.debug("[MemoryStore] Adding listener for event_type=%s, callback=%s", event_type, callback)

    def remove_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            if callback in self._listeners.get(event_type, []):
                self._listeners[event_type].remove(callback)

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, [])) + list(self._listeners.get("*", []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(self, event_type: str, details: Optional[Dict[str, Any]] = None) -> LiveFeedItem:
        """Record a notification in the live feed and fan it out to listeners."""
        safe_details = dict(details or {})
        event_time = int(safe_details.get("timestamp") or time.time())
        item = LiveFeedItem(
            event_type=event_type,
            message=self._generate_event_message(event_type, safe_details),
            details=safe_details,
            event_time=event_time,
        )
        with self._lock:
            self._live_feed.append(item)
            if event_type == EVENT_WINNER_SELECTED:
                self._history.append(
                    WinnerSnapshot(
                        request_id=int(safe_details.get("requestId", 0)),
                        winner=str(safe_details.get("winner", "")),
                        prize=int(safe_details.get("prize", 0)),
                        participant_count=int(safe_details.get("playerCount", 0)),
                        finished_at=event_time,
                    )
                )
        logger.info("[MemoryStore] %s: %s", event_type, item.message)

        payload = self._serialize_feed_item(item)
        self._emit(event_type, payload)
        return item

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_live_feed(self, limit: Optional[int] = None) -> List[LiveFeedItem]:
        with self._lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:]
        return items

    def get_round_history(self, limit: Optional[int] = None) -> List[WinnerSnapshot]:
        with self._lock:
            items = list(self._history)
        if limit is not None:
            return items[-limit:]
        return items

    def clear_all_data(self) -> None:
        with self._lock:
            self._history.clear()
            self._live_feed.clear()
        logger.debug("[MemoryStore] clear_all_data called")

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    def serialize_feed(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return [self._serialize_feed_item(item) for item in reversed(self.get_live_feed(limit))]

    def serialize_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        rounds = [
            {
                "requestId": snapshot.request_id,
                "winner": snapshot.winner,
                "prize": snapshot.prize,
                "participantCount": snapshot.participant_count,
                "finishedAt": snapshot.finished_at,
            }
            for snapshot in self.get_round_history(limit)
        ]
        rounds.reverse()
        return rounds

    @staticmethod
    def _serialize_feed_item(item: LiveFeedItem) -> Dict[str, Any]:
        return {
            "id": item.get_item_id(),
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "timestamp": item.event_time,
        }

    @staticmethod
    def _generate_event_message(event_type: str, details: Dict[str, Any]) -> str:
        if event_type == EVENT_ENTRY_RECORDED:
            return f"{shorten_eth_address(str(details.get('player', '')))} entered the raffle"
        if event_type == EVENT_DRAW_REQUESTED:
            return f"Randomness requested (request {details.get('requestId')})"
        if event_type == EVENT_WINNER_SELECTED:
            return f"{shorten_eth_address(str(details.get('winner', '')))} won {details.get('prize')}"
        if event_type == EVENT_PAYOUT_FAILED:
            return f"Payout to {shorten_eth_address(str(details.get('winner', '')))} failed"
        return event_type
