"""In-process collaborators for development chains.

``MockVRFCoordinator`` follows the VRF coordinator mock used for local
raffle deployments: subscriptions are created and funded explicitly,
requests are fulfilled on demand (or after a delay) and every fulfilment
is charged ``base_fee + callback_gas_limit * gas_price_link``.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from web3 import Web3

from vrf_raffle.lottery.collaborators import RandomnessConsumer
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class MockVRFError(Exception):
    pass


class InvalidSubscription(MockVRFError):
    pass


class InvalidConsumer(MockVRFError):
    pass


class NonexistentRequest(MockVRFError):
    def __init__(self, request_id: int) -> None:
        super().__init__(f"nonexistent request {request_id}")
        self.request_id = request_id


class InsufficientBalance(MockVRFError):
    pass


@dataclass
class Subscription:
    owner: str
    balance: int = 0
    consumers: List[RandomnessConsumer] = field(default_factory=list)


@dataclass
class VRFRequest:
    subscription_id: int
    key_hash: str
    request_confirmations: int
    callback_gas_limit: int
    num_words: int
    consumer: Any = None


class MockVRFCoordinator:
    """Randomness coordinator that lives in the same process as the raffle."""

    def __init__(
        self,
        base_fee: int,
        gas_price_link: int,
        *,
        auto_fulfill_delay: Optional[float] = None,
    ) -> None:
        self.base_fee = int(base_fee)
        self.gas_price_link = int(gas_price_link)
        self.auto_fulfill_delay = auto_fulfill_delay

        self._subscriptions: Dict[int, Subscription] = {}
        self._requests: Dict[int, VRFRequest] = {}
        self._current_sub_id = 0
        self._next_request_id = 1
        self._tasks: Set[asyncio.Task] = set()
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------
    def create_subscription(self, owner: str = "deployer") -> int:
        self._current_sub_id += 1
        sub_id = self._current_sub_id
        self._subscriptions[sub_id] = Subscription(owner=owner)
        self._log_event("SubscriptionCreated", {"subId": sub_id, "owner": owner})
        return sub_id

    def fund_subscription(self, sub_id: int, amount: int) -> None:
        sub = self._get_subscription(sub_id)
        old_balance = sub.balance
        sub.balance += int(amount)
        self._log_event("SubscriptionFunded", {"subId": sub_id, "oldBalance": old_balance, "newBalance": sub.balance})

    def add_consumer(self, sub_id: int, consumer: RandomnessConsumer) -> None:
        sub = self._get_subscription(sub_id)
        if consumer in sub.consumers:
            return
        sub.consumers.append(consumer)
        self._log_event("ConsumerAdded", {"subId": sub_id, "consumer": repr(consumer)})

    def get_subscription(self, sub_id: int) -> Subscription:
        return self._get_subscription(sub_id)

    def _get_subscription(self, sub_id: int) -> Subscription:
        sub = self._subscriptions.get(int(sub_id))
        if sub is None:
            raise InvalidSubscription(f"invalid subscription {sub_id}")
        return sub

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    async def request_random_words(
        self,
        key_hash: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
        *,
        consumer: Optional[RandomnessConsumer] = None,
    ) -> int:
        sub = self._get_subscription(subscription_id)
        if consumer is None or consumer not in sub.consumers:
            raise InvalidConsumer(f"consumer not registered on subscription {subscription_id}")

        request_id = self._next_request_id
        self._next_request_id += 1
        self._requests[request_id] = VRFRequest(
            subscription_id=int(subscription_id),
            key_hash=key_hash,
            request_confirmations=int(request_confirmations),
            callback_gas_limit=int(callback_gas_limit),
            num_words=int(num_words),
            consumer=consumer,
        )
        self._log_event("RandomWordsRequested", {
            "keyHash": key_hash,
            "requestId": request_id,
            "preSeed": request_id + 100,
            "subId": int(subscription_id),
            "minimumRequestConfirmations": int(request_confirmations),
            "callbackGasLimit": int(callback_gas_limit),
            "numWords": int(num_words),
        })

        if self.auto_fulfill_delay is not None:
            task = asyncio.create_task(self._deliver_later(request_id, self.auto_fulfill_delay))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return request_id

    def has_request(self, request_id: int) -> bool:
        return int(request_id) in self._requests

    @property
    def last_request_id(self) -> int:
        return self._next_request_id - 1

    @staticmethod
    def derive_words(request_id: int, num_words: int) -> List[int]:
        """keccak256(abi.encode(requestId, i)) for each word."""
        return [
            int.from_bytes(Web3.solidity_keccak(["uint256", "uint256"], [request_id, i]), "big")
            for i in range(num_words)
        ]

    async def fulfill_random_words(
        self,
        request_id: int,
        consumer: RandomnessConsumer,
        words: Optional[Sequence[int]] = None,
    ) -> bool:
        """Deliver words to ``consumer``. Returns whether the consumer accepted them."""
        request = self._requests.get(int(request_id))
        if request is None:
            raise NonexistentRequest(int(request_id))

        sub = self._get_subscription(request.subscription_id)
        if consumer not in sub.consumers:
            raise InvalidConsumer(f"consumer not registered on subscription {request.subscription_id}")

        if words is None:
            words = self.derive_words(int(request_id), request.num_words)
        elif len(words) != request.num_words:
            raise MockVRFError(f"expected {request.num_words} random words, got {len(words)}")

        payment = self.base_fee + request.callback_gas_limit * self.gas_price_link
        if sub.balance < payment:
            raise InsufficientBalance(f"subscription {request.subscription_id} holds {sub.balance}, needs {payment}")

        sub.balance -= payment
        del self._requests[int(request_id)]

        success = True
        try:
            await consumer.fulfill_random_words(int(request_id), list(words))
        except Exception as exc:
            # the coordinator reports the consumer's failure instead of reverting
            logger.warning("Consumer rejected fulfilment of request %s: %s", request_id, exc)
            success = False

        self._log_event("RandomWordsFulfilled", {
            "requestId": int(request_id),
            "outputSeed": int(request_id),
            "payment": payment,
            "success": success,
        })
        return success

    async def _deliver_later(self, request_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        request = self._requests.get(request_id)
        if request is None:
            return
        try:
            await self.fulfill_random_words(request_id, request.consumer)
        except MockVRFError as exc:
            logger.error("Automatic fulfilment of request %s failed: %s", request_id, exc)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _log_event(self, name: str, args: Dict[str, Any]) -> None:
        self.events.append((name, args))
        logger.debug("[MockVRFCoordinator] %s %s", name, args)


class InMemoryLedger:
    """Settlement layer for development chains.

    Entry fees booked by the raffle are credited to ``treasury``; payouts
    are drawn from it.
    """

    def __init__(self, treasury: str = "raffle") -> None:
        self.treasury = treasury
        self._balances: Dict[str, int] = defaultdict(int)
        self._rejected: Set[str] = set()
        self.transfers: List[Tuple[str, int]] = []

    def record_entry(self, participant: str, amount: int) -> None:
        self.deposit(self.treasury, int(amount))

    def deposit(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("deposit amount must not be negative")
        self._balances[account] += amount

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def reject_transfers_to(self, recipient: str) -> None:
        self._rejected.add(recipient)

    def accept_transfers_to(self, recipient: str) -> None:
        self._rejected.discard(recipient)

    async def transfer(self, recipient: str, amount: int) -> bool:
        if recipient in self._rejected:
            logger.warning("Ledger rejected transfer of %s to %s", amount, recipient)
            return False
        if self._balances[self.treasury] < amount:
            logger.warning("Ledger treasury holds %s, cannot transfer %s", self._balances[self.treasury], amount)
            return False
        self._balances[self.treasury] -= amount
        self._balances[recipient] += amount
        self.transfers.append((recipient, amount))
        logger.info("Ledger transferred %s to %s", amount, recipient)
        return True
