"""Interfaces of the external collaborators the raffle engine drives."""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable


@runtime_checkable
class RandomnessCoordinator(Protocol):
    """Asynchronous randomness oracle.

    Accepts a request on behalf of ``consumer`` and later delivers exactly
    one set of words for it by calling the consumer's
    ``fulfill_random_words(request_id, words)``.
    """

    async def request_random_words(
        self,
        key_hash: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
        *,
        consumer: Any,
    ) -> int:
        ...


@runtime_checkable
class Settlement(Protocol):
    """Ledger that holds the pot and moves value to winners."""

    def record_entry(self, participant: str, amount: int) -> None:
        """Book an entry fee into the pot. Raising rejects the entry."""
        ...

    async def transfer(self, recipient: str, amount: int) -> bool:
        ...


@runtime_checkable
class RandomnessConsumer(Protocol):
    async def fulfill_random_words(self, request_id: int, random_words: Sequence[int]) -> None:
        ...
