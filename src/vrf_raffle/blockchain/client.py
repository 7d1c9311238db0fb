"""Blockchain client for the raffle operator.

Acts as both live collaborators of the raffle: the settlement layer
(value transfers from the operator account) and the randomness
coordinator client. Requests go through the raffle consumer contract,
which the coordinator calls back; its ``RandomWordsDelivered`` logs are
read back by ``get_fulfillments``.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3
from web3.contract import Contract

from vrf_raffle.blockchain.contracts import (
    RAFFLE_CONSUMER_ABI,
    RANDOM_WORDS_DELIVERED_TOPIC,
    decode_delivered_words,
    get_request_id_from_receipt,
    load_coordinator_abi,
)
from vrf_raffle.utils.config import NETWORK_CONFIG, get_chain_id
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class BlockchainClient:
    """Async-friendly wrapper around web3.py for raffle settlement and VRF requests."""

    def __init__(self, config: Dict[str, Any]):
        self._config = config

        blockchain_cfg = config.get("blockchain", {})
        vrf_cfg = config.get("vrf", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://127.0.0.1:8545")
        self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        self.chain_id: int = get_chain_id(config)
        self.tx_timeout: int = int(blockchain_cfg.get("tx_timeout", 180))
        self.coordinator_address: Optional[str] = (
            vrf_cfg.get("coordinator_address") or NETWORK_CONFIG.get(self.chain_id, {}).get("vrf_coordinator")
        )
        self._coordinator_abi_path: Optional[str] = vrf_cfg.get("coordinator_abi")
        self.consumer_address: Optional[str] = vrf_cfg.get("consumer_address")

        self._w3: Optional[Web3] = None
        self._coordinator: Optional[Contract] = None
        self._consumer: Optional[Contract] = None

        private_key = blockchain_cfg.get("operator_private_key")
        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            logger.info("Operator account loaded: %s", self.account.address)

        gas_price_setting = blockchain_cfg.get("gas_price")
        self._gas_price_override: Optional[int] = None
        if gas_price_setting:
            try:
                self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")
            except (ArithmeticError, ValueError) as exc:
                logger.warning("Unable to parse gas price '%s': %s", gas_price_setting, exc)

        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))
        # serialises nonce selection between payouts and VRF requests
        self._tx_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Establish the RPC connection and bind the coordinator contract."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        connected = await asyncio.to_thread(self._w3.is_connected)
        if not connected:
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")

        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        try:
            actual_chain_id = await asyncio.to_thread(lambda: self._w3.eth.chain_id)
            if actual_chain_id != self.chain_id:
                logger.warning(f"Chain ID mismatch: expected {self.chain_id}, got {actual_chain_id}")
        except Exception as exc:
            logger.warning(f"Could not verify chain ID: {exc}")

        if not self.coordinator_address or not self.consumer_address:
            logger.warning("VRF coordinator or consumer address not configured; randomness requests disabled")
            return

        abi = load_coordinator_abi(self._coordinator_abi_path)
        address = Web3.to_checksum_address(self.coordinator_address)
        self._coordinator = self._w3.eth.contract(address=address, abi=abi)
        logger.info("VRF coordinator bound at %s", address)

        consumer_address = Web3.to_checksum_address(self.consumer_address)
        self._consumer = self._w3.eth.contract(address=consumer_address, abi=RAFFLE_CONSUMER_ABI)
        logger.info("Raffle consumer bound at %s", consumer_address)

    async def close(self) -> None:
        """Tear down references; HTTP provider closes automatically."""
        self._coordinator = None
        self._consumer = None
        self._w3 = None

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    def _ensure_coordinator(self) -> Contract:
        if not self._coordinator:
            raise RuntimeError("VRF coordinator not initialised")
        return self._coordinator

    def _ensure_consumer(self) -> Contract:
        if not self._consumer:
            raise RuntimeError("Raffle consumer contract not initialised")
        return self._consumer

    def _ensure_account(self):
        if not self.account:
            raise ValueError("Operator account not configured")
        return self.account

    async def _sign_and_send(self, build_txn: Callable[[Web3, int, int], Dict[str, Any]]) -> str:
        """Build a transaction with the next nonce, sign it and broadcast it."""
        w3 = self._ensure_web3()
        account = self._ensure_account()

        def _send() -> str:
            gas_price = self._gas_price_override or w3.eth.gas_price
            nonce = w3.eth.get_transaction_count(account.address, "pending")
            txn = build_txn(w3, nonce, gas_price)
            signed = account.sign_transaction(txn)
            # eth-account renamed rawTransaction to raw_transaction
            raw = getattr(signed, "raw_transaction", None)
            if raw is None:
                raw = signed.rawTransaction
            tx_hash = w3.eth.send_raw_transaction(raw)
            return Web3.to_hex(tx_hash)

        async with self._tx_lock:
            return await asyncio.to_thread(_send)

    async def wait_for_transaction(self, tx_hash: str, timeout: Optional[int] = None) -> Dict[str, Any]:
        w3 = self._ensure_web3()

        def _wait():
            return w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout or self.tx_timeout)

        return await asyncio.to_thread(_wait)

    # =============== SETTLEMENT ===============

    def record_entry(self, participant: str, amount: int) -> None:
        # entry value is received by the operator account on chain
        logger.debug("Entry of %s wei booked for %s", amount, participant)

    async def transfer(self, recipient: str, amount: int) -> bool:
        """Send ``amount`` wei from the operator account to ``recipient``."""
        account = self._ensure_account()
        to_address = Web3.to_checksum_address(recipient)

        def _build(w3: Web3, nonce: int, gas_price: int) -> Dict[str, Any]:
            txn = {
                "from": account.address,
                "to": to_address,
                "value": int(amount),
                "nonce": nonce,
                "gasPrice": gas_price,
                "chainId": self.chain_id,
            }
            txn["gas"] = int(w3.eth.estimate_gas(txn) * self._gas_multiplier)
            return txn

        tx_hash = await self._sign_and_send(_build)
        logger.info("Sent payout %s of %s wei to %s", tx_hash, amount, recipient)
        receipt = await self.wait_for_transaction(tx_hash)
        success = int(receipt["status"]) == 1
        if not success:
            logger.error("Payout transaction %s reverted", tx_hash)
        return success

    # =============== RANDOMNESS ===============

    async def request_random_words(
        self,
        key_hash: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
        *,
        consumer: Any = None,
    ) -> int:
        """Request words through the consumer contract; the chain identifies the requester."""
        coordinator = self._ensure_coordinator()
        contract = self._ensure_consumer()
        account = self._ensure_account()
        call = contract.functions.requestRandomWords(
            Web3.to_bytes(hexstr=key_hash),
            int(subscription_id),
            int(request_confirmations),
            int(callback_gas_limit),
            int(num_words),
        )

        def _build(w3: Web3, nonce: int, gas_price: int) -> Dict[str, Any]:
            gas_estimate = call.estimate_gas({"from": account.address})
            return call.build_transaction(
                {
                    "from": account.address,
                    "gas": int(gas_estimate * self._gas_multiplier),
                    "gasPrice": gas_price,
                    "nonce": nonce,
                    "chainId": self.chain_id,
                }
            )

        tx_hash = await self._sign_and_send(_build)
        logger.info("Sent requestRandomWords transaction %s", tx_hash)
        receipt = await self.wait_for_transaction(tx_hash)
        if int(receipt["status"]) != 1:
            raise RuntimeError(f"requestRandomWords transaction {tx_hash} reverted")
        return get_request_id_from_receipt(coordinator, receipt)

    async def get_latest_block(self) -> int:
        w3 = self._ensure_web3()
        return int(await asyncio.to_thread(lambda: w3.eth.block_number))

    async def get_fulfillments(self, from_block: int) -> Tuple[List[Tuple[int, List[int]]], int]:
        """Words delivered to the consumer contract since ``from_block``.

        Returns the decoded ``(request_id, words)`` pairs and the last block scanned.
        """
        w3 = self._ensure_web3()
        consumer = self._ensure_consumer()

        def _fetch() -> Tuple[List[Tuple[int, List[int]]], int]:
            latest = int(w3.eth.block_number)
            if from_block > latest:
                return [], from_block - 1
            raw_logs = w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": latest,
                    "address": consumer.address,
                    "topics": [RANDOM_WORDS_DELIVERED_TOPIC],
                }
            )
            return decode_delivered_words(consumer, raw_logs), latest

        delivered, last_block = await asyncio.to_thread(_fetch)
        if delivered:
            logger.info("Found %d randomness deliveries up to block %s", len(delivered), last_block)
        return delivered, last_block

    # =============== STATUS ===============

    async def health_check(self) -> Dict[str, Any]:
        try:
            latest_block = await self.get_latest_block()
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:
            logger.exception("Blockchain health check failed")
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "coordinator": self.coordinator_address,
            "consumer": self.consumer_address,
            "operator": self.account.address if self.account else None,
        }
