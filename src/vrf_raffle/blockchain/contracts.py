"""
VRF coordinator and raffle consumer contract interfaces
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from web3 import Web3

from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

# Subset of the VRF coordinator V2 ABI used by the raffle operator.
VRF_COORDINATOR_V2_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "requestRandomWords",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "keyHash", "type": "bytes32"},
            {"name": "subId", "type": "uint64"},
            {"name": "minimumRequestConfirmations", "type": "uint16"},
            {"name": "callbackGasLimit", "type": "uint32"},
            {"name": "numWords", "type": "uint32"},
        ],
        "outputs": [{"name": "requestId", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getSubscription",
        "stateMutability": "view",
        "inputs": [{"name": "subId", "type": "uint64"}],
        "outputs": [
            {"name": "balance", "type": "uint96"},
            {"name": "reqCount", "type": "uint64"},
            {"name": "owner", "type": "address"},
            {"name": "consumers", "type": "address[]"},
        ],
    },
    {
        "type": "event",
        "name": "RandomWordsRequested",
        "anonymous": False,
        "inputs": [
            {"name": "keyHash", "type": "bytes32", "indexed": True},
            {"name": "requestId", "type": "uint256", "indexed": False},
            {"name": "preSeed", "type": "uint256", "indexed": False},
            {"name": "subId", "type": "uint64", "indexed": True},
            {"name": "minimumRequestConfirmations", "type": "uint16", "indexed": False},
            {"name": "callbackGasLimit", "type": "uint32", "indexed": False},
            {"name": "numWords", "type": "uint32", "indexed": False},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
]

# On-chain consumer the operator requests randomness through. The coordinator
# calls back into it and it republishes the words as RandomWordsDelivered.
RAFFLE_CONSUMER_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "requestRandomWords",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "keyHash", "type": "bytes32"},
            {"name": "subId", "type": "uint64"},
            {"name": "minimumRequestConfirmations", "type": "uint16"},
            {"name": "callbackGasLimit", "type": "uint32"},
            {"name": "numWords", "type": "uint32"},
        ],
        "outputs": [{"name": "requestId", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "RandomWordsDelivered",
        "anonymous": False,
        "inputs": [
            {"name": "requestId", "type": "uint256", "indexed": True},
            {"name": "randomWords", "type": "uint256[]", "indexed": False},
        ],
    },
]

RANDOM_WORDS_DELIVERED_TOPIC = Web3.to_hex(Web3.keccak(text="RandomWordsDelivered(uint256,uint256[])"))


def load_coordinator_abi(abi_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return the coordinator ABI from ``abi_path`` if given, else the bundled fragment."""
    if not abi_path:
        return VRF_COORDINATOR_V2_ABI
    path = Path(abi_path)
    logger.info("Loading coordinator ABI from %s", path)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    # compiler artifacts wrap the ABI
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]
    return data


def get_request_id_from_receipt(contract, receipt) -> int:
    """Decode the request id from a ``RandomWordsRequested`` log in ``receipt``."""
    events = contract.events.RandomWordsRequested().process_receipt(receipt)
    if not events:
        raise ValueError("RandomWordsRequested not found in transaction receipt")
    return int(events[0]["args"]["requestId"])


def decode_delivered_words(contract, raw_logs) -> List[Tuple[int, List[int]]]:
    """Decode ``RandomWordsDelivered`` logs into ``(request_id, words)`` pairs, in chain order."""
    event = contract.events.RandomWordsDelivered()
    delivered: List[Tuple[int, List[int]]] = []
    for raw in sorted(raw_logs, key=lambda log: (log["blockNumber"], log["logIndex"])):
        decoded = event.process_log(raw)
        delivered.append((int(decoded["args"]["requestId"]), [int(w) for w in decoded["args"]["randomWords"]]))
    return delivered
