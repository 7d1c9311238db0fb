"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from vrf_raffle.lottery.models import DEFAULT_REQUEST_CONFIRMATIONS, NUM_WORDS, RoundConfig
from vrf_raffle.utils.common import parse_ether
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_FILE_NAME = Path("config") / "raffle.conf"
# <root>/src/vrf_raffle/utils/config.py in a source checkout
SOURCE_CONFIG_FILE = Path(__file__).resolve().parents[3] / CONFIG_FILE_NAME

DEVELOPMENT_CHAINS = ("hardhat", "localhost")

# Per-chain defaults; explicit configuration values take precedence.
NETWORK_CONFIG: Dict[int, Dict[str, Any]] = {
    11155111: {
        "name": "sepolia",
        "vrf_coordinator": "0x8103B0A8A00be2DDC778e6e7eaa21791Cd364625",
        "entrance_fee": "0.01",
        "key_hash": "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c",
        "subscription_id": 0,
        "callback_gas_limit": 500000,
        "interval": 30,
    },
    31337: {
        "name": "hardhat",
        "entrance_fee": "0.01",
        "key_hash": "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c",
        "callback_gas_limit": 500000,
        "interval": 30,
    },
}

_ENV_SECTIONS = {
    "RAFFLE_": "raffle",
    "VRF_": "vrf",
    "BLOCKCHAIN_": "blockchain",
    "OPERATOR_": "operator",
    "SERVER_": "server",
    "NETWORK_": "network",
    "MOCKS_": "mocks",
    "WATCHER_": "watcher",
}


def default_config_file() -> Path:
    """``config/raffle.conf`` under the working directory, else the one in the source checkout."""
    local = Path.cwd() / CONFIG_FILE_NAME
    if local.exists():
        return local
    return SOURCE_CONFIG_FILE


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from files and environment variables"""
    config: Dict[str, Any] = {}

    path = Path(config_file or os.getenv("RAFFLE_CONFIG_FILE") or default_config_file())
    if path.exists():
        with open(path, 'r') as f:
            config.update(json.load(f))
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file {path} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        if key == "RAFFLE_CONFIG_FILE":
            continue
        for prefix, section in _ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def get_chain_id(config: Dict[str, Any]) -> int:
    return int(get_config_value(config, "network.chain_id", 31337))


def get_network_name(config: Dict[str, Any]) -> str:
    configured = get_config_value(config, "network.name")
    if configured:
        return str(configured)
    return NETWORK_CONFIG.get(get_chain_id(config), {}).get("name", "unknown")


def is_development_chain(config: Dict[str, Any]) -> bool:
    return get_network_name(config) in DEVELOPMENT_CHAINS


def build_round_config(config: Dict[str, Any], subscription_id: Optional[int] = None) -> RoundConfig:
    """Build the immutable round configuration from config sections and chain defaults.

    ``raffle.entrance_fee`` is read in ether, ``raffle.entrance_fee_wei`` in wei.
    """
    network = NETWORK_CONFIG.get(get_chain_id(config), {})
    raffle_cfg = config.get("raffle", {})
    vrf_cfg = config.get("vrf", {})

    if raffle_cfg.get("entrance_fee_wei") is not None:
        entrance_fee = int(raffle_cfg["entrance_fee_wei"])
    else:
        entrance_fee = parse_ether(raffle_cfg.get("entrance_fee", network.get("entrance_fee", "0.01")))

    if subscription_id is None:
        subscription_id = int(vrf_cfg.get("subscription_id", network.get("subscription_id", 0)))

    key_hash = vrf_cfg.get("key_hash") or network.get("key_hash")
    if not key_hash:
        raise ValueError("vrf.key_hash is not configured for this network")

    return RoundConfig(
        entrance_fee=entrance_fee,
        interval=int(raffle_cfg.get("interval", network.get("interval", 30))),
        key_hash=str(key_hash),
        subscription_id=int(subscription_id),
        callback_gas_limit=int(vrf_cfg.get("callback_gas_limit", network.get("callback_gas_limit", 500000))),
        request_confirmations=int(vrf_cfg.get("request_confirmations", DEFAULT_REQUEST_CONFIRMATIONS)),
        num_words=int(vrf_cfg.get("num_words", NUM_WORDS)),
    )
