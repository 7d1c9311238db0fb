import dataclasses
import json

import pytest

from vrf_raffle.lottery.models import RoundConfig
from vrf_raffle.utils.config import (
    build_round_config,
    default_config_file,
    get_config_value,
    get_network_name,
    is_development_chain,
    load_config,
)

from tests.conftest import KEY_HASH


def test_round_config_defaults_for_local_chain():
    config = build_round_config({"network": {"chain_id": 31337}}, subscription_id=1)

    assert config.entrance_fee == 10**16
    assert config.interval == 30
    assert config.callback_gas_limit == 500000
    assert config.request_confirmations == 3
    assert config.num_words == 1
    assert config.subscription_id == 1
    assert config.key_hash == KEY_HASH


def test_round_config_from_string_values():
    config = build_round_config({
        "network": {"chain_id": "11155111"},
        "raffle": {"entrance_fee_wei": "250", "interval": "60"},
        "vrf": {"subscription_id": "1234", "callback_gas_limit": "100000"},
    })

    assert config.entrance_fee == 250
    assert config.interval == 60
    assert config.subscription_id == 1234
    assert config.callback_gas_limit == 100000


def test_round_config_rejects_extra_words():
    with pytest.raises(ValueError):
        build_round_config({"vrf": {"num_words": 2}}, subscription_id=1)


def test_round_config_requires_key_hash_on_unknown_chain():
    with pytest.raises(ValueError):
        build_round_config({"network": {"chain_id": 5}}, subscription_id=1)


def test_round_config_is_immutable():
    config = RoundConfig(entrance_fee=1, interval=1, key_hash=KEY_HASH, subscription_id=1, callback_gas_limit=1)

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.entrance_fee = 2


def test_round_config_rejects_negative_fee():
    with pytest.raises(ValueError):
        RoundConfig(entrance_fee=-1, interval=1, key_hash=KEY_HASH, subscription_id=1, callback_gas_limit=1)


def test_load_config_merges_file_and_environment(tmp_path, monkeypatch):
    config_file = tmp_path / "raffle.conf"
    config_file.write_text(json.dumps({"raffle": {"interval": 30, "entrance_fee": "0.01"}}))
    monkeypatch.setenv("RAFFLE_INTERVAL", "90")
    monkeypatch.setenv("VRF_SUBSCRIPTION_ID", "7")

    config = load_config(str(config_file))

    assert config["raffle"]["interval"] == "90"
    assert config["raffle"]["entrance_fee"] == "0.01"
    assert config["vrf"]["subscription_id"] == "7"
    assert build_round_config(config).interval == 90


def test_load_config_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("SERVER_PORT", "7000")

    config = load_config(str(tmp_path / "missing.conf"))

    assert get_config_value(config, "server.port") == "7000"
    assert get_config_value(config, "server.missing", "x") == "x"


def test_network_names():
    assert get_network_name({"network": {"chain_id": 11155111}}) == "sepolia"
    assert get_network_name({"network": {"name": "localhost", "chain_id": 1337}}) == "localhost"
    assert is_development_chain({})
    assert not is_development_chain({"network": {"chain_id": 11155111}})


def test_default_config_file_prefers_working_directory(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "raffle.conf").write_text(json.dumps({"raffle": {"interval": 45}}))
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RAFFLE_CONFIG_FILE", raising=False)
    monkeypatch.delenv("RAFFLE_INTERVAL", raising=False)

    assert default_config_file() == tmp_path / "config" / "raffle.conf"
    assert load_config()["raffle"]["interval"] == 45
