"""
Tests for relay configuration loading and validation.
"""
import logging

import pytest

from intent_relayer.config import load_config, parse_config, resolve_keys, validate_rpc_url
from intent_relayer.exceptions import ConfigError

from conftest import DIRECTION, DST_NAME, SRC_NAME, TEST_FINALIZER_KEY, TEST_PRIV_KEY, make_config_data

EXAMPLE_TOML = """
[chains.sepolia]
chain_id = 11155111
rpc_url = "https://sepolia.example.com"
intent_commitment = "0x1111111111111111111111111111111111111111"
message_inbox = "0x2222222222222222222222222222222222222222"
settlement = "0x3333333333333333333333333333333333333333"

[chains.zksync]
chain_id = 300
rpc_url = "https://zksync.example.com"
intent_commitment = "0x1111111111111111111111111111111111111111"
message_inbox = "0x2222222222222222222222222222222222222222"
settlement = "0x3333333333333333333333333333333333333333"
finalize_interval = 30

[chains.zksync.gas_limits]
submit = 2000000

[[directions]]
source = "sepolia"
destination = "zksync"
required_confirmations = 3
poll_interval = 15

[backlog]
direction = "sepolia->zksync"
rate_limit_seconds = 1
"""


@pytest.mark.parametrize("url", [
    "https://rpc.example.com",
    "http://localhost:8545",
    "http://127.0.0.1:8545",
])
def test_validate_rpc_url_accepts(url):
    assert validate_rpc_url(url) == url


@pytest.mark.parametrize("url", ["http://rpc.example.com", "ws://localhost:8546", "rpc.example.com"])
def test_validate_rpc_url_rejects(url):
    with pytest.raises(ValueError):
        validate_rpc_url(url)


def test_validate_rpc_url_allow_insecure():
    assert validate_rpc_url("http://rpc.internal:8545", allow_insecure=True)


def test_load_config_from_toml(tmp_path):
    path = tmp_path / "relay.toml"
    path.write_text(EXAMPLE_TOML)
    config = load_config(str(path), env={})

    assert set(config.chains) == {SRC_NAME, DST_NAME}
    zksync = config.chain(DST_NAME)
    assert zksync.name == DST_NAME
    assert zksync.finalize_interval == 30
    assert zksync.gas_limits.submit == 2_000_000
    assert zksync.gas_limits.finalize == 300_000
    direction = config.direction(DIRECTION)
    assert direction.required_confirmations == 3
    assert direction.confirmation_timeout == 300
    assert config.backlog.rate_limit_seconds == 1
    assert [c.name for c in config.destination_chains()] == [DST_NAME]


def test_load_config_from_env_var(tmp_path):
    path = tmp_path / "relay.toml"
    path.write_text(EXAMPLE_TOML)
    config = load_config(env={"RELAYER_CONFIG": str(path)})
    assert config.chain(SRC_NAME).chain_id == 11155111


def test_load_config_missing_path():
    with pytest.raises(ConfigError, match="No configuration file"):
        load_config(env={})


def test_load_config_file_not_found(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "missing.toml"), env={})


def test_load_config_invalid_toml(tmp_path):
    path = tmp_path / "relay.toml"
    path.write_text("[chains\n")
    with pytest.raises(ConfigError, match="not valid TOML"):
        load_config(str(path), env={})


def test_env_overrides():
    env = {
        "RELAYER_RPC_ZKSYNC": "http://localhost:3050",
        "RELAYER_STATE_PATH": "/tmp/relay-state.json",
        "RELAYER_LEDGER_PATH": "/tmp/relay-ledger.json",
    }
    config = parse_config(make_config_data(), env)
    assert config.chain(DST_NAME).rpc_url == "http://localhost:3050"
    assert config.storage.state_path == "/tmp/relay-state.json"
    assert config.storage.ledger_path == "/tmp/relay-ledger.json"


def test_unknown_chain_in_direction():
    data = make_config_data(directions=[
        {"source": SRC_NAME, "destination": "mars", "required_confirmations": 1},
    ])
    with pytest.raises(ConfigError, match="unknown chain 'mars'"):
        parse_config(data, env={})


def test_direction_to_itself():
    data = make_config_data(directions=[
        {"source": SRC_NAME, "destination": SRC_NAME, "required_confirmations": 1},
    ])
    with pytest.raises(ConfigError, match="two different chains"):
        parse_config(data, env={})


def test_duplicate_direction():
    direction = {"source": SRC_NAME, "destination": DST_NAME, "required_confirmations": 1}
    with pytest.raises(ConfigError, match="configured twice"):
        parse_config(make_config_data(directions=[direction, dict(direction)]), env={})


def test_missing_contract_address():
    data = make_config_data()
    del data["chains"][DST_NAME]["message_inbox"]
    with pytest.raises(ConfigError, match="no message_inbox"):
        parse_config(data, env={})


def test_disabled_direction_does_not_need_contracts():
    data = make_config_data()
    del data["chains"][SRC_NAME]["message_inbox"]
    data["directions"][1]["enabled"] = False
    config = parse_config(data, env={})
    assert [d.name for d in config.enabled_directions()] == [DIRECTION]


def test_invalid_address():
    data = make_config_data()
    data["chains"][SRC_NAME]["settlement"] = "0x1234"
    with pytest.raises(ConfigError, match="Invalid address"):
        parse_config(data, env={})


def test_insecure_rpc_rejected():
    data = make_config_data()
    data["chains"][SRC_NAME]["rpc_url"] = "http://rpc.example.com"
    with pytest.raises(ConfigError, match="https"):
        parse_config(data, env={})


def test_negative_confirmations_rejected():
    data = make_config_data()
    data["directions"][0]["required_confirmations"] = -1
    with pytest.raises(ConfigError):
        parse_config(data, env={})


def test_zero_confirmations_warns(caplog):
    data = make_config_data()
    data["directions"][0]["required_confirmations"] = 0
    with caplog.at_level(logging.WARNING, logger="intent_relayer.config"):
        parse_config(data, env={})
    assert "0 confirmations" in caplog.text


def test_unknown_backlog_direction():
    data = make_config_data(backlog={"direction": "a->b"})
    with pytest.raises(ConfigError, match="Backlog direction"):
        parse_config(data, env={})


def test_direction_lookup_error():
    config = parse_config(make_config_data(), env={})
    with pytest.raises(ConfigError, match="Available directions"):
        config.direction("a->b")


def test_resolve_keys():
    config = parse_config(make_config_data(), env={})
    assert resolve_keys(config, {"TSS_PRIVATE_KEY": TEST_PRIV_KEY}) == (TEST_PRIV_KEY, TEST_PRIV_KEY)
    assert resolve_keys(
        config, {"TSS_PRIVATE_KEY": TEST_PRIV_KEY, "FINALIZER_PRIVATE_KEY": TEST_FINALIZER_KEY}
    ) == (TEST_PRIV_KEY, TEST_FINALIZER_KEY)


def test_resolve_keys_missing_tss_key():
    config = parse_config(make_config_data(), env={})
    with pytest.raises(ConfigError, match="TSS_PRIVATE_KEY"):
        resolve_keys(config, {})
