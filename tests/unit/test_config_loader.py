"""Tests for the config_loader module."""

from pathlib import Path

import pytest
import yaml
from peg_arbitrage.config_loader import (
    build_config,
    load_config,
    load_yaml_config,
    require_execution_contracts,
    require_rpc_url,
)
from peg_arbitrage.exceptions import ConfigurationError, MissingAddressError

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "configs" / "peg_arbitrage.example.yaml"


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="bot.yaml"):
        path = tmp_path / name
        if isinstance(data, str):
            path.write_text(data)
        else:
            path.write_text(yaml.safe_dump(data))
        return path

    return _write


def test_load_yaml_config_valid(write_config, config_dict):
    """Test loading a valid YAML configuration."""
    path = write_config(config_dict)
    assert load_yaml_config(path) == config_dict


def test_load_yaml_config_file_not_found():
    """Test loading config from non-existent file."""
    with pytest.raises(ConfigurationError, match="Configuration file not found"):
        load_yaml_config("/non/existent/file.yaml")


def test_load_yaml_config_empty_file(write_config):
    """Test loading config from empty file."""
    path = write_config("")
    with pytest.raises(ConfigurationError, match="Empty configuration file"):
        load_yaml_config(path)


def test_load_yaml_config_invalid_yaml(write_config):
    path = write_config("tokens: [unclosed")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_yaml_config(path)


def test_load_yaml_config_not_a_mapping(write_config):
    path = write_config("- just\n- a list\n")
    with pytest.raises(ConfigurationError, match="must be a mapping"):
        load_yaml_config(path)


def test_build_config_wraps_validation_errors(config_dict):
    config_dict["slippage_bps"] = -1
    with pytest.raises(ConfigurationError) as exc_info:
        build_config(config_dict)
    errors = exc_info.value.details["errors"]
    assert any("lippage" in str(error["loc"]) for error in errors)


def test_load_config_reads_rpc_url_from_env(write_config, config_dict, monkeypatch):
    del config_dict["rpc_url"]
    config_dict["rpc_url_env"] = "PEG_TEST_RPC_URL"
    monkeypatch.setenv("PEG_TEST_RPC_URL", "https://rpc.example.org")
    path = write_config(config_dict)

    config = load_config(path, env_file=path.parent / "missing.env")
    assert config.rpc_url == "https://rpc.example.org"


def test_load_config_reads_env_file(write_config, config_dict, monkeypatch):
    del config_dict["rpc_url"]
    config_dict["rpc_url_env"] = "PEG_TEST_DOTENV_RPC"
    monkeypatch.delenv("PEG_TEST_DOTENV_RPC", raising=False)
    path = write_config(config_dict)
    env_file = path.parent / ".env"
    env_file.write_text("PEG_TEST_DOTENV_RPC=https://dotenv.example.org\n")

    try:
        config = load_config(path, env_file=env_file)
    finally:
        monkeypatch.delenv("PEG_TEST_DOTENV_RPC", raising=False)
    assert config.rpc_url == "https://dotenv.example.org"


def test_load_config_file_value_wins_over_env(write_config, config_dict, monkeypatch):
    monkeypatch.setenv("ETHEREUM_RPC_URL", "https://env.example.org")
    path = write_config(config_dict)
    config = load_config(path, env_file=path.parent / "missing.env")
    assert config.rpc_url == "http://localhost:8545"


def test_require_rpc_url(bot_config):
    assert require_rpc_url(bot_config) == "http://localhost:8545"

    with pytest.raises(ConfigurationError, match="not set"):
        require_rpc_url(bot_config.model_copy(update={"rpc_url": None}))

    with pytest.raises(ConfigurationError, match="HTTP"):
        require_rpc_url(bot_config.model_copy(update={"rpc_url": "ws://localhost"}))


def test_require_execution_contracts(bot_config, config_dict):
    require_execution_contracts(bot_config)

    del config_dict["contracts"]["arbitrage_contract"]
    with pytest.raises(MissingAddressError) as exc_info:
        require_execution_contracts(build_config(config_dict))
    assert exc_info.value.field == "contracts.arbitrage_contract"


def test_example_config_is_valid(monkeypatch):
    monkeypatch.delenv("ETHEREUM_RPC_URL", raising=False)
    config = build_config(load_yaml_config(EXAMPLE_CONFIG))
    assert config.base.symbol == "USDC"
    assert config.base.decimals == 6
    assert config.synth.decimals == 18
    assert config.relay_mode == "flashbots"
