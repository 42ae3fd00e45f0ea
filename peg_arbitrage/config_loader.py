"""
Configuration loading for the peg arbitrage bot.

Reads a YAML file, overlays environment variables from ``.env`` and validates
the result against :class:`~peg_arbitrage.config_schema.BotConfig`.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .config_schema import BotConfig
from .exceptions import ConfigurationError, MissingAddressError


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")

    return config_dict


def build_config(config_dict: Dict[str, Any]) -> BotConfig:
    """
    Validate a plain configuration mapping.

    Raises:
        ConfigurationError: If the mapping fails schema validation
    """
    try:
        return BotConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}",
            {"errors": e.errors(include_url=False)},
        )


def load_config(
    config_path: Union[str, Path], env_file: Optional[Union[str, Path]] = None
) -> BotConfig:
    """
    Load, resolve and validate the bot configuration.

    ``rpc_url`` falls back to the environment variable named by
    ``rpc_url_env`` when the file does not set it.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    load_dotenv(env_file)
    config_dict = load_yaml_config(config_path)
    config = build_config(config_dict)

    if not config.rpc_url:
        rpc_url = os.getenv(config.rpc_url_env)
        if rpc_url:
            config = config.model_copy(update={"rpc_url": rpc_url})

    return config


def require_rpc_url(config: BotConfig) -> str:
    """Return the RPC URL or fail the way every startup check fails."""
    if not config.rpc_url:
        raise ConfigurationError(
            f"RPC URL environment variable {config.rpc_url_env} not set and no rpc_url in config"
        )
    if not config.rpc_url.startswith("http"):
        raise ConfigurationError("rpc_url must be a valid HTTP(S) URL")
    return config.rpc_url


def require_execution_contracts(config: BotConfig) -> None:
    """Check that every contract the execution pipeline calls is configured."""
    if not config.contracts.arbitrage_contract:
        raise MissingAddressError(
            "contracts.arbitrage_contract is required for execution",
            field="contracts.arbitrage_contract",
        )
