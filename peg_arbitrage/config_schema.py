"""
Configuration schema validation using Pydantic.

Field names are snake_case; every model also accepts the camelCase spelling
(``checkIntervalMs``, ``richThreshold``, ``minProfitUsd``...) so a plain
structured object from another tool can be passed in unchanged.
"""

from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from web3 import Web3

from .amounts import SUPPORTED_TOKEN_DECIMALS
from .types import PoolIdentity, Token

# Chainlink USDC/USD aggregator on Ethereum mainnet
DEFAULT_BASE_ORACLE = "0x8fFfFfd4AfB6115b954Bd326cbe7B4BA576818f6"


def _validate_address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value}")
    return value


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class TokenConfig(_ConfigModel):
    """Token address and precision"""

    address: str
    decimals: int

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        return _validate_address(v)

    @field_validator("decimals")
    @classmethod
    def validate_decimals(cls, v):
        if v not in SUPPORTED_TOKEN_DECIMALS:
            raise ValueError(
                f"decimals must be one of {SUPPORTED_TOKEN_DECIMALS}, got {v}"
            )
        return v


class PoolConfig(_ConfigModel):
    """StableSwap pool address and its coin order by token symbol"""

    address: str
    coins: List[str] = Field(min_length=2, max_length=2)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        return _validate_address(v)


class ContractsConfig(_ConfigModel):
    """Addresses of the issuer, executor and oracle contracts"""

    arbitrage_contract: Optional[str] = None
    minter: Optional[str] = None
    redeemer: Optional[str] = None
    flashloan_pool: Optional[str] = None
    base_oracle: str = DEFAULT_BASE_ORACLE
    native_oracle: Optional[str] = None

    @field_validator(
        "arbitrage_contract",
        "minter",
        "redeemer",
        "flashloan_pool",
        "base_oracle",
        "native_oracle",
    )
    @classmethod
    def validate_addresses(cls, v):
        return _validate_address(v)


class GasEstimatesConfig(_ConfigModel):
    """Per-step gas estimates used by the simulator"""

    flashloan: int = Field(ge=0, default=0)
    swap: int = Field(ge=0, default=80000)
    mint: int = Field(ge=0, default=100000)
    redeem: int = Field(ge=0, default=100000)
    repay: int = Field(ge=0, default=40000)


class BotConfig(_ConfigModel):
    """Complete bot configuration"""

    # Network
    rpc_url: Optional[str] = None
    rpc_url_env: str = "ETHEREUM_RPC_URL"
    chain_id: int = Field(ge=1, default=1)
    private_key_env: str = "SEARCHER_PRIVATE_KEY"

    # Relay
    relay_mode: Literal["flashbots", "public"] = "flashbots"
    relay_url: str = "https://relay.flashbots.net"
    relay_auth_key_env: str = "FLASHBOTS_AUTH_KEY"

    # Tokens and venues
    tokens: Dict[str, TokenConfig]
    base_token: str
    intermediary_token: str
    synth_token: str
    base_pool: PoolConfig
    synth_pool: PoolConfig
    contracts: ContractsConfig = Field(default_factory=ContractsConfig)

    # Monitor
    check_interval_ms: int = Field(ge=100, default=60000)
    rich_threshold: Decimal = Decimal("1.01")
    cheap_threshold: Decimal = Decimal("0.99")

    # Oracle
    tolerance_band_percent: Decimal = Field(gt=0, lt=100, default=Decimal("1"))
    oracle_cache_ttl_seconds: float = Field(ge=0, default=60)
    oracle_stale_seconds: int = Field(ge=1, default=86400)
    high_impact_deviation_percent: Decimal = Field(ge=0, default=Decimal("0.5"))
    severe_depeg_percent: Decimal = Field(gt=0, default=Decimal("5"))

    # Simulator and execution gate
    flashloan_amounts: List[Decimal] = Field(
        default_factory=lambda: [Decimal("1000"), Decimal("5000"), Decimal("10000")]
    )
    min_profit_usd: Decimal = Field(gt=0, default=Decimal("2"))
    slippage_bps: int = Field(ge=0, lt=10000, default=5)
    flashloan_fee_bps: Optional[int] = Field(ge=0, lt=10000, default=None)
    mint_fee_bps: Optional[int] = Field(ge=0, lt=10000, default=None)
    redeem_fee_bps: Optional[int] = Field(ge=0, lt=10000, default=None)
    gas_estimates: GasEstimatesConfig = Field(default_factory=GasEstimatesConfig)
    native_price_usd: Optional[Decimal] = Field(gt=0, default=None)

    # Transaction building
    gas_limit: int = Field(ge=21000, default=600000)
    max_priority_fee_gwei: Decimal = Field(ge=0, default=Decimal("2"))
    base_fee_buffer_gwei: Decimal = Field(ge=0, default=Decimal("20"))
    inclusion_blocks: int = Field(ge=1, le=25, default=3)

    # Observability
    metrics_port: Optional[int] = Field(ge=1, le=65535, default=None)

    @field_validator("flashloan_amounts")
    @classmethod
    def validate_flashloan_amounts(cls, v):
        if not v:
            raise ValueError("flashloan_amounts cannot be empty")
        for amount in v:
            if amount <= 0:
                raise ValueError(f"flashloan amount must be positive: {amount}")
        return v

    @model_validator(mode="after")
    def validate_thresholds(self):
        if not self.cheap_threshold < self.rich_threshold:
            raise ValueError("cheap_threshold must be less than rich_threshold")
        if not self.cheap_threshold <= Decimal(1) <= self.rich_threshold:
            raise ValueError("cheap_threshold and rich_threshold must straddle 1.0")
        return self

    @model_validator(mode="after")
    def validate_token_references(self):
        for role in ("base_token", "intermediary_token", "synth_token"):
            symbol = getattr(self, role)
            if symbol not in self.tokens:
                raise ValueError(f"{role} '{symbol}' not found in tokens config")

        expected = {
            "base_pool": {self.base_token, self.intermediary_token},
            "synth_pool": {self.intermediary_token, self.synth_token},
        }
        for pool_name, symbols in expected.items():
            pool: PoolConfig = getattr(self, pool_name)
            if set(pool.coins) != symbols:
                raise ValueError(
                    f"{pool_name} coins {pool.coins} must be exactly {sorted(symbols)}"
                )
        return self

    def token(self, symbol: str) -> Token:
        token_config = self.tokens[symbol]
        return Token(symbol, token_config.address, token_config.decimals)

    @property
    def base(self) -> Token:
        return self.token(self.base_token)

    @property
    def intermediary(self) -> Token:
        return self.token(self.intermediary_token)

    @property
    def synth(self) -> Token:
        return self.token(self.synth_token)

    def pool_identity(self, pool_name: str) -> PoolIdentity:
        """Build the PoolIdentity for ``base_pool`` or ``synth_pool``."""
        pool: PoolConfig = getattr(self, pool_name)
        coin0, coin1 = (self.token(symbol) for symbol in pool.coins)
        return PoolIdentity(name=pool_name, address=pool.address, coins=(coin0, coin1))

    @property
    def tolerance_band(self) -> Decimal:
        return self.tolerance_band_percent / Decimal(100)
