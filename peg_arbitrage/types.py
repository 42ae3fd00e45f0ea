"""
Core data types for peg arbitrage detection, simulation and execution.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .amounts import Numeric, from_raw


class ArbitrageScenario(str, Enum):
    """Market classification relative to the peg."""

    RICH = "RICH"  # intermediary overpriced: swap in, redeem last
    CHEAP = "CHEAP"  # intermediary underpriced: mint first, swap out
    NONE = "NONE"


class StepKind(str, Enum):
    FLASHLOAN = "flashloan"
    SWAP = "swap"
    MINT = "mint"
    REDEEM = "redeem"
    REPAY = "repay"


@dataclass(frozen=True)
class Token:
    """
    Token definition.

    Attributes:
        symbol: Display symbol (e.g., "USDC")
        address: On-chain address
        decimals: Token precision (6 or 18)
    """

    symbol: str
    address: str
    decimals: int

    def matches(self, address: str) -> bool:
        """Case-insensitive address comparison."""
        return self.address.lower() == address.lower()


@dataclass(frozen=True)
class PoolIdentity:
    """
    A two-coin StableSwap pool and the expected coin order.

    ``coins[i]`` must equal the pool's ``coins(i)`` on-chain.
    """

    name: str
    address: str
    coins: Tuple[Token, Token]

    def index_of(self, token: Token) -> Optional[int]:
        for i, coin in enumerate(self.coins):
            if coin.matches(token.address):
                return i
        return None

    @property
    def pair_name(self) -> str:
        return f"{self.coins[0].symbol}/{self.coins[1].symbol}"


@dataclass(frozen=True)
class OracleReading:
    """
    One immutable reading of a push-style price feed.

    Staleness and tolerance are evaluated when the reading is fetched.
    """

    oracle_address: str
    description: str
    answer: int
    decimals: int
    updated_at: int
    round_id: int
    fetched_at: float
    is_stale: bool
    within_tolerance: bool

    @property
    def price(self) -> Decimal:
        return from_raw(self.answer, self.decimals)

    @property
    def deviation_from_peg(self) -> Decimal:
        return self.price - Decimal(1)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Emitted by the monitor when the classified scenario changes."""

    scenario: ArbitrageScenario
    price: Decimal
    deviation_percent: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class SimulationStep:
    """
    One hop of a simulated path, with real quoted amounts in native precision.
    """

    ordinal: int
    kind: StepKind
    description: str
    token_in: Token
    amount_in_raw: int
    token_out: Token
    amount_out_raw: int
    venue: str
    gas_estimate: int = 0
    fee_bps: Optional[Decimal] = None
    fee_amount: Optional[Decimal] = None
    oracle_impact: Optional[Decimal] = None

    @property
    def amount_in(self) -> Decimal:
        return from_raw(self.amount_in_raw, self.token_in.decimals)

    @property
    def amount_out(self) -> Decimal:
        return from_raw(self.amount_out_raw, self.token_out.decimals)

    @property
    def exchange_rate(self) -> Decimal:
        if self.amount_in_raw == 0:
            return Decimal(0)
        return self.amount_out / self.amount_in


@dataclass(frozen=True)
class OracleImpact:
    """Effect of the issuer's oracle adjustment on mint and redeem."""

    oracle_price: Decimal
    deviation_from_peg_percent: Decimal
    impact_on_mint_percent: Decimal
    impact_on_redeem_percent: Decimal
    within_tolerance: bool
    would_revert: bool
    is_stale: bool = False


@dataclass(frozen=True)
class GasCost:
    """Gas cost breakdown for one simulated transaction."""

    gas_units: int
    gas_price_wei: int
    gas_cost_native: Decimal
    gas_cost_usd: Decimal
    native_price_usd: Decimal

    @property
    def gas_price_gwei(self) -> Decimal:
        return from_raw(self.gas_price_wei, 9)


@dataclass(frozen=True)
class ProfitSimulation:
    """
    Complete simulation of one flashloan path at one candidate amount.

    Amounts named ``*_raw`` are in the base token's native precision; the
    Decimal fields are the same values in token units.
    """

    scenario: ArbitrageScenario
    timestamp: datetime
    base_token: Token
    reference_price: Decimal
    price_deviation_percent: Decimal
    flashloan_amount_raw: int
    flashloan_fee_bps: Decimal
    flashloan_fee_raw: int
    steps: Tuple[SimulationStep, ...]
    oracle_impact: OracleImpact
    total_borrowed_raw: int
    total_recovered_raw: int
    gross_profit: Decimal
    gas_cost: GasCost
    net_profit: Decimal
    profit_percent: Decimal
    is_profitable: bool
    recommendation: str
    warnings: Tuple[str, ...]

    @property
    def flashloan_amount(self) -> Decimal:
        return from_raw(self.flashloan_amount_raw, self.base_token.decimals)

    @property
    def total_borrowed(self) -> Decimal:
        return from_raw(self.total_borrowed_raw, self.base_token.decimals)

    @property
    def total_recovered(self) -> Decimal:
        return from_raw(self.total_recovered_raw, self.base_token.decimals)

    @property
    def hop_steps(self) -> Tuple[SimulationStep, ...]:
        """The swap/mint/redeem steps between the flashloan and the repayment."""
        return tuple(
            s
            for s in self.steps
            if s.kind not in (StepKind.FLASHLOAN, StepKind.REPAY)
        )

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario.value,
            "flashloan_amount": str(self.flashloan_amount),
            "reference_price": str(self.reference_price),
            "oracle_price": str(self.oracle_impact.oracle_price),
            "total_borrowed": str(self.total_borrowed),
            "total_recovered": str(self.total_recovered),
            "gross_profit": f"{self.gross_profit:.6f}",
            "gas_cost_usd": f"{self.gas_cost.gas_cost_usd:.4f}",
            "net_profit": f"{self.net_profit:.6f}",
            "is_profitable": self.is_profitable,
            "warnings": list(self.warnings),
        }


@dataclass
class AmountSearchResult:
    """Outcome of evaluating several flashloan amounts for one scenario."""

    scenario: ArbitrageScenario
    best: ProfitSimulation
    simulations: List[ProfitSimulation] = field(default_factory=list)
    failures: Dict[Numeric, str] = field(default_factory=dict)  # keyed as the caller passed them
