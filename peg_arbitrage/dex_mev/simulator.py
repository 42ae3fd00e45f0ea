"""
Profit simulator for flashloan peg arbitrage.

Replays the exact sequence of operations the on-chain executor performs,
using live pool quotes, the live oracle reading, the issuer's fee
schedule and the flashloan pool's fee and liquidity, and reports the net result after the flashloan fee and gas.

RICH:  flashloan(base) -> swap base->intermediary -> swap intermediary->synth
       -> redeem synth->base -> repay
CHEAP: flashloan(base) -> mint base->synth -> swap synth->intermediary
       -> swap intermediary->base -> repay

All hop arithmetic is done on integers in each token's native precision,
truncating wherever the contracts truncate.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from web3 import Web3

from ..amounts import Numeric, TokenAmount, from_raw, to_raw
from ..config_schema import BotConfig
from ..exceptions import AmountPrecisionError, PegArbitrageError, SimulationError
from ..types import (
    AmountSearchResult,
    ArbitrageScenario,
    GasCost,
    OracleImpact,
    OracleReading,
    PoolIdentity,
    ProfitSimulation,
    SimulationStep,
    StepKind,
    Token,
)
from ..utils import apply_bps_haircut, get_logger
from .flashloan_pool import FlashloanPoolReader, FlashloanTerms
from .issuer import IssuerFeeReader, IssuerFees
from .price_oracle import OraclePriceFetcher, mint_output_raw, redeem_output_raw
from .quote_provider import StableSwapQuoteProvider

logger = get_logger(__name__)

# Used only when neither a configured price nor a native/USD oracle is available
FALLBACK_NATIVE_PRICE_USD = Decimal("2000")

NATIVE_DECIMALS = 18


@dataclass(frozen=True)
class MarketContext:
    """Market state shared by every hop of one simulation."""

    reference_price: Decimal
    oracle: OracleReading
    fees: IssuerFees
    flashloan: FlashloanTerms
    gas_price_wei: int
    native_price_usd: Decimal
    native_price_source: str


class ProfitSimulator:
    """
    Simulates both arbitrage directions at a given flashloan amount.

    Holds no state between calls: every simulation re-reads the market.
    """

    def __init__(
        self,
        config: BotConfig,
        web3: Web3,
        quote_provider: StableSwapQuoteProvider,
        oracle_fetcher: OraclePriceFetcher,
        fee_reader: IssuerFeeReader,
        flashloan_reader: FlashloanPoolReader,
    ):
        self.config = config
        self.web3 = web3
        self.quotes = quote_provider
        self.oracle = oracle_fetcher
        self.fee_reader = fee_reader
        self.flashloan_reader = flashloan_reader

        self.base = config.base
        self.intermediary = config.intermediary
        self.synth = config.synth
        self.base_pool = config.pool_identity("base_pool")
        self.synth_pool = config.pool_identity("synth_pool")
        self.flashloan_venue = config.contracts.flashloan_pool or "flashloan pool"
        self.minter_venue = config.contracts.minter or "issuer minter"
        self.redeemer_venue = config.contracts.redeemer or "issuer redeemer"

    async def simulate(
        self, scenario: ArbitrageScenario, flashloan_amount: Numeric
    ) -> ProfitSimulation:
        """
        Simulate one path at one flashloan amount.

        Raises:
            SimulationError: Any market read or hop failed
        """
        if scenario == ArbitrageScenario.RICH:
            return await self.simulate_rich(flashloan_amount)
        if scenario == ArbitrageScenario.CHEAP:
            return await self.simulate_cheap(flashloan_amount)
        raise SimulationError(
            f"Cannot simulate scenario {scenario.value}", scenario=scenario.value
        )

    async def simulate_rich(self, flashloan_amount: Numeric) -> ProfitSimulation:
        scenario = ArbitrageScenario.RICH
        principal_raw = self._principal_raw(flashloan_amount, scenario)
        market = await self.load_market_context(scenario)
        fee_raw = self._flashloan_fee_raw(scenario, market, principal_raw)

        steps = [self._flashloan_step(market, principal_raw, fee_raw)]

        intermediary_raw = await self._swap_hop(
            scenario, steps, self.base_pool, self.base, self.intermediary, principal_raw
        )
        synth_raw = await self._swap_hop(
            scenario, steps, self.synth_pool, self.intermediary, self.synth, intermediary_raw
        )

        # Redeem: oracle adjustment and fee at synth precision, then rescale
        after_oracle = redeem_output_raw(synth_raw, market.oracle.answer, market.oracle.decimals)
        redeem_fee_bps = market.fees.redeem_fee_bps
        after_fee = apply_bps_haircut(after_oracle, redeem_fee_bps)
        base_raw = TokenAmount(after_fee, self.synth.decimals).rescale(self.base.decimals).raw
        steps.append(
            SimulationStep(
                ordinal=len(steps) + 1,
                kind=StepKind.REDEEM,
                description=f"Redeem {self.synth.symbol} -> {self.base.symbol} via issuer",
                token_in=self.synth,
                amount_in_raw=synth_raw,
                token_out=self.base,
                amount_out_raw=base_raw,
                venue=self.redeemer_venue,
                gas_estimate=self.config.gas_estimates.redeem,
                fee_bps=Decimal(redeem_fee_bps),
                fee_amount=from_raw(after_oracle - after_fee, self.synth.decimals),
                oracle_impact=from_raw(synth_raw - after_oracle, self.synth.decimals),
            )
        )

        steps.append(self._repay_step(len(steps) + 1, principal_raw + fee_raw))
        return self._finalize(scenario, market, principal_raw, fee_raw, base_raw, steps)

    async def simulate_cheap(self, flashloan_amount: Numeric) -> ProfitSimulation:
        scenario = ArbitrageScenario.CHEAP
        principal_raw = self._principal_raw(flashloan_amount, scenario)
        market = await self.load_market_context(scenario)
        fee_raw = self._flashloan_fee_raw(scenario, market, principal_raw)

        steps = [self._flashloan_step(market, principal_raw, fee_raw)]

        # Mint: rescale to synth precision, then oracle adjustment and fee
        scaled = TokenAmount(principal_raw, self.base.decimals).rescale(self.synth.decimals).raw
        after_oracle = mint_output_raw(scaled, market.oracle.answer, market.oracle.decimals)
        mint_fee_bps = market.fees.mint_fee_bps
        synth_raw = apply_bps_haircut(after_oracle, mint_fee_bps)
        if synth_raw == 0:
            raise SimulationError(
                "Mint produced zero output", hop="mint", scenario=scenario.value
            )
        steps.append(
            SimulationStep(
                ordinal=len(steps) + 1,
                kind=StepKind.MINT,
                description=f"Mint {self.synth.symbol} from {self.base.symbol} via issuer",
                token_in=self.base,
                amount_in_raw=principal_raw,
                token_out=self.synth,
                amount_out_raw=synth_raw,
                venue=self.minter_venue,
                gas_estimate=self.config.gas_estimates.mint,
                fee_bps=Decimal(mint_fee_bps),
                fee_amount=from_raw(after_oracle - synth_raw, self.synth.decimals),
                oracle_impact=from_raw(scaled - after_oracle, self.synth.decimals),
            )
        )

        intermediary_raw = await self._swap_hop(
            scenario, steps, self.synth_pool, self.synth, self.intermediary, synth_raw
        )
        base_raw = await self._swap_hop(
            scenario, steps, self.base_pool, self.intermediary, self.base, intermediary_raw
        )

        steps.append(self._repay_step(len(steps) + 1, principal_raw + fee_raw))
        return self._finalize(scenario, market, principal_raw, fee_raw, base_raw, steps)

    async def find_best_amount(
        self,
        scenario: ArbitrageScenario,
        candidate_amounts: Optional[Iterable[Numeric]] = None,
    ) -> AmountSearchResult:
        """
        Simulate every candidate amount and pick the highest net profit.

        Each candidate runs as its own full simulation; a failing candidate,
        including one larger than the flashloan pool can lend, is recorded
        under the amount it was given as and skipped.

        Raises:
            SimulationError: Every candidate failed
        """
        candidates = list(
            candidate_amounts if candidate_amounts is not None else self.config.flashloan_amounts
        )
        logger.info(
            f"Finding optimal flashloan amount for {scenario.value}: "
            f"{', '.join(str(c) for c in candidates)}"
        )

        simulations: List[ProfitSimulation] = []
        failures = {}
        for amount in candidates:
            try:
                simulation = await self.simulate(scenario, amount)
            except PegArbitrageError as e:
                failures[amount] = str(e)
                logger.warning(f"Simulation failed for {amount} {self.base.symbol}: {e}")
                continue
            simulations.append(simulation)
            logger.info(
                f"  {amount} {self.base.symbol}: net profit "
                f"${simulation.net_profit:.4f} ({simulation.recommendation})"
            )

        if not simulations:
            raise SimulationError(
                f"No valid simulations for {scenario.value} across {len(candidates)} candidates",
                scenario=scenario.value,
                details={"failures": {str(k): v for k, v in failures.items()}},
            )

        best = max(simulations, key=lambda s: s.net_profit)
        logger.info(
            f"Best flashloan amount: {best.flashloan_amount} {self.base.symbol} "
            f"(expected net profit ${best.net_profit:.2f})"
        )
        return AmountSearchResult(
            scenario=scenario, best=best, simulations=simulations, failures=failures
        )

    async def load_market_context(self, scenario: ArbitrageScenario) -> MarketContext:
        """
        Read every market input a simulation needs, concurrently.

        Raises:
            SimulationError: Naming the input that could not be read
        """
        labels = (
            "reference price",
            "oracle",
            "issuer fees",
            "flashloan pool",
            "gas price",
            "native price",
        )
        results = await asyncio.gather(
            self.quotes.get_reference_price(self.synth_pool, self.intermediary, self.synth),
            self._read_oracle(),
            self.fee_reader.get_fees(),
            self.flashloan_reader.get_terms(),
            self._read_gas_price(),
            self.get_native_price_usd(),
            return_exceptions=True,
        )
        for label, result in zip(labels, results):
            if isinstance(result, Exception):
                raise SimulationError(
                    f"Failed to read {label}: {result}", hop=label, scenario=scenario.value
                ) from result
            if isinstance(result, BaseException):
                raise result

        (
            reference_price,
            oracle,
            fees,
            flashloan,
            gas_price_wei,
            (native_price, native_source),
        ) = results
        return MarketContext(
            reference_price=reference_price,
            oracle=oracle,
            fees=fees,
            flashloan=flashloan,
            gas_price_wei=gas_price_wei,
            native_price_usd=native_price,
            native_price_source=native_source,
        )

    async def _read_oracle(self) -> OracleReading:
        result = await self.oracle.get_price(self.config.contracts.base_oracle)
        if not result.success:
            raise SimulationError(f"Oracle read failed: {result.error}", hop="oracle")
        return result.reading

    async def _read_gas_price(self) -> int:
        loop = asyncio.get_event_loop()
        gas_price = await loop.run_in_executor(None, lambda: self.web3.eth.gas_price)
        return int(gas_price)

    async def get_native_price_usd(self) -> Tuple[Decimal, str]:
        """
        Native currency price in USD and where it came from.

        Order: configured override, native/USD oracle, fallback constant.
        """
        if self.config.native_price_usd is not None:
            return self.config.native_price_usd, "config"

        native_oracle = self.config.contracts.native_oracle
        if native_oracle:
            result = await self.oracle.get_price(native_oracle, "native/USD")
            if result.success:
                return result.price, "oracle"
            logger.warning(f"Native price oracle unavailable: {result.error}")

        return FALLBACK_NATIVE_PRICE_USD, "fallback"

    def calculate_gas_cost(
        self, gas_units: int, gas_price_wei: int, native_price_usd: Decimal
    ) -> GasCost:
        gas_cost_native = from_raw(gas_units * gas_price_wei, NATIVE_DECIMALS)
        return GasCost(
            gas_units=gas_units,
            gas_price_wei=gas_price_wei,
            gas_cost_native=gas_cost_native,
            gas_cost_usd=gas_cost_native * native_price_usd,
            native_price_usd=native_price_usd,
        )

    def calculate_oracle_impact(self, reading: OracleReading) -> OracleImpact:
        price = reading.price
        one = Decimal(1)
        impact_on_mint = Decimal(0) if price >= one else (one - price) * 100
        impact_on_redeem = Decimal(0) if price <= one else (price - one) / price * 100
        within_tolerance = self.oracle.is_within_tolerance(price)
        return OracleImpact(
            oracle_price=price,
            deviation_from_peg_percent=(price - one) * 100,
            impact_on_mint_percent=impact_on_mint,
            impact_on_redeem_percent=impact_on_redeem,
            within_tolerance=within_tolerance,
            would_revert=not within_tolerance,
            is_stale=reading.is_stale,
        )

    def generate_recommendation(self, net_profit: Decimal) -> str:
        if net_profit > self.config.min_profit_usd:
            return f"EXECUTE: Profitable arbitrage with ${net_profit:.2f} net profit"
        if net_profit > 0:
            return (
                "MARGINAL: Profitable but below minimum threshold "
                f"(${self.config.min_profit_usd})"
            )
        return f"DO NOT EXECUTE: Would lose ${abs(net_profit):.2f}"

    def generate_warnings(
        self,
        oracle_impact: OracleImpact,
        reference_price: Decimal,
        net_profit: Decimal,
        market: MarketContext,
    ) -> List[str]:
        warnings = []

        if oracle_impact.would_revert:
            warnings.append(
                f"Oracle price outside {self.config.tolerance_band_percent}% tolerance "
                "- transaction will REVERT"
            )
        if oracle_impact.is_stale:
            warnings.append("Oracle price is stale - issuer may reject mint/redeem")
        if abs(oracle_impact.deviation_from_peg_percent) > self.config.high_impact_deviation_percent:
            warnings.append(
                f"Oracle deviates {oracle_impact.deviation_from_peg_percent:.4f}% "
                "from peg - impacts profitability"
            )
        if abs(reference_price - 1) * 100 > self.config.severe_depeg_percent:
            warnings.append("Price severely off-peg - high slippage expected")
        if net_profit < 0:
            warnings.append("Transaction would lose money")
        if market.fees.source == "config":
            warnings.append("Issuer fees taken from configuration, not read on-chain")
        if market.flashloan.source == "config":
            warnings.append(
                "Flashloan fee taken from configuration; pool liquidity not checked"
            )
        if market.native_price_source == "fallback":
            warnings.append(
                f"Native price unavailable - gas cost assumes ${FALLBACK_NATIVE_PRICE_USD}"
            )

        return warnings

    def _principal_raw(self, flashloan_amount: Numeric, scenario: ArbitrageScenario) -> int:
        try:
            principal_raw = to_raw(flashloan_amount, self.base.decimals)
        except AmountPrecisionError as e:
            raise SimulationError(str(e), hop="flashloan", scenario=scenario.value) from e
        if principal_raw == 0:
            raise SimulationError(
                f"Flashloan amount must be positive, got {flashloan_amount}",
                hop="flashloan",
                scenario=scenario.value,
            )
        return principal_raw

    def _flashloan_fee_raw(
        self, scenario: ArbitrageScenario, market: MarketContext, principal_raw: int
    ) -> int:
        terms = market.flashloan
        if not terms.can_lend(principal_raw):
            raise SimulationError(
                f"Flashloan of {from_raw(principal_raw, self.base.decimals)} {self.base.symbol} "
                f"exceeds pool liquidity of "
                f"{from_raw(terms.available_raw, self.base.decimals)} {self.base.symbol}",
                hop="flashloan",
                scenario=scenario.value,
            )
        return terms.fee_for(principal_raw)

    def _flashloan_step(
        self, market: MarketContext, principal_raw: int, fee_raw: int
    ) -> SimulationStep:
        return SimulationStep(
            ordinal=1,
            kind=StepKind.FLASHLOAN,
            description=f"Flashloan {self.base.symbol}",
            token_in=self.base,
            amount_in_raw=0,
            token_out=self.base,
            amount_out_raw=principal_raw,
            venue=self.flashloan_venue,
            gas_estimate=self.config.gas_estimates.flashloan,
            fee_bps=market.flashloan.fee_bps,
            fee_amount=from_raw(fee_raw, self.base.decimals),
        )

    def _repay_step(self, ordinal: int, repayment_raw: int) -> SimulationStep:
        return SimulationStep(
            ordinal=ordinal,
            kind=StepKind.REPAY,
            description=f"Repay flashloan {self.base.symbol}",
            token_in=self.base,
            amount_in_raw=repayment_raw,
            token_out=self.base,
            amount_out_raw=0,
            venue=self.flashloan_venue,
            gas_estimate=self.config.gas_estimates.repay,
        )

    async def _swap_hop(
        self,
        scenario: ArbitrageScenario,
        steps: List[SimulationStep],
        pool: PoolIdentity,
        token_in: Token,
        token_out: Token,
        amount_in_raw: int,
    ) -> int:
        description = f"Swap {token_in.symbol} -> {token_out.symbol} on {pool.name}"
        try:
            result = await self.quotes.quote(pool, token_in, token_out, amount_in_raw)
        except PegArbitrageError as e:
            raise SimulationError(
                f"{description} failed: {e}", hop=description, scenario=scenario.value
            ) from e
        if not result.success:
            raise SimulationError(
                f"{description} failed: {result.error}",
                hop=description,
                scenario=scenario.value,
            )

        steps.append(
            SimulationStep(
                ordinal=len(steps) + 1,
                kind=StepKind.SWAP,
                description=description,
                token_in=token_in,
                amount_in_raw=amount_in_raw,
                token_out=token_out,
                amount_out_raw=result.amount_out_raw,
                venue=pool.address,
                gas_estimate=self.config.gas_estimates.swap,
            )
        )
        return result.amount_out_raw

    def _finalize(
        self,
        scenario: ArbitrageScenario,
        market: MarketContext,
        principal_raw: int,
        fee_raw: int,
        recovered_raw: int,
        steps: Sequence[SimulationStep],
    ) -> ProfitSimulation:
        ordered = tuple(steps)
        last = ordered[-1]
        if last.kind != StepKind.REPAY or not last.token_out.matches(self.base.address):
            raise SimulationError(
                "Path does not close on the borrowed token", hop=last.description,
                scenario=scenario.value,
            )

        gas_units = sum(step.gas_estimate for step in ordered)
        gas_cost = self.calculate_gas_cost(
            gas_units, market.gas_price_wei, market.native_price_usd
        )
        oracle_impact = self.calculate_oracle_impact(market.oracle)

        repayment_raw = principal_raw + fee_raw
        gross_profit = from_raw(recovered_raw, self.base.decimals) - from_raw(
            repayment_raw, self.base.decimals
        )
        net_profit = gross_profit - gas_cost.gas_cost_usd
        flashloan_amount = from_raw(principal_raw, self.base.decimals)

        simulation = ProfitSimulation(
            scenario=scenario,
            timestamp=datetime.now(),
            base_token=self.base,
            reference_price=market.reference_price,
            price_deviation_percent=(market.reference_price - 1) * 100,
            flashloan_amount_raw=principal_raw,
            flashloan_fee_bps=market.flashloan.fee_bps,
            flashloan_fee_raw=fee_raw,
            steps=ordered,
            oracle_impact=oracle_impact,
            total_borrowed_raw=repayment_raw,
            total_recovered_raw=recovered_raw,
            gross_profit=gross_profit,
            gas_cost=gas_cost,
            net_profit=net_profit,
            profit_percent=net_profit / flashloan_amount * 100,
            is_profitable=net_profit > self.config.min_profit_usd,
            recommendation=self.generate_recommendation(net_profit),
            warnings=tuple(
                self.generate_warnings(oracle_impact, market.reference_price, net_profit, market)
            ),
        )
        logger.debug(f"SIMULATION: {simulation.to_log_dict()}")
        return simulation
