"""
Bot wiring: monitor -> simulator -> execution pipeline.

The monitor only notifies on scenario transitions, so the bot keeps a retry
marker for the scenario whose last attempt ended in a retryable outcome and
re-attempts on every later tick that still classifies the same way.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from .config_schema import BotConfig
from .dex_mev.executor import ExecutionAttempt, ExecutionPipeline
from .dex_mev.flashloan_pool import FlashloanPoolReader
from .dex_mev.issuer import IssuerFeeReader
from .dex_mev.price_oracle import OraclePriceFetcher
from .dex_mev.quote_provider import StableSwapQuoteProvider
from .dex_mev.relay import BaseRelay, FlashbotsRelay, PublicMempoolRelay
from .dex_mev.simulator import ProfitSimulator
from .exceptions import ConfigurationError, PegArbitrageError
from .metrics import BotMetrics
from .monitor import OpportunityMonitor
from .types import ArbitrageOpportunity, ArbitrageScenario
from .utils import format_profit, get_logger

logger = get_logger(__name__)


def build_relay(
    config: BotConfig, web3: Web3, auth_account: Optional[LocalAccount] = None
) -> BaseRelay:
    """
    Relay selected by ``relay_mode``.

    Raises:
        ConfigurationError: Flashbots mode without an auth key
    """
    if config.relay_mode == "flashbots":
        if auth_account is None:
            raise ConfigurationError(
                f"Flashbots relay needs an auth key ({config.relay_auth_key_env})"
            )
        return FlashbotsRelay(
            web3,
            auth_account,
            relay_url=config.relay_url,
            inclusion_blocks=config.inclusion_blocks,
        )
    return PublicMempoolRelay(web3, inclusion_blocks=config.inclusion_blocks)


class ArbitrageBot:
    """
    Runs the detection loop and hands profitable simulations to the pipeline.

    With ``pipeline=None`` the bot only simulates (dry run).
    """

    def __init__(
        self,
        config: BotConfig,
        monitor: OpportunityMonitor,
        simulator: ProfitSimulator,
        pipeline: Optional[ExecutionPipeline] = None,
        metrics: Optional[BotMetrics] = None,
    ):
        self.config = config
        self.monitor = monitor
        self.simulator = simulator
        self.pipeline = pipeline
        self.metrics = metrics

        self._retry_scenario: Optional[ArbitrageScenario] = None
        self.last_attempt: Optional[ExecutionAttempt] = None

        monitor.on_opportunity(self.handle_opportunity)
        monitor.set_tick_callback(self.handle_tick)

    @classmethod
    async def create(
        cls,
        config: BotConfig,
        web3: Web3,
        account: Optional[LocalAccount] = None,
        auth_account: Optional[LocalAccount] = None,
        metrics: Optional[BotMetrics] = None,
        dry_run: bool = False,
    ) -> "ArbitrageBot":
        """
        Build and validate every component.

        Raises:
            ConfigurationError: Pool mismatch, missing address or key
        """
        quote_provider = StableSwapQuoteProvider(
            web3, [config.pool_identity("base_pool"), config.pool_identity("synth_pool")]
        )
        await quote_provider.initialize()

        oracle = OraclePriceFetcher(
            web3,
            cache_ttl_seconds=config.oracle_cache_ttl_seconds,
            stale_seconds=config.oracle_stale_seconds,
            tolerance_band=config.tolerance_band,
        )
        fee_reader = IssuerFeeReader(
            web3,
            minter_address=config.contracts.minter,
            redeemer_address=config.contracts.redeemer,
            mint_fee_bps=config.mint_fee_bps,
            redeem_fee_bps=config.redeem_fee_bps,
        )
        flashloan_reader = FlashloanPoolReader(
            web3,
            config.base,
            pool_address=config.contracts.flashloan_pool,
            fee_bps=config.flashloan_fee_bps,
        )
        simulator = ProfitSimulator(
            config, web3, quote_provider, oracle, fee_reader, flashloan_reader
        )
        monitor = OpportunityMonitor.from_config(config, quote_provider, metrics)

        pipeline = None
        if dry_run:
            logger.info("Dry run: simulations only, nothing will be submitted")
        else:
            if account is None:
                raise ConfigurationError(
                    f"Signer key required for execution ({config.private_key_env})"
                )
            relay = build_relay(config, web3, auth_account)
            pipeline = ExecutionPipeline(config, web3, account, relay)

        return cls(config, monitor, simulator, pipeline, metrics)

    @property
    def retry_scenario(self) -> Optional[ArbitrageScenario]:
        return self._retry_scenario

    async def handle_opportunity(self, opportunity: ArbitrageOpportunity) -> None:
        logger.info(
            f"Handling {opportunity.scenario.value} opportunity at price "
            f"{opportunity.price:.6f}"
        )
        await self.attempt(opportunity.scenario)

    async def handle_tick(
        self,
        scenario: ArbitrageScenario,
        price: Decimal,
        opportunity: Optional[ArbitrageOpportunity],
    ) -> None:
        if opportunity is not None or self._retry_scenario is None:
            return
        if scenario != self._retry_scenario:
            logger.info(
                f"Scenario changed to {scenario.value}; dropping retry of "
                f"{self._retry_scenario.value}"
            )
            self._retry_scenario = None
            return
        logger.info(f"Retrying {scenario.value} attempt at price {price:.6f}")
        await self.attempt(scenario)

    async def attempt(self, scenario: ArbitrageScenario) -> Optional[ExecutionAttempt]:
        """
        Simulate every candidate amount and execute the best one.

        Never raises for a recoverable failure; the loop keeps running.
        """
        try:
            search = await self.simulator.find_best_amount(scenario)
        except PegArbitrageError as e:
            logger.error(f"Simulation failed for {scenario.value}: {e}")
            if self.metrics:
                self.metrics.record_simulation(scenario.value, "failed")
            self._retry_scenario = scenario
            return None

        best = search.best
        if self.metrics:
            for simulation in search.simulations:
                result = "profitable" if simulation.is_profitable else "unprofitable"
                self.metrics.record_simulation(scenario.value, result)
            self.metrics.record_best_net_profit(scenario.value, best.net_profit)
        for warning in best.warnings:
            logger.warning(f"{scenario.value} simulation: {warning}")

        if self.pipeline is None:
            logger.info(
                f"[DRY RUN] {best.recommendation} | amount {best.flashloan_amount} "
                f"{best.base_token.symbol} | net {format_profit(best.net_profit)}"
            )
            self._retry_scenario = None
            return None

        attempt = await self.pipeline.execute(best)
        self.last_attempt = attempt
        if self.metrics:
            self.metrics.record_execution(
                scenario.value,
                attempt.outcome.value,
                duration_seconds=(attempt.duration_ms or 0) / 1000,
                profit_captured=self.pipeline.expected_profit_captured,
            )

        if attempt.outcome.is_retryable:
            self._retry_scenario = scenario
        else:
            self._retry_scenario = None
        return attempt

    async def run(self) -> None:
        """Run until :meth:`stop` is called."""
        metrics_started = False
        if self.metrics and self.config.metrics_port:
            metrics_started = await self.metrics.start_server(port=self.config.metrics_port)

        await self.monitor.start()
        try:
            await self.monitor.wait()
        finally:
            if metrics_started:
                await self.metrics.stop_server()
            logger.info(f"Bot stopped: {self.get_stats()}")

    async def stop(self) -> None:
        await self.monitor.stop()

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "last_scenario": self.monitor.last_scenario.value,
            "retry_scenario": self._retry_scenario.value if self._retry_scenario else None,
            "oracle_cache": self.simulator.oracle.get_cache_stats(),
        }
        if self.pipeline is not None:
            stats["execution"] = self.pipeline.get_stats()
        return stats
