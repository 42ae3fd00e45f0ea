"""
Opportunity monitor.

Polls the intermediary/synth reference price, classifies it against the
RICH/CHEAP thresholds and notifies on scenario transitions only. Repeated
checks that land in the same scenario stay silent; passing through NONE
re-arms the trigger.
"""

import asyncio
import inspect
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

from .config_schema import BotConfig
from .dex_mev.quote_provider import StableSwapQuoteProvider
from .exceptions import ConfigurationError
from .metrics import BotMetrics
from .types import ArbitrageOpportunity, ArbitrageScenario, PoolIdentity, Token
from .utils import get_logger

logger = get_logger(__name__)

OpportunityCallback = Callable[[ArbitrageOpportunity], Union[None, Awaitable[None]]]
TickCallback = Callable[
    [ArbitrageScenario, Decimal, Optional[ArbitrageOpportunity]], Union[None, Awaitable[None]]
]


async def _invoke(callback: Callable[..., Any], *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class OpportunityMonitor:
    """
    Edge-triggered scenario monitor.

    Args:
        quote_provider: Initialized quote provider
        pool: Pool quoted for the reference price
        base_token: Token priced (one unit is quoted)
        quote_token: Token the price is expressed in
        rich_threshold: Prices strictly above are RICH
        cheap_threshold: Prices strictly below are CHEAP
        check_interval_ms: Poll period
        metrics: Optional metrics sink
    """

    def __init__(
        self,
        quote_provider: StableSwapQuoteProvider,
        pool: PoolIdentity,
        base_token: Token,
        quote_token: Token,
        rich_threshold: Decimal = Decimal("1.01"),
        cheap_threshold: Decimal = Decimal("0.99"),
        check_interval_ms: int = 60000,
        metrics: Optional[BotMetrics] = None,
    ):
        if not cheap_threshold < rich_threshold:
            raise ConfigurationError("cheap_threshold must be less than rich_threshold")
        if not cheap_threshold <= Decimal(1) <= rich_threshold:
            raise ConfigurationError("cheap_threshold and rich_threshold must straddle 1.0")

        self.quote_provider = quote_provider
        self.pool = pool
        self.base_token = base_token
        self.quote_token = quote_token
        self.rich_threshold = Decimal(rich_threshold)
        self.cheap_threshold = Decimal(cheap_threshold)
        self.check_interval_ms = check_interval_ms
        self.metrics = metrics

        self._last_scenario = ArbitrageScenario.NONE
        self._on_opportunity: Optional[OpportunityCallback] = None
        self._on_tick: Optional[TickCallback] = None
        self._check_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: BotConfig,
        quote_provider: StableSwapQuoteProvider,
        metrics: Optional[BotMetrics] = None,
    ) -> "OpportunityMonitor":
        return cls(
            quote_provider,
            pool=config.pool_identity("synth_pool"),
            base_token=config.intermediary,
            quote_token=config.synth,
            rich_threshold=config.rich_threshold,
            cheap_threshold=config.cheap_threshold,
            check_interval_ms=config.check_interval_ms,
            metrics=metrics,
        )

    @property
    def last_scenario(self) -> ArbitrageScenario:
        return self._last_scenario

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_opportunity(self, callback: OpportunityCallback) -> None:
        """Register the callback invoked once per scenario transition."""
        self._on_opportunity = callback

    def set_tick_callback(self, callback: TickCallback) -> None:
        """Register a callback invoked after every successful check."""
        self._on_tick = callback

    def classify(self, price: Decimal) -> ArbitrageScenario:
        if price > self.rich_threshold:
            return ArbitrageScenario.RICH
        if price < self.cheap_threshold:
            return ArbitrageScenario.CHEAP
        return ArbitrageScenario.NONE

    async def check_once(self) -> Optional[ArbitrageOpportunity]:
        """
        Run one price check.

        Returns the emitted opportunity, or None when nothing changed, the
        price could not be read, or another check is still running.
        """
        if self._check_lock.locked():
            logger.debug("Previous price check still running; skipping tick")
            return None

        async with self._check_lock:
            try:
                price = await self.quote_provider.get_reference_price(
                    self.pool, self.base_token, self.quote_token
                )
            except Exception as e:
                logger.error(f"Error during price check: {e}")
                if self.metrics:
                    self.metrics.record_price_check(None)
                return None

            if self.metrics:
                self.metrics.record_price_check(price)

            scenario = self.classify(price)
            deviation_percent = abs(price - 1) * 100
            logger.info(
                f"Price check: {price:.6f} | Deviation: {deviation_percent:.4f}% | "
                f"Scenario: {scenario.value}"
            )

            opportunity = None
            if scenario != ArbitrageScenario.NONE and scenario != self._last_scenario:
                opportunity = ArbitrageOpportunity(
                    scenario=scenario,
                    price=price,
                    deviation_percent=deviation_percent,
                    timestamp=datetime.now(),
                )
            self._last_scenario = scenario

            if opportunity is not None:
                logger.info(
                    f"OPPORTUNITY_FOUND: scenario={scenario.value} price={price:.6f} "
                    f"deviation={deviation_percent:.4f}%"
                )
                if self.metrics:
                    self.metrics.record_opportunity(scenario.value)
                if self._on_opportunity:
                    try:
                        await _invoke(self._on_opportunity, opportunity)
                    except Exception as e:
                        logger.error(f"Opportunity callback failed: {e}", exc_info=True)

            if self._on_tick:
                try:
                    await _invoke(self._on_tick, scenario, price, opportunity)
                except Exception as e:
                    logger.error(f"Tick callback failed: {e}", exc_info=True)

            return opportunity

    async def start(self, interval_ms: Optional[int] = None) -> None:
        """
        Check immediately, then keep checking every ``interval_ms``.

        Returns once the first check is done; polling continues in a
        background task until :meth:`stop`.
        """
        if self.is_running:
            logger.warning("Price monitor is already running")
            return
        if interval_ms is not None:
            self.check_interval_ms = interval_ms

        logger.info(
            f"Starting price monitor | Interval: {self.check_interval_ms / 1000}s | "
            f"Rich threshold: {self.rich_threshold} | Cheap threshold: {self.cheap_threshold}"
        )
        self._stop_event = asyncio.Event()
        await self.check_once()
        self._task = asyncio.create_task(self._run())
        logger.info("Price monitor started successfully")

    async def _run(self) -> None:
        interval = self.check_interval_ms / 1000
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.check_once()

    async def wait(self) -> None:
        """Block until the monitor stops."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        if not self.is_running:
            logger.warning("Price monitor is not running")
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Price monitor stopped")
