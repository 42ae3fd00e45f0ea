"""
Prometheus metrics for the peg arbitrage bot.

Counts price checks, opportunities, simulations and execution outcomes, and
optionally serves them over HTTP for scraping.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class BotMetrics:
    """
    Metrics collection and exposure for one bot instance.

    Pass a dedicated ``CollectorRegistry`` in tests so instances do not
    collide on the global registry.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

    def _initialize_metrics(self):
        # === MONITOR ===
        self.price_checks_total = Counter(
            "peg_arbitrage_price_checks_total",
            "Total reference price checks",
            ["result"],
            registry=self.registry,
        )

        self.reference_price = Gauge(
            "peg_arbitrage_reference_price",
            "Last observed intermediary/synth reference price",
            registry=self.registry,
        )

        self.opportunities_total = Counter(
            "peg_arbitrage_opportunities_total",
            "Opportunities emitted on scenario transitions",
            ["scenario"],
            registry=self.registry,
        )

        # === SIMULATION ===
        self.simulations_total = Counter(
            "peg_arbitrage_simulations_total",
            "Profit simulations by result",
            ["scenario", "result"],
            registry=self.registry,
        )

        self.simulated_net_profit_usd = Gauge(
            "peg_arbitrage_simulated_net_profit_usd",
            "Net profit of the last best simulation",
            ["scenario"],
            registry=self.registry,
        )

        # === EXECUTION ===
        self.executions_total = Counter(
            "peg_arbitrage_executions_total",
            "Execution attempts by outcome",
            ["scenario", "outcome"],
            registry=self.registry,
        )

        self.execution_duration_seconds = Histogram(
            "peg_arbitrage_execution_duration_seconds",
            "Time from attempt start to outcome",
            ["outcome"],
            buckets=[0.5, 1, 2, 5, 10, 20, 40, 60, 120],
            registry=self.registry,
        )

        self.expected_profit_captured_usd = Gauge(
            "peg_arbitrage_expected_profit_captured_usd",
            "Cumulative simulated net profit of included successful attempts",
            registry=self.registry,
        )

    def record_price_check(self, price: Optional[Decimal]):
        if price is None:
            self.price_checks_total.labels(result="error").inc()
            return
        self.price_checks_total.labels(result="ok").inc()
        self.reference_price.set(float(price))

    def record_opportunity(self, scenario: str):
        self.opportunities_total.labels(scenario=scenario).inc()

    def record_simulation(self, scenario: str, result: str):
        self.simulations_total.labels(scenario=scenario, result=result).inc()

    def record_best_net_profit(self, scenario: str, net_profit: Decimal):
        self.simulated_net_profit_usd.labels(scenario=scenario).set(float(net_profit))

    def record_execution(
        self,
        scenario: str,
        outcome: str,
        duration_seconds: Optional[float] = None,
        profit_captured: Optional[Decimal] = None,
    ):
        self.executions_total.labels(scenario=scenario, outcome=outcome).inc()
        if duration_seconds is not None:
            self.execution_duration_seconds.labels(outcome=outcome).observe(duration_seconds)
        if profit_captured is not None:
            self.expected_profit_captured_usd.set(float(profit_captured))

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # aiohttp sets the charset itself
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        return web.json_response({"status": "healthy", "service": "peg_arbitrage_metrics"})

    def get_metrics_summary(self) -> Dict[str, Any]:
        sample = self.registry.get_sample_value
        return {
            "price_checks_ok": sample("peg_arbitrage_price_checks_total", {"result": "ok"}) or 0,
            "price_checks_failed": sample("peg_arbitrage_price_checks_total", {"result": "error"})
            or 0,
            "reference_price": sample("peg_arbitrage_reference_price"),
        }
