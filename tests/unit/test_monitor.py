"""Tests for the edge-triggered opportunity monitor."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from peg_arbitrage.exceptions import ConfigurationError
from peg_arbitrage.monitor import OpportunityMonitor
from peg_arbitrage.types import ArbitrageScenario


def make_monitor(bot_config, prices, metrics=None):
    provider = Mock()
    provider.get_reference_price = AsyncMock(side_effect=[Decimal(p) for p in prices])
    return OpportunityMonitor.from_config(bot_config, provider, metrics=metrics)


class TestClassification:
    @pytest.mark.parametrize(
        "price,expected",
        [
            ("1.01", ArbitrageScenario.NONE),
            ("1.0101", ArbitrageScenario.RICH),
            ("0.99", ArbitrageScenario.NONE),
            ("0.9899", ArbitrageScenario.CHEAP),
            ("1", ArbitrageScenario.NONE),
        ],
    )
    def test_thresholds_are_strict(self, bot_config, price, expected):
        monitor = make_monitor(bot_config, [])
        assert monitor.classify(Decimal(price)) == expected

    def test_threshold_validation(self, bot_config):
        provider = Mock()
        pool = bot_config.pool_identity("synth_pool")
        with pytest.raises(ConfigurationError, match="less than"):
            OpportunityMonitor(
                provider, pool, bot_config.intermediary, bot_config.synth,
                rich_threshold=Decimal("0.99"), cheap_threshold=Decimal("1.01"),
            )
        with pytest.raises(ConfigurationError, match="straddle"):
            OpportunityMonitor(
                provider, pool, bot_config.intermediary, bot_config.synth,
                rich_threshold=Decimal("1.05"), cheap_threshold=Decimal("1.02"),
            )

    @pytest.mark.asyncio
    async def test_quotes_one_intermediary_on_synth_pool(self, bot_config):
        monitor = make_monitor(bot_config, ["1.0"])
        await monitor.check_once()

        pool, base, quote = monitor.quote_provider.get_reference_price.call_args.args
        assert pool.name == "synth_pool"
        assert base.symbol == "crvUSD"
        assert quote.symbol == "VUSD"


class TestEdgeTriggering:
    @pytest.mark.asyncio
    async def test_emits_on_transition_only(self, bot_config):
        monitor = make_monitor(bot_config, ["1.02", "1.03", "1.00", "1.02"])
        emitted = []
        monitor.on_opportunity(emitted.append)

        for _ in range(4):
            await monitor.check_once()

        assert [o.scenario for o in emitted] == [ArbitrageScenario.RICH, ArbitrageScenario.RICH]
        assert emitted[0].price == Decimal("1.02")
        assert emitted[0].deviation_percent == Decimal("2.00")

    @pytest.mark.asyncio
    async def test_direct_flip_emits_both(self, bot_config):
        monitor = make_monitor(bot_config, ["1.02", "0.97"])
        emitted = []
        monitor.on_opportunity(emitted.append)

        await monitor.check_once()
        await monitor.check_once()

        assert [o.scenario for o in emitted] == [ArbitrageScenario.RICH, ArbitrageScenario.CHEAP]

    @pytest.mark.asyncio
    async def test_scenario_updated_before_callback(self, bot_config):
        monitor = make_monitor(bot_config, ["0.97"])
        seen = []
        monitor.on_opportunity(lambda opportunity: seen.append(monitor.last_scenario))

        await monitor.check_once()
        assert seen == [ArbitrageScenario.CHEAP]

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, bot_config):
        monitor = make_monitor(bot_config, ["1.05"])
        callback = AsyncMock()
        monitor.on_opportunity(callback)

        opportunity = await monitor.check_once()
        callback.assert_awaited_once_with(opportunity)

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_monitor(self, bot_config):
        monitor = make_monitor(bot_config, ["1.05", "1.00"])
        monitor.on_opportunity(Mock(side_effect=RuntimeError("boom")))

        assert await monitor.check_once() is not None
        assert await monitor.check_once() is None
        assert monitor.last_scenario == ArbitrageScenario.NONE

    @pytest.mark.asyncio
    async def test_tick_callback_sees_every_check(self, bot_config):
        monitor = make_monitor(bot_config, ["1.05", "1.06"])
        ticks = []
        monitor.set_tick_callback(lambda s, p, o: ticks.append((s, p, o is not None)))

        await monitor.check_once()
        await monitor.check_once()
        assert ticks == [
            (ArbitrageScenario.RICH, Decimal("1.05"), True),
            (ArbitrageScenario.RICH, Decimal("1.06"), False),
        ]


class TestFailures:
    @pytest.mark.asyncio
    async def test_price_error_is_swallowed(self, bot_config):
        metrics = Mock()
        monitor = make_monitor(bot_config, [])
        monitor.metrics = metrics
        monitor.quote_provider.get_reference_price.side_effect = ConnectionError("rpc down")

        assert await monitor.check_once() is None
        metrics.record_price_check.assert_called_once_with(None)
        assert monitor.last_scenario == ArbitrageScenario.NONE

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, bot_config):
        metrics = Mock()
        monitor = make_monitor(bot_config, ["1.05"], metrics=metrics)
        await monitor.check_once()
        metrics.record_price_check.assert_called_once_with(Decimal("1.05"))
        metrics.record_opportunity.assert_called_once_with("RICH")

    @pytest.mark.asyncio
    async def test_overlapping_check_is_skipped(self, bot_config):
        monitor = make_monitor(bot_config, ["1.05"])
        async with monitor._check_lock:
            assert await monitor.check_once() is None
        monitor.quote_provider.get_reference_price.assert_not_called()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_checks_immediately_and_stops(self, bot_config):
        monitor = make_monitor(bot_config, [])
        monitor.quote_provider.get_reference_price = AsyncMock(return_value=Decimal("1.0"))

        await monitor.start(interval_ms=10)
        assert monitor.is_running
        assert monitor.quote_provider.get_reference_price.await_count >= 1

        await asyncio.sleep(0.05)
        await monitor.stop()
        assert not monitor.is_running
        assert monitor.quote_provider.get_reference_price.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, bot_config):
        monitor = make_monitor(bot_config, [])
        await monitor.stop()
        assert not monitor.is_running
