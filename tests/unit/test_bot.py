"""Tests for bot wiring and the retry marker."""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from eth_account import Account

from peg_arbitrage.bot import ArbitrageBot, build_relay
from peg_arbitrage.dex_mev.executor import ExecutionOutcome
from peg_arbitrage.dex_mev.relay import FlashbotsRelay, PublicMempoolRelay
from peg_arbitrage.exceptions import ConfigurationError, QuoteError
from peg_arbitrage.types import ArbitrageOpportunity, ArbitrageScenario

SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

RICH = ArbitrageScenario.RICH
CHEAP = ArbitrageScenario.CHEAP


def finished_attempt(outcome):
    return Mock(outcome=outcome, duration_ms=12.0)


@pytest.fixture
def simulator(make_simulation):
    simulator = Mock()
    simulation = make_simulation()
    simulator.find_best_amount = AsyncMock(
        return_value=Mock(best=simulation, simulations=[simulation])
    )
    return simulator


@pytest.fixture
def pipeline():
    pipeline = Mock()
    pipeline.execute = AsyncMock(return_value=finished_attempt(ExecutionOutcome.NOT_INCLUDED))
    pipeline.expected_profit_captured = Decimal(0)
    return pipeline


@pytest.fixture
def bot(bot_config, simulator, pipeline):
    return ArbitrageBot(bot_config, Mock(), simulator, pipeline)


def rich_opportunity(price="1.02"):
    return ArbitrageOpportunity(
        scenario=RICH,
        price=Decimal(price),
        deviation_percent=abs(Decimal(price) - 1) * 100,
        timestamp=None,
    )


class TestRetryMarker:
    @pytest.mark.asyncio
    async def test_set_after_retryable_outcome(self, bot, pipeline):
        await bot.handle_opportunity(rich_opportunity())
        pipeline.execute.assert_awaited_once()
        assert bot.retry_scenario == RICH

    @pytest.mark.asyncio
    async def test_cleared_after_inclusion(self, bot, pipeline):
        bot._retry_scenario = RICH
        pipeline.execute.return_value = finished_attempt(ExecutionOutcome.INCLUDED_SUCCESS)
        await bot.attempt(RICH)
        assert bot.retry_scenario is None

    @pytest.mark.asyncio
    async def test_included_failure_is_not_retried(self, bot, pipeline):
        pipeline.execute.return_value = finished_attempt(ExecutionOutcome.INCLUDED_FAILED)
        await bot.attempt(RICH)
        assert bot.retry_scenario is None

    @pytest.mark.asyncio
    async def test_tick_in_same_scenario_retries(self, bot, pipeline):
        bot._retry_scenario = RICH
        await bot.handle_tick(RICH, Decimal("1.03"), None)
        pipeline.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tick_in_other_scenario_drops_retry(self, bot, pipeline):
        bot._retry_scenario = RICH
        await bot.handle_tick(ArbitrageScenario.NONE, Decimal("1.0"), None)
        pipeline.execute.assert_not_called()
        assert bot.retry_scenario is None

    @pytest.mark.asyncio
    async def test_tick_with_opportunity_is_ignored(self, bot, pipeline):
        # handle_opportunity already attempted this tick
        bot._retry_scenario = CHEAP
        await bot.handle_tick(RICH, Decimal("1.02"), rich_opportunity())
        pipeline.execute.assert_not_called()
        assert bot.retry_scenario == CHEAP

    @pytest.mark.asyncio
    async def test_tick_without_marker_does_nothing(self, bot, simulator):
        await bot.handle_tick(RICH, Decimal("1.03"), None)
        simulator.find_best_amount.assert_not_called()

    @pytest.mark.asyncio
    async def test_simulation_failure_sets_marker(self, bot, simulator, pipeline):
        simulator.find_best_amount.side_effect = QuoteError("get_dy reverted")
        assert await bot.attempt(CHEAP) is None
        pipeline.execute.assert_not_called()
        assert bot.retry_scenario == CHEAP

    @pytest.mark.asyncio
    async def test_dry_run_clears_marker(self, bot_config, simulator):
        bot = ArbitrageBot(bot_config, Mock(), simulator, pipeline=None)
        bot._retry_scenario = RICH
        assert await bot.attempt(RICH) is None
        assert bot.retry_scenario is None

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, bot_config, simulator, pipeline):
        metrics = Mock()
        bot = ArbitrageBot(bot_config, Mock(), simulator, pipeline, metrics=metrics)
        await bot.attempt(RICH)

        metrics.record_simulation.assert_called_once_with("RICH", "profitable")
        best = simulator.find_best_amount.return_value.best
        metrics.record_best_net_profit.assert_called_once_with("RICH", best.net_profit)
        metrics.record_execution.assert_called_once()
        assert metrics.record_execution.call_args.args == ("RICH", "NOT_INCLUDED")


class TestBuildRelay:
    def test_public_mode(self, bot_config, chain):
        assert isinstance(build_relay(bot_config, chain.web3), PublicMempoolRelay)

    def test_flashbots_needs_auth_key(self, bot_config, chain):
        config = bot_config.model_copy(update={"relay_mode": "flashbots"})
        with pytest.raises(ConfigurationError, match="auth key"):
            build_relay(config, chain.web3)

    def test_flashbots_mode(self, bot_config, chain):
        config = bot_config.model_copy(update={"relay_mode": "flashbots"})
        relay = build_relay(config, chain.web3, Account.create())
        assert isinstance(relay, FlashbotsRelay)


class TestCreate:
    @pytest.mark.asyncio
    async def test_dry_run(self, bot_config, chain):
        bot = await ArbitrageBot.create(bot_config, chain.web3, dry_run=True)
        assert bot.pipeline is None
        assert bot.monitor.pool.name == "synth_pool"
        assert bot.get_stats()["last_scenario"] == "NONE"

    @pytest.mark.asyncio
    async def test_execution_needs_signer(self, bot_config, chain):
        with pytest.raises(ConfigurationError, match="Signer key"):
            await ArbitrageBot.create(bot_config, chain.web3)

    @pytest.mark.asyncio
    async def test_live(self, bot_config, chain):
        account = Account.from_key(SIGNER_KEY)
        bot = await ArbitrageBot.create(bot_config, chain.web3, account=account)
        assert bot.pipeline is not None
        assert isinstance(bot.pipeline.relay, PublicMempoolRelay)
        assert "execution" in bot.get_stats()

    @pytest.mark.asyncio
    async def test_end_to_end_dry_run(self, bot_config, chain):
        chain.synth_pool.price = Decimal("1.02")
        bot = await ArbitrageBot.create(bot_config, chain.web3, dry_run=True)

        opportunity = await bot.monitor.check_once()
        assert opportunity.scenario == RICH
        assert bot.retry_scenario is None
