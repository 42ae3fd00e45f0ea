"""
Tests for the StableSwap quote provider.

Tests cover:
- Startup validation of pool coin order
- Index resolution for both swap directions
- Reverts and zero outputs reported as failed quotes
- Reference price from a one-unit quote
"""

from decimal import Decimal

import pytest

from peg_arbitrage.dex_mev.quote_provider import StableSwapQuoteProvider
from peg_arbitrage.exceptions import (
    ConfigurationError,
    PoolMismatchError,
    QuoteError,
    UnknownTokenInPoolError,
)


@pytest.fixture
def provider(chain, bot_config):
    return StableSwapQuoteProvider(
        chain.web3,
        [bot_config.pool_identity("base_pool"), bot_config.pool_identity("synth_pool")],
    )


class TestInitialize:
    @pytest.mark.asyncio
    async def test_valid_pools(self, provider):
        await provider.initialize()
        assert provider.is_initialized

    @pytest.mark.asyncio
    async def test_coin_order_mismatch(self, provider, chain):
        chain.synth_pool.coins.reverse()
        with pytest.raises(PoolMismatchError) as exc_info:
            await provider.initialize()
        assert exc_info.value.pool == "synth_pool"
        assert exc_info.value.index == 0
        assert not provider.is_initialized

    @pytest.mark.asyncio
    async def test_no_code_at_pool_address(self, provider, chain, bot_config):
        del chain.web3.eth.contracts[bot_config.base_pool.address.lower()]
        with pytest.raises(PoolMismatchError, match="No contract code"):
            await provider.initialize()

    @pytest.mark.asyncio
    async def test_pool_mismatch_is_a_configuration_error(self, provider, chain, tokens):
        chain.base_pool.coins[1] = tokens["VUSD"].address
        with pytest.raises(ConfigurationError, match="coin 1 mismatch"):
            await provider.initialize()


class TestResolveIndices:
    def test_both_directions(self, provider, tokens):
        assert provider.resolve_indices("base_pool", tokens["USDC"], tokens["crvUSD"]) == (0, 1)
        assert provider.resolve_indices("base_pool", tokens["crvUSD"], tokens["USDC"]) == (1, 0)
        assert provider.resolve_indices("synth_pool", tokens["VUSD"], tokens["crvUSD"]) == (1, 0)

    def test_token_not_in_pool(self, provider, tokens):
        with pytest.raises(UnknownTokenInPoolError) as exc_info:
            provider.resolve_indices("base_pool", tokens["VUSD"], tokens["USDC"])
        assert exc_info.value.token == tokens["VUSD"].address

    def test_same_token_both_sides(self, provider, tokens):
        with pytest.raises(UnknownTokenInPoolError):
            provider.resolve_indices("base_pool", tokens["USDC"], tokens["USDC"])

    def test_unknown_pool_name(self, provider, tokens):
        with pytest.raises(QuoteError, match="Unknown pool"):
            provider.resolve_indices("tri_pool", tokens["USDC"], tokens["crvUSD"])


class TestQuote:
    @pytest.mark.asyncio
    async def test_quote_scales_between_precisions(self, provider, chain, tokens):
        chain.base_pool.price = Decimal("0.999")
        result = await provider.quote(
            "base_pool", tokens["USDC"], tokens["crvUSD"], 1000 * 10**6
        )
        assert result.success
        assert result.amount_out_raw == 999 * 10**18
        assert result.amount_out == Decimal("999")

    @pytest.mark.asyncio
    async def test_reverse_direction(self, provider, chain, tokens):
        chain.base_pool.price = Decimal("1.25")
        result = await provider.quote(
            "base_pool", tokens["crvUSD"], tokens["USDC"], 1000 * 10**18
        )
        assert result.success
        assert result.amount_out_raw == 800 * 10**6

    @pytest.mark.asyncio
    async def test_revert_reported_not_raised(self, provider, chain, tokens):
        chain.synth_pool.revert = True
        result = await provider.quote(
            "synth_pool", tokens["crvUSD"], tokens["VUSD"], 10**18
        )
        assert not result.success
        assert "reverted" in result.error

    @pytest.mark.asyncio
    async def test_zero_output_is_failure(self, provider, chain, tokens):
        chain.synth_pool.zero = True
        result = await provider.quote(
            "synth_pool", tokens["crvUSD"], tokens["VUSD"], 10**18
        )
        assert not result.success
        assert "zero" in result.error

    @pytest.mark.asyncio
    async def test_non_positive_input(self, provider, chain, tokens):
        result = await provider.quote("synth_pool", tokens["crvUSD"], tokens["VUSD"], 0)
        assert not result.success
        assert chain.synth_pool.calls == 0

    @pytest.mark.asyncio
    async def test_wrong_pool_for_pair_raises(self, provider, tokens):
        with pytest.raises(UnknownTokenInPoolError):
            await provider.quote("synth_pool", tokens["USDC"], tokens["VUSD"], 10**6)


class TestReferencePrice:
    @pytest.mark.asyncio
    async def test_one_unit_quote(self, provider, chain, bot_config):
        chain.synth_pool.price = Decimal("1.0125")
        price = await provider.get_reference_price(
            "synth_pool", bot_config.intermediary, bot_config.synth
        )
        assert price == Decimal("1.0125")

    @pytest.mark.asyncio
    async def test_failed_quote_raises(self, provider, chain, bot_config):
        chain.synth_pool.revert = True
        with pytest.raises(QuoteError, match="Reference price"):
            await provider.get_reference_price(
                "synth_pool", bot_config.intermediary, bot_config.synth
            )
