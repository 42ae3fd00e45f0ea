"""
StableSwap quote provider.

Reads expected swap outputs from two-coin StableSwap pools through their
``get_dy`` view function. Pool coin order is validated once at startup so
every later quote can trust the configured index mapping.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple, Union

from web3 import Web3

from ..amounts import from_raw
from ..exceptions import PoolMismatchError, QuoteError, UnknownTokenInPoolError
from ..types import PoolIdentity, Token
from ..utils import get_logger
from .abi import STABLESWAP_POOL_ABI

logger = get_logger(__name__)


@dataclass
class QuoteResult:
    """
    Result of one pool quote.

    Venue reverts and zero outputs are reported as ``success=False`` with a
    reason instead of raising.
    """

    success: bool
    pool: str
    amount_in_raw: int
    amount_out_raw: int = 0
    token_in: Optional[Token] = None
    token_out: Optional[Token] = None
    error: Optional[str] = None

    @property
    def amount_out(self) -> Decimal:
        if self.token_out is None:
            return Decimal(0)
        return from_raw(self.amount_out_raw, self.token_out.decimals)


class StableSwapQuoteProvider:
    """
    Quote provider for StableSwap pools.

    Args:
        web3: Connected Web3 instance
        pools: Pool identities to serve, looked up later by name
    """

    def __init__(self, web3: Web3, pools: Iterable[PoolIdentity]):
        self.web3 = web3
        self.pools: Dict[str, PoolIdentity] = {pool.name: pool for pool in pools}
        self._contracts = {
            name: web3.eth.contract(
                address=Web3.to_checksum_address(pool.address),
                abi=STABLESWAP_POOL_ABI,
            )
            for name, pool in self.pools.items()
        }
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Validate every configured pool against the live chain.

        Raises:
            PoolMismatchError: Pool has no code, or a coin differs from the
                configured token at the same index
            QuoteError: The pool could not be read
        """
        for pool in self.pools.values():
            await self._validate_pool(pool)
            logger.info(f"Validated pool {pool.name} ({pool.pair_name}) at {pool.address}")
        self._initialized = True

    async def _validate_pool(self, pool: PoolIdentity) -> None:
        loop = asyncio.get_event_loop()
        contract = self._contracts[pool.name]
        address = Web3.to_checksum_address(pool.address)

        try:
            code = await loop.run_in_executor(None, self.web3.eth.get_code, address)
            coin_tasks = [
                loop.run_in_executor(None, contract.functions.coins(i).call)
                for i in range(len(pool.coins))
            ]
            actual_coins = await asyncio.gather(*coin_tasks)
        except Exception as e:
            raise QuoteError(
                f"Failed to read pool {pool.name} at {pool.address}: {e}",
                pool=pool.name,
                reason=str(e),
            ) from e

        if not code:
            raise PoolMismatchError(
                f"No contract code at {pool.name} address {pool.address}",
                pool=pool.name,
            )

        for index, (expected, actual) in enumerate(zip(pool.coins, actual_coins)):
            if not expected.matches(actual):
                raise PoolMismatchError(
                    f"Pool {pool.name} coin {index} mismatch: expected "
                    f"{expected.symbol} ({expected.address}), found {actual}",
                    pool=pool.name,
                    expected=expected.address,
                    actual=actual,
                    index=index,
                )

    def _resolve_pool(self, pool: Union[PoolIdentity, str]) -> PoolIdentity:
        name = pool if isinstance(pool, str) else pool.name
        if name not in self.pools:
            raise QuoteError(f"Unknown pool: {name}", pool=name, reason="not configured")
        return self.pools[name]

    def resolve_indices(
        self, pool: Union[PoolIdentity, str], token_in: Token, token_out: Token
    ) -> Tuple[int, int]:
        """
        Map a token pair onto the pool's coin indices.

        Raises:
            UnknownTokenInPoolError: Either token is not held by the pool
        """
        identity = self._resolve_pool(pool)
        i = identity.index_of(token_in)
        j = identity.index_of(token_out)
        for token, index in ((token_in, i), (token_out, j)):
            if index is None:
                raise UnknownTokenInPoolError(
                    f"{token.symbol} ({token.address}) is not in pool "
                    f"{identity.name} ({identity.pair_name})",
                    pool=identity.name,
                    token=token.address,
                )
        if i == j:
            raise UnknownTokenInPoolError(
                f"Cannot swap {token_in.symbol} for itself in {identity.name}",
                pool=identity.name,
                token=token_in.address,
            )
        return i, j

    async def quote(
        self,
        pool: Union[PoolIdentity, str],
        token_in: Token,
        token_out: Token,
        amount_in_raw: int,
    ) -> QuoteResult:
        """
        Expected output of swapping ``amount_in_raw`` of ``token_in``.

        Args:
            pool: Pool identity or configured pool name
            token_in: Token sold
            token_out: Token bought
            amount_in_raw: Input amount in ``token_in`` precision

        Returns:
            QuoteResult with the output in ``token_out`` precision

        Raises:
            UnknownTokenInPoolError: Token pair does not belong to the pool
        """
        identity = self._resolve_pool(pool)
        i, j = self.resolve_indices(identity, token_in, token_out)

        result = QuoteResult(
            success=False,
            pool=identity.name,
            amount_in_raw=amount_in_raw,
            token_in=token_in,
            token_out=token_out,
        )

        if amount_in_raw <= 0:
            result.error = f"Input amount must be positive, got {amount_in_raw}"
            return result

        contract = self._contracts[identity.name]
        loop = asyncio.get_event_loop()
        try:
            amount_out = await loop.run_in_executor(
                None, contract.functions.get_dy(i, j, amount_in_raw).call
            )
        except Exception as e:
            result.error = f"get_dy({i}, {j}) reverted on {identity.name}: {e}"
            logger.warning(result.error)
            return result

        if not amount_out:
            result.error = (
                f"get_dy({i}, {j}) returned zero on {identity.name}; "
                "check the pool coin indices"
            )
            logger.warning(result.error)
            return result

        result.success = True
        result.amount_out_raw = int(amount_out)
        logger.debug(
            f"Quote {identity.name}: {from_raw(amount_in_raw, token_in.decimals)} "
            f"{token_in.symbol} -> {result.amount_out} {token_out.symbol}"
        )
        return result

    async def get_reference_price(
        self, pool: Union[PoolIdentity, str], base_token: Token, quote_token: Token
    ) -> Decimal:
        """
        Price of one unit of ``base_token`` expressed in ``quote_token``.

        Raises:
            QuoteError: The one-unit quote failed
            UnknownTokenInPoolError: Token pair does not belong to the pool
        """
        one_unit = 10**base_token.decimals
        result = await self.quote(pool, base_token, quote_token, one_unit)
        if not result.success:
            raise QuoteError(
                f"Reference price {base_token.symbol}/{quote_token.symbol} unavailable: "
                f"{result.error}",
                pool=result.pool,
                reason=result.error,
            )
        return result.amount_out
