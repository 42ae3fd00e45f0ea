"""
Flashloan venue terms.

The borrowed base token comes from a Uniswap V3 pool. Its ``fee()`` getter
is the flash fee in hundredths of a basis point (pips), charged rounded up on
the borrowed amount, and the pool can lend at most its own balance of the
base token. A configured ``flashloan_fee_bps`` is only used when no pool
address is configured, and in that case liquidity is unknown.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from web3 import Web3

from ..exceptions import MissingAddressError, NetworkError
from ..types import Token
from ..utils import get_logger
from .abi import ERC20_ABI, UNISWAP_V3_POOL_ABI

logger = get_logger(__name__)

PIPS_DENOMINATOR = 1_000_000
PIPS_PER_BPS = 100


@dataclass(frozen=True)
class FlashloanTerms:
    fee_pips: int
    available_raw: Optional[int]  # None when the pool balance was not read
    source: str  # "chain" or "config"

    @property
    def fee_bps(self) -> Decimal:
        return Decimal(self.fee_pips) / PIPS_PER_BPS

    def fee_for(self, principal_raw: int) -> int:
        """Flash fee on ``principal_raw``, rounded up like the pool charges it."""
        return -(-principal_raw * self.fee_pips // PIPS_DENOMINATOR)

    def can_lend(self, principal_raw: int) -> bool:
        return self.available_raw is None or principal_raw <= self.available_raw


class FlashloanPoolReader:
    """
    Reads the flashloan pool's fee and base-token liquidity.

    Args:
        web3: Connected Web3 instance
        base_token: Token being borrowed
        pool_address: Uniswap V3 pool, or None to use ``fee_bps``
        fee_bps: Offline fallback flash fee

    Raises:
        MissingAddressError: Neither a pool address nor a fallback fee is set
    """

    def __init__(
        self,
        web3: Web3,
        base_token: Token,
        pool_address: Optional[str] = None,
        fee_bps: Optional[int] = None,
    ):
        if pool_address is None and fee_bps is None:
            raise MissingAddressError(
                "contracts.flashloan_pool or flashloan_fee_bps must be configured",
                field="contracts.flashloan_pool",
            )

        self.web3 = web3
        self.base_token = base_token
        self.pool_address = pool_address
        self.fee_bps = fee_bps

        self._pool = None
        self._token = None
        if pool_address is not None:
            self._pool = web3.eth.contract(
                address=Web3.to_checksum_address(pool_address), abi=UNISWAP_V3_POOL_ABI
            )
            self._token = web3.eth.contract(
                address=Web3.to_checksum_address(base_token.address), abi=ERC20_ABI
            )
        else:
            logger.warning(
                f"Flashloan pool address missing; using configured fee ({fee_bps} bps) "
                "and skipping the liquidity check. Live fees may differ."
            )

    async def get_terms(self) -> FlashloanTerms:
        """
        Current flash fee and lendable base-token balance.

        Raises:
            NetworkError: The pool could not be read or reported an
                out-of-range fee
        """
        if self._pool is None:
            return FlashloanTerms(
                fee_pips=self.fee_bps * PIPS_PER_BPS, available_raw=None, source="config"
            )

        loop = asyncio.get_event_loop()
        pool = Web3.to_checksum_address(self.pool_address)
        try:
            fee_pips, balance = await asyncio.gather(
                loop.run_in_executor(None, self._pool.functions.fee().call),
                loop.run_in_executor(None, self._token.functions.balanceOf(pool).call),
            )
        except Exception as e:
            raise NetworkError(
                f"Failed to read flashloan pool {self.pool_address}: {e}",
                endpoint=self.pool_address,
            ) from e

        if not 0 <= fee_pips < PIPS_DENOMINATOR:
            raise NetworkError(
                f"fee() at {self.pool_address} returned out-of-range fee {fee_pips}",
                endpoint=self.pool_address,
            )

        terms = FlashloanTerms(fee_pips=int(fee_pips), available_raw=int(balance), source="chain")
        logger.debug(
            f"Flashloan pool: fee={terms.fee_bps} bps, "
            f"available={balance} raw {self.base_token.symbol}"
        )
        return terms
