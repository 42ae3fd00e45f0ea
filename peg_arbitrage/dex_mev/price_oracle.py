"""
Chainlink price oracle fetcher.

Reads push-style aggregator feeds, caches readings per oracle address and
reproduces the issuer's oracle adjustment for mint and redeem. The tolerance
check here mirrors the issuer's revert condition: a price outside
``1 +/- tolerance_band`` makes every mint and redeem revert.
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from web3 import Web3

from ..amounts import from_raw
from ..types import OracleReading
from ..utils import format_duration, get_logger, timestamp_to_iso
from .abi import AGGREGATOR_V3_ABI

logger = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 60
DEFAULT_STALE_SECONDS = 24 * 60 * 60
DEFAULT_TOLERANCE_BAND = Decimal("0.01")

_ONE = Decimal(1)


@dataclass
class OracleResult:
    """Reading or failure reason for one oracle query."""

    success: bool
    oracle_address: str
    reading: Optional[OracleReading] = None
    error: Optional[str] = None
    from_cache: bool = False

    @property
    def price(self) -> Optional[Decimal]:
        return self.reading.price if self.reading else None


def mint_output_after_oracle(amount: Decimal, price: Decimal) -> Decimal:
    """
    Synthetic amount minted for ``amount`` of base asset at oracle ``price``.

    Above peg the issuer mints 1:1; below peg the output is scaled down.
    """
    if price >= _ONE:
        return amount
    return amount * price


def redeem_output_after_oracle(amount: Decimal, price: Decimal) -> Decimal:
    """
    Base asset returned for ``amount`` of synthetic at oracle ``price``.

    At or below peg the issuer redeems 1:1; above peg the output is scaled down.
    """
    if price <= _ONE:
        return amount
    return amount / price


def mint_output_raw(amount_raw: int, answer: int, oracle_decimals: int) -> int:
    """
    Integer form of :func:`mint_output_after_oracle`.

    ``amount_raw`` is already expressed in the synthetic's precision; the
    result keeps that precision and truncates like the issuer contract.
    """
    one = 10**oracle_decimals
    if answer >= one:
        return amount_raw
    return amount_raw * answer // one


def redeem_output_raw(amount_raw: int, answer: int, oracle_decimals: int) -> int:
    """
    Integer form of :func:`redeem_output_after_oracle`.

    Keeps the input precision; callers rescale to the base asset afterwards.
    """
    one = 10**oracle_decimals
    if answer <= one:
        return amount_raw
    return amount_raw * one // answer


class OraclePriceFetcher:
    """
    Fetches and caches Chainlink aggregator readings.

    Readings are cached per lowercase oracle address for ``cache_ttl_seconds``.
    A failed fetch never replaces a cached reading.
    """

    def __init__(
        self,
        web3: Web3,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        stale_seconds: int = DEFAULT_STALE_SECONDS,
        tolerance_band: Decimal = DEFAULT_TOLERANCE_BAND,
        clock: Callable[[], float] = time.time,
    ):
        self.web3 = web3
        self.cache_ttl = cache_ttl_seconds
        self.stale_seconds = stale_seconds
        self.tolerance_band = Decimal(tolerance_band)
        self._clock = clock

        self._cache: Dict[str, Tuple[OracleResult, float]] = {}
        # Feed metadata never changes for a deployed aggregator
        self._metadata: Dict[str, Tuple[int, str]] = {}
        self._cache_hits = 0
        self._cache_misses = 0

    @property
    def lower_bound(self) -> Decimal:
        return _ONE - self.tolerance_band

    @property
    def upper_bound(self) -> Decimal:
        return _ONE + self.tolerance_band

    def is_within_tolerance(self, price: Decimal) -> bool:
        """True when ``price`` lies inside the issuer's band, bounds included."""
        return self.lower_bound <= Decimal(price) <= self.upper_bound

    async def get_price(
        self,
        oracle_address: str,
        description: Optional[str] = None,
        use_cache: bool = True,
    ) -> OracleResult:
        """
        Latest reading of an aggregator.

        Args:
            oracle_address: Aggregator contract address
            description: Label for logs; defaults to the feed's own description
            use_cache: Serve a cached reading younger than the TTL

        Returns:
            OracleResult; ``success=False`` with an error on any read failure
        """
        key = oracle_address.lower()

        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                result, cached_at = cached
                if self._clock() - cached_at < self.cache_ttl:
                    self._cache_hits += 1
                    logger.debug(
                        f"Using cached oracle price for {result.reading.description}: "
                        f"{result.price:.6f}"
                    )
                    return OracleResult(
                        success=True,
                        oracle_address=oracle_address,
                        reading=result.reading,
                        from_cache=True,
                    )

        self._cache_misses += 1
        try:
            reading = await self._fetch_reading(oracle_address, description)
        except Exception as e:
            label = description or oracle_address
            logger.error(f"Failed to fetch oracle price for {label} at {oracle_address}: {e}")
            return OracleResult(success=False, oracle_address=oracle_address, error=str(e))

        result = OracleResult(success=True, oracle_address=oracle_address, reading=reading)
        self._cache[key] = (result, self._clock())
        return result

    async def _fetch_reading(
        self, oracle_address: str, description: Optional[str]
    ) -> OracleReading:
        key = oracle_address.lower()
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(oracle_address), abi=AGGREGATOR_V3_ABI
        )
        loop = asyncio.get_event_loop()

        round_task = loop.run_in_executor(None, contract.functions.latestRoundData().call)
        if key not in self._metadata:
            decimals, feed_description, round_data = await asyncio.gather(
                loop.run_in_executor(None, contract.functions.decimals().call),
                loop.run_in_executor(None, contract.functions.description().call),
                round_task,
            )
            self._metadata[key] = (int(decimals), feed_description)
        else:
            round_data = await round_task

        decimals, feed_description = self._metadata[key]
        round_id, answer, _started_at, updated_at, _answered_in_round = round_data
        if answer <= 0:
            raise ValueError(f"Oracle returned non-positive answer {answer}")

        now = self._clock()
        age_seconds = now - updated_at
        is_stale = age_seconds > self.stale_seconds
        label = description or feed_description
        within = self.is_within_tolerance(from_raw(answer, decimals))

        reading = OracleReading(
            oracle_address=oracle_address,
            description=label,
            answer=int(answer),
            decimals=decimals,
            updated_at=int(updated_at),
            round_id=int(round_id),
            fetched_at=now,
            is_stale=is_stale,
            within_tolerance=within,
        )

        if is_stale:
            logger.warning(
                f"Oracle price is STALE for {label}: last updated "
                f"{timestamp_to_iso(updated_at)} ({format_duration(age_seconds)} ago). "
                "Mint and redeem may revert."
            )
        if not within:
            logger.warning(
                f"Oracle price {reading.price:.6f} for {label} is outside "
                f"[{self.lower_bound}, {self.upper_bound}]; mint and redeem will revert"
            )
        logger.debug(
            f"Fetched oracle price for {label}: ${reading.price:.6f} "
            f"(updated {int(age_seconds // 60)} minutes ago)"
        )
        return reading

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Oracle price cache cleared")

    def get_cache_stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._cache),
            "hits": self._cache_hits,
            "misses": self._cache_misses,
        }
