"""
Issuer fee schedule.

The minter's ``mintingFee()`` and the redeemer's ``redeemFee()`` getters are
the source of truth for the fees the issuer charges. Configured fee values are
only used when no issuer contract address is configured.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from ..exceptions import MissingAddressError, NetworkError
from ..utils import BPS_DENOMINATOR, get_logger
from .abi import MINTER_ABI, REDEEMER_ABI

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuerFees:
    mint_fee_bps: int
    redeem_fee_bps: int
    source: str  # "chain" or "config"


class IssuerFeeReader:
    """
    Reads the issuer's mint and redeem fees.

    Args:
        web3: Connected Web3 instance
        minter_address: Minter contract, or None to use ``mint_fee_bps``
        redeemer_address: Redeemer contract, or None to use ``redeem_fee_bps``
        mint_fee_bps: Offline fallback mint fee
        redeem_fee_bps: Offline fallback redeem fee

    Raises:
        MissingAddressError: Neither an address nor a fallback is set for a fee
    """

    def __init__(
        self,
        web3: Web3,
        minter_address: Optional[str] = None,
        redeemer_address: Optional[str] = None,
        mint_fee_bps: Optional[int] = None,
        redeem_fee_bps: Optional[int] = None,
    ):
        if minter_address is None and mint_fee_bps is None:
            raise MissingAddressError(
                "contracts.minter or mint_fee_bps must be configured",
                field="contracts.minter",
            )
        if redeemer_address is None and redeem_fee_bps is None:
            raise MissingAddressError(
                "contracts.redeemer or redeem_fee_bps must be configured",
                field="contracts.redeemer",
            )

        self.web3 = web3
        self.minter_address = minter_address
        self.redeemer_address = redeemer_address
        self.mint_fee_bps = mint_fee_bps
        self.redeem_fee_bps = redeem_fee_bps

        self._minter = self._contract(minter_address, MINTER_ABI)
        self._redeemer = self._contract(redeemer_address, REDEEMER_ABI)

        if self._minter is None or self._redeemer is None:
            logger.warning(
                "Issuer contract address missing; using configured fee "
                f"(mint={mint_fee_bps} bps, redeem={redeem_fee_bps} bps). "
                "Live fees may differ."
            )

    def _contract(self, address: Optional[str], abi):
        if address is None:
            return None
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def get_fees(self) -> IssuerFees:
        """
        Current mint and redeem fees in basis points.

        Raises:
            NetworkError: A live fee getter could not be read or returned an
                out-of-range value
        """
        loop = asyncio.get_event_loop()

        async def read(contract, getter: str, address: Optional[str], fallback):
            if contract is None:
                return fallback
            try:
                value = await loop.run_in_executor(
                    None, getattr(contract.functions, getter)().call
                )
            except Exception as e:
                raise NetworkError(
                    f"Failed to read {getter}() from {address}: {e}", endpoint=address
                ) from e
            if not 0 <= value < BPS_DENOMINATOR:
                raise NetworkError(
                    f"{getter}() at {address} returned out-of-range fee {value}",
                    endpoint=address,
                )
            return int(value)

        mint_fee, redeem_fee = await asyncio.gather(
            read(self._minter, "mintingFee", self.minter_address, self.mint_fee_bps),
            read(self._redeemer, "redeemFee", self.redeemer_address, self.redeem_fee_bps),
        )
        source = "chain" if self._minter is not None and self._redeemer is not None else "config"
        logger.debug(f"Issuer fees: mint={mint_fee} bps, redeem={redeem_fee} bps ({source})")
        return IssuerFees(mint_fee_bps=mint_fee, redeem_fee_bps=redeem_fee, source=source)
