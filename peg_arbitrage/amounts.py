"""
Decimal-aware token amounts.

On-chain amounts are integers scaled by the token's decimals (6 for the base
stable asset, 18 for the synthetic and intermediary assets). All conversions
here go through :class:`decimal.Decimal` with enough precision for a uint256,
so a value survives ``to_raw`` -> ``from_raw`` unchanged.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Union

from .exceptions import AmountPrecisionError

# uint256 max has 78 digits
_UINT256_DIGITS = 78

SUPPORTED_TOKEN_DECIMALS = (6, 18)

Numeric = Union[Decimal, int, str, float]


def _as_decimal(value: Numeric) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the shortest repr instead of the binary expansion
        return Decimal(str(value))
    return Decimal(value)


def _check_decimals(decimals: int) -> None:
    if not isinstance(decimals, int) or decimals < 0 or decimals > _UINT256_DIGITS:
        raise ValueError(f"decimals must be an int in [0, {_UINT256_DIGITS}], got {decimals!r}")


def to_raw(value: Numeric, decimals: int, strict: bool = True) -> int:
    """
    Convert a human-readable amount into its integer on-chain representation.

    Args:
        value: Amount in token units (e.g. ``Decimal("1000.5")``)
        decimals: Token precision
        strict: If True, reject values with more fractional digits than
            ``decimals``. If False, round such values down.

    Returns:
        Integer amount scaled by ``10**decimals``

    Raises:
        AmountPrecisionError: Value needs more precision than the token has
            (strict mode), or is negative / not finite
    """
    _check_decimals(decimals)
    amount = _as_decimal(value)
    if not amount.is_finite():
        raise AmountPrecisionError(f"Amount {value!r} is not finite", value, decimals)
    if amount < 0:
        raise AmountPrecisionError(f"Amount {value!r} is negative", value, decimals)

    with localcontext() as ctx:
        ctx.prec = _UINT256_DIGITS + decimals
        scaled = amount.scaleb(decimals)
        integral = scaled.to_integral_value(rounding=ROUND_DOWN)
        if integral != scaled and strict:
            raise AmountPrecisionError(
                f"Amount {value} has more than {decimals} fractional digits",
                value,
                decimals,
            )
        return int(integral)


def from_raw(amount_raw: int, decimals: int) -> Decimal:
    """Convert an integer on-chain amount into an exact Decimal value."""
    _check_decimals(decimals)
    with localcontext() as ctx:
        ctx.prec = _UINT256_DIGITS + decimals
        return Decimal(int(amount_raw)).scaleb(-decimals)


@dataclass(frozen=True)
class TokenAmount:
    """An integer amount tagged with the precision it is expressed in."""

    raw: int
    decimals: int

    def __post_init__(self):
        _check_decimals(self.decimals)
        if self.raw < 0:
            raise AmountPrecisionError(
                f"Raw amount {self.raw} is negative", self.raw, self.decimals
            )

    @classmethod
    def from_decimal(
        cls, value: Numeric, decimals: int, strict: bool = True
    ) -> "TokenAmount":
        return cls(to_raw(value, decimals, strict=strict), decimals)

    @property
    def value(self) -> Decimal:
        return from_raw(self.raw, self.decimals)

    def rescale(self, decimals: int) -> "TokenAmount":
        """
        Express the same amount at another precision.

        Scaling down truncates, matching Solidity integer division.
        """
        _check_decimals(decimals)
        if decimals >= self.decimals:
            return TokenAmount(self.raw * 10 ** (decimals - self.decimals), decimals)
        return TokenAmount(self.raw // 10 ** (self.decimals - decimals), decimals)

    def __str__(self) -> str:
        return f"{self.value:f}"
