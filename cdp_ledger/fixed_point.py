"""
fixed_point.py - Three-Scale Fixed-Point Arithmetic

All ledger state is stored as plain Python ints in one of three fixed-point scales:

    WAD = 10**18   token amounts, collateral, debt shares
    RAY = 10**27   rates, accumulated rates, prices with safety margin
    RAD = 10**45   absolute debt / stablecoin values (WAD x RAY)

The scales are modelled as NewTypes so signatures document which scale a value
lives in. A NewType is erased at runtime; mixing scales is caught by the type
checker, not by the interpreter, which keeps the arithmetic as fast as int math.

ROUNDING:
=========

Every division in this module floors. Conversions that can lose precision are
used on the side where flooring favours the protocol: seized collateral and
debt shares removed from a debtor round down, so the position keeps the
remainder and any shortfall is written off as bad debt.

Human input (strings such as "0.5") goes through Decimal and is truncated to the
target scale. Floats are refused outright: a float cannot represent most
decimal fractions and would break bit-exact accounting.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import NewType, Union


# ============================================================================
# SCALES
# ============================================================================

WAD = 10 ** 18
RAY = 10 ** 27
RAD = 10 ** 45

# Basis points denominator for close factor, incentive and treasury fees.
BPS = 10_000

Wad = NewType("Wad", int)
Ray = NewType("Ray", int)
Rad = NewType("Rad", int)

HumanAmount = Union[str, int, Decimal]


# ============================================================================
# BASIC ARITHMETIC (floor)
# ============================================================================

def rmul(x: int, y: int) -> int:
    """Multiply a value by a RAY factor, result in the value's scale (floor)."""
    return x * y // RAY


def rdiv(x: int, y: int) -> int:
    """Divide by a RAY factor, result in the numerator's scale (floor)."""
    return x * RAY // y


def rpow(x: int, n: int, base: int = RAY) -> int:
    """
    Raise a fixed-point number to an integer power by repeated squaring.

    Each intermediate product is rounded half-up back to `base`, so the result
    matches the reference implementation bit for bit.

    Args:
        x: Fixed-point base (in units of `base`)
        n: Non-negative integer exponent
        base: Fixed-point one (RAY for per-second rates)

    Returns:
        x ** n in units of `base`
    """
    if n < 0:
        raise ValueError(f"rpow exponent must be non-negative, got {n}")
    if x == 0:
        return base if n == 0 else 0

    z = x if n % 2 else base
    half = base // 2
    n //= 2
    while n:
        x = (x * x + half) // base
        if n % 2:
            z = (z * x + half) // base
        n //= 2
    return z


# ============================================================================
# SCALE CONVERSIONS
# ============================================================================

def wad_to_rad(amount: Wad) -> Rad:
    """Lift a WAD amount to RAD. Exact."""
    return Rad(amount * RAY)


def rad_to_wad_down(value: Rad) -> Wad:
    """Truncate a RAD value to WAD, rounding toward zero (credit side)."""
    if value < 0:
        return Wad(-((-value) // RAY))
    return Wad(value // RAY)


def debt_value(debt_share: Wad, rate: Ray) -> Rad:
    """Debt value of a share at an accumulated rate. Exact: WAD x RAY = RAD."""
    return Rad(debt_share * rate)


def debt_share_for_value(value: Rad, rate: Ray) -> Wad:
    """
    Number of whole debt shares worth at most `value` at `rate`.

    Rounds down: use when removing shares from a debtor, who still owes what remains.
    """
    if rate <= 0:
        raise ValueError(f"Accumulated rate must be positive, got {rate}")
    return Wad(value // rate)


# ============================================================================
# HUMAN INPUT / OUTPUT
# ============================================================================

def _to_scale(value: HumanAmount, scale: int) -> int:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Fixed-point amounts must be str, int or Decimal, got {type(value).__name__}")
    if isinstance(value, int):
        return value * scale
    if isinstance(value, str):
        value = Decimal(value)
    if not isinstance(value, Decimal):
        raise TypeError(f"Fixed-point amounts must be str, int or Decimal, got {type(value).__name__}")
    if not value.is_finite():
        raise ValueError(f"Fixed-point amounts must be finite, got {value}")
    with localcontext() as ctx:
        ctx.prec = 100
        return int((value * scale).to_integral_value(rounding=ROUND_DOWN))


def to_wad(value: HumanAmount) -> Wad:
    """Parse a human amount ("1.5", 2, Decimal("0.1")) into WAD, truncating."""
    return Wad(_to_scale(value, WAD))


def to_ray(value: HumanAmount) -> Ray:
    """Parse a human amount into RAY, truncating."""
    return Ray(_to_scale(value, RAY))


def to_rad(value: HumanAmount) -> Rad:
    """Parse a human amount into RAD, truncating."""
    return Rad(_to_scale(value, RAD))


def _from_scale(value: int, scale: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(value) / Decimal(scale)


def from_wad(value: int) -> Decimal:
    """Render a WAD int as a Decimal."""
    return _from_scale(value, WAD)


def from_ray(value: int) -> Decimal:
    """Render a RAY int as a Decimal."""
    return _from_scale(value, RAY)


def from_rad(value: int) -> Decimal:
    """Render a RAD int as a Decimal."""
    return _from_scale(value, RAD)
