"""
Checked fixed-point arithmetic.

Every amount in the model is an unsigned integer that must fit in 256 bits, as
it would on chain. Results outside that range are never wrapped: they raise
ArithmeticGuard.
"""

from typing import Tuple

from .constants import BASIS_POINTS_DIVISOR, MAX_UINT256
from .errors import ArithmeticGuard


def check_uint(value: int) -> int:
    if value < 0 or value > MAX_UINT256:
        raise ArithmeticGuard(f"Value {value} is outside the uint256 range")
    return value


def checked_add(a: int, b: int) -> int:
    return check_uint(a + b)


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticGuard(f"Underflow: {a} - {b}")
    return a - b


def saturating_sub(a: int, b: int) -> int:
    """Subtracts, clamping at zero instead of failing."""
    return a - b if a > b else 0


def checked_mul(a: int, b: int) -> int:
    return check_uint(a * b)


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Computes ``a * b // denominator`` with the intermediate product checked.

    Raises:
        ArithmeticGuard: On division by zero or overflow of the product
    """
    if denominator == 0:
        raise ArithmeticGuard("Division by zero")
    return checked_mul(check_uint(a), check_uint(b)) // denominator


def apply_bps(amount: int, rate_bps: int) -> int:
    """Returns ``rate_bps`` basis points of ``amount``, rounded down."""
    return mul_div(amount, rate_bps, BASIS_POINTS_DIVISOR)


def distribute_per_unit(amount: int, total_units: int, scaling_factor: int,
                        carry_loss: int) -> Tuple[int, int]:
    """
    Spreads ``amount`` over ``total_units`` as a per-unit increment.

    This is the lossy-division-with-carry step shared by every reward tracker
    and by pro-rata liquidation. Whatever integer division cannot attribute is
    returned as the new carry and added to the next distribution.

    Args:
        amount: Amount to distribute
        total_units: Units the amount is spread over (stake or collateral)
        scaling_factor: Multiplier applied to the per-unit value (PRECISION when
            the units are not compounded)
        carry_loss: Undistributed residual of the previous distribution

    Returns:
        Tuple of (per_unit_delta, new_carry_loss)
    """
    if total_units == 0:
        raise ArithmeticGuard("Cannot distribute over zero units")
    if scaling_factor == 0:
        raise ArithmeticGuard("Cannot distribute with a zero scaling factor")

    total = checked_add(amount, carry_loss)
    per_unit_delta = mul_div(total, scaling_factor, total_units)
    distributed = mul_div(per_unit_delta, total_units, scaling_factor)
    return per_unit_delta, checked_sub(total, distributed)
