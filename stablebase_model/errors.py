"""
Exceptions raised by the StableBase model.

Input errors derive from ValueError and are rejected before any state is
touched. Invariant violations derive from FatalInvariantError; they mean the
model itself is broken and the whole operation must be abandoned.
"""


class StableBaseError(Exception):
    """Base class for every error raised by the model."""


class InvalidInput(StableBaseError, ValueError):
    """An argument is out of range for the requested operation."""


class InvalidAmount(InvalidInput):
    """Amount is not positive or exceeds what is available."""


class NotFound(InvalidInput):
    """Unknown position, depositor or queue node."""


class DebtTooLow(InvalidInput):
    """Resulting debt would be non-zero but below the minimum debt."""


class CollateralNotEmpty(InvalidInput):
    """A position cannot be closed while it still carries debt."""


class InsufficientCollateral(InvalidInput):
    """The operation would leave a position below the liquidation ratio."""


class InsufficientBalance(InvalidInput):
    """A token account does not hold enough to cover a transfer or burn."""


class NothingToLiquidate(InvalidInput):
    """The liquidation queue is empty."""


class NotLiquidatable(InvalidInput):
    """The selected position is healthy at the current price."""


class CannotLiquidateLastPosition(InvalidInput):
    """No other collateral remains to absorb a socialized liquidation."""


class Unauthorized(StableBaseError, PermissionError):
    """Caller does not own the position."""


class FatalInvariantError(StableBaseError, RuntimeError):
    """An internal invariant no longer holds."""


class QueueInconsistency(FatalInvariantError):
    """An ordered index lost its ordering or its links."""


class ArithmeticGuard(FatalInvariantError, ArithmeticError):
    """Fixed-point arithmetic left the unsigned 256-bit range or divided by zero."""
