"""
Price Feed Model for the StableBase protocol.

A pull-based oracle: the protocol asks for the collateral price whenever it
needs one. Prices are integers scaled by PRECISION.
"""

from .constants import PRECISION
from .errors import InvalidAmount


class PriceFeed:
    """Simple price feed implementation for simulations."""

    def __init__(self, initial_price: int = 2000 * PRECISION):
        self.price = 0
        self.set_price(initial_price)

    def fetch_price(self) -> int:
        """Returns the current price."""
        return self.price

    def set_price(self, new_price: int):
        """Sets a new price."""
        if new_price <= 0:
            raise InvalidAmount("Price must be greater than zero")
        self.price = int(new_price)
