"""
StableBase protocol model.

An integer fixed-point model of the StableBase CDP stablecoin: safes with lazy
accrual of socialized liquidations, hinted ordered queues for liquidation and
redemption, and a stability pool with a compounding, resettable scaling factor.
"""

from .constants import PRECISION, BASIS_POINTS_DIVISOR, ProtocolParameters
from .errors import (StableBaseError, InvalidInput, InvalidAmount, NotFound, DebtTooLow,
                     CollateralNotEmpty, InsufficientCollateral, InsufficientBalance,
                     NothingToLiquidate, NotLiquidatable, CannotLiquidateLastPosition,
                     Unauthorized, FatalInvariantError, QueueInconsistency, ArithmeticGuard)
from .events import Event, EventLog, EventType
from .ordered_index import ConsumeEnd, OrderedIndex
from .position_ledger import Mode, Position, PositionLedger
from .stability_pool import StabilityPool
from .staking_pool import StakingPool
from .fee_distributor import FeeDistributor, FeeKind
from .liquidation import LiquidationEngine
from .redemption import RedemptionEngine
from .price_feed import PriceFeed
from .protocol import ProtocolState, StableBaseProtocol

__version__ = "0.1.0"
