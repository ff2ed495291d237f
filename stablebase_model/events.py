"""
Event stream of the StableBase model.

Each component appends events to the shared EventLog of the protocol state,
mirroring the events the contracts emit. The log is kept in memory only.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of events reported by the protocol."""
    # Positions
    POSITION_OPENED = "PositionOpened"
    POSITION_UPDATED = "PositionUpdated"  # pending redistribution accrued
    POSITION_CLOSED = "PositionClosed"
    BORROWED = "Borrowed"
    REPAID = "Repaid"
    COLLATERAL_ADDED = "CollateralAdded"
    COLLATERAL_WITHDRAWN = "CollateralWithdrawn"
    FEE_TOPPED_UP = "FeeTopup"
    MODE_CHANGED = "ProtocolModeChanged"

    # Liquidation and redemption
    LIQUIDATED_USING_STABILITY_POOL = "LiquidatedUsingStabilityPool"
    LIQUIDATED_USING_SECONDARY_MECHANISM = "LiquidatedUsingSecondaryMechanism"
    REDEEMED = "Redeemed"
    REDEEMED_BATCH = "RedeemedBatch"

    # Pools
    STAKED = "Staked"
    UNSTAKED = "Unstaked"
    CLAIMED = "RewardClaimed"
    REWARD_ADDED = "RewardAdded"
    COLLATERAL_REWARD_ADDED = "CollateralRewardAdded"
    SBR_REWARD_ADDED = "SBRRewardsAdded"
    LOSS_ABSORBED = "LossAbsorbed"
    SCALING_FACTOR_RESET = "ScalingFactorReset"

    # Fees
    FEE_DISTRIBUTED = "FeeDistributed"
    FEE_REFUNDED = "FeeRefunded"

    # Ordered indexes
    NODE_INSERTED = "NodeInserted"
    NODE_UPDATED = "NodeUpdated"
    NODE_REMOVED = "NodeRemoved"


@dataclass(frozen=True)
class Event:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key):
        return self.data[key]


class EventLog:
    """Append-only record of emitted events."""

    def __init__(self):
        self.events: List[Event] = []

    def emit(self, event_type: EventType, **data) -> Event:
        event = Event(event_type, data)
        self.events.append(event)
        logger.debug("%s %s", event_type.value, data)
        return event

    def of_type(self, event_type: EventType) -> List[Event]:
        return [event for event in self.events if event.type == event_type]

    def last(self, event_type: Optional[EventType] = None) -> Optional[Event]:
        for event in reversed(self.events):
            if event_type is None or event.type == event_type:
                return event
        return None

    def truncate(self, length: int):
        """Drops every event recorded after the first ``length`` ones."""
        del self.events[length:]

    def clear(self):
        self.events.clear()

    def __len__(self):
        return len(self.events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)
