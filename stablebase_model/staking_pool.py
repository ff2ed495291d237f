"""
Staking Pool Model for the StableBase protocol.

This module simulates the DFIRE staking contract. DFIRE holders stake to earn a
share of the protocol fees, paid in SBD, and of the collateral the fee
distributor routes to them. Stakes are never depleted, so every distribution
uses a constant PRECISION scaling factor.
"""

import logging
from dataclasses import dataclass
from typing import Dict

from .constants import PRECISION
from .errors import InvalidAmount, NotFound
from .events import EventLog, EventType
from .fixed_point import checked_add, checked_sub, distribute_per_unit, mul_div

logger = logging.getLogger(__name__)


@dataclass
class Stake:
    amount: int = 0
    reward_snapshot: int = 0      # reward_per_token when last updated
    collateral_snapshot: int = 0  # collateral_per_token when last updated


@dataclass(frozen=True)
class StakingPayout:
    reward: int = 0
    collateral: int = 0
    withdrawn: int = 0
    stake: int = 0


class StakingPool:
    """
    Simulates the DFIRE staking contract.
    """

    def __init__(self, events: EventLog):
        self.events = events

        self.total_staked = 0
        self.reward_per_token = 0
        self.collateral_per_token = 0
        self.reward_loss = 0
        self.collateral_loss = 0

        self.stakes: Dict[str, Stake] = {}

    @property
    def can_receive_rewards(self) -> bool:
        return self.total_staked > 0

    def pending(self, staker: str):
        """
        Calculates the unpaid rewards of a staker.

        Returns:
            Tuple of (reward, collateral)
        """
        record = self.stakes.get(staker)
        if record is None:
            return 0, 0
        reward = mul_div(record.amount, checked_sub(self.reward_per_token, record.reward_snapshot), PRECISION)
        collateral = mul_div(record.amount, checked_sub(self.collateral_per_token, record.collateral_snapshot),
                             PRECISION)
        return reward, collateral

    def stake(self, staker: str, amount: int) -> StakingPayout:
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        reward, collateral = self.pending(staker)
        record = self._settle(staker)
        record.amount = checked_add(record.amount, amount)
        self.total_staked = checked_add(self.total_staked, amount)

        self.events.emit(EventType.STAKED, pool="dfire", staker=staker, amount=amount, stake=record.amount)
        return StakingPayout(reward=reward, collateral=collateral, stake=record.amount)

    def unstake(self, staker: str, amount: int) -> StakingPayout:
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if staker not in self.stakes:
            raise NotFound(f"Staker {staker} has never staked")
        if amount > self.stakes[staker].amount:
            raise InvalidAmount("Amount exceeds the staked balance")

        reward, collateral = self.pending(staker)
        record = self._settle(staker)
        record.amount -= amount
        self.total_staked = checked_sub(self.total_staked, amount)

        self.events.emit(EventType.UNSTAKED, pool="dfire", staker=staker, amount=amount, stake=record.amount)
        return StakingPayout(reward=reward, collateral=collateral, withdrawn=amount, stake=record.amount)

    def claim(self, staker: str) -> StakingPayout:
        if staker not in self.stakes:
            raise NotFound(f"Staker {staker} has never staked")

        reward, collateral = self.pending(staker)
        record = self._settle(staker)

        self.events.emit(EventType.CLAIMED, pool="dfire", staker=staker, reward=reward, collateral=collateral)
        return StakingPayout(reward=reward, collateral=collateral, stake=record.amount)

    def add_reward(self, amount: int) -> bool:
        """
        Distributes SBD fee rewards to stakers.

        Returns:
            False if nobody is staked and the caller must refund the amount
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if not self.can_receive_rewards:
            return False

        delta, self.reward_loss = distribute_per_unit(amount, self.total_staked, PRECISION, self.reward_loss)
        self.reward_per_token = checked_add(self.reward_per_token, delta)
        self.events.emit(EventType.REWARD_ADDED, pool="dfire", amount=amount, per_token=delta)
        return True

    def add_collateral_reward(self, amount: int) -> bool:
        """
        Distributes collateral rewards to stakers.

        Returns:
            False if nobody is staked and the caller must refund the amount
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if not self.can_receive_rewards:
            return False

        delta, self.collateral_loss = distribute_per_unit(amount, self.total_staked, PRECISION,
                                                          self.collateral_loss)
        self.collateral_per_token = checked_add(self.collateral_per_token, delta)
        self.events.emit(EventType.COLLATERAL_REWARD_ADDED, pool="dfire", amount=amount, per_token=delta)
        return True

    def _settle(self, staker: str) -> Stake:
        record = self.stakes.setdefault(staker, Stake())
        record.reward_snapshot = self.reward_per_token
        record.collateral_snapshot = self.collateral_per_token
        return record
