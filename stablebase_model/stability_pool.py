"""
Stability Pool Model for the StableBase protocol.

This module simulates the StabilityPool contract which holds SBD staked by
depositors. When a safe is liquidated, the pool burns staked SBD to cancel its
debt and receives the safe's collateral as compensation. Depositors also earn
SBD fee rewards and SBR emissions.

Depletion is tracked with a compounding scaling factor. Each absorbed loss
multiplies the factor by the share of the pool that survived, so a depositor's
current stake is ``stake * scaling_factor / scaling_factor_seen``. When the
factor would drop below the minimum, it resets to PRECISION and the state at
the moment of the reset is kept as a snapshot. Depositors who last interacted
before one or more resets chain their stake and gains through every snapshot
between their epoch and the current one.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .constants import BASIS_POINTS_DIVISOR, PRECISION, ProtocolParameters
from .errors import InvalidAmount, NotFound
from .events import EventLog, EventType
from .fixed_point import apply_bps, checked_add, checked_sub, distribute_per_unit, mul_div

logger = logging.getLogger(__name__)


class SBRDistributionStatus(Enum):
    """Lifecycle of the SBR emission schedule."""
    NOT_STARTED = 0  # No depositor has staked yet
    STARTED = 1      # Emitting at a constant rate
    ENDED = 2        # Schedule exhausted, nothing more is emitted


class SBRClaimStatus(Enum):
    """Per-depositor SBR status."""
    NOT_CLAIMED = 0
    CLAIMED = 1  # Settled after the schedule ended, earns no further SBR


@dataclass
class Depositor:
    """Represents a depositor's stake and snapshots in the Stability Pool."""
    stake: int = 0                            # Stake as of the last update, before later depletion
    reward_snapshot: int = 0                  # reward_per_token when last updated
    collateral_snapshot: int = 0              # collateral_per_token when last updated
    sbr_reward_snapshot: int = 0              # sbr_per_token when last updated
    cumulative_scaling_factor_seen: int = 0   # Scaling factor when last updated, 0 if never staked
    reset_epoch_seen: int = 0                 # Reset epoch when last updated
    sbr_claim_status: SBRClaimStatus = SBRClaimStatus.NOT_CLAIMED


@dataclass(frozen=True)
class ResetSnapshot:
    """State of the pool at the moment its scaling factor was reset."""
    scaling_factor: int       # Compounded factor that triggered the reset
    reward_per_token: int
    collateral_per_token: int
    sbr_per_token: int


@dataclass(frozen=True)
class PendingGains:
    effective_stake: int = 0
    reward: int = 0
    collateral: int = 0
    sbr: int = 0


@dataclass
class Payout:
    """Amounts a stake, unstake or claim pays out."""
    reward: int = 0              # SBD fee rewards to the depositor
    collateral: int = 0          # Collateral gains to the depositor
    sbr: int = 0                 # SBR emissions to the depositor
    withdrawn: int = 0           # Stake returned to the depositor
    frontend: Optional[str] = None
    frontend_reward: int = 0
    frontend_collateral: int = 0
    frontend_sbr: int = 0
    stake: int = 0               # Depositor stake after the operation


class StabilityPool:
    """
    Simulates the StabilityPool contract which absorbs liquidated debt.
    """

    def __init__(self, params: ProtocolParameters, events: EventLog):
        self.params = params
        self.events = events

        # Sum of depositor stakes, net of absorbed losses
        self.total_staked = 0

        # Compounded depletion factor, PRECISION means no depletion since the last reset
        self.scaling_factor = PRECISION

        # Cumulative gains per unit of stake, scaled by the scaling factor
        self.reward_per_token = 0
        self.collateral_per_token = 0
        self.sbr_per_token = 0

        # Rounding carry of each distribution
        self.reward_loss = 0
        self.collateral_loss = 0
        self.sbr_loss = 0

        # Reset history, snapshot i closes epoch i
        self.reset_epoch = 0
        self.reset_snapshots: List[ResetSnapshot] = []

        # Stake left over when the last depositor exits
        self.stake_dust = 0

        # SBR emission schedule
        self.sbr_distribution_status = SBRDistributionStatus.NOT_STARTED
        self.last_sbr_distribution_time = 0
        self.sbr_distribution_end_time = 0
        self.total_sbr_emitted = 0

        self.depositors: Dict[str, Depositor] = {}

    @property
    def can_receive_rewards(self) -> bool:
        """Rewards can only be attributed while someone has stake in the pool."""
        return self.total_staked > 0

    def get_depositor(self, depositor: str) -> Depositor:
        try:
            return self.depositors[depositor]
        except KeyError:
            raise NotFound(f"Depositor {depositor} has never staked") from None

    def effective_stake(self, depositor: str) -> int:
        """
        Calculates a depositor's stake after every loss absorbed since their last update.

        Args:
            depositor: Address of the depositor

        Returns:
            The depositor's current stake
        """
        if depositor not in self.depositors:
            return 0
        return self.pending_rewards(depositor).effective_stake

    def pending_rewards(self, depositor: str) -> PendingGains:
        """
        Calculates the stake and gains of a depositor, chained through resets.

        Gains of the depositor's own epoch are measured against their snapshots
        with their raw stake. Each later epoch contributes its final per-token
        values applied to the stake the depositor held when that epoch began.

        Args:
            depositor: Address of the depositor

        Returns:
            PendingGains with the current effective stake and the unpaid gains
        """
        record = self.depositors.get(depositor)
        if record is None:
            return PendingGains()

        seen = record.cumulative_scaling_factor_seen
        if seen == 0:
            return PendingGains(effective_stake=record.stake)

        stake = record.stake
        if record.reset_epoch_seen == self.reset_epoch:
            return PendingGains(
                effective_stake=mul_div(stake, self.scaling_factor, seen),
                reward=mul_div(stake, checked_sub(self.reward_per_token, record.reward_snapshot), seen),
                collateral=mul_div(stake, checked_sub(self.collateral_per_token, record.collateral_snapshot), seen),
                sbr=self._sbr_gain(record, mul_div(stake, checked_sub(self.sbr_per_token,
                                                                      record.sbr_reward_snapshot), seen)),
            )

        # Close the depositor's own epoch
        first = self.reset_snapshots[record.reset_epoch_seen]
        reward = mul_div(stake, checked_sub(first.reward_per_token, record.reward_snapshot), seen)
        collateral = mul_div(stake, checked_sub(first.collateral_per_token, record.collateral_snapshot), seen)
        sbr = mul_div(stake, checked_sub(first.sbr_per_token, record.sbr_reward_snapshot), seen)
        effective = mul_div(stake, first.scaling_factor, seen)

        # Every full epoch in between started from PRECISION with zeroed per-token values
        for snapshot in self.reset_snapshots[record.reset_epoch_seen + 1:self.reset_epoch]:
            reward += mul_div(effective, snapshot.reward_per_token, PRECISION)
            collateral += mul_div(effective, snapshot.collateral_per_token, PRECISION)
            sbr += mul_div(effective, snapshot.sbr_per_token, PRECISION)
            effective = mul_div(effective, snapshot.scaling_factor, PRECISION)

        # Live epoch
        reward += mul_div(effective, self.reward_per_token, PRECISION)
        collateral += mul_div(effective, self.collateral_per_token, PRECISION)
        sbr += mul_div(effective, self.sbr_per_token, PRECISION)
        effective = mul_div(effective, self.scaling_factor, PRECISION)

        return PendingGains(effective_stake=effective, reward=reward, collateral=collateral,
                            sbr=self._sbr_gain(record, sbr))

    def stake(self, depositor: str, amount: int, now: int, frontend: Optional[str] = None,
              fee_bps: int = 0) -> Payout:
        """
        Adds SBD to a depositor's stake, paying out pending gains.

        The first stake ever made starts the SBR emission schedule.

        Args:
            depositor: Address of the depositor
            amount: SBD to stake
            now: Current timestamp
            frontend: Frontend receiving a share of the payout
            fee_bps: Frontend share of each payout

        Returns:
            Payout of the settled gains
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        self._check_frontend_fee(fee_bps)

        if self.sbr_distribution_status == SBRDistributionStatus.NOT_STARTED:
            self._start_sbr_distribution(now)
        self.distribute_sbr(now)

        gains = self.pending_rewards(depositor)
        new_stake = checked_add(gains.effective_stake, amount)
        payout = self._settle(depositor, gains, new_stake, frontend, fee_bps)
        self.total_staked = checked_add(self.total_staked, amount)

        self.events.emit(EventType.STAKED, depositor=depositor, amount=amount, stake=new_stake,
                         reward=payout.reward, collateral=payout.collateral, sbr=payout.sbr)
        return payout

    def unstake(self, depositor: str, amount: int, now: int, frontend: Optional[str] = None,
                fee_bps: int = 0) -> Payout:
        """
        Withdraws SBD from a depositor's current stake, paying out pending gains.

        Args:
            depositor: Address of the depositor
            amount: SBD to withdraw, at most the effective stake
            now: Current timestamp
            frontend: Frontend receiving a share of the payout
            fee_bps: Frontend share of each payout

        Returns:
            Payout of the settled gains and the withdrawn stake
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        self._check_frontend_fee(fee_bps)
        self.get_depositor(depositor)

        gains = self.pending_rewards(depositor)
        if amount > gains.effective_stake:
            raise InvalidAmount("Amount exceeds the depositor's stake")

        self.distribute_sbr(now)
        gains = self.pending_rewards(depositor)

        new_stake = gains.effective_stake - amount
        payout = self._settle(depositor, gains, new_stake, frontend, fee_bps)
        payout.withdrawn = amount
        self.total_staked = checked_sub(self.total_staked, amount)

        if not any(self.effective_stake(name) for name in self.depositors):
            if self.total_staked > 0:
                # Rounding left stake nobody can claim
                self.stake_dust = checked_add(self.stake_dust, self.total_staked)
                logger.warning("Stability pool emptied with %d unowned stake", self.total_staked)
                self.total_staked = 0
            if any(record.stake for record in self.depositors.values()):
                # Stakes rounded down to nothing must not share in later gains
                self._reset()

        self.events.emit(EventType.UNSTAKED, depositor=depositor, amount=amount, stake=new_stake,
                         reward=payout.reward, collateral=payout.collateral, sbr=payout.sbr)
        return payout

    def claim(self, depositor: str, now: int, frontend: Optional[str] = None, fee_bps: int = 0) -> Payout:
        """
        Pays out a depositor's pending gains without changing the stake.

        Args:
            depositor: Address of the depositor
            now: Current timestamp
            frontend: Frontend receiving a share of the payout
            fee_bps: Frontend share of each payout

        Returns:
            Payout of the settled gains
        """
        self._check_frontend_fee(fee_bps)
        self.get_depositor(depositor)
        self.distribute_sbr(now)

        gains = self.pending_rewards(depositor)
        payout = self._settle(depositor, gains, gains.effective_stake, frontend, fee_bps)

        self.events.emit(EventType.CLAIMED, depositor=depositor, reward=payout.reward,
                         collateral=payout.collateral, sbr=payout.sbr)
        return payout

    def add_reward(self, amount: int) -> bool:
        """
        Distributes SBD fee rewards to depositors.

        Returns:
            False if the pool has no stake and the caller must refund the amount
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if not self.can_receive_rewards:
            return False

        delta, self.reward_loss = distribute_per_unit(amount, self.total_staked, self.scaling_factor,
                                                      self.reward_loss)
        self.reward_per_token = checked_add(self.reward_per_token, delta)
        self.events.emit(EventType.REWARD_ADDED, pool="stability", amount=amount, per_token=delta)
        return True

    def add_collateral_reward(self, amount: int) -> bool:
        """
        Distributes collateral rewards to depositors.

        Returns:
            False if the pool has no stake and the caller must refund the amount
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if not self.can_receive_rewards:
            return False

        self._distribute_collateral(amount)
        self.events.emit(EventType.COLLATERAL_REWARD_ADDED, pool="stability", amount=amount)
        return True

    def absorb_loss(self, debt: int, collateral: int) -> Optional[ResetSnapshot]:
        """
        Cancels liquidated debt against the pool and credits the liquidated collateral.

        The collateral is distributed with the scaling factor and total stake
        from before the loss, since it compensates the stake that is burned.

        Args:
            debt: SBD debt to cancel, at most the total stake
            collateral: Collateral to distribute to depositors

        Returns:
            The snapshot pushed if the scaling factor was reset, else None
        """
        if debt <= 0:
            raise InvalidAmount("Debt must be greater than zero")
        if debt > self.total_staked:
            raise InvalidAmount("Stability pool cannot absorb more than its total stake")

        if collateral > 0:
            self._distribute_collateral(collateral)

        factor = mul_div(self.total_staked - debt, PRECISION, self.total_staked)
        self.scaling_factor = mul_div(self.scaling_factor, factor, PRECISION)
        self.total_staked -= debt

        self.events.emit(EventType.LOSS_ABSORBED, debt=debt, collateral=collateral,
                         scaling_factor=self.scaling_factor, total_staked=self.total_staked)

        if self.scaling_factor < self.params.minimum_scaling_factor:
            return self._reset()
        return None

    def distribute_sbr(self, now: int) -> int:
        """
        Emits the SBR accrued since the last distribution.

        Emission while the pool is empty is carried in ``sbr_loss`` and handed
        to the next depositors.

        Args:
            now: Current timestamp

        Returns:
            The amount emitted
        """
        if self.sbr_distribution_status != SBRDistributionStatus.STARTED:
            return 0

        until = min(now, self.sbr_distribution_end_time)
        elapsed = until - self.last_sbr_distribution_time
        amount = 0
        if elapsed > 0:
            amount = elapsed * self.params.sbr_distribution_rate
            self.last_sbr_distribution_time = until
            self.total_sbr_emitted = checked_add(self.total_sbr_emitted, amount)

            if self.can_receive_rewards:
                delta, self.sbr_loss = distribute_per_unit(amount, self.total_staked, self.scaling_factor,
                                                           self.sbr_loss)
                self.sbr_per_token = checked_add(self.sbr_per_token, delta)
            else:
                self.sbr_loss = checked_add(self.sbr_loss, amount)
            self.events.emit(EventType.SBR_REWARD_ADDED, amount=amount, elapsed=elapsed)

        if until >= self.sbr_distribution_end_time:
            self.sbr_distribution_status = SBRDistributionStatus.ENDED
            logger.info("SBR distribution ended after emitting %d", self.total_sbr_emitted)
        return amount

    def _start_sbr_distribution(self, now: int):
        self.sbr_distribution_status = SBRDistributionStatus.STARTED
        self.last_sbr_distribution_time = now
        self.sbr_distribution_end_time = now + self.params.sbr_distribution_duration
        logger.info("SBR distribution started at %d, ends at %d", now, self.sbr_distribution_end_time)

    def _distribute_collateral(self, amount: int):
        delta, self.collateral_loss = distribute_per_unit(amount, self.total_staked, self.scaling_factor,
                                                          self.collateral_loss)
        self.collateral_per_token = checked_add(self.collateral_per_token, delta)

    def _reset(self) -> ResetSnapshot:
        snapshot = ResetSnapshot(
            scaling_factor=self.scaling_factor,
            reward_per_token=self.reward_per_token,
            collateral_per_token=self.collateral_per_token,
            sbr_per_token=self.sbr_per_token,
        )
        self.reset_snapshots.append(snapshot)
        self.reset_epoch += 1

        self.reward_per_token = 0
        self.collateral_per_token = 0
        self.sbr_per_token = 0
        self.scaling_factor = PRECISION

        logger.info("Stability pool scaling factor reset, epoch %d, total staked %d",
                    self.reset_epoch, self.total_staked)
        self.events.emit(EventType.SCALING_FACTOR_RESET, epoch=self.reset_epoch, snapshot=snapshot)
        return snapshot

    def _sbr_gain(self, record: Depositor, sbr: int) -> int:
        return 0 if record.sbr_claim_status == SBRClaimStatus.CLAIMED else sbr

    def _settle(self, depositor: str, gains: PendingGains, new_stake: int, frontend: Optional[str],
                fee_bps: int) -> Payout:
        record = self.depositors.setdefault(depositor, Depositor())
        record.stake = new_stake
        record.reward_snapshot = self.reward_per_token
        record.collateral_snapshot = self.collateral_per_token
        record.sbr_reward_snapshot = self.sbr_per_token
        record.cumulative_scaling_factor_seen = self.scaling_factor
        record.reset_epoch_seen = self.reset_epoch
        if self.sbr_distribution_status == SBRDistributionStatus.ENDED:
            record.sbr_claim_status = SBRClaimStatus.CLAIMED

        payout = Payout(reward=gains.reward, collateral=gains.collateral, sbr=gains.sbr, stake=new_stake)
        if frontend is not None and fee_bps > 0:
            payout.frontend = frontend
            payout.frontend_reward = apply_bps(gains.reward, fee_bps)
            payout.frontend_collateral = apply_bps(gains.collateral, fee_bps)
            payout.frontend_sbr = apply_bps(gains.sbr, fee_bps)
            payout.reward -= payout.frontend_reward
            payout.collateral -= payout.frontend_collateral
            payout.sbr -= payout.frontend_sbr
        return payout

    @staticmethod
    def _check_frontend_fee(fee_bps: int):
        if fee_bps < 0 or fee_bps > BASIS_POINTS_DIVISOR:
            raise InvalidAmount("Frontend fee must be between 0 and 10000 basis points")
