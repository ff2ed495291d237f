"""
Position Ledger Model for the StableBase protocol.

This module simulates the bookkeeping of safes: per-position collateral and
debt, the global totals, and the cumulative per-unit counters through which
socialized liquidations reach every remaining position.

Accrual is lazy. A socialized liquidation only bumps the global counters; a
position picks up its share the next time it is touched, when the difference
between the counters and its snapshot is multiplied by its collateral. Every
mutating operation therefore accrues the position first, then mutates it, then
re-keys it in the ordered queues it belongs to. A position sits in both queues
exactly when it carries debt.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .constants import BASIS_POINTS_DIVISOR, MAX_UINT256, PRECISION, ProtocolParameters
from .errors import (CollateralNotEmpty, DebtTooLow, FatalInvariantError, InsufficientCollateral,
                     InvalidAmount, InvalidInput, NotFound)
from .events import EventLog, EventType
from .fixed_point import apply_bps, checked_add, checked_sub, mul_div, saturating_sub
from .ordered_index import SENTINEL, OrderedIndex

logger = logging.getLogger(__name__)


class Mode(Enum):
    """
    Operating mode of the protocol.

    The protocol starts in bootstrap mode and switches to normal mode, once and
    for all, when the total debt first exceeds the bootstrap threshold.
    """
    BOOTSTRAP = 0
    NORMAL = 1


@dataclass
class AccrualSnapshot:
    """Cumulative per-unit values a position was last synced with."""
    collateral_per_unit_seen: int = 0
    debt_per_unit_seen: int = 0


@dataclass
class Position:
    """
    A single safe: collateral locked against SBD debt.
    """
    id: int
    owner: str
    collateral: int = 0               # Native collateral locked in the safe
    debt: int = 0                     # Outstanding SBD debt
    fee_weight: int = 0               # Sum of fee rates paid, redemption queue key
    fee_paid: int = 0                 # Cumulative SBD fees paid
    total_borrowed_lifetime: int = 0  # Sum of every amount borrowed
    snapshot: AccrualSnapshot = field(default_factory=AccrualSnapshot)

    def collateral_ratio(self) -> int:
        """
        Returns the debt per unit of collateral, scaled by PRECISION.

        This is the liquidation queue key: the higher it is, the riskier the
        position. A position without collateral sorts last.
        """
        if self.collateral == 0:
            return MAX_UINT256 if self.debt > 0 else 0
        return mul_div(self.debt, PRECISION, self.collateral)


@dataclass
class GlobalAccrual:
    """Protocol-wide totals and accrual counters."""
    cumulative_collateral_per_unit: int = 0  # Socialized collateral per unit of collateral
    cumulative_debt_per_unit: int = 0        # Socialized debt per unit of collateral
    total_collateral: int = 0                # Sum of accrued position collateral
    total_debt: int = 0                      # Sum of accrued position debt
    mode: Mode = Mode.BOOTSTRAP
    collateral_loss: int = 0                 # Rounding carry of collateral socialization
    debt_loss: int = 0                       # Rounding carry of debt socialization
    undistributed_collateral: int = 0        # Socialized collateral not yet accrued by any position
    undistributed_debt: int = 0              # Socialized debt not yet accrued by any position


@dataclass(frozen=True)
class AccrualDeltas:
    collateral_increase: int = 0
    debt_increase: int = 0

    def __bool__(self):
        return bool(self.collateral_increase or self.debt_increase)


def is_undercollateralized(collateral: int, debt: int, price: int, liquidation_ratio_bps: int) -> bool:
    """
    Checks whether a position is below the liquidation ratio at ``price``.

    Args:
        collateral: Collateral amount
        debt: Debt amount
        price: Collateral price scaled by PRECISION
        liquidation_ratio_bps: Minimum collateral value per debt in basis points

    Returns:
        True if the collateral value is below the required share of the debt
    """
    if debt == 0:
        return False
    return mul_div(collateral, price, PRECISION) < apply_bps(debt, liquidation_ratio_bps)


class PositionLedger:
    """
    Owns every position and the global accrual state.
    """

    def __init__(self, params: ProtocolParameters, liquidation_queue: OrderedIndex,
                 redemption_queue: OrderedIndex, events: EventLog):
        self.params = params
        self.liquidation_queue = liquidation_queue
        self.redemption_queue = redemption_queue
        self.events = events

        self.positions: Dict[int, Position] = {}
        self.accrual = GlobalAccrual()
        self.next_position_id = 1

    def __contains__(self, position_id) -> bool:
        return position_id in self.positions

    def __len__(self) -> int:
        return len(self.positions)

    def get(self, position_id: int) -> Position:
        try:
            return self.positions[position_id]
        except KeyError:
            raise NotFound(f"Position {position_id} does not exist") from None

    @property
    def mode(self) -> Mode:
        return self.accrual.mode

    def collateral_ratio(self, position_id: int) -> int:
        return self.get(position_id).collateral_ratio()

    def open(self, owner: str, collateral: int, position_id: Optional[int] = None) -> int:
        """
        Opens a position holding ``collateral`` and no debt.

        Args:
            owner: Account owning the position
            collateral: Initial collateral
            position_id: Id to use instead of the next sequential one

        Returns:
            The id of the new position
        """
        if collateral <= 0:
            raise InvalidAmount("Collateral must be greater than zero")

        if position_id is None:
            while self.next_position_id in self.positions:
                self.next_position_id += 1
            position_id = self.next_position_id
            self.next_position_id += 1
        elif position_id <= SENTINEL:
            raise InvalidInput(f"Invalid position id {position_id}")
        elif position_id in self.positions:
            raise InvalidInput(f"Position {position_id} already exists")

        self.accrual.total_collateral = checked_add(self.accrual.total_collateral, collateral)
        self.positions[position_id] = Position(
            id=position_id,
            owner=owner,
            collateral=collateral,
            snapshot=self._current_snapshot(),
        )

        self.events.emit(EventType.POSITION_OPENED, id=position_id, owner=owner, collateral=collateral)
        return position_id

    def pending_accrual(self, position: Position) -> AccrualDeltas:
        """Returns the collateral and debt a position would pick up if accrued now."""
        snapshot = self.accrual
        seen = position.snapshot
        if (seen.collateral_per_unit_seen == snapshot.cumulative_collateral_per_unit
                and seen.debt_per_unit_seen == snapshot.cumulative_debt_per_unit):
            return AccrualDeltas()

        debt_increase = mul_div(position.collateral,
                                checked_sub(snapshot.cumulative_debt_per_unit, seen.debt_per_unit_seen),
                                PRECISION)
        collateral_increase = mul_div(position.collateral,
                                      checked_sub(snapshot.cumulative_collateral_per_unit,
                                                  seen.collateral_per_unit_seen),
                                      PRECISION)
        return AccrualDeltas(collateral_increase=collateral_increase, debt_increase=debt_increase)

    def accrue(self, position_id: int, hint: int = SENTINEL) -> AccrualDeltas:
        """
        Applies pending socialized collateral and debt to a position.

        The position's queue keys are refreshed when anything was applied.
        Calling it again with no intervening global change returns zero deltas.

        Args:
            position_id: Id of the position
            hint: Liquidation queue hint used when the position is re-keyed

        Returns:
            The applied deltas
        """
        position = self.get(position_id)
        deltas = self._accrue(position)
        if deltas:
            self._reindex_after_change(position, hint)
        return deltas

    sync_position = accrue

    def borrow(self, position_id: int, amount: int, fee_rate_bps: int = 0,
               liquidation_hint: int = SENTINEL, redemption_hint: int = SENTINEL) -> int:
        """
        Adds debt to a position.

        The fee rate is paid on the borrowed amount and also accumulates into
        the position's fee weight, which orders the redemption queue.

        Args:
            position_id: Id of the position
            amount: SBD to borrow
            fee_rate_bps: Fee rate paid on the borrowed amount
            liquidation_hint: Hint for the liquidation queue
            redemption_hint: Hint for the redemption queue

        Returns:
            The fee charged
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if fee_rate_bps < 0 or fee_rate_bps > BASIS_POINTS_DIVISOR:
            raise InvalidInput("Fee rate must be between 0 and 10000 basis points")

        position = self.get(position_id)
        pending = self.pending_accrual(position)
        self._check_minimum_debt(position.debt + pending.debt_increase + amount)

        self._accrue(position)
        fee = apply_bps(amount, fee_rate_bps)
        position.debt = checked_add(position.debt, amount)
        position.total_borrowed_lifetime = checked_add(position.total_borrowed_lifetime, amount)
        position.fee_weight = checked_add(position.fee_weight, fee_rate_bps)
        position.fee_paid = checked_add(position.fee_paid, fee)
        self.accrual.total_debt = checked_add(self.accrual.total_debt, amount)

        self.liquidation_queue.upsert(position_id, position.collateral_ratio(), liquidation_hint)
        self.redemption_queue.upsert(position_id, position.fee_weight, redemption_hint)
        self._update_mode()

        self.events.emit(EventType.BORROWED, id=position_id, amount=amount, fee=fee,
                         fee_rate_bps=fee_rate_bps, debt=position.debt)
        return fee

    def repay(self, position_id: int, amount: int, hint: int = SENTINEL) -> int:
        """
        Reduces the debt of a position.

        Args:
            position_id: Id of the position
            amount: SBD to repay
            hint: Hint for the liquidation queue

        Returns:
            The remaining debt
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        position = self.get(position_id)
        pending = self.pending_accrual(position)
        current_debt = position.debt + pending.debt_increase
        if amount > current_debt:
            raise InvalidAmount("Repayment exceeds the outstanding debt")
        self._check_minimum_debt(current_debt - amount)

        self._accrue(position)
        position.debt = checked_sub(position.debt, amount)
        self.accrual.total_debt = checked_sub(self.accrual.total_debt, amount)
        self._reindex_after_change(position, hint)

        self.events.emit(EventType.REPAID, id=position_id, amount=amount, debt=position.debt)
        return position.debt

    def add_collateral(self, position_id: int, amount: int, hint: int = SENTINEL) -> int:
        """Adds collateral to a position and returns the new collateral."""
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        position = self.get(position_id)
        self._accrue(position)
        position.collateral = checked_add(position.collateral, amount)
        self.accrual.total_collateral = checked_add(self.accrual.total_collateral, amount)
        self._reindex_after_change(position, hint)

        self.events.emit(EventType.COLLATERAL_ADDED, id=position_id, amount=amount,
                         collateral=position.collateral)
        return position.collateral

    def withdraw_collateral(self, position_id: int, amount: int, hint: int = SENTINEL) -> int:
        """Removes collateral from a position and returns the new collateral."""
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        position = self.get(position_id)
        pending = self.pending_accrual(position)
        current_collateral = position.collateral + pending.collateral_increase
        if amount > current_collateral:
            raise InvalidAmount("Withdrawal exceeds the position collateral")
        if amount == current_collateral and position.debt + pending.debt_increase > 0:
            raise InsufficientCollateral("Cannot withdraw all collateral while debt is outstanding")

        self._accrue(position)
        position.collateral = checked_sub(position.collateral, amount)
        self.accrual.total_collateral = checked_sub(self.accrual.total_collateral, amount)
        self._reindex_after_change(position, hint)

        self.events.emit(EventType.COLLATERAL_WITHDRAWN, id=position_id, amount=amount,
                         collateral=position.collateral)
        return position.collateral

    def fee_topup(self, position_id: int, topup_rate_bps: int, hint: int = SENTINEL) -> int:
        """
        Pays an extra fee to move a position back in the redemption queue.

        Args:
            position_id: Id of the position
            topup_rate_bps: Rate paid on the current debt, added to the fee weight
            hint: Hint for the redemption queue

        Returns:
            The fee charged
        """
        if topup_rate_bps <= 0 or topup_rate_bps > BASIS_POINTS_DIVISOR:
            raise InvalidAmount("Top-up rate must be between 1 and 10000 basis points")

        position = self.get(position_id)
        if position.debt + self.pending_accrual(position).debt_increase == 0:
            raise InvalidAmount("Position has no debt to top up against")

        self._accrue(position)
        fee = apply_bps(position.debt, topup_rate_bps)
        position.fee_weight = checked_add(position.fee_weight, topup_rate_bps)
        position.fee_paid = checked_add(position.fee_paid, fee)
        self._reindex_after_change(position, SENTINEL)
        self.redemption_queue.upsert(position_id, position.fee_weight, hint)

        self.events.emit(EventType.FEE_TOPPED_UP, id=position_id, rate_bps=topup_rate_bps, fee=fee,
                         fee_weight=position.fee_weight)
        return fee

    def close(self, position_id: int) -> int:
        """
        Closes a debt-free position.

        Returns:
            The collateral to pay out to the owner
        """
        position = self.get(position_id)
        if position.debt + self.pending_accrual(position).debt_increase > 0:
            raise CollateralNotEmpty("Position still has outstanding debt")

        self._accrue(position)
        collateral = position.collateral
        self.remove_position(position_id)

        self.events.emit(EventType.POSITION_CLOSED, id=position_id, collateral=collateral)
        return collateral

    def remove_position(self, position_id: int) -> Position:
        """
        Deletes a position, taking its collateral and debt out of the totals.

        The caller is expected to have accrued the position beforehand.
        """
        position = self.get(position_id)
        if position_id in self.liquidation_queue:
            self.liquidation_queue.remove(position_id)
        if position_id in self.redemption_queue:
            self.redemption_queue.remove(position_id)

        self.accrual.total_collateral = checked_sub(self.accrual.total_collateral, position.collateral)
        self.accrual.total_debt = checked_sub(self.accrual.total_debt, position.debt)
        del self.positions[position_id]
        return position

    def apply_redemption(self, position_id: int, debt_amount: int, collateral_amount: int,
                         hint: int = SENTINEL) -> Position:
        """
        Takes redeemed debt and collateral out of an accrued position.

        A position redeemed down to zero debt is deleted; any collateral it still
        holds is left on the returned position for the caller to pay out.
        Otherwise only its liquidation key changes; its fee weight is untouched.
        """
        position = self.get(position_id)
        position.debt = checked_sub(position.debt, debt_amount)
        position.collateral = checked_sub(position.collateral, collateral_amount)
        self.accrual.total_debt = checked_sub(self.accrual.total_debt, debt_amount)
        self.accrual.total_collateral = checked_sub(self.accrual.total_collateral, collateral_amount)

        if position.debt == 0:
            self.remove_position(position_id)
            self.events.emit(EventType.POSITION_CLOSED, id=position_id, collateral=position.collateral)
        else:
            self._reindex_after_change(position, hint)
        return position

    def reindex(self, position_id: int, hint: int = SENTINEL):
        """Refreshes the queue membership and liquidation key of a position."""
        self._reindex_after_change(self.get(position_id), hint)

    def socialize(self, collateral_per_unit: int, debt_per_unit: int,
                  collateral_amount: int, debt_amount: int):
        """
        Records a socialized liquidation in the global counters.

        Args:
            collateral_per_unit: Increase of the cumulative collateral counter
            debt_per_unit: Increase of the cumulative debt counter
            collateral_amount: Collateral now waiting to be accrued
            debt_amount: Debt now waiting to be accrued
        """
        accrual = self.accrual
        accrual.cumulative_collateral_per_unit = checked_add(accrual.cumulative_collateral_per_unit,
                                                             collateral_per_unit)
        accrual.cumulative_debt_per_unit = checked_add(accrual.cumulative_debt_per_unit, debt_per_unit)
        accrual.undistributed_collateral = checked_add(accrual.undistributed_collateral, collateral_amount)
        accrual.undistributed_debt = checked_add(accrual.undistributed_debt, debt_amount)

    def check_invariants(self):
        """
        Verifies the totals against the positions and the queue membership.

        Raises:
            FatalInvariantError: If a total or queue disagrees with the positions
        """
        total_collateral = sum(p.collateral for p in self.positions.values())
        total_debt = sum(p.debt for p in self.positions.values())
        if total_collateral != self.accrual.total_collateral:
            raise FatalInvariantError("Total collateral does not match the positions")
        if total_debt != self.accrual.total_debt:
            raise FatalInvariantError("Total debt does not match the positions")

        for position in self.positions.values():
            indexed = position.id in self.liquidation_queue
            if indexed != (position.debt > 0) or indexed != (position.id in self.redemption_queue):
                raise FatalInvariantError(f"Position {position.id} queue membership is wrong")

        self.liquidation_queue.check_invariants()
        self.redemption_queue.check_invariants()

    def _accrue(self, position: Position) -> AccrualDeltas:
        deltas = self.pending_accrual(position)
        position.snapshot = self._current_snapshot()
        if not deltas:
            return deltas

        accrual = self.accrual
        position.collateral = checked_add(position.collateral, deltas.collateral_increase)
        position.debt = checked_add(position.debt, deltas.debt_increase)
        accrual.total_collateral = checked_add(accrual.total_collateral, deltas.collateral_increase)
        accrual.total_debt = checked_add(accrual.total_debt, deltas.debt_increase)
        accrual.undistributed_collateral = saturating_sub(accrual.undistributed_collateral,
                                                          deltas.collateral_increase)
        accrual.undistributed_debt = saturating_sub(accrual.undistributed_debt, deltas.debt_increase)
        self._update_mode()

        logger.debug("Position %d accrued collateral=%d debt=%d", position.id,
                     deltas.collateral_increase, deltas.debt_increase)
        self.events.emit(EventType.POSITION_UPDATED, id=position.id,
                         collateral_increase=deltas.collateral_increase,
                         debt_increase=deltas.debt_increase)
        return deltas

    def _reindex_after_change(self, position: Position, hint: int):
        if position.debt > 0:
            self.liquidation_queue.upsert(position.id, position.collateral_ratio(), hint)
            if position.id not in self.redemption_queue:
                self.redemption_queue.upsert(position.id, position.fee_weight)
        else:
            if position.id in self.liquidation_queue:
                self.liquidation_queue.remove(position.id)
            if position.id in self.redemption_queue:
                self.redemption_queue.remove(position.id)

    def _current_snapshot(self) -> AccrualSnapshot:
        return AccrualSnapshot(
            collateral_per_unit_seen=self.accrual.cumulative_collateral_per_unit,
            debt_per_unit_seen=self.accrual.cumulative_debt_per_unit,
        )

    def _check_minimum_debt(self, new_debt: int):
        if 0 < new_debt < self.params.minimum_debt:
            raise DebtTooLow(f"Debt {new_debt} is below the minimum debt {self.params.minimum_debt}")

    def _update_mode(self):
        accrual = self.accrual
        if accrual.mode == Mode.BOOTSTRAP and accrual.total_debt > self.params.bootstrap_mode_debt_threshold:
            accrual.mode = Mode.NORMAL
            logger.info("Total debt %d crossed the bootstrap threshold, switching to normal mode",
                        accrual.total_debt)
            self.events.emit(EventType.MODE_CHANGED, mode=Mode.NORMAL.name, total_debt=accrual.total_debt)
