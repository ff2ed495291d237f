"""
Redemption Engine Model for the StableBase protocol.

This module simulates redemptions: SBD holders exchange SBD for collateral at
face value. Debt is taken from the safes at the head of the redemption queue,
the ones that paid the least in fees, walking towards the tail until the
requested amount is covered or the queue runs out. Safes redeemed down to
zero debt are deleted.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from .constants import ProtocolParameters
from .errors import InsufficientBalance, InvalidAmount
from .events import EventType
from .fixed_point import apply_bps, mul_div
from .ordered_index import SENTINEL
from .tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT

if TYPE_CHECKING:
    from .protocol import ProtocolState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedeemedPosition:
    position_id: int
    debt: int            # Debt redeemed from the safe
    collateral: int      # Collateral taken from the safe
    remaining_debt: int
    closed: bool = False      # Redeemed to zero debt and deleted
    returned_collateral: int = 0  # Collateral left in a deleted safe, paid to its owner


@dataclass
class RedemptionResult:
    """Outcome of a redemption."""
    requested: int
    redeemed: int = 0
    collateral: int = 0           # Collateral taken from safes, fees included
    owner_fee: int = 0
    redeemer_fee: int = 0
    fees_to_stability_pool: int = 0
    fees_refunded: int = 0
    positions: List[RedeemedPosition] = field(default_factory=list)

    @property
    def partial_fill(self) -> bool:
        return self.redeemed < self.requested

    @property
    def collateral_to_redeemer(self) -> int:
        """Net collateral plus any refunded fees."""
        return self.collateral - self.owner_fee - self.redeemer_fee + self.fees_refunded


class RedemptionEngine:
    """
    Redeems SBD against the safes at the head of the redemption queue.
    """

    def __init__(self, params: ProtocolParameters):
        self.params = params

    def redeem(self, state: "ProtocolState", redeemer: str, amount: int, hint: int = SENTINEL) -> RedemptionResult:
        """
        Redeems up to ``amount`` SBD for collateral.

        Each visited safe is accrued and gives up ``min(remaining, debt)`` of its
        debt together with the same share of its collateral. A safe redeemed down
        to zero debt is deleted and any collateral left in it goes back to its owner.
        Running out of safes is a partial fill, not an error.

        Args:
            state: Protocol state
            redeemer: Account redeeming SBD
            amount: SBD to redeem
            hint: Liquidation queue hint for the last, partially redeemed safe

        Returns:
            RedemptionResult with per-safe amounts and fees
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if state.sbd.balance_of(redeemer) < amount:
            raise InsufficientBalance("Insufficient SBD balance to redeem")

        ledger = state.ledger
        queue = state.redemption_queue
        result = RedemptionResult(requested=amount)

        remaining = amount
        current = queue.peek_next()
        while remaining > 0 and current is not None:
            # Accrual never changes the redemption order, so the successor stays valid
            following = queue.after(current)

            ledger.accrue(current)
            position = ledger.get(current)
            debt_to_redeem = min(remaining, position.debt)
            collateral_to_redeem = mul_div(debt_to_redeem, position.collateral, position.debt)

            ledger.apply_redemption(current, debt_to_redeem, collateral_to_redeem, hint)
            remaining -= debt_to_redeem

            closed = position.debt == 0
            returned = position.collateral if closed else 0
            if returned:
                state.native.move(CDP_ACCOUNT, position.owner, returned)

            redeemed = RedeemedPosition(
                position_id=current,
                debt=debt_to_redeem,
                collateral=collateral_to_redeem,
                remaining_debt=position.debt,
                closed=closed,
                returned_collateral=returned,
            )
            result.positions.append(redeemed)
            result.redeemed += debt_to_redeem
            result.collateral += collateral_to_redeem
            state.events.emit(EventType.REDEEMED, id=current, redeemer=redeemer, debt=debt_to_redeem,
                              collateral=collateral_to_redeem, remaining_debt=position.debt, closed=closed)
            current = following

        if result.redeemed:
            state.sbd.burn(redeemer, result.redeemed)
        self._charge_fees(state, redeemer, result)
        state.native.move(CDP_ACCOUNT, redeemer, result.collateral_to_redeemer)

        if result.partial_fill:
            logger.warning("Redemption of %d only filled %d, no more safes with debt", amount, result.redeemed)
        logger.info("Redeemed %d SBD from %d safes for %d collateral", result.redeemed, len(result.positions),
                    result.collateral)
        state.events.emit(EventType.REDEEMED_BATCH, redeemer=redeemer, requested=amount, amount=result.redeemed,
                          collateral=result.collateral, owner_fee=result.owner_fee,
                          redeemer_fee=result.redeemer_fee, positions=len(result.positions),
                          total_collateral=ledger.accrual.total_collateral, total_debt=ledger.accrual.total_debt)
        return result

    def _charge_fees(self, state: "ProtocolState", redeemer: str, result: RedemptionResult):
        """Sends each fee to the stability pool, or back to the redeemer when the pool is empty."""
        result.owner_fee = apply_bps(result.collateral, self.params.redemption_owner_fee_bps)
        result.redeemer_fee = apply_bps(result.collateral, self.params.redemption_redeemer_fee_bps)

        for fee in (result.owner_fee, result.redeemer_fee):
            if fee == 0:
                continue
            if state.stability_pool.add_collateral_reward(fee):
                state.native.move(CDP_ACCOUNT, STABILITY_POOL_ACCOUNT, fee)
                result.fees_to_stability_pool += fee
            else:
                result.fees_refunded += fee
                logger.warning("Refunded redemption fee %d to %s, stability pool is empty", fee, redeemer)
                state.events.emit(EventType.FEE_REFUNDED, payer=redeemer, amount=fee, kind="native")
