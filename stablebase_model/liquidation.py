"""
Liquidation Engine Model for the StableBase protocol.

This module simulates the liquidation of undercollateralized safes. The safe at
the tail of the liquidation queue, the one with the most debt per unit of
collateral, is liquidated first. Two paths exist:

1. Stability pool absorption: when the pool holds at least the safe's debt, the
   pool burns that much staked SBD and receives the safe's collateral.
2. Secondary mechanism: otherwise the debt and collateral are socialized over
   every remaining safe in proportion to its collateral. The global accrual
   counters move and each safe picks up its share the next time it is touched.

In both cases a liquidation fee is taken from the collateral. The liquidator is
refunded gas compensation out of it and the rest goes to the fee distributor.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .constants import PRECISION, ProtocolParameters
from .errors import CannotLiquidateLastPosition, NothingToLiquidate, NotLiquidatable
from .events import EventType
from .fee_distributor import FeeDistribution, FeeDistributor, FeeKind
from .fixed_point import apply_bps, checked_add, checked_sub, distribute_per_unit
from .position_ledger import is_undercollateralized
from .stability_pool import ResetSnapshot
from .tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT

if TYPE_CHECKING:
    from .protocol import ProtocolState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiquidationResult:
    """Outcome of a single liquidation."""
    position_id: int
    owner: str
    debt: int                       # Debt cancelled or socialized
    collateral: int                 # Collateral of the safe, fee included
    liquidation_fee: int
    gas_refund: int                 # Part of the fee paid to the liquidator
    used_stability_pool: bool
    reset_snapshot: Optional[ResetSnapshot] = None
    fee_distribution: Optional[FeeDistribution] = None

    @property
    def distributed_collateral(self) -> int:
        return self.collateral - self.liquidation_fee


class LiquidationEngine:
    """
    Removes unhealthy safes from the system.
    """

    def __init__(self, params: ProtocolParameters, fee_distributor: FeeDistributor):
        self.params = params
        self.fee_distributor = fee_distributor

    def liquidate(self, state: "ProtocolState", caller: str, price: Optional[int] = None) -> LiquidationResult:
        """
        Liquidates the riskiest safe.

        Args:
            state: Protocol state
            caller: Liquidator receiving the gas compensation
            price: Collateral price; fetched from the price feed when omitted

        Returns:
            LiquidationResult of the liquidated safe
        """
        position_id = state.liquidation_queue.peek_next()
        if position_id is None:
            raise NothingToLiquidate("No safe has outstanding debt")
        return self.liquidate_position(state, caller, position_id, price)

    def liquidate_position(self, state: "ProtocolState", caller: str, position_id: int,
                           price: Optional[int] = None) -> LiquidationResult:
        """
        Liquidates a specific safe.

        Every precondition is checked before anything is mutated.

        Args:
            state: Protocol state
            caller: Liquidator receiving the gas compensation
            position_id: Id of the safe
            price: Collateral price; fetched from the price feed when omitted

        Returns:
            LiquidationResult of the liquidated safe
        """
        ledger = state.ledger
        position = ledger.get(position_id)
        if position_id not in state.liquidation_queue:
            raise NotLiquidatable(f"Safe {position_id} has no debt")

        pending = ledger.pending_accrual(position)
        collateral = position.collateral + pending.collateral_increase
        debt = position.debt + pending.debt_increase

        if price is None and state.price_feed is not None:
            price = state.price_feed.fetch_price()
        if price is not None and not is_undercollateralized(collateral, debt, price,
                                                            self.params.liquidation_ratio_bps):
            raise NotLiquidatable(f"Safe {position_id} is not eligible for liquidation")

        stability_pool = state.stability_pool
        use_stability_pool = stability_pool.total_staked >= debt
        remaining_collateral = ledger.accrual.total_collateral - position.collateral
        if not use_stability_pool and remaining_collateral == 0:
            raise CannotLiquidateLastPosition(
                f"Safe {position_id} is the last one and the stability pool cannot absorb its debt")

        liquidation_fee = apply_bps(collateral, self.params.liquidation_fee_bps)
        distributable = collateral - liquidation_fee

        ledger.accrue(position_id)
        ledger.remove_position(position_id)

        reset_snapshot = None
        if use_stability_pool:
            stability_pool.distribute_sbr(state.current_time)
            reset_snapshot = stability_pool.absorb_loss(debt, distributable)
            state.sbd.burn(STABILITY_POOL_ACCOUNT, debt)
            state.native.move(CDP_ACCOUNT, STABILITY_POOL_ACCOUNT, distributable)
        else:
            self._socialize(state, debt, distributable, remaining_collateral)

        gas_refund = min(self.params.gas_compensation, liquidation_fee)
        state.native.move(CDP_ACCOUNT, caller, gas_refund)
        fee_distribution = self.fee_distributor.distribute(state, liquidation_fee - gas_refund, caller,
                                                           FeeKind.COLLATERAL)

        result = LiquidationResult(
            position_id=position_id,
            owner=position.owner,
            debt=debt,
            collateral=collateral,
            liquidation_fee=liquidation_fee,
            gas_refund=gas_refund,
            used_stability_pool=use_stability_pool,
            reset_snapshot=reset_snapshot,
            fee_distribution=fee_distribution,
        )

        event_type = (EventType.LIQUIDATED_USING_STABILITY_POOL if use_stability_pool
                      else EventType.LIQUIDATED_USING_SECONDARY_MECHANISM)
        state.events.emit(event_type, id=position_id, owner=position.owner, liquidator=caller, debt=debt,
                          collateral=collateral, liquidation_fee=liquidation_fee, gas_refund=gas_refund)
        logger.info("Liquidated safe %d (debt=%d, collateral=%d) using %s", position_id, debt, collateral,
                    "the stability pool" if use_stability_pool else "the secondary mechanism")
        return result

    @staticmethod
    def _socialize(state: "ProtocolState", debt: int, collateral: int, remaining_collateral: int):
        """Spreads debt and collateral over the remaining safes through the accrual counters."""
        accrual = state.ledger.accrual

        carried_debt = accrual.debt_loss
        debt_per_unit, accrual.debt_loss = distribute_per_unit(debt, remaining_collateral, PRECISION,
                                                               carried_debt)
        carried_collateral = accrual.collateral_loss
        collateral_per_unit, accrual.collateral_loss = distribute_per_unit(collateral, remaining_collateral,
                                                                           PRECISION, carried_collateral)

        state.ledger.socialize(
            collateral_per_unit=collateral_per_unit,
            debt_per_unit=debt_per_unit,
            collateral_amount=checked_sub(checked_add(collateral, carried_collateral), accrual.collateral_loss),
            debt_amount=checked_sub(checked_add(debt, carried_debt), accrual.debt_loss),
        )
