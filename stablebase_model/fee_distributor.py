"""
Fee Distributor Model for the StableBase protocol.

Splits protocol fees between the DFIRE staking pool and the stability pool. A
share whose target pool has no stake cannot be attributed to anyone and is
refunded to whoever paid the fee.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .constants import ProtocolParameters
from .errors import InvalidAmount
from .events import EventType
from .fixed_point import apply_bps
from .tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT, STAKING_POOL_ACCOUNT

if TYPE_CHECKING:
    from .protocol import ProtocolState

logger = logging.getLogger(__name__)


class FeeKind(Enum):
    """What a fee is paid in."""
    REWARD = "SBD"         # Borrow and top-up fees
    COLLATERAL = "native"  # Liquidation and redemption fees


@dataclass(frozen=True)
class FeeDistribution:
    fee: int
    kind: FeeKind
    staking_pool_share: int = 0    # Delivered to the DFIRE staking pool
    stability_pool_share: int = 0  # Delivered to the stability pool
    refunded: int = 0              # Returned to the payer


class FeeDistributor:
    """
    Routes fees to the staking pool and the stability pool.
    """

    def __init__(self, params: ProtocolParameters):
        self.params = params

    def distribute(self, state: "ProtocolState", fee: int, payer: str, kind: FeeKind,
                   source: str = CDP_ACCOUNT) -> FeeDistribution:
        """
        Distributes a fee held by ``source``.

        Args:
            state: Protocol state
            fee: Fee amount
            payer: Account refunded with undeliverable shares
            kind: Whether the fee is SBD or collateral
            source: Account currently holding the fee

        Returns:
            FeeDistribution breakdown
        """
        if fee < 0:
            raise InvalidAmount("Fee cannot be negative")
        if fee == 0:
            return FeeDistribution(fee=0, kind=kind)

        staking_share = apply_bps(fee, self.params.staking_pool_fee_share_bps)
        stability_share = fee - staking_share

        token = state.sbd if kind == FeeKind.REWARD else state.native
        delivered_staking = self._deliver(state.staking_pool, token, kind, staking_share, source,
                                          STAKING_POOL_ACCOUNT)
        delivered_stability = self._deliver(state.stability_pool, token, kind, stability_share, source,
                                            STABILITY_POOL_ACCOUNT)

        refunded = fee - delivered_staking - delivered_stability
        if refunded:
            token.move(source, payer, refunded)
            logger.warning("Refunded %d %s of fees to %s, no stake to receive them", refunded,
                           token.symbol, payer)
            state.events.emit(EventType.FEE_REFUNDED, payer=payer, amount=refunded, kind=kind.value)

        distribution = FeeDistribution(
            fee=fee,
            kind=kind,
            staking_pool_share=delivered_staking,
            stability_pool_share=delivered_stability,
            refunded=refunded,
        )
        state.events.emit(EventType.FEE_DISTRIBUTED, fee=fee, kind=kind.value,
                          staking_pool=delivered_staking, stability_pool=delivered_stability,
                          refunded=refunded)
        return distribution

    @staticmethod
    def _deliver(pool, token, kind: FeeKind, amount: int, source: str, account: str) -> int:
        if amount == 0:
            return 0
        accepted = pool.add_reward(amount) if kind == FeeKind.REWARD else pool.add_collateral_reward(amount)
        if not accepted:
            return 0
        token.move(source, account, amount)
        return amount
