"""
StableBase Protocol Model.

This module wires the components of the protocol together. ``ProtocolState``
is the single mutable context holding the ledger, both ordered queues, both
pools, the token balances and the event log; every engine receives it
explicitly. ``StableBaseProtocol`` is the entry point a user or simulation
calls. It checks ownership, moves tokens and routes fees, and it runs every
operation atomically: the state is checkpointed first and restored if anything
raises, so a rejected operation leaves no partial mutation and no events behind.
"""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .constants import PRECISION, ProtocolParameters
from .errors import InsufficientCollateral, InvalidAmount, Unauthorized
from .events import EventLog
from .fee_distributor import FeeDistributor, FeeKind
from .liquidation import LiquidationEngine, LiquidationResult
from .ordered_index import SENTINEL, ConsumeEnd, OrderedIndex
from .position_ledger import Position, PositionLedger, is_undercollateralized
from .price_feed import PriceFeed
from .redemption import RedemptionEngine, RedemptionResult
from .stability_pool import Payout, StabilityPool
from .staking_pool import StakingPayout, StakingPool
from .tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT, STAKING_POOL_ACCOUNT, Token

logger = logging.getLogger(__name__)


@dataclass
class ProtocolState:
    """Everything an operation may read or mutate."""
    params: ProtocolParameters
    events: EventLog
    liquidation_queue: OrderedIndex
    redemption_queue: OrderedIndex
    ledger: PositionLedger
    stability_pool: StabilityPool
    staking_pool: StakingPool
    sbd: Token
    sbr: Token
    dfire: Token
    native: Token
    price_feed: Optional[PriceFeed] = None
    current_time: int = 0

    @classmethod
    def create(cls, params: ProtocolParameters, price_feed: Optional[PriceFeed] = None,
               start_time: int = 0) -> "ProtocolState":
        events = EventLog()
        liquidation_queue = OrderedIndex("liquidation", ConsumeEnd.TAIL, events)
        redemption_queue = OrderedIndex("redemption", ConsumeEnd.HEAD, events)
        return cls(
            params=params,
            events=events,
            liquidation_queue=liquidation_queue,
            redemption_queue=redemption_queue,
            ledger=PositionLedger(params, liquidation_queue, redemption_queue, events),
            stability_pool=StabilityPool(params, events),
            staking_pool=StakingPool(events),
            sbd=Token("StableBase Dollar", "SBD"),
            sbr=Token("StableBase Reward", "SBR"),
            dfire=Token("DFIRE", "DFIRE"),
            native=Token("Native Collateral", "ETH"),
            price_feed=price_feed,
            current_time=start_time,
        )


class StableBaseProtocol:
    """
    Complete model of the StableBase protocol.
    """

    # State components an operation may mutate
    _transactional = ("liquidation_queue", "redemption_queue", "ledger", "stability_pool", "staking_pool",
                      "sbd", "sbr", "dfire", "native")

    def __init__(self, params: Optional[ProtocolParameters] = None, price_feed: Optional[PriceFeed] = None,
                 start_time: int = 0):
        self.params = params or ProtocolParameters()
        self.state = ProtocolState.create(self.params, price_feed, start_time)

        self.fee_distributor = FeeDistributor(self.params)
        self.liquidation_engine = LiquidationEngine(self.params, self.fee_distributor)
        self.redemption_engine = RedemptionEngine(self.params)

    @property
    def events(self) -> EventLog:
        return self.state.events

    @property
    def ledger(self) -> PositionLedger:
        return self.state.ledger

    @property
    def stability_pool(self) -> StabilityPool:
        return self.state.stability_pool

    @property
    def staking_pool(self) -> StakingPool:
        return self.state.staking_pool

    @contextmanager
    def _atomic(self):
        """
        Checkpoints every mutable component and restores it if the block raises.

        Components are restored in place, so references held by callers stay
        valid after a rollback.
        """
        state = self.state
        components = [getattr(state, name) for name in self._transactional]
        shared = components + [state.events, state.params, state.price_feed]
        memo = {id(obj): obj for obj in shared}
        checkpoint = [copy.deepcopy(vars(component), memo) for component in components]
        current_time = state.current_time
        event_count = len(state.events)
        try:
            yield state
        except BaseException as exc:
            for component, saved in zip(components, checkpoint):
                vars(component).clear()
                vars(component).update(saved)
            state.current_time = current_time
            state.events.truncate(event_count)
            logger.debug("Rolled back operation: %s", exc)
            raise

    def fund(self, account: str, collateral: int = 0, dfire: int = 0):
        """Credits an account with native collateral and DFIRE for simulations."""
        if collateral:
            self.state.native.mint(account, collateral)
        if dfire:
            self.state.dfire.mint(account, dfire)

    def get_position(self, position_id: int) -> Position:
        return self.state.ledger.get(position_id)

    # Safes

    def open_position(self, owner: str, collateral: int, position_id: Optional[int] = None) -> int:
        """
        Opens a safe, locking ``collateral`` from the owner's native balance.

        Returns:
            The id of the new safe
        """
        with self._atomic() as state:
            new_id = state.ledger.open(owner, collateral, position_id)
            state.native.transfer(owner, CDP_ACCOUNT, collateral)
        return new_id

    def borrow(self, caller: str, position_id: int, amount: int, fee_rate_bps: int = 0,
               liquidation_hint: int = SENTINEL, redemption_hint: int = SENTINEL) -> int:
        """
        Borrows SBD against a safe.

        The owner receives ``amount`` minus the fee; the fee is distributed to
        the pools and refunded to the owner where a pool has no stake.

        Returns:
            The fee charged
        """
        with self._atomic() as state:
            position = self._owned_position(caller, position_id)
            pending = state.ledger.pending_accrual(position)
            self._check_health(position.collateral + pending.collateral_increase,
                               position.debt + pending.debt_increase + amount)

            fee = state.ledger.borrow(position_id, amount, fee_rate_bps, liquidation_hint, redemption_hint)
            if amount - fee:
                state.sbd.mint(caller, amount - fee)
            if fee:
                state.sbd.mint(CDP_ACCOUNT, fee)
                self.fee_distributor.distribute(state, fee, caller, FeeKind.REWARD)
        return fee

    def repay(self, caller: str, position_id: int, amount: int, hint: int = SENTINEL) -> int:
        """Repays debt by burning the owner's SBD. Returns the remaining debt."""
        with self._atomic() as state:
            self._owned_position(caller, position_id)
            remaining = state.ledger.repay(position_id, amount, hint)
            state.sbd.burn(caller, amount)
        return remaining

    def add_collateral(self, caller: str, position_id: int, amount: int, hint: int = SENTINEL) -> int:
        with self._atomic() as state:
            self._owned_position(caller, position_id)
            collateral = state.ledger.add_collateral(position_id, amount, hint)
            state.native.transfer(caller, CDP_ACCOUNT, amount)
        return collateral

    def withdraw_collateral(self, caller: str, position_id: int, amount: int, hint: int = SENTINEL) -> int:
        """Withdraws collateral as long as the safe stays above the liquidation ratio."""
        with self._atomic() as state:
            position = self._owned_position(caller, position_id)
            pending = state.ledger.pending_accrual(position)
            if amount > 0 and amount <= position.collateral + pending.collateral_increase:
                self._check_health(position.collateral + pending.collateral_increase - amount,
                                   position.debt + pending.debt_increase)

            collateral = state.ledger.withdraw_collateral(position_id, amount, hint)
            state.native.transfer(CDP_ACCOUNT, caller, amount)
        return collateral

    def fee_topup(self, caller: str, position_id: int, topup_rate_bps: int, hint: int = SENTINEL) -> int:
        """
        Pays an extra fee in SBD to move a safe away from the head of the redemption queue.

        Returns:
            The fee charged
        """
        with self._atomic() as state:
            self._owned_position(caller, position_id)
            fee = state.ledger.fee_topup(position_id, topup_rate_bps, hint)
            if fee:
                state.sbd.transfer(caller, CDP_ACCOUNT, fee)
                self.fee_distributor.distribute(state, fee, caller, FeeKind.REWARD)
        return fee

    def close_position(self, caller: str, position_id: int) -> int:
        """Closes a debt-free safe and returns its collateral to the owner."""
        with self._atomic() as state:
            self._owned_position(caller, position_id)
            collateral = state.ledger.close(position_id)
            state.native.move(CDP_ACCOUNT, caller, collateral)
        return collateral

    # Liquidations and redemptions

    def liquidate(self, caller: str) -> LiquidationResult:
        """Liquidates the safe at the tail of the liquidation queue."""
        with self._atomic() as state:
            return self.liquidation_engine.liquidate(state, caller)

    def liquidate_position(self, caller: str, position_id: int) -> LiquidationResult:
        with self._atomic() as state:
            return self.liquidation_engine.liquidate_position(state, caller, position_id)

    def redeem(self, caller: str, amount: int, hint: int = SENTINEL) -> RedemptionResult:
        with self._atomic() as state:
            return self.redemption_engine.redeem(state, caller, amount, hint)

    # Stability pool

    def stake(self, caller: str, amount: int, frontend: Optional[str] = None, fee_bps: int = 0) -> Payout:
        """Stakes SBD in the stability pool, paying out pending gains."""
        with self._atomic() as state:
            state.sbd.transfer(caller, STABILITY_POOL_ACCOUNT, amount)
            payout = state.stability_pool.stake(caller, amount, state.current_time, frontend, fee_bps)
            self._pay_stability_pool_gains(caller, payout)
        return payout

    def unstake(self, caller: str, amount: int, frontend: Optional[str] = None, fee_bps: int = 0) -> Payout:
        """Withdraws SBD from the stability pool together with pending gains."""
        with self._atomic() as state:
            payout = state.stability_pool.unstake(caller, amount, state.current_time, frontend, fee_bps)
            self._pay_stability_pool_gains(caller, payout)
        return payout

    def claim(self, caller: str, frontend: Optional[str] = None, fee_bps: int = 0) -> Payout:
        with self._atomic() as state:
            payout = state.stability_pool.claim(caller, state.current_time, frontend, fee_bps)
            self._pay_stability_pool_gains(caller, payout)
        return payout

    # DFIRE staking

    def stake_dfire(self, caller: str, amount: int) -> StakingPayout:
        with self._atomic() as state:
            state.dfire.transfer(caller, STAKING_POOL_ACCOUNT, amount)
            payout = state.staking_pool.stake(caller, amount)
            self._pay_staking_pool_gains(caller, payout)
        return payout

    def unstake_dfire(self, caller: str, amount: int) -> StakingPayout:
        with self._atomic() as state:
            payout = state.staking_pool.unstake(caller, amount)
            state.dfire.transfer(STAKING_POOL_ACCOUNT, caller, amount)
            self._pay_staking_pool_gains(caller, payout)
        return payout

    def claim_dfire(self, caller: str) -> StakingPayout:
        with self._atomic() as state:
            payout = state.staking_pool.claim(caller)
            self._pay_staking_pool_gains(caller, payout)
        return payout

    # Environment

    def update_time(self, seconds: int):
        """
        Advances the simulation clock.

        Args:
            seconds: Number of seconds to advance
        """
        if seconds < 0:
            raise InvalidAmount("Time cannot move backwards")
        self.state.current_time += seconds

    def update_price(self, new_price: int):
        if self.state.price_feed is None:
            self.state.price_feed = PriceFeed(new_price)
        else:
            self.state.price_feed.set_price(new_price)

    def check_invariants(self):
        self.state.ledger.check_invariants()

    def get_system_state(self) -> Dict[str, Any]:
        """
        Returns the current state of the system.

        Returns:
            Dictionary with system state
        """
        state = self.state
        accrual = state.ledger.accrual
        price = state.price_feed.fetch_price() if state.price_feed is not None else None

        if price is not None and accrual.total_debt > 0:
            tcr = accrual.total_collateral * price / (accrual.total_debt * PRECISION)
        else:
            tcr = float('inf')

        return {
            'time': state.current_time,
            'price': price,
            'mode': accrual.mode.name,
            'positions': len(state.ledger),
            'indebted_positions': len(state.liquidation_queue),
            'total_collateral': accrual.total_collateral,
            'total_debt': accrual.total_debt,
            'undistributed_collateral': accrual.undistributed_collateral,
            'undistributed_debt': accrual.undistributed_debt,
            'tcr': tcr,
            'stability_pool_staked': state.stability_pool.total_staked,
            'stability_pool_collateral': state.native.balance_of(STABILITY_POOL_ACCOUNT),
            'scaling_factor': state.stability_pool.scaling_factor,
            'reset_epoch': state.stability_pool.reset_epoch,
            'dfire_staked': state.staking_pool.total_staked,
            'sbd_supply': state.sbd.total_supply,
            'sbr_supply': state.sbr.total_supply,
        }

    def _owned_position(self, caller: str, position_id: int) -> Position:
        position = self.state.ledger.get(position_id)
        if position.owner != caller:
            raise Unauthorized(f"{caller} does not own safe {position_id}")
        return position

    def _check_health(self, collateral: int, debt: int):
        price_feed = self.state.price_feed
        if price_feed is None:
            return
        if is_undercollateralized(collateral, debt, price_feed.fetch_price(), self.params.liquidation_ratio_bps):
            raise InsufficientCollateral("Safe would fall below the liquidation ratio")

    def _pay_stability_pool_gains(self, depositor: str, payout: Payout):
        state = self.state
        state.sbd.move(STABILITY_POOL_ACCOUNT, depositor, payout.withdrawn + payout.reward)
        state.native.move(STABILITY_POOL_ACCOUNT, depositor, payout.collateral)
        if payout.sbr:
            state.sbr.mint(depositor, payout.sbr)

        if payout.frontend is not None:
            state.sbd.move(STABILITY_POOL_ACCOUNT, payout.frontend, payout.frontend_reward)
            state.native.move(STABILITY_POOL_ACCOUNT, payout.frontend, payout.frontend_collateral)
            if payout.frontend_sbr:
                state.sbr.mint(payout.frontend, payout.frontend_sbr)

    def _pay_staking_pool_gains(self, staker: str, payout: StakingPayout):
        state = self.state
        state.sbd.move(STAKING_POOL_ACCOUNT, staker, payout.reward)
        state.native.move(STAKING_POOL_ACCOUNT, staker, payout.collateral)
