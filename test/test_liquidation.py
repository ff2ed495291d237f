"""
Unit tests for the LiquidationEngine of the StableBase model.
"""

import unittest

from stablebase_model.constants import PRECISION, ProtocolParameters
from stablebase_model.errors import CannotLiquidateLastPosition, NothingToLiquidate, NotLiquidatable
from stablebase_model.events import EventType
from stablebase_model.price_feed import PriceFeed
from stablebase_model.protocol import StableBaseProtocol
from stablebase_model.tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT


class TestLiquidation(unittest.TestCase):
    def setUp(self):
        """Set up a protocol with a 1% liquidation fee and a gas compensation of 2."""
        self.params = ProtocolParameters(minimum_debt=1, liquidation_fee_bps=100, gas_compensation=2)
        self.protocol = StableBaseProtocol(self.params)

    def open_position(self, protocol, owner, collateral, debt, fee_rate_bps=0):
        protocol.fund(owner, collateral=collateral)
        position_id = protocol.open_position(owner, collateral)
        protocol.borrow(owner, position_id, debt, fee_rate_bps)
        return position_id

    def test_riskiest_position_is_liquidated_first(self):
        """With ratios 0.9 and 0.5 the liquidation queue runs B -> A and A goes first."""
        a_id = self.open_position(self.protocol, "alice", 1000, 900)
        b_id = self.open_position(self.protocol, "bob", 1000, 500)

        queue = self.protocol.state.liquidation_queue
        self.assertEqual(queue.key_of(a_id), 9 * PRECISION // 10)
        self.assertEqual(queue.key_of(b_id), PRECISION // 2)
        self.assertEqual(queue.head, b_id)
        self.assertEqual(queue.tail, a_id)

        result = self.protocol.liquidate("keeper")
        self.assertEqual(result.position_id, a_id)
        self.assertNotIn(a_id, self.protocol.ledger)
        self.assertEqual(list(queue), [b_id])

    def test_stability_pool_absorbs_liquidation(self):
        a_id = self.open_position(self.protocol, "alice", 1000, 900)
        self.open_position(self.protocol, "carol", 10_000, 2000)
        self.protocol.stake("carol", 2000)

        result = self.protocol.liquidate("keeper")

        self.assertTrue(result.used_stability_pool)
        self.assertEqual(result.position_id, a_id)
        self.assertEqual(result.debt, 900)
        self.assertEqual(result.liquidation_fee, 10)
        self.assertEqual(result.gas_refund, 2)

        state = self.protocol.state
        pool = self.protocol.stability_pool
        self.assertEqual(pool.total_staked, 1100)
        self.assertEqual(pool.scaling_factor, 1100 * PRECISION // 2000)
        self.assertEqual(state.sbd.balance_of(STABILITY_POOL_ACCOUNT), 1100)
        self.assertEqual(state.native.balance_of("keeper"), 2)
        # 990 collateral plus the 8 fee remainder routed to the pool
        self.assertEqual(state.native.balance_of(STABILITY_POOL_ACCOUNT), 998)
        self.assertEqual(len(state.events.of_type(EventType.LIQUIDATED_USING_STABILITY_POOL)), 1)

        # The depositor can claim the collateral
        payout = self.protocol.claim("carol")
        self.assertEqual(payout.collateral, 998)
        self.assertEqual(state.native.balance_of("carol"), 998)
        self.assertEqual(self.protocol.stability_pool.effective_stake("carol"), 1100)

    def test_secondary_mechanism_socializes(self):
        """Without pool liquidity the debt and collateral move to the remaining safes."""
        a_id = self.open_position(self.protocol, "alice", 1000, 900)
        b_id = self.open_position(self.protocol, "bob", 1000, 500)
        c_id = self.open_position(self.protocol, "carol", 3000, 500)

        result = self.protocol.liquidate("keeper")

        self.assertFalse(result.used_stability_pool)
        self.assertEqual(result.position_id, a_id)
        state = self.protocol.state
        accrual = state.ledger.accrual
        self.assertEqual(accrual.cumulative_debt_per_unit, 900 * PRECISION // 4000)
        self.assertEqual(accrual.cumulative_collateral_per_unit, 990 * PRECISION // 4000)
        self.assertEqual(accrual.undistributed_debt, 900)
        self.assertEqual(accrual.undistributed_collateral, 990)

        # The whole fee goes back to the keeper since neither pool has stake
        self.assertEqual(state.native.balance_of("keeper"), 10)
        self.assertEqual(len(state.events.of_type(EventType.LIQUIDATED_USING_SECONDARY_MECHANISM)), 1)

        self.protocol.ledger.accrue(b_id)
        self.protocol.ledger.accrue(c_id)
        self.assertEqual(self.protocol.get_position(b_id).debt, 500 + 225)
        self.assertEqual(self.protocol.get_position(b_id).collateral, 1000 + 247)
        self.assertEqual(self.protocol.get_position(c_id).debt, 500 + 675)
        self.assertEqual(self.protocol.get_position(c_id).collateral, 3000 + 742)

        # Debt is fully accrued; one unit of collateral is left in flight by rounding
        self.assertEqual(accrual.undistributed_debt, 0)
        self.assertEqual(accrual.undistributed_collateral, 1)
        self.assertEqual(state.sbd.total_supply, accrual.total_debt + accrual.undistributed_debt + accrual.debt_loss)
        self.assertEqual(state.native.balance_of(CDP_ACCOUNT),
                         accrual.total_collateral + accrual.undistributed_collateral + accrual.collateral_loss)
        self.protocol.check_invariants()

    def test_last_position_cannot_be_socialized(self):
        a_id = self.open_position(self.protocol, "alice", 1000, 900)
        event_count = len(self.protocol.events)

        with self.assertRaises(CannotLiquidateLastPosition):
            self.protocol.liquidate("keeper")

        self.assertIn(a_id, self.protocol.ledger)
        self.assertIn(a_id, self.protocol.state.liquidation_queue)
        self.assertEqual(len(self.protocol.events), event_count)

    def test_last_position_can_use_the_pool(self):
        """The last safe is liquidated normally when the pool can absorb it."""
        a_id = self.open_position(self.protocol, "alice", 1000, 900)
        self.protocol.stake("alice", 900)

        result = self.protocol.liquidate("keeper")
        self.assertTrue(result.used_stability_pool)
        self.assertEqual(len(self.protocol.ledger), 0)
        self.assertNotIn(a_id, self.protocol.state.redemption_queue)
        self.assertEqual(self.protocol.stability_pool.total_staked, 0)

    def test_empty_queue(self):
        with self.assertRaises(NothingToLiquidate):
            self.protocol.liquidate("keeper")

        # A safe without debt is not in the queue either
        self.protocol.fund("alice", collateral=100)
        self.protocol.open_position("alice", 100)
        with self.assertRaises(NothingToLiquidate):
            self.protocol.liquidate("keeper")

    def test_price_feed_health_check(self):
        protocol = StableBaseProtocol(self.params, PriceFeed(PRECISION))
        a_id = self.open_position(protocol, "alice", 1000, 900)
        b_id = self.open_position(protocol, "bob", 1000, 500)
        self.open_position(protocol, "carol", 10_000, 2000)
        protocol.stake("carol", 2000)

        # 1000 of collateral value covers 110% of 900
        with self.assertRaises(NotLiquidatable) as context:
            protocol.liquidate("keeper")
        self.assertIn("not eligible", str(context.exception).lower())

        protocol.update_price(9 * PRECISION // 10)
        self.assertEqual(protocol.liquidate("keeper").position_id, a_id)

        # Bob is still healthy at the lower price
        with self.assertRaises(NotLiquidatable):
            protocol.liquidate_position("keeper", b_id)

    def test_liquidate_specific_position(self):
        self.open_position(self.protocol, "alice", 1000, 900)
        b_id = self.open_position(self.protocol, "bob", 1000, 500)
        self.protocol.fund("dave", collateral=100)
        d_id = self.protocol.open_position("dave", 100)

        with self.assertRaises(NotLiquidatable):
            self.protocol.liquidate_position("keeper", d_id)

        result = self.protocol.liquidate_position("keeper", b_id)
        self.assertEqual(result.position_id, b_id)
        self.assertNotIn(b_id, self.protocol.ledger)


if __name__ == "__main__":
    unittest.main()
