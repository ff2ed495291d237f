"""
Unit tests for the RedemptionEngine of the StableBase model.
"""

import unittest

from stablebase_model.constants import PRECISION, ProtocolParameters
from stablebase_model.errors import InsufficientBalance, InvalidAmount
from stablebase_model.events import EventType
from stablebase_model.protocol import StableBaseProtocol
from stablebase_model.tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT


class TestRedemption(unittest.TestCase):
    def setUp(self):
        """Set up three safes with debts 100, 150 and 200, queued for redemption in that order."""
        self.protocol = StableBaseProtocol(ProtocolParameters(minimum_debt=1))
        self.ids = []
        for index, debt in enumerate((100, 150, 200)):
            owner = f"owner{index}"
            self.protocol.fund(owner, collateral=1000)
            position_id = self.protocol.open_position(owner, 1000)
            # Fee rates 1-3 bps order the redemption queue without charging anything
            self.protocol.borrow(owner, position_id, debt, fee_rate_bps=index + 1)
            self.ids.append(position_id)

        sbd = self.protocol.state.sbd
        sbd.transfer("owner0", "redeemer", 100)
        sbd.transfer("owner1", "redeemer", 150)
        sbd.transfer("owner2", "redeemer", 200)

    def test_redeem_across_positions(self):
        """Redeeming 300 clears the first two safes and takes 50 from the third."""
        first, second, third = self.ids
        state = self.protocol.state
        self.assertEqual(list(state.redemption_queue), self.ids)

        result = self.protocol.redeem("redeemer", 300)

        self.assertEqual(result.redeemed, 300)
        self.assertFalse(result.partial_fill)
        self.assertEqual([p.position_id for p in result.positions], [first, second, third])
        self.assertEqual([p.debt for p in result.positions], [100, 150, 50])
        self.assertEqual([p.collateral for p in result.positions], [1000, 1000, 250])

        # Fully redeemed safes are deleted along with their queue entries
        for position_id in (first, second):
            self.assertNotIn(position_id, state.liquidation_queue)
            self.assertNotIn(position_id, state.redemption_queue)
            self.assertNotIn(position_id, state.ledger)
        self.assertEqual([p.closed for p in result.positions], [True, True, False])
        self.assertEqual([p.returned_collateral for p in result.positions], [0, 0, 0])
        closed = state.events.of_type(EventType.POSITION_CLOSED)
        self.assertEqual([event["id"] for event in closed], [first, second])

        # The third safe is re-keyed in the liquidation queue only
        position = self.protocol.get_position(third)
        self.assertEqual(position.debt, 150)
        self.assertEqual(position.collateral, 750)
        self.assertEqual(state.liquidation_queue.key_of(third), 150 * PRECISION // 750)
        self.assertEqual(state.redemption_queue.key_of(third), 3)

        self.assertEqual(state.sbd.balance_of("redeemer"), 150)
        self.assertEqual(state.ledger.accrual.total_debt, 150)
        self.assertEqual(state.ledger.accrual.total_collateral, 750)
        state.ledger.check_invariants()

    def test_fees_refunded_without_stability_pool_stake(self):
        result = self.protocol.redeem("redeemer", 300)
        state = self.protocol.state

        self.assertEqual(result.collateral, 2250)
        self.assertEqual(result.owner_fee, 2)
        self.assertEqual(result.redeemer_fee, 2)
        self.assertEqual(result.fees_refunded, 4)
        self.assertEqual(state.native.balance_of("redeemer"), 2250)
        self.assertEqual(len(state.events.of_type(EventType.FEE_REFUNDED)), 2)

        batch = state.events.last(EventType.REDEEMED_BATCH)
        self.assertEqual(batch["amount"], 300)
        self.assertEqual(batch["collateral"], 2250)
        self.assertEqual(len(state.events.of_type(EventType.REDEEMED)), 3)

    def test_fees_go_to_stability_pool(self):
        self.protocol.stake("redeemer", 100)
        result = self.protocol.redeem("redeemer", 300)
        state = self.protocol.state

        self.assertEqual(result.fees_to_stability_pool, 4)
        self.assertEqual(state.native.balance_of(STABILITY_POOL_ACCOUNT), 4)
        self.assertEqual(state.native.balance_of("redeemer"), 2246)
        self.assertEqual(state.native.balance_of(CDP_ACCOUNT), 750)

    def test_partial_fill(self):
        self.protocol.state.sbd.mint("redeemer", 550)
        with self.assertLogs("stablebase_model.redemption", level="WARNING"):
            result = self.protocol.redeem("redeemer", 1000)

        self.assertTrue(result.partial_fill)
        self.assertEqual(result.redeemed, 450)
        self.assertEqual(self.protocol.state.sbd.balance_of("redeemer"), 550)
        self.assertEqual(len(self.protocol.state.redemption_queue), 0)

    def test_redeem_validation(self):
        with self.assertRaises(InvalidAmount):
            self.protocol.redeem("redeemer", 0)
        with self.assertRaises(InsufficientBalance):
            self.protocol.redeem("redeemer", 451)

    def test_redemption_accrues_positions(self):
        """Socialized debt reaches a safe before it is redeemed."""
        protocol = StableBaseProtocol(ProtocolParameters(minimum_debt=1))
        for owner, collateral, debt in (("alice", 1000, 900), ("bob", 1000, 100), ("carol", 1000, 100)):
            protocol.fund(owner, collateral=collateral)
            position_id = protocol.open_position(owner, collateral)
            protocol.borrow(owner, position_id, debt)

        # Alice is socialized onto bob and carol, taking both to 550 debt
        protocol.liquidate("keeper")
        protocol.state.sbd.transfer("alice", "redeemer", 900)
        result = protocol.redeem("redeemer", 900)

        self.assertEqual(result.redeemed, 900)
        self.assertEqual([p.debt for p in result.positions], [550, 350])
        self.assertEqual([p.remaining_debt for p in result.positions], [0, 200])
        self.assertNotIn(result.positions[0].position_id, protocol.state.ledger)
        self.assertEqual(protocol.state.ledger.accrual.total_debt, 200)
        self.assertEqual(protocol.state.ledger.accrual.undistributed_debt, 0)


if __name__ == "__main__":
    unittest.main()
