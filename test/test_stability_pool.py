"""
Unit tests for the StabilityPool of the StableBase model.
"""

import unittest

from stablebase_model.constants import PRECISION, ProtocolParameters
from stablebase_model.errors import InvalidAmount, NotFound
from stablebase_model.events import EventLog, EventType
from stablebase_model.stability_pool import SBRClaimStatus, SBRDistributionStatus, StabilityPool


class TestStabilityPool(unittest.TestCase):
    def setUp(self):
        """Set up a pool emitting 10 SBR per second for 365 seconds."""
        self.params = ProtocolParameters(sbr_total_rewards=3650, sbr_distribution_duration=365)
        self.events = EventLog()
        self.pool = StabilityPool(self.params, self.events)

    def test_absorb_loss(self):
        """Absorbing 500 of 1000 halves the scaling factor and credits 100 collateral."""
        self.pool.stake("alice", 1000, now=0)
        snapshot = self.pool.absorb_loss(500, 100)

        self.assertIsNone(snapshot)
        self.assertEqual(self.pool.scaling_factor, PRECISION // 2)
        self.assertEqual(self.pool.total_staked, 500)
        self.assertEqual(self.pool.collateral_per_token, 100 * PRECISION // 1000)
        self.assertEqual(self.pool.collateral_loss, 0)

        gains = self.pool.pending_rewards("alice")
        self.assertEqual(gains.effective_stake, 500)
        self.assertEqual(gains.collateral, 100)
        self.assertEqual(self.pool.effective_stake("alice"), 500)

    def test_absorb_loss_with_remainder(self):
        """Collateral that does not divide over the stake is carried into the next distribution."""
        self.pool.stake("alice", 999, now=0)
        self.pool.absorb_loss(500, 101)

        self.assertEqual(self.pool.collateral_per_token, 101 * PRECISION // 999)
        self.assertEqual(self.pool.collateral_loss, 1)
        self.assertEqual(self.pool.scaling_factor, 499 * PRECISION // 999)
        self.assertEqual(self.pool.total_staked, 499)

        gains = self.pool.pending_rewards("alice")
        self.assertEqual(gains.collateral, 100)
        # Rounded down, never more than the pool holds
        self.assertEqual(gains.effective_stake, 498)

        # The carried unit goes out with the next distribution
        self.assertTrue(self.pool.add_collateral_reward(1))
        self.assertEqual(self.pool.collateral_loss, 0)
        self.assertEqual(self.pool.pending_rewards("alice").collateral, 102)

    def test_distribution_carry(self):
        self.pool.stake("alice", 3, now=0)
        self.assertTrue(self.pool.add_collateral_reward(10))
        self.assertEqual(self.pool.collateral_per_token, 10 * PRECISION // 3)
        self.assertEqual(self.pool.collateral_loss, 1)
        self.assertEqual(self.pool.pending_rewards("alice").collateral, 9)

    def test_losses_are_shared_pro_rata(self):
        self.pool.stake("alice", 600, now=0)
        self.pool.stake("bob", 400, now=0)
        self.pool.absorb_loss(500, 100)

        self.assertEqual(self.pool.effective_stake("alice"), 300)
        self.assertEqual(self.pool.effective_stake("bob"), 200)
        self.assertEqual(self.pool.pending_rewards("alice").collateral, 60)
        self.assertEqual(self.pool.pending_rewards("bob").collateral, 40)

    def test_late_depositor_shares_rewards_by_current_stake(self):
        self.pool.stake("alice", 1000, now=0)
        self.pool.absorb_loss(500, 0)
        self.pool.stake("carol", 500, now=0)

        depositor = self.pool.get_depositor("carol")
        self.assertEqual(depositor.cumulative_scaling_factor_seen, PRECISION // 2)

        self.assertTrue(self.pool.add_reward(1000))
        self.assertEqual(self.pool.pending_rewards("alice").reward, 500)
        self.assertEqual(self.pool.pending_rewards("carol").reward, 500)

    def test_reset_chaining(self):
        """A depositor who never updates chains through every reset snapshot."""
        pool = StabilityPool(ProtocolParameters(minimum_scaling_factor=6 * 10 ** 17), self.events)
        pool.stake("alice", 1000, now=0)

        expected_stakes = [500, 250, 125]
        for epoch, expected in enumerate(expected_stakes, start=1):
            snapshot = pool.absorb_loss(pool.total_staked // 2, 100)
            self.assertIsNotNone(snapshot)
            self.assertEqual(snapshot.scaling_factor, PRECISION // 2)
            self.assertEqual(pool.reset_epoch, epoch)
            self.assertEqual(pool.scaling_factor, PRECISION)
            self.assertEqual(pool.effective_stake("alice"), expected)

        self.assertEqual(len(pool.reset_snapshots), 3)
        self.assertEqual(pool.pending_rewards("alice").collateral, 300)
        self.assertEqual(len(self.events.of_type(EventType.SCALING_FACTOR_RESET)), 3)

        # Total wipeout
        pool.absorb_loss(125, 0)
        self.assertEqual(pool.reset_epoch, 4)
        self.assertEqual(pool.total_staked, 0)
        self.assertEqual(pool.effective_stake("alice"), 0)
        self.assertEqual(pool.pending_rewards("alice").collateral, 300)

        # The pool keeps working for new depositors
        pool.stake("bob", 100, now=0)
        self.assertTrue(pool.add_reward(100))
        self.assertEqual(pool.pending_rewards("bob").reward, 100)
        self.assertEqual(pool.pending_rewards("alice").reward, 0)

    def test_reset_with_partial_depletion_in_live_epoch(self):
        pool = StabilityPool(ProtocolParameters(minimum_scaling_factor=6 * 10 ** 17), self.events)
        pool.stake("alice", 1000, now=0)
        pool.absorb_loss(500, 0)   # reset, alice 500
        pool.absorb_loss(100, 0)   # live factor 0.8, alice 400

        self.assertEqual(pool.reset_epoch, 1)
        self.assertEqual(pool.scaling_factor, 8 * 10 ** 17)
        self.assertEqual(pool.effective_stake("alice"), 400)

    def test_rewards_without_stake_are_rejected(self):
        self.assertFalse(self.pool.add_reward(100))
        self.assertFalse(self.pool.add_collateral_reward(100))
        self.assertEqual(self.pool.reward_per_token, 0)
        self.assertFalse(self.pool.can_receive_rewards)

    def test_absorb_loss_validation(self):
        self.pool.stake("alice", 100, now=0)
        with self.assertRaises(InvalidAmount):
            self.pool.absorb_loss(101, 0)
        with self.assertRaises(InvalidAmount):
            self.pool.absorb_loss(0, 10)

    def test_unstake(self):
        self.pool.stake("alice", 1000, now=0)
        self.pool.add_reward(100)
        self.pool.absorb_loss(500, 0)

        with self.assertRaises(InvalidAmount):
            self.pool.unstake("alice", 501, now=0)
        with self.assertRaises(NotFound):
            self.pool.unstake("bob", 1, now=0)

        payout = self.pool.unstake("alice", 200, now=0)
        self.assertEqual(payout.withdrawn, 200)
        self.assertEqual(payout.reward, 100)
        self.assertEqual(payout.stake, 300)
        self.assertEqual(self.pool.total_staked, 300)

        depositor = self.pool.get_depositor("alice")
        self.assertEqual(depositor.stake, 300)
        self.assertEqual(depositor.cumulative_scaling_factor_seen, PRECISION // 2)

        # Nothing is paid twice
        self.assertEqual(self.pool.claim("alice", now=0).reward, 0)

    def test_stake_rounded_to_nothing_is_swept(self):
        """Once no depositor can withdraw anything, the leftover stake becomes dust."""
        self.pool.stake("alice", 1, now=0)
        self.pool.stake("bob", 2, now=0)
        self.pool.absorb_loss(1, 0)
        self.assertEqual(self.pool.effective_stake("alice"), 0)
        self.assertEqual(self.pool.effective_stake("bob"), 1)

        with self.assertLogs("stablebase_model.stability_pool", level="WARNING"):
            self.pool.unstake("bob", 1, now=0)

        self.assertEqual(self.pool.total_staked, 0)
        self.assertEqual(self.pool.stake_dust, 1)
        self.assertFalse(self.pool.can_receive_rewards)
        self.assertFalse(self.pool.add_reward(100))

        # Alice's leftover raw stake earns nothing from later deposits
        self.assertEqual(self.pool.reset_epoch, 1)
        self.pool.stake("carol", 10, now=0)
        self.assertTrue(self.pool.add_reward(100))
        self.assertEqual(self.pool.pending_rewards("carol").reward, 100)
        self.assertEqual(self.pool.pending_rewards("alice").reward, 0)
        self.assertEqual(self.pool.effective_stake("alice"), 0)

    def test_frontend_fee(self):
        self.pool.stake("alice", 1000, now=0)
        self.pool.add_reward(1000)

        payout = self.pool.claim("alice", now=0, frontend="frontend", fee_bps=1000)
        self.assertEqual(payout.reward, 900)
        self.assertEqual(payout.frontend, "frontend")
        self.assertEqual(payout.frontend_reward, 100)

    def test_sbr_emission(self):
        self.assertEqual(self.pool.sbr_distribution_status, SBRDistributionStatus.NOT_STARTED)
        self.pool.stake("alice", 100, now=0)
        self.assertEqual(self.pool.sbr_distribution_status, SBRDistributionStatus.STARTED)
        self.assertEqual(self.pool.sbr_distribution_end_time, 365)

        self.assertEqual(self.pool.claim("alice", now=10).sbr, 100)

        # Emission stops at the end of the schedule
        self.assertEqual(self.pool.claim("alice", now=1000).sbr, 3550)
        self.assertEqual(self.pool.sbr_distribution_status, SBRDistributionStatus.ENDED)
        self.assertEqual(self.pool.total_sbr_emitted, 3650)
        self.assertEqual(self.pool.get_depositor("alice").sbr_claim_status, SBRClaimStatus.CLAIMED)
        self.assertEqual(self.pool.claim("alice", now=2000).sbr, 0)

    def test_sbr_emitted_while_empty_is_carried(self):
        self.pool.stake("alice", 100, now=0)
        self.assertEqual(self.pool.unstake("alice", 100, now=10).sbr, 100)

        self.pool.stake("bob", 100, now=20)
        self.assertEqual(self.pool.sbr_loss, 100)
        self.assertEqual(self.pool.claim("bob", now=30).sbr, 200)


if __name__ == "__main__":
    unittest.main()
