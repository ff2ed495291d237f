"""
Unit tests for the FeeDistributor of the StableBase model.
"""

import unittest

from stablebase_model.constants import PRECISION, ProtocolParameters
from stablebase_model.events import EventType
from stablebase_model.fee_distributor import FeeDistributor, FeeKind
from stablebase_model.protocol import ProtocolState
from stablebase_model.tokens import CDP_ACCOUNT, STABILITY_POOL_ACCOUNT, STAKING_POOL_ACCOUNT


class TestFeeDistributor(unittest.TestCase):
    def setUp(self):
        self.params = ProtocolParameters()
        self.state = ProtocolState.create(self.params)
        self.distributor = FeeDistributor(self.params)

    def test_empty_staking_pool_share_is_refunded(self):
        """A 1000 fee splits 100/900; the staking pool share is refunded when nobody is staked."""
        self.state.stability_pool.stake("alice", 1000, now=0)
        self.state.sbd.mint(CDP_ACCOUNT, 1000)

        distribution = self.distributor.distribute(self.state, 1000, "payer", FeeKind.REWARD)

        self.assertEqual(distribution.refunded, 100)
        self.assertEqual(distribution.stability_pool_share, 900)
        self.assertEqual(distribution.staking_pool_share, 0)
        self.assertEqual(self.state.sbd.balance_of("payer"), 100)
        self.assertEqual(self.state.sbd.balance_of(STABILITY_POOL_ACCOUNT), 900)
        self.assertEqual(self.state.sbd.balance_of(CDP_ACCOUNT), 0)
        self.assertEqual(self.state.stability_pool.reward_per_token, 900 * PRECISION // 1000)
        self.assertEqual(self.state.events.last(EventType.FEE_REFUNDED)["amount"], 100)

    def test_both_pools_receive_their_share(self):
        self.state.stability_pool.stake("alice", 1000, now=0)
        self.state.staking_pool.stake("bob", 10)
        self.state.native.mint(CDP_ACCOUNT, 1000)

        distribution = self.distributor.distribute(self.state, 1000, "payer", FeeKind.COLLATERAL)

        self.assertEqual(distribution.staking_pool_share, 100)
        self.assertEqual(distribution.stability_pool_share, 900)
        self.assertEqual(distribution.refunded, 0)
        self.assertEqual(self.state.native.balance_of(STAKING_POOL_ACCOUNT), 100)
        self.assertEqual(self.state.native.balance_of(STABILITY_POOL_ACCOUNT), 900)
        self.assertEqual(self.state.staking_pool.pending("bob"), (0, 100))
        self.assertEqual(self.state.stability_pool.pending_rewards("alice").collateral, 900)

    def test_everything_refunded_without_stake(self):
        self.state.sbd.mint(CDP_ACCOUNT, 500)
        distribution = self.distributor.distribute(self.state, 500, "payer", FeeKind.REWARD)

        self.assertEqual(distribution.refunded, 500)
        self.assertEqual(self.state.sbd.balance_of("payer"), 500)

    def test_zero_fee(self):
        distribution = self.distributor.distribute(self.state, 0, "payer", FeeKind.REWARD)
        self.assertEqual(distribution.fee, 0)
        self.assertEqual(len(self.state.events), 0)


if __name__ == "__main__":
    unittest.main()
