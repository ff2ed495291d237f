"""
Simulation Example for the StableBase protocol model.

This script walks through the main mechanisms of the protocol one at a time:
liquidations through the stability pool, socialized liquidations, redemptions
and the stability pool scaling factor reset.
"""

import logging

from stablebase_model.constants import PRECISION, ProtocolParameters
from stablebase_model.economic_model import ProtocolEconomicModel, from_units, to_units
from stablebase_model.errors import StableBaseError


def run_stability_pool_simulation():
    """Risky safes are liquidated into the stability pool and depositors claim the collateral"""
    print("\n=== Running Stability Pool Simulation ===")
    model = ProtocolEconomicModel(initial_price=2000.0)

    for i, (collateral, debt) in enumerate([(5.0, 8_000.0), (4.0, 6_500.0), (20.0, 10_000.0)]):
        position_id = model.open_position(f"user{i}", collateral, debt)
        print(f"Safe {position_id}: {collateral:.2f} ETH, {debt:.2f} SBD")

    model.open_position("sp_user", 50.0, 20_000.0)
    model.provide_to_stability_pool("sp_user", 20_000.0)
    print("sp_user deposited 20000 SBD")

    print("\nDropping price to $1700")
    liquidated = model.update_price(1700.0)
    print(f"Liquidated safes: {liquidated}")

    model.update_time(24 * 60 * 60)
    payout = model.protocol.claim("sp_user")
    pool = model.protocol.stability_pool
    print(f"sp_user claimed {from_units(payout.collateral):.4f} ETH and {from_units(payout.sbr):.2f} SBR")
    print(f"sp_user remaining stake: {from_units(pool.effective_stake('sp_user')):.2f} SBD")


def run_socialized_liquidation_simulation():
    """Without stability pool liquidity, debt and collateral move to the remaining safes"""
    print("\n=== Running Socialized Liquidation Simulation ===")
    model = ProtocolEconomicModel(initial_price=2000.0)

    risky = model.open_position("risky", 5.0, 8_500.0)
    safe_ids = [model.open_position(f"user{i}", 10.0 * (i + 1), 5_000.0) for i in range(3)]

    print("Dropping price to $1800 with an empty stability pool")
    print(f"Liquidated safes: {model.update_price(1800.0)}")

    ledger = model.protocol.ledger
    accrual = ledger.accrual
    print(f"Debt waiting to be accrued: {from_units(accrual.undistributed_debt):.2f} SBD")
    for position_id in safe_ids:
        deltas = ledger.accrue(position_id)
        position = ledger.get(position_id)
        print(f"  Safe {position_id} picked up {from_units(deltas.debt_increase):.2f} SBD and "
              f"{from_units(deltas.collateral_increase):.4f} ETH, now {from_units(position.debt):.2f} SBD")
    print(f"Debt still waiting: {from_units(accrual.undistributed_debt):.6f} SBD")
    print(f"Safe {risky} still exists: {risky in ledger}")


def run_redemption_simulation():
    """Redemptions start with the safes that paid the lowest fees"""
    print("\n=== Running Redemption Simulation ===")
    model = ProtocolEconomicModel(initial_price=2000.0)

    for i, fee_rate_bps in enumerate([0, 25, 50, 100]):
        position_id = model.open_position(f"user{i}", 10.0, 5_000.0, fee_rate_bps)
        print(f"Safe {position_id}: 10.00 ETH, 5000.00 SBD, fee rate {fee_rate_bps} bps")

    model.protocol.state.sbd.transfer("user3", "redeemer", to_units(4_900.0))
    model.protocol.state.sbd.transfer("user2", "redeemer", to_units(2_000.0))
    print("\nRedeeming 6900 SBD")
    result = model.protocol.redeem("redeemer", to_units(6_900.0))
    for redeemed in result.positions:
        print(f"  Safe {redeemed.position_id}: redeemed {from_units(redeemed.debt):.2f} SBD, "
              f"{from_units(redeemed.remaining_debt):.2f} SBD left")
    print(f"Redeemer received {from_units(result.collateral_to_redeemer):.4f} ETH, "
          f"fees refunded: {from_units(result.fees_refunded):.4f} ETH")


def run_scaling_factor_reset_simulation():
    """Repeated deep losses push the scaling factor below its floor and trigger resets"""
    print("\n=== Running Scaling Factor Reset Simulation ===")
    params = ProtocolParameters(minimum_debt=to_units(100.0), minimum_scaling_factor=PRECISION // 10)
    model = ProtocolEconomicModel(initial_price=2000.0, params=params)

    model.open_position("sp_user", 100.0, 20_000.0)
    model.provide_to_stability_pool("sp_user", 20_000.0)
    pool = model.protocol.stability_pool

    price = 2000.0
    for round_number in range(3):
        debt = from_units(pool.total_staked) * 0.7
        collateral = debt * 1.12 / price
        model.open_position(f"risky{round_number}", collateral, debt)
        price *= 0.97
        try:
            model.update_price(price)
        except StableBaseError as exc:
            print(f"  Liquidation failed: {exc}")
        print(f"Round {round_number}: stake {from_units(pool.total_staked):.2f} SBD, "
              f"scaling factor {pool.scaling_factor / PRECISION:.4f}, reset epoch {pool.reset_epoch}")

    gains = pool.pending_rewards("sp_user")
    print(f"sp_user effective stake {from_units(gains.effective_stake):.2f} SBD, "
          f"pending collateral {from_units(gains.collateral):.4f} ETH")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")
    run_stability_pool_simulation()
    run_socialized_liquidation_simulation()
    run_redemption_simulation()
    run_scaling_factor_reset_simulation()
