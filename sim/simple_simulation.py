"""
Simple simulation for the StableBase protocol model.

This script demonstrates a minimal simulation: a few safes, a stability pool
deposit, a price drop that triggers liquidations and a redemption.
"""

import numpy as np

from stablebase_model.economic_model import KEEPER, ProtocolEconomicModel, from_units, to_units


def print_state(model):
    state = model.get_system_state()
    print(f"  Total collateral: {state['total_coll']:.2f} ETH")
    print(f"  Total debt: {state['total_debt']:.2f} SBD")
    print(f"  ETH price: ${state['price']:.2f}")
    print(f"  Number of safes: {state['positions']}")
    print(f"  Stability pool stake: {state['stability_pool']:.2f} SBD")
    print(f"  Mode: {state['mode']}")


def run_basic_simulation():
    model = ProtocolEconomicModel(initial_price=2000.0, seed=1)
    rng = np.random.default_rng(1)

    print("Creating initial safes...")
    for i in range(5):
        collateral = rng.uniform(3.0, 8.0)
        debt = collateral * 2000 / 1.5  # targeting ~150% collateralization
        fee_rate_bps = int(rng.integers(0, 100))
        position_id = model.open_position(f"user{i}", collateral, debt, fee_rate_bps)
        print(f"Safe {position_id}: {collateral:.2f} ETH, {debt:.2f} SBD, fee rate {fee_rate_bps} bps")

    print("\nAdding to stability pool...")
    model.open_position("sp_user_1", 20.0, 10_000.0)
    model.provide_to_stability_pool("sp_user_1", 10_000.0)
    print("Added 10000 SBD to stability pool")

    print("\nInitial protocol state:")
    print_state(model)

    new_price = 1350.0
    print(f"\nSimulating price drop to ${new_price:.2f}")
    liquidated = model.update_price(new_price)
    if liquidated:
        print(f"Liquidated safes: {liquidated}")
        print(f"Keeper received {from_units(model.protocol.state.native.balance_of(KEEPER)):.4f} ETH")
    else:
        print("No safes eligible for liquidation at this price")

    print("\nRedeeming 1000 SBD...")
    model.protocol.state.sbd.transfer("user0", "redeemer", to_units(1000.0))
    result = model.protocol.redeem("redeemer", to_units(1000.0))
    for redeemed in result.positions:
        print(f"  Safe {redeemed.position_id}: {from_units(redeemed.debt):.2f} SBD for "
              f"{from_units(redeemed.collateral):.4f} ETH")
    print(f"Redeemer received {from_units(result.collateral_to_redeemer):.4f} ETH")

    print("\nFinal protocol state:")
    print_state(model)


if __name__ == "__main__":
    run_basic_simulation()
