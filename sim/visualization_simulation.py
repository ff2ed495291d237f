"""
Visualization simulation for the StableBase protocol model.

This script demonstrates the StableBase protocol with visualizations.
"""

import numpy as np

from stablebase_model.economic_model import ProtocolEconomicModel


def run_visualization_simulation():
    model = ProtocolEconomicModel(initial_price=2000.0)
    rng = np.random.default_rng()

    print("Creating initial safes...")
    # Safes with varying collateral and risk profiles
    for i in range(10):
        collateral = rng.uniform(2.0, 10.0)
        # Target different collateralization ratios from 120% to 200%
        target_cr = 1.2 + (i * 0.8 / 10)
        debt = collateral * 2000 / target_cr
        position_id = model.open_position(f"user{i}", collateral, debt, fee_rate_bps=10 * i)
        print(f"Safe {position_id}: {collateral:.2f} ETH, {debt:.2f} SBD, CR: {target_cr*100:.0f}%")

    print("\nAdding to stability pool...")
    model.open_position("sp_user_1", 30.0, 10_000.0)
    model.open_position("sp_user_2", 15.0, 5_000.0)
    model.provide_to_stability_pool("sp_user_1", 10_000.0)
    model.provide_to_stability_pool("sp_user_2", 5_000.0)
    print("Added 15000 SBD to stability pool")

    print("\nStaking DFIRE...")
    model.stake_dfire("dfire_staker", 1_000.0)

    print("\nRunning simulation with visualizations...")
    results = model.simulate_market_scenario(30, price_volatility=0.03, plot_results=True)

    print("\nSimulation Results:")
    for key, value in results.items():
        if key == 'price_history':
            print(f"  price range: {value.min():.2f} - {value.max():.2f}")
        else:
            print(f"  {key}: {value}")


if __name__ == "__main__":
    run_visualization_simulation()
