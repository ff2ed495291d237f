"""
Economic Model for the StableBase protocol.

This module drives a complete protocol instance through simulated market
conditions. Prices follow a log-normal random walk; after every price move the
riskiest safes are liquidated for as long as they are below the liquidation
ratio. History is recorded at every step and can be plotted.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from .constants import PRECISION, ProtocolParameters
from .errors import CannotLiquidateLastPosition, NothingToLiquidate, NotLiquidatable
from .price_feed import PriceFeed
from .protocol import StableBaseProtocol

logger = logging.getLogger(__name__)

KEEPER = "keeper"


def to_units(amount: float) -> int:
    """Converts a human-readable amount to a PRECISION-scaled integer."""
    return int(round(amount * PRECISION))


def from_units(amount: int) -> float:
    """Converts a PRECISION-scaled integer to a float for reporting."""
    return amount / PRECISION


class ProtocolEconomicModel:
    """
    Complete economic model of the StableBase protocol.
    Wraps a protocol instance and provides simulation capabilities.
    """

    def __init__(self, initial_price=2000.0, params=None, seed=None):
        self.price_feed = PriceFeed(to_units(initial_price))
        self.protocol = StableBaseProtocol(params or ProtocolParameters(), self.price_feed)
        self.rng = np.random.default_rng(seed)

        # Simulation history
        self.time_history = []
        self.price_history = []
        self.total_coll_history = []
        self.total_debt_history = []
        self.positions_history = []
        self.tcr_history = []
        self.stability_pool_history = []

        # Liquidation counters by path
        self.pool_liquidations = 0
        self.secondary_liquidations = 0

    @property
    def current_time(self) -> int:
        return self.protocol.state.current_time

    def open_position(self, owner, collateral, debt, fee_rate_bps=0):
        """
        Funds an owner, opens a safe and borrows against it.

        Args:
            owner: Address of the owner
            collateral: Collateral amount in whole units
            debt: SBD to borrow in whole units, 0 to borrow nothing
            fee_rate_bps: Borrow fee rate

        Returns:
            The id of the new safe
        """
        collateral_units = to_units(collateral)
        self.protocol.fund(owner, collateral=collateral_units)
        position_id = self.protocol.open_position(owner, collateral_units)
        if debt > 0:
            self.protocol.borrow(owner, position_id, to_units(debt), fee_rate_bps)
        return position_id

    def provide_to_stability_pool(self, depositor, amount):
        """Stakes SBD the depositor already holds."""
        return self.protocol.stake(depositor, to_units(amount))

    def stake_dfire(self, staker, amount):
        """Funds a staker with DFIRE and stakes it."""
        amount_units = to_units(amount)
        self.protocol.fund(staker, dfire=amount_units)
        return self.protocol.stake_dfire(staker, amount_units)

    def update_price(self, new_price):
        """
        Updates the collateral price and liquidates unhealthy safes.

        Args:
            new_price: New collateral price in USD

        Returns:
            List of liquidated safe ids
        """
        self.price_feed.set_price(to_units(new_price))

        liquidated = []
        while True:
            try:
                result = self.protocol.liquidate(KEEPER)
            except (NothingToLiquidate, NotLiquidatable):
                break
            except CannotLiquidateLastPosition:
                logger.warning("Last safe is unhealthy but nothing can absorb its liquidation")
                break

            liquidated.append(result.position_id)
            if result.used_stability_pool:
                self.pool_liquidations += 1
            else:
                self.secondary_liquidations += 1

        return liquidated

    def update_time(self, seconds):
        """
        Advances the simulation by the specified number of seconds.
        """
        self.protocol.update_time(seconds)

    def get_system_state(self):
        """
        Returns the current state of the system in human-readable units.

        Returns:
            Dictionary with system state
        """
        state = self.protocol.get_system_state()
        return {
            'time': state['time'],
            'price': from_units(state['price']),
            'mode': state['mode'],
            'positions': state['positions'],
            'total_coll': from_units(state['total_collateral']),
            'total_debt': from_units(state['total_debt']),
            'stability_pool': from_units(state['stability_pool_staked']),
            'tcr': state['tcr'],
            'reset_epoch': state['reset_epoch'],
        }

    def _update_history(self):
        """Updates history tracking for simulations."""
        state = self.get_system_state()

        self.time_history.append(state['time'] / (24 * 60 * 60))
        self.price_history.append(state['price'])
        self.total_coll_history.append(state['total_coll'])
        self.total_debt_history.append(state['total_debt'])
        self.positions_history.append(state['positions'])
        self.tcr_history.append(state['tcr'])
        self.stability_pool_history.append(state['stability_pool'])

    def simulate_market_scenario(self, days, price_volatility=0.02, plot_results=True):
        """
        Runs a simulation with random price movements over the specified period.

        Args:
            days: Number of days to simulate
            price_volatility: Daily price volatility (standard deviation of log returns)
            plot_results: Whether to plot the results

        Returns:
            Dictionary with simulation results
        """
        steps = days * 24  # hourly steps
        step_size = 60 * 60

        self.time_history = []
        self.price_history = []
        self.total_coll_history = []
        self.total_debt_history = []
        self.positions_history = []
        self.tcr_history = []
        self.stability_pool_history = []
        self._update_history()
        initial_positions = self.positions_history[0]

        # Generate random price movements (log-normal)
        price = from_units(self.price_feed.fetch_price())
        hourly_volatility = price_volatility / np.sqrt(24)
        log_returns = self.rng.normal(0, hourly_volatility, steps)

        liquidated = []
        for log_return in log_returns:
            price *= float(np.exp(log_return))
            liquidated.extend(self.update_price(price))
            self.update_time(step_size)
            self._update_history()

        if plot_results:
            self.plot_history()

        final_state = self.get_system_state()
        return {
            'final_price': final_state['price'],
            'initial_positions': initial_positions,
            'final_positions': final_state['positions'],
            'liquidations': len(liquidated),
            'liquidated_ids': liquidated,
            'pool_liquidations': self.pool_liquidations,
            'secondary_liquidations': self.secondary_liquidations,
            'final_tcr': final_state['tcr'],
            'reset_epoch': final_state['reset_epoch'],
            'price_history': np.array(self.price_history),
        }

    def plot_history(self):
        """Plots the recorded history."""
        fig, axs = plt.subplots(5, 1, figsize=(12, 20), sharex=True)

        axs[0].plot(self.time_history, self.price_history)
        axs[0].set_title('Collateral Price')
        axs[0].set_ylabel('USD')

        axs[1].plot(self.time_history, self.total_debt_history)
        axs[1].set_title('Total System Debt')
        axs[1].set_ylabel('SBD')

        axs[2].plot(self.time_history, self.total_coll_history)
        axs[2].set_title('Total Collateral')
        axs[2].set_ylabel('ETH')

        axs[3].plot(self.time_history, self.stability_pool_history)
        axs[3].set_title('Stability Pool Stake')
        axs[3].set_ylabel('SBD')

        # Infinite TCR (no debt) is not drawn
        tcr = np.array(self.tcr_history, dtype=float)
        tcr[np.isinf(tcr)] = np.nan
        axs[4].plot(self.time_history, tcr)
        axs[4].set_title('Total Collateralization Ratio')
        axs[4].set_ylabel('Ratio')
        axs[4].set_xlabel('Days')

        plt.tight_layout()
        plt.show()
        return fig
