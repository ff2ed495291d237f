"""
Protocol constants and configuration for the StableBase model.

All monetary values are fixed-point integers scaled by PRECISION, and every
rate parameter is expressed in basis points out of BASIS_POINTS_DIVISOR.
"""

from dataclasses import dataclass

# Fixed-point scales
PRECISION = 10 ** 18
BASIS_POINTS_DIVISOR = 10_000
MAX_UINT256 = 2 ** 256 - 1

# Position parameters
MINIMUM_DEBT = 2_000 * PRECISION  # Smallest non-zero debt a position may carry
BOOTSTRAP_MODE_DEBT_THRESHOLD = 5_000_000 * PRECISION  # Bootstrap -> Normal once total debt exceeds this

# Liquidation parameters
LIQUIDATION_RATIO_BPS = 11_000  # 110% - collateral value below this share of debt is liquidatable
LIQUIDATION_FEE_BPS = 10        # 0.1% of the liquidated collateral
GAS_COMPENSATION = 3 * 10 ** 15  # Collateral refunded to the liquidator, capped by the liquidation fee

# Redemption parameters
REDEMPTION_OWNER_FEE_BPS = 10     # 0.1% of redeemed collateral
REDEMPTION_REDEEMER_FEE_BPS = 10  # 0.1% of redeemed collateral

# Fee split between the DFIRE staking pool and the stability pool
STAKING_POOL_FEE_SHARE_BPS = 1_000  # 10% to stakers, the remainder to the stability pool

# Stability pool scaling factor floor; compounding below this triggers a reset
MINIMUM_SCALING_FACTOR = 10 ** 9

# SBR emission schedule for stability pool depositors
SBR_TOTAL_REWARDS = 10_000_000 * PRECISION
SBR_DISTRIBUTION_DURATION = 365 * 24 * 60 * 60


@dataclass(frozen=True)
class ProtocolParameters:
    """
    Tunable parameters of the protocol.

    Defaults mirror the module constants. Tests and simulations usually shrink
    ``minimum_debt`` so that small integer scenarios stay readable.
    """
    minimum_debt: int = MINIMUM_DEBT
    bootstrap_mode_debt_threshold: int = BOOTSTRAP_MODE_DEBT_THRESHOLD
    liquidation_ratio_bps: int = LIQUIDATION_RATIO_BPS
    liquidation_fee_bps: int = LIQUIDATION_FEE_BPS
    gas_compensation: int = GAS_COMPENSATION
    redemption_owner_fee_bps: int = REDEMPTION_OWNER_FEE_BPS
    redemption_redeemer_fee_bps: int = REDEMPTION_REDEEMER_FEE_BPS
    staking_pool_fee_share_bps: int = STAKING_POOL_FEE_SHARE_BPS
    minimum_scaling_factor: int = MINIMUM_SCALING_FACTOR
    sbr_total_rewards: int = SBR_TOTAL_REWARDS
    sbr_distribution_duration: int = SBR_DISTRIBUTION_DURATION

    def __post_init__(self):
        for name in ("minimum_debt", "bootstrap_mode_debt_threshold", "gas_compensation", "sbr_total_rewards"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

        for name in ("liquidation_fee_bps", "redemption_owner_fee_bps",
                     "redemption_redeemer_fee_bps", "staking_pool_fee_share_bps"):
            value = getattr(self, name)
            if value < 0 or value > BASIS_POINTS_DIVISOR:
                raise ValueError(f"{name} must be between 0 and {BASIS_POINTS_DIVISOR}")

        if self.redemption_owner_fee_bps + self.redemption_redeemer_fee_bps > BASIS_POINTS_DIVISOR:
            raise ValueError("Redemption fees cannot exceed the redeemed collateral")

        if self.liquidation_ratio_bps < BASIS_POINTS_DIVISOR:
            raise ValueError("Liquidation ratio must be at least 100%")

        if not 0 < self.minimum_scaling_factor < PRECISION:
            raise ValueError("Minimum scaling factor must be between 0 and PRECISION")

        if self.sbr_distribution_duration <= 0:
            raise ValueError("SBR distribution duration must be positive")

    @property
    def sbr_distribution_rate(self) -> int:
        """SBR emitted per second while the distribution is running."""
        return self.sbr_total_rewards // self.sbr_distribution_duration
