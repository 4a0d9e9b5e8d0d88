"""
Evaluation and Visualization Module.

Modules:
    metrics: Error and consistency metrics (RMSE, NEES, NIS, chi-square bounds)
    plots: Estimate and consistency plots
"""

from .metrics import (
    chi_square_bounds,
    compute_nees,
    compute_nis,
    compute_rmse,
)
from .plots import (
    plot_consistency,
    plot_estimate_time,
    save_figure,
)

__all__ = [
    # Metrics
    "compute_rmse",
    "compute_nees",
    "compute_nis",
    "chi_square_bounds",
    # Plots
    "plot_estimate_time",
    "plot_consistency",
    "save_figure",
]
