"""
Consistency metrics for filter evaluation.

This module provides error metrics and the chi-square consistency
statistics used to check that a filter's covariance matches its actual
errors.
"""

from typing import Optional, Tuple, Union

import numpy as np
from scipy import stats

from bayes_filter.utils.factorisation import inverse_pd


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: Axis along which to compute RMSE
              None: scalar RMSE across all dimensions
              0: per-dimension RMSE
              1: per-sample RMSE

    Returns:
        rmse: RMSE value(s)
    """
    errors = np.asarray(errors, dtype=float)
    if axis is None:
        return float(np.sqrt(np.mean(errors**2)))
    return np.sqrt(np.mean(errors**2, axis=axis))


def _normalised_squares(residuals: np.ndarray, covariances: np.ndarray) -> np.ndarray:
    """rᵢᵗ Pᵢ⁻¹ rᵢ for each row, NaN where Pᵢ is not positive definite."""
    out = np.empty(residuals.shape[0])
    for i, (r, P) in enumerate(zip(residuals, covariances)):
        P_inv, _ = inverse_pd(P)
        out[i] = r @ P_inv @ r
    return out


def compute_nees(
    truth: np.ndarray, estimated: np.ndarray, covariance: np.ndarray
) -> np.ndarray:
    """
    Normalised Estimation Error Squared of each estimate.

        NEES = (x_est - x_true)ᵗ X⁻¹ (x_est - x_true)

    Chi-square with n degrees of freedom for a consistent filter.

    Args:
        truth: True states, shape (N, n)
        estimated: Estimated states, shape (N, n)
        covariance: Estimate covariances, shape (N, n, n)

    Returns:
        NEES values, shape (N,); NaN where a covariance is not PD
    """
    truth = np.asarray(truth, dtype=float)
    estimated = np.asarray(estimated, dtype=float)
    covariance = np.asarray(covariance, dtype=float)
    if truth.shape != estimated.shape or truth.ndim != 2:
        raise ValueError(
            f"truth {truth.shape} and estimated {estimated.shape} must be equal (N, n) arrays"
        )

    N, n = truth.shape
    if covariance.shape != (N, n, n):
        raise ValueError(f"covariance must have shape ({N}, {n}, {n}), got {covariance.shape}")
    return _normalised_squares(estimated - truth, covariance)


def compute_nis(innovation: np.ndarray, S: np.ndarray) -> np.ndarray:
    """
    Normalised Innovation Squared sᵗ S⁻¹ s of each observation.

    Chi-square with m (observation size) degrees of freedom for a
    consistent filter. A scalar observation may pass innovations as (N,).
    NaN where S is not PD.
    """
    innovation = np.asarray(innovation, dtype=float)
    S = np.asarray(S, dtype=float)
    if innovation.ndim == 1:
        innovation = innovation[:, np.newaxis]

    N, m = innovation.shape
    if S.shape != (N, m, m):
        raise ValueError(f"S must have shape ({N}, {m}, {m}), got {S.shape}")
    return _normalised_squares(innovation, S)


def chi_square_bounds(dof: int, n_runs: int = 1, confidence: float = 0.95) -> Tuple[float, float]:
    """
    Two-sided acceptance interval of an averaged NEES or NIS statistic.

    The sum over n_runs independent runs is chi-square with n_runs·dof
    degrees of freedom, so the average lies in
    [χ²(α/2) / n_runs, χ²(1 - α/2) / n_runs] with probability `confidence`.

    Args:
        dof: Degrees of freedom of one statistic (state or z dimension).
        n_runs: Number of statistics averaged.
        confidence: Probability mass of the interval, in (0, 1).

    Returns:
        Tuple of (lower, upper) bounds.

    Example:
        >>> lower, upper = chi_square_bounds(2, n_runs=50)
        >>> bool(lower < 2.0 < upper)
        True
    """
    if dof < 1 or n_runs < 1:
        raise ValueError(f"dof and n_runs must be >= 1, got {dof}, {n_runs}")
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")

    alpha = 1.0 - confidence
    total_dof = dof * n_runs
    lower = stats.chi2.ppf(alpha / 2.0, total_dof) / n_runs
    upper = stats.chi2.ppf(1.0 - alpha / 2.0, total_dof) / n_runs
    return float(lower), float(upper)
