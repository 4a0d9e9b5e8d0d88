"""
UdU' factorisation primitives.

A symmetric positive semi-definite matrix X is represented as U·D·Uᵗ with U
unit upper triangular and D diagonal. The packed form used throughout the
package stores both in one square array:

    strict upper triangle = strict upper triangle of U
    diagonal              = D
    strict lower triangle = 0

Reciprocal condition numbers follow one convention everywhere:
    rcond > 0   positive definite (min(D) / max(D))
    rcond == 0  semi-definite, empty, or unbounded
    rcond < 0   negative definite or NaN encountered (returned as -1)

References:
    G.J. Bierman, "Factorization Methods for Discrete Sequential
    Estimation", Academic Press 1977.
"""

from typing import Tuple

import numpy as np
from scipy import linalg


def ud_rcond(d: np.ndarray) -> float:
    """
    Estimate the reciprocal condition number of a diagonal matrix.

    The max element of D is taken as the norm of the matrix and the min
    element as the norm of its inverse, so rcond = min / max <= 1.

    Args:
        d: Diagonal elements (n,).

    Returns:
        Reciprocal condition number; 0 for empty, all-zero or infinite
        diagonals, -1 if any element is negative or NaN.
    """
    d = np.asarray(d, dtype=float)
    if d.size == 0:
        return 0.0
    if np.any(np.isnan(d)):
        return -1.0
    rcmin = float(np.min(d))
    rcmax = float(np.max(d))
    if rcmin < 0:
        return -1.0
    if rcmax == 0 or np.isinf(rcmax):
        return 0.0
    return rcmin / rcmax


def ud_factor(X: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Modified upper Cholesky factorisation X = U·D·Uᵗ.

    Works from the last column backwards. A zero pivot is accepted only if
    the rest of its column is also zero, giving a zero column in U and a
    zero element in D (semi-definite). Any negative pivot, or a zero pivot
    with a non-zero column, is negative definiteness.

    Args:
        X: Symmetric matrix (n×n). Only the upper triangle is read.

    Returns:
        Tuple of (UD, rcond):
            - UD: Packed factor (n×n); meaningful only when rcond >= 0
            - rcond: Reciprocal condition number of D, -1 if not PSD

    Raises:
        LogicError: If X is not square.
    """
    from bayes_filter.estimators.errors import LogicError

    X = np.asarray(X, dtype=float)
    if X.ndim != 2 or X.shape[0] != X.shape[1]:
        raise LogicError(f"X must be square, got shape {X.shape}")

    upper = np.triu(X)
    M = upper + np.triu(X, 1).T
    n = M.shape[0]

    for j in range(n - 1, -1, -1):
        d = M[j, j]
        if d > 0:
            col = M[:j, j].copy()
            u = col / d
            M[:j, :j] -= np.outer(u, col)
            M[:j, j] = u
        elif d == 0:
            if np.any(M[:j, j] != 0):
                return np.triu(M), -1.0
        else:
            # Negative or NaN pivot
            return np.triu(M), -1.0

    UD = np.triu(M)
    return UD, ud_rcond(np.diag(UD))


def ud_split(UD: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a packed factor into unit upper triangular U and diagonal d.

    Args:
        UD: Packed factor (n×n).

    Returns:
        Tuple of (U, d).
    """
    UD = np.asarray(UD, dtype=float)
    U = np.triu(UD, 1) + np.eye(UD.shape[0])
    return U, np.diag(UD).copy()


def ud_recompose(UD: np.ndarray) -> np.ndarray:
    """
    Recompose X = U·D·Uᵗ from a packed factor.

    Args:
        UD: Packed factor (n×n).

    Returns:
        Symmetric matrix X (n×n).
    """
    U, d = ud_split(UD)
    X = (U * d) @ U.T
    return 0.5 * (X + X.T)


def inverse_pd(M: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Invert a symmetric positive definite matrix through its UdU' factor.

    M⁻¹ = U⁻ᵗ D⁻¹ U⁻¹ where U⁻¹ is found by unit upper triangular solve.

    Args:
        M: Symmetric matrix (n×n).

    Returns:
        Tuple of (M_inv, rcond). M_inv is filled with NaN unless rcond > 0,
        so callers must check rcond against their conditioning limit.
    """
    M = np.asarray(M, dtype=float)
    UD, rcond = ud_factor(M)
    n = M.shape[0]
    if not rcond > 0:
        return np.full((n, n), np.nan), rcond

    U, d = ud_split(UD)
    U_inv = linalg.solve_triangular(U, np.eye(n), lower=False, unit_diagonal=True)
    M_inv = (U_inv.T / d) @ U_inv
    return 0.5 * (M_inv + M_inv.T), rcond
