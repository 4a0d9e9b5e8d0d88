"""
Covariance Intersection filter.

Combines the predicted estimate (information Ai = X⁻¹) with the observation
(information Bi = Hxᵗ Z⁻¹ Hx) without assuming their cross-correlation
is known:

    C = ω·Ai + (1 - ω)·Bi
    X = C⁻¹
    x = x + (1 - ω)·X·Hxᵗ·Z⁻¹·s

For any ω in [0, 1] the combined covariance is consistent whatever the
true correlation between the two sources. The choice of ω only decides how
tight it is.

References:
    S. J. Julier, J. K. Uhlmann, "A Non-divergent Estimation Algorithm in
    the Presence of Unknown Correlations", Proc. ACC 1997.
"""

from typing import Callable, Dict, Optional, Tuple, Union

import numpy as np
from scipy.optimize import minimize_scalar

from bayes_filter.estimators.base import ExtendedKalmanFilter
from bayes_filter.estimators.config import NumericalLimits
from bayes_filter.estimators.covariance_filter import predict_covariance
from bayes_filter.estimators.errors import LogicError
from bayes_filter.estimators.models import LinrzPredictModel, ObserveModel, PredictKind
from bayes_filter.utils.factorisation import inverse_pd, ud_factor

OmegaStrategy = Callable[[np.ndarray, np.ndarray, np.ndarray], float]

DEFAULT_OMEGA = 0.5


def _check_omega(omega: float) -> float:
    omega = float(omega)
    if not 0.0 <= omega <= 1.0:
        raise LogicError(f"omega must be in [0, 1], got {omega}")
    return omega


def trace_optimal_omega(Ai: np.ndarray, Bi: np.ndarray) -> float:
    """
    Find the ω minimising trace((ω·Ai + (1 - ω)·Bi)⁻¹).

    Combinations that are not positive definite are given an infinite
    cost, so a rank deficient Bi pushes ω away from 0.

    Args:
        Ai: Information of the first estimate (n×n).
        Bi: Information of the second estimate (n×n).

    Returns:
        Optimal ω in [0, 1].
    """

    def cost(omega: float) -> float:
        X, rcond = inverse_pd(omega * Ai + (1.0 - omega) * Bi)
        if not rcond > 0:
            return np.inf
        return float(np.trace(X))

    result = minimize_scalar(cost, bounds=(0.0, 1.0), method="bounded")
    return float(np.clip(result.x, 0.0, 1.0))


def covariance_intersection(
    xa: np.ndarray,
    Xa: np.ndarray,
    xb: np.ndarray,
    Xb: np.ndarray,
    omega: Optional[float] = None,
    limits: Optional[NumericalLimits] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fuse two full estimates of the same state with unknown correlation.

    Args:
        xa, Xa: First estimate mean (n,) and covariance (n×n).
        xb, Xb: Second estimate mean (n,) and covariance (n×n).
        omega: Weight of the first estimate in [0, 1]. If None the
            trace-minimising weight is used.
        limits: Numerical limits for the PD checks.

    Returns:
        Tuple of (fused mean, fused covariance).

    Raises:
        LogicError: If shapes differ or omega is outside [0, 1].
        NumericError: If an input or the combination is not PD.

    Example:
        >>> x, X = covariance_intersection(xa, np.eye(2), xb, 2 * np.eye(2), omega=0.5)
    """
    limits = limits if limits is not None else NumericalLimits()
    xa, xb = np.asarray(xa, dtype=float), np.asarray(xb, dtype=float)
    Xa, Xb = np.asarray(Xa, dtype=float), np.asarray(Xb, dtype=float)
    n = xa.shape[0]
    if xb.shape != (n,) or Xa.shape != (n, n) or Xb.shape != (n, n):
        raise LogicError("Estimates to intersect must have the same state size")

    Ai, rcond = inverse_pd(Xa)
    limits.check_pd(rcond, "Xa not PD in covariance intersection")
    Bi, rcond = inverse_pd(Xb)
    limits.check_pd(rcond, "Xb not PD in covariance intersection")

    if omega is None:
        omega = trace_optimal_omega(Ai, Bi)
    omega = _check_omega(omega)

    X, rcond = inverse_pd(omega * Ai + (1.0 - omega) * Bi)
    limits.check_pd(rcond, "Combined information not PD in covariance intersection")
    x = X @ (omega * Ai @ xa + (1.0 - omega) * Bi @ xb)
    return x, X


class CIScheme(ExtendedKalmanFilter):
    """
    Covariance Intersection filter with the predict/observe contract.

    The norm ω is 0.5 unless a fixed value or a strategy
    ``omega(Ai, Bi, A) -> float`` is supplied, or a subclass overrides
    omega(). The value is checked to lie in [0, 1] on every observe.

    Attributes:
        S: Innovation covariance of the last observe (m×m)
        SI: Inverse innovation covariance of the last observe (m×m)
        last_omega: ω used by the last observe
    """

    def __init__(
        self,
        x_size: int,
        omega: Union[None, float, OmegaStrategy] = None,
        limits: Optional[NumericalLimits] = None,
    ):
        super().__init__(x_size, limits)
        if omega is not None and not callable(omega):
            omega = _check_omega(omega)
        self._omega = omega
        self.S = np.zeros((0, 0))
        self.SI = np.zeros((0, 0))
        self.last_omega = DEFAULT_OMEGA

    def omega(self, Ai: np.ndarray, Bi: np.ndarray, A: np.ndarray) -> float:
        """
        Norm of the combination.

        Args:
            Ai: Predicted information X⁻¹.
            Bi: Observation information Hxᵗ Z⁻¹ Hx.
            A: Predicted covariance X.
        """
        if self._omega is None:
            return DEFAULT_OMEGA
        if callable(self._omega):
            return self._omega(Ai, Bi, A)
        return self._omega

    def init(self) -> None:
        _, rcond = ud_factor(self.X)
        self.limits.check_psd(rcond, "Initial X not PSD")

    def update(self) -> None:
        """x and X are always current."""

    def _predict_handlers(self) -> Dict:
        return {PredictKind.LINRZ: self._predict_linrz}

    def _predict_linrz(self, model: LinrzPredictModel) -> float:
        model.check(self.x_size)
        x_pred = np.asarray(model.f(self.x), dtype=float)
        if x_pred.shape != self.x.shape:
            raise LogicError(f"f(x) shape {x_pred.shape} inconsistent with state size {self.x_size}")
        X_pred = predict_covariance(model, self.X)
        _, rcond = ud_factor(X_pred)
        self.limits.check_psd(rcond, "X not PSD in predict")
        self.x, self.X = x_pred, X_pred
        return rcond

    def observe_innovation(self, model: ObserveModel, Z: np.ndarray, s: np.ndarray) -> float:
        Hx = model.Hx
        Ai, rcond = inverse_pd(self.X)
        self.limits.check_pd(rcond, "X not PD in observe")
        ZI, rcond = inverse_pd(Z)
        self.limits.check_pd(rcond, "Z not PD in observe")

        HxTZI = Hx.T @ ZI
        Bi = HxTZI @ Hx
        omega = _check_omega(self.omega(Ai, Bi, self.X))

        X, rcond = inverse_pd(omega * Ai + (1.0 - omega) * Bi)
        self.limits.check_pd(rcond, "(X-1 + Hxt.Z-1.Hx)-1 not PD in observe")

        S = Hx @ self.X @ Hx.T + Z
        SI, _ = inverse_pd(S)

        self.x = self.x + (1.0 - omega) * (X @ HxTZI @ s)
        self.X = X
        self.S, self.SI = S, SI
        self.last_omega = omega
        return rcond


class TraceCIScheme(CIScheme):
    """CI filter choosing ω to minimise the trace of the combined covariance."""

    def __init__(self, x_size: int, limits: Optional[NumericalLimits] = None):
        super().__init__(x_size, limits=limits)

    def omega(self, Ai: np.ndarray, Bi: np.ndarray, A: np.ndarray) -> float:
        return trace_optimal_omega(Ai, Bi)
