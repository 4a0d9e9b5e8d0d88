"""
Covariance form Extended Kalman Filter.

Holds x and X directly:
    - Prediction: x = f(x), X = Fx X Fxᵗ + G diag(q) Gᵗ
    - Observation: S = Hx X Hxᵗ + Z, K = X Hxᵗ S⁻¹, x = x + K s
      with the Joseph form X = (I - K Hx) X (I - K Hx)ᵗ + K Z Kᵗ

The simplest scheme of the package; the square-root and information
schemes are checked against it.
"""

from typing import Dict, Optional

import numpy as np

from bayes_filter.estimators.base import ExtendedKalmanFilter
from bayes_filter.estimators.config import NumericalLimits
from bayes_filter.estimators.errors import LogicError
from bayes_filter.estimators.models import LinrzPredictModel, ObserveModel, PredictKind
from bayes_filter.utils.factorisation import inverse_pd, ud_factor


def predict_covariance(model: LinrzPredictModel, X: np.ndarray) -> np.ndarray:
    """
    Propagate a covariance through a linearised predict model.

    Args:
        model: Predict model providing Fx, G, q.
        X: Prior covariance (n×n).

    Returns:
        Predicted covariance Fx X Fxᵗ + G diag(q) Gᵗ (n×n).
    """
    Fx = model.Fx
    Xp = Fx @ X @ Fx.T + (model.G * model.q) @ model.G.T
    return 0.5 * (Xp + Xp.T)


class CovarianceScheme(ExtendedKalmanFilter):
    """
    Extended Kalman filter in covariance form.

    Attributes:
        S: Innovation covariance of the last observe (m×m)
        SI: Inverse innovation covariance of the last observe (m×m)
        W: Kalman gain of the last observe (n×m)

    Example:
        >>> flt = CovarianceScheme(2)
        >>> flt.init_kalman(np.array([0.0, 1.0]), np.eye(2))
        >>> flt.predict(LinearPredictModel(F, G, q))
        >>> flt.observe(LinearUncorrelatedObserveModel(H, Zv), z)
    """

    def __init__(self, x_size: int, limits: Optional[NumericalLimits] = None):
        super().__init__(x_size, limits)
        self.S = np.zeros((0, 0))
        self.SI = np.zeros((0, 0))
        self.W = np.zeros((x_size, 0))

    def init(self) -> None:
        """Check the initial covariance is PSD."""
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
        self.x = x_pred
        self.X = X_pred
        return rcond

    def observe_innovation(self, model: ObserveModel, Z: np.ndarray, s: np.ndarray) -> float:
        Hx = model.Hx
        S = Hx @ self.X @ Hx.T + Z
        SI, rcond = inverse_pd(S)
        self.limits.check_pd(rcond, "S not PD in observe")

        W = self.X @ Hx.T @ SI
        # Joseph form keeps X symmetric and PSD
        I_KH = np.eye(self.x_size) - W @ Hx
        X = I_KH @ self.X @ I_KH.T + W @ Z @ W.T

        self.x = self.x + W @ s
        self.X = 0.5 * (X + X.T)
        self.S, self.SI, self.W = S, SI, W
        return rcond
