"""
Information form Extended Kalman Filter.

The state is held as the information vector y = Y·x and information matrix
Y = X⁻¹. Observations are additive in this form:

    Y = Y + Hxᵗ Z⁻¹ Hx
    y = y + Hxᵗ Z⁻¹ (s + Hx·x)

Prediction is done in covariance form and converted back, which requires
X and Y to be positive definite (check_pd) rather than semi-definite.
"""

from typing import Dict, Optional

import numpy as np

from bayes_filter.estimators.base import ExtendedKalmanFilter, InformationState
from bayes_filter.estimators.config import NumericalLimits
from bayes_filter.estimators.covariance_filter import predict_covariance
from bayes_filter.estimators.errors import LogicError
from bayes_filter.estimators.models import LinrzPredictModel, ObserveModel, PredictKind
from bayes_filter.utils.factorisation import inverse_pd


class InformationScheme(ExtendedKalmanFilter, InformationState):
    """
    Extended information filter.

    x and X are valid after update(); y and Y are the filter state.
    """

    def __init__(self, x_size: int, limits: Optional[NumericalLimits] = None):
        ExtendedKalmanFilter.__init__(self, x_size, limits)
        InformationState.__init__(self, x_size)

    def init(self) -> None:
        """Information from the covariance form x, X."""
        Y, rcond = inverse_pd(self.X)
        self.limits.check_pd(rcond, "Initial X not PD")
        self.Y = Y
        self.y = Y @ self.x

    def init_yY(self) -> None:
        """Covariance form from the information form y, Y."""
        self.update()

    def update(self) -> None:
        X, rcond = inverse_pd(self.Y)
        self.limits.check_pd(rcond, "Y not PD")
        self.X = X
        self.x = X @ self.y

    def _predict_handlers(self) -> Dict:
        return {PredictKind.LINRZ: self._predict_linrz}

    def _predict_linrz(self, model: LinrzPredictModel) -> float:
        model.check(self.x_size)
        self.update()
        x_pred = np.asarray(model.f(self.x), dtype=float)
        if x_pred.shape != self.x.shape:
            raise LogicError(f"f(x) shape {x_pred.shape} inconsistent with state size {self.x_size}")
        X_pred = predict_covariance(model, self.X)
        Y, rcond = inverse_pd(X_pred)
        self.limits.check_pd(rcond, "X not PD in predict")

        self.x, self.X = x_pred, X_pred
        self.Y = Y
        self.y = Y @ x_pred
        return rcond

    def observe_innovation(self, model: ObserveModel, Z: np.ndarray, s: np.ndarray) -> float:
        Hx = model.Hx
        ZI, rcond = inverse_pd(Z)
        self.limits.check_pd(rcond, "Z not PD in observe")

        HxTZI = Hx.T @ ZI
        Y = self.Y + HxTZI @ Hx
        y = self.y + HxTZI @ (s + Hx @ self.x)
        X, rcond = inverse_pd(Y)
        self.limits.check_pd(rcond, "Y not PD in observe")

        self.Y = 0.5 * (Y + Y.T)
        self.y = y
        self.X = X
        self.x = X @ y
        return rcond
