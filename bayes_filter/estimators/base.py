"""
Base classes for the filter schemes.

This module defines the state representations a filter may hold and the
abstract predict/observe/update contract every scheme implements,
independent of its internal representation.

State forms:
    - ExpectedState: mean x
    - KalmanState: mean x and covariance X
    - InformationState: information vector y = Y·x and information Y = X⁻¹
    - SampleState: ensemble S of column samples
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from bayes_filter.estimators.config import NumericalLimits
from bayes_filter.estimators.errors import LogicError
from bayes_filter.estimators.models import (
    OBSERVE_FALLBACK,
    PREDICT_FALLBACK,
    LinrzCorrelatedObserveModel,
    LinrzUncorrelatedObserveModel,
    ObserveKind,
    ObserveModel,
    PredictModel,
    resolve_handler,
)


class BayesFilter(ABC):
    """
    Abstract filter contract.

    predict and observe return a reciprocal condition number diagnostic
    where the scheme can provide one (None otherwise). Numeric failures
    raise NumericError, contract violations raise LogicError.
    """

    def __init__(self, limits: Optional[NumericalLimits] = None):
        self.limits = limits if limits is not None else NumericalLimits()

    @abstractmethod
    def predict(self, model: PredictModel) -> Optional[float]:
        """
        Advance the state one step.

        Args:
            model: Predict model of a kind supported by the scheme.
        """

    @abstractmethod
    def observe(self, model: ObserveModel, z: np.ndarray) -> Optional[float]:
        """
        Fuse an observation into the state.

        Args:
            model: Observe model of a kind supported by the scheme.
            z: Observation vector (m,).

        Returns:
            Reciprocal condition number of the observed state, or None for
            schemes without one. Schemes that observe z one component at a
            time return the minimum over the components, which is inf for
            an empty z.
        """

    @abstractmethod
    def update(self) -> None:
        """Materialise the canonical state from the internal representation."""

    def _predict_handlers(self) -> Dict:
        return {}

    def _observe_handlers(self) -> Dict:
        return {}

    def _dispatch_predict(self, model: PredictModel) -> Callable:
        return resolve_handler(
            self._predict_handlers(), model.kind, PREDICT_FALLBACK, type(self).__name__
        )

    def _dispatch_observe(self, model: ObserveModel) -> Callable:
        return resolve_handler(
            self._observe_handlers(), model.kind, OBSERVE_FALLBACK, type(self).__name__
        )


class ExpectedState:
    """State represented by its expected value x."""

    def __init__(self, x_size: int):
        if x_size < 1:
            raise LogicError("Zero state filter constructed")
        self.x = np.zeros(x_size)

    @property
    def x_size(self) -> int:
        return self.x.shape[0]


class KalmanState(ExpectedState):
    """State represented by mean x and covariance X."""

    def __init__(self, x_size: int):
        super().__init__(x_size)
        self.X = np.zeros((x_size, x_size))

    def init_kalman(self, x: np.ndarray, X: np.ndarray) -> None:
        """
        Initialise from a state and state covariance.

        Args:
            x: State mean (n,).
            X: State covariance (n×n), must be positive semi-definite.

        Raises:
            LogicError: If the sizes do not match the filter.
            NumericError: If the scheme cannot represent X.
        """
        x = np.array(x, dtype=float)
        X = np.array(X, dtype=float)
        n = self.x_size
        if x.shape != (n,):
            raise LogicError(f"x shape {x.shape} inconsistent with state size {n}")
        if X.shape != (n, n):
            raise LogicError(f"X shape {X.shape} inconsistent with state size {n}")
        self.x = x
        self.X = X
        self.init()

    @abstractmethod
    def init(self) -> None:
        """Establish the internal representation from x, X."""

    def get_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get current state estimate and covariance.

        Only valid after update() when the scheme keeps another
        representation internally.

        Returns:
            Tuple of (state_vector, covariance_matrix).
        """
        return self.x.copy(), self.X.copy()


class InformationState:
    """State represented by information vector y and information matrix Y."""

    def __init__(self, x_size: int):
        self.y = np.zeros(x_size)
        self.Y = np.zeros((x_size, x_size))

    def init_information(self, y: np.ndarray, Y: np.ndarray) -> None:
        """
        Initialise from an information state and information matrix.

        Args:
            y: Information vector (n,).
            Y: Information matrix (n×n).
        """
        y = np.array(y, dtype=float)
        Y = np.array(Y, dtype=float)
        n = self.y.shape[0]
        if y.shape != (n,) or Y.shape != (n, n):
            raise LogicError(
                f"y shape {y.shape} / Y shape {Y.shape} inconsistent with state size {n}"
            )
        self.y = y
        self.Y = Y
        self.init_yY()

    @abstractmethod
    def init_yY(self) -> None:
        """Establish the internal representation from y, Y."""


class SampleState:
    """
    State represented by an ensemble of samples.

    Attributes:
        S: Samples as columns (n×s).
    """

    def __init__(self, x_size: int, s_size: int):
        if x_size < 1:
            raise LogicError("Zero state filter constructed")
        if s_size < 1:
            raise LogicError("Zero sample filter constructed")
        self.S = np.zeros((x_size, s_size))

    @property
    def x_size(self) -> int:
        return self.S.shape[0]

    @property
    def s_size(self) -> int:
        return self.S.shape[1]

    def init_sample(self, S: np.ndarray) -> None:
        """
        Initialise from a sampling.

        Args:
            S: Samples as columns (n×s), same shape as the filter's ensemble.
        """
        S = np.array(S, dtype=float)
        if S.shape != self.S.shape:
            raise LogicError(f"S shape {S.shape} inconsistent with ensemble {self.S.shape}")
        self.S = S
        self.init_S()

    def init_S(self) -> None:
        """Hook run after the samples are set."""

    def unique_samples(self) -> int:
        """
        Count the number of distinct samples in S.

        Columns are sorted lexicographically and equal neighbours counted
        once. A low count indicates particle depletion.

        Returns:
            Number of unique columns (1..s).
        """
        return int(np.unique(self.S.T, axis=0).shape[0])


class KalmanFilter(KalmanState, BayesFilter):
    """
    Kalman-type filter: a Kalman state with the predict/observe contract.

    init() and update() are provided by each scheme. update() must be
    callable at any time without changing the filtering result.
    """

    def __init__(self, x_size: int, limits: Optional[NumericalLimits] = None):
        KalmanState.__init__(self, x_size)
        BayesFilter.__init__(self, limits)

    def predict(self, model: PredictModel) -> Optional[float]:
        return self._dispatch_predict(model)(model)

    def observe(self, model: ObserveModel, z: np.ndarray) -> Optional[float]:
        z = np.asarray(z, dtype=float)
        if z.ndim != 1:
            raise LogicError(f"z must be 1D, got shape {z.shape}")
        return self._dispatch_observe(model)(model, z)


class ExtendedKalmanFilter(KalmanFilter):
    """
    Kalman filter whose observe is expressed through the innovation.

    The innovation s = normalise(z, h(x)) - h(x) is computed from the
    current state and passed to the scheme's observe_innovation hooks.
    """

    def _observe_handlers(self) -> Dict:
        return {
            ObserveKind.LINRZ_UNCORRELATED: self._observe_uncorrelated,
            ObserveKind.LINRZ_CORRELATED: self._observe_correlated,
        }

    def innovation(self, model: ObserveModel, z: np.ndarray) -> np.ndarray:
        """
        Compute the normalised innovation of an observation.

        Args:
            model: Linearised observe model.
            z: Observation (m,).

        Returns:
            Innovation s (m,).
        """
        self.update()
        zp = np.asarray(model.h(self.x), dtype=float)
        if zp.shape != z.shape:
            raise LogicError(f"z shape {z.shape} inconsistent with h(x) shape {zp.shape}")
        return model.normalise(z, zp) - zp

    def _observe_uncorrelated(self, model: LinrzUncorrelatedObserveModel, z: np.ndarray) -> float:
        s = self.innovation(model, z)
        model.check(self.x_size, z.shape[0])
        return self.observe_innovation(model, model.noise(), s)

    def _observe_correlated(self, model: LinrzCorrelatedObserveModel, z: np.ndarray) -> float:
        s = self.innovation(model, z)
        model.check(self.x_size, z.shape[0])
        return self.observe_innovation(model, model.noise(), s)

    @abstractmethod
    def observe_innovation(self, model: ObserveModel, Z: np.ndarray, s: np.ndarray) -> float:
        """
        Fuse an innovation.

        Args:
            model: Observe model providing Hx at the current state.
            Z: Observation noise covariance (m×m).
            s: Innovation (m,).

        Returns:
            Reciprocal condition number of the innovation covariance.
        """
