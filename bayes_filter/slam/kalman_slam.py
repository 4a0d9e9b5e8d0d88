"""
Full correlation Kalman filter SLAM.

The location and every mapped feature are held in one joint state
[location; features] by a Kalman filter supplied by a generator, so any
Kalman scheme can back the map. Each feature occupies its own sub-range of
the joint state.

The joint state grows when a feature is added and never shrinks: forget()
zeroes a feature's mean, variance and correlations and retires its slot.
A retired slot of the same size is reused by the next new feature before
the state is grown again.

References:
    M.W.M.G. Dissanayake, P. Newman, S. Clark, H.F. Durrant-Whyte,
    M. Csorba, "A Solution to the Simultaneous Localization and Map
    Building (SLAM) Problem", IEEE T. Robotics and Automation 17(3), 2001.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from bayes_filter.estimators.base import KalmanFilter
from bayes_filter.estimators.errors import LogicError
from bayes_filter.estimators.models import LinrzPredictModel, LinrzUncorrelatedObserveModel
from bayes_filter.slam.types import (
    SLAM,
    FeatureInverseModel,
    FeatureObserveModel,
    FeatureSlot,
    SLAMStatistics,
)


class KalmanFilterGenerator(ABC):
    """Supplies and disposes the Kalman filters backing a KalmanSLAM."""

    @abstractmethod
    def generate(self, full_size: int) -> KalmanFilter:
        """Create a filter for a joint state of full_size."""

    @abstractmethod
    def dispose(self, flt: KalmanFilter) -> None:
        """Release a filter that is no longer used."""


class SchemeGenerator(KalmanFilterGenerator):
    """
    Generator wrapping a factory function.

    Example:
        >>> generator = SchemeGenerator(lambda n: UDScheme(n, q_max=2))
        >>> slam = KalmanSLAM(generator)
    """

    def __init__(self, factory: Callable[[int], KalmanFilter]):
        self.factory = factory
        self.generated = 0
        self.disposed = 0

    def generate(self, full_size: int) -> KalmanFilter:
        self.generated += 1
        return self.factory(full_size)

    def dispose(self, flt: KalmanFilter) -> None:
        self.disposed += 1


class _JointPredictModel(LinrzPredictModel):
    """Location predict model lifted to the joint state.

    The map is stationary: identity on the feature states and noise coupled
    into the location rows only.
    """

    def __init__(self, location_model: LinrzPredictModel, full_size: int):
        nL = location_model.x_size
        super().__init__(full_size, location_model.q_size)
        self.location_model = location_model
        self.Fx = np.eye(full_size)
        self.Fx[:nL, :nL] = location_model.Fx
        self.G[:nL, :] = location_model.G
        self.q = location_model.q.copy()

    def f(self, x: np.ndarray) -> np.ndarray:
        nL = self.location_model.x_size
        xp = np.array(x, dtype=float)
        xp[:nL] = self.location_model.f(x[:nL])
        self.Fx[:nL, :nL] = self.location_model.Fx
        return xp


class _JointObserveModel(LinrzUncorrelatedObserveModel):
    """Feature observe model lifted to the joint state."""

    def __init__(self, feature_model: FeatureObserveModel, slot: FeatureSlot, full_size: int):
        super().__init__(full_size, feature_model.Hx.shape[0], feature_model.angular)
        self.feature_model = feature_model
        self.slot = slot
        self.Zv = feature_model.Zv
        self._scatter_Hx()

    def _scatter_Hx(self) -> None:
        nL = self.feature_model.location_size
        self.Hx[:, :nL] = self.feature_model.Hx[:, :nL]
        self.Hx[:, self.slot.index] = self.feature_model.Hx[:, nL:]

    def _substate(self, x: np.ndarray) -> np.ndarray:
        nL = self.feature_model.location_size
        return np.concatenate([x[:nL], x[self.slot.index]])

    def h(self, x: np.ndarray) -> np.ndarray:
        zp = self.feature_model.h(self._substate(x))
        self._scatter_Hx()
        return zp

    def normalise(self, z: np.ndarray, zp: np.ndarray) -> np.ndarray:
        return self.feature_model.normalise(z, zp)


class KalmanSLAM(SLAM):
    """
    SLAM with a single fully correlated Kalman filter.

    Attributes:
        generator: Source of the joint state filters.
        full: Current joint state filter (None before init_kalman).

    Example:
        >>> slam = KalmanSLAM(SchemeGenerator(lambda n: CovarianceScheme(n)))
        >>> slam.init_kalman(np.array([0.0]), np.array([[1.0]]))
        >>> slam.observe_new(0, LinearFeatureInverseModel([[1.0, 1.0]], [0.1], 1), np.array([5.0]))
        >>> slam.observe(0, LinearFeatureObserveModel([[-1.0, 1.0]], [0.1], 1), np.array([5.1]))
    """

    def __init__(self, generator: KalmanFilterGenerator):
        self.generator = generator
        self.full: Optional[KalmanFilter] = None
        self.location_size = 0
        self._slots: Dict[int, FeatureSlot] = {}
        self._retired: List[FeatureSlot] = []

    @property
    def full_size(self) -> int:
        return 0 if self.full is None else self.full.x_size

    @property
    def features(self) -> List[int]:
        """Ids of the mapped features."""
        return sorted(self._slots)

    def _require_full(self) -> KalmanFilter:
        if self.full is None:
            raise LogicError("KalmanSLAM used before init_kalman")
        return self.full

    def _slot(self, feature: int) -> FeatureSlot:
        slot = self._slots.get(feature)
        if slot is None:
            raise LogicError(f"Feature {feature} is not mapped")
        return slot

    def init_kalman(self, x: np.ndarray, X: np.ndarray) -> None:
        """
        Initialise the location state; the map starts empty.

        Args:
            x: Location mean (nL,).
            X: Location covariance (nL×nL).
        """
        x = np.asarray(x, dtype=float)
        if self.full is not None:
            self.generator.dispose(self.full)
        self.location_size = x.shape[0]
        self.full = self.generator.generate(self.location_size)
        self.full.init_kalman(x, X)
        self._slots.clear()
        self._retired.clear()

    def predict(self, model: LinrzPredictModel) -> Optional[float]:
        """
        Predict the location; features are stationary.

        Args:
            model: Predict model over the location state only.
        """
        full = self._require_full()
        model.check(self.location_size)
        return full.predict(_JointPredictModel(model, full.x_size))

    def observe(self, feature: int, model: FeatureObserveModel, z: np.ndarray) -> Optional[float]:
        """
        Observe a mapped feature.

        Raises:
            LogicError: If the feature is not mapped or sizes disagree.
        """
        full = self._require_full()
        slot = self._slot(feature)
        if model.location_size != self.location_size or model.feature_size != slot.size:
            raise LogicError(
                f"Observe model sizes ({model.location_size}, {model.feature_size}) "
                f"inconsistent with location {self.location_size} and feature {slot.size}"
            )
        return full.observe(_JointObserveModel(model, slot, full.x_size), z)

    def observe_new(self, feature: int, model: FeatureInverseModel, z: np.ndarray) -> None:
        """
        Add a feature initialised through an inverse observation model.

        With t = h([location; z]), Ha and Hb the location and z blocks of
        Hx, the new feature has variance Ha·XLL·Haᵗ + Hb·diag(Zv)·Hbᵗ and
        cross-covariance Ha·X[location, :] with the existing state.
        """
        full = self._require_full()
        if feature in self._slots:
            raise LogicError(f"Feature {feature} is already mapped")
        z = np.atleast_1d(np.asarray(z, dtype=float))
        nL = self.location_size
        model.check(nL, z.shape[0])

        full.update()
        x, X = full.x, full.X
        t = np.atleast_1d(np.asarray(model.h(np.concatenate([x[:nL], z])), dtype=float))
        if t.shape != (model.feature_size,):
            raise LogicError(f"h(sz) shape {t.shape} inconsistent with feature size {model.feature_size}")
        Ha = model.Hx[:, :nL]
        Hb = model.Hx[:, nL:]
        T = Ha @ X[:nL, :nL] @ Ha.T + (Hb * model.Zv) @ Hb.T
        cross = Ha @ X[:nL, :]
        self._insert(feature, t, T, cross)

    def observe_new_estimate(self, feature: int, t: np.ndarray, T: np.ndarray) -> None:
        """
        Add a feature with a known estimate, uncorrelated with the state.

        Args:
            feature: Id of the new feature.
            t: Feature mean (m,).
            T: Feature covariance (m×m).
        """
        full = self._require_full()
        if feature in self._slots:
            raise LogicError(f"Feature {feature} is already mapped")
        t = np.atleast_1d(np.asarray(t, dtype=float))
        T = np.atleast_2d(np.asarray(T, dtype=float))
        m = t.shape[0]
        if t.ndim != 1 or T.shape != (m, m):
            raise LogicError(f"t shape {t.shape} inconsistent with T shape {T.shape}")
        full.update()
        self._insert(feature, t, T, np.zeros((m, full.x_size)))

    def _insert(self, feature: int, t: np.ndarray, T: np.ndarray, cross: np.ndarray) -> None:
        full = self._require_full()
        m = t.shape[0]
        x, X = full.x.copy(), full.X.copy()

        slot = next((s for s in self._retired if s.size == m), None)
        if slot is not None:
            self._retired.remove(slot)
        else:
            n = x.shape[0]
            slot = FeatureSlot(start=n, size=m)
            x = np.concatenate([x, np.zeros(m)])
            X_grown = np.zeros((n + m, n + m))
            X_grown[:n, :n] = X
            X = X_grown
            cross = np.hstack([cross, np.zeros((m, m))])

        idx = slot.index
        x[idx] = t
        X[idx, :] = cross
        X[:, idx] = cross.T
        X[idx, idx] = 0.5 * (T + T.T)
        self._reinit(x, X)
        self._slots[feature] = slot

    def _reinit(self, x: np.ndarray, X: np.ndarray) -> None:
        full = self._require_full()
        if x.shape[0] != full.x_size:
            replacement = self.generator.generate(x.shape[0])
            replacement.init_kalman(x, X)
            self.generator.dispose(full)
            self.full = replacement
        else:
            full.init_kalman(x, X)

    def forget(self, feature: int, must_exist: bool = True) -> None:
        """
        Remove a feature from the map.

        The slot's mean, variance and correlations are zeroed. The joint
        state keeps its size.

        Raises:
            LogicError: If must_exist and the feature is not mapped.
        """
        full = self._require_full()
        slot = self._slots.get(feature)
        if slot is None:
            if must_exist:
                raise LogicError(f"Feature {feature} is not mapped")
            return

        full.update()
        x, X = full.x.copy(), full.X.copy()
        idx = slot.index
        x[idx] = 0.0
        X[idx, :] = 0.0
        X[:, idx] = 0.0
        full.init_kalman(x, X)
        del self._slots[feature]
        self._retired.append(slot)

    def decorrelate(self, d: float) -> None:
        """
        Scale every off-diagonal covariance term by d.

        An approximation that trades consistency for weaker coupling
        between the location and the map.

        Args:
            d: Factor in [0, 1]; 1 leaves X unchanged, 0 diagonalises it.
        """
        if not 0.0 <= d <= 1.0:
            raise LogicError(f"decorrelate factor must be in [0, 1], got {d}")
        full = self._require_full()
        full.update()
        X = full.X * d
        np.fill_diagonal(X, np.diag(full.X))
        full.init_kalman(full.x.copy(), X)

    def update(self) -> None:
        self._require_full().update()

    def statistics(self) -> SLAMStatistics:
        """Joint mean and covariance of [location; feature slots]."""
        full = self._require_full()
        full.update()
        return SLAMStatistics(
            x=full.x.copy(), X=full.X.copy(), n_features=len(self._slots), features=self.features
        )

    def feature_state(self, feature: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Mean and covariance of one mapped feature.

        Returns:
            Tuple of (mean, covariance) of the feature sub-state.
        """
        full = self._require_full()
        idx = self._slot(feature).index
        full.update()
        return full.x[idx].copy(), full.X[idx, idx].copy()
