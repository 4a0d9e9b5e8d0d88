"""Type definitions and feature models for the SLAM filters.

Key types:
    - FeatureSlot: location of a feature inside a joint Kalman state
    - FeatureParticles: per-particle mean and variance of a scalar feature
    - SLAMStatistics: joint mean and covariance of location and map
    - FeatureObserveModel: observation of one feature from the location
    - FeatureInverseModel: new feature state from location and observation
    - SLAM: abstract interface shared by the SLAM filters

The joint state is always laid out as [location; feature states].
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from bayes_filter.estimators.errors import LogicError
from bayes_filter.estimators.models import LinrzUncorrelatedObserveModel


@dataclass
class FeatureSlot:
    """
    Sub-range of the joint state holding one feature.

    Attributes:
        start: Index of the first feature state in the joint state.
        size: Number of feature states.
    """

    start: int
    size: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise LogicError(f"start must be >= 0, got {self.start}")
        if self.size < 1:
            raise LogicError(f"feature size must be >= 1, got {self.size}")

    @property
    def index(self) -> slice:
        return slice(self.start, self.start + self.size)


@dataclass
class FeatureParticles:
    """
    Scalar feature conditioned on each location particle.

    Attributes:
        x: Feature mean for each particle (s,).
        X: Feature variance for each particle (s,).
    """

    x: np.ndarray
    X: np.ndarray

    def __post_init__(self) -> None:
        self.x = np.asarray(self.x, dtype=float)
        self.X = np.asarray(self.X, dtype=float)
        if self.x.ndim != 1 or self.x.shape != self.X.shape:
            raise LogicError(
                f"x shape {self.x.shape} and X shape {self.X.shape} must be equal 1D"
            )

    def resample(self, counts: np.ndarray) -> None:
        """Keep counts[i] copies of the entry of particle i."""
        self.x = np.repeat(self.x, counts)
        self.X = np.repeat(self.X, counts)


@dataclass
class SLAMStatistics:
    """
    Joint estimate of location and mapped features.

    Attributes:
        x: Mean of [location; features].
        X: Covariance of [location; features].
        n_features: Number of mapped features included.
    """

    x: np.ndarray
    X: np.ndarray
    n_features: int = 0
    features: Sequence[int] = field(default_factory=tuple)


class FeatureObserveModel(LinrzUncorrelatedObserveModel):
    """
    Observation of a single feature.

    h and Hx are over the sub-state [location; feature], so Hx has shape
    (z_size, location_size + feature_size).
    """

    def __init__(
        self,
        location_size: int,
        feature_size: int,
        z_size: int,
        angular: Sequence[int] = (),
    ):
        if location_size < 1 or feature_size < 1:
            raise LogicError(
                f"Invalid feature model sizes location={location_size}, feature={feature_size}"
            )
        super().__init__(location_size + feature_size, z_size, angular)
        self.location_size = location_size
        self.feature_size = feature_size


class LinearFeatureObserveModel(FeatureObserveModel):
    """
    Linear feature observation z = Hx·[location; feature] + v.

    Example:
        >>> # Range along one axis to a 1D landmark: z = m - x
        >>> model = LinearFeatureObserveModel([[-1.0, 1.0]], [0.01], location_size=1)
    """

    def __init__(self, Hx, Zv, location_size: int, angular: Sequence[int] = ()):
        Hx = np.array(Hx, dtype=float)
        if Hx.ndim != 2:
            raise LogicError(f"Hx must be 2D, got shape {Hx.shape}")
        super().__init__(location_size, Hx.shape[1] - location_size, Hx.shape[0], angular)
        self.Hx = Hx
        self.Zv = np.atleast_1d(np.array(Zv, dtype=float))
        self.check(Hx.shape[1], Hx.shape[0])

    def h(self, x: np.ndarray) -> np.ndarray:
        return self.Hx @ x


class FeatureInverseModel(ABC):
    """
    Inverse observation model initialising a new feature.

    h(sz) maps [location; z] to the feature state. Hx is its Jacobian with
    shape (feature_size, location_size + z_size) and Zv the observation
    noise variances.
    """

    def __init__(self, location_size: int, z_size: int, feature_size: int):
        if location_size < 1 or z_size < 1 or feature_size < 1:
            raise LogicError(
                f"Invalid inverse model sizes location={location_size}, "
                f"z={z_size}, feature={feature_size}"
            )
        self.location_size = location_size
        self.Hx = np.zeros((feature_size, location_size + z_size))
        self.Zv = np.zeros(z_size)

    @property
    def z_size(self) -> int:
        return self.Zv.shape[0]

    @property
    def feature_size(self) -> int:
        return self.Hx.shape[0]

    @abstractmethod
    def h(self, sz: np.ndarray) -> np.ndarray:
        """Feature state from the stacked [location; z]."""

    def check(self, location_size: int, z_size: int) -> None:
        if self.location_size != location_size:
            raise LogicError(
                f"Inverse model location size {self.location_size} "
                f"inconsistent with {location_size}"
            )
        if self.Hx.shape[1] != location_size + z_size or self.Zv.shape != (z_size,):
            raise LogicError(
                f"Hx shape {self.Hx.shape} / Zv shape {self.Zv.shape} inconsistent "
                f"with location size {location_size} and z size {z_size}"
            )


class LinearFeatureInverseModel(FeatureInverseModel):
    """Linear inverse model t = Hx·[location; z]."""

    def __init__(self, Hx, Zv, location_size: int):
        Hx = np.array(Hx, dtype=float)
        Zv = np.atleast_1d(np.array(Zv, dtype=float))
        if Hx.ndim != 2:
            raise LogicError(f"Hx must be 2D, got shape {Hx.shape}")
        super().__init__(location_size, Zv.shape[0], Hx.shape[0])
        self.Hx = Hx
        self.Zv = Zv
        self.check(location_size, Zv.shape[0])

    def h(self, sz: np.ndarray) -> np.ndarray:
        return self.Hx @ sz


class SLAM(ABC):
    """
    Interface of the SLAM filters.

    Features are identified by integer ids chosen by the caller.
    """

    @abstractmethod
    def observe(self, feature: int, model: FeatureObserveModel, z: np.ndarray):
        """Fuse an observation of an already mapped feature."""

    @abstractmethod
    def observe_new(self, feature: int, model: FeatureInverseModel, z: np.ndarray) -> None:
        """Add a new feature initialised from an observation."""

    @abstractmethod
    def observe_new_estimate(self, feature: int, t: np.ndarray, T: np.ndarray) -> None:
        """Add a new feature with a known estimate t and covariance T."""

    @abstractmethod
    def forget(self, feature: int, must_exist: bool = True) -> None:
        """Remove a feature from the map."""

    @abstractmethod
    def update(self) -> None:
        """Bring the filter statistics up to date."""
