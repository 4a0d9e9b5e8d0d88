"""
Predict and observe models consumed by the filter schemes.

Each model carries an explicit kind tag. A scheme declares which kinds it
can handle and the tag selects the handler; a kind with no handler falls
back along a fixed chain (a linear model is also a linearised model, a
linearised predict model is also a functional one) before the scheme gives
up with a LogicError.

Predict model capabilities:
    - FUNCTIONAL: fx(x) only (sample filters)
    - LINRZ: f(x), Jacobian Fx, noise coupling G, diagonal noise q
    - LINEAR: constant Fx with f(x) = Fx·x
    - LINEAR_INVERTIBLE: LINEAR plus the inverse transition inv_Fx

Observe model capabilities:
    - LINRZ_UNCORRELATED / LINEAR_UNCORRELATED: h(x), Hx, diagonal noise Zv
    - LINRZ_CORRELATED / LINEAR_CORRELATED: h(x), Hx, full noise Z
    - SEQUENTIAL: ho(x, o) predicting one component at a time with Hx_o
    - LIKELIHOOD: Lz(z) then L(x) for importance weighting

Sizes are fixed when a model is constructed. Models that linearise about
the current state may refresh Hx (or Fx) inside h(x) (or f(x)).
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from bayes_filter.estimators.errors import LogicError
from bayes_filter.utils.angles import angle_diff


class PredictKind(Enum):
    FUNCTIONAL = "functional"
    LINRZ = "linrz"
    LINEAR = "linear"
    LINEAR_INVERTIBLE = "linear_invertible"


class ObserveKind(Enum):
    LINRZ_UNCORRELATED = "linrz_uncorrelated"
    LINRZ_CORRELATED = "linrz_correlated"
    LINEAR_UNCORRELATED = "linear_uncorrelated"
    LINEAR_CORRELATED = "linear_correlated"
    SEQUENTIAL = "sequential"
    LIKELIHOOD = "likelihood"


PREDICT_FALLBACK: Dict[PredictKind, PredictKind] = {
    PredictKind.LINEAR_INVERTIBLE: PredictKind.LINEAR,
    PredictKind.LINEAR: PredictKind.LINRZ,
    PredictKind.LINRZ: PredictKind.FUNCTIONAL,
}

OBSERVE_FALLBACK: Dict[ObserveKind, ObserveKind] = {
    ObserveKind.LINEAR_UNCORRELATED: ObserveKind.LINRZ_UNCORRELATED,
    ObserveKind.LINEAR_CORRELATED: ObserveKind.LINRZ_CORRELATED,
}


def resolve_handler(handlers: Dict, kind: Enum, fallback: Dict, owner: str) -> Callable:
    """
    Select the handler for a model kind, walking the fallback chain.

    Args:
        handlers: Mapping of kind -> bound method declared by a scheme.
        kind: Kind tag of the model being applied.
        fallback: Fallback chain for this family of kinds.
        owner: Scheme name used in the error message.

    Returns:
        The handler callable.

    Raises:
        LogicError: If neither the kind nor any fallback has a handler.
    """
    k = kind
    while k is not None:
        if k in handlers:
            return handlers[k]
        k = fallback.get(k)
    raise LogicError(f"{owner} has no solution for {kind.value} models")


def _as_matrix(value, name: str) -> np.ndarray:
    arr = np.array(value, dtype=float)
    if arr.ndim != 2:
        raise LogicError(f"{name} must be 2D, got shape {arr.shape}")
    return arr


def _as_vector(value, name: str) -> np.ndarray:
    arr = np.array(value, dtype=float)
    if arr.ndim == 0:
        arr = arr.reshape(1)
    if arr.ndim != 1:
        raise LogicError(f"{name} must be 1D, got shape {arr.shape}")
    return arr


# ---------------------------------------------------------------------------
# Predict models
# ---------------------------------------------------------------------------

class PredictModel(ABC):
    """Base of all predict models."""

    kind: PredictKind

    @abstractmethod
    def fx(self, x: np.ndarray) -> np.ndarray:
        """State transition applied to a single state (or sample)."""


class FunctionalPredictModel(PredictModel):
    """
    Predict model defined only by a transition function.

    The function may draw process noise itself, as sample filters need.

    Example:
        >>> model = FunctionalPredictModel(lambda x: x + rng.normal(0, 0.1, x.shape))
    """

    kind = PredictKind.FUNCTIONAL

    def __init__(self, fx: Callable[[np.ndarray], np.ndarray]):
        self._fx = fx

    def fx(self, x: np.ndarray) -> np.ndarray:
        return self._fx(x)


class LinrzPredictModel(PredictModel):
    """
    Linearised predict model with additive, diagonalised process noise.

    x_k = f(x_{k-1}) + G·w,  w ~ N(0, diag(q))

    Subclasses implement f(x) and keep Fx equal to its Jacobian.

    Attributes:
        Fx: Jacobian of f (n×n)
        G: Noise coupling (n×nq)
        q: Process noise variances (nq,)
    """

    kind = PredictKind.LINRZ

    def __init__(self, x_size: int, q_size: int):
        if x_size < 1:
            raise LogicError(f"x_size must be >= 1, got {x_size}")
        if q_size < 0:
            raise LogicError(f"q_size must be >= 0, got {q_size}")
        self.Fx = np.zeros((x_size, x_size))
        self.G = np.zeros((x_size, q_size))
        self.q = np.zeros(q_size)

    @property
    def x_size(self) -> int:
        return self.Fx.shape[0]

    @property
    def q_size(self) -> int:
        return self.q.shape[0]

    @abstractmethod
    def f(self, x: np.ndarray) -> np.ndarray:
        """Predicted state f(x)."""

    def fx(self, x: np.ndarray) -> np.ndarray:
        return self.f(x)

    def check(self, x_size: int) -> None:
        """Check model sizes against a filter state size.

        Raises:
            LogicError: On any size mismatch.
        """
        nq = self.q.shape[0] if self.q.ndim == 1 else -1
        if self.Fx.shape != (x_size, x_size):
            raise LogicError(f"Fx shape {self.Fx.shape} inconsistent with state size {x_size}")
        if nq < 0 or self.G.shape != (x_size, nq):
            raise LogicError(
                f"G shape {self.G.shape} inconsistent with state size {x_size} "
                f"and q shape {self.q.shape}"
            )


class LinearPredictModel(LinrzPredictModel):
    """
    Linear predict model x_k = Fx·x_{k-1} + G·w.

    Args:
        Fx: State transition matrix (n×n).
        G: Noise coupling (n×nq).
        q: Process noise variances (nq,).

    Example:
        >>> dt = 0.1
        >>> model = LinearPredictModel(
        ...     Fx=[[1.0, dt], [0.0, 1.0]], G=[[0.0], [1.0]], q=[0.01])
    """

    kind = PredictKind.LINEAR

    def __init__(self, Fx, G, q):
        Fx = _as_matrix(Fx, "Fx")
        G = _as_matrix(G, "G")
        q = _as_vector(q, "q")
        super().__init__(Fx.shape[0], q.shape[0])
        self.Fx = Fx
        self.G = G
        self.q = q
        self.check(Fx.shape[0])

    def f(self, x: np.ndarray) -> np.ndarray:
        return self.Fx @ x


class LinearInvertiblePredictModel(LinearPredictModel):
    """
    Linear predict model that also provides its inverse transition.

    Used for backward (smoothing) or indirect prediction of a state.

    Raises:
        LogicError: If Fx is singular.
    """

    kind = PredictKind.LINEAR_INVERTIBLE

    def __init__(self, Fx, G, q):
        super().__init__(Fx, G, q)
        try:
            self.inv_Fx = np.linalg.inv(self.Fx)
        except np.linalg.LinAlgError as e:
            raise LogicError(f"Fx is not invertible: {e}") from e

    def inverse(self, x: np.ndarray) -> np.ndarray:
        """Predecessor state inv_Fx·x."""
        return self.inv_Fx @ x


# ---------------------------------------------------------------------------
# Observe models
# ---------------------------------------------------------------------------

class ObserveModel(ABC):
    """
    Base of all observe models.

    Attributes:
        angular: Indices of observation components that are angles. These
            are normalised to lie within π of their prediction.
    """

    kind: ObserveKind
    angular: Tuple[int, ...] = ()

    def normalise(self, z: np.ndarray, zp: np.ndarray) -> np.ndarray:
        """
        Map a raw observation into the residual domain of a prediction.

        The default wraps the components in ``angular`` and leaves the
        rest unchanged. Override for ambiguous-sign or other domains.

        Args:
            z: Observation (m,).
            zp: Predicted observation (m,).

        Returns:
            Normalised copy of z.
        """
        z = np.array(z, dtype=float)
        if self.angular:
            idx = list(self.angular)
            zp = np.asarray(zp, dtype=float)
            z[idx] = zp[idx] + angle_diff(z[idx], zp[idx])
        return z


class LinrzUncorrelatedObserveModel(ObserveModel):
    """
    Linearised observe model with uncorrelated additive noise.

    z = h(x) + v,  v ~ N(0, diag(Zv))

    Attributes:
        Hx: Jacobian of h (m×n)
        Zv: Observation noise variances (m,)
    """

    kind = ObserveKind.LINRZ_UNCORRELATED

    def __init__(self, x_size: int, z_size: int, angular: Sequence[int] = ()):
        if x_size < 1 or z_size < 0:
            raise LogicError(f"Invalid observe model sizes x={x_size}, z={z_size}")
        self.Hx = np.zeros((z_size, x_size))
        self.Zv = np.zeros(z_size)
        self.angular = tuple(angular)

    @abstractmethod
    def h(self, x: np.ndarray) -> np.ndarray:
        """Predicted observation h(x)."""

    def check(self, x_size: int, z_size: int) -> None:
        if self.Hx.shape != (z_size, x_size):
            raise LogicError(
                f"Hx shape {self.Hx.shape} inconsistent with z size {z_size} "
                f"and state size {x_size}"
            )
        if self.Zv.shape != (z_size,):
            raise LogicError(f"Zv shape {self.Zv.shape} inconsistent with z size {z_size}")

    def noise(self) -> np.ndarray:
        """Observation noise as a full covariance matrix."""
        return np.diag(self.Zv)


class LinrzCorrelatedObserveModel(ObserveModel):
    """
    Linearised observe model with correlated additive noise.

    z = h(x) + v,  v ~ N(0, Z)

    Attributes:
        Hx: Jacobian of h (m×n)
        Z: Observation noise covariance (m×m)
    """

    kind = ObserveKind.LINRZ_CORRELATED

    def __init__(self, x_size: int, z_size: int, angular: Sequence[int] = ()):
        if x_size < 1 or z_size < 0:
            raise LogicError(f"Invalid observe model sizes x={x_size}, z={z_size}")
        self.Hx = np.zeros((z_size, x_size))
        self.Z = np.zeros((z_size, z_size))
        self.angular = tuple(angular)

    @abstractmethod
    def h(self, x: np.ndarray) -> np.ndarray:
        """Predicted observation h(x)."""

    def check(self, x_size: int, z_size: int) -> None:
        if self.Hx.shape != (z_size, x_size):
            raise LogicError(
                f"Hx shape {self.Hx.shape} inconsistent with z size {z_size} "
                f"and state size {x_size}"
            )
        if self.Z.shape != (z_size, z_size):
            raise LogicError(f"Z shape {self.Z.shape} inconsistent with z size {z_size}")

    def noise(self) -> np.ndarray:
        return self.Z


class LinearUncorrelatedObserveModel(LinrzUncorrelatedObserveModel):
    """
    Linear observe model z = Hx·x + v with diagonal noise.

    Example:
        >>> model = LinearUncorrelatedObserveModel(Hx=[[1.0, 0.0]], Zv=[1e-6])
    """

    kind = ObserveKind.LINEAR_UNCORRELATED

    def __init__(self, Hx, Zv, angular: Sequence[int] = ()):
        Hx = _as_matrix(Hx, "Hx")
        super().__init__(Hx.shape[1], Hx.shape[0], angular)
        self.Hx = Hx
        self.Zv = _as_vector(Zv, "Zv")
        self.check(Hx.shape[1], Hx.shape[0])

    def h(self, x: np.ndarray) -> np.ndarray:
        return self.Hx @ x


class LinearCorrelatedObserveModel(LinrzCorrelatedObserveModel):
    """Linear observe model z = Hx·x + v with full noise covariance Z."""

    kind = ObserveKind.LINEAR_CORRELATED

    def __init__(self, Hx, Z, angular: Sequence[int] = ()):
        Hx = _as_matrix(Hx, "Hx")
        super().__init__(Hx.shape[1], Hx.shape[0], angular)
        self.Hx = Hx
        self.Z = _as_matrix(Z, "Z")
        self.check(Hx.shape[1], Hx.shape[0])

    def h(self, x: np.ndarray) -> np.ndarray:
        return self.Hx @ x


class SequentialObserveModel(ObserveModel):
    """
    Uncorrelated observe model evaluated one component at a time.

    ho(x, o) returns the predicted observation vector, of which only
    component o need be valid, and sets Hx_o to the Jacobian row of that
    component. This avoids computing the full Hx for every sequential
    update.

    Attributes:
        Hx_o: Jacobian row of the current component (n,)
        Zv: Observation noise variances (m,)
    """

    kind = ObserveKind.SEQUENTIAL

    def __init__(self, x_size: int, z_size: int, angular: Sequence[int] = ()):
        if x_size < 1 or z_size < 0:
            raise LogicError(f"Invalid observe model sizes x={x_size}, z={z_size}")
        self.Hx_o = np.zeros(x_size)
        self.Zv = np.zeros(z_size)
        self.angular = tuple(angular)

    @abstractmethod
    def ho(self, x: np.ndarray, o: int) -> np.ndarray:
        """Predicted observation for component o; must refresh Hx_o."""


class LikelihoodObserveModel(ObserveModel):
    """
    Observe model expressed as a likelihood function.

    Lz(z) fixes the observation, then L(x) returns p(z | x) up to a
    constant factor.
    """

    kind = ObserveKind.LIKELIHOOD

    def __init__(self):
        self.z: Optional[np.ndarray] = None

    def Lz(self, z: np.ndarray) -> None:
        self.z = np.asarray(z, dtype=float)

    @abstractmethod
    def L(self, x: np.ndarray) -> float:
        """Likelihood of the fixed observation given state x."""


class FunctionLikelihoodObserveModel(LikelihoodObserveModel):
    """
    Likelihood model wrapping a function likelihood(z, x).

    Example:
        >>> def gaussian(z, x):
        ...     return np.exp(-0.5 * ((z[0] - x[0]) / 0.5) ** 2)
        >>> model = FunctionLikelihoodObserveModel(gaussian)
    """

    def __init__(self, likelihood: Callable[[np.ndarray, np.ndarray], float]):
        super().__init__()
        self.likelihood = likelihood

    def L(self, x: np.ndarray) -> float:
        return float(self.likelihood(self.z, x))
