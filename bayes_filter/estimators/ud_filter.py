"""
UdU' factorised (square-root) Kalman filter.

The covariance is never held directly. It is kept as a U·D·Uᵗ factor and
both prediction and observation operate on the factor:

    - Prediction: Modified Weighted Gram-Schmidt (MWG-S), Bierman p.132
    - Observation: Bierman sequential scalar update, Bierman p.100

Uncorrelated observations are fused one scalar component at a time in the
order they appear in z. Correlated linear observations are first whitened
by the UdU' factor of their noise covariance.

The factor is stored in an augmented matrix UD of shape n × (n + q_max):
the left n×n block holds the packed factor and the right block is scratch
for the process noise coupling during prediction. q_max is the largest
process noise dimension the filter is provisioned for.

References:
    G.J. Bierman, "Factorization Methods for Discrete Sequential
    Estimation", Academic Press 1977.
"""

from typing import Dict, Optional, Tuple

import numpy as np
from scipy import linalg

from bayes_filter.estimators.base import KalmanFilter
from bayes_filter.estimators.config import NumericalLimits
from bayes_filter.estimators.errors import LogicError, NumericError
from bayes_filter.estimators.models import (
    LinearCorrelatedObserveModel,
    LinrzCorrelatedObserveModel,
    LinrzPredictModel,
    LinrzUncorrelatedObserveModel,
    ObserveKind,
    PredictKind,
    SequentialObserveModel,
)
from bayes_filter.utils.factorisation import ud_factor, ud_rcond, ud_recompose


class UDWorkspace:
    """
    Scratch vectors owned by one UDScheme.

    Sized for n + q_max at construction. Never shared between filters.
    """

    def __init__(self, x_size: int, q_max: int):
        N = x_size + q_max
        self.d = np.zeros(N)
        self.v = np.zeros(N)
        self.dv = np.zeros(N)


class UDScheme(KalmanFilter):
    """
    Square-root Kalman filter on the UdU' factor of the covariance.

    x and the factor UD are the filter state. X is only valid after
    update().

    observe applies z component by component and returns the smallest
    rcond seen. An empty z leaves the state unchanged and returns inf.

    Attributes:
        UD: Augmented factor n × (n + q_max)
        q_max: Provisioned process noise dimension
        s: Innovations of the last observe (m,)
        Sd: Innovation variances of the last observe (m,)

    Example:
        >>> flt = UDScheme(2, q_max=1)
        >>> flt.init_kalman(np.array([900.0, 1.5]), np.diag([1e6, 100.0]))
        >>> flt.predict(LinearPredictModel(Fx, G, q))
        >>> flt.observe(LinearUncorrelatedObserveModel([[1.0, 0.0]], [1e-6]), z)
        >>> flt.update()
        >>> x, X = flt.get_state()
    """

    def __init__(
        self,
        x_size: int,
        q_max: int,
        z_initial_size: int = 0,
        limits: Optional[NumericalLimits] = None,
    ):
        """
        Initialise filter and set the size of things we know about.

        Args:
            x_size: State dimension n.
            q_max: Largest process noise dimension of any predict model.
            z_initial_size: Observation size to preallocate for.
            limits: Numerical conditioning limits.
        """
        super().__init__(x_size, limits)
        if q_max < 0:
            raise LogicError(f"q_max must be >= 0, got {q_max}")
        self.q_max = q_max
        self.UD = np.zeros((x_size, x_size + q_max))
        self._work = UDWorkspace(x_size, q_max)
        self.s = np.zeros(0)
        self.Sd = np.zeros(0)
        self.observe_size(z_initial_size)

    def init(self) -> None:
        """
        Factorise X into the left partition of UD.

        Raises:
            NumericError: If X is not positive semi-definite.
        """
        n = self.x_size
        UD, rcond = ud_factor(self.X)
        self.limits.check_psd(rcond, "Initial X not PSD")
        self.UD[:, :n] = UD

    def update(self) -> None:
        """Recompose X from the factor. X is PSD iff UD is."""
        self.X = ud_recompose(self.UD[:, :self.x_size])

    def observe_size(self, z_size: int) -> None:
        """Resize observation buffers only when the size changes."""
        if z_size != self.s.shape[0]:
            self.s = np.zeros(z_size)
            self.Sd = np.zeros(z_size)

    def _predict_handlers(self) -> Dict:
        return {PredictKind.LINRZ: self._predict_linrz}

    def _observe_handlers(self) -> Dict:
        return {
            ObserveKind.LINRZ_UNCORRELATED: self._observe_uncorrelated,
            ObserveKind.LINRZ_CORRELATED: self._observe_linrz_correlated,
            ObserveKind.LINEAR_CORRELATED: self._observe_linear_correlated,
            ObserveKind.SEQUENTIAL: self._observe_sequential,
        }

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def _predict_linrz(self, model: LinrzPredictModel) -> float:
        """
        Predict using a diagonalised noise q and its coupling G.

        q may have lower order than x; G·diag(q)·Gᵗ then has order of x.
        The state is left unchanged if the prediction fails.
        """
        model.check(self.x_size)
        x_pred = np.asarray(model.f(self.x), dtype=float)
        if x_pred.shape != self.x.shape:
            raise LogicError(f"f(x) shape {x_pred.shape} inconsistent with state size {self.x_size}")

        rcond = self.predict_gq(model.Fx, model.G, model.q)
        self.limits.check_psd(rcond, "X not PSD in predict")
        self.x = x_pred
        return rcond

    def predict_gq(
        self,
        Fx: np.ndarray,
        G: np.ndarray,
        q: np.ndarray,
        UD: Optional[np.ndarray] = None,
    ) -> float:
        """
        MWG-S prediction of the factor.

        Computes the factor of Fx·X·Fxᵗ + G·diag(q)·Gᵗ. The rows of
        [Fx·U | G] are orthogonalised with weights [D | q], working from the
        last row to the first, so Fx·U is formed column by column without a
        dense product.

        Args:
            Fx: State transition Jacobian (n×n).
            G: Noise coupling (n×nq).
            q: Noise variances (nq,), nq <= q_max.
            UD: Factor to predict in place. Defaults to the filter's own.

        Returns:
            Reciprocal condition number of the predicted D; 0 if semi-definite
            and -1 if negative definite, in which case UD is left unmodified.

        Raises:
            LogicError: If nq exceeds q_max.
        """
        target = self.UD if UD is None else UD
        q = np.asarray(q, dtype=float)
        if q.shape[0] > self.q_max:
            raise LogicError("Predict model q larger than preallocated space")

        work = target.copy()
        rcond = self._mwgs(work, np.asarray(Fx, dtype=float), np.asarray(G, dtype=float), q)
        if rcond >= 0:
            target[:] = work
        return rcond

    def _mwgs(self, UD: np.ndarray, Fx: np.ndarray, G: np.ndarray, q: np.ndarray) -> float:
        n = self.x_size
        nq = q.shape[0]
        N = n + nq

        d = self._work.d[:N]
        v = self._work.v[:N]
        dv = self._work.dv[:N]

        # Augment d with q, UD with G
        d[n:N] = q
        UD[:, n:N] = G

        # U = Fx·U, retrieving the diagonals into d as we go
        for j in range(n - 1, 0, -1):
            d[:j + 1] = UD[:j + 1, j]
            UD[:, j] = Fx[:, j] + Fx[:, :j] @ d[:j]
        d[0] = UD[0, 0]
        UD[:, 0] = Fx[:, 0]

        # MWG-S on the rows, results held transposed in the lower triangle
        for j in range(n - 1, -1, -1):
            v[:] = UD[j, :N]
            dv[:] = d * v
            e = float(v @ dv)
            if e > 0:
                UD[j, j] = e
                if j > 0:
                    u = (UD[:j, :N] @ dv) / e
                    UD[j, :j] = u
                    UD[:j, :N] -= np.outer(u, v)
            elif e == 0:
                # Semi-definite only if every weighted product is zero too
                UD[j, j] = 0.0
                if j > 0:
                    if np.any(UD[:j, :N] * dv != 0):
                        return -1.0
                    UD[j, :j] = 0.0
            else:
                # Negative or NaN
                return -1.0

        # Transpose back to upper triangular and zero the lower triangle
        block = UD[:, :n]
        lower = np.tril(block, -1)
        block[:] = lower.T + np.diag(np.diag(block))

        return ud_rcond(np.diag(block))

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe_ud(
        self, h: np.ndarray, r: float, UD: Optional[np.ndarray] = None
    ) -> Tuple[float, np.ndarray, float]:
        """
        Bierman sequential update of the factor for one scalar observation.

        Args:
            h: Observation coefficients (n,).
            r: Observation variance.
            UD: Factor to update in place. Defaults to the filter's own.

        Returns:
            Tuple of (rcond, gain, alpha):
                - rcond: Reciprocal condition number of the updated D, -1 if
                  the innovation variance became singular (UD then left
                  unmodified)
                - gain: Kalman gain (n,)
                - alpha: Innovation variance
        """
        target = self.UD if UD is None else UD
        n = self.x_size
        h = np.asarray(h, dtype=float)
        if h.shape != (n,):
            raise LogicError(f"h shape {h.shape} inconsistent with state size {n}")

        UD = target[:, :n].copy()
        rcond, gain, alpha = self._bierman(UD, h, float(r))
        if rcond >= 0:
            target[:, :n] = UD
        return rcond, gain, alpha

    @staticmethod
    def _bierman(UD: np.ndarray, h: np.ndarray, r: float) -> Tuple[float, np.ndarray, float]:
        n = UD.shape[0]

        # a = Uᵗh, b = D·Uᵗh (unweighted gain)
        U_strict = np.triu(UD[:, :n], 1)
        a = h + U_strict.T @ h
        b = np.diag(UD[:, :n]) * a

        alpha = r + b[0] * a[0]
        if not alpha > 0:
            return -1.0, np.zeros(n), alpha
        gamma = 1.0 / alpha
        UD[0, 0] *= r * gamma

        for j in range(1, n):
            alpha_jm1 = alpha
            alpha += b[j] * a[j]
            lamda = -a[j] * gamma
            if not alpha > 0:
                return -1.0, np.zeros(n), alpha
            gamma = 1.0 / alpha
            UD[j, j] *= alpha_jm1 * gamma
            u_jm1 = UD[:j, j].copy()
            UD[:j, j] = u_jm1 + lamda * b[:j]
            b[:j] += b[j] * u_jm1

        gain = b * gamma
        return ud_rcond(np.diag(UD[:, :n])), gain, alpha

    def _observe_uncorrelated(self, model: LinrzUncorrelatedObserveModel, z: np.ndarray) -> float:
        """
        Uncorrelated observations applied sequentially in the order of z.

        Each component updates x, so h(x) is re-evaluated for every
        component. observe with a SequentialObserveModel avoids
        computing the whole prediction each time.
        """
        z_size = z.shape[0]
        model.check(self.x_size, z_size)
        self.observe_size(z_size)

        x = self.x.copy()
        UD = self.UD.copy()
        s = np.zeros(z_size)
        Sd = np.zeros(z_size)
        rcondmin = np.inf
        for o in range(z_size):
            zp = np.asarray(model.h(x), dtype=float)
            znorm = model.normalise(z, zp)
            if model.Zv[o] < 0:
                raise NumericError("Zv not PSD in observe")
            rcond, w, S = self.observe_ud(model.Hx[o], model.Zv[o], UD)
            self.limits.check_psd(rcond, "S not PD in observe")
            rcondmin = min(rcondmin, rcond)
            s[o] = znorm[o] - zp[o]
            x += w * s[o]
            Sd[o] = S

        self._commit(x, UD, s, Sd)
        return rcondmin

    def _observe_linrz_correlated(self, model: LinrzCorrelatedObserveModel, z: np.ndarray) -> float:
        raise LogicError("UDScheme has no solution for correlated noise with a linearised model")

    def _observe_linear_correlated(self, model: LinearCorrelatedObserveModel, z: np.ndarray) -> float:
        """
        Linear observe with correlated noise Z.

        Z = Gz·Dz·Gzᵗ is factorised and Hx, z and the prediction are
        whitened by solving with the unit upper triangular Gz. The
        decorrelated components, with variances Dz, are then applied
        sequentially.
        """
        z_size = z.shape[0]
        model.check(self.x_size, z_size)
        self.observe_size(z_size)

        Gz, rcond = ud_factor(model.Z)
        self.limits.check_psd(rcond, "Z not PSD in observe")
        Dz = np.diag(Gz).copy()
        Gu = np.triu(Gz, 1) + np.eye(z_size)

        def decorrelate(b: np.ndarray) -> np.ndarray:
            return linalg.solve_triangular(Gu, b, lower=False, unit_diagonal=True)

        x = self.x.copy()
        UD = self.UD.copy()
        zp = np.asarray(model.h(x), dtype=float)
        znorm = decorrelate(model.normalise(z, zp))
        GIHx = decorrelate(model.Hx)

        s = np.zeros(z_size)
        Sd = np.zeros(z_size)
        rcondmin = np.inf
        for o in range(z_size):
            zp_decol = decorrelate(np.asarray(model.h(x), dtype=float))
            rcond, w, S = self.observe_ud(GIHx[o], Dz[o], UD)
            self.limits.check_psd(rcond, "S not PD in observe")
            rcondmin = min(rcondmin, rcond)
            s[o] = znorm[o] - zp_decol[o]
            x += w * s[o]
            Sd[o] = S

        self._commit(x, UD, s, Sd)
        return rcondmin

    def _observe_sequential(self, model: SequentialObserveModel, z: np.ndarray) -> float:
        """Uncorrelated observe computing one component of the model at a time."""
        z_size = z.shape[0]
        if model.Zv.shape != (z_size,) or model.Hx_o.shape != (self.x_size,):
            raise LogicError("Sequential observe model sizes inconsistent with z and state")
        self.observe_size(z_size)

        x = self.x.copy()
        UD = self.UD.copy()
        s = np.zeros(z_size)
        Sd = np.zeros(z_size)
        rcondmin = np.inf
        for o in range(z_size):
            zp = np.asarray(model.ho(x, o), dtype=float)
            znorm = model.normalise(z, zp)
            if model.Zv[o] < 0:
                raise NumericError("Zv not PSD in observe")
            rcond, w, S = self.observe_ud(model.Hx_o, model.Zv[o], UD)
            self.limits.check_psd(rcond, "S not PD in observe")
            rcondmin = min(rcondmin, rcond)
            s[o] = znorm[o] - zp[o]
            x += w * s[o]
            Sd[o] = S

        self._commit(x, UD, s, Sd)
        return rcondmin

    def _commit(self, x: np.ndarray, UD: np.ndarray, s: np.ndarray, Sd: np.ndarray) -> None:
        self.x = x
        self.UD = UD
        self.s[:] = s
        self.Sd[:] = Sd
