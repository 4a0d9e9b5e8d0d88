"""
FastSLAM.

The location is represented by the particles of an SIR filter. Each
feature is a scalar whose mean and variance are held per particle, so
every particle carries its own map conditioned on its location
hypothesis. Observing a feature is a scalar Kalman update per particle,
and the innovation likelihood of each particle multiplies its importance
weight.

Restricted to single state features observed with single element
observations.

References:
    M. Montemerlo, S. Thrun, D. Koller, B. Wegbreit, "FastSLAM: A Factored
    Solution to the Simultaneous Localization and Mapping Problem",
    Proc. AAAI National Conference on Artificial Intelligence, 2002.
"""

from typing import Dict, List, Optional

import numpy as np

from bayes_filter.estimators.errors import LogicError, NumericError
from bayes_filter.estimators.models import PredictModel
from bayes_filter.estimators.sample_filter import (
    ImportanceResampler,
    SIRKalmanScheme,
    SIRScheme,
    StandardResampler,
)
from bayes_filter.slam.types import (
    SLAM,
    FeatureInverseModel,
    FeatureObserveModel,
    FeatureParticles,
    SLAMStatistics,
)


class FastSLAM(SLAM):
    """
    FastSLAM filter over a particle location filter.

    Attributes:
        L: Location filter, also used for resampling and roughening.
        M: Per-particle feature estimates keyed by feature id.
        wir: Likelihood weights of the map augmented particles (s,).
        wir_update: True when wir changed since the last resampling.
    """

    def __init__(self, L: SIRScheme):
        self.L = L
        self.M: Dict[int, FeatureParticles] = {}
        self.wir = np.ones(L.s_size)
        self.wir_update = False

    @property
    def features(self) -> List[int]:
        return sorted(self.M)

    def _check_scalar(self, z: np.ndarray) -> np.ndarray:
        z = np.atleast_1d(np.asarray(z, dtype=float))
        if z.shape != (1,):
            raise LogicError(f"FastSLAM supports single element observations, got shape {z.shape}")
        return z

    def predict(self, model: PredictModel) -> None:
        """Predict the location particles; features are stationary."""
        self.L.predict(model)

    def observe(self, feature: int, model: FeatureObserveModel, z: np.ndarray) -> None:
        """
        Observe a mapped feature from every particle.

        Each particle's feature estimate takes a scalar Kalman update and
        its weight is multiplied by exp(-s²/2S) / √S.

        Raises:
            LogicError: If the feature is not mapped or is not scalar.
            NumericError: If an innovation variance is not positive.
        """
        z = self._check_scalar(z)
        fmap = self.M.get(feature)
        if fmap is None:
            raise LogicError(f"Feature {feature} is not mapped")
        nL = self.L.x_size
        if model.location_size != nL or model.feature_size != 1:
            raise LogicError(
                f"Observe model sizes ({model.location_size}, {model.feature_size}) "
                f"inconsistent with location {nL} and scalar feature"
            )
        model.check(nL + 1, 1)
        Zv = float(model.Zv[0])

        x = fmap.x.copy()
        X = fmap.X.copy()
        likelihood = np.empty(self.L.s_size)
        for i in range(self.L.s_size):
            x2 = np.append(self.L.S[:, i], x[i])
            zp = np.asarray(model.h(x2), dtype=float)
            Hf = model.Hx[0, nL]
            S = Hf * X[i] * Hf + Zv
            if not S > 0:
                raise NumericError("S not PD in observe")
            s = model.normalise(z, zp)[0] - zp[0]
            W = X[i] * Hf / S
            x[i] += W * s
            X[i] -= W * S * W
            likelihood[i] = np.exp(-0.5 * s * s / S) / np.sqrt(S)

        fmap.x, fmap.X = x, X
        self.wir = self.wir * likelihood
        self.wir_update = True

    def observe_new(self, feature: int, model: FeatureInverseModel, z: np.ndarray) -> None:
        """
        Add a feature initialised from each particle's location.

        The variance is Hz·diag(Zv)·Hzᵗ with Hz the observation block of
        the inverse model Jacobian.
        """
        z = self._check_scalar(z)
        if feature in self.M:
            raise LogicError(f"Feature {feature} is already mapped")
        nL = self.L.x_size
        model.check(nL, 1)
        if model.feature_size != 1:
            raise LogicError(f"FastSLAM supports scalar features, got size {model.feature_size}")

        x = np.empty(self.L.s_size)
        X = np.empty(self.L.s_size)
        for i in range(self.L.s_size):
            t = np.atleast_1d(model.h(np.append(self.L.S[:, i], z)))
            Hz = model.Hx[0, nL:]
            x[i] = t[0]
            X[i] = float((Hz * model.Zv) @ Hz)
        self.M[feature] = FeatureParticles(x, X)

    def observe_new_estimate(self, feature: int, t: np.ndarray, T: np.ndarray) -> None:
        """Add a feature with the same scalar estimate in every particle."""
        if feature in self.M:
            raise LogicError(f"Feature {feature} is already mapped")
        t = np.atleast_1d(np.asarray(t, dtype=float)).ravel()
        T = np.atleast_1d(np.asarray(T, dtype=float)).ravel()
        if t.shape != (1,) or T.shape != (1,):
            raise LogicError(f"FastSLAM supports scalar features, got t {t.shape}, T {T.shape}")
        s = self.L.s_size
        self.M[feature] = FeatureParticles(np.full(s, t[0]), np.full(s, T[0]))

    def forget(self, feature: int, must_exist: bool = True) -> None:
        """Remove a feature and its per-particle estimates."""
        if feature not in self.M:
            if must_exist:
                raise LogicError(f"Feature {feature} is not mapped")
            return
        del self.M[feature]

    def update(self) -> None:
        """Standard resampling update."""
        self.update_resample(StandardResampler())

    def update_resample(self, resampler: Optional[ImportanceResampler] = None) -> float:
        """
        Resample particles with their feature estimates, then roughen.

        The combined weight of a particle is its map likelihood wir times
        the location filter's own weight.

        Returns:
            lcond, the smallest normalised weight; 1.0 if no resampling
            was needed.
        """
        if not (self.wir_update or self.L.wir_update):
            return 1.0
        resampler = resampler if resampler is not None else StandardResampler()
        counts, unique, lcond = resampler.resample(self.wir * self.L.wir, self.L.rng)
        for fmap in self.M.values():
            fmap.resample(counts)
        self.L.apply_resamples(counts, unique)
        self.wir = np.ones(self.L.s_size)
        self.wir_update = False
        return lcond

    def feature_unique_samples(self, feature: int) -> int:
        """Number of distinct (mean, variance) pairs of a feature."""
        fmap = self.M.get(feature)
        if fmap is None:
            raise LogicError(f"Feature {feature} is not mapped")
        return int(np.unique(np.column_stack([fmap.x, fmap.X]), axis=0).shape[0])


class FastSLAMKStatistics(FastSLAM):
    """FastSLAM with Kalman statistics of the joint particle estimate."""

    def __init__(self, L: SIRKalmanScheme):
        if not isinstance(L, SIRKalmanScheme):
            raise LogicError("FastSLAMKStatistics requires an SIRKalmanScheme")
        super().__init__(L)

    def statistics(self) -> SLAMStatistics:
        """
        Sample mean and covariance of [location; features].

        A feature's variance combines the mean of its per-particle
        variances with the spread of its per-particle means. Cross terms
        are sample covariances over the particles.
        """
        self.L.update_statistics()
        nL = self.L.x_size
        s = self.L.s_size
        features = self.features
        nM = len(features)

        means = np.array([self.M[f].x for f in features]).reshape(nM, s)
        variances = np.array([self.M[f].X for f in features]).reshape(nM, s)
        mM = np.mean(means, axis=1)

        x = np.concatenate([self.L.x, mM])
        X = np.zeros((nL + nM, nL + nM))
        X[:nL, :nL] = self.L.X

        dL = self.L.S - self.L.x[:, np.newaxis]
        dM = means - mM[:, np.newaxis]
        X[:nL, nL:] = dL @ dM.T / s
        X[nL:, :nL] = X[:nL, nL:].T
        X[nL:, nL:] = dM @ dM.T / s + np.diag(np.mean(variances, axis=1))
        return SLAMStatistics(x=x, X=X, n_features=nM, features=features)
