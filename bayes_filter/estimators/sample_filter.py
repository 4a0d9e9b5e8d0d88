"""
Sample (particle) form filters.

The state is an ensemble S of s column samples. Prediction maps each
column through the transition function independently. Observation
multiplies per-sample importance weights, and update resamples the
ensemble in proportion to those weights:

    - Propagation:  S[:, i] = f(S[:, i])
    - Weighting:    wir[i] = wir[i] · p(z | S[:, i])
    - Resampling:   draw s samples with probability wir[i] / Σ wir

After resampling the copies are roughened with min-max roughening
(Gordon, Salmond & Smith 1993) so that duplicated samples separate again.
"""

import warnings
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import numpy as np

from bayes_filter.estimators.base import BayesFilter, KalmanState, SampleState
from bayes_filter.estimators.config import NumericalLimits
from bayes_filter.estimators.errors import LogicError, NumericError
from bayes_filter.estimators.models import (
    LikelihoodObserveModel,
    ObserveKind,
    ObserveModel,
    PredictKind,
    PredictModel,
)
from bayes_filter.utils.factorisation import ud_factor, ud_split


class ImportanceResampler(ABC):
    """
    Draws a resampling of an ensemble from its importance weights.

    resample() returns, for each sample, the number of copies to keep.
    """

    @abstractmethod
    def draw(self, c: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """
        Sorted uniform draws in [0, 1) to locate in the cumulative weights.

        Args:
            c: Normalised cumulative weights (s,), c[-1] == 1.
            rng: Random generator.
        """

    def resample(
        self, w: np.ndarray, rng: np.random.Generator
    ) -> Tuple[np.ndarray, int, float]:
        """
        Resample from likelihood weights.

        Args:
            w: Importance weights (s,), not necessarily normalised.
            rng: Random generator.

        Returns:
            Tuple of (counts, unique, lcond):
                - counts: copies of each sample to keep (s,), summing to s
                - unique: number of samples kept at least once
                - lcond: smallest normalised weight

        Raises:
            NumericError: If a weight is negative or the weights sum to
                zero or are not finite.
        """
        w = np.asarray(w, dtype=float)
        n_samples = w.shape[0]
        if np.any(w < 0):
            raise NumericError("negative weight")
        total = float(np.sum(w))
        if np.isnan(total):
            raise NumericError("NaN weight sum")
        if not np.isfinite(total):
            raise NumericError("infinite weight sum")
        if total == 0:
            raise NumericError("zero weight sum")

        c = np.cumsum(w) / total
        c[-1] = 1.0
        u = self.draw(c, rng)
        idx = np.minimum(np.searchsorted(c, u, side="right"), n_samples - 1)
        counts = np.bincount(idx, minlength=n_samples)
        lcond = float(np.min(w) / total)
        return counts, int(np.count_nonzero(counts)), lcond


class StandardResampler(ImportanceResampler):
    """Multinomial resampling: s sorted independent uniform draws."""

    def draw(self, c: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        return np.sort(rng.random(c.shape[0]))


class SystematicResampler(ImportanceResampler):
    """
    Systematic resampling.

    A single random offset u0 ~ U(0, 1/s) and the evenly spaced draws
    u0 + i/s. Lower variance than multinomial resampling.
    """

    def draw(self, c: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        n_samples = c.shape[0]
        return (rng.random() + np.arange(n_samples)) / n_samples


class SampleFilter(SampleState, BayesFilter):
    """
    Filter whose state is a sample ensemble.

    predict() applies a functional model to every column. Column order is
    preserved, so an implementation may evaluate the columns in parallel.
    """

    def __init__(self, x_size: int, s_size: int, limits: Optional[NumericalLimits] = None):
        SampleState.__init__(self, x_size, s_size)
        BayesFilter.__init__(self, limits)

    def _predict_handlers(self) -> Dict:
        return {PredictKind.FUNCTIONAL: self._predict_functional}

    def predict(self, model: PredictModel) -> None:
        self._dispatch_predict(model)(model)
        return None

    def _predict_functional(self, model: PredictModel) -> None:
        n = self.x_size
        columns = []
        for i in range(self.s_size):
            xi = np.asarray(model.fx(self.S[:, i].copy()), dtype=float)
            if xi.shape != (n,):
                raise LogicError(f"fx(x) shape {xi.shape} inconsistent with state size {n}")
            columns.append(xi)
        self.S = np.column_stack(columns)


class SIRScheme(SampleFilter):
    """
    Sampling Importance Resampling filter.

    Attributes:
        wir: Importance weights of the samples (s,)
        wir_update: True when weights changed since the last resampling
        stochastic_samples: Unique samples after the last resampling
        roughening_k: Scale K of the min-max roughening, 0 disables it
        rng: Random generator used for resampling and roughening

    Example:
        >>> flt = SIRScheme(2, 500, rng=np.random.default_rng(0))
        >>> flt.init_sample(S0)
        >>> flt.predict(FunctionalPredictModel(fx))
        >>> flt.observe(FunctionLikelihoodObserveModel(likelihood), z)
        >>> lcond = flt.update_resample(SystematicResampler())
    """

    def __init__(
        self,
        x_size: int,
        s_size: int,
        rng: Optional[np.random.Generator] = None,
        roughening_k: float = 1.0,
        limits: Optional[NumericalLimits] = None,
    ):
        super().__init__(x_size, s_size, limits)
        if roughening_k < 0:
            raise LogicError(f"roughening_k must be >= 0, got {roughening_k}")
        self.rng = rng if rng is not None else np.random.default_rng()
        self.roughening_k = roughening_k
        self.wir = np.ones(s_size)
        self.wir_update = False
        self.stochastic_samples = s_size

    def init_S(self) -> None:
        self.wir = np.ones(self.s_size)
        self.wir_update = False
        self.stochastic_samples = self.s_size

    def _observe_handlers(self) -> Dict:
        return {ObserveKind.LIKELIHOOD: self._observe_likelihood}

    def observe(self, model: ObserveModel, z: np.ndarray) -> None:
        self._dispatch_observe(model)(model, np.asarray(z, dtype=float))
        return None

    def _observe_likelihood(self, model: LikelihoodObserveModel, z: np.ndarray) -> None:
        model.Lz(z)
        likelihood = np.array([model.L(self.S[:, i]) for i in range(self.s_size)], dtype=float)
        self.wir = self.wir * likelihood
        self.wir_update = True

    def update(self) -> None:
        """Standard resampling update."""
        self.update_resample(StandardResampler())

    def update_resample(self, resampler: Optional[ImportanceResampler] = None) -> float:
        """
        Resample the ensemble if the weights changed, then roughen.

        Args:
            resampler: Resampling algorithm (StandardResampler by default).

        Returns:
            lcond, the smallest normalised weight. 1.0 if no resampling
            was needed. Multiply by s_size for the likelihood conditioning.
        """
        if not self.wir_update:
            return 1.0
        resampler = resampler if resampler is not None else StandardResampler()
        counts, unique, lcond = resampler.resample(self.wir, self.rng)
        self.apply_resamples(counts, unique)
        return lcond

    def apply_resamples(self, counts: np.ndarray, unique: int) -> None:
        """
        Copy resamples, roughen and reset the weights.

        Args:
            counts: Copies of each sample (s,) from a resampler.
            unique: Number of samples kept at least once.
        """
        self.copy_resamples(counts)
        self.stochastic_samples = unique
        if unique == 1:
            warnings.warn("Resampling collapsed to a single unique sample", RuntimeWarning)
        self.roughen()
        self.wir = np.ones(self.s_size)
        self.wir_update = False

    def copy_resamples(self, counts: np.ndarray) -> None:
        """Replace S by counts[i] copies of each column i, in column order."""
        self.S = np.repeat(self.S, counts, axis=1)

    def roughen(self) -> None:
        """
        Min-max roughening.

        Each state component is jittered with standard deviation
        K · (max - min) · s^(-1/n) computed over the ensemble.
        """
        if self.roughening_k == 0:
            return
        n, s = self.S.shape
        spread = np.max(self.S, axis=1) - np.min(self.S, axis=1)
        sigma = self.roughening_k * spread * s ** (-1.0 / n)
        self.S = self.S + sigma[:, np.newaxis] * self.rng.standard_normal((n, s))


class SIRKalmanScheme(SIRScheme, KalmanState):
    """
    SIR filter that also maintains the sample mean x and covariance X.

    init_kalman(x, X) draws the ensemble from N(x, X); update() resamples
    and then recomputes the statistics.
    """

    def __init__(
        self,
        x_size: int,
        s_size: int,
        rng: Optional[np.random.Generator] = None,
        roughening_k: float = 1.0,
        limits: Optional[NumericalLimits] = None,
    ):
        SIRScheme.__init__(self, x_size, s_size, rng, roughening_k, limits)
        KalmanState.__init__(self, x_size)

    def init(self) -> None:
        """Sample S from N(x, X) using the UdU' factor of X."""
        UD, rcond = ud_factor(self.X)
        self.limits.check_psd(rcond, "Initial X not PSD")
        U, d = ud_split(UD)
        noise = self.rng.standard_normal(self.S.shape)
        self.S = self.x[:, np.newaxis] + (U * np.sqrt(d)) @ noise
        self.init_S()

    def update(self) -> None:
        super().update()
        self.update_statistics()

    def update_statistics(self) -> None:
        """Sample mean and covariance of the ensemble into x and X."""
        self.x = np.mean(self.S, axis=1)
        dS = self.S - self.x[:, np.newaxis]
        self.X = (dS @ dS.T) / self.s_size
