"""
Unit tests for the sample (particle) filters.

Tests cover:
    - Functional prediction of every column
    - Standard and systematic importance resampling
    - Weight validation in the resampler
    - SIR update, collapse warning and roughening
    - Statistics of SIRKalmanScheme
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from bayes_filter.estimators import (
    FunctionalPredictModel,
    FunctionLikelihoodObserveModel,
    LogicError,
    NumericError,
    SIRKalmanScheme,
    SIRScheme,
    StandardResampler,
    SystematicResampler,
)


def gaussian_likelihood(variance):
    def likelihood(z, x):
        return float(np.exp(-0.5 * (z[0] - x[0]) ** 2 / variance))

    return likelihood


class TestSampleState(unittest.TestCase):

    def test_zero_sizes(self):
        with self.assertRaises(LogicError):
            SIRScheme(0, 10)
        with self.assertRaises(LogicError):
            SIRScheme(2, 0)

    def test_init_sample_shape(self):
        flt = SIRScheme(2, 3)
        with self.assertRaises(LogicError):
            flt.init_sample(np.zeros((2, 4)))

    def test_unique_samples(self):
        flt = SIRScheme(2, 4)
        flt.init_sample([[1.0, 1.0, 2.0, 1.0], [0.0, 0.0, 0.0, 5.0]])
        self.assertEqual(flt.unique_samples(), 3)

    def test_predict_preserves_column_order(self):
        flt = SIRScheme(2, 3)
        S0 = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
        flt.init_sample(S0)

        flt.predict(FunctionalPredictModel(lambda x: np.array([x[1], x[0] * 10.0])))

        assert_allclose(flt.S, [[4.0, 5.0, 6.0], [10.0, 20.0, 30.0]])

    def test_predict_wrong_size(self):
        flt = SIRScheme(2, 3)
        with self.assertRaises(LogicError):
            flt.predict(FunctionalPredictModel(lambda x: x[:1]))


class TestResamplers(unittest.TestCase):

    def setUp(self):
        self.rng = np.random.default_rng(3)

    def test_single_weight_selected(self):
        counts, unique, lcond = StandardResampler().resample(np.array([0.0, 2.0, 0.0, 0.0]), self.rng)

        assert_allclose(counts, [0, 4, 0, 0])
        self.assertEqual(unique, 1)
        self.assertEqual(lcond, 0.0)

    def test_systematic_uniform_weights(self):
        for _ in range(10):
            counts, unique, lcond = SystematicResampler().resample(np.ones(8), self.rng)
            assert_allclose(counts, np.ones(8))
            self.assertEqual(unique, 8)
            self.assertAlmostEqual(lcond, 1.0 / 8.0)

    def test_counts_sum_to_sample_size(self):
        w = self.rng.random(50)
        for resampler in (StandardResampler(), SystematicResampler()):
            counts, unique, _ = resampler.resample(w, self.rng)
            self.assertEqual(counts.sum(), 50)
            self.assertEqual(unique, np.count_nonzero(counts))

    def test_proportional_to_weight(self):
        w = np.array([1.0, 3.0])
        counts, _, _ = SystematicResampler().resample(np.repeat(w, 500), self.rng)
        self.assertAlmostEqual(counts[500:].sum() / 1000.0, 0.75, delta=0.01)

    def test_invalid_weights(self):
        resampler = StandardResampler()
        for w in ([1.0, -0.5], [1.0, np.nan], [1.0, np.inf], [0.0, 0.0]):
            with self.assertRaises(NumericError):
                resampler.resample(np.array(w), self.rng)


class TestSIRScheme(unittest.TestCase):

    def test_no_observation_no_resample(self):
        flt = SIRScheme(1, 5, rng=np.random.default_rng(0))
        S0 = np.arange(5.0)[np.newaxis, :]
        flt.init_sample(S0)

        lcond = flt.update_resample()

        self.assertEqual(lcond, 1.0)
        assert_allclose(flt.S, S0)

    def test_observe_weights(self):
        flt = SIRScheme(1, 3, rng=np.random.default_rng(0))
        flt.init_sample([[0.0, 1.0, 2.0]])

        flt.observe(FunctionLikelihoodObserveModel(gaussian_likelihood(1.0)), np.array([0.0]))

        self.assertTrue(flt.wir_update)
        assert_allclose(flt.wir, np.exp(-0.5 * np.array([0.0, 1.0, 4.0])))

    def test_collapse_warns(self):
        flt = SIRScheme(1, 4, rng=np.random.default_rng(0), roughening_k=0.0)
        flt.init_sample([[0.0, 1.0, 2.0, 3.0]])

        flt.observe(FunctionLikelihoodObserveModel(lambda z, x: float(x[0] == 2.0)), np.array([0.0]))
        with self.assertWarns(RuntimeWarning):
            lcond = flt.update_resample(SystematicResampler())

        self.assertEqual(lcond, 0.0)
        self.assertEqual(flt.stochastic_samples, 1)
        assert_allclose(flt.S, 2.0)
        assert_allclose(flt.wir, 1.0)
        self.assertFalse(flt.wir_update)

    def test_roughening_separates_copies(self):
        flt = SIRScheme(1, 4, rng=np.random.default_rng(0), roughening_k=0.5)
        flt.init_sample([[0.0, 1.0, 2.0, 3.0]])

        flt.observe(
            FunctionLikelihoodObserveModel(lambda z, x: float(x[0] >= 2.0)), np.array([0.0])
        )
        flt.update_resample(SystematicResampler())

        self.assertEqual(flt.stochastic_samples, 2)
        self.assertEqual(flt.unique_samples(), 4)

    def test_negative_roughening(self):
        with self.assertRaises(LogicError):
            SIRScheme(1, 4, roughening_k=-1.0)

    def test_posterior_converges(self):
        """Prior N(0, 1) and observation z = 1 with variance 1 give N(0.5, 0.5)."""
        flt = SIRKalmanScheme(1, 4000, rng=np.random.default_rng(11), roughening_k=0.0)
        flt.init_kalman(np.array([0.0]), np.array([[1.0]]))

        flt.observe(FunctionLikelihoodObserveModel(gaussian_likelihood(1.0)), np.array([1.0]))
        flt.update()

        self.assertAlmostEqual(flt.x[0], 0.5, delta=0.1)
        self.assertAlmostEqual(flt.X[0, 0], 0.5, delta=0.1)


class TestSIRKalmanScheme(unittest.TestCase):

    def test_init_draws_from_distribution(self):
        x0 = np.array([1.0, 2.0])
        X0 = np.array([[2.0, 0.5], [0.5, 1.0]])
        flt = SIRKalmanScheme(2, 5000, rng=np.random.default_rng(5))

        flt.init_kalman(x0, X0)
        flt.update()

        assert_allclose(flt.x, x0, atol=0.1)
        assert_allclose(flt.X, X0, atol=0.15)

    def test_init_not_psd(self):
        flt = SIRKalmanScheme(2, 10)
        with self.assertRaises(NumericError):
            flt.init_kalman(np.zeros(2), np.diag([1.0, -1.0]))

    def test_statistics_divisor(self):
        flt = SIRKalmanScheme(1, 2)
        flt.init_sample([[0.0, 2.0]])

        flt.update_statistics()

        assert_allclose(flt.x, [1.0])
        assert_allclose(flt.X, [[1.0]])


if __name__ == "__main__":
    unittest.main()
