"""
Unit tests for the UdU' square-root Kalman filter.

Tests cover:
    - Construction and initialisation checks
    - Idempotence of update()
    - MWG-S prediction against the covariance form
    - Bierman observation gain and posterior variance
    - Singular innovation detection leaving the factor unmodified
    - Correlated and sequential observations
    - Position/velocity end-to-end convergence
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from bayes_filter.estimators import (
    CovarianceScheme,
    LinearCorrelatedObserveModel,
    LinearPredictModel,
    LinearUncorrelatedObserveModel,
    LogicError,
    NumericError,
    SequentialObserveModel,
    UDScheme,
)
from bayes_filter.utils import ud_factor


class PositionSequentialModel(SequentialObserveModel):
    """Observes both state components one at a time."""

    def __init__(self, Zv):
        super().__init__(x_size=2, z_size=2)
        self.Zv = np.asarray(Zv, dtype=float)

    def ho(self, x, o):
        self.Hx_o = np.eye(2)[o]
        return x.copy()


def assert_psd(test, X, tol=1e-9):
    assert_allclose(X, X.T, atol=1e-12)
    test.assertGreaterEqual(np.min(np.linalg.eigvalsh(X)), -tol)


class TestUDConstruction(unittest.TestCase):

    def test_zero_state(self):
        with self.assertRaises(LogicError):
            UDScheme(0, q_max=1)

    def test_negative_q_max(self):
        with self.assertRaises(LogicError):
            UDScheme(2, q_max=-1)

    def test_augmented_storage(self):
        flt = UDScheme(3, q_max=2)
        self.assertEqual(flt.UD.shape, (3, 5))

    def test_init_not_psd(self):
        flt = UDScheme(2, q_max=1)
        with self.assertRaises(NumericError):
            flt.init_kalman(np.zeros(2), np.diag([1.0, -1.0]))

    def test_init_wrong_shape(self):
        flt = UDScheme(2, q_max=1)
        with self.assertRaises(LogicError):
            flt.init_kalman(np.zeros(3), np.eye(3))

    def test_update_idempotent(self):
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.array([1.0, 2.0]), np.array([[4.0, 1.0], [1.0, 2.0]]))

        flt.update()
        x1, X1 = flt.get_state()
        flt.update()
        x2, X2 = flt.get_state()

        assert_allclose(x1, x2)
        assert_allclose(X1, X2)
        assert_allclose(X1, [[4.0, 1.0], [1.0, 2.0]])


class TestUDPredict(unittest.TestCase):

    def setUp(self):
        self.X0 = np.array([[4.0, 1.0, 0.2], [1.0, 2.0, 0.3], [0.2, 0.3, 1.0]])
        self.Fx = np.array([[1.0, 0.1, 0.0], [0.0, 1.0, 0.1], [0.0, 0.0, 0.9]])
        self.G = np.array([[0.0, 0.5], [1.0, 0.0], [0.0, 1.0]])
        self.q = np.array([0.2, 0.05])

    def test_matches_covariance_form(self):
        flt = UDScheme(3, q_max=2)
        flt.init_kalman(np.array([1.0, 2.0, 3.0]), self.X0)

        rcond = flt.predict(LinearPredictModel(self.Fx, self.G, self.q))
        flt.update()

        expected = self.Fx @ self.X0 @ self.Fx.T + self.G @ np.diag(self.q) @ self.G.T
        self.assertGreater(rcond, 0.0)
        assert_allclose(flt.X, expected, atol=1e-12)
        assert_allclose(flt.x, self.Fx @ np.array([1.0, 2.0, 3.0]))
        assert_allclose(np.tril(flt.UD[:, :3], -1), 0.0)

    def test_smaller_q_than_provisioned(self):
        flt = UDScheme(3, q_max=4)
        flt.init_kalman(np.zeros(3), self.X0)

        flt.predict(LinearPredictModel(self.Fx, self.G[:, :1], self.q[:1]))
        flt.update()

        expected = self.Fx @ self.X0 @ self.Fx.T + 0.2 * np.outer(self.G[:, 0], self.G[:, 0])
        assert_allclose(flt.X, expected, atol=1e-12)

    def test_q_larger_than_provisioned(self):
        flt = UDScheme(3, q_max=1)
        flt.init_kalman(np.zeros(3), self.X0)

        with self.assertRaises(LogicError):
            flt.predict(LinearPredictModel(self.Fx, self.G, self.q))

    def test_monotone_variance_without_observation(self):
        """Predict-only with positive noise never decreases a variance."""
        dt = 0.1
        model = LinearPredictModel([[1.0, dt], [0.0, 1.0]], [[0.5 * dt**2], [dt]], [0.3])
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.zeros(2), np.diag([1.0, 0.5]))

        flt.update()
        previous = np.diag(flt.X).copy()
        for _ in range(50):
            flt.predict(model)
            flt.update()
            variances = np.diag(flt.X)
            self.assertTrue(np.all(variances >= previous - 1e-12))
            assert_psd(self, flt.X)
            previous = variances.copy()

    def test_semi_definite_prediction(self):
        """Zero process noise from a singular prior stays PSD."""
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.zeros(2), np.diag([1.0, 0.0]))

        rcond = flt.predict(LinearPredictModel(np.eye(2), [[0.0], [0.0]], [0.0]))

        self.assertEqual(rcond, 0.0)
        flt.update()
        assert_allclose(flt.X, np.diag([1.0, 0.0]))

    def test_negative_noise_rejected(self):
        """A negative pivot fails the predict and commits nothing."""
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.array([1.0, 2.0]), np.diag([4.0, 2.0]))
        UD0 = flt.UD.copy()
        x0 = flt.x.copy()

        with self.assertRaises(NumericError):
            flt.predict(LinearPredictModel(np.eye(2), [[1.0], [0.0]], [-5.0]))

        np.testing.assert_array_equal(flt.UD, UD0)
        np.testing.assert_array_equal(flt.x, x0)

    def test_zero_pivot_with_cross_terms(self):
        """A zero pivot whose weighted row is non-zero is negative definite."""
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.zeros(2), np.eye(2))
        UD0 = flt.UD.copy()

        rcond = flt.predict_gq(np.eye(2), [[1.0], [1.0]], [-1.0])

        self.assertEqual(rcond, -1.0)
        np.testing.assert_array_equal(flt.UD, UD0)


class TestUDObserve(unittest.TestCase):

    def setUp(self):
        self.flt = UDScheme(2, q_max=1)

    def test_scalar_gain(self):
        """Gain P/(P+r) and posterior variance P·r/(P+r)."""
        P, r = 4.0, 1.0
        self.flt.init_kalman(np.zeros(2), np.diag([P, 2.0]))

        rcond, gain, alpha = self.flt.observe_ud(np.array([1.0, 0.0]), r)

        self.assertGreater(rcond, 0.0)
        assert_allclose(gain, [P / (P + r), 0.0])
        assert_allclose(alpha, P + r)
        self.flt.update()
        assert_allclose(self.flt.X[0, 0], P * r / (P + r))
        assert_allclose(self.flt.X[1, 1], 2.0)

    def test_correlated_prior_gain(self):
        X0 = np.array([[4.0, 1.0], [1.0, 2.0]])
        self.flt.init_kalman(np.zeros(2), X0)

        _, gain, alpha = self.flt.observe_ud(np.array([1.0, 0.0]), 1.0)

        assert_allclose(gain, X0[:, 0] / 5.0)
        assert_allclose(alpha, 5.0)
        self.flt.update()
        h = np.array([1.0, 0.0])
        expected = X0 - np.outer(X0 @ h, X0 @ h) / 5.0
        assert_allclose(self.flt.X, expected, atol=1e-12)

    def test_observe_updates_state(self):
        self.flt.init_kalman(np.array([0.0, 1.0]), np.diag([4.0, 2.0]))
        model = LinearUncorrelatedObserveModel([[1.0, 0.0]], [1.0])

        rcond = self.flt.observe(model, np.array([5.0]))

        self.assertGreater(rcond, 0.0)
        assert_allclose(self.flt.x, [4.0, 1.0])
        assert_allclose(self.flt.s, [5.0])
        assert_allclose(self.flt.Sd, [5.0])

    def test_singular_innovation_leaves_factor(self):
        self.flt.init_kalman(np.zeros(2), np.diag([4.0, 2.0]))
        UD_before = self.flt.UD.copy()

        rcond, _, _ = self.flt.observe_ud(np.array([1.0, 0.0]), -10.0)

        self.assertEqual(rcond, -1.0)
        assert_allclose(self.flt.UD, UD_before)

    def test_negative_noise_raises_without_change(self):
        self.flt.init_kalman(np.array([1.0, 2.0]), np.diag([4.0, 2.0]))
        x_before, UD_before = self.flt.x.copy(), self.flt.UD.copy()
        model = LinearUncorrelatedObserveModel([[1.0, 0.0], [0.0, 1.0]], [1.0, -10.0])

        with self.assertRaises(NumericError):
            self.flt.observe(model, np.array([3.0, 4.0]))

        # The first component succeeded but nothing was committed
        assert_allclose(self.flt.x, x_before)
        assert_allclose(self.flt.UD, UD_before)

    def test_multiple_components_return_minimum_rcond(self):
        self.flt.init_kalman(np.zeros(2), np.diag([4.0, 2.0]))
        model = LinearUncorrelatedObserveModel(np.eye(2), [1.0, 1.0])

        rcond = self.flt.observe(model, np.array([1.0, 1.0]))
        self.flt.update()

        # D after the first component is [0.8, 2], after the second [0.8, 2/3]
        self.assertAlmostEqual(rcond, 0.4, places=12)
        d = np.diag(ud_factor(self.flt.X)[0])
        assert_allclose(sorted(d), [2.0 / 3.0, 0.8])

    def test_empty_observation_returns_inf(self):
        self.flt.init_kalman(np.array([1.0, 2.0]), np.diag([4.0, 2.0]))
        x_before, UD_before = self.flt.x.copy(), self.flt.UD.copy()
        model = LinearUncorrelatedObserveModel(np.zeros((0, 2)), np.zeros(0))

        rcond = self.flt.observe(model, np.zeros(0))

        self.assertEqual(rcond, np.inf)
        np.testing.assert_array_equal(self.flt.x, x_before)
        np.testing.assert_array_equal(self.flt.UD, UD_before)

    def test_correlated_matches_covariance_scheme(self):
        X0 = np.array([[4.0, 1.0], [1.0, 2.0]])
        x0 = np.array([0.5, -0.5])
        Hx = np.array([[1.0, 0.0], [1.0, 1.0]])
        Z = np.array([[1.0, 0.5], [0.5, 2.0]])
        z = np.array([1.0, 0.8])
        ud = UDScheme(2, q_max=1)
        ud.init_kalman(x0, X0)
        ref = CovarianceScheme(2)
        ref.init_kalman(x0, X0)

        ud.observe(LinearCorrelatedObserveModel(Hx, Z), z)
        ref.observe(LinearCorrelatedObserveModel(Hx, Z), z)
        ud.update()

        assert_allclose(ud.x, ref.x, atol=1e-10)
        assert_allclose(ud.X, ref.X, atol=1e-10)

    def test_correlated_noise_not_psd(self):
        self.flt.init_kalman(np.zeros(2), np.eye(2))
        model = LinearCorrelatedObserveModel(np.eye(2), [[1.0, 2.0], [2.0, 1.0]])
        with self.assertRaises(NumericError):
            self.flt.observe(model, np.zeros(2))

    def test_sequential_matches_uncorrelated(self):
        X0 = np.array([[4.0, 1.0], [1.0, 2.0]])
        z = np.array([1.0, -1.0])
        seq = UDScheme(2, q_max=1)
        seq.init_kalman(np.zeros(2), X0)
        unc = UDScheme(2, q_max=1)
        unc.init_kalman(np.zeros(2), X0)

        seq.observe(PositionSequentialModel([0.5, 0.25]), z)
        unc.observe(LinearUncorrelatedObserveModel(np.eye(2), [0.5, 0.25]), z)
        seq.update()
        unc.update()

        assert_allclose(seq.x, unc.x, atol=1e-12)
        assert_allclose(seq.X, unc.X, atol=1e-12)


class TestUDPositionVelocity(unittest.TestCase):
    """Integrated Ornstein-Uhlenbeck position/velocity end-to-end scenario."""

    def test_converges_within_3_sigma(self):
        dt = 0.01
        Fx = [[1.0, dt], [0.0, np.exp(-dt)]]
        predict = LinearPredictModel(Fx, [[0.0], [1.0]], [dt * ((1.0 - np.exp(-dt)) * 0.1) ** 2])
        observe = LinearUncorrelatedObserveModel([[1.0, 0.0]], [1e-6])
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.array([900.0, 1.5]), np.diag([1000.0**2, 10.0**2]))
        x_true = np.array([1000.0, 1.0])

        for _ in range(100):
            x_true = predict.f(x_true)
            rcond = flt.predict(predict)
            self.assertGreaterEqual(rcond, flt.limits.limit_pd)
            rcond = flt.observe(observe, np.array([x_true[0]]))
            self.assertGreaterEqual(rcond, flt.limits.limit_pd)

        flt.update()
        sigma = np.sqrt(flt.X[0, 0])
        self.assertLessEqual(abs(flt.x[0] - x_true[0]), 3.0 * sigma)
        assert_psd(self, flt.X, tol=1e-15)


if __name__ == "__main__":
    unittest.main()
