"""Unit tests for SLAM types and feature models."""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from bayes_filter.estimators import LogicError
from bayes_filter.slam import (
    FeatureParticles,
    FeatureSlot,
    LinearFeatureInverseModel,
    LinearFeatureObserveModel,
)


class TestFeatureSlot(unittest.TestCase):

    def test_index(self):
        slot = FeatureSlot(start=3, size=2)
        assert_allclose(np.arange(6)[slot.index], [3, 4])

    def test_invalid(self):
        with self.assertRaises(LogicError):
            FeatureSlot(start=-1, size=1)
        with self.assertRaises(LogicError):
            FeatureSlot(start=0, size=0)


class TestFeatureParticles(unittest.TestCase):

    def test_shape_mismatch(self):
        with self.assertRaises(LogicError):
            FeatureParticles(np.zeros(3), np.zeros(4))

    def test_resample_keeps_pairs(self):
        fmap = FeatureParticles([1.0, 2.0, 3.0], [0.1, 0.2, 0.3])

        fmap.resample(np.array([0, 2, 1]))

        assert_allclose(fmap.x, [2.0, 2.0, 3.0])
        assert_allclose(fmap.X, [0.2, 0.2, 0.3])


class TestFeatureModels(unittest.TestCase):

    def test_linear_observe_sizes(self):
        model = LinearFeatureObserveModel([[-1.0, 0.0, 1.0]], [0.1], location_size=2)

        self.assertEqual(model.location_size, 2)
        self.assertEqual(model.feature_size, 1)
        assert_allclose(model.h(np.array([1.0, 5.0, 4.0])), [3.0])

    def test_linear_observe_without_feature(self):
        with self.assertRaises(LogicError):
            LinearFeatureObserveModel([[1.0]], [0.1], location_size=1)

    def test_linear_observe_noise_size(self):
        with self.assertRaises(LogicError):
            LinearFeatureObserveModel([[-1.0, 1.0]], [0.1, 0.2], location_size=1)

    def test_linear_inverse(self):
        model = LinearFeatureInverseModel([[1.0, 1.0]], [0.25], location_size=1)

        self.assertEqual(model.z_size, 1)
        self.assertEqual(model.feature_size, 1)
        assert_allclose(model.h(np.array([2.0, 3.0])), [5.0])

    def test_inverse_check(self):
        model = LinearFeatureInverseModel([[1.0, 1.0]], [0.25], location_size=1)
        with self.assertRaises(LogicError):
            model.check(2, 1)
        with self.assertRaises(LogicError):
            model.check(1, 2)


if __name__ == "__main__":
    unittest.main()
