"""Unit tests for angle wrapping helpers."""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from bayes_filter.utils import angle_diff, wrap_angle


class TestWrapAngle(unittest.TestCase):

    def test_scalar(self):
        self.assertAlmostEqual(wrap_angle(3.5 * np.pi), -0.5 * np.pi)
        self.assertIsInstance(wrap_angle(1.0), float)

    def test_array(self):
        angles = np.array([0.0, 2.0 * np.pi, -3.0 * np.pi / 2.0])
        assert_allclose(wrap_angle(angles), [0.0, 0.0, np.pi / 2.0], atol=1e-12)

    def test_range(self):
        angles = np.linspace(-10.0, 10.0, 101)
        wrapped = wrap_angle(angles)
        self.assertTrue(np.all(wrapped >= -np.pi))
        self.assertTrue(np.all(wrapped <= np.pi))


class TestAngleDiff(unittest.TestCase):

    def test_across_discontinuity(self):
        """pi - 0.1 and -pi + 0.1 are 0.2 apart, not 2pi - 0.2."""
        self.assertAlmostEqual(angle_diff(np.pi - 0.1, -np.pi + 0.1), -0.2)

    def test_array(self):
        diff = angle_diff(np.array([0.1, np.pi - 0.05]), np.array([-0.1, -np.pi + 0.05]))
        assert_allclose(diff, [0.2, -0.1], atol=1e-12)


if __name__ == "__main__":
    unittest.main()
