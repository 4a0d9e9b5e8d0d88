"""SLAM filters built on the estimator schemes.

Main components:
    - KalmanSLAM: full correlation SLAM over any generated Kalman scheme
    - FastSLAM, FastSLAMKStatistics: particle location with per-particle maps
    - Feature models: FeatureObserveModel, FeatureInverseModel and their
      linear forms

Example usage:
    >>> from bayes_filter.estimators import UDScheme
    >>> from bayes_filter.slam import KalmanSLAM, SchemeGenerator
    >>> slam = KalmanSLAM(SchemeGenerator(lambda n: UDScheme(n, q_max=1)))
    >>> slam.init_kalman(np.zeros(1), np.eye(1))
"""

from .fast_slam import FastSLAM, FastSLAMKStatistics
from .kalman_slam import KalmanFilterGenerator, KalmanSLAM, SchemeGenerator
from .types import (
    SLAM,
    FeatureInverseModel,
    FeatureObserveModel,
    FeatureParticles,
    FeatureSlot,
    LinearFeatureInverseModel,
    LinearFeatureObserveModel,
    SLAMStatistics,
)

__all__ = [
    # Types
    "SLAM",
    "FeatureSlot",
    "FeatureParticles",
    "SLAMStatistics",
    "FeatureObserveModel",
    "LinearFeatureObserveModel",
    "FeatureInverseModel",
    "LinearFeatureInverseModel",
    # Kalman SLAM
    "KalmanFilterGenerator",
    "SchemeGenerator",
    "KalmanSLAM",
    # FastSLAM
    "FastSLAM",
    "FastSLAMKStatistics",
]
