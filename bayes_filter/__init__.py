"""Bayesian state estimation library.

This package contains recursive Bayesian filters sharing a common
predict/observe/update contract, and a SLAM layer built on top of them:
- estimators: Filter contract, models and schemes (UD, covariance,
  information, covariance intersection, sample/SIR)
- slam: Full-correlation Kalman SLAM and FastSLAM
- utils: UD factorisation primitives and angle helpers
- eval: Consistency metrics (RMSE, NEES, NIS) and plotting helpers
"""

__version__ = "0.1.0"
