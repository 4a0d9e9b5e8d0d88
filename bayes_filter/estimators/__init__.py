"""
Bayesian filter schemes.

All schemes share the predict/observe/update contract of BayesFilter and
differ in how they represent the state internally.

Available schemes:
    - UDScheme: UdU' factorised square-root Kalman filter (Bierman)
    - CovarianceScheme: Extended Kalman filter in covariance form
    - InformationScheme: Extended information filter
    - CIScheme, TraceCIScheme: Covariance Intersection
    - SIRScheme, SIRKalmanScheme: Sampling Importance Resampling
"""

from bayes_filter.estimators.errors import (
    FailureKind,
    FilterError,
    LogicError,
    NumericError,
    Outcome,
    attempt,
)
from bayes_filter.estimators.config import DEFAULT_LIMIT_PD, NumericalLimits
from bayes_filter.estimators.models import (
    FunctionalPredictModel,
    FunctionLikelihoodObserveModel,
    LikelihoodObserveModel,
    LinearCorrelatedObserveModel,
    LinearInvertiblePredictModel,
    LinearPredictModel,
    LinearUncorrelatedObserveModel,
    LinrzCorrelatedObserveModel,
    LinrzPredictModel,
    LinrzUncorrelatedObserveModel,
    ObserveKind,
    ObserveModel,
    PredictKind,
    PredictModel,
    SequentialObserveModel,
)
from bayes_filter.estimators.base import (
    BayesFilter,
    ExpectedState,
    ExtendedKalmanFilter,
    InformationState,
    KalmanFilter,
    KalmanState,
    SampleState,
)
from bayes_filter.estimators.ud_filter import UDScheme
from bayes_filter.estimators.covariance_filter import CovarianceScheme
from bayes_filter.estimators.information_filter import InformationScheme
from bayes_filter.estimators.ci_filter import CIScheme, TraceCIScheme, covariance_intersection
from bayes_filter.estimators.sample_filter import (
    ImportanceResampler,
    SampleFilter,
    SIRKalmanScheme,
    SIRScheme,
    StandardResampler,
    SystematicResampler,
)

__all__ = [
    # Errors
    "FilterError",
    "NumericError",
    "LogicError",
    "FailureKind",
    "Outcome",
    "attempt",
    # Configuration
    "NumericalLimits",
    "DEFAULT_LIMIT_PD",
    # Models
    "PredictKind",
    "ObserveKind",
    "PredictModel",
    "FunctionalPredictModel",
    "LinrzPredictModel",
    "LinearPredictModel",
    "LinearInvertiblePredictModel",
    "ObserveModel",
    "LinrzUncorrelatedObserveModel",
    "LinrzCorrelatedObserveModel",
    "LinearUncorrelatedObserveModel",
    "LinearCorrelatedObserveModel",
    "SequentialObserveModel",
    "LikelihoodObserveModel",
    "FunctionLikelihoodObserveModel",
    # State and filter contract
    "BayesFilter",
    "ExpectedState",
    "KalmanState",
    "InformationState",
    "SampleState",
    "KalmanFilter",
    "ExtendedKalmanFilter",
    # Kalman schemes
    "UDScheme",
    "CovarianceScheme",
    "InformationScheme",
    "CIScheme",
    "TraceCIScheme",
    "covariance_intersection",
    # Sample schemes
    "SampleFilter",
    "SIRScheme",
    "SIRKalmanScheme",
    "ImportanceResampler",
    "StandardResampler",
    "SystematicResampler",
]
