"""Numerical configuration of the filter schemes.

The reciprocal condition number floor is an explicit value passed to each
filter at construction rather than process-wide state.
"""

import warnings
from dataclasses import dataclass

import numpy as np

from bayes_filter.estimators.errors import LogicError, NumericError

# Five decimal digits of headroom above machine precision
DEFAULT_LIMIT_PD = float(np.finfo(float).eps * 1e5)


@dataclass(frozen=True)
class NumericalLimits:
    """Conditioning limits applied to factorisations and inversions.

    Attributes:
        limit_pd: Minimum reciprocal condition number accepted for a
            matrix required to be positive definite.

    Example:
        >>> limits = NumericalLimits(limit_pd=1e-9)
        >>> flt = UDScheme(2, q_max=1, limits=limits)
    """

    limit_pd: float = DEFAULT_LIMIT_PD

    def __post_init__(self) -> None:
        if not isinstance(self.limit_pd, (float, int)):
            raise LogicError(f"limit_pd must be numeric, got {type(self.limit_pd)}")
        if not (0.0 <= self.limit_pd < 1.0):
            raise LogicError(f"limit_pd must be in [0, 1), got {self.limit_pd}")
        if self.limit_pd == 0.0:
            warnings.warn(
                "limit_pd of 0 disables the positive definite check; "
                "singular matrices will only be caught by factorisation.",
                UserWarning,
            )

    def check_psd(self, rcond: float, description: str) -> None:
        """Raise NumericError unless rcond represents a PSD matrix.

        The comparison is written so that NaN also fails.
        """
        if not rcond >= 0:
            raise NumericError(description)

    def check_pd(self, rcond: float, description: str) -> None:
        """Raise NumericError unless rcond is at or above limit_pd."""
        if not rcond >= self.limit_pd:
            raise NumericError(description)
