"""
Numerical utilities shared by the filter schemes.

Provides the UdU' factorisation primitives the square-root filters are
built on, and angle helpers used to normalise bearing observations.
"""

from .angles import wrap_angle, angle_diff
from .factorisation import (
    ud_factor,
    ud_recompose,
    ud_rcond,
    ud_split,
    inverse_pd,
)

__all__ = [
    'wrap_angle',
    'angle_diff',
    'ud_factor',
    'ud_recompose',
    'ud_rcond',
    'ud_split',
    'inverse_pd',
]
