"""
Angle wrapping utilities.

Observe models use these to map a raw angular observation into the
residual domain of its prediction, so that an innovation never jumps by 2π
across the ±π discontinuity.
"""

import numpy as np
from typing import Union


def wrap_angle(angle: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Wrap angle(s) to [-π, π].

    Args:
        angle: Angle in radians, scalar or array.

    Returns:
        Wrapped angle(s) in [-π, π].

    Example:
        >>> wrap_angle(3.5 * np.pi)
        -1.5707963267948966
    """
    wrapped = np.arctan2(np.sin(angle), np.cos(angle))
    if isinstance(angle, np.ndarray):
        return wrapped
    return float(wrapped)


def angle_diff(angle1: Union[float, np.ndarray],
               angle2: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Shortest signed difference angle1 - angle2, wrapped to [-π, π].

    Args:
        angle1: Observed angle in radians.
        angle2: Predicted angle in radians.

    Returns:
        Difference in [-π, π].

    Example:
        >>> angle_diff(np.pi - 0.1, -np.pi + 0.1)
        -0.2
    """
    if isinstance(angle1, np.ndarray) or isinstance(angle2, np.ndarray):
        return wrap_angle(np.asarray(angle1, dtype=float) - np.asarray(angle2, dtype=float))
    return wrap_angle(angle1 - angle2)
