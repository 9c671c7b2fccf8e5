from typing import Tuple

import numpy as np
from numba import jit

from gbspy.utils import jit_settings


@jit("int64[::1](int64)", **jit_settings)
def build_sequence(size: int) -> np.ndarray:
    """Return the substep counts ``2, 6, 10, 14, ...`` of each extrapolation level.

    Parameters
    ----------
    size : int
        Number of extrapolation levels, i.e. half the maximal order.

    Returns
    -------
    sequence : ndarray, shape (size,)
        Number of modified-midpoint substeps for each level.
    """

    sequence = np.empty((size,), dtype=np.int64)
    for k in range(size):
        sequence[k] = 4*k + 2

    return sequence


@jit("int64[::1](int64[::1])", **jit_settings)
def build_cost_per_step(sequence: np.ndarray) -> np.ndarray:
    """Return the cumulative number of function calls of each level.

    A level ``k`` reuses the derivative at the step start, hence the
    first level costs ``sequence[0] + 1`` calls and every following one
    adds ``sequence[k]`` calls.
    """

    cost = np.empty_like(sequence)
    cost[0] = sequence[0] + 1
    for k in range(1, sequence.shape[0]):
        cost[k] = cost[k-1] + sequence[k]

    return cost


@jit("float64[:, ::1](int64[::1])", **jit_settings)
def build_coefficients(sequence: np.ndarray) -> np.ndarray:
    """Compute the Aitken-Neville extrapolation coefficients.

    Parameters
    ----------
    sequence : ndarray, shape (size,)
        Substep counts of each extrapolation level.

    Returns
    -------
    coeff : ndarray, shape (size, size)
        Triangular coefficients table. For ``l < k``,
        ``coeff[k, l] = 1 / (ratio**2 - 1)`` with
        ``ratio = sequence[k] / sequence[k - l - 1]``. Entries with
        ``l >= k`` are never used and are set to zero.
    """

    size = sequence.shape[0]
    coeff = np.zeros((size, size))
    for k in range(size):
        for l in range(k):
            ratio = sequence[k]/sequence[k - l - 1]
            coeff[k, l] = 1.0/(ratio*ratio - 1.0)

    return coeff


def extrapolation_tables(max_order: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return the sequence, cost and coefficient tables for a maximal order.

    Returns
    -------
    sequence : ndarray, shape (max_order // 2,)
    cost_per_step : ndarray, shape (max_order // 2,)
    coeff : ndarray, shape (max_order // 2, max_order // 2)
    """

    sequence = build_sequence(max_order // 2)
    return sequence, build_cost_per_step(sequence), build_coefficients(sequence)
