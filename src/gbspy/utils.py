from typing import Callable

import numpy as np
from numba import jit

jit_settings = {'nopython': True, 'nogil': True, 'cache': True}

EPS = np.finfo(np.float64).eps


@jit("b1(float64, float64)", **jit_settings)
def equals_ulp(x: float, y: float) -> bool:
    """Check whether two scalars are equal or adjacent floating point numbers."""
    return x == y or abs(y-x) <= EPS*max(abs(x), abs(y))


def as_state(y: np.ndarray) -> np.ndarray:
    """Return a C-contiguous float64 copy of a state vector."""
    return np.array(y, dtype=np.float64, copy=True, order='C').reshape(-1)


def as_tolerance(tol, ndof: int) -> np.ndarray:
    """Broadcast a scalar or per-component tolerance to a state-sized array."""
    tol = np.asarray(tol, dtype=np.float64)
    if tol.ndim == 0:
        return np.full((ndof,), float(tol))
    return np.ascontiguousarray(tol.reshape(-1))


def wrap_derivatives(fun: Callable, args: tuple) -> Callable[[float, np.ndarray], np.ndarray]:
    """Bind the constant parameters of a right-hand side ``fun(t, y, *args)``."""
    if not args:
        return fun
    return lambda t, y: fun(t, y, *args)
