from typing import List

import numpy as np
from numba import jit

from gbspy.step import rescale, rms_error
from gbspy.utils import jit_settings


@jit("void(float64[:, ::1], int64, int64, float64[:, ::1], float64[::1])",
     **jit_settings)
def extrapolate(coeff: np.ndarray, offset: int, k: int, diag: np.ndarray,
                last: np.ndarray) -> None:
    """Update the extrapolation table with the estimate of level `k`.

    The Aitken-Neville recursion is applied in-place. On entry `diag[k-1]`
    holds the raw estimate of level `k`, `diag[:k-1]` the diagonal built
    with the previous levels and `last` the previous extrapolated value.
    On exit `last` holds the extrapolated value of level `k`.

    Parameters
    ----------
    coeff : ndarray, shape (size, size)
        Extrapolation coefficients, see `tables.build_coefficients`.
    offset : int
        Level offset into `coeff`. It is 0 for the state at the end of the
        step and positive when extrapolating midpoint derivatives, whose
        first usable level depends on the derivative order.
    k : int
        Index of the new level, counted from `offset`.
    diag : ndarray, shape (size - 1, ndof)
        Working diagonal of the extrapolation table.
    last : ndarray, shape (ndof,)
        Extrapolated value.
    """

    ndof = last.shape[0]

    for j in range(1, k):
        c = coeff[k + offset, j - 1]
        for i in range(ndof):
            diag[k-j-1, i] = diag[k-j, i] + c*(diag[k-j, i] - diag[k-j-1, i])

    c = coeff[k + offset, k - 1]
    for i in range(ndof):
        last[i] = diag[0, i] + c*(diag[0, i] - last[i])


class ExtrapolationTable:
    """Working arrays of one integration.

    All arrays are allocated once per integration, for the maximal
    number of levels, and reused across macro-steps.

    Attributes
    ----------
    y1 : ndarray, shape (ndof,)
        Extrapolated state at the end of the step.
    y1_diag : ndarray, shape (size - 1, ndof)
        Diagonal of the end-of-step table; row ``k - 1`` receives the raw
        estimate of level `k`.
    diagonal : ndarray, shape (size - 1, ndof)
        Diagonal of the midpoint table; row ``k - 1`` receives the state
        at the middle of the step computed at level `k`.
    fk : list of ndarray
        For each level `k`, derivatives at the ``sequence[k] + 1``
        substep nodes.
    y_mid_dots : ndarray, shape (2 * size + 1, ndof)
        Extrapolated state and scaled derivatives at the middle of the step.
    """

    def __init__(self, sequence: np.ndarray, coeff: np.ndarray, ndof: int):
        size = sequence.shape[0]

        self.sequence = sequence
        self.coeff = coeff

        self.y1 = np.zeros((ndof,))
        self.y1_diag = np.zeros((size - 1, ndof))
        self.diagonal = np.zeros((size - 1, ndof))
        self.fk: List[np.ndarray] = [np.zeros((sequence[k] + 1, ndof)) for k in range(size)]
        self.y_mid_dots = np.zeros((2*size + 1, ndof))

    def substep_targets(self, k: int):
        """Return the (middle, end) arrays receiving the substepper output of level `k`."""
        if k == 0:
            return self.y_mid_dots[0], self.y1
        return self.diagonal[k-1], self.y1_diag[k-1]

    def extrapolate_end(self, k: int) -> None:
        """Fold the raw end-of-step estimate of level `k` into `y1`."""
        extrapolate(self.coeff, 0, k, self.y1_diag, self.y1)

    def error(self, y0: np.ndarray, scale: np.ndarray, abs_tol: np.ndarray,
              rel_tol: np.ndarray) -> float:
        """Rescale against the extrapolated state and return the RMS error.

        The error compares the extrapolated state with the last raw estimate
        folded into the diagonal, `scale` is updated in-place.
        """

        rescale(y0, self.y1, abs_tol, rel_tol, scale)
        return rms_error(self.y1, self.y1_diag[0], scale)

    def extrapolate_middle(self, k: int) -> None:
        """Extrapolate the state at the middle of the step up to level `k`."""
        for j in range(1, k + 1):
            extrapolate(self.coeff, 0, j, self.diagonal, self.y_mid_dots[0])

    def midpoint_derivatives(self, k: int, mu: int, h: float) -> None:
        """Extrapolate the scaled derivatives at the middle of the step.

        Derivatives of increasing order are obtained from centered
        differences of the substep derivatives stored in `fk`, which are
        overwritten in the process. On exit ``y_mid_dots[l + 1]`` holds
        ``h**(l+1)`` times the derivative of order ``l + 1`` of the
        solution at the middle of the step, for ``l < mu``.
        """

        sequence, fk = self.sequence, self.fk

        for l in range(mu):
            l2 = l // 2

            factor = (0.5*sequence[l2])**l
            middle = fk[l2].shape[0] // 2
            self.y_mid_dots[l+1] = factor*fk[l2][middle + l]

            for j in range(1, k - l2 + 1):
                factor = (0.5*sequence[j + l2])**l
                middle = fk[l2 + j].shape[0] // 2
                self.diagonal[j-1] = factor*fk[l2 + j][middle + l]
                extrapolate(self.coeff, l2, j, self.diagonal, self.y_mid_dots[l+1])

            self.y_mid_dots[l+1] *= h

            # Centered differences give the next derivative order
            for j in range((l + 1) // 2, k + 1):
                f = fk[j]
                for m in range(f.shape[0] - 1, 2*(l + 1) - 1, -1):
                    f[m] -= f[m-2]
