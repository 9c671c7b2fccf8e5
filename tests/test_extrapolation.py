import numpy as np

from gbspy.config import GBSConfig
from gbspy.extrapolation import ExtrapolationTable, extrapolate
from gbspy.step import try_step
from gbspy.tables import extrapolation_tables

seq, cost, coeff = extrapolation_tables(18)

# Estimates with an error expansion in even powers of the substep
c = np.array([1.5, -2.0])
c1 = np.array([3.0, 0.7])
c2 = np.array([-4.0, 12.0])

def estimate(n):
    return c + c1/n**2 + c2/n**4


def test_richardson_first_level():

    diag = np.zeros((8, 2))
    last = estimate(seq[0])

    diag[0] = estimate(seq[1])
    extrapolate(coeff, 0, 1, diag, last)

    # the 1/n**2 error term is removed
    exact = c - c2/(seq[0]*seq[1])**2
    assert np.allclose(last, exact, rtol=0, atol=1e-13)


def test_richardson_exactness():

    table = ExtrapolationTable(seq, coeff, 2)

    table.y1[:] = estimate(seq[0])

    table.y1_diag[0] = estimate(seq[1])
    table.extrapolate_end(1)

    table.y1_diag[1] = estimate(seq[2])
    table.extrapolate_end(2)

    assert np.allclose(table.y1, c, rtol=0, atol=1e-13)


def test_error_decreases_with_levels():

    table = ExtrapolationTable(seq, coeff, 2)
    y0 = np.array([1., 1.])
    scale = np.zeros((2,))
    tol = np.full((2,), 1e-6)

    table.y1[:] = estimate(seq[0])
    table.y1_diag[0] = estimate(seq[1])
    table.extrapolate_end(1)
    err1 = table.error(y0, scale, tol, tol)

    table.y1_diag[1] = estimate(seq[2])
    table.extrapolate_end(2)
    err2 = table.error(y0, scale, tol, tol)

    assert err1 > 0
    assert err2 < err1
    assert np.all(scale > 0)


def test_substep_targets():

    table = ExtrapolationTable(seq, coeff, 3)

    middle, end = table.substep_targets(0)
    assert np.shares_memory(middle, table.y_mid_dots)
    assert np.shares_memory(end, table.y1)

    middle, end = table.substep_targets(3)
    assert np.shares_memory(middle, table.diagonal)
    assert np.shares_memory(end, table.y1_diag)

    assert len(table.fk) == seq.shape[0]
    assert table.fk[4].shape == (seq[4] + 1, 3)
    assert table.y_mid_dots.shape == (2*seq.shape[0] + 1, 3)


def growth(t, y, out):
    out[:] = y

def test_midpoint_derivatives():

    h = 0.5
    k = 4
    mu = 7

    y0 = np.array([1., 2.])
    table = ExtrapolationTable(seq, coeff, 2)
    scale = np.ones((2,))

    for j in range(k + 1):
        f = table.fk[j]
        f[0] = y0
        y_middle, y_end = table.substep_targets(j)
        assert try_step(growth, 0., y0, h, j, seq, scale, f, y_middle, y_end,
                        np.zeros((2,)), GBSConfig())

    table.extrapolate_middle(k)
    table.midpoint_derivatives(k, mu, h)

    # every derivative of the solution is y0 * exp(t)
    exact = y0*np.exp(0.5*h)
    assert np.allclose(table.y_mid_dots[0], exact, rtol=1e-10, atol=0)

    for l in range(mu):
        rtol = 1e-8 if l < 3 else 1e-3
        assert np.allclose(table.y_mid_dots[l+1], h**(l+1)*exact, rtol=rtol, atol=0)
