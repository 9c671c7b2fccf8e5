import numpy as np
import pytest

from gbspy.config import GBSConfig
from gbspy.exceptions import StepSizeTooSmallError
from gbspy.step import (compute_initial_step, filter_step, rescale, rms_error,
                        try_step)
from gbspy.tables import build_sequence

seq = build_sequence(9)


def constant(t, y, out):
    out[:] = [2.0, -1.0]

def stiff(t, y, out):
    out[:] = -1000*y

def decay(t, y, out):
    out[:] = -y


def _workspace(k, ndof):
    f = np.zeros((seq[k] + 1, ndof))
    return f, np.zeros((ndof,)), np.zeros((ndof,)), np.zeros((ndof,))


def test_constant_derivative_is_exact():

    y0 = np.array([1.0, 3.0])
    scale = np.ones((2,))
    h = 0.5

    for k in range(4):
        f, y_middle, y_end, y_tmp = _workspace(k, 2)
        constant(0., y0, f[0])

        stable = try_step(constant, 0., y0, h, k, seq, scale, f, y_middle, y_end,
                          y_tmp, GBSConfig())

        assert stable
        assert np.allclose(y_end, y0 + h*np.array([2.0, -1.0]), rtol=0, atol=1e-14)
        assert np.allclose(y_middle, y0 + 0.5*h*np.array([2.0, -1.0]), rtol=0, atol=1e-14)
        assert np.allclose(f, np.array([2.0, -1.0]))


def test_stability_check_failure():

    y0 = np.array([1.0])
    scale = np.ones((1,))

    f, y_middle, y_end, y_tmp = _workspace(0, 1)
    stiff(0., y0, f[0])

    assert not try_step(stiff, 0., y0, 1.0, 0, seq, scale, f, y_middle, y_end,
                        y_tmp, GBSConfig())

    # without the check the unstable step goes through
    config = GBSConfig()
    config.set_stability_check(False)
    assert try_step(stiff, 0., y0, 1.0, 0, seq, scale, f, y_middle, y_end,
                    y_tmp, config)


def test_stability_check_on_first_levels_only():

    y0 = np.array([1.0])
    scale = np.ones((1,))

    k = 2
    f, y_middle, y_end, y_tmp = _workspace(k, 1)
    stiff(0., y0, f[0])

    # the default check is limited to the first two levels
    assert try_step(stiff, 0., y0, 1.0, k, seq, scale, f, y_middle, y_end,
                    y_tmp, GBSConfig())


def test_rescale_and_rms():

    y1 = np.array([1.0, -4.0])
    y2 = np.array([-2.0, 1.0])
    atol = np.array([1e-3, 1e-3])
    rtol = np.array([1e-2, 1e-4])

    scale = np.zeros((2,))
    rescale(y1, y2, atol, rtol, scale)

    assert np.allclose(scale, [1e-3 + 2e-2, 1e-3 + 4e-4])

    err = rms_error(y1, y2, np.ones((2,)))
    assert np.isclose(err, np.sqrt((9 + 25)/2))


def test_filter_step():

    assert filter_step(0.5, True, False, 1e-3, 1.0) == 0.5
    assert filter_step(5.0, True, False, 1e-3, 1.0) == 1.0
    assert filter_step(-5.0, False, False, 1e-3, 1.0) == -1.0

    assert filter_step(1e-6, True, True, 1e-3, 1.0) == 1e-3
    assert filter_step(-1e-6, False, True, 1e-3, 1.0) == -1e-3

    with pytest.raises(StepSizeTooSmallError) as err:
        filter_step(1e-6, True, False, 1e-3, 1.0)

    assert err.value.bound == 1e-3
    assert err.value.value == 1e-6


def test_initial_step():

    y0 = np.array([1.0, 2.0])
    f0 = -y0
    scale = 1e-8 + 1e-8*np.abs(y0)
    y1, f1 = np.zeros((2,)), np.zeros((2,))

    h = compute_initial_step(decay, True, 13, scale, 0., y0, f0, y1, f1, 0., 10.)
    assert 0 < h <= 10.

    hb = compute_initial_step(decay, False, 13, scale, 0., y0, f0, y1, f1, 0., 10.)
    assert np.isclose(hb, -h)

    # bounded by the step limits
    h = compute_initial_step(decay, True, 13, scale, 0., y0, f0, y1, f1, 0.5, 10.)
    assert h == 0.5


def test_modified_midpoint_reference():

    y0 = np.array([1.0, 0.5])
    scale = np.ones((2,))
    h = 0.3

    for k in range(3):
        n = seq[k]
        f, y_middle, y_end, y_tmp = _workspace(k, 2)
        decay(0., y0, f[0])

        end = y_end
        assert try_step(decay, 0., y0, h, k, seq, scale, f, y_middle, y_end,
                        y_tmp, GBSConfig())
        assert y_end is end

        # plain modified midpoint with Gragg's final smoothing
        hs = h/n
        z = [y0, y0 - hs*y0]
        for j in range(1, n):
            z.append(z[j-1] - 2*hs*z[j])

        assert np.allclose(y_middle, z[n // 2], rtol=1e-14, atol=0)
        assert np.allclose(y_end, 0.5*(z[n-1] + z[n] - hs*z[n]), rtol=1e-14, atol=0)
