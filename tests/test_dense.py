import numpy as np

from gbspy.dense import (GBSStepInterpolator, compute_coefficients, error_factors,
                         estimate_error, evaluate)


def poly_step(p, h=1.0, mu=1):
    """Dense output data of the exact solution y = t**p over [0, h]."""

    y0 = np.array([0.])
    y0_dot = np.array([0.])
    y1 = np.array([h**p])
    y1_dot = np.array([p*h**(p-1)])

    # scaled derivatives at the middle of the step
    y_mid_dots = np.zeros((mu + 1, 1))
    coeff, power = 1.0, p
    for j in range(mu + 1):
        y_mid_dots[j, 0] = h**j*coeff*(0.5*h)**power
        coeff *= power
        power -= 1

    return y0, y0_dot, y1, y1_dot, y_mid_dots


def test_polynomial_reproduction():

    for p, mu in [(5, 1), (6, 2)]:
        y0, y0_dot, y1, y1_dot, y_mid_dots = poly_step(p, mu=mu)
        polynomials = np.zeros((mu + 5, 1))

        degree = compute_coefficients(mu, 1.0, y0, y0_dot, y1, y1_dot, y_mid_dots,
                                      polynomials)
        assert degree == mu + 4

        for theta in np.linspace(0., 1., 11):
            y, y_dot = evaluate(theta, 1.0, polynomials, degree, y1, y_mid_dots[1])

            assert np.isclose(y[0], theta**p, rtol=0, atol=1e-13)
            assert np.isclose(y_dot[0], p*theta**(p-1), rtol=0, atol=1e-12)


def test_endpoints():

    rng = np.random.default_rng(42)
    h, mu = 0.3, 4

    y0, y0_dot, y1, y1_dot = rng.standard_normal((4, 3))
    y_mid_dots = rng.standard_normal((mu + 1, 3))
    polynomials = np.zeros((mu + 5, 3))

    degree = compute_coefficients(mu, h, y0, y0_dot, y1, y1_dot, y_mid_dots, polynomials)

    y, y_dot = evaluate(0., h, polynomials, degree, y1, y_mid_dots[1])
    assert np.array_equal(y, y0)
    assert np.allclose(y_dot, y0_dot, rtol=1e-12, atol=1e-12)

    y, y_dot = evaluate(1., h, polynomials, degree, y1, y_mid_dots[1])
    assert np.array_equal(y, y1)
    assert np.allclose(y_dot, y1_dot, rtol=1e-12, atol=1e-12)


def test_hermite_fallback():

    y0, y0_dot, y1, y1_dot, y_mid_dots = poly_step(3, h=2.0, mu=0)
    polynomials = np.zeros((5, 1))

    degree = compute_coefficients(-1, 2.0, y0, y0_dot, y1, y1_dot, y_mid_dots, polynomials)
    assert degree == 3

    # cubic Hermite interpolation is exact for cubics
    y, y_dot = evaluate(0.25, 2.0, polynomials, degree, y1, np.zeros((1,)))
    assert np.isclose(y[0], 0.5**3)
    assert np.isclose(y_dot[0], 3*0.5**2)


def test_zero_step():

    y0, y0_dot, y1, y1_dot, y_mid_dots = poly_step(5, h=0.0, mu=1)
    y_mid_dots[1] = 7.0
    polynomials = np.zeros((6, 1))

    degree = compute_coefficients(1, 0.0, y0, y0_dot, y1, y1_dot, y_mid_dots, polynomials)
    y, y_dot = evaluate(0.5, 0.0, polynomials, degree, y1, y_mid_dots[1])

    assert not np.any(np.isnan(y))
    assert not np.any(np.isnan(y_dot))
    assert y_dot[0] == 7.0


def test_error_factors():

    errfac = error_factors(12)

    assert errfac.shape[0] == 8
    assert np.all(errfac > 0)
    assert np.all(np.diff(errfac) < 0)
    assert np.isclose(errfac[0], 1/25*0.5*np.sqrt(1/5))

    assert error_factors(4).shape[0] == 0


def test_estimate_error():

    errfac = error_factors(10)
    polynomials = np.zeros((11, 2))
    polynomials[6] = [3., 4.]
    scale = np.array([1., 2.])

    assert estimate_error(polynomials, 4, scale, errfac) == 0.
    assert np.isclose(estimate_error(polynomials, 6, scale, errfac),
                      np.sqrt((9 + 4)/2)*errfac[1])


def test_step_interpolator():

    y0, y0_dot, y1, y1_dot, y_mid_dots = poly_step(5, h=2.0, mu=1)
    y = y0.copy()

    interpolator = GBSStepInterpolator(y, y0_dot, y1, y1_dot, y_mid_dots, True)
    interpolator.store_time(1.)
    interpolator.shift()
    interpolator.store_time(3.)
    interpolator.compute_coefficients(1, 2.)

    assert interpolator.previous_time == 1.
    assert interpolator.current_time == 3.
    assert interpolator.is_forward
    assert interpolator.degree == 5

    state, derivatives = interpolator.interpolate(2.5)
    assert np.isclose(state[0], 1.5**5)
    assert np.isclose(derivatives[0], 5*1.5**4)

    interpolator.interpolated_time = 3.
    assert np.array_equal(interpolator.interpolated_state, y1)

    # the snapshot does not follow the shared arrays
    snapshot = interpolator.copy()
    y1[:] = 0.
    y[:] = 10.
    interpolator.compute_coefficients(1, 2.)

    assert np.isclose(snapshot.interpolate(2.5)[0][0], 1.5**5)
    assert snapshot.interpolate(3.)[0][0] == 2.**5
    assert snapshot.current_time == 3.

    # soft bounds do not change the polynomial
    snapshot.current_time = 2.
    assert snapshot.current_time == 2.
    assert np.isclose(snapshot.interpolate(2.5)[0][0], 1.5**5)
