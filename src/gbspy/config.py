import logging

from gbspy.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER = 2
DEFAULT_MAX_CHECKS = 1
DEFAULT_STABILITY_REDUCTION = 0.5

DEFAULT_STEP_CONTROL1 = 0.65
DEFAULT_STEP_CONTROL2 = 0.94
DEFAULT_STEP_CONTROL3 = 0.02
DEFAULT_STEP_CONTROL4 = 4.0

DEFAULT_MAX_ORDER = 18
DEFAULT_ORDER_CONTROL1 = 0.8
DEFAULT_ORDER_CONTROL2 = 0.9

DEFAULT_MUDIF = 4


def _bounded(name: str, value: float, lower: float, upper: float, default: float) -> float:
    """Return `value` if it lies within [lower, upper], `default` otherwise.

    Negative values are the conventional way of asking for the default and
    are replaced silently.
    """

    if lower <= value <= upper:
        return value

    if value >= 0:
        logger.warning("%s = %s outside of [%s, %s], using default %s",
                       name, value, lower, upper, default)
    return default


class GBSConfig:
    """Tuning parameters of the Gragg-Bulirsch-Stoer integrator.

    Every setter accepts out of range values (in particular -1) and
    replaces them with the default of the corresponding option, so a fresh
    instance holds the defaults of all options.
    """

    def __init__(self):
        self.set_stability_check(True)
        self.set_control_factors()
        self.set_order_control()
        self.set_interpolation_control(True)

    def set_stability_check(self, perform_test: bool, max_iter: int = -1,
                            max_checks: int = -1, stability_reduction: float = -1.0):
        """Set the stability check controls.

        The stability check is performed on the first few iterations of
        the extrapolation scheme. If this test fails, the step is rejected
        and the step size is reduced.

        Parameters
        ----------
        perform_test : bool
            If True, the stability check is performed.
        max_iter : int, optional
            Number of extrapolation levels checked, default 2.
        max_checks : int, optional
            Number of substeps checked in each level, default 1.
        stability_reduction : float, optional
            Step size reduction factor in case of failure, must lie
            within [1e-4, 0.9999], default 0.5.
        """

        self.perform_test = bool(perform_test)
        self.max_iter = DEFAULT_MAX_ITER if max_iter <= 0 else int(max_iter)
        self.max_checks = DEFAULT_MAX_CHECKS if max_checks <= 0 else int(max_checks)
        self.stability_reduction = _bounded("stability_reduction", stability_reduction,
                                            0.0001, 0.9999, DEFAULT_STABILITY_REDUCTION)

    def set_control_factors(self, control1: float = -1.0, control2: float = -1.0,
                            control3: float = -1.0, control4: float = -1.0):
        """Set the step size control factors.

        The new step size ``hNew`` is computed from the old one ``h`` by::

            hNew = h * stepControl2 / (err/stepControl1)^(1/(2k + 1))

        where `err` is the scaled error and `k` the iteration number of the
        extrapolation scheme (counting from 0). The default values are 0.65
        for stepControl1 and 0.94 for stepControl2.

        The step size is subject to the restriction::

            stepControl3^(1/(2k + 1))/stepControl4 <= hNew/h <= 1/stepControl3^(1/(2k + 1))

        The default values are 0.02 for stepControl3 and 4.0 for stepControl4.
        """

        self.step_control1 = _bounded("step_control1", control1, 0.0001, 0.9999,
                                      DEFAULT_STEP_CONTROL1)
        self.step_control2 = _bounded("step_control2", control2, 0.0001, 0.9999,
                                      DEFAULT_STEP_CONTROL2)
        self.step_control3 = _bounded("step_control3", control3, 0.0001, 0.9999,
                                      DEFAULT_STEP_CONTROL3)
        self.step_control4 = _bounded("step_control4", control4, 1.0001, 999.9,
                                      DEFAULT_STEP_CONTROL4)

    def set_order_control(self, max_order: int = -1, control1: float = -1.0,
                          control2: float = -1.0):
        """Set the order control parameters.

        The Gragg-Bulirsch-Stoer method changes both the step size and the
        order during integration, in order to minimize computation cost.
        Each extrapolation step increases the order by 2, so the maximal
        order that will be used is always even, it is twice the maximal
        number of columns in the extrapolation table.

        ::

            order is decreased if w(k - 1) <= w(k)   * orderControl1
            order is increased if w(k)     <= w(k - 1) * orderControl2

        where `w` is the table of work per unit step for each order
        (number of function calls divided by the step length).

        Parameters
        ----------
        max_order : int, optional
            Maximal order in the extrapolation table, must be even and
            larger than 6. Non-positive values select the default 18.
        control1, control2 : float, optional
            Order hysteresis thresholds, defaults 0.8 and 0.9.

        Raises
        ------
        ConfigurationError
            If `max_order` is positive but odd or not larger than 6.
        """

        if max_order <= 0:
            self.max_order = DEFAULT_MAX_ORDER
        elif max_order <= 6 or max_order % 2 != 0:
            raise ConfigurationError("maximal order {value} must be even and larger than {bound}",
                                     max_order, 6)
        else:
            self.max_order = int(max_order)

        self.order_control1 = _bounded("order_control1", control1, 0.0001, 0.9999,
                                       DEFAULT_ORDER_CONTROL1)
        self.order_control2 = _bounded("order_control2", control2, 0.0001, 0.9999,
                                       DEFAULT_ORDER_CONTROL2)

    def set_interpolation_control(self, use_interpolation_error: bool, mudif: int = -1):
        """Set the interpolation order control parameter.

        The dense output of a step accepted at level `k` fits
        ``mu = 2k - mudif + 3`` midpoint derivatives. The default value for
        `mudif` is 4 and the interpolation error is used in step size
        control by default.

        Parameters
        ----------
        use_interpolation_error : bool
            If True, interpolation error is used for step size control.
        mudif : int, optional
            Interpolation order control parameter, must lie within [1, 6].
        """

        self.use_interpolation_error = bool(use_interpolation_error)
        self.mudif = DEFAULT_MUDIF if (mudif <= 0 or mudif >= 7) else int(mudif)

    def __repr__(self):
        return ("GBSConfig(max_order={}, stability=({}, {}, {}, {}), "
                "step_control=({}, {}, {}, {}), order_control=({}, {}), "
                "interpolation=({}, {}))").format(
                    self.max_order, self.perform_test, self.max_iter, self.max_checks,
                    self.stability_reduction, self.step_control1, self.step_control2,
                    self.step_control3, self.step_control4, self.order_control1,
                    self.order_control2, self.use_interpolation_error, self.mudif)
