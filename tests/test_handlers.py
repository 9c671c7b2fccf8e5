import numpy as np
import pytest

from gbspy import (ContinuousOutputModel, GraggBulirschStoerIntegrator, NormalizerBounds,
                   NormalizerMode, StepNormalizer, TimeSampler)


def decay(t, y):
    return -y

def oscillator(t, y):
    return np.array([y[1], -y[0]])


class Recorder:

    def __init__(self):
        self.init(0., None, 0.)

    def init(self, t0, y0, t):
        self.t = []
        self.y = []
        self.y_dot = []
        self.last = []

    def handle_step(self, t, y, y_dot, is_last):
        self.t.append(t)
        self.y.append(y[0])
        self.y_dot.append(y_dot[0])
        self.last.append(is_last)


def normalized(t0, tf, h, mode, bounds):

    recorder = Recorder()

    integrator = GraggBulirschStoerIntegrator(0., 0.3, 1e-10, 1e-10)
    integrator.add_step_handler(StepNormalizer(h, recorder, mode, bounds))
    integrator.integrate(decay, t0, np.array([np.exp(-t0)]), tf)

    assert recorder.last[-1]
    assert not any(recorder.last[:-1])

    assert np.allclose(recorder.y, np.exp(-np.array(recorder.t)), rtol=0, atol=1e-8)
    assert np.allclose(recorder.y_dot, -np.exp(-np.array(recorder.t)), rtol=0, atol=1e-7)

    return recorder.t


def test_normalizer_increment():

    t = normalized(0., 1., 0.25, NormalizerMode.INCREMENT, NormalizerBounds.BOTH)
    assert np.allclose(t, [0., 0.25, 0.5, 0.75, 1.])

    t = normalized(0., 1., 0.25, NormalizerMode.INCREMENT, NormalizerBounds.NEITHER)
    assert np.allclose(t, [0.25, 0.5, 0.75, 1.])

    # the sign of the step is irrelevant
    t = normalized(1., 0., 0.25, NormalizerMode.INCREMENT, NormalizerBounds.BOTH)
    assert np.allclose(t, [1., 0.75, 0.5, 0.25, 0.])


def test_normalizer_multiples():

    t = normalized(0.1, 1.1, 0.25, NormalizerMode.MULTIPLES, NormalizerBounds.BOTH)
    assert np.allclose(t, [0.1, 0.25, 0.5, 0.75, 1., 1.1])

    t = normalized(0.1, 1.1, 0.25, NormalizerMode.MULTIPLES, NormalizerBounds.FIRST)
    assert np.allclose(t, [0.1, 0.25, 0.5, 0.75, 1.])

    t = normalized(0.1, 1.1, -0.25, NormalizerMode.MULTIPLES, NormalizerBounds.LAST)
    assert np.allclose(t, [0.25, 0.5, 0.75, 1., 1.1])

    t = normalized(1.1, 0.1, 0.25, NormalizerMode.MULTIPLES, NormalizerBounds.BOTH)
    assert np.allclose(t, [1.1, 1., 0.75, 0.5, 0.25, 0.1])


def test_bounds():

    assert NormalizerBounds.BOTH.first_included
    assert NormalizerBounds.BOTH.last_included
    assert NormalizerBounds.FIRST.first_included
    assert not NormalizerBounds.FIRST.last_included
    assert not NormalizerBounds.NEITHER.first_included


@pytest.mark.parametrize("t0, tf", [(0., 2*np.pi), (2*np.pi, 0.)])
def test_continuous_output(t0, tf):

    model = ContinuousOutputModel()

    integrator = GraggBulirschStoerIntegrator(0., 0.5, 1e-10, 1e-10)
    integrator.add_step_handler(model)
    integrator.integrate(oscillator, t0, np.array([np.cos(t0), -np.sin(t0)]), tf)

    assert len(model.steps) > 1
    assert model.initial_time == t0
    assert np.isclose(model.final_time, tf)

    for t in np.linspace(0, 2*np.pi, 37):
        y, y_dot = model.interpolate(t)
        assert np.allclose(y, [np.cos(t), -np.sin(t)], rtol=0, atol=1e-7)
        assert np.allclose(y_dot, [-np.sin(t), -np.cos(t)], rtol=0, atol=1e-6)


def test_continuous_output_empty():

    with pytest.raises(ValueError):
        ContinuousOutputModel().interpolate(0.)


def test_time_sampler():

    times = np.linspace(0., 5., 11)
    sampler = TimeSampler(times)

    integrator = GraggBulirschStoerIntegrator(0., 1., 1e-10, 1e-10)
    integrator.add_step_handler(sampler)
    integrator.integrate(decay, 0., np.array([1.]), 5.)

    assert np.array_equal(sampler.t, times)
    assert sampler.y.shape == (11, 1)
    assert np.allclose(sampler.y[:, 0], np.exp(-times), rtol=0, atol=1e-8)

    # samples beyond the integration end are left out
    sampler = TimeSampler(times)
    integrator.clear_step_handlers()
    integrator.add_step_handler(sampler)
    integrator.integrate(decay, 0., np.array([1.]), 2.2)

    assert np.array_equal(sampler.t, times[:5])
