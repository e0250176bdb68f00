import asyncio

import numpy as np
import pytest

from conftest import AutoResume, FakeDevice, bowl, emergency, make_session, nack

from pid_autotune.bayesian import (
    BayesianOptimizer, expected_improvement, probability_of_improvement,
    upper_confidence_bound,
)
from pid_autotune.config import BayesianConfig
from pid_autotune.gains import SearchSpace
from pid_autotune.progress import (
    BaselineRestoredEvent, FanoutSink, HistorySink, IterationEvent, SurrogateEvent,
    TerminationEvent,
)
from pid_autotune.surrogate import GaussianProcessSurrogate, NeuralSurrogate, make_surrogate

SPACE = SearchSpace(kp_min=0.0, kp_max=10.0, ki_min=0.0, ki_max=1.0,
                    kd_min=0.0, kd_max=2.0, search_ki=True)


def build(device, config, space=SPACE, surrogate=None):
    history = HistorySink()
    session = make_session(device, sink=history)
    optimizer = BayesianOptimizer(session, search_space=space, config=config,
                                  surrogate=surrogate, seed=0)
    return optimizer, session, history


def test_acquisition_functions():
    mu = np.array([1.0, 2.0, 3.0])
    np.testing.assert_allclose(expected_improvement(mu, best=2.0, xi=0.0), [1.0, 0.0, 0.0])
    np.testing.assert_allclose(upper_confidence_bound(mu, kappa=2.0), [1.0, 0.0, -1.0])
    np.testing.assert_allclose(upper_confidence_bound(mu, np.zeros(3)), -mu)
    np.testing.assert_allclose(probability_of_improvement(mu, best=2.0), [1.0, 0.0, 0.0])
    pi = probability_of_improvement(np.array([2.0]), best=2.0, xi=0.0, sigma=np.array([1.0]))
    assert pi[0] == pytest.approx(0.5)


def test_candidate_grid_sizes():
    device = FakeDevice()
    optimizer, session, _ = build(device, BayesianConfig(grid_size=8))
    grid = optimizer.candidate_grid()
    assert grid.shape == (512, 3)
    assert grid.min(axis=0).tolist() == [0.0, 0.0, 0.0]
    assert grid.max(axis=0).tolist() == [10.0, 1.0, 2.0]

    fixed_space = SearchSpace(kp_min=0.0, kp_max=10.0, ki_min=0.0, ki_max=1.0,
                              kd_min=0.0, kd_max=2.0)
    optimizer, session, _ = build(device, BayesianConfig(grid_size=8), space=fixed_space)
    session.start()
    grid = optimizer.candidate_grid()
    assert grid.shape == (64, 3)
    assert set(grid[:, 1]) == {0.5}


def test_gaussian_process_run():
    device = FakeDevice(default=bowl)
    config = BayesianConfig(initial_samples=3, iterations=4, grid_size=4)
    optimizer, _, history = build(device, config)

    result = asyncio.run(optimizer.run())

    assert result.termination == 'completed'
    assert len(device.trials) == 7
    for trial in device.trials:
        assert SPACE.contains([trial['kp'], trial['ki'], trial['kd']])
    assert result.history['sources'] == ['random'] * 3 + ['acquisition'] * 4
    assert history.of_type(SurrogateEvent)[-1].trained
    assert len(history.of_type(IterationEvent)) == 4
    assert result.best_fitness == min(result.history['fitness'])


def test_baseline_is_observed_first():
    device = FakeDevice(default=bowl)
    config = BayesianConfig(initial_samples=2, iterations=1, grid_size=3, include_baseline=True)
    optimizer, _, _ = build(device, config)

    result = asyncio.run(optimizer.run())

    assert device.gains_of(0) == (10.0, 0.5, 1.0)
    assert result.history['sources'][0] == 'baseline'
    assert len(device.trials) == 4


def test_surrogate_never_trains_without_scored_samples():
    device = FakeDevice(default=nack)
    config = BayesianConfig(initial_samples=2, iterations=3, grid_size=3)
    optimizer, _, history = build(device, config)

    result = asyncio.run(optimizer.run())

    assert result.termination == 'completed'
    assert result.best_gains is None
    assert not any(e.trained for e in history.of_type(SurrogateEvent))
    assert len(device.trials) == 5


def test_surrogate_error_fails_the_run_and_restores():
    class BrokenSurrogate:
        def fit(self, X, y):
            raise RuntimeError("singular matrix")

        def predict(self, X):
            return np.zeros(len(X))

    device = FakeDevice(default=bowl)
    config = BayesianConfig(initial_samples=2, iterations=3, grid_size=3)
    optimizer, _, history = build(device, config, surrogate=BrokenSurrogate())

    result = asyncio.run(optimizer.run())

    assert result.termination == 'failed'
    assert "RuntimeError" in result.error
    assert result.best_gains is not None
    assert len(history.of_type(TerminationEvent)) == 1
    assert [e.reason for e in history.of_type(BaselineRestoredEvent)] == ['finished']


def test_neural_surrogate_run():
    device = FakeDevice(default=bowl)
    config = BayesianConfig(initial_samples=3, iterations=2, grid_size=3, surrogate='mlp')
    optimizer, _, _ = build(device, config)

    result = asyncio.run(optimizer.run())

    assert isinstance(optimizer.surrogate, NeuralSurrogate)
    assert result.termination == 'completed'
    assert len(device.trials) == 5


def test_make_surrogate():
    assert isinstance(make_surrogate('gp', seed=1), GaussianProcessSurrogate)
    with pytest.raises(ValueError):
        make_surrogate('forest')


def test_gaussian_process_reports_uncertainty():
    surrogate = GaussianProcessSurrogate(seed=0)
    X = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0], [0.5, 0.5, 0.5]])
    surrogate.fit(X, np.array([1.0, 3.0, 2.0]))
    std = surrogate.predict_std(np.array([[0.5, 0.5, 0.5], [0.0, 1.0, 0.0]]))
    assert surrogate.is_trained
    assert std.shape == (2,)
    assert np.all(std >= 0)


def test_emergency_retries_the_same_candidate():
    device = FakeDevice(default=bowl, script=[bowl, emergency])
    history = HistorySink()
    fanout = FanoutSink([history])
    session = make_session(device, sink=fanout)
    fanout.sinks.append(AutoResume(session))
    config = BayesianConfig(initial_samples=2, iterations=1, grid_size=3)
    optimizer = BayesianOptimizer(session, search_space=SPACE, config=config, seed=0)

    result = asyncio.run(optimizer.run())

    assert result.termination == 'completed'
    assert len(device.trials) == 4
    assert device.gains_of(1) == device.gains_of(2)
    # only the retried outcome is recorded
    assert len(result.history['fitness']) == 3
    assert [r.reason for r in history.of_type(BaselineRestoredEvent)] == [
        'emergency_interrupt', 'finished']
