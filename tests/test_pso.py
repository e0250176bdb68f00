import asyncio

import numpy as np

from conftest import AutoResume, FakeDevice, bowl, emergency, make_session, nack

from pid_autotune.config import PSOConfig
from pid_autotune.gains import SearchSpace
from pid_autotune.progress import (
    BaselineRestoredEvent, EvaluationEvent, FanoutSink, HistorySink, IterationEvent,
)
from pid_autotune.pso import Particle, ParticleSwarm

SPACE = SearchSpace(kp_min=0.0, kp_max=10.0, ki_min=0.0, ki_max=1.0,
                    kd_min=0.0, kd_max=2.0, search_ki=True)


def build(device, config, space=SPACE, seed=0):
    history = HistorySink()
    session = make_session(device, sink=history)
    return ParticleSwarm(session, search_space=space, config=config, seed=seed), session, history


def test_swarm_stays_in_bounds_and_best_never_regresses():
    device = FakeDevice(default=bowl)
    pso, _, history = build(device, PSOConfig(num_particles=6, iterations=5))

    result = asyncio.run(pso.run())

    assert result.termination == 'completed'
    assert len(device.trials) == 30
    for trial in device.trials:
        assert SPACE.contains([trial['kp'], trial['ki'], trial['kd']])
    best = [e.best_fitness for e in history.of_type(IterationEvent)]
    assert len(best) == 5
    assert all(b2 <= b1 for b1, b2 in zip(best, best[1:]))
    assert result.best_fitness == min(e.fitness for e in history.of_type(EvaluationEvent))
    assert len(result.history['positions']) == 5


def test_particles_hold_position_until_a_global_best_exists():
    device = FakeDevice(default=nack)
    pso, _, _ = build(device, PSOConfig(num_particles=3, iterations=2))

    result = asyncio.run(pso.run())

    assert result.best_gains is None
    assert result.termination == 'completed'
    first, second = result.history['positions']
    np.testing.assert_array_equal(first, second)
    assert len(device.trials) == 6


def test_velocity_is_clamped_to_fraction_of_range():
    device = FakeDevice()
    pso, session, _ = build(device, PSOConfig(velocity_clamp=0.2, inertia_weight=1.0))
    session.start()
    pso.best_genes = np.array([10.0, 1.0, 2.0])
    particle = Particle(position=np.zeros(3), velocity=np.array([5.0, 5.0, 5.0]))

    pso.update_particle(particle)

    np.testing.assert_allclose(particle.velocity, [2.0, 0.2, 0.4])
    np.testing.assert_allclose(particle.position, [2.0, 0.2, 0.4])


def test_fixed_ki_is_held_at_baseline():
    device = FakeDevice(default=bowl)
    space = SearchSpace(kp_min=0.0, kp_max=10.0, ki_min=0.0, ki_max=1.0, kd_min=0.0, kd_max=2.0)
    pso, _, _ = build(device, PSOConfig(num_particles=4, iterations=3), space=space)

    asyncio.run(pso.run())

    assert {trial['ki'] for trial in device.trials} == {0.5}


def test_emergency_retries_the_same_particle():
    device = FakeDevice(default=bowl, script=[bowl, emergency])
    history = HistorySink()
    fanout = FanoutSink([history])
    session = make_session(device, sink=fanout)
    fanout.sinks.append(AutoResume(session))
    pso = ParticleSwarm(session, search_space=SPACE,
                        config=PSOConfig(num_particles=2, iterations=1), seed=0)

    result = asyncio.run(pso.run())

    assert result.termination == 'completed'
    assert len(device.trials) == 3
    assert device.gains_of(1) == device.gains_of(2)
    assert [r.reason for r in history.of_type(BaselineRestoredEvent)] == [
        'emergency_interrupt', 'finished']
    assert np.isfinite(result.best_fitness)
