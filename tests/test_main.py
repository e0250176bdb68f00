import json

import numpy as np

from main import build_optimizer, main

from pid_autotune.config import TuningConfig
from pid_autotune.gains import PIDGains
from pid_autotune.genetic import GeneticAlgorithm
from pid_autotune.relay import RelayAutotuner
from pid_autotune.session import TuningSession
from pid_autotune.simulator import SimulatedRobot
from pid_autotune.visualization import TuningVisualizer


def test_build_optimizer_uses_loop_bounds():
    config = TuningConfig.from_dict({'session': {'loop': 'speed'}})
    session = TuningSession.create(SimulatedRobot(loop='speed'), config)
    optimizer = build_optimizer('ga', session, config)
    assert isinstance(optimizer, GeneticAlgorithm)
    assert optimizer.search_space.kp_max == 5.0
    assert isinstance(build_optimizer('relay', session, config), RelayAutotuner)


def test_main_relay_run(tmp_path):
    result = main(['--method', 'relay', '--output', str(tmp_path), '--log-level', 'WARNING'])

    assert result.termination == 'completed'
    data = json.loads((tmp_path / 'tuning_results.json').read_text())
    assert data['method'] == 'ZN'
    assert data['relay']['ku'] > 0
    assert data['baseline'] == {'kp': 8.0, 'ki': 0.5, 'kd': 0.4}
    assert (tmp_path / 'relay_oscillation.png').exists()
    assert (tmp_path / 'step_response.png').exists()


def test_main_small_genetic_run(tmp_path):
    config_path = tmp_path / 'tuning.yaml'
    config_path.write_text(
        "harness:\n"
        "  trial_duration_ms: 1000\n"
        "ga:\n"
        "  population_size: 4\n"
        "  generations: 2\n"
        "search_space:\n"
        "  kp_min: 0.5\n"
        "  kp_max: 10.0\n"
        "  kd_max: 1.0\n"
    )
    out = tmp_path / 'out'
    result = main(['--method', 'ga', '--config', str(config_path), '--seed', '3',
                   '--output', str(out), '--log-level', 'WARNING', '--apply-best'])

    assert result.succeeded
    assert result.evaluations == 7
    data = json.loads((out / 'tuning_results.json').read_text())
    assert data['best_fitness'] == result.best_fitness
    assert data['configuration']['seed'] == 3
    for name in ('convergence.png', 'trial_fitness.png', 'gain_map.png', 'step_response.png'):
        assert (out / name).exists()


def test_visualizer_writes_figures(tmp_path):
    viz = TuningVisualizer(output_dir=str(tmp_path / 'figs'))
    history = {
        'iterations': [1, 2, 3],
        'best_fitness': [np.inf, 4.0, 2.5],
        'evaluations': [1, 2, 3],
        'fitness': [np.inf, 4.0, 2.5],
        'gains': [np.array([1.0, 0.5, 0.1]), np.array([2.0, 0.5, 0.2]), np.array([3.0, 0.5, 0.3])],
    }
    viz.plot_convergence(history, method='GA')
    viz.plot_fitness_scatter(history)
    viz.plot_gain_map(history, best=PIDGains(3.0, 0.5, 0.3), baseline=PIDGains(1.0, 0.5, 0.1))
    t = np.linspace(0.0, 2.0, 201)
    samples = [(ti, 0.5 * np.sin(2 * np.pi * ti), 0.0) for ti in t]
    viz.plot_relay_oscillation(samples, peaks=[(0.25, 0.5)], valleys=[(0.75, -0.5)], ku=5.0, tu=1.0)
    viz.plot_step_responses({'Tuned': (t, 1 - np.exp(-t))}, setpoint=1.0)

    names = sorted(p.name for p in (tmp_path / 'figs').glob('*.png'))
    assert names == ['convergence.png', 'gain_map.png', 'relay_oscillation.png',
                     'step_response.png', 'trial_fitness.png']
