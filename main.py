"""
Closed-Loop PID Autotuning Demo
===============================

Runs one tuning session against the simulated robot:

1. Loads the configuration (defaults, optional YAML file, CLI overrides)
2. Connects a session to the simulated device and captures the baseline
3. Runs the chosen optimizer (GA, PSO, relay Ziegler-Nichols or Bayesian)
4. Optionally applies the best gains to the device
5. Writes report figures and tuning_results.json
"""

import argparse
import asyncio
import json
import logging
import math
import time
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt

from pid_autotune.baseline import ParameterStore
from pid_autotune.bayesian import BayesianOptimizer
from pid_autotune.config import TuningConfig, load_config
from pid_autotune.genetic import GeneticAlgorithm
from pid_autotune.log import configure_logging
from pid_autotune.optimizer import TuningOptimizer, TuningResult
from pid_autotune.progress import FanoutSink, HistorySink, LoggingSink
from pid_autotune.pso import ParticleSwarm
from pid_autotune.relay import RelayAutotuner
from pid_autotune.session import TuningSession
from pid_autotune.simulator import SimulatedRobot
from pid_autotune.visualization import TuningVisualizer

logger = logging.getLogger('pid_autotune.main')

METHODS = ('ga', 'pso', 'relay', 'bayes')


def build_optimizer(method: str, session: TuningSession, config: TuningConfig) -> TuningOptimizer:
    space = config.resolved_search_space()
    if method == 'ga':
        return GeneticAlgorithm(session, space, config.ga, seed=config.seed)
    if method == 'pso':
        return ParticleSwarm(session, space, config.pso, seed=config.seed)
    if method == 'relay':
        return RelayAutotuner(session, space, config.relay, seed=config.seed)
    if method == 'bayes':
        return BayesianOptimizer(session, space, config.bayes, seed=config.seed)
    raise ValueError(f"Unknown method '{method}', expected one of {METHODS}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Closed-loop PID autotuning against a simulated robot")
    parser.add_argument('--method', choices=METHODS, default='ga', help="tuning method")
    parser.add_argument('--loop', choices=('balance', 'speed', 'position'), default=None,
                        help="control loop to tune (overrides the config file)")
    parser.add_argument('--config', type=Path, default=None, help="YAML configuration file")
    parser.add_argument('--seed', type=int, default=None, help="random seed")
    parser.add_argument('--output', type=Path, default=Path('figures'), help="output directory")
    parser.add_argument('--apply-best', action='store_true',
                        help="write the best gains to the device after a completed run")
    parser.add_argument('--log-level', default='INFO')
    parser.add_argument('--log-file', type=Path, default=None)
    return parser.parse_args(argv)


def _finite_or_none(value: float) -> Optional[float]:
    return float(value) if math.isfinite(value) else None


def main(argv=None) -> TuningResult:
    """Main tuning and reporting pipeline."""
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    overrides = {}
    if args.loop is not None:
        overrides['session'] = {'loop': args.loop}
    if args.seed is not None:
        overrides['seed'] = args.seed
    config = load_config(args.config, overrides)
    output_dir = args.output
    output_dir.mkdir(parents=True, exist_ok=True)

    print("=" * 70)
    print("  Closed-Loop PID Autotuning")
    print(f"  Method: {args.method.upper()}   Loop: {config.session.loop}")
    print("=" * 70)
    print()

    # Simulated device and session wiring
    robot = SimulatedRobot(
        loop=config.session.loop,
        trial_duration_s=config.harness.trial_duration_ms / 1000.0,
        seed=config.seed,
    )
    store = ParameterStore(robot)
    robot.sync_params()

    history = HistorySink()
    session = TuningSession.create(robot, config, store=store,
                                   sink=FanoutSink([LoggingSink(), history]))
    optimizer = build_optimizer(args.method, session, config)
    space = optimizer.search_space
    print(f"Search space: Kp [{space.kp_min}, {space.kp_max}], "
          f"Ki [{space.ki_min}, {space.ki_max}]{'' if space.search_ki else ' (held at baseline)'}, "
          f"Kd [{space.kd_min}, {space.kd_max}]")

    # Run
    start_time = time.time()
    result = asyncio.run(optimizer.run())
    elapsed = time.time() - start_time

    print("\n" + "=" * 70)
    print("  TUNING RESULT")
    print("=" * 70)
    print(f"Termination: {result.termination}" + (f" ({result.error})" if result.error else ""))
    print(f"Trials run:  {result.evaluations} in {elapsed:.1f} s")
    print(f"Baseline:    {session.baseline}")
    print(f"Best gains:  {result.best_gains}")
    if result.best_gains is not None and args.method != 'relay':
        print(f"Best fitness: {result.best_fitness:.4f}")
    if args.method == 'relay' and 'ku' in result.history:
        print(f"Ku={result.history['ku']:.4f}, Tu={result.history['tu']:.4f} s")

    if args.apply_best and result.succeeded:
        session.guard.apply(result.best_gains)
        print(f"Applied best gains to loop '{config.session.loop}'")

    # Figures
    print("\n" + "-" * 70)
    print("Generating figures...")
    viz = TuningVisualizer(output_dir=str(output_dir))
    if history.history['iterations']:
        viz.plot_convergence(history.history, method=result.method)
    if history.history['evaluations']:
        viz.plot_fitness_scatter(history.history)
        viz.plot_gain_map(history.history, best=result.best_gains, baseline=session.baseline)
    if args.method == 'relay' and result.history.get('samples'):
        viz.plot_relay_oscillation(
            result.history['samples'],
            peaks=result.history.get('peaks', ()),
            valleys=result.history.get('valleys', ()),
            ku=result.history.get('ku'),
            tu=result.history.get('tu'),
        )
    if result.best_gains is not None and session.baseline is not None:
        responses = {}
        for label, gains in (('Baseline', session.baseline), ('Tuned', result.best_gains)):
            t, y, fell = robot.simulate_step(gains)
            responses[label + (' (fell)' if fell else '')] = (t, y)
        viz.plot_step_responses(responses, setpoint=robot.setpoint)
    plt.close('all')

    # Save results to JSON
    results_data = {
        'method': result.method,
        'termination': result.termination,
        'error': result.error,
        'loop': config.session.loop,
        'baseline': session.baseline.as_dict() if session.baseline else None,
        'best_gains': result.best_gains.as_dict() if result.best_gains else None,
        'best_fitness': _finite_or_none(result.best_fitness),
        'evaluations': result.evaluations,
        'iterations': result.iterations,
        'elapsed_seconds': elapsed,
        'configuration': config.to_dict(),
    }
    if args.method == 'relay' and 'ku' in result.history:
        results_data['relay'] = {'ku': result.history['ku'], 'tu': result.history['tu']}
    with open(output_dir / 'tuning_results.json', 'w') as f:
        json.dump(results_data, f, indent=2)

    print("\nGenerated files:")
    for f in sorted(output_dir.glob("*.png")):
        print(f"  - {f.name}")
    print("  - tuning_results.json")

    return result


if __name__ == "__main__":
    main()
