import pytest

from pid_autotune.config import (
    BayesianConfig, HarnessConfig, RelayConfig, TuningConfig, deep_merge, load_config,
)
from pid_autotune.gains import SearchSpace, ziegler_nichols_gains


def test_defaults():
    config = load_config()
    assert config.harness.metrics_timeout_ms() == 6500
    assert config.fitness.w_overshoot == 10.0
    assert config.ga.population_size == 20
    assert config.relay.min_cycles == 3
    assert config.bayes.acquisition == 'ei'
    assert config.resolved_search_space() == SearchSpace.for_loop('balance')


def test_yaml_overrides(tmp_path):
    path = tmp_path / "tuning.yaml"
    path.write_text(
        "seed: 7\n"
        "session:\n"
        "  loop: speed\n"
        "ga:\n"
        "  population_size: 6\n"
        "harness:\n"
        "  trial_duration_ms: 2000\n"
    )
    config = load_config(path, overrides={'ga': {'generations': 3}})

    assert config.seed == 7
    assert config.ga.population_size == 6
    assert config.ga.generations == 3
    assert config.harness.metrics_timeout_ms() == 3500
    space = config.resolved_search_space()
    assert (space.kp_min, space.kp_max) == (0.01, 5.0)
    assert not space.search_ki


def test_explicit_search_space():
    config = TuningConfig.from_dict({'search_space': {'kp_max': 20.0, 'search_ki': True}})
    space = config.resolved_search_space()
    assert space.kp_max == 20.0
    assert space.search_ki


def test_unknown_section_or_key_rejected():
    with pytest.raises(ValueError, match="section"):
        TuningConfig.from_dict({'nsga': {}})
    with pytest.raises(ValueError, match="population"):
        TuningConfig.from_dict({'ga': {'populations': 3}})


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_invalid_values_rejected():
    with pytest.raises(ValueError):
        BayesianConfig(acquisition='thompson')
    with pytest.raises(ValueError):
        HarnessConfig(missing_metrics='ignore')
    with pytest.raises(ValueError):
        SearchSpace(kp_min=5.0, kp_max=1.0)
    with pytest.raises(ValueError):
        SearchSpace.for_loop('yaw')


def test_deep_merge_keeps_nested_keys():
    merged = deep_merge({'ga': {'population_size': 4, 'generations': 2}},
                       {'ga': {'generations': 5}, 'seed': 1})
    assert merged == {'ga': {'population_size': 4, 'generations': 5}, 'seed': 1}


def test_ziegler_nichols_rule():
    gains = ziegler_nichols_gains(10.0, 0.5)
    assert gains.kp == pytest.approx(6.0)
    assert gains.ki == pytest.approx(24.0)
    assert gains.kd == pytest.approx(0.375)
    with pytest.raises(ValueError):
        ziegler_nichols_gains(10.0, 0.0)


@pytest.mark.parametrize("values", [{'min_cycles': 1}, {'min_cycles': 0}, {'amplitude': 0.0}])
def test_relay_config_rejects_unusable_experiments(values):
    with pytest.raises(ValueError):
        RelayConfig(**values)
    with pytest.raises(ValueError):
        TuningConfig.from_dict({'relay': values})
