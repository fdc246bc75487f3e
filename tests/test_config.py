import pytest

from moacs.config import OptimizerConfig
from moacs.errors import ConfigurationError, MoacsError
from moacs.policies import LIU2016, LIU2017, OUR_ACS, NoCandidateFallback, resolve_policy


# ---------------------------------------------------------------------------
# OptimizerConfig
# ---------------------------------------------------------------------------

def test_defaults_are_valid():
    config = OptimizerConfig()
    assert config.generations == 50
    assert config.ants == 10
    assert config.q0 == 0.9
    assert config.over_utilization_threshold == 0.9


@pytest.mark.parametrize("changes", [
    {"q0": 1.5},
    {"q0": -0.1},
    {"beta": 0.0},
    {"local_decay": 0.0},
    {"global_decay": 1.0},
    {"over_utilization_threshold": 0.0},
    {"over_utilization_threshold": 1.2},
    {"under_utilization_threshold": 0.95},
    {"generations": 0},
    {"ants": 0},
    {"archive_size": 0},
    {"time_budget_s": -1.0},
])
def test_out_of_range_values_are_rejected(changes):
    with pytest.raises(ConfigurationError):
        OptimizerConfig(**changes)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        OptimizerConfig(q0=2.0)
    assert issubclass(ConfigurationError, MoacsError)


def test_replace_validates_and_keeps_the_original():
    config = OptimizerConfig(seed=3)
    changed = config.replace(ants=4)
    assert changed.ants == 4 and changed.seed == 3
    assert config.ants == 10
    with pytest.raises(ConfigurationError):
        config.replace(q0=3.0)


# ---------------------------------------------------------------------------
# Policy selection
# ---------------------------------------------------------------------------

def test_policies_resolve_by_name():
    assert resolve_policy("liu2016") is LIU2016
    assert resolve_policy("LIU2017") is LIU2017
    assert resolve_policy(OUR_ACS) is OUR_ACS


def test_unknown_policy_name_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        resolve_policy("aco-classic")


def test_fallback_can_be_swapped_on_any_policy():
    widened = resolve_policy("liu2016", fallback="widen_candidates")
    assert widened.fallback is NoCandidateFallback.WIDEN_CANDIDATES
    assert widened.heuristic is LIU2016.heuristic
    overloading = resolve_policy(LIU2017, fallback=NoCandidateFallback.OVERLOAD_HOST)
    assert overloading.fallback is NoCandidateFallback.OVERLOAD_HOST
    assert LIU2017.fallback is NoCandidateFallback.WIDEN_CANDIDATES

    with pytest.raises(ConfigurationError):
        resolve_policy("liu2016", fallback="give_up")
