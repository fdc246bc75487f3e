import numpy as np

from moacs.archive import make_entry
from moacs.models import LIU_OBJECTIVES, ObjectiveVector, Solution
from moacs.selection import (
    knee_point,
    knee_scores,
    minimum_power,
    minimum_power_then_migrations,
    normalize_objectives,
)


def _make_entry(key, power, migrations):
    objectives = ObjectiveVector(power=power, carbon=0.0, active_hosts=1, migrations=migrations, cost=0.0)
    return make_entry(Solution({key: 0}), objectives, LIU_OBJECTIVES)


def test_normalize_maps_columns_to_unit_range():
    normalized = normalize_objectives(np.array([[0.0, 5.0], [10.0, 5.0], [5.0, 5.0]]))
    np.testing.assert_allclose(normalized[:, 0], [0.0, 1.0, 0.5])
    # no spread -> 0
    np.testing.assert_allclose(normalized[:, 1], [0.0, 0.0, 0.0])


def test_knee_point_prefers_the_balanced_solution():
    entries = [_make_entry(1, 0.0, 10), _make_entry(2, 5.0, 5), _make_entry(3, 10.0, 0)]
    np.testing.assert_allclose(knee_scores(np.vstack([e.values for e in entries])), [0.0, 0.25, 0.0])
    assert knee_point(entries) is entries[1]


def test_knee_point_of_a_single_candidate():
    entry = _make_entry(1, 200.0, 2)
    assert knee_point([entry]) is entry
    assert knee_point([]) is None


def test_minimum_power_takes_the_first_on_a_tie():
    entries = [_make_entry(1, 150.0, 3), _make_entry(2, 120.0, 4), _make_entry(3, 120.0, 1)]
    assert minimum_power(entries) is entries[1]
    assert minimum_power([]) is None


def test_minimum_power_breaks_ties_by_migrations():
    entries = [_make_entry(1, 150.0, 3), _make_entry(2, 120.0, 4), _make_entry(3, 120.0, 1)]
    assert minimum_power_then_migrations(entries) is entries[2]
    assert minimum_power_then_migrations([]) is None
