import numpy as np
import pandas as pd
import pytest

from moacs.archive import ParetoArchive, dominance_matrix, dominates, make_entry, non_dominated_front
from moacs.models import LIU_OBJECTIVES, OBJECTIVE_NAMES, ObjectiveVector, Solution


def _make_entry(key, power, migrations, names=LIU_OBJECTIVES):
    objectives = ObjectiveVector(power=power, carbon=power * 0.5, active_hosts=1, migrations=migrations, cost=0.0)
    return make_entry(Solution({key: 0}), objectives, names)


def _tradeoff(n):
    """n mutually non-dominated entries: power rises as migrations fall."""
    return [_make_entry(i, power=100.0 + 10 * i, migrations=n - i) for i in range(n)]


# ---------------------------------------------------------------------------
# Dominance
# ---------------------------------------------------------------------------

def test_dominates_needs_one_strict_improvement():
    assert dominates(np.array([1, 2]), np.array([1, 3]))
    assert not dominates(np.array([1, 2]), np.array([1, 2]))
    assert not dominates(np.array([1, 3]), np.array([2, 2]))


def test_dominance_matrix_matches_pairwise_checks():
    objectives = np.array([[1.0, 5.0], [2.0, 2.0], [3.0, 3.0], [1.0, 5.0]])
    matrix = dominance_matrix(objectives)
    for i in range(4):
        for j in range(4):
            assert matrix[i, j] == (i != j and dominates(objectives[i], objectives[j]))


def test_front_keeps_only_non_dominated_entries():
    entries = [_make_entry(1, 100, 3), _make_entry(2, 120, 1), _make_entry(3, 130, 3), _make_entry(4, 90, 5)]
    front = non_dominated_front(entries)
    assert [entry.solution for entry in front] == [Solution({1: 0}), Solution({2: 0}), Solution({4: 0})]


# ---------------------------------------------------------------------------
# Bounded archive
# ---------------------------------------------------------------------------

def test_add_batch_unions_and_drops_dominated_entries():
    archive = ParetoArchive(max_size=10, objective_names=LIU_OBJECTIVES, rng=np.random.default_rng(0))
    archive.add_batch([_make_entry(1, 100, 3), _make_entry(2, 120, 1)])
    archive.add_batch([_make_entry(3, 90, 2), _make_entry(1, 100, 3)])
    solutions = [entry.solution for entry in archive.entries]
    assert solutions == [Solution({2: 0}), Solution({3: 0})]


def test_every_archive_member_is_non_dominated():
    rng = np.random.default_rng(4)
    archive = ParetoArchive(max_size=50, objective_names=LIU_OBJECTIVES, rng=rng)
    for generation in range(5):
        batch = [_make_entry(generation * 20 + i, float(rng.integers(50, 150)), int(rng.integers(0, 10)))
                 for i in range(20)]
        archive.add_batch(batch)
    values = archive.objective_matrix()
    for i in range(len(values)):
        for j in range(len(values)):
            assert not dominates(values[i], values[j])


def test_prune_bounds_size_and_protects_extremes():
    archive = ParetoArchive(max_size=3, objective_names=LIU_OBJECTIVES, rng=np.random.default_rng(1))
    archive.add_batch(_tradeoff(6))
    assert archive.size == 3
    powers = [entry.objectives.power for entry in archive.entries]
    migrations = [entry.objectives.migrations for entry in archive.entries]
    assert 100.0 in powers
    assert 1 in migrations


def test_prune_is_skipped_when_extremes_fill_the_archive():
    archive = ParetoArchive(max_size=1, objective_names=LIU_OBJECTIVES, rng=np.random.default_rng(1))
    archive.add_batch(_tradeoff(3))
    assert archive.size == 3


def test_tied_minima_do_not_block_pruning():
    # pure placement: every entry has zero migrations, carbon and cost
    entries = [
        make_entry(Solution({i: 0}),
                   ObjectiveVector(power=100.0 + i, carbon=0.0, active_hosts=4 - i, migrations=0, cost=0.0))
        for i in range(4)
    ]
    archive = ParetoArchive(max_size=3, objective_names=OBJECTIVE_NAMES, rng=np.random.default_rng(2))
    archive.add_batch(entries)

    assert archive.size == 3
    assert 100.0 in [entry.objectives.power for entry in archive.entries]
    assert 1 in [entry.objectives.active_hosts for entry in archive.entries]


def test_clear_empties_the_archive():
    archive = ParetoArchive(max_size=5, objective_names=LIU_OBJECTIVES)
    archive.add(_make_entry(1, 100, 1))
    archive.clear()
    assert archive.is_empty


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def test_statistics_on_a_tradeoff_front():
    archive = ParetoArchive(max_size=10, objective_names=LIU_OBJECTIVES, rng=np.random.default_rng(0))
    archive.add_batch(_tradeoff(4))
    stats = archive.get_statistics()
    assert stats['archive_size'] == 4
    assert stats['objectives_min'] == [100.0, 1.0]
    assert stats['objectives_max'] == [130.0, 4.0]
    assert stats['tradeoff_correlation'] == pytest.approx(-1.0)
    assert stats['spread'] == pytest.approx(0.0)


def test_statistics_of_an_empty_archive():
    stats = ParetoArchive().get_statistics()
    assert stats['archive_size'] == 0
    assert stats['objectives_mean'] == []


def test_to_frame_lists_objectives_per_solution():
    archive = ParetoArchive(max_size=10, objective_names=LIU_OBJECTIVES, rng=np.random.default_rng(0))
    archive.add_batch(_tradeoff(2))
    frame = archive.to_frame()
    assert isinstance(frame, pd.DataFrame)
    assert list(frame.columns) == ['solution_id', 'num_vms', *OBJECTIVE_NAMES, 'assignment']
    assert frame['power'].tolist() == [100.0, 110.0]
    assert frame['assignment'].iloc[1] == {1: 0}
