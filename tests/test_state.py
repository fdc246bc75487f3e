import pytest

from moacs.errors import StateBusyError
from moacs.pheromone import PheromoneShape, PheromoneStore
from moacs.state import OptimizerState


def _make_store():
    return PheromoneStore.initialize(PheromoneShape.VM_HOST, [1, 2], [10, 11], size=2)


def test_new_state_is_cold():
    state = OptimizerState.create("dc-1")
    assert state.name == "dc-1"
    assert not state.is_warm
    assert not state.in_session
    assert state.sessions == 0


def test_only_one_session_at_a_time():
    state = OptimizerState.create()
    state.begin_session()
    assert state.in_session
    with pytest.raises(StateBusyError):
        state.begin_session()
    state.end_session()
    assert not state.in_session
    state.begin_session()
    state.end_session()
    assert state.sessions == 2


def test_end_session_records_warm_start_data():
    state = OptimizerState.create()
    store = _make_store()
    state.begin_session()
    state.end_session(store, {1: 10, 2: 11})
    assert state.is_warm
    assert state.last_trails is store
    assert state.last_placement == {1: 10, 2: 11}


def test_end_session_without_a_placement_keeps_the_previous_one():
    state = OptimizerState.create()
    state.warm_start(_make_store(), {1: 10})
    state.begin_session()
    state.end_session(_make_store(), None)
    assert state.last_placement == {1: 10}


def test_reset_forgets_everything():
    state = OptimizerState.create()
    state.warm_start(_make_store(), {1: 10})
    assert state.is_warm
    state.reset()
    assert not state.is_warm
    assert state.last_trails is None
    assert state.last_placement == {}
