import pytest

from moacs.errors import InvariantViolationError
from moacs.models import Host, Solution, Vm
from moacs.resources import ResourceModel, round_utilization


def _make_vm(vm_id, pes=1, ram_gb=1.0, created=False, host_id=None, cpu_usage=1.0, ram_usage=1.0, mips=1000):
    return Vm(vm_id=vm_id, pes=pes, mips=mips, ram=ram_gb * 1024, created=created, host_id=host_id,
              cpu_usage=cpu_usage, ram_usage=ram_usage)


def _make_host(host_id, pes=4, ram_gb=4.0, vm_ids=(), mips=1000):
    return Host(host_id=host_id, pes=pes, mips=mips, ram=ram_gb * 1024, vm_ids=tuple(vm_ids))


# ---------------------------------------------------------------------------
# Availability and utilization
# ---------------------------------------------------------------------------

def test_available_resources_are_signed():
    model = ResourceModel([_make_host(0)], [_make_vm(1, pes=3, ram_gb=2), _make_vm(2, pes=2, ram_gb=1)])
    free = model.available(0, [1, 2])
    assert free.pes == -1
    assert free.ram == 1024
    assert free.mips == -1000
    assert free.violated
    assert model.available_pes(0, [1]) == 1
    assert model.available_ram(0, [1]) == 2048
    assert not model.available(0, [1]).violated


def test_utilization_uses_threshold_reservation_for_pending_vms():
    model = ResourceModel([_make_host(0)], [_make_vm(1, pes=2, ram_gb=2)])
    cpu, ram = model.utilization(0, [1])
    assert cpu == 0.45
    assert ram == 0.45


def test_utilization_uses_actual_usage_for_running_vms():
    vm = _make_vm(1, pes=2, ram_gb=2, created=True, host_id=0, cpu_usage=0.5, ram_usage=0.25)
    model = ResourceModel([_make_host(0, vm_ids=[1])], [vm])
    assert model.utilization(0, [1]) == (0.25, 0.125)
    assert model.cpu_utilization(0) == 0.25


def test_utilization_is_rounded():
    assert round_utilization(0.123456) == 0.1235
    model = ResourceModel([_make_host(0, pes=3)], [_make_vm(1)])
    assert model.utilization(0, [1])[0] == 0.3


def test_utilization_outside_unit_range_is_an_invariant_violation():
    # one core faster than the whole host
    vm = _make_vm(1, created=True, host_id=0, mips=3000)
    model = ResourceModel([_make_host(0, pes=1, vm_ids=[1])], [vm])
    with pytest.raises(InvariantViolationError) as err:
        model.utilization(0, [1])
    assert err.value.context["host_id"] == 0
    assert err.value.as_result().context == {"host_id": 0}
    assert model.raw_utilization(0, [1])[0] == 3.0


# ---------------------------------------------------------------------------
# Overload and suitability
# ---------------------------------------------------------------------------

def test_overload_on_threshold_or_capacity():
    vms = [_make_vm(1, pes=4, ram_gb=2), _make_vm(2, pes=1, ram_gb=1),
           _make_vm(3, pes=1, ram_gb=4, created=True, host_id=0, cpu_usage=0.1, ram_usage=0.95)]
    model = ResourceModel([_make_host(0)], vms)
    # 4 pending cores reserve exactly 90%: not above the threshold
    assert not model.is_overloaded(0, [1])
    # 5 cores on a 4-core host
    assert model.is_overloaded(0, [1, 2])
    # RAM above 90%
    assert model.is_overloaded(0, [3])
    assert model.is_suitable(0, [2], 1) is False
    assert model.is_suitable(0, [], 2)


def test_occupancy_of_moves_requested_and_reassigned_vms():
    vms = [_make_vm(1, created=True, host_id=0), _make_vm(2, created=True, host_id=0), _make_vm(3)]
    hosts = [_make_host(0, vm_ids=[1, 2]), _make_host(1)]
    model = ResourceModel(hosts, vms, requested_ids=[3])
    assert model.base_occupancy() == {0: [1, 2], 1: []}
    assert model.occupancy_of(Solution({3: 0, 2: 1})) == {0: [1, 3], 1: [2]}
    assert model.current_occupancy() == {0: [1, 2], 1: []}


def test_feasibility_only_looks_at_hosts_the_solution_uses():
    vms = [_make_vm(1, pes=4, created=True, host_id=0), _make_vm(2, pes=2), _make_vm(3, pes=2)]
    hosts = [_make_host(0, pes=2, vm_ids=[1]), _make_host(1)]
    model = ResourceModel(hosts, vms, requested_ids=[2, 3])
    assert model.is_feasible(Solution({2: 1, 3: 1}))
    assert not model.is_feasible(Solution({2: 0, 3: 1}))
    assert model.overloaded_hosts(model.current_occupancy()) == [0]


# ---------------------------------------------------------------------------
# Wastage
# ---------------------------------------------------------------------------

def test_wastage_is_the_unused_fraction():
    model = ResourceModel([_make_host(0)], [_make_vm(1, pes=2, ram_gb=2)])
    assert model.wastage(0, [1]) == (0.55, 0.55)


def test_solution_wastage_counts_overloaded_hosts_as_zero():
    vms = [_make_vm(1, pes=2, ram_gb=2), _make_vm(2, pes=4, ram_gb=4), _make_vm(3, pes=1)]
    model = ResourceModel([_make_host(0), _make_host(1)], vms)
    occupancy = {0: [1], 1: [2, 3]}
    # host 0 wastes 0.55 + 0.55, host 1 is overloaded
    assert model.solution_wastage(occupancy, [0, 1]) == pytest.approx(1.1 / 4)
    assert model.solution_wastage(occupancy, []) == 0.0
