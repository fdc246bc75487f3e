import pytest

from moacs.errors import InvariantViolationError
from moacs.evaluation import HostScore, LinearPowerScorer, evaluate_solution
from moacs.models import Host, Solution, Vm
from moacs.resources import ResourceModel


class _FlatScorer:
    def score(self, host, utilization):
        return HostScore(power=10.0, carbon=1.0, cost=2.0)


def _model():
    vms = [
        Vm(vm_id=1, pes=2, mips=1000, ram=1024),
        Vm(vm_id=2, pes=1, mips=1000, ram=1024, created=True, host_id=1, cpu_usage=0.4),
    ]
    hosts = [
        Host(host_id=0, pes=4, mips=1000, ram=4096),
        Host(host_id=1, pes=4, mips=1000, ram=4096, vm_ids=(2,), carbon_intensity=1.0, energy_price=0.5),
        Host(host_id=2, pes=4, mips=1000, ram=4096),
    ]
    return ResourceModel(hosts, vms, requested_ids=[1])


def test_linear_power_model():
    host = Host(host_id=0, pes=4, mips=1000, ram=4096)
    score = LinearPowerScorer(carbon_intensity=0.5, energy_price=0.1).score(host, 0.5)
    assert score.power == 175.0
    assert score.carbon == 87.5
    assert score.cost == pytest.approx(17.5)


def test_host_specific_rates_override_the_defaults():
    host = Host(host_id=0, pes=4, mips=1000, ram=4096, carbon_intensity=1.0, energy_price=0.5)
    score = LinearPowerScorer().score(host, 0.0)
    assert score.power == 100.0
    assert score.carbon == 100.0
    assert score.cost == 50.0


def test_evaluate_solution_covers_every_active_host():
    model = _model()
    objectives = evaluate_solution(model, Solution({1: 0}))
    # host 0: 2 pending cores reserve 45%, host 1: one core at 40% is 10%, host 2 is empty
    assert objectives.active_hosts == 2
    assert objectives.migrations == 0
    assert objectives.power == pytest.approx(167.5 + 115.0)
    assert objectives.carbon == pytest.approx(167.5 * 0.475 + 115.0)


def test_evaluate_solution_counts_migrations():
    model = _model()
    objectives = evaluate_solution(model, Solution({1: 0, 2: 2}), scorer=_FlatScorer())
    assert objectives.migrations == 1
    assert objectives.active_hosts == 2
    assert objectives.power == 20.0
    assert objectives.cost == 4.0


def test_evaluation_rejects_impossible_utilization():
    vms = [Vm(vm_id=1, pes=1, mips=5000, ram=1024, created=True, host_id=0)]
    model = ResourceModel([Host(host_id=0, pes=1, mips=1000, ram=4096, vm_ids=(1,))], vms)
    with pytest.raises(InvariantViolationError):
        evaluate_solution(model, Solution())
