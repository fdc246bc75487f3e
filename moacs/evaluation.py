from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

from moacs.config import CARBON_INTENSITY, ENERGY_PRICE
from moacs.models import Host, ObjectiveVector, Solution
from moacs.resources import ResourceModel, check_fraction, round_utilization


@dataclass(frozen=True)
class HostScore:
    power: float
    carbon: float = 0.0
    cost: float = 0.0


class HostScorer(Protocol):
    def score(self, host: Host, utilization: float) -> HostScore:
        ...


class LinearPowerScorer:
    """
    Linear host power model.

    power = idle + (max - idle) * u for a host with work on it and 0 for an
    empty host, which can be switched off. Carbon and cost scale the power
    draw by the host's (or the default) carbon intensity and energy price.
    """

    def __init__(self, carbon_intensity: float = CARBON_INTENSITY, energy_price: float = ENERGY_PRICE):
        self.carbon_intensity = carbon_intensity
        self.energy_price = energy_price

    def score(self, host: Host, utilization: float) -> HostScore:
        power = host.power_idle + (host.power_max - host.power_idle) * utilization
        carbon_rate = self.carbon_intensity if host.carbon_intensity is None else host.carbon_intensity
        price = self.energy_price if host.energy_price is None else host.energy_price
        return HostScore(power=power, carbon=power * carbon_rate, cost=power * price)


def evaluate_occupancy(model: ResourceModel,
                       occupancy: Mapping[int, Sequence[int]],
                       migrations: int,
                       scorer: Optional[HostScorer] = None) -> ObjectiveVector:
    scorer = scorer or LinearPowerScorer()
    power = carbon = cost = 0.0
    active = 0
    for host_id, vm_ids in occupancy.items():
        if not vm_ids:
            continue
        host = model.hosts[host_id]
        mips = sum(model.vms[vm_id].mips_demand(model.over_threshold) for vm_id in vm_ids)
        utilization = round_utilization(mips / host.total_mips)
        check_fraction(utilization, "CPU utilization", host_id=host_id)
        score = scorer.score(host, utilization)
        power += score.power
        carbon += score.carbon
        cost += score.cost
        active += 1
    return ObjectiveVector(power=power, carbon=carbon, active_hosts=active, migrations=migrations, cost=cost)


def evaluate_solution(model: ResourceModel, solution: Solution, scorer: Optional[HostScorer] = None) -> ObjectiveVector:
    """Objective vector of the data center once ``solution`` is applied."""
    occupancy = model.occupancy_of(solution)
    migrations = len(solution.migration_map(model.vms))
    return evaluate_occupancy(model, occupancy, migrations, scorer)
