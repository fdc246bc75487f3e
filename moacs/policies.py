from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Sequence, Tuple

from moacs.config import CURRENT_HOST_BONUS
from moacs.errors import ConfigurationError, InvariantViolationError
from moacs.models import LIU_OBJECTIVES, OBJECTIVE_NAMES
from moacs.pheromone import PheromoneShape
from moacs.resources import ResourceModel


class NoCandidateFallback(Enum):
    OVERLOAD_HOST = "overload_host"          # place on the least-overloaded host, solution turns infeasible
    WIDEN_CANDIDATES = "widen_candidates"    # consider every allowed host
    LEAVE_UNPLACED = "leave_unplaced"        # skip the VM, the ant's solution is dropped


class SearchMode(Enum):
    SINGLE_BEST = "single_best"              # keep the fittest ant per generation
    ARCHIVE_MIN_POWER = "archive_min_power"  # archive, min-power generation best
    ARCHIVE_KNEE = "archive_knee"            # archive, knee-point generation best


HeuristicFn = Callable[[ResourceModel, int, int, Sequence[int]], float]
ReinforcementFn = Callable[[int, float], float]


# ---------------- heuristics ----------------
# Each receives the host's occupant list *including* the candidate VM.

def _checked_raw_wastage(model: ResourceModel, host_id: int, vm_ids: Sequence[int]) -> Tuple[float, float]:
    cpu_w, ram_w = model.raw_wastage(host_id, vm_ids)
    if cpu_w > 1 or ram_w > 1:
        raise InvariantViolationError("CPU or RAM wastage cannot exceed 100%", host_id=host_id,
                                      cpu_wastage=cpu_w, ram_wastage=ram_w)
    return cpu_w, ram_w


def balance_heuristic(model: ResourceModel, vm_id: int, host_id: int, vm_ids: Sequence[int]) -> float:
    """(1 - |cw - mw|) / (|cw| + |mw| + 1), boosted on the VM's current host."""
    cpu_w, ram_w = model.wastage(host_id, vm_ids)
    value = (1.0 - abs(cpu_w - ram_w)) / (abs(cpu_w) + abs(ram_w) + 1.0)
    if model.vms[vm_id].host_id == host_id:
        value *= CURRENT_HOST_BONUS
    return value


def overload_aware_heuristic(model: ResourceModel, vm_id: int, host_id: int, vm_ids: Sequence[int]) -> float:
    cpu_w, ram_w = _checked_raw_wastage(model, host_id, vm_ids)
    if not model.is_overloaded(host_id, vm_ids):
        return 1.0 / (abs(cpu_w) + abs(ram_w) + 1.0)
    return max(2.0 - abs(cpu_w) - abs(ram_w), 0.0)


def wastage_heuristic(model: ResourceModel, vm_id: int, host_id: int, vm_ids: Sequence[int]) -> float:
    cpu_w, ram_w = model.wastage(host_id, vm_ids)
    return 1.0 / (cpu_w + ram_w + 1.0)


# ---------------- reinforcement ----------------

def hosts_and_wastage_reinforcement(hosts_used: int, wastage: float) -> float:
    return 1.0 / max(hosts_used, 1) + 1.0 / (wastage + 1.0)


def wastage_reinforcement(hosts_used: int, wastage: float) -> float:
    return 1.0 / (wastage + 1.0)


@dataclass(frozen=True)
class ConstructionPolicy:
    """Everything that differs between the ACS variants."""
    name: str
    pheromone_shape: PheromoneShape
    heuristic: HeuristicFn
    reinforcement: ReinforcementFn
    fallback: NoCandidateFallback
    mode: SearchMode
    shuffle_vms: bool
    objective_names: Tuple[str, ...]
    table_size_from_hosts: bool     # 1/size uses host count instead of VM count
    budget_from_hosts: bool         # host budget starts at host count instead of VM count
    repair_each_ant: bool

    @property
    def objective_count(self) -> int:
        return len(self.objective_names)

    def with_fallback(self, fallback: NoCandidateFallback) -> ConstructionPolicy:
        return dataclasses.replace(self, fallback=fallback)


LIU2016 = ConstructionPolicy(
    name="liu2016",
    pheromone_shape=PheromoneShape.VM_PAIR,
    heuristic=balance_heuristic,
    reinforcement=hosts_and_wastage_reinforcement,
    fallback=NoCandidateFallback.OVERLOAD_HOST,
    mode=SearchMode.SINGLE_BEST,
    shuffle_vms=True,
    objective_names=LIU_OBJECTIVES,
    table_size_from_hosts=False,
    budget_from_hosts=False,
    repair_each_ant=False,
)

LIU2017 = ConstructionPolicy(
    name="liu2017",
    pheromone_shape=PheromoneShape.VM_PAIR,
    heuristic=overload_aware_heuristic,
    reinforcement=hosts_and_wastage_reinforcement,
    fallback=NoCandidateFallback.WIDEN_CANDIDATES,
    mode=SearchMode.ARCHIVE_MIN_POWER,
    shuffle_vms=False,
    objective_names=LIU_OBJECTIVES,
    table_size_from_hosts=True,
    budget_from_hosts=True,
    repair_each_ant=True,
)

OUR_ACS = ConstructionPolicy(
    name="ouracs",
    pheromone_shape=PheromoneShape.VM_HOST,
    heuristic=wastage_heuristic,
    reinforcement=wastage_reinforcement,
    fallback=NoCandidateFallback.LEAVE_UNPLACED,
    mode=SearchMode.ARCHIVE_KNEE,
    shuffle_vms=False,
    objective_names=OBJECTIVE_NAMES,
    table_size_from_hosts=True,
    budget_from_hosts=True,
    repair_each_ant=False,
)

POLICIES: Dict[str, ConstructionPolicy] = {policy.name: policy for policy in (LIU2016, LIU2017, OUR_ACS)}


def policy_by_name(name: str) -> ConstructionPolicy:
    try:
        return POLICIES[name.lower()]
    except KeyError:
        raise ConfigurationError(f"unknown construction policy {name!r}, expected one of {sorted(POLICIES)}") from None


def resolve_policy(policy, fallback=None) -> ConstructionPolicy:
    """Accept a policy object or its name, optionally overriding the fallback."""
    if isinstance(policy, str):
        policy = policy_by_name(policy)
    if fallback is not None:
        if isinstance(fallback, str):
            try:
                fallback = NoCandidateFallback(fallback)
            except ValueError:
                raise ConfigurationError(f"unknown no-candidate fallback {fallback!r}") from None
        policy = policy.with_fallback(fallback)
    return policy
