from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from moacs.config import MB_PER_GB

# -------------------------------------------------
# Entities
# -------------------------------------------------


@dataclass(frozen=True)
class Vm:
    """Snapshot of one VM, taken once before a call starts."""
    vm_id: int
    pes: int                        # cores
    mips: float                     # MIPS per core
    ram: float                      # MB
    storage: float = 0.0            # MB
    bw: float = 0.0                 # Mbps
    created: bool = False           # already running on host_id
    host_id: Optional[int] = None   # lookup only, the Host owns membership
    cpu_usage: float = 1.0          # fraction of total MIPS in use (created VMs)
    ram_usage: float = 1.0          # fraction of RAM in use (created VMs)

    @property
    def total_mips(self) -> float:
        return self.pes * self.mips

    @property
    def ram_gb(self) -> float:
        return self.ram / MB_PER_GB

    @property
    def cpu_used_mips(self) -> float:
        """MIPS currently consumed; pending VMs consume nothing yet."""
        return self.total_mips * self.cpu_usage if self.created else 0.0

    def mips_demand(self, threshold: float) -> float:
        """
        MIPS a host must reserve for this VM.

        Running VMs count what they actually use; pending VMs reserve their
        capacity scaled by the over-utilization threshold.
        """
        if self.created:
            return self.total_mips * self.cpu_usage
        return self.total_mips * threshold

    def ram_demand(self, threshold: float) -> float:
        if self.created:
            return self.ram * self.ram_usage
        return self.ram * threshold

    @property
    def shape_mismatch(self) -> float:
        # cores vs GB of RAM
        return abs(self.pes - self.ram_gb)

    @property
    def footprint(self) -> Tuple[float, float, float, int]:
        return (self.pes, self.ram, self.total_mips, self.vm_id)


@dataclass(frozen=True)
class Host:
    """Snapshot of one physical host and the ids of its resident VMs."""
    host_id: int
    pes: int                              # cores
    mips: float                           # MIPS per core
    ram: float                            # MB
    storage: float = math.inf             # MB
    bw: float = math.inf                  # Mbps
    active: bool = True
    vm_ids: Tuple[int, ...] = ()
    power_idle: float = 100.0             # watts at 0% CPU
    power_max: float = 250.0              # watts at 100% CPU
    carbon_intensity: Optional[float] = None
    energy_price: Optional[float] = None

    @property
    def total_mips(self) -> float:
        return self.pes * self.mips


@dataclass(frozen=True)
class MigrationEdge:
    vm_id: int
    source_host_id: int
    target_host_id: int

    def __str__(self):
        return f"vm{self.vm_id}: host{self.source_host_id} -> host{self.target_host_id}"


# -------------------------------------------------
# Solution
# -------------------------------------------------


class Solution(Mapping[int, int]):
    """
    VM id -> host id assignment.

    Immutable; equality and hashing are defined over the set of (vm, host)
    pairs so insertion order never matters.
    """

    __slots__ = ("_assignment", "_key")

    def __init__(self, assignment: Optional[Mapping[int, int]] = None):
        self._assignment: Dict[int, int] = dict(assignment or {})
        self._key = frozenset(self._assignment.items())

    def __getitem__(self, vm_id: int) -> int:
        return self._assignment[vm_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._assignment)

    def __len__(self) -> int:
        return len(self._assignment)

    def __eq__(self, other):
        if isinstance(other, Solution):
            return self._key == other._key
        if isinstance(other, Mapping):
            return self._key == frozenset(other.items())
        return NotImplemented

    def __hash__(self):
        return hash(self._key)

    def __repr__(self):
        pairs = ", ".join(f"{vm}->{host}" for vm, host in sorted(self._assignment.items()))
        return f"Solution({pairs})"

    def with_assignment(self, vm_id: int, host_id: int) -> Solution:
        assignment = dict(self._assignment)
        assignment[vm_id] = host_id
        return Solution(assignment)

    def without(self, vm_ids: Iterable[int]) -> Solution:
        drop = set(vm_ids)
        return Solution({vm: host for vm, host in self._assignment.items() if vm not in drop})

    def hosts_used(self) -> List[int]:
        """Distinct target hosts, in first-seen order."""
        return list(dict.fromkeys(self._assignment.values()))

    def host_vm_lists(self) -> Dict[int, List[int]]:
        lists: Dict[int, List[int]] = {}
        for vm_id, host_id in self._assignment.items():
            lists.setdefault(host_id, []).append(vm_id)
        return lists

    def is_complete(self, requested_ids: Iterable[int]) -> bool:
        return all(vm_id in self._assignment for vm_id in requested_ids)

    def migration_map(self, vms: Mapping[int, Vm]) -> Solution:
        """Entries that move an already-created VM to a different host."""
        return Solution({
            vm_id: host_id for vm_id, host_id in self._assignment.items()
            if vms[vm_id].created and vms[vm_id].host_id != host_id
        })

    def placement_map(self, vms: Mapping[int, Vm]) -> Solution:
        """Everything that is not a migration."""
        migrations = self.migration_map(vms)
        return Solution({
            vm_id: host_id for vm_id, host_id in self._assignment.items()
            if vm_id not in migrations
        })

    def migration_edges(self, vms: Mapping[int, Vm]) -> List[MigrationEdge]:
        return [
            MigrationEdge(vm_id, vms[vm_id].host_id, host_id)
            for vm_id, host_id in self.migration_map(vms).items()
        ]

    def to_dict(self) -> Dict[int, int]:
        return dict(self._assignment)


# -------------------------------------------------
# Objectives
# -------------------------------------------------

OBJECTIVE_NAMES = ("power", "carbon", "active_hosts", "migrations", "cost")
LIU_OBJECTIVES = ("power", "migrations")


@dataclass(frozen=True)
class ObjectiveVector:
    """Objective values of one Solution. Kept beside it, never inside it."""
    power: float          # watts
    carbon: float         # carbon-rate units
    active_hosts: int
    migrations: int
    cost: float           # energy-price units

    def values(self, names: Sequence[str] = OBJECTIVE_NAMES) -> np.ndarray:
        return np.array([getattr(self, name) for name in names], dtype=np.float64)

    def to_dict(self) -> dict:
        return asdict(self)


def index_by_id(items: Iterable, attribute: str) -> Dict[int, object]:
    return {getattr(item, attribute): item for item in items}
