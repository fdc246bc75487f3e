from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from moacs.config import OVER_UTILIZATION_THRESHOLD, UTILIZATION_PRECISION
from moacs.errors import InvariantViolationError
from moacs.models import Host, Solution, Vm


@dataclass(frozen=True)
class Availability:
    """Signed free amount per resource; negative means over capacity."""
    pes: float
    mips: float
    ram: float
    storage: float
    bw: float

    @property
    def violated(self) -> bool:
        return self.pes < 0 or self.mips < 0 or self.ram < 0 or self.storage < 0 or self.bw < 0


def round_utilization(value: float) -> float:
    return round(value, UTILIZATION_PRECISION)


def check_fraction(value: float, what: str, **context) -> float:
    if value < 0.0 or value > 1.0:
        raise InvariantViolationError(f"{what} must be in [0, 1] but {value} was computed", **context)
    return value


class ResourceModel:
    """
    Capacity bookkeeping for one optimization call.

    Holds the host/VM snapshot and the ids of the requested batch. Every
    method is a pure function of a host and the full list of VM ids that
    would occupy it; ``base_occupancy`` gives the starting lists (residents
    minus the VMs being placed) that callers extend tentatively.
    """

    def __init__(self,
                 hosts: Iterable[Host],
                 vms: Iterable[Vm],
                 requested_ids: Iterable[int] = (),
                 over_threshold: float = OVER_UTILIZATION_THRESHOLD):
        self.hosts: Dict[int, Host] = {host.host_id: host for host in hosts}
        self.vms: Dict[int, Vm] = {vm.vm_id: vm for vm in vms}
        self.requested_ids: FrozenSet[int] = frozenset(requested_ids)
        self.over_threshold = over_threshold

    @property
    def host_ids(self) -> List[int]:
        return list(self.hosts)

    def with_requested(self, requested_ids: Iterable[int]) -> ResourceModel:
        return ResourceModel(self.hosts.values(), self.vms.values(), requested_ids, self.over_threshold)

    # ---------------- occupancy ----------------

    def base_occupancy(self) -> Dict[int, List[int]]:
        """Residents of every host, minus VMs of the requested batch."""
        return {
            host_id: [vm_id for vm_id in host.vm_ids if vm_id not in self.requested_ids]
            for host_id, host in self.hosts.items()
        }

    def current_occupancy(self) -> Dict[int, List[int]]:
        return {host_id: list(host.vm_ids) for host_id, host in self.hosts.items()}

    def occupancy_of(self, solution: Mapping[int, int]) -> Dict[int, List[int]]:
        """
        Projected VM list of every host once ``solution`` is applied.

        A resident leaves its host when it is requested or when the solution
        moves it elsewhere.
        """
        occupancy = {
            host_id: [vm_id for vm_id in host.vm_ids
                      if vm_id not in self.requested_ids and vm_id not in solution]
            for host_id, host in self.hosts.items()
        }
        for vm_id, host_id in solution.items():
            occupancy.setdefault(host_id, []).append(vm_id)
        return occupancy

    # ---------------- availability ----------------

    def available(self, host_id: int, vm_ids: Sequence[int]) -> Availability:
        host = self.hosts[host_id]
        pes = mips = ram = storage = bw = 0.0
        for vm_id in vm_ids:
            vm = self.vms[vm_id]
            pes += vm.pes
            mips += vm.total_mips
            ram += vm.ram
            storage += vm.storage
            bw += vm.bw
        return Availability(
            pes=host.pes - pes,
            mips=host.total_mips - mips,
            ram=host.ram - ram,
            storage=host.storage - storage,
            bw=host.bw - bw,
        )

    def available_pes(self, host_id: int, vm_ids: Sequence[int]) -> float:
        return self.available(host_id, vm_ids).pes

    def available_mips(self, host_id: int, vm_ids: Sequence[int]) -> float:
        return self.available(host_id, vm_ids).mips

    def available_ram(self, host_id: int, vm_ids: Sequence[int]) -> float:
        return self.available(host_id, vm_ids).ram

    def available_storage(self, host_id: int, vm_ids: Sequence[int]) -> float:
        return self.available(host_id, vm_ids).storage

    def available_bw(self, host_id: int, vm_ids: Sequence[int]) -> float:
        return self.available(host_id, vm_ids).bw

    # ---------------- utilization ----------------

    def raw_utilization(self, host_id: int, vm_ids: Sequence[int]) -> Tuple[float, float]:
        """(cpu, ram) utilization rounded, without the range check."""
        host = self.hosts[host_id]
        threshold = self.over_threshold
        mips = sum(self.vms[vm_id].mips_demand(threshold) for vm_id in vm_ids)
        ram = sum(self.vms[vm_id].ram_demand(threshold) for vm_id in vm_ids)
        return round_utilization(mips / host.total_mips), round_utilization(ram / host.ram)

    def utilization(self, host_id: int, vm_ids: Sequence[int]) -> Tuple[float, float]:
        """
        CPU and RAM utilization of a host holding ``vm_ids``.

        Raises:
            InvariantViolationError: if either value leaves [0, 1]
        """
        cpu, ram = self.raw_utilization(host_id, vm_ids)
        check_fraction(cpu, "CPU utilization", host_id=host_id)
        check_fraction(ram, "RAM utilization", host_id=host_id)
        return cpu, ram

    def cpu_utilization(self, host_id: int, vm_ids: Optional[Sequence[int]] = None) -> float:
        if vm_ids is None:
            vm_ids = self.hosts[host_id].vm_ids
        return self.utilization(host_id, vm_ids)[0]

    def is_overloaded(self, host_id: int, vm_ids: Sequence[int]) -> bool:
        if self.available(host_id, vm_ids).violated:
            return True
        cpu, ram = self.raw_utilization(host_id, vm_ids)
        return cpu > self.over_threshold or ram > self.over_threshold

    def is_suitable(self, host_id: int, vm_ids: Sequence[int], vm_id: int) -> bool:
        """True if adding ``vm_id`` keeps the host within capacity and threshold."""
        return not self.is_overloaded(host_id, list(vm_ids) + [vm_id])

    # ---------------- wastage ----------------

    def raw_wastage(self, host_id: int, vm_ids: Sequence[int]) -> Tuple[float, float]:
        cpu, ram = self.raw_utilization(host_id, vm_ids)
        return round_utilization(1.0 - cpu), round_utilization(1.0 - ram)

    def wastage(self, host_id: int, vm_ids: Sequence[int]) -> Tuple[float, float]:
        """(cpuWastage, ramWastage) = unused fraction of each resource."""
        cpu_w, ram_w = self.raw_wastage(host_id, vm_ids)
        check_fraction(cpu_w, "CPU wastage", host_id=host_id)
        check_fraction(ram_w, "RAM wastage", host_id=host_id)
        return cpu_w, ram_w

    def solution_wastage(self, occupancy: Mapping[int, Sequence[int]], host_ids: Iterable[int]) -> float:
        """
        Mean of cpu+ram wastage over ``host_ids``, normalised to [0, 1].

        Overloaded hosts have no slack and count as zero.
        """
        host_ids = list(host_ids)
        if not host_ids:
            return 0.0
        total = 0.0
        for host_id in host_ids:
            vm_ids = occupancy.get(host_id, [])
            if self.is_overloaded(host_id, vm_ids):
                continue
            cpu_w, ram_w = self.wastage(host_id, vm_ids)
            total += cpu_w + ram_w
        return total / (2 * len(host_ids))

    # ---------------- solution checks ----------------

    def is_feasible(self, solution: Solution) -> bool:
        """No host touched by ``solution`` ends up overloaded."""
        occupancy = self.occupancy_of(solution)
        return not any(self.is_overloaded(host_id, occupancy[host_id]) for host_id in solution.hosts_used())

    def overloaded_hosts(self, occupancy: Mapping[int, Sequence[int]]) -> List[int]:
        return [host_id for host_id, vm_ids in occupancy.items() if vm_ids and self.is_overloaded(host_id, vm_ids)]
