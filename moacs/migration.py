from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set

from moacs.errors import UnresolvedLockIn
from moacs.models import MigrationEdge
from moacs.resources import ResourceModel

logger = logging.getLogger(__name__)


class SequencerPhase(Enum):
    COLLECTING = "collecting"
    ORDERING = "ordering"
    RESOLVING = "resolving"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class Reroute:
    vm_id: int
    old_target_host_id: int
    new_target_host_id: int


@dataclass
class MigrationPlan:
    """Ordered, capacity-safe migrations plus whatever could not be ordered."""
    committed: List[MigrationEdge] = field(default_factory=list)
    unresolved: List[MigrationEdge] = field(default_factory=list)
    lock_ins: List[UnresolvedLockIn] = field(default_factory=list)
    reroutes: List[Reroute] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.unresolved

    def committed_map(self) -> Dict[int, int]:
        return {edge.vm_id: edge.target_host_id for edge in self.committed}


_WHITE, _GRAY, _BLACK = 0, 1, 2


class MigrationSequencer:
    """
    Turns a raw migration map into an execution order that never overfills a
    host at any intermediate step.

    Occupancy starts from the hosts' current residents: a VM keeps using its
    source host until its own migration is committed. Entries whose target
    cannot take them yet wait for departures; circular waits (lock-ins) are
    found with a depth-first search over the host graph and broken by
    rerouting one VM of the cycle to a host outside it.
    """

    def __init__(self, model: ResourceModel):
        self.model = model
        self.phase = SequencerPhase.COLLECTING

    # ---------------- helpers ----------------

    def _source(self, vm_id: int) -> int:
        return self.model.vms[vm_id].host_id

    def fits(self, host_id: int, occupants: Sequence[int], vm_id: int) -> bool:
        return not self.model.available(host_id, list(occupants) + [vm_id]).violated

    def collect(self, migration_map: Mapping[int, int]) -> Dict[int, int]:
        """Keep only real migrations: created VMs moving to another host."""
        self.phase = SequencerPhase.COLLECTING
        pending: Dict[int, int] = {}
        for vm_id, target in migration_map.items():
            vm = self.model.vms[vm_id]
            if not vm.created or vm.host_id is None or vm.host_id == target:
                logger.debug("[Sequencer] vm %s -> host %s is not a migration, skipped", vm_id, target)
                continue
            pending[vm_id] = target
        return pending

    def order(self, pending: Dict[int, int], occupancy: Dict[int, List[int]]) -> List[MigrationEdge]:
        """
        Commit every entry whose target has room, scanning until a full pass
        commits nothing. Mutates ``pending`` and ``occupancy``.
        """
        self.phase = SequencerPhase.ORDERING
        committed: List[MigrationEdge] = []
        progress = True
        while pending and progress:
            progress = False
            for vm_id, target in list(pending.items()):
                if not self.fits(target, occupancy[target], vm_id):
                    continue
                source = self._source(vm_id)
                occupancy[source].remove(vm_id)
                occupancy[target].append(vm_id)
                del pending[vm_id]
                committed.append(MigrationEdge(vm_id, source, target))
                logger.debug("[Sequencer] vm %s: host %s -> host %s committed", vm_id, source, target)
                progress = True
        return committed

    # ---------------- lock-in detection ----------------

    def find_cycles(self, pending: Mapping[int, int]) -> List[List[int]]:
        """
        Host cycles in the pending-migration graph (edge = source -> target).

        Iterative DFS with white/gray/black colouring; every back edge to a
        gray host yields the cycle on the current path.
        """
        adjacency: Dict[int, List[int]] = {}
        for vm_id, target in pending.items():
            source = self._source(vm_id)
            successors = adjacency.setdefault(source, [])
            if target not in successors:
                successors.append(target)
            adjacency.setdefault(target, [])

        color = {host_id: _WHITE for host_id in adjacency}
        cycles: List[List[int]] = []
        seen: Set[frozenset] = set()

        for root in adjacency:
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            path = [root]
            stack = [iter(adjacency[root])]
            while stack:
                successor = next(stack[-1], None)
                if successor is None:
                    color[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if color[successor] == _WHITE:
                    color[successor] = _GRAY
                    path.append(successor)
                    stack.append(iter(adjacency[successor]))
                elif color[successor] == _GRAY:
                    cycle = path[path.index(successor):]
                    key = frozenset(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(cycle)
        return cycles

    def cycle_vms(self, cycle: Sequence[int], pending: Mapping[int, int]) -> List[int]:
        """Pending VMs whose edge lies on ``cycle``."""
        edges = {(cycle[i], cycle[(i + 1) % len(cycle)]) for i in range(len(cycle))}
        return [vm_id for vm_id, target in pending.items() if (self._source(vm_id), target) in edges]

    # ---------------- lock-in resolution ----------------

    def reroute_candidates(self, cycle: Sequence[int], pending: Mapping[int, int],
                           occupancy: Mapping[int, List[int]]) -> List[int]:
        """
        Hosts outside the cycle: occupied ones by ascending CPU utilization,
        then empty ones. Hosts about to be emptied by pending departures are
        left out.
        """
        in_cycle = set(cycle)
        departing = {self._source(vm_id) for vm_id in pending}
        arriving = set(pending.values())
        active, unused = [], []
        for host_id, host in self.model.hosts.items():
            if host_id in in_cycle:
                continue
            occupants = occupancy[host_id]
            if occupants and host_id in departing and host_id not in arriving and \
                    all(vm_id in pending for vm_id in occupants):
                continue
            if occupants or host.active:
                cpu, _ = self.model.raw_utilization(host_id, occupants)
                active.append((cpu, host_id))
            else:
                unused.append(host_id)
        return [host_id for _, host_id in sorted(active)] + sorted(unused)

    def reroute(self, cycle: Sequence[int], pending: Dict[int, int],
                occupancy: Mapping[int, List[int]]) -> Optional[Reroute]:
        """Send the smallest VM of the cycle somewhere outside it, if anywhere fits."""
        vms = self.model.vms
        members = sorted(self.cycle_vms(cycle, pending), key=lambda vm_id: vms[vm_id].footprint)
        candidates = self.reroute_candidates(cycle, pending, occupancy)
        for vm_id in members:
            source = self._source(vm_id)
            for host_id in candidates:
                if host_id == source:
                    continue
                reserved = [other for other, target in pending.items() if target == host_id and other != vm_id]
                projected = list(occupancy[host_id]) + reserved + [vm_id]
                if self.model.is_overloaded(host_id, projected):
                    continue
                move = Reroute(vm_id, pending[vm_id], host_id)
                pending[vm_id] = host_id
                return move
        return None

    # ---------------- entry points ----------------

    def sequence(self, migration_map: Mapping[int, int]) -> MigrationPlan:
        """
        Order ``migration_map`` safely.

        Returns:
            MigrationPlan whose ``committed`` edges can be executed in order;
            every other entry is listed in ``unresolved`` and cycles that
            could not be broken in ``lock_ins``
        """
        pending = self.collect(migration_map)
        occupancy = self.model.current_occupancy()
        plan = MigrationPlan()
        plan.committed.extend(self.order(pending, occupancy))

        failed: Set[frozenset] = set()
        failed_cycles: List[List[int]] = []
        while pending:
            self.phase = SequencerPhase.RESOLVING
            cycles = [cycle for cycle in self.find_cycles(pending) if frozenset(cycle) not in failed]
            if not cycles:
                break
            move = None
            for cycle in cycles:
                move = self.reroute(cycle, pending, occupancy)
                if move is not None:
                    logger.info("[Sequencer] lock-in over hosts %s broken: vm %s rerouted host %s -> host %s",
                                cycle, move.vm_id, move.old_target_host_id, move.new_target_host_id)
                    break
                failed.add(frozenset(cycle))
                failed_cycles.append(cycle)
            if move is None:
                break
            plan.reroutes.append(move)
            plan.committed.extend(self.order(pending, occupancy))

        for cycle in failed_cycles:
            members = self.cycle_vms(cycle, pending)
            if members:
                plan.lock_ins.append(UnresolvedLockIn(tuple(cycle), tuple(members)))
                logger.warning("[Sequencer] unresolved lock-in over hosts %s (vms %s)", cycle, members)

        plan.unresolved = [MigrationEdge(vm_id, self._source(vm_id), target) for vm_id, target in pending.items()]
        if plan.unresolved:
            logger.warning("[Sequencer] %d migrations left out of the plan", len(plan.unresolved))
        self.phase = SequencerPhase.FINALIZED
        return plan

    def is_feasible(self, migration_map: Mapping[int, int]) -> bool:
        """True when ordering alone, without rerouting, commits every entry."""
        pending = self.collect(migration_map)
        self.order(pending, self.model.current_occupancy())
        self.phase = SequencerPhase.FINALIZED
        return not pending
