from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from moacs.models import Solution
from moacs.resources import ResourceModel

logger = logging.getLogger(__name__)


class LocalSearchRepair:
    """
    Best-effort repair of infeasible Solutions.

    Works on full host occupancy (residents plus assigned VMs) so the result
    may carry extra entries for residents; ``clean`` strips those that are not
    real moves. Callers must re-check feasibility: a repaired solution is
    never assumed feasible.
    """

    def __init__(self, model: ResourceModel):
        self.model = model

    def _movable(self, vm_id: int) -> bool:
        # pending VMs outside the batch are not ours to move
        return self.model.vms[vm_id].created or vm_id in self.model.requested_ids

    def _ranked(self, vm_ids: Iterable[int], descending: bool) -> List[int]:
        vms = self.model.vms
        return sorted(vm_ids, key=lambda vm_id: (-vms[vm_id].shape_mismatch if descending
                                                  else vms[vm_id].shape_mismatch, vm_id))

    def repair(self, solution: Solution) -> Solution:
        """
        Move or swap VMs from overloaded hosts onto non-overloaded ones.

        Overloaded hosts offer their VMs by descending core/RAM-GB mismatch;
        each non-overloaded host is tried in turn with its own VMs ranked
        ascending. A VM moves alone when the target stays within limits,
        otherwise 1-for-1 swaps are tried. Trials on a host pair are rolled
        back when either host is still overloaded at the end.
        """
        model = self.model
        occupancy = model.occupancy_of(solution)
        used = solution.hosts_used()
        work: Dict[int, List[int]] = {host_id: list(occupancy[host_id]) for host_id in used}

        overloaded = [host_id for host_id in used if model.is_overloaded(host_id, work[host_id])]
        healthy = [host_id for host_id in used if host_id not in overloaded]
        logger.debug("[Repair] %d overloaded / %d healthy hosts", len(overloaded), len(healthy))

        for source in overloaded:
            for target in healthy:
                if not model.is_overloaded(source, work[source]):
                    break
                saved_source, saved_target = list(work[source]), list(work[target])
                if self._relieve(source, target, work):
                    break
                if model.is_overloaded(source, work[source]) or model.is_overloaded(target, work[target]):
                    work[source], work[target] = saved_source, saved_target

        return Solution({vm_id: host_id for host_id, vm_ids in work.items() for vm_id in vm_ids})

    def _relieve(self, source: int, target: int, work: Dict[int, List[int]]) -> bool:
        """Try moves then swaps from source to target. True once source is fine."""
        model = self.model
        for vm_id in self._ranked(work[source], descending=True):
            if not self._movable(vm_id) or vm_id not in work[source]:
                continue

            work[source].remove(vm_id)
            work[target].append(vm_id)
            if not model.is_overloaded(target, work[target]):
                if not model.is_overloaded(source, work[source]):
                    return True
                continue

            # move alone does not fit, undo and try swaps
            work[target].remove(vm_id)
            work[source].append(vm_id)
            for other_id in self._ranked(work[target], descending=False):
                if not self._movable(other_id):
                    continue
                work[source].remove(vm_id)
                work[source].append(other_id)
                work[target].remove(other_id)
                work[target].append(vm_id)
                if not model.is_overloaded(target, work[target]):
                    if not model.is_overloaded(source, work[source]):
                        return True
                    break
                work[source].remove(other_id)
                work[source].append(vm_id)
                work[target].remove(vm_id)
                work[target].append(other_id)
        return False

    def clean(self, solution: Solution) -> Solution:
        """
        Drop entries that are not needed.

        Removes residents outside the batch that stay on their own host, and
        helper moves of such residents when no requested VM is heading to the
        host they leave. A helper move is kept if dropping it would make a
        feasible solution infeasible.
        """
        vms = self.model.vms
        requested = self.model.requested_ids
        stationary = [vm_id for vm_id, host_id in solution.items()
                      if vm_id not in requested and vms[vm_id].created and vms[vm_id].host_id == host_id]
        cleaned = solution.without(stationary)

        feasible = self.model.is_feasible(cleaned)
        for vm_id, host_id in list(cleaned.items()):
            vm = vms[vm_id]
            if vm_id in requested or not vm.created:
                continue
            needed = any(
                other_id in requested and other_id != vm_id
                and vms[other_id].host_id != other_host and other_host == vm.host_id
                for other_id, other_host in cleaned.items()
            )
            if needed:
                continue
            candidate = cleaned.without([vm_id])
            if feasible and not self.model.is_feasible(candidate):
                continue
            cleaned = candidate

        if len(cleaned) != len(solution):
            logger.debug("[Repair] clean removed %d entries", len(solution) - len(cleaned))
        return cleaned

    def expand_hosts(self, solution: Solution, allowed_host_ids: Sequence[int]) -> Solution:
        """
        Move VMs off overloaded hosts onto allowed hosts the solution does not use.

        Returns the original solution when some overloaded host cannot be
        brought back within limits.
        """
        model = self.model
        used = solution.hosts_used()
        spare = [host_id for host_id in allowed_host_ids if host_id not in used]
        if not spare:
            return solution

        occupancy = model.occupancy_of(solution)
        work = {host_id: list(occupancy[host_id]) for host_id in list(used) + spare}
        moves: Dict[int, int] = {}

        for source in used:
            if not model.is_overloaded(source, work[source]):
                continue
            for vm_id in [vm_id for vm_id in work[source] if vm_id in solution]:
                for target in spare:
                    if model.is_overloaded(target, work[target] + [vm_id]):
                        continue
                    work[source].remove(vm_id)
                    work[target].append(vm_id)
                    moves[vm_id] = target
                    break
                if not model.is_overloaded(source, work[source]):
                    break
            if model.is_overloaded(source, work[source]):
                logger.debug("[Repair] host %s stays overloaded, expansion abandoned", source)
                return solution

        assignment = solution.to_dict()
        assignment.update(moves)
        return Solution(assignment)
