from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from moacs.archive import ArchiveEntry
from moacs.config import OptimizerConfig
from moacs.consolidation import select_vms_to_migrate
from moacs.construction import ConstructionEngine
from moacs.errors import InfeasibleInput, InvariantViolation, InvariantViolationError, StateBusyError
from moacs.evaluation import HostScorer
from moacs.migration import MigrationPlan, MigrationSequencer
from moacs.models import Host, ObjectiveVector, Solution, Vm
from moacs.policies import ConstructionPolicy, resolve_policy
from moacs.resources import ResourceModel
from moacs.state import OptimizerState

logger = logging.getLogger(__name__)


@dataclass
class OptimizationResult:
    """
    Outcome of one call.

    ``solution`` is None when no feasible assignment of the whole batch was
    found; ``error`` is set when the call was refused or aborted.
    """
    solution: Optional[Solution] = None
    migration_map: Solution = field(default_factory=Solution)
    placement_map: Solution = field(default_factory=Solution)
    objectives: Optional[ObjectiveVector] = None
    archive: List[ArchiveEntry] = field(default_factory=list)
    generations_run: int = 0
    stopped_early: bool = False
    error: Optional[Union[InfeasibleInput, InvariantViolation]] = None

    @property
    def found(self) -> bool:
        return self.error is None and self.solution is not None


@dataclass
class ConsolidationResult:
    selected_vm_ids: List[int] = field(default_factory=list)
    vacated_host_ids: List[int] = field(default_factory=list)
    result: OptimizationResult = field(default_factory=OptimizationResult)
    plan: Optional[MigrationPlan] = None


def validate_snapshot(vms: Sequence[Vm], hosts: Sequence[Host]) -> Optional[InfeasibleInput]:
    """First problem found in a host/VM snapshot, or None."""
    if not hosts:
        return InfeasibleInput("host list is empty")
    host_ids = [host.host_id for host in hosts]
    if len(set(host_ids)) != len(host_ids):
        return InfeasibleInput("duplicate host ids")
    vm_ids = [vm.vm_id for vm in vms]
    if len(set(vm_ids)) != len(vm_ids):
        return InfeasibleInput("duplicate vm ids")

    known_vms = set(vm_ids)
    for host in hosts:
        if host.pes <= 0 or host.mips <= 0 or host.ram <= 0 or host.storage < 0 or host.bw < 0:
            return InfeasibleInput(f"host {host.host_id} has a non-positive capacity")
        missing = [vm_id for vm_id in host.vm_ids if vm_id not in known_vms]
        if missing:
            return InfeasibleInput(f"host {host.host_id} lists unknown vms {missing}")

    by_id = {host.host_id: host for host in hosts}
    known_hosts = set(by_id)
    for vm in vms:
        if vm.pes <= 0 or vm.mips <= 0 or vm.ram <= 0 or vm.storage < 0 or vm.bw < 0:
            return InfeasibleInput(f"vm {vm.vm_id} has an invalid demand")
        if not (0.0 <= vm.cpu_usage <= 1.0 and 0.0 <= vm.ram_usage <= 1.0):
            return InfeasibleInput(f"vm {vm.vm_id} usage must be in [0, 1]")
        if vm.created and vm.host_id not in known_hosts:
            return InfeasibleInput(f"vm {vm.vm_id} runs on unknown host {vm.host_id}")
        if vm.created and vm.vm_id not in by_id[vm.host_id].vm_ids:
            return InfeasibleInput(f"vm {vm.vm_id} is not listed by its host {vm.host_id}")
    return None


class Optimizer:
    """
    Entry point for placement and consolidation calls on one data center.

    Each call captures the host/VM snapshot once, holds the OptimizerState
    for its whole duration and hands the chosen trails and placement back to
    it for the next call.
    """

    def __init__(self,
                 config: Optional[OptimizerConfig] = None,
                 policy: Union[ConstructionPolicy, str] = "ouracs",
                 scorer: Optional[HostScorer] = None,
                 state: Optional[OptimizerState] = None,
                 rng: Optional[np.random.Generator] = None,
                 verbose: bool = False,
                 print_every: int = 10):
        self.config = config or OptimizerConfig()
        self.policy = resolve_policy(policy)
        self.scorer = scorer
        self.state = state if state is not None else OptimizerState.create()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.verbose = verbose
        self.print_every = print_every

    def _deadline(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is not None or self.config.time_budget_s is None:
            return deadline
        return time.monotonic() + self.config.time_budget_s

    def optimize(self,
                 vms: Iterable[Vm],
                 hosts: Iterable[Host],
                 requested_ids: Optional[Iterable[int]] = None,
                 deadline: Optional[float] = None,
                 host_ids: Optional[Iterable[int]] = None) -> OptimizationResult:
        """
        Place (or re-place) a batch of VMs.

        Args:
            vms: every VM of the data center snapshot
            hosts: every host of the data center snapshot
            requested_ids: the batch; defaults to all VMs not yet created
            deadline: time.monotonic() value after which no new generation starts
            host_ids: hosts the batch may use; defaults to all of them

        Returns:
            OptimizationResult; ``error`` carries an InfeasibleInput or
            InvariantViolation instead of raising
        """
        vms, hosts = list(vms), list(hosts)
        error = validate_snapshot(vms, hosts)
        if error is not None:
            logger.warning("[Optimizer] input rejected: %s", error.message)
            return OptimizationResult(error=error)

        known_vms = {vm.vm_id for vm in vms}
        if requested_ids is None:
            requested = [vm.vm_id for vm in vms if not vm.created]
        else:
            requested = list(dict.fromkeys(requested_ids))
        if not requested:
            return OptimizationResult(error=InfeasibleInput("vm batch is empty"))
        unknown = [vm_id for vm_id in requested if vm_id not in known_vms]
        if unknown:
            return OptimizationResult(error=InfeasibleInput(f"unknown vms requested {unknown}"))

        all_hosts = [host.host_id for host in hosts]
        allowed = all_hosts if host_ids is None else list(dict.fromkeys(host_ids))
        if not allowed or not set(allowed) <= set(all_hosts):
            return OptimizationResult(error=InfeasibleInput("allowed hosts must be a non-empty subset of the hosts"))

        try:
            self.state.begin_session()
        except StateBusyError as exc:
            logger.warning("[Optimizer] %s", exc)
            return OptimizationResult(error=InfeasibleInput("state busy"))

        trails = None
        placement = None
        try:
            model = ResourceModel(hosts, vms, requested, self.config.over_utilization_threshold)
            engine = ConstructionEngine(model, self.policy, self.config, self.rng, scorer=self.scorer,
                                        verbose=self.verbose, print_every=self.print_every)
            store = engine.build_store(requested, allowed,
                                       previous=self.state.last_trails,
                                       last_placement=self.state.last_placement)
            if store.inherited:
                logger.info("[Optimizer] warm start inherited %d trails", store.inherited)

            outcome = engine.run(requested, allowed, store, self._deadline(deadline))
            trails = store

            result = OptimizationResult(archive=outcome.archive, generations_run=outcome.generations_run,
                                        stopped_early=outcome.stopped_early)
            if outcome.best is not None:
                result.solution = outcome.best
                result.objectives = outcome.objectives
                result.migration_map = outcome.best.migration_map(model.vms)
                result.placement_map = outcome.best.placement_map(model.vms)
                placement = {vm_id: host_id
                             for host_id, vm_ids in model.occupancy_of(outcome.best).items()
                             for vm_id in vm_ids}
            return result
        except InvariantViolationError as exc:
            logger.error("[Optimizer] aborted: %s %s", exc, exc.context)
            return OptimizationResult(error=exc.as_result())
        finally:
            self.state.end_session(trails, placement)

    def consolidate(self,
                    vms: Iterable[Vm],
                    hosts: Iterable[Host],
                    deadline: Optional[float] = None) -> ConsolidationResult:
        """
        Relieve overloaded hosts and empty underloaded ones.

        Picks the VMs to move, re-places them on every host except the ones
        being vacated, and sequences the resulting migrations.
        """
        vms, hosts = list(vms), list(hosts)
        error = validate_snapshot(vms, hosts)
        if error is not None:
            return ConsolidationResult(result=OptimizationResult(error=error))

        model = ResourceModel(hosts, vms, over_threshold=self.config.over_utilization_threshold)
        selected, vacated = select_vms_to_migrate(model, self.config.under_utilization_threshold)
        if not selected:
            return ConsolidationResult(plan=MigrationPlan())

        allowed = [host_id for host_id in model.host_ids if host_id not in vacated]
        if not allowed:
            allowed = model.host_ids
            vacated = []
        result = self.optimize(vms, hosts, requested_ids=selected, deadline=deadline, host_ids=allowed)

        plan = None
        if result.solution is not None:
            plan = MigrationSequencer(model).sequence(result.migration_map)
            logger.info("[Optimizer] consolidation: %d migrations committed, %d unresolved",
                        len(plan.committed), len(plan.unresolved))
        return ConsolidationResult(selected, vacated, result, plan)

