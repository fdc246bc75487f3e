from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from moacs.archive import ArchiveEntry, ParetoArchive, make_entry
from moacs.config import OptimizerConfig
from moacs.evaluation import HostScorer, evaluate_solution
from moacs.models import ObjectiveVector, Solution
from moacs.pheromone import PheromoneShape, PheromoneStore
from moacs.policies import ConstructionPolicy, NoCandidateFallback, SearchMode, overload_aware_heuristic
from moacs.repair import LocalSearchRepair
from moacs.resources import ResourceModel
from moacs.selection import knee_point, minimum_power, minimum_power_then_migrations

logger = logging.getLogger(__name__)


class EnginePhase(Enum):
    IDLE = "idle"
    ITERATING = "iterating"
    ANT_CONSTRUCTING = "ant_constructing"
    SCORING = "scoring"
    GENERATION_DONE = "generation_done"
    TERMINAL = "terminal"


@dataclass
class AntSolution:
    """One ant's construction."""
    solution: Solution
    occupancy: Dict[int, List[int]]
    complete: bool
    feasible: bool
    used_fallback: bool = False

    @property
    def hosts_used(self) -> int:
        return len(self.solution.hosts_used())


@dataclass
class EngineResult:
    best: Optional[Solution]
    objectives: Optional[ObjectiveVector]
    archive: List[ArchiveEntry] = field(default_factory=list)
    generations_run: int = 0
    stopped_early: bool = False
    history: List[dict] = field(default_factory=list)


class ConstructionEngine:
    """
    Ant Colony System driver shared by every variant.

    The ConstructionPolicy decides the pheromone shape, heuristic, fallback
    when a VM has no suitable host, VM order and how a generation's best is
    chosen. Ants run one after another against a per-generation copy of the
    trail table; only this loop writes trails.
    """

    def __init__(self,
                 model: ResourceModel,
                 policy: ConstructionPolicy,
                 config: OptimizerConfig,
                 rng: np.random.Generator,
                 scorer: Optional[HostScorer] = None,
                 archive: Optional[ParetoArchive] = None,
                 verbose: bool = False,
                 print_every: int = 10):
        self.model = model
        self.policy = policy
        self.config = config
        self.rng = rng
        self.scorer = scorer
        self.archive = archive if archive is not None else ParetoArchive(
            config.archive_size, policy.objective_names, rng)
        self.repairer = LocalSearchRepair(model)
        self.verbose = verbose
        self.print_every = max(1, print_every)
        self.phase = EnginePhase.IDLE

    # ================= pheromone =================

    def table_entities(self, requested: Sequence[int], allowed: Sequence[int]) -> Tuple[List[int], List[int], int]:
        """Row ids, column ids and the 1/size denominator for this policy."""
        size = len(allowed) if self.policy.table_size_from_hosts else len(requested)
        if self.policy.pheromone_shape is PheromoneShape.VM_HOST:
            return list(requested), list(allowed), size

        vm_ids = list(requested)
        seen = set(vm_ids)
        for host_id in allowed:
            for vm_id in self.model.hosts[host_id].vm_ids:
                if vm_id not in seen and vm_id in self.model.vms:
                    seen.add(vm_id)
                    vm_ids.append(vm_id)
        return vm_ids, vm_ids, size

    def build_store(self, requested: Sequence[int], allowed: Sequence[int],
                    previous: Optional[PheromoneStore] = None,
                    last_placement: Optional[Dict[int, int]] = None) -> PheromoneStore:
        rows, cols, size = self.table_entities(requested, allowed)
        return PheromoneStore.initialize(self.policy.pheromone_shape, rows, cols, size,
                                         previous=previous, last_placement=last_placement)

    def preference(self, vm_id: int, host_id: int, occupants: Sequence[int], table: PheromoneStore) -> float:
        """Averaged pairwise trail (VM_PAIR) or the direct VM-host trail (VM_HOST)."""
        if table.shape is PheromoneShape.VM_HOST:
            return table.value(vm_id, host_id)
        if not occupants:
            return table.initial
        total = sum(table.value(other, vm_id) for other in occupants if other != vm_id)
        return total / len(occupants)

    def desirability(self, vm_id: int, host_id: int, occupants: Sequence[int], table: PheromoneStore) -> float:
        tentative = list(occupants) + [vm_id]
        if self.model.is_overloaded(host_id, tentative):
            heuristic = overload_aware_heuristic(self.model, vm_id, host_id, tentative)
        else:
            heuristic = self.policy.heuristic(self.model, vm_id, host_id, tentative)
        return self.preference(vm_id, host_id, occupants, table) * heuristic ** self.config.beta

    # ================= construction rule =================

    def roulette(self, weights: np.ndarray) -> int:
        """Sample an index from the cumulative distribution of ``weights``."""
        weights = np.clip(np.asarray(weights, dtype=np.float64), 0.0, None)
        total = weights.sum()
        if not np.isfinite(total) or total <= 0:
            return int(self.rng.integers(len(weights)))
        cumulative = np.cumsum(weights / total)
        index = int(np.searchsorted(cumulative, self.rng.random(), side="right"))
        return min(index, len(weights) - 1)

    def select_host(self, vm_id: int, candidates: Sequence[int], occupancy: Dict[int, List[int]],
                    table: PheromoneStore) -> int:
        if len(candidates) == 1:
            return candidates[0]
        weights = np.array([self.desirability(vm_id, host_id, occupancy[host_id], table)
                            for host_id in candidates], dtype=np.float64)
        if self.rng.random() <= self.config.q0:
            return candidates[int(np.argmax(weights))]
        return candidates[self.roulette(weights)]

    def least_overloaded_host(self, vm_id: int, allowed: Sequence[int], occupancy: Dict[int, List[int]]) -> int:
        """Host whose capacity the VM overshoots the least (exploit) or a weighted draw (explore)."""
        if len(allowed) == 1:
            return allowed[0]
        vm = self.model.vms[vm_id]
        amounts = []
        for host_id in allowed:
            host = self.model.hosts[host_id]
            free = self.model.available(host_id, occupancy[host_id])
            amounts.append(abs(free.pes - vm.pes) / host.pes + abs(free.ram - vm.ram) / host.ram)
        amounts = np.array(amounts, dtype=np.float64)

        if self.rng.random() <= self.config.q0:
            return allowed[int(np.argmin(amounts))]
        total = amounts.sum()
        weights = 1.0 - amounts / total if total > 0 else np.ones_like(amounts)
        return allowed[self.roulette(weights)]

    def construct(self, vm_order: Sequence[int], allowed: Sequence[int], table: PheromoneStore,
                  budget: int) -> AntSolution:
        """Build one ant's assignment for the batch."""
        self.phase = EnginePhase.ANT_CONSTRUCTING
        model = self.model
        occupancy = model.base_occupancy()
        assignment: Dict[int, int] = {}
        used_hosts: List[int] = []
        used_fallback = False

        for vm_id in vm_order:
            candidates = [host_id for host_id in allowed if model.is_suitable(host_id, occupancy[host_id], vm_id)]
            if candidates and len(used_hosts) >= budget:
                within_budget = [host_id for host_id in candidates if host_id in used_hosts]
                if within_budget:
                    candidates = within_budget

            if not candidates:
                fallback = self.policy.fallback
                if fallback is NoCandidateFallback.LEAVE_UNPLACED:
                    logger.debug("[Construction] vm %s left unplaced", vm_id)
                    continue
                used_fallback = True
                if fallback is NoCandidateFallback.OVERLOAD_HOST:
                    host_id = self.least_overloaded_host(vm_id, allowed, occupancy)
                else:
                    host_id = self.select_host(vm_id, list(allowed), occupancy, table)
            else:
                host_id = self.select_host(vm_id, candidates, occupancy, table)

            occupancy[host_id].append(vm_id)
            assignment[vm_id] = host_id
            if host_id not in used_hosts:
                used_hosts.append(host_id)

        solution = Solution(assignment)
        complete = len(assignment) == len(vm_order)
        feasible = complete and not any(model.is_overloaded(host_id, occupancy[host_id]) for host_id in used_hosts)
        return AntSolution(solution, occupancy, complete, feasible, used_fallback)

    # ================= scoring =================

    def wastage_of(self, solution: Solution, occupancy: Optional[Dict[int, List[int]]] = None) -> float:
        if occupancy is None:
            occupancy = self.model.occupancy_of(solution)
        return self.model.solution_wastage(occupancy, solution.hosts_used())

    def fitness_key(self, ant: AntSolution, budget: int) -> Tuple[int, int, float]:
        """Feasibility first, then fewer hosts, then lower wastage. Smaller is better."""
        hosts = ant.hosts_used if ant.feasible else budget + 1
        return (0 if ant.feasible else 1, hosts, self.wastage_of(ant.solution, ant.occupancy))

    def better(self, current: Optional[AntSolution], candidate: AntSolution, budget: int) -> AntSolution:
        if current is None or not current.complete:
            return candidate
        if not candidate.complete or candidate.solution == current.solution:
            return current
        if self.fitness_key(candidate, budget) < self.fitness_key(current, budget):
            return candidate
        return current

    def as_ant(self, solution: Solution) -> AntSolution:
        occupancy = self.model.occupancy_of(solution)
        feasible = self.model.is_feasible(solution)
        return AntSolution(solution, occupancy, True, feasible)

    def reinforce(self, store: PheromoneStore, solution: Solution):
        occupancy = self.model.occupancy_of(solution)
        hosts = len(solution.hosts_used())
        amount = self.policy.reinforcement(hosts, self.wastage_of(solution, occupancy))
        store.global_update(store.pairs_for(occupancy, solution), self.config.global_decay, amount)

    def rescue(self, ant: AntSolution, allowed: Sequence[int]) -> Optional[Solution]:
        """Repair an infeasible ant; returns a feasible solution or None."""
        repaired = self.repairer.clean(self.repairer.repair(ant.solution))
        if self.model.is_feasible(repaired):
            return repaired
        if self.policy.repair_each_ant:
            expanded = self.repairer.expand_hosts(ant.solution, allowed)
            if self.model.is_feasible(expanded):
                return expanded
        return None

    # ================= main loop =================

    def run(self, requested: Sequence[int], allowed: Sequence[int], store: PheromoneStore,
            deadline: Optional[float] = None) -> EngineResult:
        """
        Run up to ``config.generations`` generations.

        Args:
            requested: VM ids of the batch, in submission order
            allowed: host ids the batch may use
            store: session trail table, updated globally in place
            deadline: time.monotonic() value after which no new generation starts

        Returns:
            EngineResult with the best feasible Solution (or None)
        """
        policy = self.policy
        budget_base = len(allowed) if policy.budget_from_hosts else len(requested)
        m_min = max(budget_base, 1)
        global_best: Optional[AntSolution] = None
        last_generation_best: Optional[Solution] = None
        result = EngineResult(best=None, objectives=None)

        for generation in range(1, self.config.generations + 1):
            if deadline is not None and time.monotonic() >= deadline:
                result.stopped_early = True
                logger.info("[Construction] deadline reached after %d generations", generation - 1)
                break

            self.phase = EnginePhase.ITERATING
            budget = max(m_min - 1, 1)
            working = store.snapshot()
            generation_best: Optional[AntSolution] = global_best if policy.mode is SearchMode.SINGLE_BEST else None
            kept: List[Solution] = []

            for _ant in range(self.config.ants):
                order = list(requested)
                if policy.shuffle_vms:
                    order = [order[i] for i in self.rng.permutation(len(order))]
                ant = self.construct(order, allowed, working, budget)

                # local update is applied by this loop, never by the ant
                working.local_update(working.pairs_for(ant.occupancy, ant.solution), self.config.local_decay)

                self.phase = EnginePhase.SCORING
                if policy.mode is SearchMode.SINGLE_BEST:
                    generation_best = self.better(generation_best, ant, budget)
                    continue
                if not ant.complete:
                    continue
                solution = ant.solution if ant.feasible else self.rescue(ant, allowed)
                if solution is not None and solution not in kept:
                    kept.append(solution)

            self.phase = EnginePhase.GENERATION_DONE
            if policy.mode is SearchMode.SINGLE_BEST:
                reinforce_with = None
                if generation_best is not None and generation_best.complete:
                    reinforce_with = generation_best.solution
                    if generation_best.feasible:
                        global_best = generation_best
                        m_min = generation_best.hosts_used
                    else:
                        rescued = self.rescue(generation_best, allowed)
                        if rescued is not None:
                            global_best = self.as_ant(rescued)
                            reinforce_with = rescued
                            m_min = global_best.hosts_used
                if reinforce_with is not None:
                    self.reinforce(store, reinforce_with)
                result.history.append({
                    'generation': generation,
                    'feasible': global_best is not None,
                    'hosts': global_best.hosts_used if global_best else None,
                })
            else:
                if not kept:
                    fallback_best = None
                    if policy.mode is SearchMode.ARCHIVE_MIN_POWER:
                        entry = minimum_power(self.archive.entries)
                        fallback_best = entry.solution if entry else None
                    else:
                        fallback_best = last_generation_best
                    if fallback_best is not None:
                        self.reinforce(store, fallback_best)
                    logger.debug("[Construction] generation %d produced no feasible ant", generation)
                else:
                    entries = [make_entry(solution, evaluate_solution(self.model, solution, self.scorer),
                                          policy.objective_names) for solution in kept]
                    self.archive.add_batch(entries)
                    if policy.mode is SearchMode.ARCHIVE_MIN_POWER:
                        best_entry = minimum_power(entries)
                    else:
                        best_entry = knee_point(self.archive.entries)
                    last_generation_best = best_entry.solution
                    m_min = len(best_entry.solution.hosts_used())
                    self.reinforce(store, best_entry.solution)
                result.history.append({
                    'generation': generation,
                    'kept': len(kept),
                    'archive_size': self.archive.size,
                })

            result.generations_run = generation
            if self.verbose and generation % self.print_every == 0:
                self._print_progress(generation, global_best)

        self.phase = EnginePhase.TERMINAL

        if policy.mode is SearchMode.SINGLE_BEST:
            best = global_best.solution if global_best is not None else None
        elif policy.mode is SearchMode.ARCHIVE_MIN_POWER:
            entry = minimum_power_then_migrations(self.archive.entries)
            best = entry.solution if entry else None
        else:
            best = last_generation_best

        result.best = best
        result.archive = self.archive.entries
        if best is not None:
            result.objectives = evaluate_solution(self.model, best, self.scorer)
        logger.info("[Construction] %s finished: %d generations, %s",
                    policy.name, result.generations_run,
                    "no feasible solution" if best is None else f"{len(best.hosts_used())} hosts used")
        return result

    def _print_progress(self, generation: int, global_best: Optional[AntSolution]):
        if self.policy.mode is SearchMode.SINGLE_BEST:
            hosts = global_best.hosts_used if global_best else "-"
            print(f"Gen {generation}: Best hosts={hosts}, "
                  f"Feasible={global_best is not None}")
            return
        stats = self.archive.get_statistics()
        mins = ", ".join(f"{name}={value:.2f}"
                         for name, value in zip(self.archive.objective_names, stats['objectives_min']))
        print(f"Gen {generation}: Archive={stats['archive_size']}, Min({mins})")
