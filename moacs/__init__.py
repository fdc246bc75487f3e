"""Multi-objective ant colony VM placement, consolidation and migration sequencing."""

from moacs.archive import ArchiveEntry, ParetoArchive
from moacs.config import OptimizerConfig
from moacs.construction import ConstructionEngine, EngineResult
from moacs.errors import (
    ConfigurationError,
    InfeasibleInput,
    InvariantViolation,
    InvariantViolationError,
    MoacsError,
    StateBusyError,
    UnresolvedLockIn,
)
from moacs.evaluation import HostScore, LinearPowerScorer, evaluate_solution
from moacs.migration import MigrationPlan, MigrationSequencer
from moacs.models import Host, MigrationEdge, ObjectiveVector, Solution, Vm
from moacs.optimizer import ConsolidationResult, OptimizationResult, Optimizer
from moacs.pheromone import PheromoneShape, PheromoneStore
from moacs.policies import (
    LIU2016,
    LIU2017,
    OUR_ACS,
    ConstructionPolicy,
    NoCandidateFallback,
    SearchMode,
    resolve_policy,
)
from moacs.repair import LocalSearchRepair
from moacs.resources import ResourceModel
from moacs.selection import knee_point, minimum_power
from moacs.state import OptimizerState

__version__ = "0.1.0"
