from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Optional

from moacs.errors import ConfigurationError

# -------------------------------------------------
# Defaults
# -------------------------------------------------

GENERATIONS = 50                  # G: number of generations per call
ANTS = 10                         # A: ants per generation
Q0 = 0.9                          # exploitation probability of the construction rule
BETA = 2.0                        # heuristic exponent
LOCAL_DECAY = 0.1                 # local pheromone decay rate
GLOBAL_DECAY = 0.1                # global pheromone decay rate
ARCHIVE_SIZE = 100                # NA: external archive bound
OVER_UTILIZATION_THRESHOLD = 0.9  # host CPU/RAM utilization ceiling
UNDER_UTILIZATION_THRESHOLD = 0.2 # consolidation trigger (CPU only)

UTILIZATION_PRECISION = 4         # decimals kept before threshold comparisons
TRAIL_MAX = 1.0                   # pheromone ceiling
CURRENT_HOST_BONUS = 5.0          # Liu2016 heuristic multiplier for a VM's own host

CARBON_INTENSITY = 0.475          # kgCO2 per kWh equivalent, per watt of draw
ENERGY_PRICE = 0.12               # $ per kWh equivalent, per watt of draw

MB_PER_GB = 1024.0


@dataclass(frozen=True)
class OptimizerConfig:
    """Per-call tuning values. Validated on construction."""
    generations: int = GENERATIONS
    ants: int = ANTS
    q0: float = Q0
    beta: float = BETA
    local_decay: float = LOCAL_DECAY
    global_decay: float = GLOBAL_DECAY
    archive_size: int = ARCHIVE_SIZE
    over_utilization_threshold: float = OVER_UTILIZATION_THRESHOLD
    under_utilization_threshold: float = UNDER_UTILIZATION_THRESHOLD
    time_budget_s: Optional[float] = None
    seed: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Reject out-of-range values before any search work.

        Raises:
            ConfigurationError: on the first invalid field
        """
        if self.generations < 1:
            raise ConfigurationError(f"generations must be >= 1, got {self.generations}")
        if self.ants < 1:
            raise ConfigurationError(f"ants must be >= 1, got {self.ants}")
        if not 0.0 <= self.q0 <= 1.0:
            raise ConfigurationError(f"q0 must be in [0, 1], got {self.q0}")
        if self.beta <= 0:
            raise ConfigurationError(f"beta must be > 0, got {self.beta}")
        for name in ("local_decay", "global_decay"):
            value = getattr(self, name)
            if not 0.0 < value < 1.0:
                raise ConfigurationError(f"{name} must be in (0, 1), got {value}")
        if self.archive_size < 1:
            raise ConfigurationError(f"archive_size must be >= 1, got {self.archive_size}")
        if not 0.0 < self.over_utilization_threshold <= 1.0:
            raise ConfigurationError(
                f"over_utilization_threshold must be in (0, 1], got {self.over_utilization_threshold}")
        if not 0.0 <= self.under_utilization_threshold < self.over_utilization_threshold:
            raise ConfigurationError(
                "under_utilization_threshold must be in [0, over_utilization_threshold), "
                f"got {self.under_utilization_threshold}")
        if self.time_budget_s is not None and self.time_budget_s < 0:
            raise ConfigurationError(f"time_budget_s must be >= 0, got {self.time_budget_s}")

    def replace(self, **changes) -> OptimizerConfig:
        return dataclasses.replace(self, **changes)
