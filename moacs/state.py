from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from moacs.errors import StateBusyError
from moacs.pheromone import PheromoneStore

logger = logging.getLogger(__name__)


class OptimizerState:
    """
    Long-lived per-datacenter optimizer memory.

    Holds the trail table and the placement chosen by the previous call so the
    next call can warm-start. One call at a time: ``begin_session`` refuses a
    second caller instead of queueing it.

    Lifecycle: ``create()`` -> ``begin_session()`` / ``end_session()`` per
    call (warm data recorded at the end) -> ``reset()`` to forget it.
    """

    def __init__(self, name: str = "datacenter"):
        self.name = name
        self.last_trails: Optional[PheromoneStore] = None
        self.last_placement: Dict[int, int] = {}
        self.sessions = 0
        self._lock = threading.Lock()

    @classmethod
    def create(cls, name: str = "datacenter") -> OptimizerState:
        return cls(name)

    @property
    def is_warm(self) -> bool:
        return self.last_trails is not None and bool(self.last_placement)

    @property
    def in_session(self) -> bool:
        return self._lock.locked()

    def begin_session(self):
        if not self._lock.acquire(blocking=False):
            raise StateBusyError(f"optimizer state {self.name!r} is already serving a call")
        self.sessions += 1

    def end_session(self, trails: Optional[PheromoneStore] = None, placement: Optional[Dict[int, int]] = None):
        """Record warm-start data (if any) and release the state."""
        try:
            if trails is not None:
                self.last_trails = trails
            if placement:
                self.last_placement = dict(placement)
        finally:
            self._lock.release()

    def warm_start(self, trails: PheromoneStore, placement: Dict[int, int]):
        """Seed warm-start data from outside a session, e.g. a saved run."""
        self.last_trails = trails
        self.last_placement = dict(placement)

    def reset(self):
        self.last_trails = None
        self.last_placement = {}
        logger.debug("[Optimizer] state %r reset", self.name)
