from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from moacs.config import TRAIL_MAX
from moacs.errors import InvariantViolationError


class PheromoneShape(Enum):
    VM_PAIR = "vm_pair"     # Liu family: trail between two VMs
    VM_HOST = "vm_host"     # OurAcs family: trail between a VM and a host


class PheromoneStore:
    """
    Dense trail table keyed by entity ids.

    Rows are VM ids; columns are VM ids (VM_PAIR) or host ids (VM_HOST).
    Self pairs never exist in the VM_PAIR shape and are kept at NaN.
    """

    def __init__(self,
                 shape: PheromoneShape,
                 row_ids: Sequence[int],
                 col_ids: Sequence[int],
                 initial: float,
                 trails: Optional[np.ndarray] = None,
                 tau_max: float = TRAIL_MAX):
        self.shape = shape
        self.row_ids = list(row_ids)
        self.col_ids = list(col_ids)
        self.initial = float(initial)
        self.tau_max = tau_max
        self._row_index: Dict[int, int] = {entity: i for i, entity in enumerate(self.row_ids)}
        self._col_index: Dict[int, int] = {entity: j for j, entity in enumerate(self.col_ids)}

        if trails is None:
            trails = np.full((len(self.row_ids), len(self.col_ids)), self.initial, dtype=np.float64)
            self._mask_self_pairs(trails)
        self._trails = trails                   # Shape: [rows, cols]
        self.inherited = 0

    @classmethod
    def initialize(cls,
                   shape: PheromoneShape,
                   row_ids: Sequence[int],
                   col_ids: Sequence[int],
                   size: int,
                   previous: Optional[PheromoneStore] = None,
                   last_placement: Optional[Mapping[int, int]] = None) -> PheromoneStore:
        """
        Build a table with every trail at ``1/size``.

        With warm-start data, a pair inherits its previous trail only when the
        two entities were colocated (VM_PAIR) or matched (VM_HOST) in the
        placement chosen last session.
        """
        if size < 1:
            raise InvariantViolationError("pheromone table size must be >= 1", size=size)
        store = cls(shape, row_ids, col_ids, 1.0 / size)
        if previous is not None and last_placement and previous.shape == shape:
            store._inherit(previous, last_placement)
        return store

    def _mask_self_pairs(self, trails: np.ndarray):
        if self.shape is not PheromoneShape.VM_PAIR:
            return
        for entity, i in self._row_index.items():
            j = self._col_index.get(entity)
            if j is not None:
                trails[i, j] = np.nan

    def _inherit(self, previous: PheromoneStore, last_placement: Mapping[int, int]):
        inherited = 0
        for a, i in self._row_index.items():
            host_a = last_placement.get(a)
            if host_a is None or a not in previous._row_index:
                continue
            for b, j in self._col_index.items():
                if a == b and self.shape is PheromoneShape.VM_PAIR:
                    continue
                if self.shape is PheromoneShape.VM_PAIR:
                    together = last_placement.get(b) == host_a
                else:
                    together = b == host_a
                if together and b in previous._col_index:
                    self._trails[i, j] = previous.value(a, b)
                    inherited += 1
        self.inherited = inherited

    # ---------------- access ----------------

    @property
    def size(self) -> int:
        return len(self.row_ids)

    def __contains__(self, pair: Tuple[int, int]) -> bool:
        a, b = pair
        if self.shape is PheromoneShape.VM_PAIR and a == b:
            return False
        return a in self._row_index and b in self._col_index

    def value(self, a: int, b: int) -> float:
        if (a, b) not in self:
            raise InvariantViolationError(f"no trail between {a} and {b}", a=a, b=b)
        return float(self._trails[self._row_index[a], self._col_index[b]])

    def values(self) -> np.ndarray:
        return self._trails.copy()

    def snapshot(self) -> PheromoneStore:
        """Deep copy for one generation's local use."""
        return PheromoneStore(self.shape, self.row_ids, self.col_ids, self.initial,
                              trails=self._trails.copy(), tau_max=self.tau_max)

    # ---------------- updates ----------------

    def pairs_for(self, occupancy: Mapping[int, Sequence[int]], assignment: Mapping[int, int]) -> List[Tuple[int, int]]:
        """
        Pairs reinforced by ``assignment``.

        VM_PAIR: every ordered pair of distinct VMs sharing a host the
        assignment uses (its projected occupants). VM_HOST: each (vm, host)
        entry of the assignment.
        """
        if self.shape is PheromoneShape.VM_HOST:
            return [(vm_id, host_id) for vm_id, host_id in assignment.items() if (vm_id, host_id) in self]

        pairs = []
        for host_id in dict.fromkeys(assignment.values()):
            members = [vm_id for vm_id in occupancy.get(host_id, ()) if vm_id in self._row_index]
            for a in members:
                for b in members:
                    if a != b:
                        pairs.append((a, b))
        return pairs

    def _apply(self, pairs: Iterable[Tuple[int, int]], rate: float, target: float):
        pairs = list(dict.fromkeys(pairs))
        if not pairs:
            return
        rows = np.array([self._row_index[a] for a, _ in pairs], dtype=np.int64)
        cols = np.array([self._col_index[b] for _, b in pairs], dtype=np.int64)
        updated = (1.0 - rate) * self._trails[rows, cols] + rate * target
        self._trails[rows, cols] = np.clip(updated, np.finfo(np.float64).tiny, self.tau_max)

    def local_update(self, pairs: Iterable[Tuple[int, int]], rate: float):
        """trail <- (1 - rate) * trail + rate * initial"""
        self._apply(pairs, rate, self.initial)

    def global_update(self, pairs: Iterable[Tuple[int, int]], rate: float, reinforcement: float):
        """trail <- (1 - rate) * trail + rate * reinforcement, capped at tau_max"""
        self._apply(pairs, rate, reinforcement)
