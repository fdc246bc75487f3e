from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set

import numpy as np
import pandas as pd
from scipy import stats

from moacs.models import OBJECTIVE_NAMES, ObjectiveVector, Solution

logger = logging.getLogger(__name__)


@dataclass
class ArchiveEntry:
    """A Solution together with its objective values."""
    solution: Solution
    objectives: ObjectiveVector
    values: np.ndarray = field(default=None)   # Shape: [num_objectives]

    def project(self, names: Sequence[str]) -> ArchiveEntry:
        return ArchiveEntry(self.solution, self.objectives, self.objectives.values(names))

    def to_dict(self) -> dict:
        row = {"solution": self.solution.to_dict()}
        row.update(self.objectives.to_dict())
        return row


def make_entry(solution: Solution, objectives: ObjectiveVector, names: Sequence[str] = OBJECTIVE_NAMES) -> ArchiveEntry:
    return ArchiveEntry(solution, objectives, objectives.values(names))


# ================================
# Dominance
# ================================

def dominates(a: np.ndarray, b: np.ndarray) -> bool:
    """True iff a <= b everywhere and a < b somewhere."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    return bool(np.all(a <= b) and np.any(a < b))


def dominance_matrix(objectives: np.ndarray) -> np.ndarray:
    """
    Pairwise dominance for a batch of objective vectors.

    Args:
        objectives: 2D array of shape [n_solutions, n_objectives]

    Returns:
        Boolean matrix M where M[i, j] means solution i dominates solution j
    """
    obj_i = objectives[:, np.newaxis, :]  # [n, 1, m]
    obj_j = objectives[np.newaxis, :, :]  # [1, n, m]

    less_equal = np.all(obj_i <= obj_j, axis=2)    # [n, n]
    strictly_less = np.any(obj_i < obj_j, axis=2)  # [n, n]
    matrix = less_equal & strictly_less

    np.fill_diagonal(matrix, False)
    return matrix


def non_dominated_mask(objectives: np.ndarray) -> np.ndarray:
    objectives = np.asarray(objectives, dtype=np.float64)
    if objectives.shape[0] == 0:
        return np.zeros(0, dtype=bool)
    return ~np.any(dominance_matrix(objectives), axis=0)


def non_dominated_front(entries: Sequence[ArchiveEntry]) -> List[ArchiveEntry]:
    """Single first front, in the input order."""
    if not entries:
        return []
    mask = non_dominated_mask(np.vstack([entry.values for entry in entries]))
    return [entry for entry, keep in zip(entries, mask) if keep]


# ================================
# Bounded archive
# ================================

class ParetoArchive:
    def __init__(self, max_size: int = 100, objective_names: Sequence[str] = OBJECTIVE_NAMES,
                 rng: Optional[np.random.Generator] = None):
        """
        Non-dominated archive of Solutions kept across generations.

        Args:
            max_size: NA, the bound enforced by prune()
            objective_names: which ObjectiveVector fields take part in dominance
            rng: random source for pruning
        """
        self.max_size = max_size
        self.objective_names = tuple(objective_names)
        self.rng = rng if rng is not None else np.random.default_rng()
        self._entries: List[ArchiveEntry] = []

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def is_empty(self) -> bool:
        return self.size == 0

    @property
    def entries(self) -> List[ArchiveEntry]:
        return list(self._entries)

    def objective_matrix(self) -> np.ndarray:
        if self.is_empty:
            return np.zeros((0, len(self.objective_names)), dtype=np.float64)
        return np.vstack([entry.values for entry in self._entries])

    def add_batch(self, entries: Iterable[ArchiveEntry]) -> List[ArchiveEntry]:
        """
        Union with ``entries``, keep the first front, prune to max_size.

        Returns:
            The archive contents after the update
        """
        merged = list(self._entries)
        seen: Set[Solution] = {entry.solution for entry in merged}
        for entry in entries:
            if entry.solution in seen:
                continue
            seen.add(entry.solution)
            merged.append(entry.project(self.objective_names))

        self._entries = non_dominated_front(merged)
        self.prune()
        logger.debug("[Archive] %d candidates -> %d on the front", len(merged), self.size)
        return self.entries

    def add(self, entry: ArchiveEntry) -> List[ArchiveEntry]:
        return self.add_batch([entry])

    def protected_indices(self) -> Set[int]:
        """Indices of entries that are the sole minimum of at least one objective."""
        objectives = self.objective_matrix()
        if objectives.shape[0] == 0:
            return set()
        at_min = objectives == objectives.min(axis=0)
        unique_cols = np.count_nonzero(at_min, axis=0) == 1
        return set(np.flatnonzero(np.any(at_min[:, unique_cols], axis=1)).tolist())

    def prune(self) -> int:
        """
        Randomly drop unprotected entries until size == max_size.

        Entries that alone hold the minimum of some objective are never dropped; when
        they alone meet or exceed max_size, nothing is pruned.

        Returns:
            Number of entries removed
        """
        extra = self.size - self.max_size
        if extra <= 0:
            return 0

        protected = self.protected_indices()
        if len(protected) >= self.max_size:
            logger.debug("[Archive] %d extreme solutions >= NA=%d, pruning skipped", len(protected), self.max_size)
            return 0

        candidates = np.array([i for i in range(self.size) if i not in protected], dtype=np.int64)
        removed = set(self.rng.choice(candidates, size=extra, replace=False).tolist())
        self._entries = [entry for i, entry in enumerate(self._entries) if i not in removed]
        return len(removed)

    def clear(self):
        self._entries = []

    # ---------------- reporting ----------------

    def get_statistics(self) -> dict:
        """Archive statistics over the raw objective values."""
        if self.is_empty:
            return {
                'archive_size': 0,
                'objectives_mean': [],
                'objectives_std': [],
                'objectives_min': [],
                'objectives_max': [],
                'spread': 0.0,
                'tradeoff_correlation': 0.0,
            }

        objectives = self.objective_matrix()
        return {
            'archive_size': self.size,
            'objectives_mean': np.mean(objectives, axis=0).tolist(),
            'objectives_std': np.std(objectives, axis=0).tolist(),
            'objectives_min': np.min(objectives, axis=0).tolist(),
            'objectives_max': np.max(objectives, axis=0).tolist(),
            'spread': _calculate_spread(objectives),
            'tradeoff_correlation': _tradeoff_correlation(objectives),
        }

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for idx, entry in enumerate(self._entries):
            row = {'solution_id': idx, 'num_vms': len(entry.solution)}
            row.update(entry.objectives.to_dict())
            row['assignment'] = entry.solution.to_dict()
            rows.append(row)
        columns = ['solution_id', 'num_vms', *OBJECTIVE_NAMES, 'assignment']
        return pd.DataFrame(rows, columns=columns)


def _calculate_spread(objectives: np.ndarray) -> float:
    """
    Standard deviation of gaps between neighbouring front points.
    Lower values indicate a more even front.
    """
    if objectives.shape[0] <= 1:
        return 0.0
    points = objectives[np.argsort(objectives[:, 0], kind="stable")]
    gaps = np.linalg.norm(np.diff(points, axis=0), axis=1)
    return float(np.std(gaps))


def _tradeoff_correlation(objectives: np.ndarray) -> float:
    """Spearman rank correlation between the first two objectives."""
    if objectives.shape[0] < 3 or objectives.shape[1] < 2:
        return 0.0
    x, y = objectives[:, 0], objectives[:, 1]
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    rho, _ = stats.spearmanr(x, y)
    return float(rho)
