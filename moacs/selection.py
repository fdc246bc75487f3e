from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from moacs.archive import ArchiveEntry


def normalize_objectives(objectives: np.ndarray) -> np.ndarray:
    """
    Min-max normalise each objective column to [0, 1].

    A column with no spread maps to 0.
    """
    objectives = np.asarray(objectives, dtype=np.float64)
    obj_min = np.min(objectives, axis=0, keepdims=True)
    obj_max = np.max(objectives, axis=0, keepdims=True)
    obj_range = obj_max - obj_min

    # Avoid division by zero
    obj_range = np.where(obj_range < 1e-12, 1.0, obj_range)

    return (objectives - obj_min) / obj_range


def minimum_power(candidates: Sequence[ArchiveEntry]) -> Optional[ArchiveEntry]:
    """Lowest total power; the first one wins a tie."""
    if not candidates:
        return None
    powers = np.array([entry.objectives.power for entry in candidates], dtype=np.float64)
    return candidates[int(np.argmin(powers))]


def minimum_power_then_migrations(candidates: Sequence[ArchiveEntry]) -> Optional[ArchiveEntry]:
    """Lowest power, ties broken by fewer migrations, then by order."""
    if not candidates:
        return None
    order = sorted(range(len(candidates)),
                   key=lambda i: (candidates[i].objectives.power, candidates[i].objectives.migrations, i))
    return candidates[order[0]]


def knee_scores(objectives: np.ndarray) -> np.ndarray:
    """Product of (1 - normalised objective) per row."""
    return np.prod(1.0 - normalize_objectives(objectives), axis=1)


def knee_point(candidates: Sequence[ArchiveEntry]) -> Optional[ArchiveEntry]:
    """
    Balanced pick on the front.

    Every objective is normalised across the candidates and each candidate
    scores prod(1 - normalised_i); the highest score wins, the first one on a
    tie.
    """
    if not candidates:
        return None
    objectives = np.vstack([entry.values for entry in candidates])
    return candidates[int(np.argmax(knee_scores(objectives)))]
