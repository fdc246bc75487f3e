from __future__ import annotations

from typing import Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np

from moacs.archive import ArchiveEntry, ParetoArchive, non_dominated_mask

# ==============================
# 2D PARETO
# ==============================


def plot_pareto_front(entries: Union[ParetoArchive, Sequence[ArchiveEntry]],
                      x: str = "power",
                      y: str = "migrations",
                      title: Optional[str] = None,
                      ax=None):
    """
    Scatter two objectives of ``entries`` and connect their 2D Pareto front.

    Nothing is shown or written; the caller decides what to do with the
    returned figure.
    """
    if isinstance(entries, ParetoArchive):
        entries = entries.entries
    if ax is None:
        fig, ax = plt.subplots(figsize=(7, 5))
    else:
        fig = ax.figure

    pts = np.array([[getattr(entry.objectives, x), getattr(entry.objectives, y)] for entry in entries],
                   dtype=np.float64).reshape(-1, 2)
    if len(pts):
        pf_mask = non_dominated_mask(pts)
        ax.scatter(pts[~pf_mask, 0], pts[~pf_mask, 1],
                   alpha=0.3, label="Dominated")
        ax.scatter(pts[pf_mask, 0], pts[pf_mask, 1],
                   s=60, label="Pareto Front")

        # connect Pareto points
        pf = pts[pf_mask]
        pf = pf[np.argsort(pf[:, 0])]
        ax.plot(pf[:, 0], pf[:, 1], linewidth=2)

    ax.set_xlabel(x)
    ax.set_ylabel(y)
    ax.set_title(title or f"{x} vs {y}")
    ax.grid(True)
    if len(pts):
        ax.legend()
    fig.tight_layout()
    return fig
