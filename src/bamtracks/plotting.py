from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence

import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)

_BASES = "ATCG"


def _rate_matrix(rows: Sequence[Dict[str, object]]) -> np.ndarray:
    m = np.full((4, 4), np.nan)
    for r in rows:
        i = _BASES.index(str(r["ref"]))
        j = _BASES.index(str(r["alt"]))
        m[i, j] = float(r["rate"])  # type: ignore[arg-type]
    return m


def plot_error_heatmap(
    *,
    rates: Sequence[Dict[str, object]],
    out_png: str | Path,
    title: str = "Substitution error rates",
) -> None:
    """Reference base (rows) x observed base (columns), diagonal left blank."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    m = _rate_matrix(rates)

    plt.figure()
    masked = np.ma.masked_invalid(m)
    plt.imshow(masked, cmap="viridis")
    plt.colorbar(label="Error rate")
    for i in range(4):
        for j in range(4):
            if not np.isnan(m[i, j]):
                plt.text(j, i, f"{m[i, j]:.2e}", ha="center", va="center", color="white", fontsize=7)
    plt.xticks(range(4), list(_BASES))
    plt.yticks(range(4), list(_BASES))
    plt.xlabel("Observed base")
    plt.ylabel("Reference base")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_locus_counts(
    *,
    locus_counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Loci by outcome",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels: List[str] = list(locus_counts.keys())
    values = [int(locus_counts[k]) for k in labels]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Loci")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
