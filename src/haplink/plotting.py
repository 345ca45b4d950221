from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence

import matplotlib.pyplot as plt

from .models import Variant

logger = logging.getLogger(__name__)


def plot_variant_frequencies(
    *,
    variants: Sequence[Variant],
    out_png: str | Path,
    title: str = "Alternate allele frequency",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = [f"{v.reference_allele}{v.position}{v.alternate_allele}" for v in variants]
    freqs = [v.alternate_depth / v.total_depth if v.total_depth else 0.0 for v in variants]

    plt.figure(figsize=(max(4.0, 0.4 * len(labels) + 2.0), 4.0))
    plt.bar(range(len(freqs)), freqs)
    plt.xticks(range(len(labels)), labels, rotation=60, ha="right", fontsize=8)
    plt.ylim(0.0, 1.0)
    plt.xlabel("Variant")
    plt.ylabel("AD / DP")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_haplotype_occurrences(
    *,
    summaries: List[Dict[str, object]],
    out_png: str | Path,
    title: str = "Haplotype occurrences",
) -> None:
    """Stacked bars of all-alternate vs remaining counts for each haplotype.

    ``summaries`` are the dicts produced by :func:`haplink.output.haplotype_summaries`.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    names = [str(s["name"]) for s in summaries]
    alt = [int(s["depth"]) for s in summaries]  # type: ignore[arg-type]
    rest = [int(s["total"]) - a for s, a in zip(summaries, alt)]  # type: ignore[arg-type]

    plt.figure(figsize=(max(4.0, 0.6 * len(names) + 2.0), 4.0))
    xs = range(len(names))
    plt.bar(xs, alt, label="all alternate")
    plt.bar(xs, rest, bottom=alt, label="other patterns")
    plt.xticks(list(xs), names, rotation=60, ha="right", fontsize=8)
    plt.ylabel("Observations")
    plt.title(title)
    if names:
        plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
