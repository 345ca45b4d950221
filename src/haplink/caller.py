from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from .models import PileupRow, Variant
from .stats import fisher_pvalue, phred_error

logger = logging.getLogger(__name__)


def _error_table(row: PileupRow) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Expected error counts vs observed alternate counts for the Fisher test."""
    e = phred_error(row.avg_base_quality)
    return (
        (int(round(e * row.depth)), int(round((1 - e) * row.depth))),
        (int(row.count), int(row.depth)),
    )


def call_variants_with_stats(
    rows: Iterable[PileupRow],
    *,
    min_depth: int,
    min_quality: float,
    min_position: float,
    min_frequency: float,
    alpha: float,
) -> Tuple[List[Variant], Dict[str, int]]:
    """Call variants from pileup rows and count why the others were rejected.

    Parameters
    ----------
    rows:
        One row per (position, alternate base), e.g. from :func:`haplink.readcounts.read_readcounts`.
    min_depth:
        Minimum alternate-allele count.
    min_quality:
        Minimum mean PHRED base quality of the alternate allele.
    min_position:
        Minimum mean position of the allele within its reads, as a fraction of read length.
    min_frequency:
        Minimum alternate-allele frequency (count / depth).
    alpha:
        Maximum p-value of a two-sided Fisher's exact test against the error rate implied
        by the mean base quality.

    Returns
    -------
    variants:
        Passing variants, sorted by chromosome and position.
    stats:
        Counters of rows seen and rows rejected by each filter.
    """
    stats: Dict[str, int] = {
        "rows_total": 0,
        "rows_skipped_reference": 0,
        "rows_skipped_depth": 0,
        "rows_skipped_quality": 0,
        "rows_skipped_position": 0,
        "rows_skipped_frequency": 0,
        "rows_skipped_significance": 0,
        "variants_called": 0,
    }

    variants: List[Variant] = []
    for row in rows:
        stats["rows_total"] += 1

        if row.base.upper() == row.reference_base.upper():
            stats["rows_skipped_reference"] += 1
            continue
        if row.count < min_depth:
            stats["rows_skipped_depth"] += 1
            continue
        if row.avg_base_quality < min_quality:
            stats["rows_skipped_quality"] += 1
            continue
        if row.avg_pos_fraction < min_position:
            stats["rows_skipped_position"] += 1
            continue
        if row.frequency < min_frequency:
            stats["rows_skipped_frequency"] += 1
            continue
        if not fisher_pvalue(_error_table(row)) <= alpha:
            stats["rows_skipped_significance"] += 1
            continue

        variants.append(Variant.from_pileup(row))

    variants.sort(key=lambda v: v.sort_key)
    stats["variants_called"] = len(variants)

    logger.info(
        "Called %d variants from %d allele rows "
        "(skipped: %d reference, %d depth, %d quality, %d position, %d frequency, %d significance)",
        stats["variants_called"],
        stats["rows_total"],
        stats["rows_skipped_reference"],
        stats["rows_skipped_depth"],
        stats["rows_skipped_quality"],
        stats["rows_skipped_position"],
        stats["rows_skipped_frequency"],
        stats["rows_skipped_significance"],
    )
    return variants, stats


def call_variants(
    rows: Iterable[PileupRow],
    *,
    min_depth: int,
    min_quality: float,
    min_position: float,
    min_frequency: float,
    alpha: float,
) -> List[Variant]:
    """Call variants from pileup rows; see :func:`call_variants_with_stats`."""
    variants, _ = call_variants_with_stats(
        rows,
        min_depth=min_depth,
        min_quality=min_quality,
        min_position=min_position,
        min_frequency=min_frequency,
        alpha=alpha,
    )
    return variants
