from __future__ import annotations

import logging
import math
from typing import Tuple

import numpy as np
import scipy.stats

logger = logging.getLogger(__name__)


def phred_error(quality: float) -> float:
    """Convert a PHRED-scaled quality into the expected basecall error probability."""
    return 10 ** (-quality / 10)


def sum_sliced(array: np.ndarray, axis: int, index: int = 0) -> int:
    """Sum every element of ``array`` whose coordinate along ``axis`` equals ``index``.

    >>> a = np.arange(1, 9).reshape((2, 2, 2), order="F")
    >>> int(sum_sliced(a, 1))
    14
    >>> int(sum_sliced(a, 1, 1))
    22
    """
    return np.take(array, index, axis=axis).sum()


def fisher_pvalue(table: Tuple[Tuple[int, int], Tuple[int, int]]) -> float:
    """Two-sided Fisher's exact test p-value of a 2x2 contingency table."""
    _, p = scipy.stats.fisher_exact(table, alternative="two-sided")
    return float(p)


def linkage(counts: np.ndarray) -> Tuple[float, float]:
    """Linkage disequilibrium and chi-squared significance of an occurrence table.

    ``counts`` has one axis of length 2 per mutation of the haplotype; index 0 along an axis
    is a reference call at that mutation, index 1 an alternate call.

    The statistic is tested against one degree of freedom whatever the number of axes.
    Degenerate tables (a marginal of 0 or 1, or no counts at all) give a NaN p-value.

    Returns
    -------
    (delta, p)
    """
    counts = np.asarray(counts)
    k = counts.ndim
    n = counts.sum()

    with np.errstate(divide="ignore", invalid="ignore"):
        p_allref = counts[(0,) * k] / n
        p_refs = np.array([sum_sliced(counts, d, 0) for d in range(k)]) / n

        delta = p_allref - np.prod(p_refs)
        denominator = np.prod(p_refs * (1 - p_refs))
        r = delta / denominator ** (1 / k)
        chi_squared = r**2 * n

    # a marginal of 0 or 1 leaves r infinite or undefined
    if denominator == 0 or not np.isfinite(chi_squared):
        p = math.nan
    else:
        p = 1.0 - scipy.stats.chi2.cdf(chi_squared, 1)
    if math.isnan(p):
        logger.debug("Degenerate occurrence table (n=%d); linkage p-value is NaN", int(n))
    return float(delta), float(p)
