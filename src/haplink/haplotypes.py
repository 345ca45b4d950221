"""Haplotype discovery by linkage testing of variant co-occurrence on reads.

Two ways of counting co-occurrence are provided:

- :func:`simulate` ("ml") builds pseudo long reads by repeatedly drawing overlapping reads
  at random, so variants further apart than one read can still be linked.
- :func:`find_occurrences` ("raw") only counts reads that span every variant.

Both return an occurrence table: an ``int64`` array of shape ``(2,) * k`` where index 0 along
an axis is a reference call at that mutation and index 1 an alternate call. Reads or
iterations with any other base at any mutation are left out of the table.
"""

from __future__ import annotations

import bisect
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np
from tqdm import tqdm

from .alignment import AlignmentRecord
from .intervals import Interval, bases_at
from .models import Call, Haplotype, Variant
from .stats import linkage
from .utils import chunk_size, chunked

logger = logging.getLogger(__name__)

DEFAULT_ITERATIONS = 1000

OccurrenceFunc = Callable[[Haplotype], np.ndarray]


def classify(record: AlignmentRecord, variant: Variant) -> Call:
    """Call the base of ``record`` at ``variant`` as reference, alternate or other."""
    base = bases_at(Interval.at(variant.chromosome, variant.position), record)
    if base == variant.reference_allele:
        return Call.REFERENCE
    if base == variant.alternate_allele:
        return Call.ALTERNATE
    return Call.OTHER


def spans(record: AlignmentRecord, variant: Variant) -> bool:
    """True if the read's aligned span strictly contains the variant position."""
    return (
        record.reference_name == variant.chromosome
        and record.left_position < variant.position < record.right_position
    )


@dataclass(frozen=True)
class _SpanningReads:
    """Reads spanning one mutation, sorted by leftmost position."""

    reads: Sequence[AlignmentRecord]
    starts: Sequence[int]

    @classmethod
    def build(cls, variant: Variant, reads: Iterable[AlignmentRecord]) -> "_SpanningReads":
        hits = sorted((r for r in reads if spans(r, variant)), key=lambda r: r.left_position)
        return cls(reads=hits, starts=[r.left_position for r in hits])

    def starting_after(self, position: int) -> int:
        """Index of the first read whose leftmost position is > ``position``."""
        return bisect.bisect_right(self.starts, position)


def occurrence_table(calls: np.ndarray, k: int) -> np.ndarray:
    """Tally rows of a ``(n, k)`` call matrix that contain no ``OTHER`` call."""
    table = np.zeros((2,) * k, dtype=np.int64)
    if calls.size == 0:
        return table
    keep = calls[(calls != int(Call.OTHER)).all(axis=1)].astype(np.intp)
    np.add.at(table, tuple(keep.T), 1)
    return table


def _pseudoread(
    mutations: Sequence[Variant],
    index: Sequence[_SpanningReads],
    rng: np.random.Generator,
) -> List[int]:
    calls = [int(Call.OTHER)] * len(mutations)

    first = index[0].reads
    if len(first) == 0:
        # nothing to extend from
        return calls
    anchor = first[int(rng.integers(len(first)))]
    calls[0] = int(classify(anchor, mutations[0]))

    for j in range(1, len(mutations)):
        mutation = mutations[j]
        if spans(anchor, mutation):
            read = anchor
        else:
            pool = index[j]
            lo = pool.starting_after(anchor.right_position) if anchor.reference_name == mutation.chromosome else 0
            n = len(pool.reads) - lo
            if n <= 0:
                continue
            read = pool.reads[lo + int(rng.integers(n))]
        calls[j] = int(classify(read, mutation))
        anchor = read

    return calls


def _seed_sequence(seed: Optional[int], haplotype: Haplotype) -> np.random.SeedSequence:
    if seed is None:
        return np.random.SeedSequence()
    return np.random.SeedSequence([int(seed)] + [m.position for m in haplotype.mutations])


def simulate(
    haplotype: Haplotype,
    reads: Sequence[AlignmentRecord],
    iterations: int = DEFAULT_ITERATIONS,
    *,
    seed: Optional[int] = None,
    threads: int = 1,
) -> np.ndarray:
    """Estimate the occurrence table of ``haplotype`` by resampling reads.

    Each iteration draws a random read spanning the first mutation and calls its base
    there. For every later mutation the same read is reused if it also spans it; otherwise
    a random read is drawn among those spanning the mutation that start after the current
    read ends. A mutation with no such read is called ``OTHER``.

    Iteration ``i`` draws from its own generator spawned from
    ``SeedSequence([seed, *positions])``, so a fixed ``seed`` gives the same table for any
    number of ``threads``.
    """
    if iterations < 1:
        raise ValueError(f"iterations must be positive, got {iterations}")

    mutations = haplotype.mutations
    k = len(mutations)
    index = [_SpanningReads.build(m, reads) for m in mutations]
    children = _seed_sequence(seed, haplotype).spawn(iterations)

    calls = np.full((iterations, k), int(Call.OTHER), dtype=np.int8)

    def run(chunk: List[int]) -> None:
        for i in chunk:
            calls[i, :] = _pseudoread(mutations, index, np.random.default_rng(children[i]))

    if threads <= 1:
        run(list(range(iterations)))
    else:
        size = chunk_size(iterations, threads)
        with ThreadPoolExecutor(max_workers=threads) as pool:
            list(pool.map(run, chunked(range(iterations), size)))

    table = occurrence_table(calls, k)
    logger.debug(
        "%s: %d of %d iterations resolved at every position", haplotype, int(table.sum()), iterations
    )
    return table


def find_occurrences(haplotype: Haplotype, reads: Sequence[AlignmentRecord]) -> np.ndarray:
    """Occurrence table counted from the reads that span every mutation of ``haplotype``."""
    mutations = haplotype.mutations
    rows = [
        [int(classify(r, m)) for m in mutations]
        for r in reads
        if all(spans(r, m) for m in mutations)
    ]
    calls = np.array(rows, dtype=np.int8).reshape(len(rows), len(mutations))
    return occurrence_table(calls, len(mutations))


def passes_gate(table: np.ndarray, *, min_depth: int, alpha: float) -> bool:
    """Significant linkage and at least ``min_depth`` all-alternate observations."""
    _, p = linkage(table)
    if math.isnan(p):
        return False
    return p <= alpha and int(table[(1,) * table.ndim]) >= min_depth


def _haplotype_or_none(variants: Iterable[Variant]) -> Optional[Haplotype]:
    try:
        return Haplotype.from_variants(variants)
    except ValueError as e:
        logger.warning("Skipping candidate haplotype: %s", e)
        return None


def discover_haplotypes(
    variants: Sequence[Variant],
    occurrences: OccurrenceFunc,
    *,
    min_depth: int,
    alpha: float,
    progress: bool = False,
) -> Dict[Haplotype, np.ndarray]:
    """Find linked variant sets from pairwise linkage, then expand them once.

    1. Every unordered pair of variants is evaluated; pairs passing :func:`passes_gate` are kept.
    2. For each variant in a kept pair, the candidate haplotype is the union of all kept
       pairs containing it.
    3. Each distinct candidate is evaluated (reusing pair results) and returned if it
       passes the gate.

    Expansion is not iterated to a fixed point.
    """
    pairs: List[Haplotype] = []
    for a, b in combinations(variants, 2):
        if (a.chromosome, a.position) == (b.chromosome, b.position):
            continue
        pairs.append(Haplotype.from_variants((a, b)))

    logger.info("Evaluating %d variant pairs", len(pairs))
    it: Iterable[Haplotype] = pairs
    if progress:
        it = tqdm(pairs, unit="pair", desc="Linking variant pairs")

    pair_results: Dict[Haplotype, np.ndarray] = {}
    for pair in it:
        table = occurrences(pair)
        if passes_gate(table, min_depth=min_depth, alpha=alpha):
            pair_results[pair] = table
    logger.info("%d of %d pairs are linked", len(pair_results), len(pairs))

    linked = sorted({m for h in pair_results for m in h.mutations}, key=lambda v: v.sort_key)

    candidates: List[Haplotype] = []
    for variant in linked:
        members = {m for h in pair_results if variant in h for m in h.mutations}
        candidate = _haplotype_or_none(members)
        if candidate is not None and candidate not in candidates:
            candidates.append(candidate)

    results: Dict[Haplotype, np.ndarray] = {}
    for candidate in candidates:
        if candidate in pair_results:
            results[candidate] = pair_results[candidate]
            continue
        table = occurrences(candidate)
        if passes_gate(table, min_depth=min_depth, alpha=alpha):
            results[candidate] = table
        else:
            logger.info("Expanded candidate %s is not significant", candidate)

    logger.info("Found %d haplotypes from %d candidates", len(results), len(candidates))
    return dict(sorted(results.items(), key=lambda kv: kv[0].sort_key))


def find_simulated_haplotypes(
    variants: Sequence[Variant],
    reads: Sequence[AlignmentRecord],
    *,
    min_depth: int,
    alpha: float,
    iterations: int = DEFAULT_ITERATIONS,
    seed: Optional[int] = None,
    threads: int = 1,
    progress: bool = False,
) -> Dict[Haplotype, np.ndarray]:
    """Haplotype discovery using :func:`simulate` occurrence tables."""
    return discover_haplotypes(
        variants,
        lambda h: simulate(h, reads, iterations, seed=seed, threads=threads),
        min_depth=min_depth,
        alpha=alpha,
        progress=progress,
    )


def find_haplotypes(
    variants: Sequence[Variant],
    reads: Sequence[AlignmentRecord],
    *,
    min_depth: int,
    alpha: float,
    progress: bool = False,
) -> Dict[Haplotype, np.ndarray]:
    """Haplotype discovery using :func:`find_occurrences` occurrence tables."""
    return discover_haplotypes(
        variants,
        lambda h: find_occurrences(h, reads),
        min_depth=min_depth,
        alpha=alpha,
        progress=progress,
    )
