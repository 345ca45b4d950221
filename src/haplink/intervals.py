"""Per-interval statistics over aligned reads.

Intervals are 1-based and inclusive on both ends. Reads are any objects implementing
:class:`haplink.alignment.AlignmentRecord`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Sequence, TypeVar

import numpy as np
import pysam

from .alignment import AlignmentRecord, PysamRecord, resolve_position
from .utils import chunk_size, chunked
from .validation import find_bam_index

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNRESOLVED_BASE = "N"


class EmptyIntervalError(ValueError):
    """Raised when a statistic is requested over an interval with no usable data."""


@dataclass(frozen=True)
class Interval:
    chromosome: str
    left: int
    right: int

    def __post_init__(self) -> None:
        if self.left < 1 or self.right < self.left:
            raise ValueError(f"Invalid interval {self.chromosome}:{self.left}-{self.right}")

    @classmethod
    def at(cls, chromosome: str, position: int) -> "Interval":
        return cls(chromosome, position, position)

    def __len__(self) -> int:
        return self.right - self.left + 1

    def __str__(self) -> str:
        return f"{self.chromosome}:{self.left}-{self.right}"


def bases_at(interval: Interval, record: AlignmentRecord) -> str:
    """Bases of ``record`` aligned to each reference position of ``interval``.

    The operation at each position is not checked, so positions inside a deletion repeat
    the base before the gap. Unresolved positions yield ``"N"``.
    """
    alignment = record.alignment
    sequence = record.sequence
    out: List[str] = []
    for pos in range(interval.left, interval.right + 1):
        hit = resolve_position(alignment, pos)
        out.append(sequence[hit[0] - 1] if hit is not None else UNRESOLVED_BASE)
    return "".join(out)


def contains(interval: Interval, record: AlignmentRecord) -> bool:
    """True if every position of ``interval`` is aligned to ``record`` through a match."""
    if record.reference_name != interval.chromosome:
        return False
    if interval.left < record.left_position:
        return False
    if interval.right > record.right_position:
        return False

    alignment = record.alignment
    for pos in range(interval.left, interval.right + 1):
        hit = resolve_position(alignment, pos)
        if hit is None or not hit[1].is_match:
            return False
    return True


def base_quality(interval: Interval, record: AlignmentRecord) -> float:
    """Mean PHRED quality of the match-aligned bases of ``record`` within ``interval``."""
    alignment = record.alignment
    qualities = record.qualities
    quals: List[int] = []
    for pos in range(interval.left, interval.right + 1):
        hit = resolve_position(alignment, pos)
        if hit is not None and hit[1].is_match:
            quals.append(qualities[hit[0] - 1])
    if not quals:
        raise EmptyIntervalError(f"No bases of the read are aligned by a match within {interval}")
    return float(np.mean(quals))


def fractional_position(interval: Interval, record: AlignmentRecord) -> float:
    """Position of ``interval`` as a fraction of the read's sequence length."""
    alignment = record.alignment
    left = resolve_position(alignment, interval.left)
    right = resolve_position(alignment, interval.right)
    if left is None or right is None:
        raise EmptyIntervalError(f"{interval} is not within the aligned part of the read")
    return ((left[0] + right[0]) / 2) / record.sequence_length


def _parallel_map(func: Callable[[List[T]], object], items: Sequence[T], threads: int) -> list:
    if threads <= 1 or len(items) <= 1:
        return [func(list(items))]
    size = chunk_size(len(items), threads)
    with ThreadPoolExecutor(max_workers=threads) as pool:
        return list(pool.map(func, chunked(items, size)))


def depth(interval: Interval, reads: Sequence[AlignmentRecord], *, threads: int = 1) -> int:
    """Number of reads that contain ``interval``."""
    partial = _parallel_map(lambda chunk: sum(1 for r in chunk if contains(interval, r)), reads, threads)
    return int(sum(partial))


def _containing(interval: Interval, reads: Sequence[AlignmentRecord], threads: int) -> List[AlignmentRecord]:
    parts = _parallel_map(lambda chunk: [r for r in chunk if contains(interval, r)], reads, threads)
    out: List[AlignmentRecord] = [r for part in parts for r in part]
    if not out:
        raise EmptyIntervalError(f"No reads contain {interval}")
    return out


def mean_quality(interval: Interval, reads: Sequence[AlignmentRecord], *, threads: int = 1) -> float:
    """Mean of :func:`base_quality` over the reads that contain ``interval``.

    For intervals longer than one base this averages per-base and then per-read scores.
    """
    containing = _containing(interval, reads, threads)
    return float(np.mean([base_quality(interval, r) for r in containing]))


def mean_fractional_position(
    interval: Interval, reads: Sequence[AlignmentRecord], *, threads: int = 1
) -> float:
    """Mean of :func:`fractional_position` over the reads that contain ``interval``."""
    containing = _containing(interval, reads, threads)
    return float(np.mean([fractional_position(interval, r) for r in containing]))


def depth_in_bam(interval: Interval, bam_path: str | Path) -> int:
    """Depth of ``interval`` read straight from a BAM/SAM file.

    Uses an index-assisted overlap query when an index exists and a full scan otherwise.
    Reads are filtered the same way as :func:`haplink.alignment.load_reads` with its defaults.
    """
    bai = find_bam_index(bam_path)
    n = 0
    index_filename = str(bai) if bai is not None else None
    with pysam.AlignmentFile(str(bam_path), index_filename=index_filename) as bam:
        if bai is not None:
            it = bam.fetch(interval.chromosome, interval.left - 1, interval.right)
        else:
            it = bam.fetch(until_eof=True)
        for read in it:
            if read.is_unmapped or read.cigartuples is None:
                continue
            if read.is_secondary or read.is_supplementary or read.is_duplicate:
                continue
            if contains(interval, PysamRecord(read)):
                n += 1
    return n
