"""Reference <-> read-sequence coordinate mapping.

An :class:`Alignment` is an ordered tuple of :class:`AlignmentAnchor` s. The first anchor is
a ``START`` anchor at ``(0, left - 1)``; every following anchor marks the *end* of a run of
one CIGAR operation, so a run covers sequence positions ``(prev.seq, anchor.seq]`` and
reference positions ``(prev.ref, anchor.ref]``. All coordinates are 1-based.

Hard clips advance the sequence coordinate in the anchor list even though the clipped bases
are absent from the stored read sequence; :func:`resolve_position` rebases them away.
"""

from __future__ import annotations

import bisect
import enum
import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import pysam

logger = logging.getLogger(__name__)

_CIGAR_RE = re.compile(r"(\d+)([MIDNSHP=X])")


class Operation(enum.Enum):
    START = "start"
    MATCH = "M"
    INSERT = "I"
    DELETE = "D"
    SKIP = "N"
    SOFT_CLIP = "S"
    HARD_CLIP = "H"
    PAD = "P"
    SEQ_MATCH = "="
    SEQ_MISMATCH = "X"

    @property
    def is_match(self) -> bool:
        return self in (Operation.MATCH, Operation.SEQ_MATCH)

    @property
    def consumes_reference(self) -> bool:
        return self in _CONSUMES_REF

    @property
    def consumes_sequence(self) -> bool:
        # includes hard clips; resolve_position rebases them
        return self in _CONSUMES_SEQ


_CONSUMES_REF = frozenset(
    {Operation.MATCH, Operation.DELETE, Operation.SKIP, Operation.SEQ_MATCH, Operation.SEQ_MISMATCH}
)
_CONSUMES_SEQ = frozenset(
    {
        Operation.MATCH,
        Operation.INSERT,
        Operation.SOFT_CLIP,
        Operation.HARD_CLIP,
        Operation.SEQ_MATCH,
        Operation.SEQ_MISMATCH,
    }
)

# pysam cigartuples operation codes, in BAM order
_PYSAM_OPS = (
    Operation.MATCH,
    Operation.INSERT,
    Operation.DELETE,
    Operation.SKIP,
    Operation.SOFT_CLIP,
    Operation.HARD_CLIP,
    Operation.PAD,
    Operation.SEQ_MATCH,
    Operation.SEQ_MISMATCH,
)


@dataclass(frozen=True)
class AlignmentAnchor:
    sequence_position: int
    reference_position: int
    operation: Operation


@dataclass(frozen=True)
class Alignment:
    anchors: Tuple[AlignmentAnchor, ...]
    _refpos: Tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if len(self.anchors) == 0 or self.anchors[0].operation is not Operation.START:
            raise ValueError("An alignment must begin with a START anchor")
        object.__setattr__(self, "_refpos", tuple(a.reference_position for a in self.anchors))

    @classmethod
    def from_cigar(cls, cigar: Sequence[Tuple[Operation, int]], left_position: int) -> "Alignment":
        """Build anchors from ``(operation, length)`` runs starting at ``left_position``."""
        seqpos = 0
        refpos = left_position - 1
        anchors: List[AlignmentAnchor] = [AlignmentAnchor(seqpos, refpos, Operation.START)]
        for op, length in cigar:
            if length <= 0:
                continue
            if op.consumes_sequence:
                seqpos += length
            if op.consumes_reference:
                refpos += length
            anchors.append(AlignmentAnchor(seqpos, refpos, op))
        return cls(anchors=tuple(anchors))

    @classmethod
    def from_cigarstring(cls, cigar: str, left_position: int) -> "Alignment":
        runs = parse_cigar(cigar)
        return cls.from_cigar(runs, left_position)

    @classmethod
    def from_cigartuples(cls, cigartuples: Sequence[Tuple[int, int]], left_position: int) -> "Alignment":
        return cls.from_cigar([(_PYSAM_OPS[op], n) for op, n in cigartuples], left_position)

    @property
    def left_position(self) -> int:
        return self.anchors[0].reference_position + 1

    @property
    def right_position(self) -> int:
        return self.anchors[-1].reference_position

    def ref2seq(self, reference_position: int) -> Optional[Tuple[int, Operation]]:
        """Map a reference position without any hard-clip correction.

        Positions inside a deletion or skip resolve to the last sequence position before
        the gap. Returns ``None`` outside the aligned reference span.
        """
        first = self._refpos[0]
        if reference_position <= first or reference_position > self._refpos[-1]:
            return None
        # first anchor whose run reaches the position; it always consumes reference
        idx = bisect.bisect_left(self._refpos, reference_position)
        anchor = self.anchors[idx]
        op = anchor.operation
        if op.consumes_sequence:
            return anchor.sequence_position - (anchor.reference_position - reference_position), op
        return self.anchors[idx - 1].sequence_position, op

    def rebased(self) -> "Alignment":
        """Return the alignment with a leading hard clip removed from sequence coordinates."""
        if len(self.anchors) < 2 or self.anchors[1].operation is not Operation.HARD_CLIP:
            return self
        clip = self.anchors[1].sequence_position - self.anchors[0].sequence_position
        start = self.anchors[0]
        rest = [
            AlignmentAnchor(a.sequence_position - clip, a.reference_position, a.operation)
            for a in self.anchors[2:]
        ]
        return Alignment(anchors=(start, *rest))

    @property
    def sequence_span(self) -> int:
        """Largest sequence coordinate reached by a non-hard-clip run."""
        span = 0
        for a in self.anchors:
            if a.operation is not Operation.HARD_CLIP:
                span = max(span, a.sequence_position)
        return span


def parse_cigar(cigar: str) -> List[Tuple[Operation, int]]:
    runs: List[Tuple[Operation, int]] = []
    consumed = 0
    for m in _CIGAR_RE.finditer(cigar):
        if m.start() != consumed:
            break
        runs.append((Operation(m.group(2)), int(m.group(1))))
        consumed = m.end()
    if consumed != len(cigar) or not runs:
        raise ValueError(f"Invalid CIGAR string: {cigar!r}")
    return runs


def resolve_position(alignment: Alignment, reference_position: int) -> Optional[Tuple[int, Operation]]:
    """Locate the read-sequence coordinate covering ``reference_position``.

    Returns ``(sequence_position, operation)`` with a 1-based sequence position into the
    stored read sequence, or ``None`` when the position is unresolved.
    """
    aln = alignment.rebased()
    hit = aln.ref2seq(reference_position)
    if hit is None:
        return None
    seqpos, op = hit
    if seqpos < 1 or seqpos > aln.sequence_span:
        return None
    return seqpos, op


class AlignmentRecord(Protocol):
    """Read-only view of one aligned read, independent of the file format."""

    @property
    def reference_name(self) -> Optional[str]: ...

    @property
    def left_position(self) -> int: ...

    @property
    def right_position(self) -> int: ...

    @property
    def alignment(self) -> Alignment: ...

    @property
    def sequence(self) -> str: ...

    @property
    def qualities(self) -> Sequence[int]: ...

    @property
    def sequence_length(self) -> int: ...


@dataclass(frozen=True)
class ReadRecord:
    """In-memory aligned read (used for toy data and tests)."""

    name: str
    reference_name: str
    alignment: Alignment
    sequence: str
    qualities: Tuple[int, ...]

    @classmethod
    def from_cigar(
        cls,
        name: str,
        reference_name: str,
        left_position: int,
        cigar: str,
        sequence: str,
        qualities: Optional[Sequence[int]] = None,
    ) -> "ReadRecord":
        if qualities is None:
            qualities = [30] * len(sequence)
        if len(qualities) != len(sequence):
            raise ValueError(f"Read {name}: {len(qualities)} qualities for {len(sequence)} bases")
        alignment = Alignment.from_cigarstring(cigar, left_position)
        if alignment.rebased().sequence_span != len(sequence):
            raise ValueError(f"Read {name}: CIGAR {cigar} does not match a {len(sequence)} base sequence")
        return cls(
            name=name,
            reference_name=reference_name,
            alignment=alignment,
            sequence=sequence.upper(),
            qualities=tuple(int(q) for q in qualities),
        )

    @property
    def left_position(self) -> int:
        return self.alignment.left_position

    @property
    def right_position(self) -> int:
        return self.alignment.right_position

    @property
    def sequence_length(self) -> int:
        return len(self.sequence)


class PysamRecord:
    """Adapter exposing a ``pysam.AlignedSegment`` through the record interface.

    pysam coordinates are 0-based half-open; they are converted to 1-based inclusive.
    """

    def __init__(self, read: pysam.AlignedSegment) -> None:
        if read.is_unmapped or read.cigartuples is None:
            raise ValueError(f"Read {read.query_name} is unmapped")
        self.read = read

    @property
    def name(self) -> str:
        return str(self.read.query_name)

    @property
    def reference_name(self) -> Optional[str]:
        return self.read.reference_name

    @property
    def left_position(self) -> int:
        return int(self.read.reference_start) + 1

    @property
    def right_position(self) -> int:
        return int(self.read.reference_end)

    @cached_property
    def alignment(self) -> Alignment:
        return Alignment.from_cigartuples(self.read.cigartuples, self.left_position)

    @cached_property
    def sequence(self) -> str:
        seq = self.read.query_sequence
        return seq.upper() if seq is not None else ""

    @cached_property
    def qualities(self) -> Sequence[int]:
        quals = self.read.query_qualities
        if quals is None:
            return [0] * len(self.sequence)
        return list(quals)

    @property
    def sequence_length(self) -> int:
        return len(self.sequence)

    def __repr__(self) -> str:
        return f"PysamRecord({self.name} {self.reference_name}:{self.left_position}-{self.right_position})"


def load_reads(
    bam_path: str | Path,
    *,
    skip_duplicates: bool = True,
    include_secondary: bool = False,
    include_supplementary: bool = False,
) -> List[PysamRecord]:
    """Read every usable aligned record of a BAM/SAM file into memory."""
    records: List[PysamRecord] = []
    counts = {"total": 0, "unmapped": 0, "secondary": 0, "supplementary": 0, "duplicates": 0}

    with pysam.AlignmentFile(str(bam_path)) as bam:
        for read in bam.fetch(until_eof=True):
            counts["total"] += 1
            if read.is_unmapped or read.cigartuples is None:
                counts["unmapped"] += 1
                continue
            if read.is_secondary and not include_secondary:
                counts["secondary"] += 1
                continue
            if read.is_supplementary and not include_supplementary:
                counts["supplementary"] += 1
                continue
            if skip_duplicates and read.is_duplicate:
                counts["duplicates"] += 1
                continue
            records.append(PysamRecord(read))

    logger.info(
        "Loaded %d of %d reads from %s (skipped: %d unmapped, %d secondary, %d supplementary, %d duplicates)",
        len(records),
        counts["total"],
        bam_path,
        counts["unmapped"],
        counts["secondary"],
        counts["supplementary"],
        counts["duplicates"],
    )
    return records
