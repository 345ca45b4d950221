"""Per-base pileup statistics from ``bam-readcount``.

Each output line looks like::

    chrom  position  ref  depth  base:count:avg_mapping_quality:avg_basequality:...

with one colon-separated block of 14 fields per observed allele (``=``, ``A``, ``C``,
``G``, ``T``, ``N`` and any ``+INS``/``-DEL`` indels).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .external import BAM_READCOUNT, ensure_executable_in_path, run_command
from .models import PileupRow
from .utils import open_textmaybe_gzip
from .validation import ensure_faidx

logger = logging.getLogger(__name__)

_ROW_FIELDS = 4
_BLOCK_FIELDS = 14

# bam-readcount always reports "=" with zero counts
_PLACEHOLDER_BASE = "="


class MalformedInputError(ValueError):
    """Raised for a pileup line that cannot be parsed."""

    def __init__(self, line_number: int, line: str, reason: str) -> None:
        super().__init__(f"Malformed pileup line {line_number}: {reason}\n  {line.rstrip()}")
        self.line_number = line_number
        self.line = line
        self.reason = reason


def _number(value: str, cast, line_number: int, line: str, name: str):
    try:
        return cast(value)
    except ValueError:
        raise MalformedInputError(line_number, line, f"{name} is not numeric: {value!r}") from None


def parse_readcount_line(line: str, line_number: int = 1) -> List[PileupRow]:
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < _ROW_FIELDS + 1:
        raise MalformedInputError(
            line_number, line, f"expected at least {_ROW_FIELDS + 1} tab-separated fields, got {len(fields)}"
        )

    chrom = fields[0]
    position = _number(fields[1], int, line_number, line, "position")
    ref = fields[2].upper()
    depth = _number(fields[3], int, line_number, line, "depth")

    rows: List[PileupRow] = []
    for block in fields[_ROW_FIELDS:]:
        if not block:
            continue
        parts = block.split(":")
        if len(parts) != _BLOCK_FIELDS:
            raise MalformedInputError(
                line_number, line, f"allele block {block!r} has {len(parts)} fields, expected {_BLOCK_FIELDS}"
            )
        base = parts[0]
        if base == _PLACEHOLDER_BASE:
            continue

        def num(i: int, cast=float):
            return _number(parts[i], cast, line_number, line, f"field {i + 1} of block {base!r}")

        rows.append(
            PileupRow(
                chromosome=chrom,
                position=position,
                reference_base=ref,
                depth=depth,
                base=base.upper(),
                count=num(1, int),
                avg_mapping_quality=num(2),
                avg_base_quality=num(3),
                avg_se_mapping_quality=num(4),
                num_plus_strand=num(5, int),
                num_minus_strand=num(6, int),
                avg_pos_fraction=num(7),
                avg_mismatch_fraction=num(8),
                avg_mismatch_quality_sum=num(9),
                num_q2_reads=num(10, int),
                avg_distance_to_q2=num(11),
                avg_clipped_length=num(12),
                avg_distance_to_3p_end=num(13),
            )
        )
    return rows


def parse_readcounts(lines: Iterable[str]) -> Iterator[PileupRow]:
    """Yield one :class:`PileupRow` per allele block; blank lines are ignored."""
    for i, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        yield from parse_readcount_line(line, i)


def read_readcounts(path: str | Path) -> List[PileupRow]:
    with open_textmaybe_gzip(path, "rt") as fh:
        rows = list(parse_readcounts(fh))
    logger.info("Read %d allele rows from %s", len(rows), path)
    return rows


def count_base_stats(
    bam_path: str | Path,
    reference_path: str | Path,
    *,
    min_mapping_quality: int = 0,
    min_base_quality: int = 0,
    max_depth: Optional[int] = None,
    save_to: Optional[str | Path] = None,
) -> List[PileupRow]:
    """Run ``bam-readcount`` over the whole BAM and parse its output."""
    ensure_executable_in_path(BAM_READCOUNT)
    ensure_faidx(reference_path)

    cmd: List[str] = [
        BAM_READCOUNT,
        "-q",
        str(min_mapping_quality),
        "-b",
        str(min_base_quality),
        "-w",
        "1",
        "-f",
        str(reference_path),
    ]
    if max_depth is not None:
        cmd += ["-d", str(max_depth)]
    cmd.append(str(bam_path))

    logger.info("Counting bases in %s with %s", bam_path, BAM_READCOUNT)
    cp = run_command(cmd)
    if save_to is not None:
        Path(save_to).write_text(cp.stdout, encoding="utf-8")

    rows = list(parse_readcounts(cp.stdout.splitlines()))
    logger.info("bam-readcount reported %d allele rows", len(rows))
    return rows

