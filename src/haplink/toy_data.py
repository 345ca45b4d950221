from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_READ_LENGTH = 100
TOY_BASEQ = 40
TOY_MAPQ = 60

# 1-based positions of the two linked SNVs
TOY_VARIANT_POSITIONS = (101, 131)


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _make_read(
    name: str,
    start0: int,
    seq: str,
    header: pysam.AlignmentHeader,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment(header)
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = TOY_MAPQ
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array(chr(TOY_BASEQ + 33) * len(seq))
    return a


def _centered_fraction(qpos0: int, length: int) -> float:
    """bam-readcount style read position: 1 at the read centre, towards 0 at either end."""
    return 1.0 - abs(2.0 * (qpos0 + 0.5) / length - 1.0)


def _zero_block(base: str) -> str:
    return f"{base}:0:0.00:0.00:0.00:0:0:0.00:0.00:0.00:0:0.00:0.00:0.00"


def _readcount_lines(ref_seq: str, reads: List[Tuple[int, str]]) -> List[str]:
    """bam-readcount output for ungapped, unclipped forward reads."""
    lines: List[str] = []
    for pos0, ref_base in enumerate(ref_seq):
        counts: Counter = Counter()
        fractions: Dict[str, List[float]] = {}
        for start0, seq in reads:
            qpos0 = pos0 - start0
            if 0 <= qpos0 < len(seq):
                base = seq[qpos0]
                counts[base] += 1
                fractions.setdefault(base, []).append(_centered_fraction(qpos0, len(seq)))
        depth = sum(counts.values())
        if depth == 0:
            continue

        blocks = [_zero_block("=")]
        for base in ["A", "C", "G", "T", "N"]:
            n = counts.get(base, 0)
            if n == 0:
                blocks.append(_zero_block(base))
                continue
            frac = sum(fractions[base]) / n
            blocks.append(
                f"{base}:{n}:{TOY_MAPQ:.2f}:{TOY_BASEQ:.2f}:0.00:{n}:0:{frac:.2f}:0.00:0.00:0:0.00:0.00:0.50"
            )
        lines.append("\t".join([TOY_CONTIG, str(pos0 + 1), ref_base, str(depth)] + blocks))
    return lines


def make_toy_data(*, outdir: str | Path, n_reads: int = 60) -> Dict[str, str]:
    """Create a tiny reference, BAM and bam-readcount table with two linked SNVs.

    Every read spans both SNVs; even-numbered reads carry both alternate alleles and
    odd-numbered reads carry neither.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - toy.bam (+ .bai)
    - toy.readcounts.tsv

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    ref_seq = ("ACGT" * 75)[:300]
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, TOY_CONTIG, ref_seq)
    pysam.faidx(str(ref_fa))

    variants = [(pos - 1, _mutate_base(ref_seq[pos - 1])) for pos in TOY_VARIANT_POSITIONS]

    first_start = TOY_VARIANT_POSITIONS[-1] - TOY_READ_LENGTH + 1
    max_start = TOY_VARIANT_POSITIONS[0] - 2
    reads: List[Tuple[int, str]] = []
    for i in range(n_reads):
        start0 = first_start + i % (max_start - first_start + 1)
        seq = list(ref_seq[start0 : start0 + TOY_READ_LENGTH])
        if i % 2 == 0:
            for pos0, alt in variants:
                seq[pos0 - start0] = alt
        reads.append((start0, "".join(seq)))
    reads.sort(key=lambda r: r[0])

    header = pysam.AlignmentHeader.from_dict(
        {
            "HD": {"VN": "1.6", "SO": "coordinate"},
            "SQ": [{"SN": TOY_CONTIG, "LN": len(ref_seq)}],
        }
    )
    bam_path = outdir_p / "toy.bam"
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for i, (start0, seq) in enumerate(reads):
            bam.write(_make_read(f"read_{i}", start0, seq, header))
    pysam.index(str(bam_path))

    readcounts = outdir_p / "toy.readcounts.tsv"
    readcounts.write_text("\n".join(_readcount_lines(ref_seq, reads)) + "\n", encoding="utf-8")

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "readcounts": str(readcounts),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
