from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pysam

logger = logging.getLogger(__name__)


def find_bam_index(bam_path: str | Path) -> Optional[Path]:
    """Return the BAM index path, or None (with a warning) if the BAM is not indexed."""
    bam = Path(bam_path)
    bai1 = bam.with_suffix(bam.suffix + ".bai")
    bai2 = bam.with_suffix(".bai")
    for bai in (bai1, bai2):
        if bai.exists():
            return bai
    logger.warning(
        "Couldn't find an index file for %s. Analysis will be significantly slower "
        "(optionally create one with pysam.index or samtools index %s)",
        bam,
        bam,
    )
    return None


def ensure_faidx(ref_fa: str | Path) -> Path:
    """Create a FASTA index next to the reference if it is missing."""
    ref = Path(ref_fa)
    fai = ref.with_suffix(ref.suffix + ".fai")
    if not fai.exists():
        logger.info("Creating FASTA index: %s", fai)
        pysam.faidx(str(ref))
    return fai

