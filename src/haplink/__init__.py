"""HapLink: variant calling and resampling-based haplotype linkage for aligned reads.

Public API is intentionally small; most users should use the CLI:

    haplink run --bam sample.bam --reference ref.fa --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.2.0"
