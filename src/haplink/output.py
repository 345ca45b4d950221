"""Text serialization of variants (VCF) and haplotypes (YAML)."""

from __future__ import annotations

import datetime as _dt
import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Mapping

import numpy as np
import pysam
from jinja2 import Template

from . import __version__
from .models import FilterStatus, Haplotype, Variant
from .stats import linkage

logger = logging.getLogger(__name__)

_FILTER_IDS = {
    "d": FilterStatus.DEPTH.value,
    "q": FilterStatus.QUALITY.value,
    "x": FilterStatus.POSITION.value,
    "sg": FilterStatus.SIGNIFICANCE.value,
}

_VCF_HEADER = Template(
    """##fileformat=VCFv4.2
##filedate={{ filedate }}
##source=haplink v{{ version }}
##reference=file://{{ reference }}
{% for contig in contigs %}##contig=<ID={{ contig }}>
{% endfor %}##FILTER=<ID={{ filters.d }}{{ min_depth }},Description="Variant depth below {{ min_depth }}">
##FILTER=<ID={{ filters.q }}{{ min_quality }},Description="Quality below {{ min_quality }}">
##FILTER=<ID={{ filters.x }}{{ position_percent }},Description="Position in outer {{ position_percent }}% of reads">
##FILTER=<ID={{ filters.sg }},Description="Not significant at α={{ alpha }} level by Fisher's Exact Test">
##INFO=<ID=DP,Number=1,Type=Integer,Description="Read Depth">
##INFO=<ID=AD,Number=1,Type=Integer,Description="Alternate Depth">
#CHROM	POS	ID	REF	ALT	QUAL	FILTER	INFO
""",
    keep_trailing_newline=True,
)

_VARIANT_YAML = Template(
    """{{ indent }}- chromosome: {{ v.chromosome }}
{{ indent }}  position: {{ v.position }}
{{ indent }}  identifier: {{ v.identifier }}
{{ indent }}  referencebase: {{ v.reference_allele }}
{{ indent }}  alternatebase: {{ v.alternate_allele }}
{{ indent }}  quality: {{ v.quality }}
{{ indent }}  filter: {{ v.filter_status.value }}
{{ indent }}  info:
{% for key, value in v.info.items() %}{{ indent }}    {{ key }}: {{ value }}
{% endfor %}"""
)

_HAPLOTYPES_YAML = Template(
    """---
source: haplink v{{ version }}
date: {{ date }}
haplotypes:{% if not haplotypes %} []{% endif %}
{% for h in haplotypes %}  - name: {{ h.name }}
    linkage_disequilibrium: {{ h.delta }}
    significance: {{ h.p }}
    occurrences:
{% for pattern, count in h.occurrences %}      {{ pattern }}: {{ count }}
{% endfor %}    mutations:
{% for v in h.mutations %}{{ serialize(v, "      ") }}{% endfor %}{% endfor %}"""
)


def _format_info(info: Mapping[str, object]) -> str:
    return ";".join(f"{k}={v}" for k, v in info.items())


def serialize_vcf(variant: Variant) -> str:
    """One tab-separated VCF data line (without newline)."""
    return "\t".join(
        [
            variant.chromosome,
            str(variant.position),
            variant.identifier,
            variant.reference_allele,
            variant.alternate_allele,
            str(math.trunc(variant.quality)),
            variant.filter_status.value,
            _format_info(variant.info),
        ]
    )


def save_vcf(
    variants: Iterable[Variant],
    path: str | Path,
    *,
    reference: str | Path,
    min_depth: int,
    min_quality: float,
    min_position: float,
    alpha: float,
) -> Path:
    """Write ``variants`` to a VCF, recording the calling thresholds as FILTER metadata."""
    path = Path(path)
    variants = list(variants)
    header = _VCF_HEADER.render(
        filedate=_dt.date.today().strftime("%Y%m%d"),
        version=__version__,
        reference=Path(reference).resolve(),
        contigs=list(dict.fromkeys(v.chromosome for v in variants)),
        filters=_FILTER_IDS,
        min_depth=int(min_depth),
        min_quality=f"{min_quality:g}",
        position_percent=int(min_position * 100),
        alpha=alpha,
    )
    n = 0
    with open(path, "wt", encoding="utf-8") as fh:
        fh.write(header)
        for v in variants:
            fh.write(serialize_vcf(v) + "\n")
            n += 1
    logger.info("Wrote %d variants to %s", n, path)
    return path


def serialize_yaml(variant: Variant, indent: str = "  ") -> str:
    """YAML list item describing ``variant``."""
    return _VARIANT_YAML.render(v=variant, indent=indent)


def haplotype_name(haplotype: Haplotype) -> str:
    return "_".join(f"{m.reference_allele}{m.position}{m.alternate_allele}" for m in haplotype.mutations)


def occurrence_patterns(table: np.ndarray) -> List[tuple[str, int]]:
    """``("ref-alt", count)`` pairs for every cell of an occurrence table."""
    labels = ("ref", "alt")
    return [
        ("-".join(labels[i] for i in idx), int(table[idx]))
        for idx in np.ndindex(*table.shape)
    ]


def haplotype_summaries(haplotypes: Mapping[Haplotype, np.ndarray]) -> List[Dict[str, object]]:
    out: List[Dict[str, object]] = []
    for haplotype, table in haplotypes.items():
        delta, p = linkage(table)
        out.append(
            {
                "name": haplotype_name(haplotype),
                "delta": delta,
                "p": p,
                "depth": int(table[(1,) * table.ndim]),
                "total": int(table.sum()),
                "occurrences": occurrence_patterns(table),
                "mutations": list(haplotype.mutations),
            }
        )
    return out


def save_haplotypes_yaml(haplotypes: Mapping[Haplotype, np.ndarray], path: str | Path) -> Path:
    path = Path(path)
    text = _HAPLOTYPES_YAML.render(
        version=__version__,
        date=_dt.date.today().isoformat(),
        haplotypes=haplotype_summaries(haplotypes),
        serialize=serialize_yaml,
    )
    path.write_text(text, encoding="utf-8")
    logger.info("Wrote %d haplotypes to %s", len(haplotypes), path)
    return path


def read_vcf(path: str | Path) -> List[Variant]:
    """Read variants back from a VCF written by :func:`save_vcf`.

    Records without ``DP``/``AD`` INFO fields are skipped with a warning.
    """
    variants: List[Variant] = []
    with pysam.VariantFile(str(path)) as vcf:
        for rec in vcf:
            if "DP" not in rec.info or "AD" not in rec.info:
                logger.warning("Skipping %s:%d: missing DP/AD INFO fields", rec.contig, rec.pos)
                continue
            for alt in rec.alts or ():
                variants.append(
                    Variant(
                        chromosome=str(rec.contig),
                        position=int(rec.pos),
                        identifier=rec.id if rec.id is not None else ".",
                        reference_allele=rec.ref.upper(),
                        alternate_allele=alt.upper(),
                        quality=float(rec.qual) if rec.qual is not None else 0.0,
                        filter_status=FilterStatus.PASS,
                        info={"DP": int(rec.info["DP"]), "AD": int(rec.info["AD"])},
                    )
                )
    logger.info("Read %d variants from %s", len(variants), path)
    return variants
