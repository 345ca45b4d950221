from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Tuple

DELETION_ALLELE = "-"

_RESERVED_INFO_KEYS = ("DP", "AD")


class FilterStatus(str, enum.Enum):
    """VCF FILTER values written by HapLink."""

    PASS = "PASS"
    DEPTH = "d"
    QUALITY = "q"
    POSITION = "x"
    SIGNIFICANCE = "sg"


class Call(enum.IntEnum):
    """Classification of one read's base at a mutation position.

    The integer values double as indices into an occurrence table; ``OTHER`` is never
    used as an index.
    """

    REFERENCE = 0
    ALTERNATE = 1
    OTHER = -1


@dataclass(frozen=True)
class PileupRow:
    """One allele block of a ``bam-readcount`` line.

    Only ``base``, ``count``, ``avg_base_quality`` and ``avg_pos_fraction`` (plus the
    row-level fields) feed the variant caller; the rest is carried for reporting.
    """

    chromosome: str
    position: int
    reference_base: str
    depth: int
    base: str
    count: int
    avg_mapping_quality: float
    avg_base_quality: float
    avg_se_mapping_quality: float
    num_plus_strand: int
    num_minus_strand: int
    avg_pos_fraction: float
    avg_mismatch_fraction: float
    avg_mismatch_quality_sum: float
    num_q2_reads: int
    avg_distance_to_q2: float
    avg_clipped_length: float
    avg_distance_to_3p_end: float

    @property
    def frequency(self) -> float:
        if self.depth == 0:
            return 0.0
        return self.count / self.depth


@dataclass(frozen=True)
class Variant:
    """A single called mutation, modelled on a VCF v4.2 data line.

    Attributes
    ----------
    chromosome:
        Reference sequence name.
    position:
        1-based reference position.
    identifier:
        VCF ID; ``"."`` when there is none.
    reference_allele, alternate_allele:
        Uppercase allele strings. Insertions store the reference base followed by the
        inserted bases; deletions store ``"-"``.
    quality:
        PHRED-scaled quality (the mean base quality of the supporting reads).
    filter_status:
        Always ``PASS`` for variants produced by the caller.
    info:
        Read-only mapping. ``DP`` (total depth) and ``AD`` (alternate depth) are required.
    """

    chromosome: str
    position: int
    identifier: str
    reference_allele: str
    alternate_allele: str
    quality: float
    filter_status: FilterStatus = FilterStatus.PASS
    info: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        missing = [k for k in _RESERVED_INFO_KEYS if k not in self.info]
        if missing:
            raise ValueError(
                f"Variant {self.chromosome}:{self.position} info is missing required keys: {missing}"
            )
        if self.position < 1:
            raise ValueError(f"Variant position must be 1-based, got {self.position}")
        object.__setattr__(self, "info", MappingProxyType(dict(self.info)))

    @classmethod
    def from_pileup(cls, row: PileupRow) -> "Variant":
        ref = row.reference_base.upper()
        alt = row.base.upper()

        if alt.startswith("+"):
            alt = ref + alt[1:]
        elif alt.startswith("-"):
            alt = DELETION_ALLELE

        return cls(
            chromosome=row.chromosome,
            position=row.position,
            identifier=".",
            reference_allele=ref,
            alternate_allele=alt,
            quality=float(row.avg_base_quality),
            filter_status=FilterStatus.PASS,
            info={"DP": int(row.depth), "AD": int(row.count)},
        )

    @property
    def total_depth(self) -> int:
        return int(self.info["DP"])

    @property
    def alternate_depth(self) -> int:
        return int(self.info["AD"])

    @property
    def sort_key(self) -> Tuple[str, int, str, str]:
        return (self.chromosome, self.position, self.reference_allele, self.alternate_allele)

    def __str__(self) -> str:
        return (
            f"Variant ({self.chromosome}:{self.position} "
            f"{self.reference_allele}=>{self.alternate_allele})"
        )


@dataclass(frozen=True)
class Haplotype:
    """An ordered set of variants hypothesised to sit on the same molecule.

    Build instances with :meth:`from_variants`; the constructor expects mutations that are
    already unique and sorted.
    """

    mutations: Tuple[Variant, ...]

    def __post_init__(self) -> None:
        if len(self.mutations) == 0:
            raise ValueError("A haplotype needs at least one mutation")
        seen: set[Tuple[str, int]] = set()
        for m in self.mutations:
            locus = (m.chromosome, m.position)
            if locus in seen:
                raise ValueError(
                    f"Haplotype has more than one mutation at {m.chromosome}:{m.position}"
                )
            seen.add(locus)
        keys = [(m.chromosome, m.position) for m in self.mutations]
        if keys != sorted(keys):
            raise ValueError("Haplotype mutations must be sorted by position")

    @classmethod
    def from_variants(cls, variants: Iterable[Variant]) -> "Haplotype":
        unique = set(variants)
        return cls(mutations=tuple(sorted(unique, key=lambda v: v.sort_key)))

    def __len__(self) -> int:
        return len(self.mutations)

    def __iter__(self):
        return iter(self.mutations)

    def __contains__(self, variant: object) -> bool:
        return variant in self.mutations

    @property
    def sort_key(self) -> Tuple[Tuple[str, int, str, str], ...]:
        return tuple(m.sort_key for m in self.mutations)

    def __str__(self) -> str:
        inner = ", ".join(f"{m.chromosome}:{m.position}{m.reference_allele}>{m.alternate_allele}" for m in self.mutations)
        return f"Haplotype [{inner}]"
