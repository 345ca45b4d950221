import pytest

from haplink.caller import call_variants, call_variants_with_stats
from haplink.models import PileupRow


def make_row(base: str = "C", count: int = 10, depth: int = 20, **kw) -> PileupRow:
    fields = dict(
        chromosome="chr1",
        position=100,
        reference_base="A",
        depth=depth,
        base=base,
        count=count,
        avg_mapping_quality=60.0,
        avg_base_quality=30.0,
        avg_se_mapping_quality=0.0,
        num_plus_strand=count,
        num_minus_strand=0,
        avg_pos_fraction=0.5,
        avg_mismatch_fraction=0.0,
        avg_mismatch_quality_sum=0.0,
        num_q2_reads=0,
        avg_distance_to_q2=0.0,
        avg_clipped_length=0.0,
        avg_distance_to_3p_end=50.0,
    )
    fields.update(kw)
    return PileupRow(**fields)


THRESHOLDS = dict(min_depth=10, min_quality=12, min_position=0.1, min_frequency=0.05)


def test_allele_passing_every_filter_is_called() -> None:
    variants = call_variants([make_row()], alpha=0.05, **THRESHOLDS)
    assert len(variants) == 1
    v = variants[0]
    assert (v.position, v.reference_allele, v.alternate_allele) == (100, "A", "C")
    assert v.info["DP"] == 20
    assert v.info["AD"] == 10


def test_significance_filter() -> None:
    variants, stats = call_variants_with_stats([make_row()], alpha=1e-5, **THRESHOLDS)
    assert variants == []
    assert stats["rows_skipped_significance"] == 1


@pytest.mark.parametrize(
    "row_kw, reason",
    [
        ({"base": "A"}, "rows_skipped_reference"),
        ({"count": 9}, "rows_skipped_depth"),
        ({"avg_base_quality": 11.9}, "rows_skipped_quality"),
        ({"avg_pos_fraction": 0.05}, "rows_skipped_position"),
        ({"count": 10, "depth": 1000}, "rows_skipped_frequency"),
    ],
)
def test_filters_reject_rows(row_kw: dict, reason: str) -> None:
    variants, stats = call_variants_with_stats([make_row(**row_kw)], alpha=0.05, **THRESHOLDS)
    assert variants == []
    assert stats[reason] == 1
    assert stats["rows_total"] == 1
    assert stats["variants_called"] == 0


def test_variants_are_sorted_by_position() -> None:
    rows = [
        make_row(position=300, count=18),
        make_row(chromosome="chr0", position=500, count=18),
        make_row(position=100, count=18, base="+GG"),
    ]
    variants = call_variants(rows, alpha=1e-3, **THRESHOLDS)
    assert [(v.chromosome, v.position) for v in variants] == [("chr0", 500), ("chr1", 100), ("chr1", 300)]
    assert variants[1].alternate_allele == "AGG"
