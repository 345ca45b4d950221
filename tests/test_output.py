import dataclasses
from pathlib import Path

import numpy as np

from haplink.models import Haplotype, Variant
from haplink.output import (
    haplotype_name,
    occurrence_patterns,
    read_vcf,
    save_haplotypes_yaml,
    save_vcf,
    serialize_vcf,
    serialize_yaml,
)

A101C = Variant("chr1", 101, ".", "A", "C", 40.7, info={"DP": 60, "AD": 30})
G131A = Variant("chr1", 131, ".", "G", "A", 39.0, info={"DP": 60, "AD": 30})


def test_serialize_vcf_line() -> None:
    assert serialize_vcf(A101C) == "chr1\t101\t.\tA\tC\t40\tPASS\tDP=60;AD=30"


def test_save_vcf_header_records_thresholds(tmp_path: Path) -> None:
    ref = tmp_path / "ref.fa"
    ref.write_text(">chr1\nACGT\n", encoding="utf-8")
    out = save_vcf(
        [A101C, G131A],
        tmp_path / "calls.vcf",
        reference=ref,
        min_depth=10,
        min_quality=12,
        min_position=0.1,
        alpha=1e-5,
    )
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "##fileformat=VCFv4.2"
    assert f"##reference=file://{ref.resolve()}" in lines
    assert "##contig=<ID=chr1>" in lines
    assert any(line.startswith("##FILTER=<ID=d10,") for line in lines)
    assert any(line.startswith("##FILTER=<ID=q12,") for line in lines)
    assert any(line.startswith("##FILTER=<ID=x10,") for line in lines)
    assert any(line.startswith("##FILTER=<ID=sg,") for line in lines)
    assert lines[-3].startswith("#CHROM\tPOS")
    assert lines[-2:] == [serialize_vcf(A101C), serialize_vcf(G131A)]

    back = read_vcf(out)
    assert back == [dataclasses.replace(A101C, quality=40.0), G131A]
    assert back[0].info["AD"] == 30


def test_serialize_yaml() -> None:
    text = serialize_yaml(A101C, indent="")
    assert text.splitlines() == [
        "- chromosome: chr1",
        "  position: 101",
        "  identifier: .",
        "  referencebase: A",
        "  alternatebase: C",
        "  quality: 40.7",
        "  filter: PASS",
        "  info:",
        "    DP: 60",
        "    AD: 30",
    ]


def test_haplotype_name_and_patterns() -> None:
    h = Haplotype.from_variants([G131A, A101C])
    assert haplotype_name(h) == "A101C_G131A"
    assert occurrence_patterns(np.array([[3, 0], [1, 5]])) == [
        ("ref-ref", 3),
        ("ref-alt", 0),
        ("alt-ref", 1),
        ("alt-alt", 5),
    ]


def test_save_haplotypes_yaml(tmp_path: Path) -> None:
    h = Haplotype.from_variants([A101C, G131A])
    out = save_haplotypes_yaml({h: np.array([[30, 0], [0, 30]])}, tmp_path / "h.yaml")
    text = out.read_text(encoding="utf-8")
    assert text.startswith("---\nsource: haplink v")
    assert "  - name: A101C_G131A\n" in text
    assert "      ref-ref: 30\n" in text
    assert "      alt-alt: 30\n" in text
    assert "      - chromosome: chr1\n        position: 131\n" in text


def test_save_empty_haplotypes_yaml(tmp_path: Path) -> None:
    out = save_haplotypes_yaml({}, tmp_path / "h.yaml")
    assert "haplotypes: []" in out.read_text(encoding="utf-8")
