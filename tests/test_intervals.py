import logging
import shutil
from pathlib import Path

import pytest

from haplink.alignment import ReadRecord, load_reads
from haplink.intervals import (
    EmptyIntervalError,
    Interval,
    base_quality,
    bases_at,
    contains,
    depth,
    depth_in_bam,
    fractional_position,
    mean_fractional_position,
    mean_quality,
)
from haplink.toy_data import TOY_CONTIG, TOY_VARIANT_POSITIONS, make_toy_data


def test_interval_validation_and_length() -> None:
    assert len(Interval("chr1", 5, 9)) == 5
    assert len(Interval.at("chr1", 5)) == 1
    with pytest.raises(ValueError):
        Interval("chr1", 9, 5)
    with pytest.raises(ValueError):
        Interval("chr1", 0, 5)


def test_contains_requires_match_at_every_position() -> None:
    read = ReadRecord.from_cigar("r1", "chr1", 10, "2M2D2M", "ACGT")
    assert contains(Interval("chr1", 10, 11), read)
    assert contains(Interval("chr1", 14, 15), read)
    assert not contains(Interval("chr1", 11, 12), read)
    assert not contains(Interval("chr1", 9, 10), read)
    assert not contains(Interval("chr2", 10, 11), read)


def test_bases_at_repeats_base_before_deletion() -> None:
    read = ReadRecord.from_cigar("r1", "chr1", 10, "2M2D2M", "ACGT")
    assert bases_at(Interval("chr1", 11, 14), read) == "CCCG"


def test_bases_at_outside_read_is_unresolved() -> None:
    read = ReadRecord.from_cigar("r1", "chr1", 10, "4M", "ACGT")
    assert bases_at(Interval("chr1", 12, 15), read) == "GTNN"


def test_base_quality_only_counts_matches() -> None:
    read = ReadRecord.from_cigar("r1", "chr1", 10, "2M2D2M", "ACGT", qualities=[10, 20, 30, 40])
    assert base_quality(Interval("chr1", 10, 11), read) == pytest.approx(15.0)
    assert base_quality(Interval("chr1", 11, 14), read) == pytest.approx(25.0)
    with pytest.raises(EmptyIntervalError):
        base_quality(Interval("chr1", 12, 13), read)


def test_fractional_position() -> None:
    read = ReadRecord.from_cigar("r1", "chr1", 10, "4M", "ACGT")
    assert fractional_position(Interval("chr1", 10, 11), read) == pytest.approx(0.375)
    assert fractional_position(Interval.at("chr1", 13), read) == pytest.approx(1.0)
    with pytest.raises(EmptyIntervalError):
        fractional_position(Interval.at("chr1", 20), read)


def _reads() -> list:
    return [
        ReadRecord.from_cigar(f"r{i}", "chr1", 10 + i, "10M", "ACGTACGTAC", qualities=[20 + i] * 10)
        for i in range(8)
    ]


def test_depth_is_independent_of_threads() -> None:
    reads = _reads()
    iv = Interval("chr1", 15, 17)
    assert depth(iv, reads) == 6
    assert depth(iv, reads, threads=3) == 6
    assert depth(Interval.at("chr1", 100), reads) == 0


def test_mean_statistics() -> None:
    reads = _reads()
    iv = Interval.at("chr1", 12)
    # reads starting at 10, 11 and 12 contain position 12
    assert mean_quality(iv, reads) == pytest.approx(21.0)
    assert mean_quality(iv, reads, threads=4) == pytest.approx(21.0)
    assert mean_fractional_position(iv, reads) == pytest.approx((0.3 + 0.2 + 0.1) / 3)


def test_mean_statistics_without_reads() -> None:
    with pytest.raises(EmptyIntervalError):
        mean_quality(Interval.at("chr1", 500), _reads())
    with pytest.raises(EmptyIntervalError):
        mean_fractional_position(Interval.at("chr1", 500), [])


def test_depth_in_bam_matches_in_memory_depth(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    iv = Interval.at(TOY_CONTIG, TOY_VARIANT_POSITIONS[0])

    reads = load_reads(toy["bam"])
    assert len(reads) == 60
    assert depth_in_bam(iv, toy["bam"]) == depth(iv, reads) == 60


def test_depth_in_bam_without_index_warns(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bare = tmp_path / "bare"
    bare.mkdir()
    bam = bare / "toy.bam"
    shutil.copy(toy["bam"], bam)

    with caplog.at_level(logging.WARNING):
        n = depth_in_bam(Interval.at(TOY_CONTIG, TOY_VARIANT_POSITIONS[1]), bam)
    assert n == 60
    assert "Couldn't find an index file" in caplog.text
