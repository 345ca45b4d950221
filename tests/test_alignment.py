import pysam
import pytest

from haplink.alignment import Alignment, Operation, PysamRecord, ReadRecord, parse_cigar, resolve_position
from haplink.intervals import Interval, bases_at


def test_parse_cigar() -> None:
    assert parse_cigar("2S10M1I3M") == [
        (Operation.SOFT_CLIP, 2),
        (Operation.MATCH, 10),
        (Operation.INSERT, 1),
        (Operation.MATCH, 3),
    ]


@pytest.mark.parametrize("cigar", ["", "M4", "4M2Q", "4M 2S"])
def test_parse_cigar_rejects_garbage(cigar: str) -> None:
    with pytest.raises(ValueError):
        parse_cigar(cigar)


def test_simple_match_positions() -> None:
    aln = Alignment.from_cigarstring("4M", 10)
    assert aln.left_position == 10
    assert aln.right_position == 13
    assert aln.ref2seq(10) == (1, Operation.MATCH)
    assert aln.ref2seq(13) == (4, Operation.MATCH)
    assert aln.ref2seq(9) is None
    assert aln.ref2seq(14) is None


def test_soft_clip_is_part_of_sequence() -> None:
    aln = Alignment.from_cigarstring("2S4M2S", 10)
    assert aln.left_position == 10
    assert aln.right_position == 13
    assert resolve_position(aln, 10) == (3, Operation.MATCH)
    assert resolve_position(aln, 13) == (6, Operation.MATCH)


def test_hard_clip_is_rebased_away() -> None:
    aln = Alignment.from_cigarstring("2H4M", 10)
    # unadjusted coordinates still count the clipped bases
    assert aln.ref2seq(10) == (3, Operation.MATCH)
    assert resolve_position(aln, 10) == (1, Operation.MATCH)
    assert aln.rebased().sequence_span == 4


def test_deletion_maps_to_base_before_gap() -> None:
    aln = Alignment.from_cigarstring("2M2D2M", 10)
    assert aln.right_position == 15
    assert resolve_position(aln, 12) == (2, Operation.DELETE)
    assert resolve_position(aln, 13) == (2, Operation.DELETE)
    assert resolve_position(aln, 14) == (3, Operation.MATCH)


def test_insertion_shifts_following_bases() -> None:
    aln = Alignment.from_cigarstring("2M2I2M", 10)
    assert aln.right_position == 13
    assert resolve_position(aln, 11) == (2, Operation.MATCH)
    assert resolve_position(aln, 12) == (5, Operation.MATCH)


def test_read_record_checks_sequence_length() -> None:
    with pytest.raises(ValueError):
        ReadRecord.from_cigar("r1", "chr1", 10, "5M", "ACGT")
    with pytest.raises(ValueError):
        ReadRecord.from_cigar("r1", "chr1", 10, "4M", "ACGT", qualities=[30, 30])

    read = ReadRecord.from_cigar("r1", "chr1", 10, "1H4M", "acgt")
    assert read.sequence == "ACGT"
    assert read.qualities == (30, 30, 30, 30)
    assert read.left_position == 10
    assert read.right_position == 13


def test_pysam_record_uses_one_based_coordinates() -> None:
    header = pysam.AlignmentHeader.from_dict({"SQ": [{"SN": "chr1", "LN": 1000}]})
    a = pysam.AlignedSegment(header)
    a.query_name = "r1"
    a.query_sequence = "TTACGT"
    a.flag = 0
    a.reference_id = 0
    a.reference_start = 9
    a.mapping_quality = 60
    a.cigartuples = [(4, 2), (0, 4)]
    a.query_qualities = pysam.qualitystring_to_array("IIIIII")

    rec = PysamRecord(a)
    assert rec.reference_name == "chr1"
    assert rec.left_position == 10
    assert rec.right_position == 13
    assert rec.sequence_length == 6
    assert list(rec.qualities) == [40] * 6
    assert bases_at(Interval("chr1", 10, 13), rec) == "ACGT"
