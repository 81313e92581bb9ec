import logging
from typing import List, Optional, Tuple

import pysam

from bamtracks.accumulators import CODE_A, CODE_C, CODE_CLIP, CODE_DEL, CODE_G, CODE_INS
from bamtracks.records import (
    CLIPPED,
    INSERTED,
    AlignedRead,
    composition_events,
    map_positions,
    summarize_cigar,
)


def make_read(
    seq: str,
    start: int = 99,
    cigar: Optional[List[Tuple[int, int]]] = None,
    *,
    flag: int = 0,
    mate_start: Optional[int] = None,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = "r1"
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = 0
    a.reference_start = start
    a.mapping_quality = 60
    a.cigartuples = cigar or [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    if mate_start is not None:
        a.next_reference_id = 0
        a.next_reference_start = mate_start
    return a


def test_map_positions_match_insertion_deletion():
    cigar = [(0, 5), (1, 2), (0, 3), (2, 4), (0, 2)]
    assert map_positions(100, cigar, 12) == [
        100, 101, 102, 103, 104,
        INSERTED, INSERTED,
        105, 106, 107,
        112, 113,
    ]


def test_map_positions_soft_clip_and_splice():
    cigar = [(4, 2), (0, 3), (3, 100), (0, 2)]
    assert map_positions(10, cigar, 7) == [CLIPPED, CLIPPED, 10, 11, 12, 113, 114]


def test_map_positions_hard_clip_and_pad_consume_nothing():
    assert map_positions(5, [(5, 10), (0, 2), (6, 3), (0, 1)], 3) == [5, 6, 7]


def test_map_positions_unknown_op_is_skipped(caplog):
    with caplog.at_level(logging.WARNING):
        out = map_positions(1, [(0, 2), (42, 3), (0, 1)], 3)
    assert out == [1, 2, 3]
    assert "unrecognized CIGAR operation 42" in caplog.text


def test_map_positions_cigar_longer_than_read(caplog):
    with caplog.at_level(logging.WARNING):
        out = map_positions(1, [(0, 5)], 3)
    assert out == [1, 2, 3]
    assert "more bases than the read holds" in caplog.text


def test_summarize_cigar():
    s = summarize_cigar([(4, 3), (0, 10), (3, 500), (0, 5), (3, 80), (0, 5)])
    assert s.max_splice_gap == 500
    assert not s.has_indel
    assert s.reference_length == 600

    s = summarize_cigar([(0, 10), (2, 2), (0, 5)])
    assert s.has_indel
    assert s.reference_length == 17


def test_composition_events():
    events = list(composition_events(10, [(4, 2), (0, 2), (2, 3), (0, 1), (1, 1), (0, 1)], "NNACGTA"))
    assert events == [
        (10, CODE_CLIP),
        (10, CODE_A),
        (11, CODE_C),
        (12, CODE_DEL),
        (15, CODE_G),
        (16, CODE_INS),
        (16, CODE_A),
    ]


def test_composition_events_skip_and_padding_move_position():
    events = list(composition_events(10, [(0, 1), (3, 5), (0, 1), (6, 2), (0, 1)], "ACG"))
    assert events == [(10, CODE_A), (16, CODE_C), (19, CODE_G)]


def test_aligned_read_from_segment():
    read = make_read("acgtacgtac", start=99)
    read.set_tag("NM", 2)
    ar = AlignedRead.from_segment(read)
    assert ar is not None
    assert ar.bases == "ACGTACGTAC"
    assert ar.start == 100
    assert ar.end == 109
    assert ar.positions == tuple(range(100, 110))
    assert ar.qualities == (40,) * 10
    assert ar.nm == 2
    assert ar.overlap_start is None
    assert not ar.minus_strand


def test_aligned_read_overlap_with_mate():
    # paired, mate starts inside this read
    ar = AlignedRead.from_segment(make_read("ACGT" * 5, start=99, flag=1, mate_start=109))
    assert ar is not None
    assert ar.overlap_start == 110

    # mate starts after the read ends
    ar = AlignedRead.from_segment(make_read("ACGT" * 5, start=99, flag=1, mate_start=300))
    assert ar is not None
    assert ar.overlap_start is None

    # not flagged as paired
    ar = AlignedRead.from_segment(make_read("ACGT" * 5, start=99, flag=0, mate_start=109))
    assert ar is not None
    assert ar.overlap_start is None


def test_aligned_read_missing_qualities_are_zero():
    read = make_read("ACGTAC")
    read.query_qualities = None
    ar = AlignedRead.from_segment(read)
    assert ar is not None
    assert ar.qualities == (0,) * 6


def test_genotypeable_range_is_strand_aware():
    plus = AlignedRead.from_segment(make_read("ACGT" * 5))
    minus = AlignedRead.from_segment(make_read("ACGT" * 5, flag=16))
    assert plus is not None and minus is not None
    assert plus.genotypeable_range(2, 6) == (2, 14)
    assert minus.genotypeable_range(2, 6) == (6, 18)
