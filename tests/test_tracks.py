import logging
import random
from typing import Dict, List, Optional, Tuple

import numpy as np
import pysam
import pytest

from bamtracks.rle import read_rle_track
from bamtracks.scanner import Chromosome, ScanState
from bamtracks.settings import ScanSettings
from bamtracks.toy_data import make_toy_data
from bamtracks.tracks import CoverageScanner, MedianMapQualScanner, compute_tracks

SEQ20 = "ACGTACGTACGTACGTACGT"


class ListSink:
    def __init__(self) -> None:
        self.tracks: Dict[str, np.ndarray] = {}

    def write(self, chrom: str, values: np.ndarray) -> None:
        self.tracks[chrom] = np.array(values, copy=True)


def make_read(
    start0: int,
    seq: str = SEQ20,
    *,
    ref_id: int = 0,
    name: str = "r",
    reverse: bool = False,
    mapq: int = 60,
    cigar: Optional[List[Tuple[int, int]]] = None,
    mate_start0: Optional[int] = None,
    quals: Optional[str] = None,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = (16 if reverse else 0) | (1 if mate_start0 is not None else 0)
    a.reference_id = ref_id
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = cigar or [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array(quals or "I" * len(seq))
    if mate_start0 is not None:
        a.next_reference_id = ref_id
        a.next_reference_start = mate_start0
    return a


def test_zero_depth_chromosome_gets_default_track():
    sink = ListSink()
    summary = CoverageScanner(sink).scan([], [Chromosome(0, "chr1", 1000)])
    assert np.array_equal(sink.tracks["chr1"], np.zeros(1000))
    assert summary.chromosomes_untouched == ["chr1"]

    sink = ListSink()
    MedianMapQualScanner(sink).scan([], [Chromosome(0, "chr1", 1000)])
    assert np.array_equal(sink.tracks["chr1"], np.full(1000, -1.0))


def test_coverage_counts_genotypeable_bases():
    sink = ListSink()
    scanner = CoverageScanner(sink)
    reads = [make_read(99, name=f"r{i}") for i in range(3)]
    summary = scanner.scan(reads, [Chromosome(0, "chr1", 300)])

    cov = sink.tracks["chr1"]
    expected = np.zeros(300, dtype=np.int64)
    expected[104:114] = 3  # 1-based 105..114: five bases in from each end
    assert np.array_equal(cov, expected)
    assert summary.counts["reads_used"] == 3
    assert scanner.state is ScanState.DONE


def test_values_below_min_depth_are_zeroed():
    sink = ListSink()
    CoverageScanner(sink).scan([make_read(99), make_read(99)], [Chromosome(0, "chr1", 300)])
    assert sink.tracks["chr1"].sum() == 0


def test_low_mapping_quality_reads_are_ignored():
    sink = ListSink()
    scanner = CoverageScanner(sink, settings=ScanSettings(min_depth=1))
    summary = scanner.scan([make_read(99, mapq=5)], [Chromosome(0, "chr1", 300)])
    assert sink.tracks["chr1"].sum() == 0
    assert summary.counts["reads_skipped_filtered"] == 1


def test_duplicates_and_unmapped_are_ineligible():
    dup = make_read(99)
    dup.is_duplicate = True
    unmapped = make_read(99)
    unmapped.is_unmapped = True
    sink = ListSink()
    summary = CoverageScanner(sink, settings=ScanSettings(min_depth=1)).scan(
        [dup, unmapped], [Chromosome(0, "chr1", 300)]
    )
    assert summary.counts["reads_skipped_ineligible"] == 2
    assert sink.tracks["chr1"].sum() == 0


@pytest.mark.parametrize(
    "track_type,positions",
    [
        ("readS", [105]),
        ("readE", [114]),
        ("readSE", [105, 114]),
    ],
)
def test_read_start_end_tracks(track_type, positions):
    sink = ListSink()
    scanner = CoverageScanner(sink, track_type, ScanSettings(min_depth=1))
    scanner.scan([make_read(99, name=f"r{i}") for i in range(2)], [Chromosome(0, "chr1", 300)])
    values = sink.tracks["chr1"]
    assert list(np.flatnonzero(values) + 1) == positions
    assert all(values[p - 1] == 2 for p in positions)


def test_edge_distance_is_strand_aware():
    settings = ScanSettings(min_depth=1, min_from_start=2, min_from_end=6)
    sink = ListSink()
    CoverageScanner(sink, settings=settings).scan([make_read(99)], [Chromosome(0, "chr1", 300)])
    assert list(np.flatnonzero(sink.tracks["chr1"]) + 1) == list(range(102, 114))

    sink = ListSink()
    CoverageScanner(sink, settings=settings).scan([make_read(99, reverse=True)], [Chromosome(0, "chr1", 300)])
    assert list(np.flatnonzero(sink.tracks["chr1"]) + 1) == list(range(106, 118))


def _covered(sink: ListSink) -> List[int]:
    return [int(p) + 1 for p in np.flatnonzero(sink.tracks["chr1"])]


def test_low_quality_base_ends_the_coverage_walk():
    quals = "I" * 8 + "%" + "I" * 11  # Q4 at index 8
    settings = ScanSettings(min_depth=1)

    sink = ListSink()
    CoverageScanner(sink, settings=settings).scan([make_read(99, quals=quals)], [Chromosome(0, "chr1", 300)])
    assert _covered(sink) == [105, 106, 107]

    # the read end is found walking backwards, stepping over the failing base
    sink = ListSink()
    CoverageScanner(sink, "readE", settings).scan([make_read(99, quals=quals)], [Chromosome(0, "chr1", 300)])
    assert _covered(sink) == [114]


def test_insertion_ends_the_coverage_walk():
    read = make_read(99, cigar=[(0, 10), (1, 1), (0, 9)])
    sink = ListSink()
    CoverageScanner(sink, settings=ScanSettings(min_depth=1)).scan([read], [Chromosome(0, "chr1", 300)])
    assert _covered(sink) == [105, 106, 107, 108, 109]


def test_n_bases_are_skipped_unless_counted():
    seq = SEQ20[:8] + "N" + SEQ20[9:]
    sink = ListSink()
    CoverageScanner(sink, settings=ScanSettings(min_depth=1)).scan(
        [make_read(99, seq)], [Chromosome(0, "chr1", 300)]
    )
    assert _covered(sink) == [105, 106, 107] + list(range(109, 115))

    sink = ListSink()
    CoverageScanner(sink, settings=ScanSettings(min_depth=1, n_ref=True)).scan(
        [make_read(99, seq)], [Chromosome(0, "chr1", 300)]
    )
    assert _covered(sink) == list(range(105, 115))


def test_read_start_end_of_single_usable_base_counts_twice():
    settings = ScanSettings(min_depth=1, min_from_start=9, min_from_end=10)
    sink = ListSink()
    CoverageScanner(sink, "readSE", settings).scan([make_read(99)], [Chromosome(0, "chr1", 300)])
    assert _covered(sink) == [109]
    assert sink.tracks["chr1"][108] == 2


def test_bases_overlapping_the_mate_are_left_to_it():
    sink = ListSink()
    # mate starts at 105 (1-based), so bases from 110 on belong to the mate
    read = make_read(99, mate_start0=104)
    CoverageScanner(sink, settings=ScanSettings(min_depth=1)).scan([read], [Chromosome(0, "chr1", 300)])
    assert list(np.flatnonzero(sink.tracks["chr1"]) + 1) == list(range(105, 110))


def test_draining_matches_dense_count():
    rng = random.Random(11)
    reads = []
    expected = np.zeros(2000, dtype=np.int64)
    settings = ScanSettings(min_depth=1, trim_homopolymer=False)
    for i in range(150):
        start0 = 10 * i + rng.randint(0, 5)
        reads.append(make_read(start0, name=f"r{i}", reverse=i % 2 == 1))
        expected[start0 + 5 : start0 + 15] += 1
    reads.sort(key=lambda r: r.reference_start)

    sink = ListSink()
    scanner = CoverageScanner(sink, settings=settings, cache_window=16)
    summary = scanner.scan(reads, [Chromosome(0, "chr1", 2000)])
    assert np.array_equal(sink.tracks["chr1"], expected)
    assert summary.late_contributions == 0


def test_multiple_chromosomes_and_untouched_sweep():
    sink = ListSink()
    scanner = CoverageScanner(sink, settings=ScanSettings(min_depth=1))
    chroms = [Chromosome(0, "chr1", 300), Chromosome(1, "chr2", 200), Chromosome(2, "chr3", 100)]
    summary = scanner.scan([make_read(10), make_read(50, ref_id=2)], chroms)
    assert summary.chromosomes_processed == ["chr1", "chr3"]
    assert summary.chromosomes_untouched == ["chr2"]
    assert sink.tracks["chr1"].sum() == 10
    assert sink.tracks["chr3"].sum() == 10
    assert len(sink.tracks["chr2"]) == 200
    assert sink.tracks["chr2"].sum() == 0


def test_revisiting_a_chromosome_is_an_error():
    scanner = CoverageScanner(ListSink())
    chroms = [Chromosome(0, "chr1", 300), Chromosome(1, "chr2", 300)]
    reads = [make_read(10), make_read(10, ref_id=1), make_read(20)]
    with pytest.raises(ValueError, match="sorted"):
        scanner.scan(reads, chroms)


def test_unknown_track_type():
    with pytest.raises(ValueError):
        CoverageScanner(ListSink(), "depth")


def test_median_mapping_quality_track():
    sink = ListSink()
    reads = [make_read(99, name=f"r{q}", mapq=q) for q in (10, 20, 30, 40)]
    MedianMapQualScanner(sink).scan(reads, [Chromosome(0, "chr1", 300)])
    values = sink.tracks["chr1"]
    assert values[104] == 25.0
    assert values[113] == 25.0
    assert values[103] == -1.0
    assert values[114] == -1.0


def test_compute_tracks_on_toy_data(tmp_path):
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "cov"
    summary = compute_tracks(bam_path=toy["bam"], outdir=outdir, progress=False)

    chr1 = read_rle_track(outdir / "chr1.txt.gz")
    chr2 = read_rle_track(outdir / "chr2.txt.gz")
    assert len(chr1) == 400
    assert chr1.max() > 0
    assert np.array_equal(chr2, np.zeros(150, dtype=np.int64))
    assert summary["chromosomes_untouched"] == ["chr2"]
    assert (outdir / "summary.json").exists()

    outdir = tmp_path / "mq"
    compute_tracks(bam_path=toy["bam"], outdir=outdir, track_type="medmapqual", progress=False)
    mq = read_rle_track(outdir / "chr1.txt.gz")
    assert set(np.unique(mq)) <= {-1.0, 60.0}
    assert 60.0 in mq


def test_read_running_off_the_chromosome_end(caplog):
    sink = ListSink()
    settings = ScanSettings(min_depth=1, min_from_start=0, min_from_end=0)
    with caplog.at_level(logging.WARNING):
        CoverageScanner(sink, settings=settings).scan([make_read(290)], [Chromosome(0, "chr1", 300)])
    values = sink.tracks["chr1"]
    assert len(values) == 300
    assert list(np.flatnonzero(values) + 1) == list(range(291, 301))
    assert "beyond the end of chr1" in caplog.text
