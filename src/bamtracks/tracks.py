from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pysam

from .accumulators import CoverageCounter, MapQualList
from .records import AlignedRead
from .rle import RleTrackWriter
from .scanner import Chromosome, ChromosomeScanner, TrackSink
from .settings import ScanSettings
from .utils import ensure_outdir, write_json

logger = logging.getLogger(__name__)

COVERAGE_TYPES = ("coverage", "readS", "readE", "readSE")
TRACK_TYPES = COVERAGE_TYPES + ("medmapqual",)


def _walk_bounds(read: AlignedRead, settings: ScanSettings) -> Tuple[int, int, Optional[int]]:
    imin, imax = read.genotypeable_range(settings.min_from_start, settings.min_from_end)
    limit = None if read.overlap_start is None else read.overlap_start + settings.min_from_start
    return max(imin, 0), min(imax, read.read_length), limit


def _usable(read: AlignedRead, i: int, limit: Optional[int], settings: ScanSettings) -> bool:
    pos = read.positions[i]
    return pos > 0 and (limit is None or pos < limit) and read.qualities[i] >= settings.min_base_qual


def genotypeable_positions(read: AlignedRead, settings: ScanSettings) -> List[int]:
    """Positions of the bases of ``read`` that count as coverage evidence.

    The walk starts ``min_from_start`` bases in from the 5' end (strand
    aware) and stops ``min_from_end`` bases before the 3' end. It ends early
    at the first base that is clipped, inserted, below ``min_base_qual`` or
    at/past ``overlap_start + min_from_start`` (those bases are left to the
    overlapping mate). ``N`` bases are skipped unless ``n_ref``.
    """
    imin, imax, limit = _walk_bounds(read, settings)
    out: List[int] = []
    for i in range(imin, imax):
        if not _usable(read, i, limit, settings):
            break
        if settings.n_ref or read.bases[i] != "N":
            out.append(read.positions[i])
    return out


def last_genotypeable_position(read: AlignedRead, settings: ScanSettings) -> Optional[int]:
    """Last usable base of the genotype-able range, walking back from its end.

    Unlike :func:`genotypeable_positions` failing bases are stepped over.
    """
    imin, imax, limit = _walk_bounds(read, settings)
    for i in range(imax - 1, imin - 1, -1):
        if _usable(read, i, limit, settings) and (settings.n_ref or read.bases[i] != "N"):
            return read.positions[i]
    return None


class CoverageScanner(ChromosomeScanner[CoverageCounter]):
    """Depth track, or read start / read end marker tracks.

    ``track_type`` is one of ``coverage`` (every qualifying base),
    ``readS`` (first qualifying base of each read), ``readE`` (last) or
    ``readSE`` (first and last).
    """

    name = "coverage"

    def __init__(
        self,
        sink: TrackSink,
        track_type: str = "coverage",
        settings: Optional[ScanSettings] = None,
        *,
        cache_window: Optional[int] = None,
    ) -> None:
        if track_type not in COVERAGE_TYPES:
            raise ValueError(f"track_type must be one of {', '.join(COVERAGE_TYPES)}, got {track_type!r}")
        super().__init__(settings, cache_window=cache_window)
        self.sink = sink
        self.track_type = track_type
        self.name = track_type
        self._values = np.zeros(0, dtype=np.int64)

    def new_accumulator(self) -> CoverageCounter:
        return CoverageCounter()

    def start_chromosome(self, chrom: Chromosome) -> None:
        self._values = np.zeros(chrom.length, dtype=np.int64)

    def add_read(self, read: pysam.AlignedSegment) -> bool:
        if read.mapping_quality < self.settings.min_map_qual:
            return False
        aligned = self.prepare(read)
        if aligned is None:
            return False

        marked: List[int] = []
        if self.track_type != "readE":
            positions = genotypeable_positions(aligned, self.settings)
            marked = positions if self.track_type == "coverage" else positions[:1]
        if self.track_type in ("readE", "readSE"):
            last = last_genotypeable_position(aligned, self.settings)
            if last is not None:
                # readSE counts a single usable base twice
                marked.append(last)
        if not marked:
            return False

        for pos in marked:
            acc = self.cache.fill(pos)
            if acc is not None:
                acc.add()
        return True

    def finalize_locus(self, position: int, acc: CoverageCounter) -> None:
        if position > len(self._values):
            logger.warning("Position %d beyond the end of %s; ignored", position, self.cache.chromosome)
            return
        value = acc.count
        if value < self.settings.min_depth:
            value = 0
        self._values[position - 1] = value

    def finish_chromosome(self, chrom: Chromosome) -> None:
        self.sink.write(chrom.name, self._values)
        self._values = np.zeros(0, dtype=np.int64)


class MedianMapQualScanner(ChromosomeScanner[MapQualList]):
    """Median mapping quality of the reads covering each locus (-1 where none do)."""

    name = "medmapqual"

    def __init__(
        self,
        sink: TrackSink,
        settings: Optional[ScanSettings] = None,
        *,
        cache_window: Optional[int] = None,
    ) -> None:
        super().__init__(settings, cache_window=cache_window)
        self.sink = sink
        self._values = np.zeros(0, dtype=np.float64)

    def new_accumulator(self) -> MapQualList:
        return MapQualList()

    def start_chromosome(self, chrom: Chromosome) -> None:
        self._values = np.full(chrom.length, -1.0, dtype=np.float64)

    def add_read(self, read: pysam.AlignedSegment) -> bool:
        aligned = self.prepare(read)
        if aligned is None:
            return False
        imin, imax = aligned.genotypeable_range(self.settings.min_from_start, self.settings.min_from_end)
        mapq = aligned.mapping_quality
        for i in range(max(imin, 0), min(imax, aligned.read_length)):
            pos = aligned.positions[i]
            if pos > 0:
                acc = self.cache.fill(pos)
                if acc is not None:
                    acc.add(mapq)
        return True

    def finalize_locus(self, position: int, acc: MapQualList) -> None:
        if position > len(self._values):
            logger.warning("Position %d beyond the end of %s; ignored", position, self.cache.chromosome)
            return
        self._values[position - 1] = acc.median()

    def finish_chromosome(self, chrom: Chromosome) -> None:
        self.sink.write(chrom.name, self._values)
        self._values = np.zeros(0, dtype=np.float64)


def compute_tracks(
    *,
    bam_path: str | Path,
    outdir: str | Path,
    track_type: str = "coverage",
    settings: Optional[ScanSettings] = None,
    cache_window: Optional[int] = None,
    float_format: Optional[str] = None,
    progress: bool = True,
) -> Dict[str, object]:
    """Write one RLE track per chromosome to ``outdir`` and return a summary dict."""
    if track_type not in TRACK_TYPES:
        raise ValueError(f"track_type must be one of {', '.join(TRACK_TYPES)}, got {track_type!r}")
    settings = (settings or ScanSettings()).validate()
    outdir_path = ensure_outdir(outdir)
    sink = RleTrackWriter(outdir_path, float_format=float_format)
    settings.log()

    scanner: ChromosomeScanner
    if track_type == "medmapqual":
        scanner = MedianMapQualScanner(sink, settings, cache_window=cache_window)
    else:
        scanner = CoverageScanner(sink, track_type, settings, cache_window=cache_window)

    result = scanner.scan_alignment(bam_path, progress=progress)

    summary: Dict[str, object] = {
        "command": "tracks",
        "bam_path": str(bam_path),
        "track_type": track_type,
        "cache_window": scanner.cache.window,
        "settings": settings.to_dict(),
        "tracks": {chrom: str(path) for chrom, path in sink.written.items()},
        **result.to_dict(),
    }
    write_json(outdir_path / "summary.json", summary)
    logger.info("Wrote %d %s tracks to %s", len(sink.written), track_type, outdir_path)
    return summary
