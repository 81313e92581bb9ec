"""Chromosome-by-chromosome driver shared by every scanner flavor.

A flavor subclasses :class:`ChromosomeScanner` and supplies an accumulator
factory, a per-read ``add_read`` and a per-locus ``finalize_locus``. The base
class detects chromosome boundaries in the record stream, runs the fill/drain
cycle of the :class:`~bamtracks.cache.WindowedLocusCache`, and sweeps the
chromosomes that no eligible read touched.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Optional, Protocol, Sequence, Set, TypeVar

import numpy as np
import pysam
from tqdm import tqdm

from .cache import WindowedLocusCache
from .records import AlignedRead
from .settings import ScanSettings
from .trimming import trim_read

logger = logging.getLogger(__name__)

A = TypeVar("A")


class ScanState(enum.Enum):
    IDLE = "idle"
    IN_CHROMOSOME = "in_chromosome"
    DONE = "done"


@dataclass(frozen=True)
class Chromosome:
    """A reference sequence as declared in the alignment header."""

    index: int
    name: str
    length: int


def chromosomes_from_header(header: pysam.AlignmentHeader) -> List[Chromosome]:
    return [
        Chromosome(index=i, name=str(name), length=int(length))
        for i, (name, length) in enumerate(zip(header.references, header.lengths))
    ]


class TrackSink(Protocol):
    """Receives one dense per-position array for each chromosome."""

    def write(self, chrom: str, values: np.ndarray) -> None:
        ...


@dataclass
class ScanSummary:
    counts: Dict[str, int] = field(
        default_factory=lambda: {
            "reads_total": 0,
            "reads_used": 0,
            "reads_skipped_ineligible": 0,
            "reads_skipped_filtered": 0,
            "reads_without_sequence": 0,
        }
    )
    chromosomes_processed: List[str] = field(default_factory=list)
    chromosomes_untouched: List[str] = field(default_factory=list)
    late_contributions: int = 0
    max_read_span: int = 0
    runtime_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def open_alignment(path: str | Path) -> pysam.AlignmentFile:
    p = str(path)
    if p.endswith(".bam"):
        mode = "rb"
    elif p.endswith(".cram"):
        mode = "rc"
    else:
        mode = "r"
    return pysam.AlignmentFile(p, mode)


class ChromosomeScanner(Generic[A]):
    """Base class for one pass over a coordinate-sorted record stream.

    Subclasses override ``new_accumulator``, ``add_read`` and
    ``finalize_locus``; the chromosome hooks default to doing nothing.
    """

    name = "scan"
    default_cache_window = 128
    allow_secondary = False

    def __init__(self, settings: Optional[ScanSettings] = None, *, cache_window: Optional[int] = None) -> None:
        self.settings = (settings or ScanSettings()).validate()
        self.cache: WindowedLocusCache[A] = WindowedLocusCache(
            self.new_accumulator, window=cache_window or self.default_cache_window
        )
        self.state = ScanState.IDLE
        self.current: Optional[Chromosome] = None
        self.summary = ScanSummary()
        self._touched: Set[int] = set()
        self._finished: Set[int] = set()

    # -- hooks -------------------------------------------------------------

    def new_accumulator(self) -> A:
        raise NotImplementedError

    def is_eligible(self, read: pysam.AlignedSegment) -> bool:
        if read.is_unmapped or read.reference_id < 0:
            return False
        if read.is_duplicate:
            return False
        if read.is_secondary and not self.allow_secondary:
            return False
        return True

    def add_read(self, read: pysam.AlignedSegment) -> bool:
        """Fill the cache with one read's contributions; False if the read was not used."""
        raise NotImplementedError

    def finalize_locus(self, position: int, acc: A) -> None:
        raise NotImplementedError

    def start_chromosome(self, chrom: Chromosome) -> None:
        pass

    def finish_chromosome(self, chrom: Chromosome) -> None:
        pass

    def after_drain(self, upto: int) -> None:
        """Called after every drain, once all loci below ``upto`` are finalized."""

    def finish_untouched(self, chrom: Chromosome) -> None:
        """Emit the default-valued result of a chromosome without reads."""
        self.start_chromosome(chrom)
        self.finish_chromosome(chrom)

    # -- helpers for flavors -------------------------------------------------

    def prepare(self, read: pysam.AlignedSegment, *, trim: bool = True) -> Optional[AlignedRead]:
        """Derive positions for a record and apply edge trimming."""
        aligned = AlignedRead.from_segment(read)
        if aligned is None:
            self.summary.counts["reads_without_sequence"] += 1
            logger.debug("Skipping %s: no sequence or CIGAR", read.query_name)
            return None
        if trim:
            aligned = trim_read(aligned, self.settings)
        return aligned

    # -- driver ------------------------------------------------------------

    def scan(self, reads: Iterable[pysam.AlignedSegment], chromosomes: Sequence[Chromosome]) -> ScanSummary:
        t0 = time.time()
        by_index = {c.index: c for c in chromosomes}
        counts = self.summary.counts

        for read in reads:
            counts["reads_total"] += 1
            if not self.is_eligible(read):
                counts["reads_skipped_ineligible"] += 1
                continue

            rid = int(read.reference_id)
            chrom = self.current
            if chrom is None or rid != chrom.index:
                chrom = by_index.get(rid)
                if chrom is None:
                    raise ValueError(f"Read {read.query_name} refers to reference id {rid}, which is not in the header")
                self._enter(chrom)

            if read.reference_end is not None:
                self.cache.note_span(int(read.reference_end) - int(read.reference_start))

            if self.add_read(read):
                counts["reads_used"] += 1
            else:
                counts["reads_skipped_filtered"] += 1

            frontier = int(read.reference_start) + 1
            if self.cache.should_drain(frontier, chrom.length):
                self._drain(frontier)

        self._leave()
        self.state = ScanState.DONE

        for chrom in chromosomes:
            if chrom.index not in self._touched:
                logger.info("No reads on %s; writing default track", chrom.name)
                self.finish_untouched(chrom)
                self.summary.chromosomes_untouched.append(chrom.name)

        self.summary.late_contributions = self.cache.late_contributions
        self.summary.runtime_seconds = float(time.time() - t0)
        return self.summary

    def scan_alignment(self, path: str | Path, *, progress: bool = True) -> ScanSummary:
        """Open an alignment file with pysam and scan all of its records."""
        with open_alignment(path) as bam:
            chromosomes = chromosomes_from_header(bam.header)
            it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
            if progress:
                it = tqdm(it, unit="read", desc=f"{self.name}")
            return self.scan(it, chromosomes)

    def _drain(self, upto: int) -> None:
        self.cache.drain(upto, self.finalize_locus)
        self.after_drain(upto)

    def _enter(self, chrom: Chromosome) -> None:
        if chrom.index in self._finished:
            raise ValueError(
                f"Reads for {chrom.name} appear after another chromosome; "
                "input must be sorted by coordinate (samtools sort)"
            )
        self._leave()
        logger.info("Processing %s (%d bp)", chrom.name, chrom.length)
        self.cache.reset(chrom.name)
        self.current = chrom
        self._touched.add(chrom.index)
        self.state = ScanState.IN_CHROMOSOME
        self.start_chromosome(chrom)

    def _leave(self) -> None:
        chrom = self.current
        if chrom is None:
            return
        # loci of reads running off the chromosome end are finalized too
        self._drain(max(chrom.length, self.cache.fill_frontier) + 1)
        self.summary.max_read_span = max(self.summary.max_read_span, self.cache.max_span)
        self.finish_chromosome(chrom)
        self._finished.add(chrom.index)
        self.summary.chromosomes_processed.append(chrom.name)
        self.current = None
