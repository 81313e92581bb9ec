"""Windowed positional entropy of pileups.

Every read contributes one event per locus it touches: the aligned base, or a
clip / insertion / deletion marker. For a window of ``w`` loci, each
(locus, event code) pair is one cell of a distribution, and the entropy (in
bits) of that distribution is reported at the window center. A window where
every locus is pure still scores ``log2`` of its number of loci when those
loci are equally deep; variation within a locus raises the value further.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pysam

from .accumulators import BaseComposition
from .records import composition_events
from .rle import RleTrackWriter
from .scanner import Chromosome, ChromosomeScanner, TrackSink
from .settings import ScanSettings
from .utils import ensure_outdir, write_json

logger = logging.getLogger(__name__)


def positional_entropy(total: int, sum_x_log2_x: float) -> float:
    """Entropy in bits, ``-(sum x log2 x - N log2 N) / N``, over all cells of a window.

    ``total`` is N, the number of events in the window, and ``sum_x_log2_x``
    sums ``c * log2(c)`` over every (locus, code) count ``c``.
    """
    if total <= 0:
        return 0.0
    return -(sum_x_log2_x - total * math.log2(total)) / total


class EntropyScanner(ChromosomeScanner[BaseComposition]):
    """Entropy track; positions without a pileup of their own stay 0.

    The window around center ``c`` covers ``[c - w//2, c - w//2 + w - 1]``.
    Drained loci are kept until every center that needs them is computed.
    """

    name = "entropy"
    allow_secondary = True

    def __init__(
        self,
        sink: TrackSink,
        window: int = 5,
        settings: Optional[ScanSettings] = None,
        *,
        cache_window: Optional[int] = None,
    ) -> None:
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = int(window)
        self.half = self.window // 2
        super().__init__(settings, cache_window=cache_window or 4 * self.window)
        self.sink = sink
        self._values = np.zeros(0, dtype=np.float64)
        # position -> (events, sum of c log2 c over its codes)
        self._recent: Dict[int, Tuple[int, float]] = {}
        self._pending: List[int] = []

    def new_accumulator(self) -> BaseComposition:
        return BaseComposition()

    def start_chromosome(self, chrom: Chromosome) -> None:
        self._values = np.zeros(chrom.length, dtype=np.float64)
        self._recent = {}
        self._pending = []

    def add_read(self, read: pysam.AlignedSegment) -> bool:
        seq = read.query_sequence
        cigar = read.cigartuples
        if not seq or not cigar:
            self.summary.counts["reads_without_sequence"] += 1
            return False
        for pos, code in composition_events(int(read.reference_start) + 1, cigar, seq.upper()):
            if pos <= 0:
                continue
            acc = self.cache.fill(pos)
            if acc is not None:
                acc.add(code)
        return True

    def finalize_locus(self, position: int, acc: BaseComposition) -> None:
        self._recent[position] = (acc.total, acc.sum_x_log2_x)
        self._pending.append(position)

    def window_entropy(self, center: int) -> float:
        total = 0
        sxlx = 0.0
        lo = center - self.half
        for pos in range(lo, lo + self.window):
            cell = self._recent.get(pos)
            if cell is not None:
                total += cell[0]
                sxlx += cell[1]
        return positional_entropy(total, sxlx)

    def after_drain(self, upto: int) -> None:
        done = 0
        for center in self._pending:
            if center - self.half + self.window - 1 >= upto:
                break
            if center <= len(self._values):
                self._values[center - 1] = self.window_entropy(center)
            done += 1
        del self._pending[:done]

        keep_from = (self._pending[0] if self._pending else upto) - self.half
        for pos in [p for p in self._recent if p < keep_from]:
            del self._recent[pos]

    def finish_chromosome(self, chrom: Chromosome) -> None:
        if self._pending:
            # final drain already finalized everything; flush all centers
            self.after_drain(chrom.length + self.window + 1)
        self.sink.write(chrom.name, self._values)
        self._values = np.zeros(0, dtype=np.float64)
        self._recent = {}


def compute_entropy(
    *,
    bam_path: str | Path,
    outdir: str | Path,
    window: int = 5,
    settings: Optional[ScanSettings] = None,
    cache_window: Optional[int] = None,
    float_format: Optional[str] = ".4f",
    progress: bool = True,
) -> Dict[str, object]:
    """Write one RLE entropy track per chromosome to ``outdir`` and return a summary dict."""
    settings = (settings or ScanSettings()).validate()
    outdir_path = ensure_outdir(outdir)
    sink = RleTrackWriter(outdir_path, float_format=float_format)
    scanner = EntropyScanner(sink, window, settings, cache_window=cache_window)
    logger.info("Entropy window %d, cache window %d", scanner.window, scanner.cache.window)

    result = scanner.scan_alignment(bam_path, progress=progress)

    summary: Dict[str, object] = {
        "command": "entropy",
        "bam_path": str(bam_path),
        "window": scanner.window,
        "cache_window": scanner.cache.window,
        "float_format": float_format,
        "tracks": {chrom: str(path) for chrom, path in sink.written.items()},
        **result.to_dict(),
    }
    write_json(outdir_path / "summary.json", summary)
    return summary
