from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanSettings:
    """Thresholds deciding which read bases count as evidence at a locus.

    Attributes
    ----------
    min_base_qual:
        Minimum Phred base quality.
    min_map_qual:
        Minimum read mapping quality.
    min_depth:
        Loci with fewer contributing bases are reported as zero coverage, and
        are skipped when estimating error rates.
    min_from_start, min_from_end:
        Bases closer than this to the 5' start / 3' end of their read are
        ignored.
    trim_homopolymer:
        Clip homopolymer runs at read edges.
    trim_low_quality_tails:
        Clip runs of ``N`` bases or ``tail_quality`` qualities at read edges.
    tail_quality:
        Phred value marking a low-quality read tail (Illumina's "B" tail is 2).
    n_ref:
        Count ``N`` read bases as coverage.
    """

    min_base_qual: int = 9
    min_map_qual: int = 7
    min_depth: int = 3
    min_from_start: int = 5
    min_from_end: int = 5
    trim_homopolymer: bool = True
    trim_low_quality_tails: bool = True
    tail_quality: int = 2
    n_ref: bool = False

    def validate(self) -> "ScanSettings":
        for name in ("min_base_qual", "min_map_qual", "min_depth", "min_from_start", "min_from_end", "tail_quality"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def log(self) -> None:
        for key, value in self.to_dict().items():
            logger.info("setting %s=%s", key, value)
