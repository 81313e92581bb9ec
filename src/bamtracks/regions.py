from __future__ import annotations

import bisect
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

_HEADER_PREFIXES = ("#", "track", "browser")


def _merge(intervals: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def _data_lines(path: str | Path) -> Iterable[Tuple[int, List[str]]]:
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.rstrip("\r\n")
            if not line.strip() or line.startswith(_HEADER_PREFIXES):
                continue
            yield lineno, line.split("\t")


def read_bed_intervals(path: str | Path) -> Dict[str, List[Tuple[int, int]]]:
    """Parse BED intervals (0-based, half-open)."""
    out: Dict[str, List[Tuple[int, int]]] = {}
    for lineno, fields in _data_lines(path):
        if len(fields) < 3:
            raise ValueError(f"{path}:{lineno}: BED line needs chrom, start and end")
        try:
            start, end = int(fields[1]), int(fields[2])
        except ValueError as e:
            raise ValueError(f"{path}:{lineno}: invalid BED coordinates ({e})") from e
        if start < 0 or end < start:
            raise ValueError(f"{path}:{lineno}: invalid BED interval {start}-{end}")
        out.setdefault(fields[0], []).append((start, end))
    return out


def read_vcf_positions(path: str | Path) -> Dict[str, List[Tuple[int, int]]]:
    """Parse the CHROM/POS columns of a VCF-like file into one-base intervals."""
    out: Dict[str, List[Tuple[int, int]]] = {}
    for lineno, fields in _data_lines(path):
        if len(fields) < 2:
            raise ValueError(f"{path}:{lineno}: VCF line needs CHROM and POS")
        try:
            pos = int(fields[1])
        except ValueError as e:
            raise ValueError(f"{path}:{lineno}: invalid VCF position ({e})") from e
        if pos < 1:
            raise ValueError(f"{path}:{lineno}: VCF positions are 1-based, got {pos}")
        out.setdefault(fields[0], []).append((pos - 1, pos))
    return out


class RegionSet:
    """Membership test over per-chromosome intervals.

    With no sources every locus is in scope. Otherwise a locus is in scope
    when it lies inside an interval, or outside every interval when
    ``avoid`` is set.
    """

    def __init__(self, intervals: Optional[Dict[str, List[Tuple[int, int]]]] = None, *, avoid: bool = False) -> None:
        self.avoid = avoid
        self.has_sources = intervals is not None
        self._starts: Dict[str, List[int]] = {}
        self._ends: Dict[str, List[int]] = {}
        for chrom, ivs in (intervals or {}).items():
            merged = _merge(ivs)
            self._starts[chrom] = [s for s, _ in merged]
            self._ends[chrom] = [e for _, e in merged]

    @classmethod
    def from_files(
        cls,
        bed: Optional[str | Path] = None,
        vcf: Optional[str | Path] = None,
        avoid: bool = False,
    ) -> "RegionSet":
        if bed is None and vcf is None:
            return cls(None, avoid=avoid)
        combined: Dict[str, List[Tuple[int, int]]] = {}
        for source in (read_bed_intervals(bed) if bed else {}, read_vcf_positions(vcf) if vcf else {}):
            for chrom, ivs in source.items():
                combined.setdefault(chrom, []).extend(ivs)
        rs = cls(combined, avoid=avoid)
        logger.info(
            "Loaded %d intervals on %d chromosomes (%s)",
            rs.num_intervals,
            len(rs._starts),
            "avoid" if avoid else "restrict",
        )
        return rs

    @property
    def num_intervals(self) -> int:
        return sum(len(v) for v in self._starts.values())

    def _inside(self, chrom: str, pos0: int) -> bool:
        starts = self._starts.get(chrom)
        if not starts:
            return False
        i = bisect.bisect_right(starts, pos0) - 1
        return i >= 0 and pos0 < self._ends[chrom][i]

    def contains(self, chrom: str, pos0: int) -> bool:
        """True if the 0-based position is in scope."""
        if not self.has_sources:
            return True
        return self._inside(chrom, pos0) != self.avoid
