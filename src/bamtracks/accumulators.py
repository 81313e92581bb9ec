"""Per-locus accumulators, one flavor per kind of track.

Base codes follow the order A, T, C, G, N used throughout the package (the
error table is reported in this order too). The composition flavor adds
three structural codes for clipped, inserted and deleted evidence.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Tuple

if TYPE_CHECKING:
    from .records import AlignedRead

CODE_A = 0
CODE_T = 1
CODE_C = 2
CODE_G = 3
CODE_N = 4
CODE_CLIP = 5
CODE_INS = 6
CODE_DEL = 7
NUM_CODES = 8
NUM_BASES = 5

BASES = "ATCGN"

_BASE_TO_CODE = {"A": CODE_A, "T": CODE_T, "C": CODE_C, "G": CODE_G}
_COMPLEMENT_CODE = {CODE_A: CODE_T, CODE_T: CODE_A, CODE_C: CODE_G, CODE_G: CODE_C, CODE_N: CODE_N}


def base_code(base: str) -> int:
    """A/T/C/G -> 0..3, anything else -> N (4)."""
    return _BASE_TO_CODE.get(base.upper(), CODE_N)


def complement_code(code: int) -> int:
    return _COMPLEMENT_CODE.get(code, CODE_N)


class CoverageCounter:
    __slots__ = ("count",)

    def __init__(self) -> None:
        self.count = 0

    def add(self) -> None:
        self.count += 1


class BaseComposition:
    """Counts of A/T/C/G/N/clip/insertion/deletion observed at one locus."""

    __slots__ = ("counts",)

    def __init__(self) -> None:
        self.counts = [0] * NUM_CODES

    def add(self, code: int) -> None:
        self.counts[code] += 1

    @property
    def total(self) -> int:
        return sum(self.counts)

    @property
    def sum_x_log2_x(self) -> float:
        return sum(c * math.log2(c) for c in self.counts if c > 0)


class MapQualList:
    """Mapping qualities of all reads covering a locus."""

    __slots__ = ("qualities",)

    def __init__(self) -> None:
        self.qualities: List[int] = []

    def add(self, q: int) -> None:
        self.qualities.append(int(q))

    def median(self) -> float:
        """Median mapping quality, or -1.0 when no read contributed."""
        return median_or_default(self.qualities, -1.0)


def median_or_default(values: List[int], default: float) -> float:
    if not values:
        return default
    vals = sorted(values)
    mid = len(vals) // 2
    if len(vals) % 2 == 1:
        return float(vals[mid])
    return 0.5 * (vals[mid - 1] + vals[mid])


@dataclass
class LocusEvidence:
    """One read base observed at a locus.

    ``from_start``/``from_end`` are distances (in bases) from the 5' start and
    the 3' end of the read, taking the strand into account.
    """

    base: str
    quality: int
    minus_strand: bool
    from_start: int
    from_end: int
    mapping_quality: int
    read_has_indel: bool
    max_splice_gap: int
    nm: int

    def passes(self, min_from_start: int, min_from_end: int, min_base_qual: int, min_map_qual: int) -> bool:
        return (
            self.from_start >= min_from_start
            and self.from_end >= min_from_end
            and self.quality >= min_base_qual
            and self.mapping_quality >= min_map_qual
        )


def _edge_distances(minus_strand: bool, index: int, read_length: int) -> Tuple[int, int]:
    if minus_strand:
        return read_length - index - 1, index
    return index, read_length - index - 1


class LocusEvidenceList:
    """All read bases aligned onto a single locus.

    Paired reads whose mates overlap contribute a single evidence item: the
    second base seen from the same read name is merged into the first.
    """

    def __init__(self) -> None:
        self.items: List[LocusEvidence] = []
        self._overlapping: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.items)

    def add(self, read: "AlignedRead", index: int) -> None:
        pos = read.positions[index]
        overlapping = read.overlap_start is not None and pos >= read.overlap_start
        self.add_base(
            base=read.bases[index],
            quality=read.qualities[index],
            mapping_quality=read.mapping_quality,
            minus_strand=read.minus_strand,
            index=index,
            read_length=read.read_length,
            read_name=read.name,
            overlapping=overlapping,
            read_has_indel=read.has_indel,
            max_splice_gap=read.max_splice_gap,
            nm=read.nm,
        )

    def add_base(
        self,
        *,
        base: str,
        quality: int,
        mapping_quality: int,
        minus_strand: bool,
        index: int,
        read_length: int,
        read_name: str,
        overlapping: bool = False,
        read_has_indel: bool = False,
        max_splice_gap: int = 0,
        nm: int = 0,
    ) -> None:
        from_start, from_end = _edge_distances(minus_strand, index, read_length)
        seen = self._overlapping.get(read_name)

        if seen is None:
            self.items.append(
                LocusEvidence(
                    base=base,
                    quality=int(quality),
                    minus_strand=minus_strand,
                    from_start=from_start,
                    from_end=from_end,
                    mapping_quality=int(mapping_quality),
                    read_has_indel=read_has_indel,
                    max_splice_gap=max_splice_gap,
                    nm=nm,
                )
            )
            if overlapping:
                self._overlapping[read_name] = len(self.items) - 1
            return

        # Mate of an already recorded read: merge instead of double counting.
        ev = self.items[seen]
        if ev.base != base:
            if ev.base == "N":
                ev.base = base
            elif base != "N":
                ev.base = "N"
        ev.mapping_quality = max(ev.mapping_quality, int(mapping_quality))
        if ev.read_has_indel and not read_has_indel:
            ev.read_has_indel = False
        ev.from_start = max(ev.from_start, from_start)
        ev.from_end = max(ev.from_end, from_end)
        ev.max_splice_gap = max(ev.max_splice_gap, max_splice_gap)
        ev.nm = max(ev.nm, nm)

    def coverage_counts(
        self,
        min_from_start: int,
        min_from_end: int,
        min_base_qual: int,
        min_map_qual: int,
    ) -> Tuple[List[int], List[int], List[int]]:
        """Per-base counts on the plus and minus strands after filtering.

        Returns
        -------
        plus, minus, max_splice:
            Lists of length 5 indexed by base code. ``max_splice`` holds the
            largest splice gap among reads supporting each base.
        """
        plus = [0] * NUM_BASES
        minus = [0] * NUM_BASES
        max_splice = [0] * NUM_BASES
        for ev in self.items:
            if not ev.passes(min_from_start, min_from_end, min_base_qual, min_map_qual):
                continue
            code = base_code(ev.base)
            if ev.minus_strand:
                minus[code] += 1
            else:
                plus[code] += 1
            if ev.max_splice_gap > max_splice[code]:
                max_splice[code] = ev.max_splice_gap
        return plus, minus, max_splice
