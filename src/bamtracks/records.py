"""Per-read derived data: base positions on the chromosome and related facts.

Positions are 1-based. Read bases that do not sit on a reference position are
marked with negative sentinels:

- ``CLIPPED`` (-1): soft-clipped bases, and bases removed by edge trimming
- ``INSERTED`` (-2): bases of an insertion

Every reference-aligned base has a strictly positive position, so ``pos > 0``
is the test for "this base contributes to a locus".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import pysam

from .accumulators import CODE_CLIP, CODE_DEL, CODE_INS, base_code

logger = logging.getLogger(__name__)

CLIPPED = -1
INSERTED = -2


@dataclass(frozen=True)
class CigarSummary:
    max_splice_gap: int
    has_indel: bool
    reference_length: int


def map_positions(start: int, cigartuples: Sequence[Tuple[int, int]], read_length: int) -> List[int]:
    """Compute the 1-based chromosome position of every base in a read.

    Parameters
    ----------
    start:
        1-based alignment start.
    cigartuples:
        CIGAR as ``(op, length)`` pairs using the SAM/pysam op codes.
    read_length:
        Number of bases in the read.

    Returns
    -------
    list of int
        One entry per read base: a position, ``CLIPPED`` or ``INSERTED``.
    """
    positions = [CLIPPED] * read_length
    genomic = start
    index = 0
    overflow = False

    for op, length in cigartuples:
        if op in (0, 7, 8):  # M, =, X: consumes query and ref
            for _ in range(length):
                if index < read_length:
                    positions[index] = genomic
                else:
                    overflow = True
                index += 1
                genomic += 1
        elif op in (2, 3):  # D, N: consumes ref only
            genomic += length
        elif op == 4:  # S
            index += length
        elif op == 1:  # I
            for _ in range(length):
                if index < read_length:
                    positions[index] = INSERTED
                else:
                    overflow = True
                index += 1
        elif op in (5, 6):  # H, P: consumes neither
            continue
        else:
            logger.warning("Ignoring unrecognized CIGAR operation %d (length %d)", op, length)

    if overflow:
        logger.warning(
            "CIGAR consumes more bases than the read holds (%d); extra bases ignored", read_length
        )
    return positions


def summarize_cigar(cigartuples: Sequence[Tuple[int, int]]) -> CigarSummary:
    max_gap = 0
    has_indel = False
    ref_len = 0
    for op, length in cigartuples:
        if op == 3:
            max_gap = max(max_gap, length)
        if op in (1, 2):
            has_indel = True
        if op in (0, 2, 3, 7, 8):
            ref_len += length
    return CigarSummary(max_splice_gap=max_gap, has_indel=has_indel, reference_length=ref_len)


def overlap_start(read: pysam.AlignedSegment, start: int, end: int) -> Optional[int]:
    """First position where a read overlaps its mate, or None.

    ``start`` and ``end`` are the 1-based first and last aligned positions.
    Only paired reads whose mate maps to the same reference can overlap.
    """
    if not read.is_paired or read.next_reference_id != read.reference_id:
        return None
    if read.next_reference_start is None or read.next_reference_start < 0:
        return None
    mate_start = read.next_reference_start + 1
    if start <= mate_start < end:
        return mate_start
    return None


def composition_events(
    start: int, cigartuples: Sequence[Tuple[int, int]], bases: str
) -> Iterator[Tuple[int, int]]:
    """Yield ``(position, code)`` pileup events for one read.

    Matched bases give their base code. A deletion is recorded once at its
    first position, and insertions and soft clips are recorded at the current
    chromosome position. Skipped regions (``N``) and padding (``P``) move the
    position on without an event.
    """
    pos = start
    index = 0
    nbases = len(bases)
    for op, length in cigartuples:
        if op in (0, 7, 8):
            for _ in range(length):
                if index < nbases:
                    yield pos, base_code(bases[index])
                index += 1
                pos += 1
        elif op == 2:
            yield pos, CODE_DEL
            pos += length
        elif op in (3, 6):  # N, P: skipped loci
            pos += length
        elif op == 1:
            yield pos, CODE_INS
            index += length
        elif op == 4:
            yield pos, CODE_CLIP
            index += length
        elif op == 5:
            continue
        else:
            logger.warning("Ignoring unrecognized CIGAR operation %d (length %d)", op, length)


@dataclass(frozen=True)
class AlignedRead:
    """An alignment record together with the quantities derived from it.

    ``bases``, ``qualities`` and ``positions`` are aligned per read base.
    Edge trimming produces a new AlignedRead rather than modifying this one.
    """

    name: str
    reference_id: int
    start: int
    end: int
    minus_strand: bool
    mapping_quality: int
    bases: str
    qualities: Tuple[int, ...]
    positions: Tuple[int, ...]
    max_splice_gap: int
    has_indel: bool
    overlap_start: Optional[int]
    nm: int = 0

    @property
    def read_length(self) -> int:
        return len(self.bases)

    @property
    def span(self) -> int:
        return self.end - self.start + 1

    def genotypeable_range(self, min_from_start: int, min_from_end: int) -> Tuple[int, int]:
        """Index range ``[imin, imax)`` far enough from the read's 5' and 3' ends.

        On the minus strand the read start is at the right-hand end of the
        stored sequence.
        """
        if self.minus_strand:
            return min_from_end, self.read_length - min_from_start
        return min_from_start, self.read_length - min_from_end

    @classmethod
    def from_segment(cls, read: pysam.AlignedSegment) -> Optional["AlignedRead"]:
        """Build from a pysam record; None for records without sequence or CIGAR."""
        seq = read.query_sequence
        cigar = read.cigartuples
        if not seq or not cigar:
            return None

        bases = seq.upper()
        quals = read.query_qualities
        if quals is None or len(quals) != len(bases):
            qualities: Tuple[int, ...] = (0,) * len(bases)
        else:
            qualities = tuple(int(q) for q in quals)

        start = int(read.reference_start) + 1
        summary = summarize_cigar(cigar)
        end = start + summary.reference_length - 1
        nm = int(read.get_tag("NM")) if read.has_tag("NM") else 0

        return cls(
            name=str(read.query_name),
            reference_id=int(read.reference_id),
            start=start,
            end=end,
            minus_strand=bool(read.is_reverse),
            mapping_quality=int(read.mapping_quality),
            bases=bases,
            qualities=qualities,
            positions=tuple(map_positions(start, cigar, len(bases))),
            max_splice_gap=summary.max_splice_gap,
            has_indel=summary.has_indel,
            overlap_start=overlap_start(read, start, end),
            nm=nm,
        )
