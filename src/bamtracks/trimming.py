"""Edge trimming heuristics applied to reads before their bases count as evidence.

Trimming never discards a read; it only marks positions as ``CLIPPED`` so the
affected bases stop contributing to loci. Functions return new sequences and
leave their inputs untouched.
"""

from __future__ import annotations

import dataclasses
from typing import List, Sequence, Tuple

from .records import CLIPPED, AlignedRead
from .settings import ScanSettings


def trim_low_quality_tails(
    bases: str,
    qualities: Sequence[int],
    positions: Sequence[int],
    tail_quality: int,
) -> Tuple[str, List[int]]:
    """Clip runs of ``N`` or tail-indicator qualities at both read ends.

    Clipped bases are also rewritten to ``N``.
    """
    n = len(bases)
    new_bases = list(bases)
    new_pos = list(positions)
    if n < 2:
        return bases, new_pos

    i = 0
    while i < n and (qualities[i] == tail_quality or new_bases[i] == "N"):
        new_pos[i] = CLIPPED
        new_bases[i] = "N"
        i += 1

    i = n - 1
    while i >= 0 and (qualities[i] == tail_quality or new_bases[i] == "N"):
        new_pos[i] = CLIPPED
        new_bases[i] = "N"
        i -= 1

    return "".join(new_bases), new_pos


def trim_homopolymer_edges(bases: str, positions: Sequence[int]) -> List[int]:
    """Clip a homopolymer run at either read edge, plus one base past it.

    Nothing is clipped at an edge unless its first two bases are identical.
    """
    n = len(bases)
    new_pos = list(positions)
    if n < 2:
        return new_pos

    first = bases[0]
    if bases[1] == first:
        new_pos[0] = CLIPPED
        i = 1
        while i < n and bases[i - 1] == first:
            new_pos[i] = CLIPPED
            i += 1

    last = bases[n - 1]
    if bases[n - 2] == last:
        new_pos[n - 1] = CLIPPED
        i = n - 2
        while i >= 0 and bases[i + 1] == last:
            new_pos[i] = CLIPPED
            i -= 1

    return new_pos


def trim_read(read: AlignedRead, settings: ScanSettings) -> AlignedRead:
    """Apply the trimming passes enabled in ``settings``."""
    if not (settings.trim_low_quality_tails or settings.trim_homopolymer):
        return read

    bases = read.bases
    positions: Sequence[int] = read.positions
    if settings.trim_low_quality_tails:
        bases, positions = trim_low_quality_tails(bases, read.qualities, positions, settings.tail_quality)
    if settings.trim_homopolymer:
        positions = trim_homopolymer_edges(bases, positions)

    return dataclasses.replace(read, bases=bases, positions=tuple(positions))
