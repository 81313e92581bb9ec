"""Windowed per-locus cache with a fill/drain discipline.

Records arrive sorted by alignment start. While they are consumed, loci are
*filled* with contributions. Once the stream has moved far enough past a
locus that no further record can touch it, the locus is *drained*: its value
is finalized through a callback and the accumulator is evicted. Only a
window of loci near the stream position is held in memory at any time.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

A = TypeVar("A")


class WindowedLocusCache(Generic[A]):
    """Mapping of 1-based position -> accumulator, drained in position order.

    Parameters
    ----------
    factory:
        Creates an empty accumulator for a newly touched position.
    window:
        Minimum distance between the stream frontier and the drain frontier
        before an opportunistic drain is worthwhile. It must exceed the
        longest reference span of any read when draining against the fill
        frontier.
    chromosome:
        Name used in log messages.
    """

    def __init__(self, factory: Callable[[], A], *, window: int = 128, chromosome: str = "") -> None:
        if window < 1:
            raise ValueError("window must be >= 1")
        self.factory = factory
        self.window = int(window)
        self.chromosome = chromosome
        self._loci: Dict[int, A] = {}
        self.fill_frontier = 1
        self.drain_frontier = 1
        self.late_contributions = 0
        self.max_span = 0
        self._span_warned = False

    def __len__(self) -> int:
        return len(self._loci)

    def __contains__(self, position: int) -> bool:
        return position in self._loci

    def reset(self, chromosome: str = "") -> None:
        self._loci = {}
        self.fill_frontier = 1
        self.drain_frontier = 1
        self.max_span = 0
        self._span_warned = False
        self.chromosome = chromosome

    def get(self, position: int) -> Optional[A]:
        return self._loci.get(position)

    def fill(self, position: int) -> Optional[A]:
        """Get or create the accumulator at ``position``.

        The caller applies its contribution to the returned object. Returns
        None when the position has already been drained; such late
        contributions are counted and dropped.
        """
        if position < self.drain_frontier:
            self.late_contributions += 1
            logger.warning(
                "Late contribution at %s:%d (already drained up to %d); is the input sorted?",
                self.chromosome,
                position,
                self.drain_frontier,
            )
            return None
        acc = self._loci.get(position)
        if acc is None:
            acc = self.factory()
            self._loci[position] = acc
        if position > self.fill_frontier:
            self.fill_frontier = position
        return acc

    def note_span(self, span: int) -> None:
        """Record the reference span of a consumed read."""
        if span > self.max_span:
            self.max_span = span
            if span > self.window and not self._span_warned:
                self._span_warned = True
                logger.warning(
                    "Read spanning %d bp on %s exceeds the cache window (%d)",
                    span,
                    self.chromosome,
                    self.window,
                )

    def should_drain(self, frontier: int, chromosome_length: int) -> bool:
        """Drain only when far enough ahead, and not near the chromosome end.

        The end of a chromosome is handled by one final unconditional drain.
        """
        return (
            frontier - self.drain_frontier > self.window
            and chromosome_length - frontier > self.window
        )

    def drain(self, upto: int, finalize: Callable[[int, A], None]) -> int:
        """Finalize and evict every present locus in ``[drain_frontier, upto)``.

        Loci are finalized in ascending order, each exactly once. An exception
        raised by ``finalize`` is logged with the locus coordinates; the locus
        is evicted regardless and draining continues.

        Returns the new drain frontier.
        """
        if upto <= self.drain_frontier:
            return self.drain_frontier

        ready = sorted(p for p in self._loci if p < upto)
        for pos in ready:
            acc = self._loci.pop(pos)
            try:
                finalize(pos, acc)
            except Exception as e:
                logger.warning("Could not finalize locus %s:%d: %s", self.chromosome, pos, e)

        self.drain_frontier = upto
        return upto
