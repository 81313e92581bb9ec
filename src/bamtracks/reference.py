from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pysam

logger = logging.getLogger(__name__)


class ReferenceMismatchError(RuntimeError):
    """The alignment and the reference disagree about a chromosome."""


class ReferenceSequenceAccessor:
    """Sequential access to reference chromosomes in FASTA order.

    Chromosomes are requested in the order the alignment stream visits them.
    The accessor moves forward through the FASTA, skipping sequences the
    alignment never visits, and holds the current chromosome in memory for
    random access.
    """

    def __init__(self, fasta: str | Path | pysam.FastaFile) -> None:
        if isinstance(fasta, pysam.FastaFile):
            self.fasta = fasta
            self._owns = False
        else:
            self.fasta = pysam.FastaFile(str(fasta))
            self._owns = True
        self._cursor = 0
        self.name: Optional[str] = None
        self.sequence = ""

    def close(self) -> None:
        if self._owns:
            self.fasta.close()

    def __enter__(self) -> "ReferenceSequenceAccessor":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def advance_to(self, name: str, length: int) -> None:
        """Load ``name``, which must come later in the FASTA than the current chromosome."""
        refs = self.fasta.references
        i = self._cursor
        while i < len(refs) and refs[i] != name:
            i += 1
        if i == len(refs):
            if name in refs:
                raise ReferenceMismatchError(
                    f"Chromosome {name} appears earlier in the reference than in the alignment; "
                    "both must be in the same order"
                )
            raise ReferenceMismatchError(f"Chromosome {name} is not in the reference FASTA")

        ref_len = int(self.fasta.lengths[i])
        if ref_len != int(length):
            raise ReferenceMismatchError(
                f"Length of {name} differs: alignment header {length}, reference {ref_len}"
            )

        skipped = refs[self._cursor : i]
        if skipped:
            logger.debug("Skipping reference sequences without reads: %s", ", ".join(skipped))
        self._cursor = i + 1
        self.name = name
        self.sequence = self.fasta.fetch(name).upper()

    def base_at(self, pos1: int) -> str:
        """Uppercase base at a 1-based position of the current chromosome."""
        if self.name is None:
            raise IndexError("No reference chromosome loaded")
        if pos1 < 1 or pos1 > len(self.sequence):
            raise IndexError(f"Position {pos1} outside {self.name} (1-{len(self.sequence)})")
        return self.sequence[pos1 - 1]
