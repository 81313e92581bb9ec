"""Substitution error rates from low-allelic-fraction mismatches.

At every in-scope locus with enough depth the filtered read bases are
compared with the reference base. Loci that look like real variants (many
and frequent alternate bases) are skipped; everything else counts as
sequencing-error evidence in a reference-base x observed-base matrix.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Tuple

import numpy as np
import pysam

from .accumulators import BASES, CODE_N, NUM_BASES, LocusEvidenceList, base_code, complement_code
from .reference import ReferenceSequenceAccessor
from .regions import RegionSet
from .scanner import Chromosome, ChromosomeScanner
from .settings import ScanSettings
from .utils import ensure_outdir, safe_ratio, write_json

logger = logging.getLogger(__name__)

TABLE_HEADER = "file\trefBase\taltBase\tEligible\tErrors\tErrorRate"
TABLE_BASES = "ATCG"


@dataclass
class ErrorConfusionMatrix:
    """Eligible base counts and observed-base counts keyed by reference base.

    ``eligible[r]`` counts filtered bases at loci with reference base ``r``;
    ``errors[r, o]`` counts those read as ``o``. Both are indexed by the
    A, T, C, G, N base codes.
    """

    eligible: np.ndarray = field(default_factory=lambda: np.zeros(NUM_BASES, dtype=np.int64))
    errors: np.ndarray = field(default_factory=lambda: np.zeros((NUM_BASES, NUM_BASES), dtype=np.int64))

    def add_locus(self, ref_code: int, plus: Sequence[int], minus: Sequence[int], *, stranded: bool = True) -> None:
        if stranded:
            comp_ref = complement_code(ref_code)
            self.eligible[ref_code] += sum(plus)
            self.eligible[comp_ref] += sum(minus)
            for i in range(NUM_BASES):
                self.errors[ref_code, i] += plus[i]
                self.errors[comp_ref, complement_code(i)] += minus[i]
        else:
            self.eligible[ref_code] += sum(plus) + sum(minus)
            for i in range(NUM_BASES):
                self.errors[ref_code, i] += plus[i] + minus[i]

    def merge(self, other: "ErrorConfusionMatrix") -> "ErrorConfusionMatrix":
        self.eligible += other.eligible
        self.errors += other.errors
        return self

    def rate(self, ref: str, alt: str) -> float:
        r, a = base_code(ref), base_code(alt)
        return safe_ratio(int(self.errors[r, a]), int(self.eligible[r]))

    def rows(self) -> List[Tuple[str, str, int, int, float]]:
        """(ref, alt, eligible, errors, rate) for every ordered pair of distinct A/T/C/G."""
        out = []
        for ref in TABLE_BASES:
            for alt in TABLE_BASES:
                if ref == alt:
                    continue
                r, a = base_code(ref), base_code(alt)
                out.append((ref, alt, int(self.eligible[r]), int(self.errors[r, a]), self.rate(ref, alt)))
        return out

    def to_dict(self) -> Dict[str, object]:
        return {
            "bases": list(BASES),
            "eligible": self.eligible.tolist(),
            "errors": self.errors.tolist(),
        }


def write_errors_table(fh: TextIO, matrix: ErrorConfusionMatrix, label: str) -> None:
    fh.write(TABLE_HEADER + "\n")
    for ref, alt, eligible, errors, rate in matrix.rows():
        fh.write(f"{label}\t{ref}\t{alt}\t{eligible}\t{errors}\t{rate}\n")


class ErrorRateEvaluator(ChromosomeScanner[LocusEvidenceList]):
    """Accumulates an :class:`ErrorConfusionMatrix` over a whole alignment.

    Parameters
    ----------
    reference:
        Accessor over the reference FASTA, visited in alignment order.
    regions:
        Loci outside the region set are not evaluated.
    max_allelic_fraction, max_error_depth:
        A locus whose alternate depth exceeds ``max_error_depth`` *and* whose
        alternate fraction exceeds ``max_allelic_fraction`` is taken to be a
        variant and skipped.
    stranded:
        Key minus-strand observations by the complemented reference base.
    """

    name = "errors"
    default_cache_window = 256

    def __init__(
        self,
        reference: ReferenceSequenceAccessor,
        regions: Optional[RegionSet] = None,
        settings: Optional[ScanSettings] = None,
        *,
        max_allelic_fraction: float = 0.02,
        max_error_depth: int = 3,
        stranded: bool = True,
        cache_window: Optional[int] = None,
    ) -> None:
        if not 0.0 <= max_allelic_fraction <= 1.0:
            raise ValueError("max_allelic_fraction must be within [0, 1]")
        if max_error_depth < 0:
            raise ValueError("max_error_depth must be >= 0")
        super().__init__(settings, cache_window=cache_window)
        self.reference = reference
        self.regions = regions or RegionSet()
        self.max_allelic_fraction = float(max_allelic_fraction)
        self.max_error_depth = int(max_error_depth)
        self.stranded = stranded
        self.matrix = ErrorConfusionMatrix()
        self.locus_counts: Dict[str, int] = {
            "used": 0,
            "variant": 0,
            "low_depth": 0,
            "outside_regions": 0,
            "reference_n": 0,
        }

    def new_accumulator(self) -> LocusEvidenceList:
        return LocusEvidenceList()

    def start_chromosome(self, chrom: Chromosome) -> None:
        self.reference.advance_to(chrom.name, chrom.length)

    def finish_untouched(self, chrom: Chromosome) -> None:
        pass

    def add_read(self, read: pysam.AlignedSegment) -> bool:
        aligned = self.prepare(read)
        if aligned is None:
            return False
        for i, pos in enumerate(aligned.positions):
            if pos > 0:
                ev = self.cache.fill(pos)
                if ev is not None:
                    ev.add(aligned, i)
        return True

    def evaluate_locus(self, ref_base: str, evidence: LocusEvidenceList) -> str:
        """Classify one locus and accumulate it if it counts as error evidence.

        Returns one of ``used``, ``variant``, ``low_depth`` or ``reference_n``.
        """
        if len(evidence) < self.settings.min_depth:
            return "low_depth"
        ref_code = base_code(ref_base)
        if ref_code == CODE_N:
            return "reference_n"

        s = self.settings
        plus, minus, _ = evidence.coverage_counts(s.min_from_start, s.min_from_end, s.min_base_qual, s.min_map_qual)
        total = sum(plus) + sum(minus)
        if total == 0:
            return "low_depth"
        alt = total - plus[ref_code] - minus[ref_code]
        if alt > self.max_error_depth and alt / total > self.max_allelic_fraction:
            return "variant"

        self.matrix.add_locus(ref_code, plus, minus, stranded=self.stranded)
        return "used"

    def finalize_locus(self, position: int, evidence: LocusEvidenceList) -> None:
        chrom = self.cache.chromosome
        if not self.regions.contains(chrom, position - 1):
            self.locus_counts["outside_regions"] += 1
            return
        status = self.evaluate_locus(self.reference.base_at(position), evidence)
        self.locus_counts[status] += 1


def estimate_error_rates(
    *,
    bam_path: str | Path,
    genome: str | Path,
    bed: Optional[str | Path] = None,
    vcf: Optional[str | Path] = None,
    avoid: bool = False,
    settings: Optional[ScanSettings] = None,
    max_allelic_fraction: float = 0.02,
    max_error_depth: int = 3,
    stranded: bool = True,
    cache_window: Optional[int] = None,
    outdir: Optional[str | Path] = None,
    progress: bool = True,
) -> Tuple[ErrorConfusionMatrix, Dict[str, object]]:
    """Run the error evaluator over an alignment and return the matrix and a summary dict.

    Region files are parsed before any read is consumed. When ``outdir`` is
    given, ``summary.json`` is written there.
    """
    settings = (settings or ScanSettings()).validate()
    regions = RegionSet.from_files(bed=bed, vcf=vcf, avoid=avoid)
    settings.log()

    with ReferenceSequenceAccessor(genome) as reference:
        evaluator = ErrorRateEvaluator(
            reference,
            regions,
            settings,
            max_allelic_fraction=max_allelic_fraction,
            max_error_depth=max_error_depth,
            stranded=stranded,
            cache_window=cache_window,
        )
        result = evaluator.scan_alignment(bam_path, progress=progress)

    matrix = evaluator.matrix
    summary: Dict[str, object] = {
        "command": "errors",
        "bam_path": str(bam_path),
        "genome": str(genome),
        "bed": str(bed) if bed is not None else None,
        "vcf": str(vcf) if vcf is not None else None,
        "avoid": bool(avoid),
        "stranded": bool(stranded),
        "max_allelic_fraction": float(max_allelic_fraction),
        "max_error_depth": int(max_error_depth),
        "cache_window": evaluator.cache.window,
        "settings": settings.to_dict(),
        "loci": dict(evaluator.locus_counts),
        "matrix": matrix.to_dict(),
        "rates": [
            {"ref": ref, "alt": alt, "eligible": el, "errors": er, "rate": rate}
            for ref, alt, el, er, rate in matrix.rows()
        ],
        **result.to_dict(),
    }
    if outdir is not None:
        write_json(ensure_outdir(outdir) / "summary.json", summary)
    return matrix, summary
