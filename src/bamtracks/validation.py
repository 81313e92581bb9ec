from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

import pysam

from .scanner import Chromosome, chromosomes_from_header, open_alignment

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def check_alignment(path: str | Path) -> List[Chromosome]:
    """Open an alignment file and return its chromosomes; raise with fix instructions."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Alignment file not found: {p}")
    try:
        with open_alignment(p) as bam:
            chromosomes = chromosomes_from_header(bam.header)
            sort_order = bam.header.to_dict().get("HD", {}).get("SO")
    except (OSError, ValueError) as e:
        raise ValueError(f"Cannot read alignment file {p}: {e}") from e

    if not chromosomes:
        raise ValueError(f"Alignment header of {p} lists no reference sequences (@SQ lines)")
    if sort_order is not None and sort_order != "coordinate":
        raise ValueError(
            f"Alignment {p} is sorted by '{sort_order}', not by coordinate. Run: samtools sort -o sorted.bam {p}"
        )
    if sort_order is None:
        logger.warning("Alignment %s does not declare a sort order; assuming coordinate order", p)
    return chromosomes


def check_fasta_index(path: str | Path) -> None:
    """Ensure a FASTA exists and has a .fai index; raise ValueError with fix instructions."""
    fa = Path(path)
    if not fa.exists():
        raise FileNotFoundError(f"Reference FASTA not found: {fa}")
    fai = fa.with_suffix(fa.suffix + ".fai")
    if not fai.exists():
        raise ValueError("FASTA is not indexed. Run: samtools faidx " + str(fa))


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def check_contig_consistency(chromosomes: List[Chromosome], fasta_path: str | Path) -> None:
    """Compare alignment chromosomes with the FASTA before any read is scanned.

    Every chromosome of the alignment must exist in the FASTA with the same
    length, and the shared chromosomes must come in the same order.
    """
    with pysam.FastaFile(str(fasta_path)) as fa:
        ref_lengths = dict(zip(fa.references, fa.lengths))
        ref_order = list(fa.references)

    missing = [c.name for c in chromosomes if c.name not in ref_lengths]
    if missing:
        bam_style = detect_contig_style(c.name for c in chromosomes)
        ref_style = detect_contig_style(ref_order)
        hint = ""
        if bam_style != ref_style:
            hint = f" (alignment uses {bam_style} names, reference uses {ref_style}, e.g. chr1 vs 1)"
        raise ValueError(
            f"Contig mismatch: {len(missing)} alignment chromosome(s) missing from the reference, "
            f"first: {missing[0]}{hint}"
        )

    for c in chromosomes:
        if int(ref_lengths[c.name]) != c.length:
            raise ValueError(
                f"Contig mismatch: {c.name} is {c.length} bp in the alignment but {ref_lengths[c.name]} bp in the reference"
            )

    rank = {name: i for i, name in enumerate(ref_order)}
    ranks = [rank[c.name] for c in chromosomes]
    if ranks != sorted(ranks):
        raise ValueError("Contig order differs between alignment header and reference FASTA")
