from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .utils import ensure_outdir, write_json

READ_LENGTH = 50


def _write_fasta(path: Path, contigs: List[Tuple[str, str]]) -> None:
    lines = []
    for name, seq in contigs:
        lines.append(f">{name}")
        for i in range(0, len(seq), 60):
            lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _random_sequence(rng: random.Random, length: int) -> str:
    # no homopolymers, so edge trimming leaves toy reads alone
    out: List[str] = []
    for _ in range(length):
        choices = [b for b in "ACGT" if not out or b != out[-1]]
        out.append(rng.choice(choices))
    return "".join(out)


def _mutate_base(base: str) -> str:
    return {"A": "C", "C": "G", "G": "T", "T": "A"}.get(base, "A")


def _make_read(
    name: str,
    ref_id: int,
    start0: int,
    seq: str,
    *,
    reverse: bool = False,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 16 if reverse else 0
    a.reference_id = ref_id
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def make_toy_data(*, outdir: str | Path) -> Dict[str, object]:
    """Create a tiny reference and coordinate-sorted BAM for demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai) with chr1 (400 bp) and chr2 (150 bp)
    - toy.bam (+ .bai) with reads on chr1 only, so chr2 is an untouched chromosome
    - toy_regions.bed covering the middle of chr1

    On chr1 one locus carries a variant in every other read, and a handful
    of reads carry a single sequencing error each.

    Returns
    -------
    dict
        Paths to the generated files and the positions of the planted
        variant and errors (1-based).
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    chr1 = _random_sequence(rng, 400)
    chr2 = _random_sequence(rng, 150)
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, [("chr1", chr1), ("chr2", chr2)])
    pysam.faidx(str(ref_fa))

    variant_pos0 = 200
    reads: List[pysam.AlignedSegment] = []
    errors: List[int] = []
    for i in range(60):
        start0 = 20 + 5 * i
        if start0 + READ_LENGTH > len(chr1):
            break
        seq = list(chr1[start0 : start0 + READ_LENGTH])
        rel = variant_pos0 - start0
        if i % 2 == 0 and 0 <= rel < READ_LENGTH:
            seq[rel] = _mutate_base(seq[rel])
        if i % 7 == 3:
            k = 10 + (i % 20)
            seq[k] = _mutate_base(seq[k])
            errors.append(start0 + k + 1)
        reads.append(_make_read(f"toy_{i}", 0, start0, "".join(seq), reverse=i % 3 == 0))

    reads.sort(key=lambda r: r.reference_start)

    bam_path = outdir_p / "toy.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": "chr1", "LN": len(chr1)}, {"SN": "chr2", "LN": len(chr2)}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    bed_path = outdir_p / "toy_regions.bed"
    bed_path.write_text("chr1\t100\t300\n", encoding="utf-8")

    summary: Dict[str, object] = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "bed": str(bed_path),
        "variant_pos": variant_pos0 + 1,
        "error_positions": errors,
        "num_reads": len(reads),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
