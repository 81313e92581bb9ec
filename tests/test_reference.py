from pathlib import Path

import pysam
import pytest

from bamtracks.reference import ReferenceMismatchError, ReferenceSequenceAccessor


def _fasta(tmp_path: Path) -> Path:
    fa = tmp_path / "ref.fa"
    fa.write_text(">chrA\nacgtn\n>chrB\nGGGG\n>chrC\nTTAACC\n", encoding="utf-8")
    pysam.faidx(str(fa))
    return fa


def test_sequential_access_and_skipping(tmp_path):
    with ReferenceSequenceAccessor(_fasta(tmp_path)) as ref:
        ref.advance_to("chrA", 5)
        assert [ref.base_at(i) for i in range(1, 6)] == list("ACGTN")
        ref.advance_to("chrC", 6)
        assert ref.name == "chrC"
        assert ref.base_at(6) == "C"


def test_out_of_range_base(tmp_path):
    with ReferenceSequenceAccessor(_fasta(tmp_path)) as ref:
        with pytest.raises(IndexError):
            ref.base_at(1)
        ref.advance_to("chrB", 4)
        with pytest.raises(IndexError):
            ref.base_at(5)
        with pytest.raises(IndexError):
            ref.base_at(0)


def test_length_mismatch_is_fatal(tmp_path):
    with ReferenceSequenceAccessor(_fasta(tmp_path)) as ref:
        with pytest.raises(ReferenceMismatchError, match="Length of chrA"):
            ref.advance_to("chrA", 500)


def test_missing_and_out_of_order_chromosomes(tmp_path):
    with ReferenceSequenceAccessor(_fasta(tmp_path)) as ref:
        with pytest.raises(ReferenceMismatchError, match="not in the reference"):
            ref.advance_to("chrZ", 10)
        ref.advance_to("chrB", 4)
        with pytest.raises(ReferenceMismatchError, match="earlier"):
            ref.advance_to("chrA", 5)
