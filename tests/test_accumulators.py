import pytest

from bamtracks.accumulators import (
    CODE_A,
    CODE_T,
    BaseComposition,
    LocusEvidenceList,
    MapQualList,
    base_code,
    complement_code,
)


def _add(ev: LocusEvidenceList, name: str, base: str, **kw) -> None:
    args = dict(
        base=base,
        quality=30,
        mapping_quality=60,
        minus_strand=False,
        index=20,
        read_length=50,
        read_name=name,
    )
    args.update(kw)
    ev.add_base(**args)


@pytest.mark.parametrize(
    "values,expected",
    [
        ([10, 20, 30, 40], 25.0),
        ([5, 15, 25], 15.0),
        ([40, 10, 30, 20], 25.0),
        ([7], 7.0),
        ([], -1.0),
    ],
)
def test_median_mapping_quality(values, expected):
    m = MapQualList()
    for v in values:
        m.add(v)
    assert m.median() == expected


def test_base_codes():
    assert [base_code(b) for b in "ATCGNx"] == [0, 1, 2, 3, 4, 4]
    assert base_code("g") == 3
    assert complement_code(CODE_A) == CODE_T


def test_base_composition():
    c = BaseComposition()
    for code in (0, 0, 1, 1):
        c.add(code)
    assert c.total == 4
    assert c.sum_x_log2_x == pytest.approx(4.0)


def test_edge_distances_follow_strand():
    ev = LocusEvidenceList()
    _add(ev, "plus", "A", index=2, read_length=10)
    _add(ev, "minus", "A", index=2, read_length=10, minus_strand=True)
    assert (ev.items[0].from_start, ev.items[0].from_end) == (2, 7)
    assert (ev.items[1].from_start, ev.items[1].from_end) == (7, 2)


def test_overlapping_mates_are_merged():
    ev = LocusEvidenceList()
    _add(ev, "pair1", "A", mapping_quality=20, overlapping=True, read_has_indel=True, nm=1)
    _add(ev, "pair1", "A", mapping_quality=40, minus_strand=True, index=40, nm=3)
    assert len(ev) == 1
    item = ev.items[0]
    assert item.mapping_quality == 40
    assert item.nm == 3
    assert not item.read_has_indel


def test_discordant_mates_become_n():
    ev = LocusEvidenceList()
    _add(ev, "p", "A", overlapping=True)
    _add(ev, "p", "C")
    assert ev.items[0].base == "N"


def test_n_mate_is_replaced_by_called_base():
    ev = LocusEvidenceList()
    _add(ev, "p", "N", overlapping=True)
    _add(ev, "p", "G")
    assert ev.items[0].base == "G"


def test_same_name_outside_overlap_is_counted_twice():
    ev = LocusEvidenceList()
    _add(ev, "p", "A")
    _add(ev, "p", "A")
    assert len(ev) == 2


def test_coverage_counts_refilter_evidence():
    ev = LocusEvidenceList()
    _add(ev, "a", "A")
    _add(ev, "b", "A", minus_strand=True)
    _add(ev, "c", "T", max_splice_gap=300)
    _add(ev, "low_q", "A", quality=5)
    _add(ev, "low_mapq", "A", mapping_quality=3)
    _add(ev, "near_start", "A", index=1)
    _add(ev, "near_end", "A", index=48)

    plus, minus, max_splice = ev.coverage_counts(5, 5, 9, 7)
    assert plus == [1, 1, 0, 0, 0]
    assert minus == [1, 0, 0, 0, 0]
    assert max_splice == [0, 300, 0, 0, 0]

    # without filters every item counts
    plus, minus, _ = ev.coverage_counts(0, 0, 0, 0)
    assert sum(plus) + sum(minus) == 7
