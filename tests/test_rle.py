import gzip

import numpy as np

from bamtracks.rle import RleTrackWriter, iter_runs, read_rle_track, write_rle_track


def test_integer_track_layout(tmp_path):
    path = tmp_path / "chr1.txt.gz"
    n = write_rle_track(path, np.array([0, 0, 3, 3, 3, 0], dtype=np.int64))
    assert n == 3
    with gzip.open(path, "rt") as fh:
        assert fh.read() == "0\t2\n3\t3\n0\t1\n"


def test_integer_round_trip(tmp_path):
    rng = np.random.default_rng(0)
    values = np.repeat(rng.integers(0, 5, size=200), rng.integers(1, 20, size=200))
    path = tmp_path / "t.txt.gz"
    write_rle_track(path, values)
    back = read_rle_track(path)
    assert back.dtype == np.int64
    assert np.array_equal(back, values)


def test_float_round_trip_is_exact(tmp_path):
    values = np.array([-1.0, -1.0, 0.1 + 0.2, 25.0, 25.0, 1.0 / 3.0])
    path = tmp_path / "f.txt.gz"
    write_rle_track(path, values)
    back = read_rle_track(path)
    assert back.dtype == np.float64
    assert np.array_equal(back, values)


def test_float_format(tmp_path):
    path = tmp_path / "e.txt.gz"
    write_rle_track(path, np.array([0.0, 0.0, 1.0 / 3.0]), float_format=".4f")
    with gzip.open(path, "rt") as fh:
        assert fh.read() == "0.0000\t2\n0.3333\t1\n"


def test_empty_track(tmp_path):
    path = tmp_path / "empty.txt.gz"
    assert write_rle_track(path, np.zeros(0, dtype=np.int64)) == 0
    assert len(read_rle_track(path)) == 0


def test_nan_values_form_one_run():
    runs = list(iter_runs(np.array([np.nan, np.nan, 1.0])))
    assert [length for _, length in runs] == [2, 1]


def test_writer_names_files_by_chromosome(tmp_path):
    writer = RleTrackWriter(tmp_path / "tracks")
    writer.write("chrM", np.array([1, 1, 2]))
    assert writer.written["chrM"] == tmp_path / "tracks" / "chrM.txt.gz"
    assert np.array_equal(read_rle_track(writer.written["chrM"]), [1, 1, 2])
