"""Run-length encoded numeric tracks.

A track is one gzip-compressed text file per chromosome, ``<chrom>.txt.gz``,
holding one line per run::

    <value>\t<run length>

Position 1 of the chromosome is the first value of the first run.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .utils import ensure_outdir, open_textmaybe_gzip

logger = logging.getLogger(__name__)


def iter_runs(values: Sequence[float] | np.ndarray) -> Iterator[Tuple[object, int]]:
    """Yield ``(value, length)`` for each run of equal values; NaNs form one run."""
    arr = np.asarray(values)
    if arr.size == 0:
        return
    a, b = arr[1:], arr[:-1]
    same = a == b
    if np.issubdtype(arr.dtype, np.floating):
        same |= np.isnan(a) & np.isnan(b)
    starts = np.concatenate(([0], np.flatnonzero(~same) + 1))
    ends = np.concatenate((starts[1:], [arr.size]))
    for s, e in zip(starts, ends):
        yield arr[s], int(e - s)


def _format_value(value: object, integer: bool, float_format: Optional[str]) -> str:
    if integer:
        return str(int(value))  # type: ignore[call-overload]
    if float_format is not None:
        return format(float(value), float_format)  # type: ignore[arg-type]
    return repr(float(value))  # type: ignore[arg-type]


def write_rle_track(path: str | Path, values: Sequence[float] | np.ndarray, float_format: Optional[str] = None) -> int:
    """Write a dense per-position array as a gzip RLE text file.

    Parameters
    ----------
    path:
        Output path, normally ending in ``.txt.gz``.
    values:
        One value per position. Integer arrays are written as integers.
    float_format:
        Format spec (e.g. ``".4f"``) for float arrays. By default floats are
        written with ``repr`` so they read back exactly.

    Returns
    -------
    int
        Number of runs written.
    """
    arr = np.asarray(values)
    integer = bool(np.issubdtype(arr.dtype, np.integer) or np.issubdtype(arr.dtype, np.bool_))
    n = 0
    with open_textmaybe_gzip(path, "wt") as fh:
        for value, length in iter_runs(arr):
            fh.write(f"{_format_value(value, integer, float_format)}\t{length}\n")
            n += 1
    return n


def _parse_value(token: str) -> Tuple[float, bool]:
    try:
        return int(token), True
    except ValueError:
        return float(token), False


def read_rle_track(path: str | Path) -> np.ndarray:
    """Expand an RLE track file back into a dense array.

    The result is int64 when every value is an integer literal, else float64.
    """
    values: List[float] = []
    lengths: List[int] = []
    all_int = True
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            parts = line.split("\t")
            if len(parts) != 2:
                raise ValueError(f"{path}:{lineno}: expected '<value>\\t<length>', got {line!r}")
            value, is_int = _parse_value(parts[0])
            all_int = all_int and is_int
            length = int(parts[1])
            if length < 1:
                raise ValueError(f"{path}:{lineno}: run length must be >= 1")
            values.append(value)
            lengths.append(length)

    dtype = np.int64 if all_int else np.float64
    if not values:
        return np.zeros(0, dtype=dtype)
    return np.repeat(np.asarray(values, dtype=dtype), lengths)


class RleTrackWriter:
    """Track sink writing ``<outdir>/<chrom>.txt.gz`` for every chromosome."""

    def __init__(self, outdir: str | Path, float_format: Optional[str] = None) -> None:
        self.outdir = ensure_outdir(outdir)
        self.float_format = float_format
        self.written: Dict[str, Path] = {}

    def path_for(self, chrom: str) -> Path:
        return self.outdir / f"{chrom}.txt.gz"

    def write(self, chrom: str, values: np.ndarray) -> None:
        path = self.path_for(chrom)
        runs = write_rle_track(path, values, float_format=self.float_format)
        logger.debug("Wrote %s (%d positions, %d runs)", path, len(values), runs)
        self.written[chrom] = path
