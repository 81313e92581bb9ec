"""bamtracks: streaming per-locus statistics over coordinate-sorted alignments.

Coverage, read start/end, median mapping quality and pileup entropy tracks
are written as run-length encoded text per chromosome; substitution error
rates are reported as a reference x observed base table. Most users should
use the CLI:

    bamtracks tracks --bam ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
