from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .entropy import compute_entropy
from .errors import ErrorConfusionMatrix, estimate_error_rates, write_errors_table
from .plotting import plot_error_heatmap, plot_locus_counts
from .regions import RegionSet
from .report import render_error_report
from .settings import ScanSettings
from .toy_data import make_toy_data
from .tracks import TRACK_TYPES, compute_tracks
from .utils import ensure_outdir
from .validation import check_alignment, check_contig_consistency, check_fasta_index


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_settings_args(p: argparse.ArgumentParser) -> None:
    d = ScanSettings()
    g = p.add_argument_group("base filters")
    g.add_argument("--min-base-qual", type=int, default=d.min_base_qual, help="Minimum Phred base quality.")
    g.add_argument("--min-map-qual", type=int, default=d.min_map_qual, help="Minimum read mapping quality.")
    g.add_argument(
        "--min-depth",
        type=int,
        default=d.min_depth,
        help="Loci with fewer contributing bases are reported as 0 / skipped.",
    )
    g.add_argument(
        "--min-from-start", type=int, default=d.min_from_start, help="Ignore bases this close to the read's 5' start."
    )
    g.add_argument(
        "--min-from-end", type=int, default=d.min_from_end, help="Ignore bases this close to the read's 3' end."
    )
    g.add_argument("--no-trim-homopolymer", action="store_true", help="Keep homopolymer runs at read edges.")
    g.add_argument("--no-trim-tails", action="store_true", help="Keep N / low-quality runs at read edges.")
    g.add_argument(
        "--tail-quality", type=int, default=d.tail_quality, help="Phred value marking a low-quality read tail."
    )
    g.add_argument("--n-ref", action="store_true", help="Count N read bases as coverage.")


def _settings_from_args(args: argparse.Namespace) -> ScanSettings:
    return ScanSettings(
        min_base_qual=int(args.min_base_qual),
        min_map_qual=int(args.min_map_qual),
        min_depth=int(args.min_depth),
        min_from_start=int(args.min_from_start),
        min_from_end=int(args.min_from_end),
        trim_homopolymer=not bool(args.no_trim_homopolymer),
        trim_low_quality_tails=not bool(args.no_trim_tails),
        tail_quality=int(args.tail_quality),
        n_ref=bool(args.n_ref),
    ).validate()


def _add_run_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--cache-window", type=int, default=None, help="Override the fill/drain cache window (bp).")
    p.add_argument("--no-progress", action="store_true", help="Do not show a progress bar.")
    p.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bamtracks",
        description=(
            "bamtracks: streaming per-locus statistics over coordinate-sorted alignments "
            "(coverage, entropy, median mapping quality, substitution error rates)."
        ),
    )
    p.add_argument("--version", action="version", version=f"bamtracks {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser("quickstart", help="Print ready-to-run recipes for common tasks.")

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser("make-toy-data", help="Generate a tiny reference and BAM for demos/tests.")
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # tracks
    # -----------------
    tr = sub.add_parser(
        "tracks",
        help="Write per-chromosome coverage, read start/end or median mapping quality tracks.",
    )
    tr.add_argument("--bam", required=True, type=_path_exists, help="Input alignment (coordinate-sorted).")
    tr.add_argument("--outdir", required=True, help="Output directory (<chrom>.txt.gz per chromosome).")
    tr.add_argument("--type", dest="track_type", choices=list(TRACK_TYPES), default="coverage", help="Track type.")
    tr.add_argument(
        "--float-format",
        default=None,
        help="Format spec for float tracks, e.g. .2f (default: exact repr).",
    )
    _add_settings_args(tr)
    _add_run_args(tr)

    # -----------------
    # entropy
    # -----------------
    en = sub.add_parser("entropy", help="Write per-chromosome windowed pileup entropy tracks.")
    en.add_argument("--bam", required=True, type=_path_exists, help="Input alignment (coordinate-sorted).")
    en.add_argument("--outdir", required=True, help="Output directory (<chrom>.txt.gz per chromosome).")
    en.add_argument("--window", type=int, default=5, help="Window size in loci.")
    en.add_argument("--float-format", default=".4f", help="Format spec for entropy values.")
    _add_run_args(en)

    # -----------------
    # errors
    # -----------------
    er = sub.add_parser("errors", help="Estimate substitution error rates against a reference.")
    er.add_argument("--bam", required=True, type=_path_exists, help="Input alignment (coordinate-sorted).")
    er.add_argument("--genome", required=True, type=_path_exists, help="Reference FASTA (indexed).")
    er.add_argument("--bed", type=_path_exists, default=None, help="Restrict to BED intervals.")
    er.add_argument("--vcf", type=_path_exists, default=None, help="Restrict to VCF positions.")
    er.add_argument("--avoid", action="store_true", help="Exclude the BED/VCF regions instead.")
    er.add_argument("--max-allelic", type=float, default=0.02, help="Alternate fraction above which a locus is a variant.")
    er.add_argument("--max-error-depth", type=int, default=3, help="Alternate depth above which a locus may be a variant.")
    er.add_argument("--not-stranded", action="store_true", help="Do not separate plus and minus strand evidence.")
    er.add_argument("--output", default=None, help="Error table path (default: <outdir>/errors.tsv or stdout).")
    er.add_argument("--outdir", default=None, help="Write summary.json, report.html and plots here.")
    _add_settings_args(er)
    _add_run_args(er)

    return p


# -----------------
# Commands
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "bamtracks quickstart (copy/paste):",
        "",
        "1) Coverage tracks:",
        "   bamtracks tracks \\",
        "     --bam sample.bam \\",
        "     --type coverage \\",
        "     --outdir coverage/",
        "   Outputs: coverage/<chrom>.txt.gz, coverage/summary.json",
        "",
        "2) Pileup entropy:",
        "   bamtracks entropy \\",
        "     --bam sample.bam \\",
        "     --window 5 \\",
        "     --outdir entropy/",
        "",
        "3) Substitution error rates in target regions:",
        "   bamtracks errors \\",
        "     --bam sample.bam \\",
        "     --genome ref.fa \\",
        "     --bed targets.bed \\",
        "     --outdir errors/",
        "   Outputs: errors/errors.tsv, errors/report.html, errors/summary.json",
        "",
        "Tip: use --dry-run to validate inputs, and make-toy-data for a tiny test set.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_tracks(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "tracks.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("bamtracks")
    logger.info("bamtracks %s", __version__)

    try:
        settings = _settings_from_args(args)
        chromosomes = check_alignment(args.bam)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Track type: {args.track_type}")
            print(f"Chromosomes: {len(chromosomes)}")
            print("Planned outputs:")
            for c in chromosomes[:5]:
                print(f"  {c.name} -> {outdir / (c.name + '.txt.gz')}")
            if len(chromosomes) > 5:
                print(f"  ... and {len(chromosomes) - 5} more")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        summary = compute_tracks(
            bam_path=args.bam,
            outdir=outdir,
            track_type=args.track_type,
            settings=settings,
            cache_window=args.cache_window,
            float_format=args.float_format,
            progress=not args.no_progress,
        )
        logger.info("Tracks written: %d", len(summary["tracks"]))  # type: ignore[arg-type]
        print(str(outdir / "summary.json"))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_entropy(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "entropy.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("bamtracks")
    logger.info("bamtracks %s", __version__)

    try:
        if args.window < 1:
            raise ValueError("--window must be >= 1")
        chromosomes = check_alignment(args.bam)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Window: {args.window}")
            print(f"Chromosomes: {len(chromosomes)}")
            print(f"Planned outputs: {outdir}/<chrom>.txt.gz, {outdir / 'summary.json'}")
            return 0

        compute_entropy(
            bam_path=args.bam,
            outdir=outdir,
            window=int(args.window),
            cache_window=args.cache_window,
            float_format=args.float_format,
            progress=not args.no_progress,
        )
        print(str(outdir / "summary.json"))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def _write_table(matrix: ErrorConfusionMatrix, label: str, output: Optional[Path]) -> None:
    if output is None:
        write_errors_table(sys.stdout, matrix, label)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "wt", encoding="utf-8") as fh:
        write_errors_table(fh, matrix, label)


def cmd_errors(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else None
    log_path = _log_path(outdir, "errors.log") if outdir is not None else None
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("bamtracks")
    logger.info("bamtracks %s", __version__)

    try:
        settings = _settings_from_args(args)
        if not 0.0 <= args.max_allelic <= 1.0:
            raise ValueError("--max-allelic must be within [0, 1]")
        if args.max_error_depth < 0:
            raise ValueError("--max-error-depth must be >= 0")

        chromosomes = check_alignment(args.bam)
        check_fasta_index(args.genome)
        check_contig_consistency(chromosomes, args.genome)
        # parse region files early so mistakes surface before scanning
        RegionSet.from_files(bed=args.bed, vcf=args.vcf, avoid=args.avoid)

        output: Optional[Path] = None
        if args.output is not None:
            output = Path(args.output).expanduser().resolve()
        elif outdir is not None:
            output = outdir / "errors.tsv"

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Chromosomes: {len(chromosomes)}")
            print(f"Stranded: {not args.not_stranded}")
            print("Planned outputs:")
            print(f"  error table -> {output if output is not None else 'stdout'}")
            if outdir is not None:
                print(f"  report.html -> {outdir / 'report.html'}")
                print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        matrix, run = estimate_error_rates(
            bam_path=args.bam,
            genome=args.genome,
            bed=args.bed,
            vcf=args.vcf,
            avoid=bool(args.avoid),
            settings=settings,
            max_allelic_fraction=float(args.max_allelic),
            max_error_depth=int(args.max_error_depth),
            stranded=not bool(args.not_stranded),
            cache_window=args.cache_window,
            outdir=outdir,
            progress=not args.no_progress,
        )
        _write_table(matrix, Path(args.bam).name, output)

        if outdir is not None:
            plots_dir = ensure_outdir(outdir / "plots")
            heatmap_png = plots_dir / "error_heatmap.png"
            loci_png = plots_dir / "locus_counts.png"
            plot_error_heatmap(rates=run["rates"], out_png=heatmap_png)  # type: ignore[arg-type]
            plot_locus_counts(locus_counts=run["loci"], out_png=loci_png)  # type: ignore[arg-type]

            plots_rel = {
                "error_heatmap": str(Path("plots") / heatmap_png.name),
                "locus_counts": str(Path("plots") / loci_png.name),
            }
            report_path = render_error_report(outdir=outdir, version=__version__, run=run, plots=plots_rel)
            logger.info("Report written: %s", report_path)
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "tracks":
        return cmd_tracks(args)
    if args.cmd == "entropy":
        return cmd_entropy(args)
    if args.cmd == "errors":
        return cmd_errors(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
