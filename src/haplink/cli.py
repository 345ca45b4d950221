from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from . import __version__
from .alignment import load_reads
from .caller import call_variants_with_stats
from .doctor import TOOLS, collect_checks
from .external import ExternalCommandError
from .haplotypes import DEFAULT_ITERATIONS, find_haplotypes, find_simulated_haplotypes
from .models import Haplotype, PileupRow, Variant
from .output import haplotype_summaries, read_vcf, save_haplotypes_yaml, save_vcf
from .plotting import plot_haplotype_occurrences, plot_variant_frequencies
from .readcounts import count_base_stats, read_readcounts
from .report import render_report
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .validation import find_bam_index

METHODS = ("ml", "raw")


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


def _probability(s: str) -> float:
    try:
        v = float(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not a number: {s}") from None
    if not 0.0 <= v <= 1.0:
        raise argparse.ArgumentTypeError(f"Must be between 0 and 1: {s}")
    return v


def _non_negative_int(s: str) -> int:
    try:
        v = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an integer: {s}") from None
    if v < 0:
        raise argparse.ArgumentTypeError(f"Must be >= 0: {s}")
    return v


def _positive_int(s: str) -> int:
    v = _non_negative_int(s)
    if v == 0:
        raise argparse.ArgumentTypeError(f"Must be >= 1: {s}")
    return v


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_variant_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("variant calling")
    g.add_argument("-q", "--quality", type=float, default=12, help="Minimum mean PHRED base quality.")
    g.add_argument(
        "-f", "--frequency", type=_probability, default=0.05, help="Minimum alternate allele frequency."
    )
    g.add_argument(
        "-x",
        "--position",
        type=_probability,
        default=0.1,
        help="Minimum mean position of the variant within reads (fraction of read length).",
    )
    g.add_argument(
        "--variant-significance",
        type=_probability,
        default=1e-5,
        help="Maximum Fisher's exact test p-value against the sequencing error rate.",
    )
    g.add_argument("--variant-depth", type=_non_negative_int, default=10, help="Minimum alternate allele depth.")


def _add_haplotype_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("haplotype calling")
    g.add_argument(
        "--haplotype-significance",
        type=_probability,
        default=1e-5,
        help="Maximum linkage chi-squared p-value.",
    )
    g.add_argument(
        "--haplotype-depth",
        type=_non_negative_int,
        default=10,
        help="Minimum number of observations carrying every alternate allele.",
    )
    g.add_argument(
        "--method",
        choices=METHODS,
        default="ml",
        help="ml: resample reads into pseudo long reads; raw: only reads spanning every variant.",
    )
    g.add_argument(
        "--iterations", type=_positive_int, default=DEFAULT_ITERATIONS, help="Resampling iterations (ml method)."
    )
    g.add_argument("--seed", type=_non_negative_int, default=None, help="Random seed for reproducible resampling.")
    g.add_argument("--threads", type=_positive_int, default=1, help="Worker threads for resampling.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="haplink",
        description=(
            "HapLink: call variants from aligned reads and find haplotypes by "
            "resampling-based linkage disequilibrium testing."
        ),
    )
    p.add_argument("--version", action="version", version=f"haplink {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("quickstart", help="Print ready-to-run recipes for common scenarios.")

    # -----------------
    # run
    # -----------------
    r = sub.add_parser("run", help="Call variants and haplotypes from a BAM (full workflow).")
    r.add_argument("--bam", required=True, type=_path_exists, help="Aligned reads (sorted, indexed).")
    r.add_argument("--reference", required=True, type=_path_exists, help="Reference FASTA.")
    r.add_argument(
        "--readcounts",
        type=_path_exists,
        default=None,
        help="Precomputed bam-readcount output (skips running bam-readcount).",
    )
    r.add_argument("--outdir", required=True, help="Output directory.")
    r.add_argument("--prefix", default=None, help="Output file prefix (default: BAM file name).")
    r.add_argument("--no-report", action="store_true", help="Skip the HTML report and plots.")
    r.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    r.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")
    _add_variant_args(r)
    _add_haplotype_args(r)

    # -----------------
    # variants
    # -----------------
    v = sub.add_parser("variants", help="Call variants only and write a VCF.")
    src = v.add_mutually_exclusive_group(required=True)
    src.add_argument("--bam", type=_path_exists, help="Aligned reads; runs bam-readcount.")
    src.add_argument("--readcounts", type=_path_exists, help="Precomputed bam-readcount output.")
    v.add_argument("--reference", required=True, type=_path_exists, help="Reference FASTA.")
    v.add_argument("--out", required=True, help="Output VCF path.")
    v.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")
    _add_variant_args(v)

    # -----------------
    # haplotypes
    # -----------------
    h = sub.add_parser("haplotypes", help="Find haplotypes among the variants of a HapLink VCF.")
    h.add_argument("--bam", required=True, type=_path_exists, help="Aligned reads.")
    h.add_argument("--vcf", required=True, type=_path_exists, help="Variants (from 'haplink variants').")
    h.add_argument("--out", required=True, help="Output YAML path.")
    h.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")
    _add_haplotype_args(h)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser("make-toy-data", help="Generate a tiny reference, BAM and readcount table.")
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser("doctor", help="Check that external tools are installed.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Shared steps
# -----------------

def _pileup_rows(args: argparse.Namespace, *, save_to: Optional[Path] = None) -> List[PileupRow]:
    if args.readcounts is not None:
        return read_readcounts(args.readcounts)
    return count_base_stats(args.bam, args.reference, save_to=save_to)


def _call(args: argparse.Namespace, rows: List[PileupRow]) -> tuple[List[Variant], Dict[str, int]]:
    return call_variants_with_stats(
        rows,
        min_depth=int(args.variant_depth),
        min_quality=float(args.quality),
        min_position=float(args.position),
        min_frequency=float(args.frequency),
        alpha=float(args.variant_significance),
    )


def _save_vcf(args: argparse.Namespace, variants: List[Variant], path: Path) -> Path:
    return save_vcf(
        variants,
        path,
        reference=args.reference,
        min_depth=int(args.variant_depth),
        min_quality=float(args.quality),
        min_position=float(args.position),
        alpha=float(args.variant_significance),
    )


def _haplotypes(args: argparse.Namespace, variants: List[Variant]) -> Dict[Haplotype, np.ndarray]:
    find_bam_index(args.bam)
    reads = load_reads(args.bam)
    if args.method == "raw":
        return find_haplotypes(
            variants,
            reads,
            min_depth=int(args.haplotype_depth),
            alpha=float(args.haplotype_significance),
            progress=True,
        )
    return find_simulated_haplotypes(
        variants,
        reads,
        min_depth=int(args.haplotype_depth),
        alpha=float(args.haplotype_significance),
        iterations=int(args.iterations),
        seed=args.seed,
        threads=int(args.threads),
        progress=True,
    )


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "HapLink quickstart (copy/paste):",
        "",
        "1) BAM + reference (full workflow; needs bam-readcount in PATH):",
        "   haplink run \\",
        "     --bam sample.bam \\",
        "     --reference ref.fa \\",
        "     --outdir results/",
        "   Outputs: results/<prefix>.vcf, results/<prefix>.haplotypes.yaml, results/report.html",
        "",
        "2) Precomputed bam-readcount table, reproducible resampling:",
        "   haplink run \\",
        "     --bam sample.bam \\",
        "     --reference ref.fa \\",
        "     --readcounts sample.readcounts.tsv \\",
        "     --seed 42 --threads 4 \\",
        "     --outdir results/",
        "",
        "3) Try it on toy data:",
        "   haplink make-toy-data --outdir toy/",
        "   haplink run --bam toy/toy.bam --reference toy/toy_ref.fa \\",
        "     --readcounts toy/toy.readcounts.tsv --outdir toy_results/",
        "",
        "Tip: use --dry-run to validate inputs, and 'haplink doctor' to check external tools.",
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


def cmd_run(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "run.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("haplink")
    logger.info("haplink %s", __version__)

    prefix = args.prefix or Path(args.bam).stem
    vcf_path = outdir / f"{prefix}.vcf"
    yaml_path = outdir / f"{prefix}.haplotypes.yaml"

    try:
        if args.dry_run:
            indexed = find_bam_index(args.bam) is not None
            print("Dry-run: inputs look OK.")
            print(f"BAM index found: {'yes' if indexed else 'no (full scans will be used)'}")
            if args.readcounts is None:
                print("Would run: bam-readcount -f <reference> <bam>")
            print("Planned outputs:")
            print(f"  variants -> {vcf_path}")
            print(f"  haplotypes -> {yaml_path}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)

        rows = _pileup_rows(args, save_to=outdir / f"{prefix}.readcounts.tsv")
        variants, caller_stats = _call(args, rows)
        _save_vcf(args, variants, vcf_path)

        haplotypes = _haplotypes(args, variants)
        save_haplotypes_yaml(haplotypes, yaml_path)
        summaries = haplotype_summaries(haplotypes)

        params = {
            "method": args.method,
            "quality": args.quality,
            "frequency": args.frequency,
            "position": args.position,
            "variant_significance": args.variant_significance,
            "variant_depth": args.variant_depth,
            "haplotype_significance": args.haplotype_significance,
            "haplotype_depth": args.haplotype_depth,
            "iterations": args.iterations,
            "seed": args.seed,
        }
        summary = {
            "version": __version__,
            "bam": str(args.bam),
            "reference": str(args.reference),
            "params": params,
            "caller_stats": caller_stats,
            "variants": len(variants),
            "haplotypes": [
                {k: s[k] for k in ("name", "delta", "p", "depth", "total")} for s in summaries
            ],
            "outputs": {"vcf": str(vcf_path), "haplotypes": str(yaml_path)},
        }
        write_json(outdir / "summary.json", summary)

        if not args.no_report:
            plots_dir = outdir / "plots"
            freq_png = plots_dir / "variant_frequencies.png"
            occ_png = plots_dir / "haplotype_occurrences.png"
            plot_variant_frequencies(variants=variants, out_png=freq_png)
            plot_haplotype_occurrences(summaries=summaries, out_png=occ_png)
            report_path = render_report(
                outdir=outdir,
                version=__version__,
                bam_path=str(args.bam),
                reference=str(args.reference),
                params=params,
                caller_stats=caller_stats,
                variants=variants,
                haplotypes=summaries,
                plots={
                    "variant_frequencies": str(Path("plots") / freq_png.name),
                    "haplotype_occurrences": str(Path("plots") / occ_png.name),
                },
                outputs=[vcf_path.name, yaml_path.name, "summary.json"],
            )
            print(str(report_path))
        else:
            print(str(yaml_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_variants(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)
    try:
        rows = _pileup_rows(args)
        variants, _ = _call(args, rows)
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        _save_vcf(args, variants, out)
        print(str(out))
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_haplotypes(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)
    try:
        variants = read_vcf(args.vcf)
        haplotypes = _haplotypes(args, variants)
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        save_haplotypes_yaml(haplotypes, out)
        print(str(out))
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    lines = []
    ok_all = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:13s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    for name in TOOLS:
        r = checks[name]
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    return 0 if ok_all else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "run":
        return cmd_run(args)
    if args.cmd == "variants":
        return cmd_variants(args)
    if args.cmd == "haplotypes":
        return cmd_haplotypes(args)
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
