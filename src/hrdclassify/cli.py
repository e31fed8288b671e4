from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .classifier import load_model
from .config import CONTIG_STYLES, SV_CALLERS, ExtractionConfig, PredictConfig
from .errors import HrdClassifyError
from .features import read_feature_matrix
from .loader import SampleInput, load_sample_sheet
from .pipeline import run_extract, run_predict
from .toy_data import make_toy_data
from .utils import ensure_outdir


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
    if not isinstance(err, HrdClassifyError):
        logging.getLogger("hrdclassify").debug("Unhandled error", exc_info=err)

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_input_args(p: argparse.ArgumentParser) -> None:
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument(
        "--sample-sheet",
        type=_path_exists,
        help="TSV with columns sample, snv_indel path, sv path (VCF or table; NA if absent).",
    )
    src.add_argument(
        "--snv-indel",
        type=_path_exists,
        help="Single sample: SNV/indel VCF or table (chrom, pos, ref, alt).",
    )
    p.add_argument(
        "--sv",
        type=_path_exists,
        default=None,
        help="Single sample: SV VCF or table (sv_type, sv_len). Used with --snv-indel.",
    )
    p.add_argument("--sample", default=None, help="Sample name for single-sample input.")
    p.add_argument("--ref", type=_path_exists, default=None, help="Reference FASTA (faidx-indexed).")
    p.add_argument(
        "--contig-style",
        choices=list(CONTIG_STYLES),
        default="auto",
        help="Contig naming style used to reconcile variants with the reference.",
    )
    p.add_argument(
        "--sv-caller",
        choices=list(SV_CALLERS),
        default="manta",
        help="SV VCF dialect: manta (SVTYPE) or gridss (breakend notation).",
    )
    p.add_argument(
        "--no-require-pass",
        action="store_true",
        help="Keep VCF records regardless of FILTER.",
    )


def _add_predict_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--model", required=True, type=_path_exists, help="Model artifact (JSON).")
    p.add_argument(
        "--bootstrap",
        action="store_true",
        help="Report 5/50/95%% bootstrap quantiles (multiplies classifier work).",
    )
    p.add_argument("--bootstrap-iters", type=int, default=20, help="Bootstrap resamples per sample.")
    p.add_argument("--seed", type=int, default=0, help="Base seed for bootstrap resampling.")


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--outdir", required=True, help="Output directory.")
    p.add_argument("--jobs", type=int, default=1, help="Worker threads for per-sample work.")
    p.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    p.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hrdclassify",
        description=(
            "HRDClassify: mutation-context features and homologous recombination "
            "deficiency (HRD) prediction from somatic SNVs, indels and SVs."
        ),
    )
    p.add_argument("--version", action="version", version=f"hrdclassify {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, variant tables and demo model for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # extract
    # -----------------
    e = sub.add_parser("extract", help="Count mutation contexts per sample into features.tsv.")
    _add_input_args(e)
    _add_common_args(e)

    # -----------------
    # predict
    # -----------------
    pr = sub.add_parser("predict", help="Classify samples from a features.tsv.")
    pr.add_argument("--features", required=True, type=_path_exists, help="features.tsv from 'extract'.")
    _add_predict_args(pr)
    _add_common_args(pr)

    # -----------------
    # run
    # -----------------
    r = sub.add_parser("run", help="Extract contexts and classify in one go.")
    _add_input_args(r)
    _add_predict_args(r)
    _add_common_args(r)

    return p


# -----------------
# Command handlers
# -----------------


def _sample_inputs(args: argparse.Namespace) -> List[SampleInput]:
    if args.sample_sheet:
        return load_sample_sheet(args.sample_sheet)
    name = args.sample or Path(args.snv_indel).name.split(".")[0]
    return [SampleInput(sample=name, small_variants=args.snv_indel, structural_variants=args.sv)]


def _extraction_config(args: argparse.Namespace) -> ExtractionConfig:
    return ExtractionConfig(
        ref_fasta=args.ref,
        contig_style=args.contig_style,
        sv_caller=args.sv_caller,
        require_pass=not bool(args.no_require_pass),
    )


def _predict_config(args: argparse.Namespace) -> PredictConfig:
    return PredictConfig(
        model_path=args.model,
        bootstrap=bool(args.bootstrap),
        bootstrap_iters=int(args.bootstrap_iters),
        seed=int(args.seed),
        n_jobs=int(args.jobs),
    )


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "extract.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("hrdclassify")
    logger.info("hrdclassify %s", __version__)

    try:
        config = _extraction_config(args)
        items = _sample_inputs(args)

        if args.dry_run:
            print(f"Dry-run: {len(items)} sample(s) look OK.")
            print("Planned outputs:")
            print(f"  features.tsv -> {outdir / 'features.tsv'}")
            print(f"  load_stats.json -> {outdir / 'load_stats.json'}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.resume and (outdir / "features.tsv").exists():
            logger.info("Resume enabled: features.tsv already exists in %s", outdir)
            print(str(outdir / "features.tsv"))
            return 0

        _, features_tsv = run_extract(items, config, outdir=outdir, n_jobs=int(args.jobs))
        print(str(features_tsv))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def cmd_predict(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "predict.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("hrdclassify")
    logger.info("hrdclassify %s", __version__)

    try:
        config = _predict_config(args)
        model = load_model(config.model_path)
        matrix = read_feature_matrix(args.features)
        model.check_schema(matrix.names, matrix.schema_version)

        if args.dry_run:
            print(f"Dry-run: {len(matrix)} sample(s) and model {model.model_version} look OK.")
            print("Planned outputs:")
            print(f"  predictions.tsv -> {outdir / 'predictions.tsv'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "predictions.tsv"))
            return 0

        summary = run_predict(
            matrix, model, config, outdir=outdir, extra_summary={"features_tsv": str(args.features)}
        )
        print(summary["predictions_tsv"])
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def cmd_run(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "run.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("hrdclassify")
    logger.info("hrdclassify %s", __version__)

    try:
        extraction = _extraction_config(args)
        config = _predict_config(args)
        items = _sample_inputs(args)
        model = load_model(config.model_path)

        if args.dry_run:
            print(f"Dry-run: {len(items)} sample(s) and model {model.model_version} look OK.")
            print("Planned outputs:")
            print(f"  features.tsv -> {outdir / 'features.tsv'}")
            print(f"  predictions.tsv -> {outdir / 'predictions.tsv'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "predictions.tsv"))
            return 0

        matrix, features_tsv = run_extract(items, extraction, outdir=outdir, n_jobs=config.n_jobs)
        summary = run_predict(
            matrix, model, config, outdir=outdir, extra_summary={"features_tsv": str(features_tsv)}
        )
        print(summary["predictions_tsv"])
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "extract":
        return cmd_extract(args)
    if args.cmd == "predict":
        return cmd_predict(args)
    if args.cmd == "run":
        return cmd_run(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
