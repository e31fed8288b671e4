from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .classifier import EnsembleModel, bootstrap_quantiles, classify
from .config import ExtractionConfig, PredictConfig
from .contexts import SCHEMA_VERSION, count_evidence, extract_many
from .features import FeatureMatrix, build_feature_matrix, write_feature_matrix
from .genome import SequenceLookup, open_lookup
from .loader import SampleInput, load_sample_variants
from .models import PREDICTION_COLUMNS, PredictionResult, SampleVariants, bootstrap_columns
from .rules import apply_decision_rules
from .utils import ensure_outdir, write_json, write_tsv

logger = logging.getLogger(__name__)


class _NoReference:
    """Stand-in lookup for runs without --ref; only SNV/SV-only samples can be extracted."""

    def fetch(self, chrom: str, start0: int, end0: int) -> str:
        raise ValueError("A reference FASTA is required to classify indel contexts (--ref).")


def extract_samples(
    items: Sequence[SampleInput],
    config: ExtractionConfig,
    *,
    lookup: Optional[SequenceLookup] = None,
    n_jobs: int = 1,
    progress: bool = True,
) -> Tuple[FeatureMatrix, Dict[str, Dict[str, Dict[str, int]]]]:
    """Load and extract every sample; returns the count matrix and per-sample load stats."""
    owned = None
    if lookup is None:
        if config.ref_fasta is not None:
            owned = open_lookup(config.ref_fasta, contig_style=config.contig_style)
            lookup = owned
        else:
            lookup = _NoReference()

    variants: List[SampleVariants] = []
    stats: Dict[str, Dict[str, Dict[str, int]]] = {}
    it: Sequence[SampleInput] = items
    if progress:
        it = tqdm(items, unit="sample", desc="Extracting contexts")
    try:
        for item in it:
            sample_variants, stats[item.sample] = load_sample_variants(item, config)
            variants.append(sample_variants)
        rows = extract_many(variants, lookup, config, n_jobs=n_jobs)
    finally:
        if owned is not None:
            owned.close()

    return build_feature_matrix(rows), stats


def predict_samples(
    matrix: FeatureMatrix,
    model: EnsembleModel,
    *,
    bootstrap: bool = False,
    iters: int = 20,
    seed: int = 0,
    n_jobs: int = 1,
) -> List[PredictionResult]:
    """Classify all samples, optionally bootstrap, then apply the evidence rules."""
    raw = classify(matrix, model)
    boots = (
        bootstrap_quantiles(matrix, model, iters=iters, seed=seed, n_jobs=n_jobs)
        if bootstrap
        else [None] * len(raw)
    )
    results: List[PredictionResult] = []
    for i, (r, b) in enumerate(zip(raw, boots)):
        counts = count_evidence(matrix.row(i).vector)
        results.append(apply_decision_rules(r, counts, bootstrap=b))
    return results


def write_predictions(path: str | Path, results: Sequence[PredictionResult], *, bootstrap: bool) -> None:
    columns = list(PREDICTION_COLUMNS)
    if bootstrap:
        columns += bootstrap_columns()
    write_tsv(path, columns, (r.to_row() for r in results))


def summarize(results: Sequence[PredictionResult]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for r in results:
        counts[f"hr_status:{r.hr_status}"] = counts.get(f"hr_status:{r.hr_status}", 0) + 1
        counts[f"hrd_type:{r.hrd_type}"] = counts.get(f"hrd_type:{r.hrd_type}", 0) + 1
    return counts


def run_predict(
    matrix: FeatureMatrix,
    model: EnsembleModel,
    config: PredictConfig,
    *,
    outdir: str | Path,
    extra_summary: Optional[Dict[str, object]] = None,
) -> Dict[str, object]:
    """Classify ``matrix`` and write predictions.tsv + summary.json into ``outdir``."""
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)

    results = predict_samples(
        matrix,
        model,
        bootstrap=config.bootstrap,
        iters=config.bootstrap_iters,
        seed=config.seed,
        n_jobs=config.n_jobs,
    )
    predictions_tsv = outdir_path / "predictions.tsv"
    write_predictions(predictions_tsv, results, bootstrap=config.bootstrap)

    summary: Dict[str, object] = {
        "schema_version": SCHEMA_VERSION,
        "model_path": str(config.model_path),
        "model_version": model.model_version,
        "model_trees": model.n_trees,
        "model_voting": model.voting,
        "bootstrap": bool(config.bootstrap),
        "bootstrap_iters": int(config.bootstrap_iters) if config.bootstrap else None,
        "seed": int(config.seed),
        "samples": len(results),
        "counts": summarize(results),
        "predictions_tsv": str(predictions_tsv),
        "runtime_seconds": float(time.time() - t0),
    }
    if extra_summary:
        summary.update(extra_summary)
    write_json(outdir_path / "summary.json", summary)
    logger.info("Wrote predictions for %d samples to %s", len(results), predictions_tsv)
    return summary


def run_extract(
    items: Sequence[SampleInput],
    config: ExtractionConfig,
    *,
    outdir: str | Path,
    n_jobs: int = 1,
    progress: bool = True,
) -> Tuple[FeatureMatrix, Path]:
    """Extract contexts for ``items`` and write features.tsv + load_stats.json."""
    outdir_path = ensure_outdir(outdir)
    matrix, stats = extract_samples(items, config, n_jobs=n_jobs, progress=progress)
    features_tsv = outdir_path / "features.tsv"
    write_feature_matrix(features_tsv, matrix)
    write_json(outdir_path / "load_stats.json", stats)
    logger.info("Wrote %d x %d feature matrix to %s", len(matrix), len(matrix.names), features_tsv)
    return matrix, features_tsv
