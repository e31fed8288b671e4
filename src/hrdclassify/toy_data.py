from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pysam

from .classifier import CLASSES, MODEL_FORMAT, MODEL_FORMAT_VERSION
from .contexts import FEATURE_NAMES, SCHEMA_VERSION
from .utils import ensure_outdir, write_json

_BASES = "ACGT"

_NONE = [10.0, 0.0, 0.0]
_BRCA1 = [0.0, 10.0, 0.0]
_BRCA2 = [0.0, 0.0, 10.0]


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _stump(feature: str, threshold: float, left: List[float], right: List[float]) -> Dict[str, Any]:
    """One-split tree over a named feature."""
    return {
        "feature": [FEATURE_NAMES.index(feature), -1, -1],
        "threshold": [threshold, 0.0, 0.0],
        "left": [1, -1, -1],
        "right": [2, -1, -1],
        "value": [[a + b for a, b in zip(left, right)], left, right],
    }


def make_demo_model(*, voting: str = "vote") -> Dict[str, Any]:
    """A small hand-built ensemble for demos and tests.

    Microhomology deletions push towards HRD; 1-100kb duplications separate
    BRCA1-type from BRCA2-type. It has not been trained on real data and must not be
    used for real samples.
    """
    trees = [
        _stump("del.mh.bimh.2.5", 0.15, _NONE, [0.0, 6.0, 4.0]),
        _stump("del.mh.bimh.2.5", 0.20, _NONE, [0.0, 4.0, 6.0]),
        _stump("DUP_1e04_1e05_bp", 0.10, _BRCA2, _BRCA1),
        _stump("DUP_1e03_1e04_bp", 0.10, _BRCA2, _BRCA1),
        _stump("del.mh.bimh.2.5", 0.15, _NONE, [0.0, 5.0, 5.0]),
        _stump("ins.none", 0.50, [0.0, 5.0, 5.0], _NONE),
        _stump("del.mh.bimh.2.5", 0.10, _NONE, [0.0, 5.0, 3.0]),
    ]
    return {
        "format": MODEL_FORMAT,
        "format_version": MODEL_FORMAT_VERSION,
        "model_version": "demo-0",
        "schema_version": SCHEMA_VERSION,
        "features": list(FEATURE_NAMES),
        "classes": list(CLASSES),
        "voting": voting,
        "transform": "relative",
        "trees": trees,
    }


def _plant_mh_deletion(seq: List[str], p0: int) -> Tuple[int, str, str]:
    """6bp deletion after anchor ``p0`` whose first two bases recur right after it.

    Edits ``seq`` so the deletion has exactly 2bp of 3' microhomology and none on the 5' side.
    """
    deleted = seq[p0 + 1 : p0 + 7]
    seq[p0 + 7] = deleted[0]
    seq[p0 + 8] = deleted[1]
    seq[p0 + 9] = _mutate_base(deleted[2])
    seq[p0] = _mutate_base(deleted[-1])
    ref = "".join(seq[p0 : p0 + 7])
    return p0 + 1, ref, seq[p0]


def _no_mh_insertion(seq: List[str], p0: int) -> Tuple[int, str, str]:
    """2bp insertion after anchor ``p0`` sharing no bases with either flank."""
    ins = _mutate_base(seq[p0 + 1]) + _mutate_base(seq[p0])
    return p0 + 1, seq[p0], seq[p0] + ins


def make_toy_data(*, outdir: str | Path, seed: int = 7) -> Dict[str, str]:
    """Create a tiny reference, per-sample variant tables, a sample sheet and a demo model.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - <sample>.small.tsv / <sample>.sv.tsv for an HRD-like and a proficient-like sample
    - samples.tsv (sample sheet)
    - demo_model.json

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    contig = "chr1"
    seq = [rng.choice(_BASES) for _ in range(40_000)]

    # Each sample's indels live in their own half of the contig.
    plans = {
        "toy_hrd": {"region": (100, 19_900), "n_indels": 90, "mh": True},
        "toy_proficient": {"region": (20_100, 39_900), "n_indels": 80, "mh": False},
    }
    indels: Dict[str, List[Tuple[int, str, str]]] = {}
    for name, plan in plans.items():
        start, end = plan["region"]
        step = (end - start) // int(plan["n_indels"])
        out: List[Tuple[int, str, str]] = []
        for i in range(int(plan["n_indels"])):
            p0 = start + i * step
            if plan["mh"] and i % 3 != 2:
                out.append(_plant_mh_deletion(seq, p0))
            else:
                out.append(_no_mh_insertion(seq, p0))
        indels[name] = out

    ref_seq = "".join(seq)
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    svs = {
        "toy_hrd": [("DUP", 12_000 + 1_500 * i) for i in range(40)]
        + [("DEL", 2_000 + 700 * i) for i in range(10)]
        + [("TRA", None)],
        "toy_proficient": [("DUP", 3_000), ("DUP", 250_000)]
        + [("DEL", 500 + 40_000 * i) for i in range(35)]
        + [("TRA", None)],
    }

    sheet_lines = ["sample\tsnv_indel\tsv"]
    for name in plans:
        small_path = outdir_p / f"{name}.small.tsv"
        sv_path = outdir_p / f"{name}.sv.tsv"

        lines = ["chrom\tpos\tref\talt"]
        for i in range(60):
            p0 = 50 + i * 600 + 3
            ref_base = ref_seq[p0]
            lines.append(f"{contig}\t{p0 + 1}\t{ref_base}\t{_mutate_base(ref_base)}")
        for pos1, ref, alt in indels[name]:
            lines.append(f"{contig}\t{pos1}\t{ref}\t{alt}")
        small_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        sv_lines = ["sv_type\tsv_len"]
        for sv_type, sv_len in svs[name]:
            sv_lines.append(f"{sv_type}\t{'NA' if sv_len is None else sv_len}")
        sv_path.write_text("\n".join(sv_lines) + "\n", encoding="utf-8")

        sheet_lines.append(f"{name}\t{small_path.name}\t{sv_path.name}")

    sheet = outdir_p / "samples.tsv"
    sheet.write_text("\n".join(sheet_lines) + "\n", encoding="utf-8")

    model_path = outdir_p / "demo_model.json"
    write_json(model_path, make_demo_model())

    summary = {
        "ref_fa": str(ref_fa),
        "sample_sheet": str(sheet),
        "model": str(model_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
