"""Mutation-context extraction.

Each variant is assigned to exactly one category of a fixed, versioned feature
schema. SNVs are collapsed to the six pyrimidine-reference substitution classes,
indels are split by flanking sequence context (repeat, microhomology, none) and
SVs by type and length bin.
"""

from __future__ import annotations

import bisect
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .config import ExtractionConfig
from .genome import SequenceLookup
from .models import ContextVector, SampleFeatureRow, SampleVariants, StructuralVariant, VariantCounts, VariantRecord

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "hrdctx-1"

SNV_CONTEXTS: Tuple[str, ...] = ("C>A", "C>G", "C>T", "T>A", "T>C", "T>G")

INDEL_CONTEXTS: Tuple[str, ...] = (
    "del.rep",
    "ins.rep",
    "del.mh.bimh.1",
    "del.mh.bimh.2.5",
    "ins.mh",
    "del.none",
    "ins.none",
)

INDEL_REP_CONTEXTS: Tuple[str, ...] = ("del.rep", "ins.rep")

SV_LENGTH_EDGES: Tuple[float, ...] = (0, 1e3, 1e4, 1e5, 1e6, 1e7, float("inf"))
SV_LENGTH_BINS: Tuple[str, ...] = (
    "0e00_1e03_bp",
    "1e03_1e04_bp",
    "1e04_1e05_bp",
    "1e05_1e06_bp",
    "1e06_1e07_bp",
    "1e07_Inf_bp",
)

SV_CONTEXTS: Tuple[str, ...] = tuple(
    f"{sv_type}_{b}" for sv_type in ("DEL", "DUP", "INV") for b in SV_LENGTH_BINS
) + ("TRA",)

FAMILIES: Dict[str, Tuple[str, ...]] = {
    "snv": SNV_CONTEXTS,
    "indel": INDEL_CONTEXTS,
    "sv": SV_CONTEXTS,
}

FEATURE_NAMES: Tuple[str, ...] = SNV_CONTEXTS + INDEL_CONTEXTS + SV_CONTEXTS

_COMPLEMENT = str.maketrans("ACGTN", "TGCAN")


def empty_vector() -> ContextVector:
    return ContextVector.from_counts({}, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION)


def snv_context(rec: VariantRecord) -> str:
    """Substitution class with the reference base folded onto the pyrimidine strand."""
    ref, alt = rec.ref, rec.alt
    if ref in ("A", "G"):
        ref = ref.translate(_COMPLEMENT)
        alt = alt.translate(_COMPLEMENT)
    ctx = f"{ref}>{alt}"
    if ctx not in SNV_CONTEXTS:
        raise ValueError(f"Cannot classify SNV {rec.chrom}:{rec.pos} {rec.ref}>{rec.alt}")
    return ctx


@dataclass(frozen=True)
class IndelContext:
    """Flank analysis for one indel."""

    context: str
    repeat_copies: int
    mh_len: int


def _count_copies(unit: str, flank: str, max_copies: int) -> int:
    n = 0
    size = len(unit)
    while n < max_copies and flank[n * size : (n + 1) * size] == unit:
        n += 1
    return n


def _common_prefix_len(a: str, b: str) -> int:
    n = 0
    for x, y in zip(a, b):
        if x != y:
            break
        n += 1
    return n


def classify_indel(
    rec: VariantRecord,
    lookup: SequenceLookup,
    *,
    max_repeat_copies: int = 5,
    max_indel_len: int = 50,
) -> IndelContext:
    """Assign an indel to its repeat / microhomology / none context.

    The deleted or inserted sequence is compared with the reference on both sides of
    the breakpoint. A full additional copy of the sequence makes it a repeat; otherwise
    a partial match is microhomology, measured in bases (bimh).
    """
    kind = rec.indel_type
    seq = rec.indel_seq
    size = len(seq)

    if size > max_indel_len:
        return IndelContext(context=f"{kind}.none", repeat_copies=0, mh_len=0)

    # rec.pos is the 1-based anchor, so the 0-based base after the anchor is rec.pos.
    right_start = rec.pos + (size if kind == "del" else 0)
    span = size * max_repeat_copies
    right = lookup.fetch(rec.chrom, right_start, right_start + span)
    left = lookup.fetch(rec.chrom, rec.pos - span, rec.pos)

    copies = _count_copies(seq, right, max_repeat_copies) + _count_copies(
        seq[::-1], left[::-1], max_repeat_copies
    )
    if copies >= 1:
        return IndelContext(context=f"{kind}.rep", repeat_copies=copies, mh_len=0)

    mh_len = max(_common_prefix_len(seq, right), _common_prefix_len(seq[::-1], left[::-1]))
    if mh_len == 0:
        return IndelContext(context=f"{kind}.none", repeat_copies=0, mh_len=0)
    if kind == "ins":
        return IndelContext(context="ins.mh", repeat_copies=0, mh_len=mh_len)
    bucket = "del.mh.bimh.1" if mh_len == 1 else "del.mh.bimh.2.5"
    return IndelContext(context=bucket, repeat_copies=0, mh_len=mh_len)


def sv_context(sv: StructuralVariant) -> str:
    if sv.sv_type == "TRA":
        return "TRA"
    if sv.sv_len is None:
        raise ValueError(f"{sv.sv_type} structural variant without a length cannot be binned")
    idx = bisect.bisect_right(SV_LENGTH_EDGES, sv.sv_len) - 1
    return f"{sv.sv_type}_{SV_LENGTH_BINS[idx]}"


def extract_contexts(
    variants: SampleVariants,
    lookup: SequenceLookup,
    config: ExtractionConfig = ExtractionConfig(),
) -> ContextVector:
    """Count the mutation contexts of one sample."""
    counts: Dict[str, int] = {}

    for rec in variants.snvs:
        ctx = snv_context(rec)
        counts[ctx] = counts.get(ctx, 0) + 1

    for rec in variants.indels:
        ctx = classify_indel(
            rec,
            lookup,
            max_repeat_copies=config.max_repeat_copies,
            max_indel_len=config.max_indel_len,
        ).context
        counts[ctx] = counts.get(ctx, 0) + 1

    for sv in variants.svs:
        ctx = sv_context(sv)
        counts[ctx] = counts.get(ctx, 0) + 1

    vector = ContextVector.from_counts(counts, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION)
    logger.debug(
        "%s: %d SNVs, %d indels, %d SVs",
        variants.sample,
        len(variants.snvs),
        len(variants.indels),
        len(variants.svs),
    )
    return vector


def extract_many(
    samples: Sequence[SampleVariants],
    lookup: SequenceLookup,
    config: ExtractionConfig = ExtractionConfig(),
    *,
    n_jobs: int = 1,
) -> List[SampleFeatureRow]:
    """Extract contexts for many samples; rows come back in input order."""

    def _one(sv: SampleVariants) -> SampleFeatureRow:
        return SampleFeatureRow(sample=sv.sample, vector=extract_contexts(sv, lookup, config))

    if n_jobs <= 1 or len(samples) <= 1:
        return [_one(s) for s in samples]
    with ThreadPoolExecutor(max_workers=n_jobs) as pool:
        return list(pool.map(_one, samples))


def count_evidence(vector: ContextVector) -> VariantCounts:
    """Evidence totals for the decision rules, read back from a context vector."""
    return VariantCounts(
        n_snv=vector.total(SNV_CONTEXTS),
        n_indel=vector.total(INDEL_CONTEXTS),
        n_indel_rep=vector.total(INDEL_REP_CONTEXTS),
        n_sv=vector.total(SV_CONTEXTS),
    )
