from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

SV_CALLERS = ("manta", "gridss")
CONTIG_STYLES = ("auto", "ucsc", "ensembl")


@dataclass(frozen=True)
class ExtractionConfig:
    """Per-invocation settings for variant loading and context extraction.

    Attributes
    ----------
    ref_fasta:
        Reference FASTA (faidx-indexed) used for flanking sequence lookup.
    contig_style:
        How variant contig names are reconciled with the FASTA ('auto', 'ucsc', 'ensembl').
    sv_caller:
        SV VCF dialect: 'manta' (SVTYPE driven) or 'gridss' (breakend notation).
    require_pass:
        Only keep VCF records whose FILTER is PASS or empty.
    max_repeat_copies:
        Number of repeat units scanned along the 3' flank.
    max_indel_len:
        Indels longer than this are classified without repeat/homology scans.
    """

    ref_fasta: Optional[str] = None
    contig_style: str = "auto"
    sv_caller: str = "manta"
    require_pass: bool = True
    max_repeat_copies: int = 5
    max_indel_len: int = 50

    def __post_init__(self) -> None:
        if self.contig_style not in CONTIG_STYLES:
            raise ValueError(f"contig_style must be one of {CONTIG_STYLES}, got {self.contig_style!r}")
        if self.sv_caller not in SV_CALLERS:
            raise ValueError(f"sv_caller must be one of {SV_CALLERS}, got {self.sv_caller!r}")
        if self.max_repeat_copies < 1:
            raise ValueError("max_repeat_copies must be >= 1")
        if self.max_indel_len < 1:
            raise ValueError("max_indel_len must be >= 1")


@dataclass(frozen=True)
class PredictConfig:
    """Per-invocation settings for classification.

    Bootstrapping multiplies classifier work by ``bootstrap_iters`` and is off by default.
    """

    model_path: str
    bootstrap: bool = False
    bootstrap_iters: int = 20
    seed: int = 0
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if self.bootstrap_iters < 1:
            raise ValueError("bootstrap_iters must be >= 1")
        if self.n_jobs < 1:
            raise ValueError("n_jobs must be >= 1")
