from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def check_fasta_index(fasta_path: str | Path) -> None:
    """Ensure a reference FASTA has a faidx index; raise ValueError with fix instructions."""
    fa = Path(fasta_path)
    if not fa.exists():
        raise ValueError(f"Reference FASTA not found: {fa}")
    fai = fa.with_suffix(fa.suffix + ".fai")
    if not fai.exists():
        raise ValueError("Reference FASTA is not indexed. Run: samtools faidx " + str(fa))


def check_vcf_index(vcf_path: str | Path) -> None:
    """Log how a VCF will be read; bgzipped VCFs without tabix are read sequentially."""
    vcf = Path(vcf_path)
    if vcf.suffixes[-2:] == [".vcf", ".gz"]:
        tbi = vcf.with_suffix(vcf.suffix + ".tbi")
        if not tbi.exists():
            logger.info(
                "VCF %s has no tabix index; reading sequentially. "
                "Index with: tabix -p vcf %s",
                vcf,
                vcf,
            )
    elif vcf.suffix == ".vcf":
        logger.info(
            "VCF is uncompressed (.vcf). This is supported but slower; "
            "consider bgzip+tabix for large files."
        )


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig
