from __future__ import annotations

import logging
import threading
from typing import Dict, Mapping, Optional, Protocol

import pysam

from .validation import check_fasta_index, detect_contig_style, remap_contig

logger = logging.getLogger(__name__)


class SequenceLookup(Protocol):
    """Reference sequence oracle.

    ``fetch`` takes 0-based half-open coordinates and returns uppercase bases,
    truncated at contig bounds.
    """

    def fetch(self, chrom: str, start0: int, end0: int) -> str:
        ...


def _clip(start0: int, end0: int, length: int) -> tuple[int, int]:
    start0 = max(0, start0)
    end0 = min(length, end0)
    return start0, max(start0, end0)


class InMemorySequenceLookup:
    """Lookup backed by a contig -> sequence mapping."""

    def __init__(self, sequences: Mapping[str, str]) -> None:
        self._seqs: Dict[str, str] = {k: v.upper() for k, v in sequences.items()}

    def fetch(self, chrom: str, start0: int, end0: int) -> str:
        if chrom not in self._seqs:
            raise KeyError(f"Contig '{chrom}' not present in reference ({len(self._seqs)} contigs)")
        seq = self._seqs[chrom]
        s, e = _clip(start0, end0, len(seq))
        return seq[s:e]


class FastaSequenceLookup:
    """Lookup over an indexed FASTA via pysam.

    Variant contig names are remapped to the FASTA's naming style (chr1 vs 1) when
    ``contig_style`` is 'auto'.
    """

    def __init__(self, fasta_path: str, *, contig_style: str = "auto") -> None:
        check_fasta_index(fasta_path)
        self.fasta_path = str(fasta_path)
        self._fa = pysam.FastaFile(self.fasta_path)
        self._lengths: Dict[str, int] = dict(zip(self._fa.references, self._fa.lengths))
        if contig_style == "auto":
            contig_style = detect_contig_style(self._fa.references)
            logger.debug("Reference %s uses %s contig names", fasta_path, contig_style)
        self.contig_style = contig_style
        # FastaFile handles are not safe for concurrent fetches.
        self._lock = threading.Lock()

    def _resolve(self, chrom: str) -> str:
        if chrom in self._lengths:
            return chrom
        remapped = remap_contig(chrom, self.contig_style)
        if remapped in self._lengths:
            return remapped
        raise KeyError(
            f"Contig '{chrom}' not found in {self.fasta_path} "
            f"(tried '{remapped}'). Check reference genome build and --contig-style."
        )

    def fetch(self, chrom: str, start0: int, end0: int) -> str:
        name = self._resolve(chrom)
        s, e = _clip(start0, end0, self._lengths[name])
        if s == e:
            return ""
        with self._lock:
            seq = self._fa.fetch(name, s, e)
        return seq.upper()

    def close(self) -> None:
        self._fa.close()

    def __enter__(self) -> "FastaSequenceLookup":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def open_lookup(ref_fasta: Optional[str], *, contig_style: str = "auto") -> FastaSequenceLookup:
    if ref_fasta is None:
        raise ValueError("A reference FASTA is required to classify indel contexts (--ref).")
    return FastaSequenceLookup(ref_fasta, contig_style=contig_style)
