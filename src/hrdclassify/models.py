from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .errors import SchemaMismatchError, UnsupportedSvTypeError

_VALID_BASES = frozenset("ACGTN")

SV_TYPES = ("DEL", "DUP", "INV", "TRA")


@dataclass(frozen=True)
class VariantRecord:
    """A somatic SNV or indel, as it appears in a VCF.

    Coordinates follow VCF convention: ``pos`` is 1-based and, for indels, points to
    the anchor base shared by REF and ALT.

    Attributes
    ----------
    chrom:
        Contig name as present in the input.
    pos:
        1-based position of the first REF base.
    ref:
        Reference allele, uppercase.
    alt:
        Alternate allele, uppercase.
    """

    chrom: str
    pos: int
    ref: str
    alt: str

    def __post_init__(self) -> None:
        if not self.chrom:
            raise ValueError("VariantRecord requires a chromosome name")
        if self.pos < 1:
            raise ValueError(f"VariantRecord position must be >= 1, got {self.pos}")
        for allele in (self.ref, self.alt):
            if not allele or not set(allele) <= _VALID_BASES:
                raise ValueError(
                    f"Invalid allele {allele!r} at {self.chrom}:{self.pos}; expected A/C/G/T/N"
                )

    @property
    def is_snv(self) -> bool:
        return len(self.ref) == 1 and len(self.alt) == 1 and self.ref != self.alt

    @property
    def is_indel(self) -> bool:
        # Simple indels only: one allele is a single anchor base shared with the other.
        if len(self.ref) == len(self.alt):
            return False
        short, long_ = sorted((self.ref, self.alt), key=len)
        return len(short) == 1 and long_[0] == short

    @property
    def indel_type(self) -> str:
        return "del" if len(self.ref) > len(self.alt) else "ins"

    @property
    def indel_len(self) -> int:
        return abs(len(self.ref) - len(self.alt))

    @property
    def indel_seq(self) -> str:
        """Bases inserted or deleted, without the anchor base."""
        return self.ref[1:] if self.indel_type == "del" else self.alt[1:]


@dataclass(frozen=True)
class StructuralVariant:
    """A structural variant reduced to type and length.

    ``sv_len`` is ignored for TRA; translocations have no meaningful length.
    """

    sv_type: str
    sv_len: Optional[int] = None

    def __post_init__(self) -> None:
        sv_type = str(self.sv_type).upper()
        if sv_type not in SV_TYPES:
            raise UnsupportedSvTypeError(
                f"Unsupported SV type {self.sv_type!r}; expected one of {', '.join(SV_TYPES)}"
            )
        object.__setattr__(self, "sv_type", sv_type)
        if sv_type == "TRA":
            object.__setattr__(self, "sv_len", None)
        elif self.sv_len is not None:
            object.__setattr__(self, "sv_len", abs(int(self.sv_len)))


@dataclass(frozen=True)
class SampleVariants:
    """All somatic calls for one sample."""

    sample: str
    snvs: Tuple[VariantRecord, ...] = ()
    indels: Tuple[VariantRecord, ...] = ()
    svs: Tuple[StructuralVariant, ...] = ()


@dataclass(frozen=True)
class ContextVector:
    """Ordered mutation-context counts under a versioned feature schema."""

    names: Tuple[str, ...]
    counts: Tuple[int, ...]
    schema_version: str

    def __post_init__(self) -> None:
        if len(self.names) != len(self.counts):
            raise ValueError(
                f"ContextVector has {len(self.names)} names but {len(self.counts)} counts"
            )
        if any(c < 0 for c in self.counts):
            raise ValueError("ContextVector counts must be non-negative")

    @classmethod
    def from_counts(
        cls,
        counts: Mapping[str, int],
        *,
        names: Iterable[str],
        schema_version: str,
    ) -> "ContextVector":
        """Build a vector over ``names``; missing categories are zero, unknown ones rejected."""
        names = tuple(names)
        unknown = sorted(set(counts) - set(names))
        if unknown:
            raise SchemaMismatchError(
                f"Unknown context categories for schema {schema_version}: {unknown}"
            )
        return cls(
            names=names,
            counts=tuple(int(counts.get(n, 0)) for n in names),
            schema_version=schema_version,
        )

    def __len__(self) -> int:
        return len(self.names)

    def __getitem__(self, name: str) -> int:
        try:
            return self.counts[self.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def to_dict(self) -> Dict[str, int]:
        return dict(zip(self.names, self.counts))

    def as_array(self) -> np.ndarray:
        return np.asarray(self.counts, dtype=np.int64)

    def total(self, names: Iterable[str]) -> int:
        return sum(self[n] for n in names)


@dataclass(frozen=True)
class SampleFeatureRow:
    sample: str
    vector: ContextVector


@dataclass(frozen=True)
class VariantCounts:
    """Evidence amounts used by the decision rules."""

    n_snv: int
    n_indel: int
    n_indel_rep: int
    n_sv: int


@dataclass(frozen=True)
class BootstrapQuantiles:
    q5: float
    q50: float
    q95: float


@dataclass(frozen=True)
class PredictionResult:
    """Final per-sample prediction; built once by the decision rules."""

    sample: str
    p_hrd: float
    p_BRCA1: float
    p_BRCA2: float
    hr_status: str
    hrd_type: str
    remarks: Tuple[str, ...] = ()
    bootstrap: Optional[Mapping[str, BootstrapQuantiles]] = field(default=None, compare=False)

    def to_row(self) -> Dict[str, object]:
        row: Dict[str, object] = {
            "sample": self.sample,
            "p_hrd": self.p_hrd,
            "hr_status": self.hr_status,
            "hrd_type": self.hrd_type,
            "p_BRCA1": self.p_BRCA1,
            "p_BRCA2": self.p_BRCA2,
            "remarks": ";".join(self.remarks),
        }
        if self.bootstrap is not None:
            for cls_name, q in self.bootstrap.items():
                row[f"{cls_name}.q5"] = q.q5
                row[f"{cls_name}.q50"] = q.q50
                row[f"{cls_name}.q95"] = q.q95
        return row


PREDICTION_COLUMNS: List[str] = [
    "sample",
    "p_hrd",
    "hr_status",
    "hrd_type",
    "p_BRCA1",
    "p_BRCA2",
    "remarks",
]

BOOTSTRAP_TARGETS: Tuple[str, ...] = ("p_hrd", "p_BRCA1", "p_BRCA2")


def bootstrap_columns() -> List[str]:
    return [f"{t}.{q}" for t in BOOTSTRAP_TARGETS for q in ("q5", "q50", "q95")]
