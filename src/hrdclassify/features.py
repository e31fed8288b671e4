from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np

from .contexts import FAMILIES, FEATURE_NAMES, SCHEMA_VERSION
from .errors import SchemaError, SchemaMismatchError
from .models import ContextVector, SampleFeatureRow
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureMatrix:
    """Samples x features count matrix with a fixed column schema."""

    samples: Tuple[str, ...]
    names: Tuple[str, ...]
    values: np.ndarray
    schema_version: str

    def __post_init__(self) -> None:
        if self.values.shape != (len(self.samples), len(self.names)):
            raise ValueError(
                f"Feature matrix shape {self.values.shape} does not match "
                f"{len(self.samples)} samples x {len(self.names)} features"
            )

    def __len__(self) -> int:
        return len(self.samples)

    def row(self, i: int) -> SampleFeatureRow:
        return SampleFeatureRow(
            sample=self.samples[i],
            vector=ContextVector(
                names=self.names,
                counts=tuple(int(v) for v in self.values[i]),
                schema_version=self.schema_version,
            ),
        )

    def rows(self) -> List[SampleFeatureRow]:
        return [self.row(i) for i in range(len(self))]


def build_feature_matrix(rows: Sequence[SampleFeatureRow]) -> FeatureMatrix:
    """Stack per-sample vectors; all rows must share one schema."""
    if not rows:
        return FeatureMatrix(
            samples=(),
            names=FEATURE_NAMES,
            values=np.zeros((0, len(FEATURE_NAMES)), dtype=np.int64),
            schema_version=SCHEMA_VERSION,
        )

    first = rows[0].vector
    for r in rows:
        if r.vector.names != first.names or r.vector.schema_version != first.schema_version:
            raise SchemaMismatchError(
                f"Sample '{r.sample}' uses schema {r.vector.schema_version}, "
                f"expected {first.schema_version} with {len(first.names)} features"
            )

    samples = tuple(r.sample for r in rows)
    dupes = sorted({s for s in samples if samples.count(s) > 1})
    if dupes:
        raise ValueError(f"Duplicate sample names in feature matrix: {dupes}")

    values = np.vstack([r.vector.as_array() for r in rows])
    return FeatureMatrix(
        samples=samples, names=first.names, values=values, schema_version=first.schema_version
    )


def to_relative(matrix: FeatureMatrix) -> np.ndarray:
    """Divide each count by its mutation family total (SNV, indel, SV).

    Families with no variants stay all-zero.
    """
    out = np.zeros(matrix.values.shape, dtype=np.float64)
    for family_names in FAMILIES.values():
        idx = [matrix.names.index(n) for n in family_names]
        block = matrix.values[:, idx].astype(np.float64)
        totals = block.sum(axis=1, keepdims=True)
        out[:, idx] = np.divide(block, totals, out=np.zeros_like(block), where=totals > 0)
    return out


def write_feature_matrix(path: str | Path, matrix: FeatureMatrix) -> None:
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(["sample", *matrix.names]) + "\n")
        for sample, vals in zip(matrix.samples, matrix.values):
            fh.write(sample + "\t" + "\t".join(str(int(v)) for v in vals) + "\n")


def read_feature_matrix(path: str | Path) -> FeatureMatrix:
    """Read a feature TSV written by :func:`write_feature_matrix`.

    The header must carry the current schema's features in order.
    """
    with open_textmaybe_gzip(path, "rt") as fh:
        reader = csv.reader(fh, delimiter="\t")
        try:
            header = next(reader)
        except StopIteration:
            raise SchemaError(f"Feature table {path} is empty") from None

        names = tuple(header[1:])
        if names != FEATURE_NAMES:
            missing = [n for n in FEATURE_NAMES if n not in names]
            extra = [n for n in names if n not in FEATURE_NAMES]
            raise SchemaMismatchError(
                f"Feature table {path} does not match schema {SCHEMA_VERSION} "
                f"(missing={missing}, unexpected={extra}, order differs={not missing and not extra})"
            )

        samples: List[str] = []
        rows: List[List[int]] = []
        for lineno, fields in enumerate(reader, start=2):
            if not fields:
                continue
            if len(fields) != len(header):
                raise SchemaError(
                    f"{path}:{lineno}: expected {len(header)} columns, found {len(fields)}"
                )
            try:
                rows.append([int(v) for v in fields[1:]])
            except ValueError as e:
                raise SchemaError(f"{path}:{lineno}: non-integer count ({e})") from None
            samples.append(fields[0])

    values = np.asarray(rows, dtype=np.int64).reshape(len(rows), len(FEATURE_NAMES))
    if (values < 0).any():
        raise SchemaError(f"Feature table {path} contains negative counts")
    logger.info("Read %d samples from %s", len(samples), path)
    return FeatureMatrix(
        samples=tuple(samples), names=FEATURE_NAMES, values=values, schema_version=SCHEMA_VERSION
    )
