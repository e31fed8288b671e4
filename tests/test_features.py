from pathlib import Path

import numpy as np
import pytest

from hrdclassify.contexts import FEATURE_NAMES, FAMILIES, SCHEMA_VERSION, empty_vector
from hrdclassify.errors import SchemaError, SchemaMismatchError
from hrdclassify.features import build_feature_matrix, read_feature_matrix, to_relative, write_feature_matrix
from hrdclassify.models import ContextVector, SampleFeatureRow


def _row(sample: str, counts: dict) -> SampleFeatureRow:
    return SampleFeatureRow(
        sample=sample,
        vector=ContextVector.from_counts(counts, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION),
    )


def test_missing_categories_are_zero():
    vec = ContextVector.from_counts({"TRA": 2}, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION)
    assert vec["TRA"] == 2
    assert sum(vec.counts) == 2
    assert vec == ContextVector.from_counts({"TRA": 2, "C>A": 0}, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION)


def test_unknown_category_rejected():
    with pytest.raises(SchemaMismatchError):
        ContextVector.from_counts({"del.mh": 1}, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION)


def test_negative_counts_rejected():
    with pytest.raises(ValueError):
        ContextVector.from_counts({"TRA": -1}, names=FEATURE_NAMES, schema_version=SCHEMA_VERSION)


def test_build_matrix_rejects_mixed_schemas():
    other = ContextVector(names=FEATURE_NAMES, counts=(0,) * len(FEATURE_NAMES), schema_version="hrdctx-0")
    with pytest.raises(SchemaMismatchError):
        build_feature_matrix([_row("a", {}), SampleFeatureRow(sample="b", vector=other)])


def test_build_matrix_rejects_duplicate_samples():
    with pytest.raises(ValueError):
        build_feature_matrix([_row("a", {}), _row("a", {"TRA": 1})])


def test_relative_per_family():
    m = build_feature_matrix([_row("a", {"C>A": 1, "C>T": 3, "del.rep": 2, "TRA": 5}), _row("b", {})])
    rel = to_relative(m)
    assert rel[0, FEATURE_NAMES.index("C>T")] == 0.75
    assert rel[0, FEATURE_NAMES.index("del.rep")] == 1.0
    assert rel[0, FEATURE_NAMES.index("TRA")] == 1.0
    for names in FAMILIES.values():
        idx = [FEATURE_NAMES.index(n) for n in names]
        assert rel[0, idx].sum() == pytest.approx(1.0)
    assert (rel[1] == 0).all()


def test_feature_table_roundtrip(tmp_path: Path):
    m = build_feature_matrix([_row("a", {"C>A": 4, "DUP_1e04_1e05_bp": 7}), _row("b", {})])
    path = tmp_path / "features.tsv"
    write_feature_matrix(path, m)

    header = path.read_text(encoding="utf-8").splitlines()[0].split("\t")
    assert header == ["sample", *FEATURE_NAMES]

    back = read_feature_matrix(path)
    assert back.samples == ("a", "b")
    assert np.array_equal(back.values, m.values)
    assert back.row(1).vector == empty_vector()


def test_feature_table_with_wrong_columns(tmp_path: Path):
    path = tmp_path / "features.tsv"
    names = list(FEATURE_NAMES)
    names[0], names[1] = names[1], names[0]
    path.write_text("sample\t" + "\t".join(names) + "\n", encoding="utf-8")
    with pytest.raises(SchemaMismatchError):
        read_feature_matrix(path)

    path.write_text("sample\t" + "\t".join(FEATURE_NAMES[:-1]) + "\n", encoding="utf-8")
    with pytest.raises(SchemaMismatchError, match="TRA"):
        read_feature_matrix(path)


def test_feature_table_with_short_row(tmp_path: Path):
    path = tmp_path / "features.tsv"
    path.write_text("sample\t" + "\t".join(FEATURE_NAMES) + "\na\t1\t2\n", encoding="utf-8")
    with pytest.raises(SchemaError):
        read_feature_matrix(path)
