import json
from pathlib import Path

import numpy as np
import pytest

from hrdclassify.classifier import (
    bootstrap_quantiles,
    classify,
    load_model,
    model_from_dict,
    resample_counts,
)
from hrdclassify.contexts import FEATURE_NAMES, SCHEMA_VERSION, SNV_CONTEXTS
from hrdclassify.errors import ModelFormatError, SchemaMismatchError
from hrdclassify.features import FeatureMatrix
from hrdclassify.toy_data import make_demo_model


def _leaf(weights):
    return {"feature": [-1], "threshold": [0.0], "left": [-1], "right": [-1], "value": [weights]}


def _model(trees, **overrides):
    d = make_demo_model()
    d["trees"] = trees
    d.update(overrides)
    return d


def _matrix(rows: dict) -> FeatureMatrix:
    values = np.zeros((len(rows), len(FEATURE_NAMES)), dtype=np.int64)
    for i, counts in enumerate(rows.values()):
        for name, n in counts.items():
            values[i, FEATURE_NAMES.index(name)] = n
    return FeatureMatrix(
        samples=tuple(rows), names=FEATURE_NAMES, values=values, schema_version=SCHEMA_VERSION
    )


HRD_LIKE = {"del.mh.bimh.2.5": 60, "ins.none": 30, "DUP_1e04_1e05_bp": 40, "DEL_1e03_1e04_bp": 10, "C>T": 20}
PROFICIENT_LIKE = {"ins.none": 80, "DEL_1e04_1e05_bp": 35, "DUP_1e03_1e04_bp": 1, "C>A": 40}


def test_load_demo_model(tmp_path: Path):
    path = tmp_path / "model.json"
    path.write_text(json.dumps(make_demo_model()), encoding="utf-8")
    model = load_model(path)
    assert model.n_trees == 7
    assert model.features == FEATURE_NAMES
    assert model.classes == ("none", "BRCA1", "BRCA2")


def test_invalid_json_is_model_format_error(tmp_path: Path):
    path = tmp_path / "model.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ModelFormatError):
        load_model(path)


def test_vote_and_prob_aggregation_differ():
    trees = [_leaf([0.0, 3.0, 1.0]), _leaf([1.0, 0.0, 3.0])]
    m = _matrix({"s": HRD_LIKE})

    vote = model_from_dict(_model(trees, voting="vote")).predict_proba(m.values.astype(float))
    assert vote[0].tolist() == [0.0, 0.5, 0.5]

    prob = model_from_dict(_model(trees, voting="prob")).predict_proba(m.values.astype(float))
    assert np.allclose(prob[0], [0.125, 0.375, 0.5])


def test_tree_traversal_on_counts():
    tra = FEATURE_NAMES.index("TRA")
    tree = {
        "feature": [tra, -1, -1],
        "threshold": [2.5, 0.0, 0.0],
        "left": [1, -1, -1],
        "right": [2, -1, -1],
        "value": [[1.0, 1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]],
    }
    model = model_from_dict(_model([tree], transform="counts"))
    preds = classify(_matrix({"few": {"TRA": 2}, "many": {"TRA": 3}}), model)
    assert [p.hr_status for p in preds] == ["HR-proficient", "HRD"]
    assert preds[1].p_BRCA1 == 1.0


def test_demo_model_separates_toy_profiles():
    model = model_from_dict(make_demo_model())
    hrd, prof = classify(_matrix({"hrd": HRD_LIKE, "prof": PROFICIENT_LIKE}), model)
    assert hrd.hr_status == "HRD"
    assert hrd.hrd_type == "BRCA1"
    assert prof.hr_status == "HR-proficient"
    assert abs(hrd.p_hrd - (hrd.p_BRCA1 + hrd.p_BRCA2)) < 1e-12


def test_schema_mismatch_fails_fast():
    reordered = _model(make_demo_model()["trees"], features=list(reversed(FEATURE_NAMES)))
    with pytest.raises(SchemaMismatchError):
        classify(_matrix({"s": HRD_LIKE}), model_from_dict(reordered))

    other_version = _model(make_demo_model()["trees"], schema_version="hrdctx-0")
    with pytest.raises(SchemaMismatchError):
        classify(_matrix({"s": HRD_LIKE}), model_from_dict(other_version))

    with pytest.raises(SchemaMismatchError):
        model_from_dict(make_demo_model()).predict_proba(np.zeros((1, 5)))


@pytest.mark.parametrize(
    "change",
    [
        {"trees": []},
        {"classes": ["BRCA1", "BRCA2", "none"]},
        {"voting": "majority"},
        {"format": "something-else"},
        {"format_version": 99},
    ],
)
def test_malformed_model_rejected(change):
    d = make_demo_model()
    d.update(change)
    with pytest.raises(ModelFormatError):
        model_from_dict(d)


def test_cyclic_tree_rejected():
    tree = {
        "feature": [0, 0, -1],
        "threshold": [0.5, 0.5, 0.0],
        "left": [1, 0, -1],
        "right": [2, 2, -1],
        "value": [[1.0, 0.0, 0.0]] * 3,
    }
    with pytest.raises(ModelFormatError):
        model_from_dict(_model([tree]))


def test_resample_keeps_family_totals():
    m = _matrix({"s": HRD_LIKE})
    rng = np.random.default_rng(1)
    draw = resample_counts(m.values[0], rng, m.names)
    assert draw.sum() == m.values[0].sum()
    snv_idx = [FEATURE_NAMES.index(n) for n in SNV_CONTEXTS]
    assert draw[snv_idx].sum() == 20
    # Categories never observed cannot be drawn.
    assert (draw[m.values[0] == 0] == 0).all()


def test_bootstrap_quantiles_are_ordered_and_reproducible():
    model = model_from_dict(make_demo_model(voting="prob"))
    m = _matrix({"hrd": HRD_LIKE, "prof": PROFICIENT_LIKE, "empty": {}})

    first = bootstrap_quantiles(m, model, iters=20, seed=3)
    again = bootstrap_quantiles(m, model, iters=20, seed=3, n_jobs=4)
    assert first == again

    for per_sample in first:
        assert set(per_sample) == {"p_hrd", "p_BRCA1", "p_BRCA2"}
        for q in per_sample.values():
            assert 0.0 <= q.q5 <= q.q50 <= q.q95 <= 1.0
