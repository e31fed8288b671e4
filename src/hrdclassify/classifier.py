"""Ensemble classifier over mutation-context features.

The model is a pre-trained forest of decision trees shipped as a JSON artifact.
Nothing here trains or modifies a model; the artifact is the compatibility
contract (feature schema, class order, voting rule, input transform).
"""

from __future__ import annotations

import logging
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import numpy as np

from .contexts import FAMILIES
from .errors import ModelFormatError, SchemaMismatchError
from .features import FeatureMatrix, to_relative
from .models import BOOTSTRAP_TARGETS, BootstrapQuantiles
from .utils import read_json

logger = logging.getLogger(__name__)

MODEL_FORMAT = "hrdclassify-ensemble"
MODEL_FORMAT_VERSION = 1

CLASSES: Tuple[str, ...] = ("none", "BRCA1", "BRCA2")
VOTING_MODES = ("vote", "prob")
TRANSFORMS = ("relative", "counts")

HRD_THRESHOLD = 0.5
BOOTSTRAP_QUANTILES = (0.05, 0.5, 0.95)


@dataclass(frozen=True)
class DecisionTree:
    """Binary tree as parallel node arrays.

    Leaf nodes have ``feature == -1``. Internal nodes send a sample left when
    ``x[feature] <= threshold``. Children always have larger indices than their parent.
    """

    feature: np.ndarray
    threshold: np.ndarray
    left: np.ndarray
    right: np.ndarray
    value: np.ndarray  # (n_nodes, n_classes) class weights at each node

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], *, n_features: int, n_classes: int) -> "DecisionTree":
        try:
            feature = np.asarray(d["feature"], dtype=np.int64)
            threshold = np.asarray(d["threshold"], dtype=np.float64)
            left = np.asarray(d["left"], dtype=np.int64)
            right = np.asarray(d["right"], dtype=np.int64)
            value = np.asarray(d["value"], dtype=np.float64)
        except KeyError as e:
            raise ModelFormatError(f"Tree is missing field {e}") from None
        except (TypeError, ValueError) as e:
            raise ModelFormatError(f"Tree arrays are malformed: {e}") from None

        n = len(feature)
        if n == 0:
            raise ModelFormatError("Tree has no nodes")
        if not (len(threshold) == len(left) == len(right) == n):
            raise ModelFormatError("Tree node arrays have different lengths")
        if value.shape != (n, n_classes):
            raise ModelFormatError(f"Tree value array has shape {value.shape}, expected {(n, n_classes)}")
        if (value < 0).any():
            raise ModelFormatError("Tree class weights must be non-negative")

        internal = feature >= 0
        idx = np.arange(n)
        if (feature >= n_features).any() or (feature < -1).any():
            raise ModelFormatError("Tree refers to a feature index outside the schema")
        for child in (left, right):
            bad = internal & ((child <= idx) | (child >= n))
            if bad.any():
                raise ModelFormatError(f"Tree node {int(idx[bad][0])} has an invalid child index")
        if (value[~internal].sum(axis=1) <= 0).any():
            raise ModelFormatError("Tree leaf without class weights")

        return cls(feature=feature, threshold=threshold, left=left, right=right, value=value)

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Leaf index reached by each row of ``X``."""
        node = np.zeros(X.shape[0], dtype=np.int64)
        while True:
            feat = self.feature[node]
            rows = np.nonzero(feat >= 0)[0]
            if rows.size == 0:
                return node
            cur = node[rows]
            go_left = X[rows, feat[rows]] <= self.threshold[cur]
            node[rows] = np.where(go_left, self.left[cur], self.right[cur])

    def leaf_proba(self, X: np.ndarray) -> np.ndarray:
        leaf_values = self.value[self.apply(X)]
        return leaf_values / leaf_values.sum(axis=1, keepdims=True)


@dataclass(frozen=True)
class EnsembleModel:
    model_version: str
    schema_version: str
    features: Tuple[str, ...]
    classes: Tuple[str, ...]
    voting: str
    transform: str
    trees: Tuple[DecisionTree, ...]

    @property
    def n_trees(self) -> int:
        return len(self.trees)

    def check_schema(self, names: Sequence[str], schema_version: str) -> None:
        """Fail when features would not line up with what the model was trained on."""
        if schema_version != self.schema_version or tuple(names) != self.features:
            raise SchemaMismatchError(
                f"Feature schema {schema_version} ({len(names)} features) does not match model "
                f"{self.model_version}, which expects schema {self.schema_version} "
                f"({len(self.features)} features)"
            )

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Class probabilities, one row per sample, columns in ``self.classes`` order.

        'vote' mode returns the fraction of trees whose leaf majority is each class
        (ties go to the earlier class); 'prob' mode averages the leaf class frequencies.
        """
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2 or X.shape[1] != len(self.features):
            raise SchemaMismatchError(
                f"Model expects {len(self.features)} features per sample, got array of shape {X.shape}"
            )
        out = np.zeros((X.shape[0], len(self.classes)), dtype=np.float64)
        for tree in self.trees:
            p = tree.leaf_proba(X)
            if self.voting == "vote":
                out[np.arange(X.shape[0]), p.argmax(axis=1)] += 1.0
            else:
                out += p
        return out / float(self.n_trees)

    def prepare(self, matrix: FeatureMatrix) -> np.ndarray:
        self.check_schema(matrix.names, matrix.schema_version)
        if self.transform == "relative":
            return to_relative(matrix)
        return matrix.values.astype(np.float64)


def model_from_dict(data: Mapping[str, Any]) -> EnsembleModel:
    if not isinstance(data, Mapping):
        raise ModelFormatError("Model artifact must be a JSON object")
    if data.get("format") != MODEL_FORMAT:
        raise ModelFormatError(f"Not an {MODEL_FORMAT} artifact (format={data.get('format')!r})")
    if data.get("format_version") != MODEL_FORMAT_VERSION:
        raise ModelFormatError(
            f"Unsupported model format_version {data.get('format_version')!r}; "
            f"this version reads {MODEL_FORMAT_VERSION}"
        )

    missing = [k for k in ("schema_version", "features", "classes", "voting", "trees") if k not in data]
    if missing:
        raise ModelFormatError(f"Model artifact is missing fields: {missing}")

    classes = tuple(data["classes"])
    if classes != CLASSES:
        raise ModelFormatError(f"Model classes {list(classes)} differ from expected {list(CLASSES)}")
    voting = data["voting"]
    if voting not in VOTING_MODES:
        raise ModelFormatError(f"Unknown voting mode {voting!r}; expected one of {VOTING_MODES}")
    transform = data.get("transform", "relative")
    if transform not in TRANSFORMS:
        raise ModelFormatError(f"Unknown input transform {transform!r}; expected one of {TRANSFORMS}")

    features = tuple(str(f) for f in data["features"])
    trees = tuple(
        DecisionTree.from_dict(t, n_features=len(features), n_classes=len(classes))
        for t in data["trees"]
    )
    if not trees:
        raise ModelFormatError("Model artifact contains no trees")

    return EnsembleModel(
        model_version=str(data.get("model_version", "unknown")),
        schema_version=str(data["schema_version"]),
        features=features,
        classes=classes,
        voting=voting,
        transform=transform,
        trees=trees,
    )


def load_model(path: str | Path) -> EnsembleModel:
    try:
        data = read_json(path)
    except ValueError as e:
        raise ModelFormatError(f"Model artifact {path} is not valid JSON: {e}") from None
    model = model_from_dict(data)
    logger.info(
        "Loaded model %s (%d trees, voting=%s, schema %s)",
        model.model_version,
        model.n_trees,
        model.voting,
        model.schema_version,
    )
    return model


@dataclass(frozen=True)
class RawPrediction:
    """Classifier output before the evidence rules are applied."""

    sample: str
    p_hrd: float
    p_BRCA1: float
    p_BRCA2: float
    hr_status: str
    hrd_type: str


def call_hr_status(sample: str, p_brca1: float, p_brca2: float) -> RawPrediction:
    p_hrd = p_brca1 + p_brca2
    if p_hrd >= HRD_THRESHOLD:
        hr_status = "HRD"
        hrd_type = "BRCA1" if p_brca1 >= p_brca2 else "BRCA2"
    else:
        hr_status = "HR-proficient"
        hrd_type = "none"
    return RawPrediction(
        sample=sample,
        p_hrd=float(p_hrd),
        p_BRCA1=float(p_brca1),
        p_BRCA2=float(p_brca2),
        hr_status=hr_status,
        hrd_type=hrd_type,
    )


def classify(matrix: FeatureMatrix, model: EnsembleModel) -> List[RawPrediction]:
    """Run the ensemble over every sample of ``matrix``."""
    if len(matrix) == 0:
        return []
    proba = model.predict_proba(model.prepare(matrix))
    i1 = model.classes.index("BRCA1")
    i2 = model.classes.index("BRCA2")
    return [call_hr_status(s, proba[k, i1], proba[k, i2]) for k, s in enumerate(matrix.samples)]


def resample_counts(counts: np.ndarray, rng: np.random.Generator, names: Sequence[str]) -> np.ndarray:
    """Redraw each mutation family's variants with replacement, keeping family totals."""
    out = np.zeros_like(counts)
    for family_names in FAMILIES.values():
        idx = [names.index(n) for n in family_names]
        block = counts[idx]
        total = int(block.sum())
        if total > 0:
            out[idx] = rng.multinomial(total, block / total)
    return out


def _sample_seed(seed: int, sample: str) -> np.random.SeedSequence:
    # Seeded per sample name so results do not depend on sample order.
    return np.random.SeedSequence([int(seed), zlib.crc32(sample.encode("utf-8"))])


def bootstrap_quantiles(
    matrix: FeatureMatrix,
    model: EnsembleModel,
    *,
    iters: int = 20,
    seed: int = 0,
    n_jobs: int = 1,
) -> List[Dict[str, BootstrapQuantiles]]:
    """5/50/95% quantiles of p_hrd, p_BRCA1 and p_BRCA2 over bootstrap resamples.

    Costs ``iters`` classifier passes per sample.
    """
    if iters < 1:
        raise ValueError("iters must be >= 1")
    model.check_schema(matrix.names, matrix.schema_version)

    results: List[Dict[str, BootstrapQuantiles]] = []
    for i, sample in enumerate(matrix.samples):
        counts = matrix.values[i]
        children = _sample_seed(seed, sample).spawn(iters)

        def _one(ss: np.random.SeedSequence) -> np.ndarray:
            return resample_counts(counts, np.random.default_rng(ss), matrix.names)

        if n_jobs > 1:
            with ThreadPoolExecutor(max_workers=n_jobs) as pool:
                draws = list(pool.map(_one, children))
        else:
            draws = [_one(ss) for ss in children]

        resampled = FeatureMatrix(
            samples=tuple(f"{sample}#{k}" for k in range(iters)),
            names=matrix.names,
            values=np.vstack(draws),
            schema_version=matrix.schema_version,
        )
        preds = classify(resampled, model)
        per_target = {
            "p_hrd": [p.p_hrd for p in preds],
            "p_BRCA1": [p.p_BRCA1 for p in preds],
            "p_BRCA2": [p.p_BRCA2 for p in preds],
        }
        qs: Dict[str, BootstrapQuantiles] = {}
        for target in BOOTSTRAP_TARGETS:
            vals = np.sort(np.asarray(per_target[target], dtype=np.float64))
            q5, q50, q95 = np.quantile(vals, BOOTSTRAP_QUANTILES)
            qs[target] = BootstrapQuantiles(q5=float(q5), q50=float(q50), q95=float(q95))
        results.append(qs)
        logger.debug("Bootstrapped %s over %d resamples", sample, iters)
    return results
