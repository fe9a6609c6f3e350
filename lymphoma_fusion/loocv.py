################################################################################
# Module: loocv.py
# Description:
#   LOOCV-tuned trainer. For every point of the hyperparameter grid the model
#   is fit on all-but-one subject and scored on the held-out one; held-out
#   predictions are pooled into accuracy and Cohen's kappa per grid point. The
#   grid point with the best kappa is refit on the whole input.
#
#   The trainer is pluggable: anything exposing
#       fit(features, labels, param_grid) -> (TrainedModel, results_table)
#   can replace LoocvTrainer inside the LOOT loop.
################################################################################

import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.base import clone
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import accuracy_score, cohen_kappa_score
from sklearn.model_selection import LeaveOneOut, ParameterGrid, cross_val_predict
from sklearn.pipeline import Pipeline

from . import config
from .data_join import feature_columns
from .errors import FittingFailure, InsufficientDataError
from .models import get_factory
from .preprocess import PreprocessSpec, make_transformer
from .utils import log


@dataclass
class TrainedModel:
    """Final refit plus the LOOCV grid results it was selected from."""
    estimator: Pipeline
    results: pd.DataFrame
    best_params: Dict
    best_kappa: float
    best_accuracy: float
    features: List[str]
    classes: List[str] = field(default_factory=list)

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        return self.estimator.predict(X[self.features])

    def predict_proba(self, X: pd.DataFrame, positive: str = config.POSITIVE_CLASS) -> np.ndarray:
        """Probability of `positive`; NaN if the estimator has no probabilities."""
        clf = self.estimator
        if not hasattr(clf, "predict_proba"):
            return np.full(len(X), np.nan)
        proba = clf.predict_proba(X[self.features])
        classes = list(clf.classes_)
        if positive not in classes:
            return np.zeros(len(X))
        return proba[:, classes.index(positive)]

    def params_label(self) -> str:
        return ";".join(f"{k.replace('clf__', '')}={v}" for k, v in sorted(self.best_params.items()))


def check_trainable(labels: pd.Series):
    """Both classes present and each with >= 2 subjects, so no LOOCV fold loses a class."""
    counts = pd.Series(labels).value_counts()
    if len(counts) < 2:
        raise InsufficientDataError(
            f"Only one class present in training labels ({counts.to_dict()})."
        )
    if counts.min() < 2:
        raise InsufficientDataError(
            f"Class '{counts.idxmin()}' has a single subject; removing it in a "
            f"leave-one-out fold leaves one class ({counts.to_dict()})."
        )


def safe_kappa(y_true, y_pred) -> float:
    """Cohen's kappa; NaN when undefined (chance agreement == 1)."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        with np.errstate(divide="ignore", invalid="ignore"):
            k = cohen_kappa_score(y_true, y_pred)
    return float(k) if np.isfinite(k) else np.nan


def select_best(results: pd.DataFrame) -> int:
    """Row with the best kappa (first on ties); falls back to accuracy if every kappa is NaN."""
    kappa = results["Kappa"].to_numpy(dtype=float)
    if np.all(np.isnan(kappa)):
        return int(np.argmax(results["Accuracy"].to_numpy(dtype=float)))
    return int(np.argmax(np.where(np.isnan(kappa), -np.inf, kappa)))


class LoocvTrainer:
    """
    Grid search scored by pooled leave-one-out predictions.

    model_name selects a factory from models.MODEL_FACTORIES; preprocess is a
    PreprocessSpec (or its dict form) fit inside every fold; groups maps
    column-group names used in `preprocess` to column lists.
    """

    def __init__(self, model_name: str = config.DEFAULT_MODEL, preprocess=None,
                 groups: Optional[Dict[str, List[str]]] = None,
                 seed: int = config.SEED, strict_convergence: bool = False):
        self.model_name = model_name
        self.preprocess = PreprocessSpec.from_config(preprocess)
        self.groups = groups
        self.seed = seed
        self.strict_convergence = strict_convergence
        self._factory = get_factory(model_name)

    def build(self, columns):
        """Unfitted pipeline and default grid for these feature columns."""
        prep = make_transformer(self.preprocess, list(columns), self.groups)
        return self._factory(prep=prep, seed=self.seed)

    def fit(self, features: pd.DataFrame, labels: pd.Series, param_grid=None):
        """Return (TrainedModel, results_table)."""
        labels = pd.Series(labels, index=features.index)
        check_trainable(labels)
        columns = list(features.columns)
        pipe, default_grid = self.build(columns)
        grid = param_grid if param_grid is not None else default_grid

        X = features
        y = labels.astype(str).to_numpy()
        loo = LeaveOneOut()
        rows = []
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            for params in ParameterGrid(grid):
                est = clone(pipe).set_params(**params)
                try:
                    preds = cross_val_predict(est, X, y, cv=loo, n_jobs=1)
                except (ValueError, np.linalg.LinAlgError) as e:
                    raise FittingFailure(f"{self.model_name} {params}: {e}") from e
                row = {k.replace("clf__", ""): v for k, v in params.items()}
                row.update({
                    "Accuracy": accuracy_score(y, preds),
                    "Kappa": safe_kappa(y, preds),
                    "n_correct": int((preds == y).sum()),
                    "n": len(y),
                })
                rows.append((params, row))

            results = pd.DataFrame([r for _, r in rows])
            best_i = select_best(results)
            best_params = rows[best_i][0]
            final = clone(pipe).set_params(**best_params)
            try:
                final.fit(X, y)
            except (ValueError, np.linalg.LinAlgError) as e:
                raise FittingFailure(f"{self.model_name} final refit {best_params}: {e}") from e

        n_conv = sum(issubclass(w.category, ConvergenceWarning) for w in caught)
        if n_conv:
            msg = f"{self.model_name}: {n_conv} fit(s) did not converge"
            if self.strict_convergence:
                raise FittingFailure(msg)
            log(f"[WARN] {msg}")

        results["selected"] = False
        results.loc[best_i, "selected"] = True
        model = TrainedModel(
            estimator=final,
            results=results,
            best_params=dict(best_params),
            best_kappa=float(results.loc[best_i, "Kappa"]),
            best_accuracy=float(results.loc[best_i, "Accuracy"]),
            features=columns,
            classes=list(final.classes_),
        )
        return model, results


def train_loocv(table: pd.DataFrame, label_col: str = config.LABEL_COL,
                preprocess=None, model_name: str = config.DEFAULT_MODEL,
                seed: int = config.SEED, groups=None, param_grid=None,
                columns: Optional[List[str]] = None) -> TrainedModel:
    """Convenience wrapper: LOOCV-tune on a feature table with a label column."""
    cols = columns if columns is not None else feature_columns(table, label_col)
    trainer = LoocvTrainer(model_name=model_name, preprocess=preprocess,
                           groups=groups, seed=seed)
    model, _ = trainer.fit(table[cols], table[label_col], param_grid)
    return model
