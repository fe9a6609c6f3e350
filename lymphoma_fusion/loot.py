################################################################################
# Module: loot.py
# Description:
#   Leave-one-out testing (LOOT). Outer loop over subjects: each subject S is
#   held out, a LOOCV-tuned model is trained on the remaining subjects, S is
#   predicted, and the same model re-predicts its own training subjects
#   ("self-score", a memorization diagnostic). The best inner LOOCV kappa is
#   kept per fold.
#
# Known limitation (kept on purpose, flagged at run time):
#   the outer loop only guards the model fit. When the feature set itself was
#   chosen on the whole cohort (e.g. top-k univariate ranking), S already
#   influenced which features the inner LOOCV sees, so LOOT accuracy is
#   optimistic relative to a fully nested cross-validation.
################################################################################

import os
import time
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from shap import maskers, links
import shap

from . import config
from .data_join import feature_columns
from .errors import InputFormatError
from .loocv import LoocvTrainer
from .utils import fmt_secs, log

LEAKAGE_NOTE = (
    "LOOT reuses the cohort for feature choice and inner tuning; accuracy is "
    "optimistic relative to fully nested cross-validation."
)


# ----------------------------- SHAP helper -----------------------------
def _pick_shap_vector(shap_vals, n_features):
    """
    SHAP row of the single held-out subject. Tree explainers return one block
    per class, either as a list (older shap) or as a trailing class axis;
    the last class is kept. Linear and kernel explainers return (1, n_features).
    """
    if isinstance(shap_vals, list):
        shap_vals = shap_vals[-1]
    arr = np.asarray(shap_vals, dtype=float)
    if arr.ndim == 3:
        arr = arr[..., -1]
    if arr.shape != (1, n_features):
        raise ValueError(f"Unexpected SHAP shape {arr.shape} vs n_features={n_features}")
    return arr[0]


def compute_shap_fold(model, X_train: pd.DataFrame, X_test: pd.DataFrame) -> pd.DataFrame:
    """
    SHAP values of the held-out subject for a TrainedModel.
    Linear models use LinearExplainer on the preprocessed features, tree
    ensembles TreeExplainer; anything else falls back to KernelExplainer on
    predict_proba with the training fold as background.
    """
    prep = model.estimator.named_steps["prep"]
    clf = model.estimator.named_steps["clf"]
    if isinstance(prep, str):
        X_tr = X_train[model.features].to_numpy(dtype=float)
        X_te = X_test[model.features].to_numpy(dtype=float)
        names = list(model.features)
    else:
        X_tr = np.asarray(prep.transform(X_train[model.features]), dtype=float)
        X_te = np.asarray(prep.transform(X_test[model.features]), dtype=float)
        names = list(prep.get_feature_names_out())
    n_features = X_tr.shape[1]

    linear = hasattr(clf, "coef_") and getattr(clf, "kernel", "linear") == "linear"
    if linear:
        explainer = shap.LinearExplainer(clf, maskers.Independent(X_tr), link=links.identity)
        sv = explainer.shap_values(X_te)
        base = float(np.array(explainer.expected_value).ravel()[0])
    elif hasattr(clf, "estimators_"):
        explainer = shap.TreeExplainer(clf, data=X_tr)
        sv = explainer.shap_values(X_te)
        ev = np.array(explainer.expected_value, dtype=float).ravel()
        base = float(ev[-1])
    else:
        def f_prob(x):
            return clf.predict_proba(x)[:, -1]
        explainer = shap.KernelExplainer(f_prob, X_tr)
        sv = explainer.shap_values(X_te, nsamples="auto")
        base = float(np.array(explainer.expected_value).ravel()[0])

    vec = _pick_shap_vector(sv, n_features)
    # SHAP is expressed for classes_[-1]; flip sign so positive = towards POSITIVE_CLASS
    sign = 1.0 if list(clf.classes_)[-1] == config.POSITIVE_CLASS else -1.0
    return pd.DataFrame({
        "Feature": names,
        "SHAP": sign * vec,
        "base_value": sign * base,
    })


# ----------------------------- LOOT core -----------------------------
def run_loot(table: pd.DataFrame, label_col: str = config.LABEL_COL,
             preprocess=None, model_name: str = config.DEFAULT_MODEL,
             seed: int = config.SEED, groups: Optional[Dict[str, List[str]]] = None,
             param_grid=None, columns: Optional[List[str]] = None,
             trainer=None, shap_dir: Optional[str] = None,
             name: str = "experiment") -> pd.DataFrame:
    """
    One result row per subject:
      Sample, y_true, y_pred, y_prob, self_score, self_accuracy, n_train,
      best_params, val_kappa, val_accuracy.

    `trainer` may be any object with fit(features, labels, param_grid); the
    default is a LoocvTrainer built from model_name/preprocess/seed.
    """
    cols = columns if columns is not None else feature_columns(table, label_col)
    if trainer is None:
        trainer = LoocvTrainer(model_name=model_name, preprocess=preprocess,
                               groups=groups, seed=seed)
    X = table[cols]
    y = table[label_col].astype(str)

    np.random.seed(seed)
    rows = []
    t0 = time.time()
    for i, sample in enumerate(table.index):
        train_idx = table.index != sample
        X_tr, y_tr = X.loc[train_idx], y.loc[train_idx]
        X_te = X.loc[[sample]]

        model, _ = trainer.fit(X_tr, y_tr, param_grid)

        y_hat = model.predict(X_te)[0]
        y_pr = float(model.predict_proba(X_te)[0])
        self_pred = model.predict(X_tr)
        self_score = int((self_pred == y_tr.to_numpy()).sum())

        rows.append({
            "Sample": sample,
            "y_true": y.loc[sample],
            "y_pred": str(y_hat),
            "y_prob": y_pr,
            "self_score": self_score,
            "self_accuracy": self_score / len(y_tr),
            "n_train": len(y_tr),
            "best_params": model.params_label(),
            "val_kappa": model.best_kappa,
            "val_accuracy": model.best_accuracy,
        })

        if shap_dir is not None:
            try:
                sh = compute_shap_fold(model, X_tr, X_te)
                sh["Sample"] = sample
                out = os.path.join(shap_dir, name)
                os.makedirs(out, exist_ok=True)
                sh.to_csv(os.path.join(out, f"SHAP_{sample}.tsv"), sep="\t", index=False)
            except Exception as e:
                log(f"        [SHAP WARN] {name} (sample={sample}): {e}")

        if (i + 1) % 10 == 0 or i + 1 == len(table):
            log(f"     · {name}: {i + 1}/{len(table)} folds ({fmt_secs(time.time() - t0)})")

    return pd.DataFrame(rows)


def loot_accuracy(results: pd.DataFrame) -> float:
    """Fraction of held-out subjects predicted correctly."""
    if results.empty:
        return np.nan
    return float((results["y_pred"] == results["y_true"]).mean())


# ----------------------------- Multi-experiment runner -----------------------------
def _run_one(exp: Dict, tables: Dict[str, pd.DataFrame], seed: int, shap_dir):
    """Run LOOT for one experiment dict {name, features, preprocess, [model]}."""
    table = tables[exp["features"]]
    t0 = time.time()
    log(f"  => LOOT {exp['name']} ({table.shape[0]} subjects x {table.shape[1] - 1} features)")
    res = run_loot(
        table,
        preprocess=exp.get("preprocess"),
        model_name=exp.get("model", config.DEFAULT_MODEL),
        seed=exp.get("seed", seed),
        groups=exp.get("groups"),
        shap_dir=shap_dir,
        name=exp["name"],
    )
    log(f"     done in {fmt_secs(time.time() - t0)} | accuracy={loot_accuracy(res):.3f}")
    return exp["name"], res


def run_experiments(experiments: List[Dict], tables: Dict[str, pd.DataFrame],
                    seed: int = config.SEED, n_jobs: int = 1,
                    shap_dir: Optional[str] = None) -> Dict[str, pd.DataFrame]:
    """
    LOOT for every experiment configuration. Experiments are independent and
    each carries its own seed, so n_jobs > 1 gives the same rows as n_jobs=1.
    """
    missing = [e["features"] for e in experiments if e["features"] not in tables]
    if missing:
        raise InputFormatError(f"Feature tables not built: {missing}")
    log(f"[NOTE] {LEAKAGE_NOTE}")
    out = Parallel(n_jobs=n_jobs)(
        delayed(_run_one)(exp, tables, seed, shap_dir) for exp in experiments
    )
    return dict(out)
