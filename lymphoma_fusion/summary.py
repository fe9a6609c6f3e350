# ----------------------------- Summary / report builder -----------------------------
# Pure aggregation of LOOT result tables: confusion matrix and derived metrics
# per configuration, plus one comparison table sorted by accuracy.

from typing import Dict

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score, balanced_accuracy_score, confusion_matrix, f1_score,
    precision_score, recall_score, roc_auc_score
)
from statsmodels.stats.proportion import proportion_confint

from . import config
from .loocv import safe_kappa


def wilson_ci(successes: int, total: int, alpha: float = 0.05):
    """Wilson score interval for a binomial proportion (accuracy, sensitivity, etc.)."""
    if total == 0:
        return (np.nan, np.nan)
    low, high = proportion_confint(successes, total, alpha=alpha, method="wilson")
    return float(low), float(high)


def loot_confusion(results: pd.DataFrame, labels=None) -> pd.DataFrame:
    """2x2 confusion matrix, rows = true, columns = predicted, positive class first."""
    labels = labels or config.CLASSES
    cm = confusion_matrix(results["y_true"], results["y_pred"], labels=labels)
    return pd.DataFrame(cm,
                        index=pd.Index([f"true_{c}" for c in labels], name="truth"),
                        columns=[f"pred_{c}" for c in labels])


def summarize_loot(results: pd.DataFrame, positive: str = config.POSITIVE_CLASS,
                   negative: str = config.NEGATIVE_CLASS) -> Dict:
    """Metrics of one LOOT table (one row per held-out subject)."""
    y_true = results["y_true"].astype(str).to_numpy()
    y_pred = results["y_pred"].astype(str).to_numpy()
    cm = confusion_matrix(y_true, y_pred, labels=[positive, negative])
    tp, fn, fp, tn = cm.ravel()

    n = len(y_true)
    n_correct = int(tp + tn)
    acc_ci = wilson_ci(n_correct, n)
    y_bin = (y_true == positive).astype(int)
    if "y_prob" in results and y_bin.min() != y_bin.max() and results["y_prob"].notna().all():
        auc = float(roc_auc_score(y_bin, results["y_prob"].to_numpy(dtype=float)))
    else:
        auc = np.nan

    return {
        "n": n,
        "TP": int(tp), "FN": int(fn), "FP": int(fp), "TN": int(tn),
        "Accuracy": accuracy_score(y_true, y_pred) if n else np.nan,
        "Acc_CI_low": acc_ci[0],
        "Acc_CI_high": acc_ci[1],
        "BalancedAcc": balanced_accuracy_score(y_true, y_pred) if n else np.nan,
        "Precision": precision_score(y_true, y_pred, pos_label=positive, zero_division=0),
        "Recall": recall_score(y_true, y_pred, pos_label=positive, zero_division=0),
        "Specificity": tn / (tn + fp) if (tn + fp) > 0 else np.nan,
        "F1": f1_score(y_true, y_pred, pos_label=positive, zero_division=0),
        "Kappa": safe_kappa(y_true, y_pred),
        "ROC_AUC": auc,
        "mean_val_kappa": float(results["val_kappa"].mean()),
        "mean_self_accuracy": float(results["self_accuracy"].mean()),
    }


def compare_configurations(loot_tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """One summary row per configuration, sorted by accuracy (descending, stable)."""
    rows = []
    for name, res in loot_tables.items():
        row = {"Experiment": name}
        row.update(summarize_loot(res))
        rows.append(row)
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values("Accuracy", ascending=False, kind="mergesort").reset_index(drop=True)
