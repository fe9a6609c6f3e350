################################################################################
# Module: ranking.py
# Description:
#   Univariate discriminative power of every numeric feature against the
#   binary outcome: AUROC / AUPRC (Resistant = positive class) taken in the
#   better of the two directions, ranked in descending order, plus
#   Mann-Whitney U tests with Benjamini-Hochberg FDR.
################################################################################

from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from scipy.stats import mannwhitneyu
from sklearn.metrics import average_precision_score, roc_auc_score
from statsmodels.stats.multitest import multipletests

from . import config
from .data_join import feature_columns

METRICS = {
    "auroc": roc_auc_score,
    "auprc": average_precision_score,
}


def _binary_target(labels: pd.Series, positive: str) -> np.ndarray:
    return (labels.astype(str).values == positive).astype(int)


def _raw_and_flipped(values, y: np.ndarray, metric: str):
    """Metric of the feature as is and with its sign flipped; NaNs when undefined."""
    x = np.asarray(values, dtype=float)
    ok = np.isfinite(x)
    x, y = x[ok], y[ok]
    if x.size == 0 or y.min() == y.max() or np.ptp(x) == 0:
        return np.nan, np.nan
    return float(METRICS[metric](y, x)), float(METRICS[metric](y, -x))


def feature_score(values, y: np.ndarray, metric: str = "auroc") -> float:
    """
    Discriminative power of one feature: the better of the raw AUROC/AUPRC and
    the AUROC/AUPRC of the negated feature, so a feature running lower in the
    positive class scores as high as one running higher. NaN for a constant
    feature or when either class has no finite value.
    """
    raw, flipped = _raw_and_flipped(values, y, metric)
    if np.isnan(raw):
        return np.nan
    return max(raw, flipped)


def rank_features(table: pd.DataFrame, metric: str = "auroc",
                  label_col: str = config.LABEL_COL,
                  positive: str = config.POSITIVE_CLASS,
                  columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Score every numeric feature and return (feature, score, raw, direction)
    sorted by score, descending. `raw` is the metric of the feature as is;
    `direction` tells whether it runs higher or lower in the positive class.
    Ties keep the original column order; NaN scores go last.
    """
    if metric not in METRICS:
        raise ValueError(f"metric must be one of {list(METRICS)}, got {metric!r}")
    cols = columns if columns is not None else feature_columns(table, label_col)
    y = _binary_target(table[label_col], positive)
    pairs = [_raw_and_flipped(table[c].values, y, metric) for c in cols]
    raw = np.array([p[0] for p in pairs], dtype=float)
    flipped = np.array([p[1] for p in pairs], dtype=float)
    direction = np.where(np.isnan(raw), "",
                         np.where(raw >= flipped, f"higher_in_{positive}", f"lower_in_{positive}"))
    out = pd.DataFrame({"feature": cols, "score": np.fmax(raw, flipped), "raw": raw,
                        "direction": direction, "order": np.arange(len(cols))})
    out = out.sort_values(["score", "order"], ascending=[False, True],
                          na_position="last", kind="mergesort")
    return out.drop(columns="order").reset_index(drop=True)


def top_features(ranked: pd.DataFrame, k: int) -> List[str]:
    """First k features with a defined score."""
    return ranked.dropna(subset=["score"])["feature"].head(k).tolist()


def top_features_by_group(ranked: pd.DataFrame, k: int,
                          groups: Dict[str, List[str]]) -> List[str]:
    """
    First k scored features of every column group (e.g. BDI, RNA), so a
    fused table keeps both modalities. Order follows the ranking.
    """
    keep = set()
    for cols in groups.values():
        sub = ranked[ranked["feature"].isin(set(cols))]
        keep.update(top_features(sub, k))
    return [f for f in ranked["feature"] if f in keep]


def univariate_tests(table: pd.DataFrame, label_col: str = config.LABEL_COL,
                     positive: str = config.POSITIVE_CLASS,
                     columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Per-feature raw AUROC, AUPRC (feature as is), class medians, two-sided Mann-Whitney U p-value and
    BH q-value. Constant features get NaN statistics and are excluded from FDR.
    """
    cols = columns if columns is not None else feature_columns(table, label_col)
    y = _binary_target(table[label_col], positive)
    rows = []
    for c in cols:
        x = table[c].astype(float).values
        pos, neg = x[y == 1], x[y == 0]
        if np.ptp(x) == 0 or pos.size == 0 or neg.size == 0:
            u, p = np.nan, np.nan
        else:
            u, p = mannwhitneyu(pos, neg, alternative="two-sided")
        rows.append({
            "feature": c,
            "auroc": _raw_and_flipped(x, y, "auroc")[0],
            "auprc": _raw_and_flipped(x, y, "auprc")[0],
            f"median_{positive}": float(np.median(pos)) if pos.size else np.nan,
            "median_other": float(np.median(neg)) if neg.size else np.nan,
            "U": float(u),
            "pval": float(p),
        })
    df = pd.DataFrame(rows, columns=["feature", "auroc", "auprc", f"median_{positive}",
                                     "median_other", "U", "pval"])
    df["qval"] = np.nan
    ok = df["pval"].notna()
    if ok.any():
        _, q, _, _ = multipletests(df.loc[ok, "pval"].values, method="fdr_bh")
        df.loc[ok, "qval"] = q
    return df.sort_values(["pval", "feature"], na_position="last", kind="mergesort").reset_index(drop=True)
