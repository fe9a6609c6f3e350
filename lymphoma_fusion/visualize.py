################################################################################
# Module: visualize.py
# Description:
#   Presentational helpers: BDI x gene correlation matrices ordered by
#   hierarchical-clustering leaf order and rendered as heatmaps, and PCA of a
#   feature table (optionally centred/scaled per column) rendered as 2-D
#   biplots and a 3-D point cloud coloured by outcome.
#
# Outputs (under <out>/figures/):
#   - corr_<variant>_<method>.pdf
#   - pca_<table>_PC<i>_PC<j>.pdf
#   - pca_<table>_3d.pdf
################################################################################

import os
from itertools import combinations
from typing import Dict, List, Optional, Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401  (registers the 3d projection)
import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import leaves_list, linkage
from sklearn.decomposition import PCA

from . import config
from .errors import InputFormatError
from .preprocess import PreprocessSpec, make_transformer, transformed_frame
from .utils import ensure_dir, log

CLASS_COLORS = {config.POSITIVE_CLASS: "#c0392b", config.NEGATIVE_CLASS: "#2471a3"}
CLASS_MARKERS = {config.POSITIVE_CLASS: "^", config.NEGATIVE_CLASS: "o"}


# =============================================================================
# Correlation
# =============================================================================
def correlation_matrix(df: pd.DataFrame, cols: Sequence[str], method: str = "pearson") -> pd.DataFrame:
    """Square correlation matrix of `cols` (pearson, spearman or kendall)."""
    if method not in config.CORR_METHODS:
        raise InputFormatError(f"Unknown correlation method '{method}'; choose from {config.CORR_METHODS}")
    return df[list(cols)].astype(float).corr(method=method)


def cross_modality_correlation(df: pd.DataFrame, bdi_cols: Sequence[str],
                               gene_cols: Sequence[str], method: str = "pearson") -> pd.DataFrame:
    """
    BDI (rows) x gene (columns) correlations. Only cross-modality pairs are
    computed; gene x gene pairs never are.
    """
    if method not in config.CORR_METHODS:
        raise InputFormatError(f"Unknown correlation method '{method}'; choose from {config.CORR_METHODS}")
    bdi_cols, gene_cols = list(bdi_cols), list(gene_cols)
    genes = df[gene_cols].astype(float)
    block = pd.DataFrame({b: genes.corrwith(df[b].astype(float), method=method) for b in bdi_cols}).T
    return block.loc[bdi_cols, gene_cols]


def _leaf_order(values: np.ndarray, method: str) -> np.ndarray:
    if values.shape[0] < 2:
        return np.arange(values.shape[0])
    return leaves_list(linkage(values, method=method, metric="euclidean"))


def cluster_order(matrix: pd.DataFrame, method: str = "average") -> pd.DataFrame:
    """
    Reorder rows and columns by the leaf order of an agglomerative clustering
    of the rows (resp. columns). Undefined correlations count as 0 for the
    clustering only; the returned values are untouched.
    """
    values = matrix.to_numpy(dtype=float)
    values = np.where(np.isfinite(values), values, 0.0)
    rows = _leaf_order(values, method)
    cols = _leaf_order(values.T, method)
    return matrix.iloc[rows, cols]


def plot_correlation_heatmap(corr: pd.DataFrame, out_path: str, title: str = "",
                             row_label: str = "BDI", col_label: str = "Gene"):
    """Diverging heatmap in [-1, 1]; labels are drawn when the matrix is small enough to read."""
    n_rows, n_cols = corr.shape
    width = min(max(4.0, 0.3 * n_cols + 2.5), 40.0)
    height = min(max(3.0, 0.3 * n_rows + 2.0), 40.0)

    plt.figure(figsize=(width, height), dpi=300)
    im = plt.imshow(corr.to_numpy(dtype=float), cmap="RdBu_r", vmin=-1, vmax=1,
                    aspect="auto", interpolation="nearest")
    cbar = plt.colorbar(im, fraction=0.046, pad=0.04)
    cbar.set_label("correlation", fontsize=12)

    if n_cols <= 120:
        plt.xticks(range(n_cols), corr.columns, rotation=90, fontsize=6)
    else:
        plt.xticks([])
    if n_rows <= 120:
        plt.yticks(range(n_rows), corr.index, fontsize=8)
    else:
        plt.yticks([])
    plt.xlabel(col_label, fontsize=12, labelpad=8)
    plt.ylabel(row_label, fontsize=12, labelpad=8)
    plt.title(title, fontsize=14, pad=10)

    plt.tight_layout()
    ensure_dir(os.path.dirname(out_path) or ".")
    plt.savefig(out_path, bbox_inches="tight")
    plt.close()
    return out_path


def correlation_panels(table: pd.DataFrame, bdi_cols: Sequence[str], gene_cols: Sequence[str],
                       name: str, out_dir: str, methods: Optional[List[str]] = None,
                       gene_names: Optional[Dict[str, str]] = None) -> List[str]:
    """One clustered BDI x gene heatmap per correlation method."""
    if not bdi_cols or not gene_cols:
        log(f"[WARN] correlation '{name}': no BDI/gene pair, skipped")
        return []
    written = []
    for method in methods or config.CORR_METHODS:
        corr = cluster_order(cross_modality_correlation(table, bdi_cols, gene_cols, method))
        if gene_names:
            corr = corr.rename(columns=lambda g: gene_names.get(g, g))
        out = os.path.join(out_dir, f"corr_{name}_{method}.{config.FIG_EXT}")
        written.append(plot_correlation_heatmap(corr, out, title=f"{name} ({method})"))
    log(f"[OK] {len(written)} correlation heatmap(s) for {name}")
    return written


# =============================================================================
# PCA
# =============================================================================
def run_pca(table: pd.DataFrame, cols: Sequence[str], preprocess=None,
            groups: Optional[Dict[str, List[str]]] = None,
            n_components: int = config.PCA_COMPONENTS, seed: int = config.SEED):
    """
    PCA of table[cols] after the optional per-column centring/scaling.

    Returns (scores, explained_variance_ratio, loadings) with scores indexed
    like the table and loadings indexed by feature; both use PC1, PC2, ...
    as column names.
    """
    cols = list(cols)
    X = table[cols].astype(float)
    spec = PreprocessSpec.from_config(preprocess)
    prep = make_transformer(spec, cols, groups)
    if not isinstance(prep, str):
        prep.fit(X)
    Z = transformed_frame(prep, X)

    k = min(n_components, Z.shape[0], Z.shape[1])
    if k < 1:
        raise InputFormatError("PCA needs at least one subject and one feature.")
    pca = PCA(n_components=k, random_state=seed)
    pcs = [f"PC{i + 1}" for i in range(k)]
    scores = pd.DataFrame(pca.fit_transform(Z.to_numpy()), index=table.index, columns=pcs)
    loadings = pd.DataFrame(pca.components_.T, index=cols, columns=pcs)
    return scores, pca.explained_variance_ratio_, loadings


def _scatter_by_class(ax, coords: np.ndarray, labels: pd.Series):
    for cls in config.CLASSES:
        m = (labels == cls).to_numpy()
        if not m.any():
            continue
        ax.scatter(*[coords[m, j] for j in range(coords.shape[1])], s=40, alpha=0.85,
                   c=CLASS_COLORS[cls], marker=CLASS_MARKERS[cls], label=cls, edgecolor="none")


def plot_pca_biplot(scores: pd.DataFrame, ratio, loadings: pd.DataFrame, labels: pd.Series,
                    out_path: str, pcs=(0, 1), title: str = "",
                    n_arrows: int = config.BIPLOT_ARROWS, names: Optional[Dict[str, str]] = None):
    """Scores of two PCs coloured by outcome, with the largest loadings drawn as arrows."""
    i, j = pcs
    coords = scores.iloc[:, [i, j]].to_numpy()
    load = loadings.iloc[:, [i, j]]

    plt.figure(figsize=(6, 6), dpi=300)
    ax = plt.gca()
    _scatter_by_class(ax, coords, labels.loc[scores.index].astype(str))

    if n_arrows > 0 and len(load):
        norms = np.sqrt((load ** 2).sum(axis=1))
        top = norms.sort_values(ascending=False, kind="mergesort").index[:n_arrows]
        span = np.abs(coords).max() if coords.size else 1.0
        scale = 0.8 * span / max(float(norms.max()), 1e-12)
        for feat in top:
            dx, dy = load.loc[feat].to_numpy() * scale
            ax.arrow(0, 0, dx, dy, color="0.3", alpha=0.8, width=0.002 * span,
                     head_width=0.03 * span, length_includes_head=True)
            label = names.get(feat, feat) if names else feat
            ax.text(dx * 1.08, dy * 1.08, label, fontsize=8, color="0.2",
                    ha="center", va="center")

    var = np.asarray(ratio)
    plt.xlabel(f"PC{i + 1} ({var[i]*100:.1f}% var)", fontsize=18, labelpad=10)
    plt.ylabel(f"PC{j + 1} ({var[j]*100:.1f}% var)", fontsize=18, labelpad=10)
    plt.title(title, fontsize=18, pad=12)
    plt.xticks(fontsize=16)
    plt.yticks(fontsize=16)
    plt.legend(frameon=False, loc="best", fontsize=14)

    plt.tight_layout()
    ensure_dir(os.path.dirname(out_path) or ".")
    plt.savefig(out_path, bbox_inches="tight")
    plt.close()
    return out_path


def plot_pca_3d(scores: pd.DataFrame, ratio, labels: pd.Series, out_path: str, title: str = ""):
    """3-D point cloud of the first three PCs coloured by outcome."""
    if scores.shape[1] < 3:
        raise InputFormatError(f"3-D PCA needs three components, got {scores.shape[1]}")
    coords = scores.iloc[:, :3].to_numpy()
    var = np.asarray(ratio)

    fig = plt.figure(figsize=(7, 6), dpi=300)
    ax = fig.add_subplot(111, projection="3d")
    _scatter_by_class(ax, coords, labels.loc[scores.index].astype(str))
    ax.set_xlabel(f"PC1 ({var[0]*100:.1f}%)", fontsize=12, labelpad=8)
    ax.set_ylabel(f"PC2 ({var[1]*100:.1f}%)", fontsize=12, labelpad=8)
    ax.set_zlabel(f"PC3 ({var[2]*100:.1f}%)", fontsize=12, labelpad=8)
    ax.set_title(title, fontsize=14, pad=12)
    ax.legend(frameon=False, loc="upper left", fontsize=10)

    ensure_dir(os.path.dirname(out_path) or ".")
    fig.savefig(out_path, bbox_inches="tight")
    plt.close(fig)
    return out_path


def pca_panels(table: pd.DataFrame, cols: Sequence[str], name: str, out_dir: str,
               label_col: str = config.LABEL_COL, preprocess=None,
               groups: Optional[Dict[str, List[str]]] = None,
               n_components: int = config.PCA_COMPONENTS,
               names: Optional[Dict[str, str]] = None) -> List[str]:
    """Biplot for every PC pair and a 3-D view when three components exist."""
    scores, ratio, loadings = run_pca(table, cols, preprocess, groups, n_components)
    labels = table[label_col]
    written = []
    for i, j in combinations(range(scores.shape[1]), 2):
        out = os.path.join(out_dir, f"pca_{name}_PC{i + 1}_PC{j + 1}.{config.FIG_EXT}")
        written.append(plot_pca_biplot(scores, ratio, loadings, labels, out, pcs=(i, j),
                                       title=name, names=names))
    if scores.shape[1] >= 3:
        out = os.path.join(out_dir, f"pca_{name}_3d.{config.FIG_EXT}")
        written.append(plot_pca_3d(scores, ratio, labels, out, title=name))
    log(f"[OK] {len(written)} PCA figure(s) for {name} "
        f"(var: {', '.join(f'{v*100:.1f}%' for v in ratio)})")
    return written
