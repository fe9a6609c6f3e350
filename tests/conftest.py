"""Synthetic canine lymphoma cohorts shared by the test modules."""

import numpy as np
import pandas as pd
import pytest

from lymphoma_fusion import config

SUBJECTS = [f"D{i:02d}" for i in range(1, 11)]
LABELS = ["Resistant"] * 6 + ["Sensitive"] * 4
BDI_FEATURES = ["Appetite", "Activity", "Pain", "Mood"]
GENES = [f"ENSCAFG{i:011d}" for i in range(1, 9)]


def _bdi_frame(seed=0):
    rng = np.random.default_rng(seed)
    y = np.array([1.0 if lab == "Resistant" else 0.0 for lab in LABELS])
    df = pd.DataFrame({
        # separates the classes with some overlap
        "Appetite": y * 2.0 + rng.normal(0, 1.0, len(y)),
        "Activity": rng.normal(5, 2, len(y)),
        "Pain": np.round(rng.uniform(0, 3, len(y))),
        "Mood": -y + rng.normal(0, 0.8, len(y)),
    }, index=pd.Index(SUBJECTS, name=config.SAMPLE_COL))
    df.insert(0, config.LABEL_COL, LABELS)
    return df


@pytest.fixture
def bdi():
    """10 subjects x 4 BDI sub-scores, 6 Resistant / 4 Sensitive."""
    return _bdi_frame()


@pytest.fixture
def rna():
    """log-scale expression of 8 genes for the same subjects."""
    rng = np.random.default_rng(1)
    y = np.array([1.0 if lab == "Resistant" else 0.0 for lab in LABELS])
    data = rng.normal(4, 1, (len(SUBJECTS), len(GENES)))
    data[:, 0] += 3 * y
    data[:, 1] -= 2 * y
    return pd.DataFrame(data, index=pd.Index(SUBJECTS, name=config.SAMPLE_COL), columns=GENES)


@pytest.fixture
def fused(bdi, rna):
    return bdi.join(rna, how="inner")


@pytest.fixture
def small_grid():
    return {"clf__C": [0.1, 1.0]}


def _de_table(caller, flagged, biotypes):
    return pd.DataFrame({
        config.GENE_COL: GENES,
        f"{caller}_DE": [1 if g in flagged else 0 for g in GENES],
        f"{caller}_logFC": np.linspace(-2, 2, len(GENES)),
        config.BIOTYPE_COL: biotypes,
    })


@pytest.fixture
def data_dir(tmp_path):
    """
    A complete input directory: BDI csv, sample map with pre/post libraries,
    long gzipped FPKM matrix and edgeR/DESeq2 tables for both DE variants.
    """
    d = tmp_path / "data"
    (d / config.DE_DIR).mkdir(parents=True)

    bdi = _bdi_frame()
    bdi.rename(columns={"Appetite": "Appetite score"}).reset_index().to_csv(
        d / config.BDI_FILE, index=False)

    rows = []
    for s in SUBJECTS:
        rows.append({config.SAMPLE_COL: s, config.LIBRARY_COL: f"LIB_{s}_pre", config.TIMEPOINT_COL: "pre"})
        rows.append({config.SAMPLE_COL: s, config.LIBRARY_COL: f"LIB_{s}_post", config.TIMEPOINT_COL: "post"})
    smap = pd.DataFrame(rows)
    smap.to_csv(d / config.SAMPLE_MAP_FILE, sep="\t", index=False)

    rng = np.random.default_rng(2)
    y = {s: 1.0 if lab == "Resistant" else 0.0 for s, lab in zip(SUBJECTS, LABELS)}
    long_rows = []
    for lib, s in zip(smap[config.LIBRARY_COL], smap[config.SAMPLE_COL]):
        for j, g in enumerate(GENES):
            base = 20.0 + 5 * j + (30.0 * y[s] if j == 0 else 0.0)
            long_rows.append({config.GENE_COL: g, config.LIBRARY_COL: lib,
                              config.VALUE_COL: float(base * rng.uniform(0.7, 1.3))})
    pd.DataFrame(long_rows).to_csv(d / config.EXPRESSION_FILE, sep="\t", index=False,
                                   compression="gzip")

    biotypes = ["protein_coding"] * 6 + ["lncRNA", "protein_coding"]
    # all_genes: both callers agree on genes 0-2 and 6 (6 is not protein coding)
    _de_table("edgeR", set(GENES[:3] + [GENES[6]]), biotypes).to_csv(
        d / config.DE_DIR / "all_genes_edgeR.tsv", sep="\t", index=False)
    _de_table("DESeq2", set(GENES[:4] + [GENES[6]]), biotypes).to_csv(
        d / config.DE_DIR / "all_genes_DESeq2.tsv", sep="\t", index=False)
    # pretreatment: both callers agree on genes 2 and 4
    _de_table("edgeR", {GENES[2], GENES[4], GENES[5]}, biotypes).to_csv(
        d / config.DE_DIR / "pretreatment_edgeR.tsv", sep="\t", index=False)
    _de_table("DESeq2", {GENES[2], GENES[4]}, biotypes).to_csv(
        d / config.DE_DIR / "pretreatment_DESeq2.tsv", sep="\t", index=False)

    pd.DataFrame({config.GENE_COL: GENES[:2], config.GENE_NAME_COL: ["CD20", ""]}).to_csv(
        d / config.ANNOTATION_FILE, sep="\t", index=False)
    return str(d)


def _loot_frame(y_true, y_pred, y_prob=None):
    n = len(y_true)
    return pd.DataFrame({
        "Sample": [f"S{i}" for i in range(n)],
        "y_true": y_true,
        "y_pred": y_pred,
        "y_prob": y_prob if y_prob is not None else [0.5] * n,
        "self_score": [n - 1] * n,
        "self_accuracy": [1.0] * n,
        "n_train": [n - 1] * n,
        "best_params": ["C=1.0"] * n,
        "val_kappa": [0.5] * n,
        "val_accuracy": [0.8] * n,
    })


@pytest.fixture
def make_loot():
    """Factory for minimal LOOT result tables."""
    return _loot_frame
