#!/usr/bin/env python3
# -*- coding: utf-8 -*-

################################################################################
# Script: run_analysis.py
# Description: BDI x RNA-seq fusion for canine lymphoma treatment resistance.
#              Joins BDI sub-scores with pre-treatment expression of DE genes,
#              ranks every feature by AUROC/AUPRC, tunes an L2 logistic
#              regression by LOOCV, evaluates each feature configuration with
#              leave-one-out testing (LOOT) and exports summary tables,
#              correlation heatmaps and PCA biplots.
#
# Outputs under: results/ (or --out_root)
#   - de_genes_<variant>.tsv
#   - ranking_<table>_<auroc|auprc>.tsv, univariate_tests_<table>.tsv
#   - loocv_<experiment>.tsv, loot_<experiment>.tsv, confusion_<experiment>.tsv
#   - summary_comparison.tsv
#   - figures/corr_<variant>_<method>.pdf, figures/pca_<table>_*.pdf
#   - shap/<experiment>/SHAP_<Sample>.tsv   (with --shap)
#   - run_log.txt
################################################################################

import os

# BLAS threads are capped before numpy is imported; parallelism is over experiments
os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")
os.environ.setdefault("OMP_NUM_THREADS", "1")
os.environ.setdefault("MKL_NUM_THREADS", "1")
os.environ.setdefault("NUMEXPR_NUM_THREADS", "1")
os.environ.setdefault("JOBLIB_TEMP_FOLDER", "/tmp")

import argparse
import sys
import time
import warnings

import pandas as pd
from sklearn.exceptions import UndefinedMetricWarning
from statsmodels.tools.sm_exceptions import ConvergenceWarning as SMConvergenceWarning

from . import config
from .annotation import load_gene_annotation
from .data_join import (
    build_feature_table, expression_by_subject, feature_columns, load_bdi_table,
    load_de_gene_sets, load_expression, load_sample_map, log_transform
)
from .errors import LymphomaFusionError
from .loocv import train_loocv
from .loot import run_experiments
from .ranking import rank_features, top_features_by_group, univariate_tests
from .summary import compare_configurations, loot_confusion
from .utils import Tee, ensure_dir, fmt_secs, log, write_tsv
from .visualize import correlation_panels, pca_panels

# ---- Warning policy (silence expected non-critical runtime warnings) ----
warnings.filterwarnings("ignore", category=UndefinedMetricWarning)
warnings.filterwarnings("ignore", category=SMConvergenceWarning)
warnings.filterwarnings("ignore", category=RuntimeWarning, module="statsmodels")
warnings.filterwarnings("ignore", message="y_pred contains classes not in y_true")


# ----------------------------- Feature tables -----------------------------
def build_tables(bdi: pd.DataFrame, rna: pd.DataFrame, de_sets, top_k: int):
    """
    Every feature table the experiments may ask for, the BDI/RNA column groups
    and the per-table AUROC rankings.

    Tables: BDI, RNA_<variant>, BDI+RNA_<variant>, and a *_top variant of
    each keeping the top_k features of every modality by AUROC.
    """
    bdi_cols = feature_columns(bdi)
    groups = {"BDI": bdi_cols, "RNA": list(rna.columns)}

    tables = {"BDI": build_feature_table(bdi)}
    for variant, genes in de_sets.items():
        gene_ids = genes[config.GENE_COL].tolist()
        tables[f"RNA_{variant}"] = build_feature_table(bdi, rna, gene_ids, include_bdi=False)
        tables[f"BDI+RNA_{variant}"] = build_feature_table(bdi, rna, gene_ids, include_bdi=True)

    rankings = {}
    for name in list(tables):
        ranked = rank_features(tables[name], "auroc")
        rankings[name] = ranked
        keep = top_features_by_group(ranked, top_k, groups)
        tables[f"{name}_top"] = tables[name][[config.LABEL_COL] + keep]

    for name, t in tables.items():
        log(f"  · table {name}: {t.shape[0]} subjects x {t.shape[1] - 1} features")
    return tables, groups, rankings


def export_rankings(tables, out_dir):
    """AUROC/AUPRC rankings and Mann-Whitney tests for every non-top table."""
    for name, table in tables.items():
        if name.endswith("_top"):
            continue
        for metric in ("auroc", "auprc"):
            write_tsv(rank_features(table, metric),
                      os.path.join(out_dir, f"ranking_{name}_{metric}.tsv"))
        write_tsv(univariate_tests(table), os.path.join(out_dir, f"univariate_tests_{name}.tsv"))


# ----------------------------- Run -----------------------------
def run(args):
    t0_all = time.time()
    out_dir = ensure_dir(args.out_root)
    fig_dir = ensure_dir(os.path.join(out_dir, config.FIG_SUBDIR))
    shap_dir = os.path.join(out_dir, "shap") if args.shap else None

    log(f"[INFO] data_dir={args.data_dir} | out_root={out_dir} | seed={args.seed} | "
        f"n_jobs={args.n_jobs} | top_k={args.top_k}")
    log(f"[INFO] OMP={os.environ.get('OMP_NUM_THREADS')} | "
        f"OPENBLAS={os.environ.get('OPENBLAS_NUM_THREADS')} | MKL={os.environ.get('MKL_NUM_THREADS')}")

    # ---- Inputs ----
    log("==> Loading inputs")
    bdi = load_bdi_table(os.path.join(args.data_dir, config.BDI_FILE))
    sample_map = load_sample_map(os.path.join(args.data_dir, config.SAMPLE_MAP_FILE))
    expr = load_expression(os.path.join(args.data_dir, config.EXPRESSION_FILE))
    rna = log_transform(expression_by_subject(expr, sample_map, config.PRETREATMENT))

    common = bdi.index.intersection(rna.index)
    log(f"[INFO] {len(common)} subjects with both modalities "
        f"(BDI={len(bdi)}, RNA={len(rna)})")
    bdi, rna = bdi.loc[common], rna.loc[common]

    de_sets = load_de_gene_sets(os.path.join(args.data_dir, config.DE_DIR))
    gene_names = {}
    if not args.skip_annotation:
        all_genes = de_sets[config.COMBINED_VARIANT][config.GENE_COL]
        ann = load_gene_annotation(all_genes, os.path.join(args.data_dir, config.ANNOTATION_FILE))
        gene_names = dict(zip(ann[config.GENE_COL], ann[config.GENE_NAME_COL]))
    for variant, genes in de_sets.items():
        prov = genes.copy()
        prov.insert(1, config.GENE_NAME_COL, prov[config.GENE_COL].map(gene_names))
        write_tsv(prov, os.path.join(out_dir, f"de_genes_{variant}.tsv"))

    # ---- Feature tables + univariate ranking ----
    log("==> Building feature tables")
    tables, groups, _ = build_tables(bdi, rna, de_sets, args.top_k)
    export_rankings(tables, out_dir)

    # ---- LOOCV on the whole cohort ----
    experiments = [dict(exp, groups=groups) for exp in config.EXPERIMENTS]
    log("==> LOOCV (whole cohort)")
    for exp in experiments:
        model = train_loocv(tables[exp["features"]], preprocess=exp["preprocess"],
                            model_name=exp.get("model", config.DEFAULT_MODEL),
                            seed=args.seed, groups=groups)
        log(f"  · {exp['name']}: best {model.params_label()} | kappa={model.best_kappa:.3f} "
            f"| accuracy={model.best_accuracy:.3f}")
        write_tsv(model.results, os.path.join(out_dir, f"loocv_{exp['name']}.tsv"))

    # ---- LOOT ----
    log("==> LOOT")
    loot = run_experiments(experiments, tables, seed=args.seed,
                           n_jobs=args.n_jobs, shap_dir=shap_dir)
    for name, res in loot.items():
        write_tsv(res, os.path.join(out_dir, f"loot_{name}.tsv"))
        write_tsv(loot_confusion(res), os.path.join(out_dir, f"confusion_{name}.tsv"), index=True)
    summary = compare_configurations(loot)
    write_tsv(summary, os.path.join(out_dir, "summary_comparison.tsv"))

    # ---- Figures ----
    log("==> Figures")
    bdi_cols = groups["BDI"]
    for variant in de_sets:
        fused = tables[f"BDI+RNA_{variant}"]
        gene_cols = [c for c in feature_columns(fused) if c not in set(bdi_cols)]
        correlation_panels(fused, bdi_cols, gene_cols, variant, fig_dir, gene_names=gene_names)

    seen = set()
    for exp in experiments:
        name = exp["features"]
        if name in seen:
            continue
        seen.add(name)
        table = tables[name]
        pca_panels(table, feature_columns(table), name, fig_dir,
                   preprocess=exp["preprocess"], groups=groups, names=gene_names)

    print("\n" + "-" * 80)
    log(f"[DONE] Saved summary -> {os.path.join(out_dir, 'summary_comparison.tsv')}")
    log(f"[TOTAL] Elapsed {fmt_secs(time.time() - t0_all)}")
    return summary


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="BDI x RNA-seq fusion: ranking, LOOCV, LOOT, figures")
    parser.add_argument("--data_dir", default=config.DATA_DIR)
    parser.add_argument("--out_root", default=config.OUT_DIR)
    parser.add_argument("--seed", type=int, default=config.SEED)
    parser.add_argument("--n_jobs", type=int, default=1)
    parser.add_argument("--top_k", type=int, default=config.TOP_K)
    parser.add_argument("--shap", action="store_true",
                        help="export per-subject SHAP values for every LOOT fold")
    parser.add_argument("--skip_annotation", action="store_true",
                        help="do not read or rebuild the gene-name table")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    ensure_dir(args.out_root)
    stdout = sys.stdout
    with open(os.path.join(args.out_root, "run_log.txt"), "w") as fh:
        sys.stdout = Tee(stdout, fh)
        try:
            return run(args)
        except LymphomaFusionError as e:
            log(f"[FAIL] {type(e).__name__}: {e}")
            raise
        finally:
            sys.stdout = stdout


if __name__ == "__main__":
    main()
