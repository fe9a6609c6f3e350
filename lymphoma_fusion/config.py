################################################################################
# Module: config.py
# Description:
#   Paths, label vocabulary, model grids and the experiment list for the
#   BDI × RNA-seq fusion run. Everything here is plain module-level constants;
#   run_analysis.main() overrides the paths/seed from the command line.
################################################################################

import numpy as np

# ----------------------------- Reproducibility -----------------------------
SEED = 42

# ----------------------------- I/O -----------------------------
DATA_DIR = "data"
OUT_DIR = "results"
FIG_SUBDIR = "figures"
FIG_EXT = "pdf"  # vector output for the write-up

BDI_FILE = "bdi_scores.csv"
SAMPLE_MAP_FILE = "sample_map.tsv"
EXPRESSION_FILE = "expression.tsv.gz"
ANNOTATION_FILE = "gene_annotation.tsv"
DE_DIR = "de"  # de/<variant>_<caller>.tsv

# ----------------------------- Columns & labels -----------------------------
SAMPLE_COL = "Sample"
LABEL_COL = "Clinical Outcome"
LIBRARY_COL = "Library"
TIMEPOINT_COL = "Timepoint"
GENE_COL = "gene_id"
GENE_NAME_COL = "gene_name"
VALUE_COL = "FPKM"
BIOTYPE_COL = "gene_biotype"
PROTEIN_CODING = "protein_coding"
PRETREATMENT = "pre"

POSITIVE_CLASS = "Resistant"
NEGATIVE_CLASS = "Sensitive"
CLASSES = [POSITIVE_CLASS, NEGATIVE_CLASS]

# ----------------------------- Differential expression -----------------------------
DE_CALLERS = ["edgeR", "DESeq2"]
DE_VARIANTS = ["all_genes", "pretreatment"]
COMBINED_VARIANT = "combined"  # union of the DE_VARIANTS gene sets

# ----------------------------- Annotation service -----------------------------
BIOMART_DATASET = "clfamiliaris_gene_ensembl"
BIOMART_ATTRIBUTES = ["ensembl_gene_id", "external_gene_name"]
BIOMART_CHUNK = 300

# ----------------------------- Models -----------------------------
# Regularization grid for the default L2 logistic regression
LR_C_GRID = np.round(np.concatenate([np.linspace(0.01, 0.1, 10),
                                     np.linspace(0.2, 1.5, 14)]), 3)
LR_MAX_ITER = 10000

DEFAULT_MODEL = "LogisticRegression"

# ----------------------------- Analysis knobs -----------------------------
TOP_K = 10
CORR_METHODS = ["pearson", "spearman", "kendall"]
PCA_COMPONENTS = 3
BIPLOT_ARROWS = 8

# Default preprocessing: z-score every feature inside each training fold
DEFAULT_PREPROCESS = {"center": True, "scale": True}

# Experiment list: feature set × preprocessing. Feature-set names are resolved
# by run_analysis (BDI, RNA_<variant>, BDI+RNA_<variant>, *_top<k>).
EXPERIMENTS = [
    {"name": "BDI", "features": "BDI", "preprocess": DEFAULT_PREPROCESS},
    {"name": "BDI_top", "features": "BDI_top", "preprocess": DEFAULT_PREPROCESS},
    {"name": "RNA_all_genes", "features": "RNA_all_genes", "preprocess": DEFAULT_PREPROCESS},
    {"name": "RNA_pretreatment", "features": "RNA_pretreatment", "preprocess": DEFAULT_PREPROCESS},
    {"name": "RNA_combined", "features": "RNA_combined", "preprocess": DEFAULT_PREPROCESS},
    {"name": "RNA_combined_top", "features": "RNA_combined_top", "preprocess": DEFAULT_PREPROCESS},
    {"name": "BDI+RNA_combined", "features": "BDI+RNA_combined", "preprocess": DEFAULT_PREPROCESS},
    # genes are centred only; BDI sub-scores are also brought to unit variance
    {"name": "BDI+RNA_combined_top_bdi_scaled", "features": "BDI+RNA_combined_top",
     "preprocess": {"center": True, "scale": "BDI"}},
]
