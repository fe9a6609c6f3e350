################################################################################
# Module: data_join.py
# Description:
#   Loaders for the clinical/BDI table, the sample-identity mapping, the
#   gzipped FPKM matrix and the differential-expression (DE) tables of the two
#   callers, plus the join that produces one feature table per analysis
#   variant (samples x [BDI sub-scores | DE genes], one label column).
#
# Inputs (relative to DATA_DIR):
#   - bdi_scores.csv        (Sample, Clinical Outcome, <BDI sub-scores>)
#   - sample_map.tsv        (Sample, Library, Timepoint)
#   - expression.tsv.gz     long (gene_id, Library, FPKM) or wide (gene_id x libraries)
#   - de/<variant>_<caller>.tsv  (gene_id, <caller>_DE, <caller>_logFC, gene_biotype)
################################################################################

import os
import re
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from . import config
from .errors import DataIntegrityError, InputFormatError
from .utils import log


# ----------------------------- Generic readers -----------------------------
def _read_table(path: str, sep: str, **kwargs) -> pd.DataFrame:
    """Read a delimited file; missing/unparseable files become InputFormatError."""
    if not os.path.exists(path):
        raise InputFormatError(f"Input file not found: {path}")
    try:
        return pd.read_csv(path, sep=sep, **kwargs)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, OSError) as e:
        raise InputFormatError(f"Could not parse {path}: {e}") from e


def _require_columns(df: pd.DataFrame, cols, source: str):
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise InputFormatError(f"{source}: missing expected columns {missing}")


def normalize_column_name(name) -> str:
    """'Lymph node  score (0-3)' -> 'Lymph_node_score_0_3'."""
    return re.sub(r"[^0-9A-Za-z]+", "_", str(name).strip()).strip("_")


def feature_columns(df: pd.DataFrame, label_col: str = config.LABEL_COL) -> List[str]:
    """Numeric columns other than the label, in table order."""
    return [c for c in df.columns
            if c != label_col and pd.api.types.is_numeric_dtype(df[c])]


def check_labels(labels: pd.Series, source: str = "labels"):
    """Every label must belong to the outcome vocabulary."""
    vals = set(pd.unique(labels.dropna()))
    unknown = vals.difference(config.CLASSES)
    if unknown or labels.isna().any():
        raise DataIntegrityError(
            f"{source}: {config.LABEL_COL} should contain only {config.CLASSES}, "
            f"found {sorted(map(str, vals))} (missing={int(labels.isna().sum())})."
        )


# ----------------------------- Clinical / BDI -----------------------------
def load_bdi_table(path: Optional[str] = None) -> pd.DataFrame:
    """
    Load the BDI table (one row per subject). Feature names are normalized,
    values coerced to numeric, and subjects with any missing sub-score dropped.
    Returns a DataFrame indexed by Sample with the label column first.
    """
    if path is None:
        path = os.path.join(config.DATA_DIR, config.BDI_FILE)
    df = _read_table(path, sep=",")
    df.columns = [str(c).strip() for c in df.columns]
    _require_columns(df, [config.SAMPLE_COL, config.LABEL_COL], path)

    df[config.SAMPLE_COL] = df[config.SAMPLE_COL].astype(str).str.strip()
    df[config.LABEL_COL] = df[config.LABEL_COL].astype(str).str.strip().str.capitalize()
    check_labels(df[config.LABEL_COL], source=path)
    if df[config.SAMPLE_COL].duplicated().any():
        dups = df.loc[df[config.SAMPLE_COL].duplicated(), config.SAMPLE_COL].tolist()
        raise DataIntegrityError(f"{path}: duplicated subjects {dups}")

    feats = [c for c in df.columns if c not in (config.SAMPLE_COL, config.LABEL_COL)]
    rename = {c: normalize_column_name(c) for c in feats}
    if len(set(rename.values())) != len(rename):
        raise InputFormatError(f"{path}: BDI column names collide after normalization")
    df = df.rename(columns=rename)
    feats = [rename[c] for c in feats]
    if not feats:
        raise InputFormatError(f"{path}: no BDI sub-score columns")

    df[feats] = df[feats].apply(pd.to_numeric, errors="coerce")
    n0 = len(df)
    df = df.dropna(subset=feats)
    if len(df) < n0:
        log(f"[WARN] BDI: dropped {n0 - len(df)} subject(s) with missing sub-scores")

    df = df.set_index(config.SAMPLE_COL)[[config.LABEL_COL] + feats]
    log(f"[INFO] BDI loaded: {df.shape[0]} subjects x {len(feats)} sub-scores "
        f"({df[config.LABEL_COL].value_counts().to_dict()})")
    return df


def load_sample_map(path: Optional[str] = None) -> pd.DataFrame:
    """Sample-identity mapping: subject (Sample) -> RNA library (+ Timepoint)."""
    if path is None:
        path = os.path.join(config.DATA_DIR, config.SAMPLE_MAP_FILE)
    df = _read_table(path, sep="\t", dtype=str)
    _require_columns(df, [config.SAMPLE_COL, config.LIBRARY_COL], path)
    for c in df.columns:
        df[c] = df[c].str.strip()
    return df


# ----------------------------- Expression -----------------------------
def load_expression(path: Optional[str] = None) -> pd.DataFrame:
    """
    Load the gzipped FPKM matrix and return it wide (genes x libraries).
    Long input (gene_id, Library, FPKM) is pivoted; wide input uses its first
    column as gene identifier.
    """
    if path is None:
        path = os.path.join(config.DATA_DIR, config.EXPRESSION_FILE)
    df = _read_table(path, sep="\t", compression="infer")
    long_cols = {config.GENE_COL, config.LIBRARY_COL, config.VALUE_COL}
    if long_cols.issubset(df.columns):
        try:
            wide = df.pivot(index=config.GENE_COL, columns=config.LIBRARY_COL,
                            values=config.VALUE_COL)
        except ValueError as e:
            raise InputFormatError(f"{path}: duplicated (gene, library) entries") from e
        wide.columns.name = None
        layout = "long"
    else:
        gene_col = config.GENE_COL if config.GENE_COL in df.columns else df.columns[0]
        wide = df.set_index(gene_col)
        layout = "wide"
    wide.index = wide.index.astype(str)
    wide.index.name = config.GENE_COL
    wide = wide.apply(pd.to_numeric, errors="coerce")
    log(f"[INFO] expression ({layout}): {wide.shape[0]} genes x {wide.shape[1]} libraries")
    return wide


def expression_by_subject(expr: pd.DataFrame, sample_map: pd.DataFrame,
                          timepoint: Optional[str] = config.PRETREATMENT) -> pd.DataFrame:
    """
    Reshape genes x libraries into subjects x genes using the mapping table.
    Only libraries of `timepoint` are used when the map has a Timepoint column.
    """
    m = sample_map
    if timepoint is not None and config.TIMEPOINT_COL in m.columns:
        m = m[m[config.TIMEPOINT_COL].str.lower() == str(timepoint).lower()]
    if m[config.SAMPLE_COL].duplicated().any():
        dups = m.loc[m[config.SAMPLE_COL].duplicated(), config.SAMPLE_COL].unique().tolist()
        raise DataIntegrityError(f"Several libraries per subject at timepoint '{timepoint}': {dups}")

    present = m[m[config.LIBRARY_COL].isin(expr.columns)]
    absent = sorted(set(m[config.LIBRARY_COL]) - set(present[config.LIBRARY_COL]))
    if absent:
        log(f"[WARN] {len(absent)} mapped libraries absent from expression: {absent[:5]}")
    if present.empty:
        raise InputFormatError("No mapped library found in the expression matrix.")

    out = expr[present[config.LIBRARY_COL].tolist()].T
    out.index = present[config.SAMPLE_COL].values
    out.index.name = config.SAMPLE_COL
    out.columns.name = None
    return out


# ----------------------------- Differential expression -----------------------------
_TRUE_STRINGS = {"true", "t", "yes", "y", "up", "down", "1", "-1", "1.0", "-1.0"}


def _is_flagged(flags: pd.Series) -> pd.Series:
    """DE flag -> bool. Accepts 1/-1/0, TRUE/FALSE, yes/no, up/down."""
    num = pd.to_numeric(flags, errors="coerce")
    as_str = flags.astype(str).str.strip().str.lower().isin(_TRUE_STRINGS)
    return (num.fillna(0) != 0) | (num.isna() & as_str)


def load_de_table(path: str, caller: str) -> pd.DataFrame:
    df = _read_table(path, sep="\t")
    flag_col, lfc_col = f"{caller}_DE", f"{caller}_logFC"
    _require_columns(df, [config.GENE_COL, flag_col, lfc_col, config.BIOTYPE_COL], path)
    df[config.GENE_COL] = df[config.GENE_COL].astype(str).str.strip()
    return df


def select_de_genes(tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Genes flagged DE by every caller in `tables` and annotated protein-coding.
    Returns gene_id plus one <caller>_logFC column per caller (provenance only).
    """
    if not tables:
        raise InputFormatError("No DE tables given.")
    selected = None
    lfc = []
    for caller, df in tables.items():
        keep = _is_flagged(df[f"{caller}_DE"]) & (df[config.BIOTYPE_COL] == config.PROTEIN_CODING)
        genes = set(df.loc[keep, config.GENE_COL])
        log(f"  · {caller}: {len(genes)} protein-coding DE genes")
        selected = genes if selected is None else selected & genes
        lfc.append(df[[config.GENE_COL, f"{caller}_logFC"]]
                   .drop_duplicates(subset=[config.GENE_COL])
                   .set_index(config.GENE_COL))
    out = pd.DataFrame(index=pd.Index(sorted(selected), name=config.GENE_COL))
    for part in lfc:
        out = out.join(part, how="left")
    return out.reset_index()


def load_de_gene_sets(de_dir: Optional[str] = None,
                      variants: Optional[List[str]] = None,
                      callers: Optional[List[str]] = None) -> Dict[str, pd.DataFrame]:
    """
    DE gene set per variant, plus the 'combined' variant (union of the others).
    Files are expected at <de_dir>/<variant>_<caller>.tsv.
    """
    de_dir = de_dir or os.path.join(config.DATA_DIR, config.DE_DIR)
    variants = variants or config.DE_VARIANTS
    callers = callers or config.DE_CALLERS
    sets = {}
    for variant in variants:
        log(f"[INFO] DE variant '{variant}'")
        tables = {c: load_de_table(os.path.join(de_dir, f"{variant}_{c}.tsv"), c) for c in callers}
        sets[variant] = select_de_genes(tables)
        log(f"  -> {len(sets[variant])} genes called by all of {callers}")
    combined = pd.concat([s.assign(variant=v) for v, s in sets.items()], ignore_index=True)
    combined = combined.drop_duplicates(subset=[config.GENE_COL], keep="first")
    sets[config.COMBINED_VARIANT] = combined.sort_values(config.GENE_COL).reset_index(drop=True)
    log(f"[INFO] DE variant '{config.COMBINED_VARIANT}': {len(combined)} genes")
    return sets


# ----------------------------- Join -----------------------------
def build_feature_table(bdi: pd.DataFrame, rna: Optional[pd.DataFrame] = None,
                        genes: Optional[List[str]] = None,
                        include_bdi: bool = True) -> pd.DataFrame:
    """
    Join BDI sub-scores and/or expression of `genes` on subject identity.

    Genes absent from the matrix or with any missing value are dropped; subjects
    lacking either modality are dropped (inner join). The label column comes
    from the BDI table.
    """
    if rna is None and not include_bdi:
        raise InputFormatError("Feature table needs BDI and/or RNA features.")
    table = bdi[[config.LABEL_COL]].copy()
    if include_bdi:
        table = bdi.copy()

    if rna is not None:
        cols = list(rna.columns) if genes is None else [g for g in genes if g in rna.columns]
        n_missing = 0 if genes is None else len(genes) - len(cols)
        if n_missing:
            log(f"[WARN] {n_missing} DE genes absent from the expression matrix")
        expr = rna[cols]
        expr = expr.loc[:, expr.notna().all(axis=0)]
        if expr.shape[1] < len(cols):
            log(f"[WARN] dropped {len(cols) - expr.shape[1]} gene(s) with missing values")
        clash = set(expr.columns) & set(table.columns)
        if clash:
            raise InputFormatError(f"Gene ids collide with BDI columns: {sorted(clash)}")
        table = table.join(expr, how="inner")

    n0 = len(table)
    table = table.dropna()
    if len(table) < n0:
        log(f"[WARN] dropped {n0 - len(table)} subject(s) with missing values after join")
    if table.empty:
        raise DataIntegrityError("Feature table is empty after joining BDI and RNA-seq.")
    check_labels(table[config.LABEL_COL], source="feature table")
    return table


def log_transform(rna: pd.DataFrame, pseudocount: float = 1.0) -> pd.DataFrame:
    """log2(FPKM + pseudocount)."""
    return np.log2(rna + pseudocount)
