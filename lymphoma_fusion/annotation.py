################################################################################
# Module: annotation.py
# Description:
#   Gene identifier -> gene name table. Read from ANNOTATION_FILE when present,
#   otherwise rebuilt from Ensembl BioMart (dog genome) in chunks and cached
#   back to disk for the next run.
################################################################################

import os
from typing import List

import pandas as pd
from gseapy import Biomart

from . import config
from .data_join import _read_table, _require_columns
from .utils import log


def _query_biomart(gene_ids: List[str], dataset: str, chunk_size: int) -> pd.DataFrame:
    """Query BioMart for ensembl_gene_id -> external_gene_name, chunk by chunk."""
    bm = Biomart()
    parts = []
    n_chunks = (len(gene_ids) - 1) // chunk_size + 1 if gene_ids else 0
    for i in range(0, len(gene_ids), chunk_size):
        chunk = gene_ids[i:i + chunk_size]
        log(f"  BioMart chunk {i // chunk_size + 1}/{n_chunks} ({len(chunk)} genes)")
        res = bm.query(
            dataset=dataset,
            attributes=config.BIOMART_ATTRIBUTES,
            filters={"ensembl_gene_id": chunk},
        )
        if res is not None and len(res) > 0:
            parts.append(pd.DataFrame(res))
    if not parts:
        return pd.DataFrame(columns=[config.GENE_COL, config.GENE_NAME_COL])
    out = pd.concat(parts, ignore_index=True)
    out = out.rename(columns={
        "ensembl_gene_id": config.GENE_COL,
        "external_gene_name": config.GENE_NAME_COL,
    })
    return out[[config.GENE_COL, config.GENE_NAME_COL]]


def load_gene_annotation(gene_ids, path=None, dataset=config.BIOMART_DATASET,
                         chunk_size=config.BIOMART_CHUNK) -> pd.DataFrame:
    """
    Return a (gene_id, gene_name) table covering gene_ids.

    Reads `path` if it exists; otherwise rebuilds it from BioMart and writes it.
    Genes without a symbol keep their identifier as name.
    """
    if path is None:
        path = os.path.join(config.DATA_DIR, config.ANNOTATION_FILE)
    gene_ids = sorted({str(g) for g in gene_ids})

    if os.path.exists(path):
        ann = _read_table(path, sep="\t", dtype=str)
        _require_columns(ann, [config.GENE_COL, config.GENE_NAME_COL], path)
        log(f"[INFO] gene annotation loaded from {path} ({len(ann)} rows)")
    else:
        log(f"[INFO] {path} not found; rebuilding from BioMart ({dataset})")
        ann = _query_biomart(gene_ids, dataset, chunk_size)
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        ann.to_csv(path, sep="\t", index=False)
        log(f"[OK] cached annotation -> {path}")

    ann = ann.drop_duplicates(subset=[config.GENE_COL], keep="first")
    ann = ann.set_index(config.GENE_COL).reindex(gene_ids)
    names = ann[config.GENE_NAME_COL].where(
        ann[config.GENE_NAME_COL].notna() & (ann[config.GENE_NAME_COL].astype(str).str.len() > 0)
    )
    names = names.fillna(pd.Series(ann.index, index=ann.index))
    return pd.DataFrame({config.GENE_COL: ann.index, config.GENE_NAME_COL: names.values})
