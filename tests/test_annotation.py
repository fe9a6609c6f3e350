import pandas as pd
import pytest

from lymphoma_fusion import annotation, config
from lymphoma_fusion.errors import InputFormatError

GENES = ["ENSCAFG00000000001", "ENSCAFG00000000002", "ENSCAFG00000000003"]


def test_existing_table_is_read(data_dir):
    ann = annotation.load_gene_annotation(GENES, f"{data_dir}/{config.ANNOTATION_FILE}")
    names = dict(zip(ann[config.GENE_COL], ann[config.GENE_NAME_COL]))
    assert names == {GENES[0]: "CD20", GENES[1]: GENES[1], GENES[2]: GENES[2]}


def test_rebuilt_from_biomart_and_cached(tmp_path, monkeypatch):
    calls = []

    class FakeBiomart:
        def query(self, dataset, attributes, filters):
            calls.append((dataset, list(filters["ensembl_gene_id"])))
            return pd.DataFrame({"ensembl_gene_id": filters["ensembl_gene_id"],
                                 "external_gene_name": ["MS4A1"] + [""] * (len(filters["ensembl_gene_id"]) - 1)})

    monkeypatch.setattr(annotation, "Biomart", FakeBiomart)
    path = tmp_path / "ann.tsv"
    ann = annotation.load_gene_annotation(GENES, str(path), chunk_size=2)
    assert [c[0] for c in calls] == [config.BIOMART_DATASET] * 2
    assert [len(c[1]) for c in calls] == [2, 1]
    assert path.exists()
    names = dict(zip(ann[config.GENE_COL], ann[config.GENE_NAME_COL]))
    assert names[GENES[0]] == "MS4A1"
    assert names[GENES[1]] == GENES[1]
    assert names[GENES[2]] == "MS4A1"

    # second call reads the cached file
    annotation.load_gene_annotation(GENES, str(path), chunk_size=2)
    assert len(calls) == 2


def test_malformed_table(tmp_path):
    path = tmp_path / "ann.tsv"
    pd.DataFrame({"id": ["x"]}).to_csv(path, sep="\t", index=False)
    with pytest.raises(InputFormatError):
        annotation.load_gene_annotation(["x"], str(path))


def test_unparseable_cache_is_not_rebuilt(tmp_path, monkeypatch):
    path = tmp_path / "ann.tsv"
    path.write_text("gene_id\tgene_name\nx\ty\tz\tw\n")

    def no_biomart():
        raise AssertionError("BioMart queried for an existing table")

    monkeypatch.setattr(annotation, "Biomart", no_biomart)
    with pytest.raises(InputFormatError, match="Could not parse"):
        annotation.load_gene_annotation(["x"], str(path))
