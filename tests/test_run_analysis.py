import os

import pandas as pd
import pytest

from lymphoma_fusion import config, run_analysis
from lymphoma_fusion.errors import InputFormatError


@pytest.fixture
def quick(monkeypatch):
    monkeypatch.setattr(config, "LR_C_GRID", [0.1, 1.0])
    monkeypatch.setattr(config, "CORR_METHODS", ["pearson"])


def test_full_run(data_dir, tmp_path, quick):
    out = tmp_path / "results"
    summary = run_analysis.main(["--data_dir", data_dir, "--out_root", str(out), "--top_k", "2"])

    names = [e["name"] for e in config.EXPERIMENTS]
    assert sorted(summary["Experiment"]) == sorted(names)
    assert summary["Accuracy"].is_monotonic_decreasing
    assert (summary["n"] == 10).all()

    files = set(os.listdir(out))
    for name in names:
        assert f"loocv_{name}.tsv" in files
        assert f"loot_{name}.tsv" in files
        assert f"confusion_{name}.tsv" in files
    for variant in ("all_genes", "pretreatment", "combined"):
        assert f"de_genes_{variant}.tsv" in files
        assert f"ranking_RNA_{variant}_auroc.tsv" in files
        assert f"corr_{variant}_pearson.pdf" in os.listdir(out / "figures")
    assert "univariate_tests_BDI.tsv" in files
    assert "summary_comparison.tsv" in files
    assert "pca_BDI_PC1_PC2.pdf" in os.listdir(out / "figures")

    de = pd.read_csv(out / "de_genes_all_genes.tsv", sep="\t")
    assert de.loc[de["gene_id"] == "ENSCAFG00000000001", "gene_name"].item() == "CD20"

    loot = pd.read_csv(out / "loot_BDI.tsv", sep="\t")
    assert len(loot) == 10

    log_text = (out / "run_log.txt").read_text()
    assert "[NOTE]" in log_text
    assert "[DONE]" in log_text


def test_missing_input_fails(tmp_path, quick):
    out = tmp_path / "results"
    with pytest.raises(InputFormatError):
        run_analysis.main(["--data_dir", str(tmp_path / "nowhere"), "--out_root", str(out)])
    assert "[FAIL]" in (out / "run_log.txt").read_text()
