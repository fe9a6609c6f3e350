import numpy as np
import pandas as pd
import pytest

from lymphoma_fusion import config
from lymphoma_fusion.errors import InputFormatError, InsufficientDataError
from lymphoma_fusion.loocv import LoocvTrainer
from lymphoma_fusion.loot import _pick_shap_vector, loot_accuracy, run_experiments, run_loot
from lymphoma_fusion.summary import summarize_loot

PREP = {"center": True, "scale": True}


def test_one_row_per_subject(bdi, small_grid):
    res = run_loot(bdi, preprocess=PREP, param_grid=small_grid)
    assert len(res) == len(bdi)
    assert res["Sample"].tolist() == list(bdi.index)
    assert (res["n_train"] == len(bdi) - 1).all()
    assert res["self_accuracy"].between(0, 1).all()
    assert (res["self_score"] == (res["self_accuracy"] * res["n_train"]).round().astype(int)).all()
    assert set(res["y_pred"]) <= set(config.CLASSES)


def test_accuracy_is_fraction_of_matches(bdi, small_grid):
    res = run_loot(bdi, preprocess=PREP, param_grid=small_grid)
    assert loot_accuracy(res) == pytest.approx((res["y_true"] == res["y_pred"]).mean())


def test_same_seed_same_rows(fused, small_grid):
    a = run_loot(fused, preprocess=PREP, param_grid=small_grid, seed=3)
    b = run_loot(fused, preprocess=PREP, param_grid=small_grid, seed=3)
    pd.testing.assert_frame_equal(a, b)


def test_ten_subject_cohort(bdi, small_grid):
    res = run_loot(bdi, preprocess=PREP, param_grid=small_grid)
    s = summarize_loot(res)
    assert s["n"] == 10
    assert s["TP"] + s["FN"] + s["FP"] + s["TN"] == 10
    assert s["TP"] + s["FN"] == 6
    assert s["Accuracy"] == pytest.approx(loot_accuracy(res))


def test_fold_losing_a_class_is_rejected(bdi, small_grid):
    # two Sensitive subjects listed first: the first training fold keeps only one
    bdi[config.LABEL_COL] = [config.NEGATIVE_CLASS] * 2 + [config.POSITIVE_CLASS] * 8
    with pytest.raises(InsufficientDataError):
        run_loot(bdi, preprocess=PREP, param_grid=small_grid)


class _RecordingTrainer:
    """Default trainer with a fixed grid; records the training sizes it sees."""

    def __init__(self):
        self.inner = LoocvTrainer(preprocess=PREP)
        self.sizes = []

    def fit(self, features, labels, param_grid=None):
        self.sizes.append(len(features))
        return self.inner.fit(features, labels, {"clf__C": [0.5]})


def test_trainer_is_pluggable(bdi):
    trainer = _RecordingTrainer()
    res = run_loot(bdi, trainer=trainer)
    assert trainer.sizes == [len(bdi) - 1] * len(bdi)
    assert (res["best_params"] == "C=0.5").all()


def test_shap_export(bdi, small_grid, tmp_path):
    run_loot(bdi, preprocess=PREP, param_grid=small_grid, shap_dir=str(tmp_path), name="bdi")
    files = sorted(p.name for p in (tmp_path / "bdi").iterdir())
    assert files == sorted(f"SHAP_{s}.tsv" for s in bdi.index)
    sh = pd.read_csv(tmp_path / "bdi" / files[0], sep="\t")
    assert sh["Feature"].tolist() == [c for c in bdi.columns if c != config.LABEL_COL]


@pytest.mark.parametrize("shap_vals", [
    [np.zeros((1, 3)), np.arange(3.0).reshape(1, 3)],
    np.stack([np.zeros((1, 3)), np.arange(3.0).reshape(1, 3)], axis=-1),
    np.arange(3.0).reshape(1, 3),
])
def test_shap_vector_of_held_out_subject(shap_vals):
    np.testing.assert_array_equal(_pick_shap_vector(shap_vals, 3), [0.0, 1.0, 2.0])


def test_shap_vector_wrong_width():
    with pytest.raises(ValueError):
        _pick_shap_vector(np.zeros((1, 4)), 3)
    with pytest.raises(ValueError):
        _pick_shap_vector(np.zeros((2, 3)), 3)


def test_run_experiments(bdi, fused, monkeypatch):
    monkeypatch.setattr(config, "LR_C_GRID", [0.1, 1.0])
    tables = {"BDI": bdi, "BDI+RNA": fused}
    experiments = [
        {"name": "bdi", "features": "BDI", "preprocess": PREP},
        {"name": "fused_bdi_scaled", "features": "BDI+RNA",
         "preprocess": {"center": True, "scale": "BDI"},
         "groups": {"BDI": ["Appetite", "Activity", "Pain", "Mood"]}},
    ]
    out = run_experiments(experiments, tables, seed=1)
    assert list(out) == ["bdi", "fused_bdi_scaled"]
    assert all(len(r) == 10 for r in out.values())


def test_run_experiments_missing_table(bdi):
    with pytest.raises(InputFormatError):
        run_experiments([{"name": "x", "features": "RNA_combined"}], {"BDI": bdi})
