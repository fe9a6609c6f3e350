import numpy as np
import pandas as pd
import pytest

from lymphoma_fusion import config
from lymphoma_fusion.errors import FittingFailure, InputFormatError, InsufficientDataError
from lymphoma_fusion.loocv import (
    LoocvTrainer, check_trainable, safe_kappa, select_best, train_loocv
)

PREP = {"center": True, "scale": True}


def test_results_table_and_selection(bdi, small_grid):
    model = train_loocv(bdi, preprocess=PREP, param_grid=small_grid)
    res = model.results
    assert len(res) == 2
    assert {"C", "Accuracy", "Kappa", "n_correct", "n", "selected"} <= set(res.columns)
    assert res["selected"].sum() == 1
    best = res[res["selected"]].iloc[0]
    assert best["Kappa"] == pytest.approx(np.nanmax(res["Kappa"]))
    assert model.best_params == {"clf__C": best["C"]}
    assert (res["n"] == len(bdi)).all()


def test_same_seed_same_model(bdi, small_grid):
    a = train_loocv(bdi, preprocess=PREP, param_grid=small_grid, seed=7)
    b = train_loocv(bdi, preprocess=PREP, param_grid=small_grid, seed=7)
    assert a.best_params == b.best_params
    pd.testing.assert_frame_equal(a.results, b.results)
    np.testing.assert_array_equal(a.predict(bdi), b.predict(bdi))


def test_probability_of_resistant(bdi, small_grid):
    model = train_loocv(bdi, preprocess=PREP, param_grid=small_grid)
    p = model.predict_proba(bdi)
    assert p.shape == (len(bdi),)
    assert ((p >= 0) & (p <= 1)).all()
    assert set(model.classes) == set(config.CLASSES)


def test_default_grid_is_regularization_path(bdi):
    trainer = LoocvTrainer(preprocess=PREP)
    _, grid = trainer.build([c for c in bdi.columns if c != config.LABEL_COL])
    assert list(grid) == ["clf__C"]
    assert len(grid["clf__C"]) == len(config.LR_C_GRID)


def test_single_class_rejected(bdi):
    X = bdi.drop(columns=config.LABEL_COL)
    with pytest.raises(InsufficientDataError):
        LoocvTrainer().fit(X, pd.Series(["Resistant"] * len(X), index=X.index))


def test_singleton_class_rejected():
    with pytest.raises(InsufficientDataError):
        check_trainable(pd.Series(["Resistant"] * 5 + ["Sensitive"]))


def test_unknown_model():
    with pytest.raises(InputFormatError):
        LoocvTrainer(model_name="XGBoost")


def test_select_best_rules():
    res = pd.DataFrame({"Kappa": [np.nan, 0.4, 0.4, 0.1], "Accuracy": [0.9, 0.7, 0.8, 0.6]})
    assert select_best(res) == 1
    res = pd.DataFrame({"Kappa": [np.nan, np.nan], "Accuracy": [0.5, 0.6]})
    assert select_best(res) == 1


def test_kappa_undefined_is_nan():
    assert np.isnan(safe_kappa(["Resistant"] * 3, ["Resistant"] * 3))
    assert safe_kappa(["Resistant", "Sensitive"], ["Resistant", "Sensitive"]) == pytest.approx(1.0)


def test_strict_convergence_raises(bdi, monkeypatch):
    monkeypatch.setattr(config, "LR_MAX_ITER", 1)
    X = bdi.drop(columns=config.LABEL_COL)
    trainer = LoocvTrainer(preprocess=PREP, strict_convergence=True)
    with pytest.raises(FittingFailure, match="did not converge"):
        trainer.fit(X, bdi[config.LABEL_COL], {"clf__C": [100.0]})


def test_convergence_warning_logged_when_lenient(bdi, monkeypatch, capsys):
    monkeypatch.setattr(config, "LR_MAX_ITER", 1)
    X = bdi.drop(columns=config.LABEL_COL)
    model, _ = LoocvTrainer(preprocess=PREP).fit(X, bdi[config.LABEL_COL], {"clf__C": [100.0]})
    assert model.best_params == {"clf__C": 100.0}
    assert "did not converge" in capsys.readouterr().out


def test_estimator_error_becomes_fitting_failure(bdi):
    X = bdi.drop(columns=config.LABEL_COL)
    with pytest.raises(FittingFailure) as exc:
        LoocvTrainer(preprocess=PREP).fit(X, bdi[config.LABEL_COL], {"clf__C": [-1.0]})
    assert isinstance(exc.value.__cause__, ValueError)
