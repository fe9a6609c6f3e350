# ----------------------------- Models -----------------------------
# Factory functions that build sklearn Pipelines and param grids for the
# LOOCV-tuned trainer. Each factory takes the (unfitted) preprocessing step and
# the seed so every experiment is reproducible without global state.

from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline
from sklearn.svm import SVC

from . import config
from .errors import InputFormatError


def make_lr_pipeline(prep="passthrough", seed=config.SEED):
    """Logistic Regression with L2 regularization; grid over C."""
    pipe = Pipeline([
        ("prep", prep),
        ("clf", LogisticRegression(
            penalty="l2", solver="lbfgs", max_iter=config.LR_MAX_ITER,
            class_weight="balanced", random_state=seed
        ))
    ])
    grid = {"clf__C": list(config.LR_C_GRID)}
    return pipe, grid


def make_svc_pipeline(prep="passthrough", seed=config.SEED):
    """Support Vector Classifier (linear/RBF kernels) with probability estimates."""
    pipe = Pipeline([
        ("prep", prep),
        ("clf", SVC(probability=True, class_weight="balanced", random_state=seed))
    ])
    grid = {
        "clf__kernel": ["linear", "rbf"],
        "clf__C": [0.01, 0.1, 1, 10],
        "clf__gamma": ["scale"],
    }
    return pipe, grid


def make_rf_pipeline(prep="passthrough", seed=config.SEED):
    """Random Forest; trees are scale-invariant but prep is kept for a uniform interface."""
    pipe = Pipeline([
        ("prep", prep),
        ("clf", RandomForestClassifier(
            n_estimators=500, class_weight="balanced", random_state=seed, n_jobs=1
        ))
    ])
    grid = {
        "clf__max_depth": [None, 3],
        "clf__min_samples_leaf": [1, 2],
    }
    return pipe, grid


# Map human-readable model names to factory callables
MODEL_FACTORIES = {
    "LogisticRegression": make_lr_pipeline,
    "SVC": make_svc_pipeline,
    "RandomForest": make_rf_pipeline,
}


def get_factory(model_name):
    try:
        return MODEL_FACTORIES[model_name]
    except KeyError:
        raise InputFormatError(f"Unknown model '{model_name}'; choose from {list(MODEL_FACTORIES)}") from None
