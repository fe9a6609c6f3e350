"""
Per-column centring/scaling specification.

A PreprocessSpec has two recognized options, ``center`` and ``scale``. Each is off
(None/False), on for every feature (True or "all"), a named column group
(resolved through ``groups``) or an explicit list of columns. It is
turned into an sklearn ColumnTransformer so it is fit on the training fold
only when used inside a Pipeline.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import StandardScaler

from .errors import InputFormatError

RECOGNIZED_OPTIONS = ("center", "scale")


@dataclass
class PreprocessSpec:
    center: object = None
    scale: object = None

    @classmethod
    def from_config(cls, cfg) -> "PreprocessSpec":
        """Build from a dict such as {"center": True, "scale": ["Gene1", "Gene2"]}."""
        if cfg is None:
            return cls()
        if isinstance(cfg, PreprocessSpec):
            return cfg
        if not isinstance(cfg, dict):
            raise InputFormatError(f"Preprocess config must be a dict, got {type(cfg).__name__}")
        unknown = set(cfg).difference(RECOGNIZED_OPTIONS)
        if unknown:
            raise InputFormatError(
                f"Unknown preprocess option(s) {sorted(unknown)}; expected {list(RECOGNIZED_OPTIONS)}"
            )
        return cls(center=cfg.get("center"), scale=cfg.get("scale"))

    def is_identity(self) -> bool:
        return not self.center and not self.scale

    def resolve(self, columns: Sequence[str],
                groups: Optional[Dict[str, List[str]]] = None) -> Dict[str, List[str]]:
        """Column lists for each option, restricted to `columns` and kept in table order."""
        return {
            "center": _resolve_option("center", self.center, columns, groups),
            "scale": _resolve_option("scale", self.scale, columns, groups),
        }

    def to_config(self) -> dict:
        return {"center": self.center, "scale": self.scale}


def _resolve_option(name, value, columns, groups):
    columns = list(columns)
    if value is None or value is False:
        return []
    if value is True or (isinstance(value, str) and value.lower() == "all"):
        return columns
    if isinstance(value, str):
        if not groups or value not in groups:
            raise InputFormatError(f"'{name}': unknown column group '{value}'")
        wanted = set(groups[value])
    else:
        wanted = set(value)
        missing = sorted(wanted.difference(columns))
        if missing:
            raise InputFormatError(f"'{name}': columns not in the feature table: {missing}")
    return [c for c in columns if c in wanted]


def make_transformer(spec: PreprocessSpec, columns: Sequence[str],
                     groups: Optional[Dict[str, List[str]]] = None):
    """
    ColumnTransformer implementing `spec` over `columns`, or "passthrough".

    Columns both centred and scaled get a full z-score; centre-only and
    scale-only columns get the matching half of StandardScaler. Output columns
    are grouped by block; use transformed_frame() to get them back in table
    order.
    """
    spec = PreprocessSpec.from_config(spec)
    if spec.is_identity():
        return "passthrough"
    sel = spec.resolve(columns, groups)
    center, scale = set(sel["center"]), set(sel["scale"])

    blocks = {"center_scale": [], "center": [], "scale": [], "keep": []}
    for col in columns:
        if col in center and col in scale:
            blocks["center_scale"].append(col)
        elif col in center:
            blocks["center"].append(col)
        elif col in scale:
            blocks["scale"].append(col)
        else:
            blocks["keep"].append(col)

    steps = {
        "center_scale": lambda: StandardScaler(with_mean=True, with_std=True),
        "center": lambda: StandardScaler(with_mean=True, with_std=False),
        "scale": lambda: StandardScaler(with_mean=False, with_std=True),
        "keep": lambda: "passthrough",
    }
    transformers = [(name, steps[name](), cols) for name, cols in blocks.items() if cols]
    return ColumnTransformer(transformers, remainder="drop", verbose_feature_names_out=False)


def transformed_frame(transformer, X: pd.DataFrame) -> pd.DataFrame:
    """Apply a fitted transformer and return a DataFrame in X's column order."""
    if isinstance(transformer, str) and transformer == "passthrough":
        return X.copy()
    Z = transformer.transform(X)
    names = list(transformer.get_feature_names_out())
    out = pd.DataFrame(np.asarray(Z, dtype=float), index=X.index, columns=names)
    return out[list(X.columns)]
