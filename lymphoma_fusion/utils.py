"""Logging and small I/O helpers shared by the pipeline modules."""

import os
import sys
from datetime import datetime

import pandas as pd


# ----------------------------- Time + logging -----------------------------
def ts():
    """Timestamp for logging."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def fmt_secs(sec):
    """Pretty print seconds as H:MM:SS."""
    m, s = divmod(int(sec), 60)
    h, m = divmod(m, 60)
    return f"{h:d}:{m:02d}:{s:02d}"


def log(msg, *, end="\n", file=None):
    """Console log with timestamp."""
    print(f"[{ts()}] {msg}", end=end, file=file if file is not None else sys.stdout)


class Tee:
    """Write to several streams at once (console + run log)."""

    def __init__(self, *files):
        self.files = files

    def write(self, obj):
        for f in self.files:
            f.write(obj)
            f.flush()

    def flush(self):
        for f in self.files:
            f.flush()


# ----------------------------- Output helpers -----------------------------
def ensure_dir(path):
    os.makedirs(path, exist_ok=True)
    return path


def write_tsv(df: pd.DataFrame, path: str, index: bool = False):
    """Write a TSV, creating the parent directory if needed."""
    parent = os.path.dirname(path)
    if parent:
        ensure_dir(parent)
    df.to_csv(path, sep="\t", index=index)
    log(f"[OK] wrote {path} ({df.shape[0]} rows)")
    return path
