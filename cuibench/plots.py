"""Matplotlib renderings of benchmark tables and annotated projections."""
from __future__ import annotations

import logging
import os

import matplotlib.pyplot as plt
import pandas as pd

from .errors import InvalidArgumentError
from .projection import BACKGROUND

logger = logging.getLogger("cuibench.plots")


def _score_plot(df: pd.DataFrame, title: str, ylabel: str):
    missing = [c for c in ("test", "embedding_name", "score") if c not in df.columns]
    if missing:
        raise InvalidArgumentError(f"Score table is missing columns {missing}")

    tests = list(dict.fromkeys(df["test"]))
    positions = {t: i for i, t in enumerate(tests)}

    fig, ax = plt.subplots(figsize=(max(6.0, 0.3 * len(tests)), 5))
    for name, group in df.groupby("embedding_name", sort=False):
        ax.scatter([positions[t] for t in group["test"]], group["score"], label=name, s=18)

    ax.set_xticks(range(len(tests)))
    ax.set_xticklabels(tests, rotation=90, ha="center", fontsize=7)
    ax.set_title(title)
    ax.set_xlabel("Test")
    ax.set_ylabel(ylabel)
    ax.legend(frameon=False, title="embedding_name")
    fig.tight_layout()
    return fig


def plot_map(df: pd.DataFrame):
    """Scatter of MAP score per test, one colour per embedding."""
    return _score_plot(df, "MAP Benchmark", "Mean Average Precision")


def plot_dcg(df: pd.DataFrame):
    """Scatter of DCG score per test, one colour per embedding."""
    return _score_plot(df, "DCG Benchmark", "DCG Score")


def plot_projection(df: pd.DataFrame, title: str = "t-SNE"):
    if not {"X1", "X2"} <= set(df.columns):
        raise InvalidArgumentError("Projection frame needs X1 and X2 columns")

    fig, ax = plt.subplots(figsize=(7, 6))
    if "Type" not in df.columns:
        ax.scatter(df["X1"], df["X2"], s=6, alpha=0.1, color="#999999")
    else:
        background = df[df["Type"] == BACKGROUND]
        if len(background) > 0:
            ax.scatter(background["X1"], background["X2"], s=6, alpha=0.1,
                       color="#999999", label=BACKGROUND)
        for label, group in df[df["Type"] != BACKGROUND].groupby("Type", sort=True):
            ax.scatter(group["X1"], group["X2"], s=14, alpha=1.0, label=label)
        ax.legend(frameon=False)

    ax.set_title(title)
    ax.set_xlabel("X1")
    ax.set_ylabel("X2")
    fig.tight_layout()
    return fig


def save_figure(fig, path: str, dpi: int = 150) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    logger.info(f"Saving figure to {path}")
