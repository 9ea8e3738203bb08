"""Ranking metrics for embedding benchmarks.

Metrics:
    1. AP@k (apk): average precision of a predicted sequence, cut at k
    2. MAP@k (mapk): mean of apk over paired ground truths / predictions
    3. DCG (dcg): discounted cumulative gain of a ranked similarity vector
    4. Cosine similarity of two vectors (zero vectors score 0)

apk follows the Kaggle reference implementation
(https://github.com/benhamner/Metrics): a predicted entity earns credit
only on its first occurrence, and the sum is divided by
min(|actual|, k).

DCG over a ranked vector v of similarities:
    DCG = SUM_{r: id_r in truth} (2^v_r - 1) / D(r)
    D(1) = 1, D(r) = log2(r) for r >= 2

Usage:
    from cuibench.evaluation.metrics import apk, mapk, dcg

    mapk(10, [{"C01", "C02"}], [["C02", "C09", "C01"]])
"""
from __future__ import annotations

import math
from typing import Collection, Iterable, List, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import InvalidArgumentError

RankedValues = Union[pd.Series, Mapping[str, float], Sequence[Tuple[str, float]]]


def apk(k: int, actual: Collection[str], predicted: Sequence[str]) -> float:
    """Average precision at k.

    Args:
        k: Cutoff, at least 1.
        actual: Ground-truth set (non-empty).
        predicted: Ordered predictions; duplicates earn no extra credit.

    Returns:
        Score in [0, 1].

    Raises:
        InvalidArgumentError: If k < 1 or the ground truth is empty.
    """
    if k < 1:
        raise InvalidArgumentError(f"apk needs k >= 1, got k={k}")
    truth = set(actual)
    if not truth:
        raise InvalidArgumentError("apk needs a non-empty ground-truth set")

    score = 0.0
    n_hits = 0
    seen = set()
    for i, p in enumerate(list(predicted)[:k]):
        if p in truth and p not in seen:
            n_hits += 1
            score += n_hits / (i + 1)
        seen.add(p)

    return score / min(len(truth), k)


def mapk(k: int, actual: Sequence[Collection[str]], predicted: Sequence[Sequence[str]]) -> float:
    """Mean average precision at k over paired sequences.

    Returns exactly 0.0 when either sequence is empty.

    Raises:
        InvalidArgumentError: If the sequences differ in length, or any
            pair is invalid for :func:`apk`.
    """
    if len(actual) == 0 or len(predicted) == 0:
        return 0.0
    if len(actual) != len(predicted):
        raise InvalidArgumentError(
            f"mapk needs equal-length inputs, got {len(actual)} ground truths "
            f"and {len(predicted)} predictions"
        )
    scores = [apk(k, a, p) for a, p in zip(actual, predicted)]
    return float(np.mean(scores))


def _ranked_items(ranked: RankedValues) -> List[Tuple[str, float]]:
    if isinstance(ranked, pd.Series):
        return [(str(i), float(v)) for i, v in ranked.items()]
    if isinstance(ranked, Mapping):
        return [(str(i), float(v)) for i, v in ranked.items()]
    return [(str(i), float(v)) for i, v in ranked]


def dcg(ranked: RankedValues, truth: Iterable[str]) -> float:
    """Discounted cumulative gain of a ranked, named value vector.

    Args:
        ranked: Entity -> value pairs in rank order (rank 1 first). A
            sorted ``pd.Series`` from ``Embedding.get_dist`` works directly.
        truth: Relevant entity IDs.

    Returns:
        DCG (non-negative for non-negative values); 0.0 when no ranked
        entity is relevant. Rank 1 contributes its raw gain (no
        log2(1) = 0 division).
    """
    relevant = set(truth)
    score = 0.0
    for rank, (entity, value) in enumerate(_ranked_items(ranked), start=1):
        if entity not in relevant:
            continue
        gain = 2.0 ** value - 1.0
        discount = 1.0 if rank == 1 else math.log2(rank)
        score += gain / discount
    return score


def cosine_similarity(vec1, vec2) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""
    a = np.asarray(vec1, dtype=float).ravel()
    b = np.asarray(vec2, dtype=float).ravel()
    if a.shape != b.shape:
        raise InvalidArgumentError(f"Vectors differ in length: {a.shape[0]} vs {b.shape[0]}")
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)
