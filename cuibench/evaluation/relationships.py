"""Reference-relationship benchmarks.

Each adapter turns raw relationship tables into tests, and each test
into a score for one embedding over a fixed CUI universe:

    comorbidity    Concept CUI -> Association CUIs of the same table   (AP or DCG per concept)
    causative      cause CUI -> result CUIs                            (MAP per table)
    semantic type  member CUI -> other members of the same label       (MAP per label)
    NDF-RT         treatment CUI -> comma-separated condition CUIs     (MAP per table)

Both the ranking and the ground truth are restricted to the universe:
the embedding is cut down to universe rows before any query is
ranked, and ground-truth CUIs outside the universe are dropped. A
query never counts as relevant to itself and is removed from its own
neighbour list.

A test that cannot be scored (bad schema, no query with a non-empty
ground truth) is logged and left out; the remaining tests still run.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import pandas as pd

from ..embedding import Embedding, neighbours
from ..errors import CuiBenchError, InvalidArgumentError
from .metrics import apk, dcg, mapk

logger = logging.getLogger("cuibench.evaluation.relationships")

COMORBIDITY_COLUMNS = ("CUI", "Type")
CAUSATIVE_COLUMNS = ("CUI_Cause", "CUI_Result")
SEMANTIC_TYPE_COLUMNS = ("CUI",)
SEMANTIC_TYPE_LABEL = "Semantic_Type"
NDF_RT_COLUMNS = ("Treatment", "Condition")

COMORBIDITY_METRICS = ("AP", "DCG")

_CONDITION_SPLIT = re.compile(r"[,;]")


@dataclass(frozen=True)
class ReferenceData:
    """Relationship tables grouped by kind, each keyed by test name."""
    comorbidities: Dict[str, pd.DataFrame] = field(default_factory=dict)
    causative: Dict[str, pd.DataFrame] = field(default_factory=dict)
    semantic_type: Dict[str, pd.DataFrame] = field(default_factory=dict)
    ndf_rt: Dict[str, pd.DataFrame] = field(default_factory=dict)

    def summary(self) -> Dict[str, int]:
        return {
            "comorbidities": len(self.comorbidities),
            "causative": len(self.causative),
            "semantic_type": len(self.semantic_type),
            "ndf_rt": len(self.ndf_rt),
        }

    def is_empty(self) -> bool:
        return not any(self.summary().values())


def require_columns(table: pd.DataFrame, columns: Sequence[str], name: str) -> None:
    """Raise InvalidArgumentError if ``table`` lacks any of ``columns``."""
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise InvalidArgumentError(
            f"Relationship table '{name}' is missing columns {missing}. "
            f"Found: {list(table.columns)}",
            key=name,
        )


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _in_universe(values: Iterable, embedding: Embedding) -> List[str]:
    """Distinct, sorted values that are rows of ``embedding``."""
    return sorted({str(v).strip() for v in values if str(v).strip() in embedding})


def _truth_by_query(
    pairs: Iterable[Tuple[str, Iterable[str]]],
    embedding: Embedding,
) -> Dict[str, Set[str]]:
    """Group (query, related...) pairs into query -> related set, universe only."""
    grouped: Dict[str, Set[str]] = {}
    for query, related in pairs:
        query = str(query).strip()
        if query not in embedding:
            continue
        truth = grouped.setdefault(query, set())
        truth.update(r for r in (str(x).strip() for x in related) if r in embedding)
    return grouped


def _map_over_queries(embedding: Embedding, k: int, truth: Mapping[str, Set[str]], test: str) -> float:
    """MAP@k over every query with a non-empty ground truth."""
    actual: List[Set[str]] = []
    predicted: List[List[str]] = []
    for query in sorted(truth):
        relevant = truth[query] - {query}
        if not relevant:
            logger.debug(f"[{test}] query {query} has no relevant CUIs in universe; skipped")
            continue
        actual.append(relevant)
        predicted.append(list(neighbours(embedding, query, k).index))

    if not actual:
        raise InvalidArgumentError(f"No scorable queries for test '{test}'", key=test)
    logger.debug(f"[{test}] scored {len(actual)} queries")
    return mapk(k, actual, predicted)


def _collect(tests: Iterable[Tuple[str, Callable[[], List[tuple]]]], kind: str) -> List[tuple]:
    """Run each test's scorer, omitting (and logging) tests that fail."""
    rows: List[tuple] = []
    for name, scorer in tests:
        try:
            rows.extend(scorer())
        except CuiBenchError as e:
            logger.warning(f"Skipping {kind} test '{name}': {e}")
    return rows


def _check_k(k: int) -> None:
    if k < 1:
        raise InvalidArgumentError(f"k must be >= 1, got {k}")


# ---------------------------------------------------------------------------
# Comorbidity
# ---------------------------------------------------------------------------

def benchmark_comorbidities(
    embedding: Embedding,
    k: int,
    universe: Iterable[str],
    tables: Mapping[str, pd.DataFrame],
    return_max: bool = False,
    metric: str = "DCG",
) -> pd.DataFrame:
    """Score every background Concept of every comorbidity table.

    Args:
        embedding: Embedding to evaluate.
        k: Neighbour cutoff.
        universe: Allowed CUIs.
        tables: Test name -> comorbidity table (CUI, Type).
        return_max: Keep only the best-scoring concept of each table.
        metric: "AP" (apk over top-k neighbour IDs) or "DCG" (dcg over
            top-k neighbour similarities).

    Returns:
        DataFrame with columns test, concept, score.
    """
    _check_k(k)
    metric = metric.upper()
    if metric not in COMORBIDITY_METRICS:
        raise InvalidArgumentError(f"Unsupported comorbidity metric: {metric}. Use one of {COMORBIDITY_METRICS}")
    restricted = embedding.restrict(universe)

    def score_table(name: str, table: pd.DataFrame) -> List[tuple]:
        require_columns(table, COMORBIDITY_COLUMNS, name)
        types = table["Type"].astype(str).str.strip()
        concepts = _in_universe(table.loc[types == "Concept", "CUI"], restricted)
        associations = set(_in_universe(table.loc[types == "Association", "CUI"], restricted))

        scores: List[tuple] = []
        for concept in concepts:
            truth = associations - {concept}
            if not truth:
                logger.debug(f"[{name}] concept {concept} has no associations in universe; skipped")
                continue
            top = neighbours(restricted, concept, k)
            if metric == "AP":
                score = apk(k, truth, list(top.index))
            else:
                score = dcg(top, truth)
            scores.append((name, concept, float(score)))

        if not scores:
            raise InvalidArgumentError(f"No scorable concepts for test '{name}'", key=name)
        if return_max:
            # max() keeps the first of tied concepts (sorted CUI order)
            return [max(scores, key=lambda row: row[2])]
        return scores

    rows = _collect(
        ((name, lambda n=name, t=table: score_table(n, t)) for name, table in sorted(tables.items())),
        "comorbidity",
    )
    return pd.DataFrame(rows, columns=["test", "concept", "score"])


# ---------------------------------------------------------------------------
# Causative
# ---------------------------------------------------------------------------

def benchmark_causative(
    embedding: Embedding,
    k: int,
    universe: Iterable[str],
    tables: Mapping[str, pd.DataFrame],
    reverse: bool = False,
) -> pd.DataFrame:
    """MAP@k of cause -> result retrieval, one test per table.

    With ``reverse=True`` each table adds a ``<name>_reverse`` test
    that queries results and expects their causes.

    Returns:
        DataFrame with columns test, score.
    """
    _check_k(k)
    restricted = embedding.restrict(universe)

    def score_table(name: str, table: pd.DataFrame, backwards: bool) -> List[tuple]:
        require_columns(table, CAUSATIVE_COLUMNS, name)
        query_col, truth_col = ("CUI_Result", "CUI_Cause") if backwards else ("CUI_Cause", "CUI_Result")
        pairs = ((q, [r]) for q, r in zip(table[query_col], table[truth_col]))
        truth = _truth_by_query(pairs, restricted)
        test = f"{name}_reverse" if backwards else name
        return [(test, _map_over_queries(restricted, k, truth, test))]

    tests = []
    for name, table in sorted(tables.items()):
        tests.append((name, lambda n=name, t=table: score_table(n, t, False)))
        if reverse:
            tests.append((f"{name}_reverse", lambda n=name, t=table: score_table(n, t, True)))

    rows = _collect(tests, "causative")
    return pd.DataFrame(rows, columns=["test", "score"])


# ---------------------------------------------------------------------------
# Semantic type
# ---------------------------------------------------------------------------

def _semantic_groups(tables: Mapping[str, pd.DataFrame]) -> List[Tuple[str, Optional[pd.Series], Optional[Exception]]]:
    """One (label, member CUIs, schema error) entry per label, pooled across tables."""
    members: Dict[str, List[pd.Series]] = {}
    groups = []
    for name, table in sorted(tables.items()):
        try:
            require_columns(table, SEMANTIC_TYPE_COLUMNS, name)
        except InvalidArgumentError as e:
            groups.append((name, None, e))
            continue
        if SEMANTIC_TYPE_LABEL in table.columns:
            labels = table[SEMANTIC_TYPE_LABEL].astype(str).str.strip()
            for label in labels.unique():
                members.setdefault(label, []).append(table.loc[labels == label, "CUI"])
        else:
            members.setdefault(name, []).append(table["CUI"])
    groups.extend((label, pd.concat(parts, ignore_index=True), None) for label, parts in members.items())
    return sorted(groups, key=lambda g: g[0])


def benchmark_semantic_type(
    embedding: Embedding,
    k: int,
    universe: Iterable[str],
    tables: Mapping[str, pd.DataFrame],
    max_queries: Optional[int] = None,
) -> pd.DataFrame:
    """MAP@k of retrieving CUIs that share a semantic-type label.

    A table with a ``Semantic_Type`` column yields one test per label;
    otherwise the whole table is one label named after it. Members of a
    label are pooled across every table that carries it.

    Args:
        max_queries: Cap on queries per label (first N members in sorted
            CUI order, so runs stay deterministic).

    Returns:
        DataFrame with columns test, score.
    """
    _check_k(k)
    restricted = embedding.restrict(universe)

    def score_label(label: str, cuis: Optional[pd.Series], error: Optional[Exception]) -> List[tuple]:
        if error is not None:
            raise error
        members = _in_universe(cuis, restricted)
        queries = members if max_queries is None else members[:max_queries]
        member_set = set(members)
        truth = {q: member_set for q in queries}
        return [(label, _map_over_queries(restricted, k, truth, label))]

    rows = _collect(
        ((label, lambda l=label, t=t, e=e: score_label(l, t, e)) for label, t, e in _semantic_groups(tables)),
        "semantic type",
    )
    return pd.DataFrame(rows, columns=["test", "score"])


# ---------------------------------------------------------------------------
# NDF-RT
# ---------------------------------------------------------------------------

def split_conditions(field_value: str) -> List[str]:
    """Split a Condition field ("C01, C02; C03") into CUIs."""
    return [c.strip() for c in _CONDITION_SPLIT.split(str(field_value)) if c.strip()]


def benchmark_ndf_rt(
    embedding: Embedding,
    k: int,
    universe: Iterable[str],
    tables: Mapping[str, pd.DataFrame],
    reverse: bool = False,
) -> pd.DataFrame:
    """MAP@k of treatment -> condition retrieval, one test per table.

    With ``reverse=True`` each table adds a ``<name>_reverse`` test
    that queries conditions and expects the treatments listing them.

    Returns:
        DataFrame with columns test, score.
    """
    _check_k(k)
    restricted = embedding.restrict(universe)

    def score_table(name: str, table: pd.DataFrame, backwards: bool) -> List[tuple]:
        require_columns(table, NDF_RT_COLUMNS, name)
        if backwards:
            pairs = (
                (cond, [treatment])
                for treatment, field_value in zip(table["Treatment"], table["Condition"])
                for cond in split_conditions(field_value)
            )
        else:
            pairs = (
                (treatment, split_conditions(field_value))
                for treatment, field_value in zip(table["Treatment"], table["Condition"])
            )
        truth = _truth_by_query(pairs, restricted)
        test = f"{name}_reverse" if backwards else name
        return [(test, _map_over_queries(restricted, k, truth, test))]

    tests = []
    for name, table in sorted(tables.items()):
        tests.append((name, lambda n=name, t=table: score_table(n, t, False)))
        if reverse:
            tests.append((f"{name}_reverse", lambda n=name, t=table: score_table(n, t, True)))

    rows = _collect(tests, "NDF-RT")
    return pd.DataFrame(rows, columns=["test", "score"])
