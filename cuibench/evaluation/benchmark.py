"""Benchmark orchestration over a target embedding and reference embeddings.

Evaluates one embedding (and optionally several reference embeddings)
against the reference-relationship tables and returns a long-format
score table:

    test, embedding_name, score

CUI universe alignment:
    take_intersection=True   one universe = target CUIs ∩ every reference's CUIs,
                             shared by all embeddings and all tests
    take_intersection=False  target is scored on its own CUIs; each reference
                             on (target CUIs ∩ that reference's CUIs)

Usage:
    python -m cuibench.evaluation.benchmark \\
        --embedding data/cui2vec.txt --label cui2vec \\
        --reference-dir data/reference --k 40 --metric map
"""
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import pandas as pd

from ..embedding import Embedding
from ..errors import CuiBenchError, InvalidArgumentError
from .relationships import (
    ReferenceData,
    benchmark_causative,
    benchmark_comorbidities,
    benchmark_ndf_rt,
    benchmark_semantic_type,
)

logger = logging.getLogger("cuibench.evaluation.benchmark")

RESULT_COLUMNS = ["test", "embedding_name", "score"]

ReferenceEmbeddings = Union[Mapping[str, Embedding], Sequence[Embedding], None]


@dataclass(frozen=True)
class ScoreRecord:
    """One (test, embedding, score) row of a benchmark result table."""
    test: str
    embedding_name: str
    score: float


def _to_frame(records: List[ScoreRecord]) -> pd.DataFrame:
    df = pd.DataFrame([asdict(r) for r in records], columns=RESULT_COLUMNS)
    df["score"] = df["score"].astype(float)
    return df


def name_references(ref_embeddings: ReferenceEmbeddings) -> List[Tuple[str, Embedding]]:
    """Label reference embeddings.

    Mapping keys are used as labels; a sequence (or an empty key) falls
    back to ``reference_<i>`` in iteration order, 1-based.
    """
    if ref_embeddings is None:
        return []
    if isinstance(ref_embeddings, Mapping):
        items = list(ref_embeddings.items())
    else:
        items = [(None, e) for e in ref_embeddings]
    return [(name or f"reference_{i}", emb) for i, (name, emb) in enumerate(items, start=1)]


def align_universes(
    embedding: Embedding,
    references: Sequence[Tuple[str, Embedding]],
    take_intersection: bool = True,
) -> Tuple[Set[str], List[Set[str]]]:
    """CUI universe for the target and for each reference embedding.

    Returns:
        (target_universe, [universe per reference, same order])
    """
    target_keys = embedding.key_set()
    if take_intersection:
        shared = set(target_keys)
        for _, ref in references:
            shared &= ref.key_set()
        logger.info(
            f"CUI universe (intersection of {len(references) + 1} embeddings): {len(shared)} CUIs"
        )
        return shared, [shared for _ in references]

    per_ref = []
    for name, ref in references:
        pair = target_keys & ref.key_set()
        logger.info(f"CUI universe (target ∩ {name}): {len(pair)} CUIs")
        per_ref.append(pair)
    return set(target_keys), per_ref


def _run_adapter(kind: str, embedding_name: str, fn: Callable[[], pd.DataFrame]) -> Optional[pd.DataFrame]:
    """Run one relationship adapter; a failure drops only that adapter's tests."""
    try:
        return fn()
    except CuiBenchError as e:
        logger.warning(f"Skipping {kind} benchmark for {embedding_name}: {e}")
        return None


def _map_records(
    embedding: Embedding,
    embedding_name: str,
    k: int,
    universe: Set[str],
    reference: ReferenceData,
) -> List[ScoreRecord]:
    records: List[ScoreRecord] = []

    causative = _run_adapter("causative", embedding_name, lambda: benchmark_causative(
        embedding, k, universe, reference.causative))
    if causative is not None:
        records.extend(ScoreRecord(f"causative_{t}", embedding_name, s)
                       for t, s in causative.itertuples(index=False))

    semantic = _run_adapter("semantic type", embedding_name, lambda: benchmark_semantic_type(
        embedding, k, universe, reference.semantic_type))
    if semantic is not None:
        records.extend(ScoreRecord(f"semantic_type_{t}", embedding_name, s)
                       for t, s in semantic.itertuples(index=False))

    ndf_rt = _run_adapter("NDF-RT", embedding_name, lambda: benchmark_ndf_rt(
        embedding, k, universe, reference.ndf_rt))
    if ndf_rt is not None:
        records.extend(ScoreRecord(f"ndf_rt_{t}", embedding_name, s)
                       for t, s in ndf_rt.itertuples(index=False))

    comorbidity = _run_adapter("comorbidity", embedding_name, lambda: benchmark_comorbidities(
        embedding, k, universe, reference.comorbidities, return_max=True, metric="AP"))
    if comorbidity is not None:
        records.extend(ScoreRecord(f"comorbidity_{t}_{c}", embedding_name, s)
                       for t, c, s in comorbidity.itertuples(index=False))

    logger.info(f"MAP benchmark for {embedding_name}: {len(records)} tests scored on {len(universe)} CUIs")
    return records


def _dcg_records(
    embedding: Embedding,
    embedding_name: str,
    k: int,
    universe: Set[str],
    reference: ReferenceData,
    return_max: bool,
) -> List[ScoreRecord]:
    comorbidity = _run_adapter("comorbidity", embedding_name, lambda: benchmark_comorbidities(
        embedding, k, universe, reference.comorbidities, return_max=return_max, metric="DCG"))
    if comorbidity is None:
        return []
    records = [ScoreRecord(f"{t}_{c}", embedding_name, s)
               for t, c, s in comorbidity.itertuples(index=False)]
    logger.info(f"DCG benchmark for {embedding_name}: {len(records)} tests scored on {len(universe)} CUIs")
    return records


def _plan(
    embedding: Embedding,
    k: int,
    label: str,
    ref_embeddings: ReferenceEmbeddings,
    take_intersection: bool,
) -> List[Tuple[str, Embedding, Set[str]]]:
    if k < 1:
        raise InvalidArgumentError(f"k must be >= 1, got {k}")
    if not label:
        raise InvalidArgumentError("A label for the target embedding is required")
    references = name_references(ref_embeddings)
    names = [label] + [name for name, _ in references]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise InvalidArgumentError(f"Embedding names must be unique, got duplicates: {duplicates}")
    target_universe, ref_universes = align_universes(embedding, references, take_intersection)
    plan = [(label, embedding, target_universe)]
    plan.extend((name, ref, universe) for (name, ref), universe in zip(references, ref_universes))
    return plan


def benchmark_map(
    embedding: Embedding,
    k: int,
    reference: ReferenceData,
    label: str,
    ref_embeddings: ReferenceEmbeddings = None,
    take_intersection: bool = True,
) -> pd.DataFrame:
    """Benchmark embeddings on every MAP-scored relationship test.

    Runs the causative, semantic-type, NDF-RT and comorbidity (AP, best
    concept per table) benchmarks for the target and each reference.

    Args:
        embedding: Target embedding.
        k: Neighbour cutoff.
        reference: Relationship tables.
        label: embedding_name for the target's rows.
        ref_embeddings: Named mapping or sequence of reference embeddings.
        take_intersection: Score everything on the CUIs shared by all embeddings.

    Returns:
        DataFrame with columns test, embedding_name, score.
    """
    records: List[ScoreRecord] = []
    for name, emb, universe in _plan(embedding, k, label, ref_embeddings, take_intersection):
        records.extend(_map_records(emb, name, k, universe, reference))
    return _to_frame(records)


def benchmark_dcg(
    embedding: Embedding,
    k: int,
    reference: ReferenceData,
    label: str,
    ref_embeddings: ReferenceEmbeddings = None,
    take_intersection: bool = True,
    return_max: bool = False,
) -> pd.DataFrame:
    """Benchmark embeddings on the comorbidity tables with DCG.

    Args:
        return_max: Report only the best concept of each comorbidity
            table instead of every concept.

    Returns:
        DataFrame with columns test, embedding_name, score.
    """
    records: List[ScoreRecord] = []
    for name, emb, universe in _plan(embedding, k, label, ref_embeddings, take_intersection):
        records.extend(_dcg_records(emb, name, k, universe, reference, return_max))
    return _to_frame(records)


def summarize_scores(df: pd.DataFrame) -> pd.DataFrame:
    """Mean score per embedding plus the number of tests it was scored on."""
    if df.empty:
        return pd.DataFrame(columns=["embedding_name", "n_tests", "mean_score"])
    summary = (
        df.groupby("embedding_name", sort=False)["score"]
        .agg(n_tests="count", mean_score="mean")
        .reset_index()
    )
    return summary


def main():
    from ..io import load_embeddings, load_reference_data, write_csv

    ap = argparse.ArgumentParser(description="Benchmark CUI embeddings against reference relationships")
    ap.add_argument("--embedding", required=True, help="embedding text file (first column = CUI)")
    ap.add_argument("--label", required=True, help="name for the target embedding in the output")
    ap.add_argument("--reference-dir", required=True, help="directory with comorbidities/, causative/, ...")
    ap.add_argument("--ref-embedding", action="append", default=[],
                    help="reference embedding as LABEL=PATH (repeatable)")
    ap.add_argument("--k", type=int, default=40, help="neighbour cutoff")
    ap.add_argument("--metric", choices=["map", "dcg"], default="map")
    ap.add_argument("--no-intersection", action="store_true",
                    help="align each reference with the target pairwise instead of globally")
    ap.add_argument("--return-max", action="store_true", help="DCG: keep best concept per table")
    ap.add_argument("--output", default=None, help="output CSV path")
    args = ap.parse_args()

    embedding = load_embeddings(args.embedding)
    refs: Dict[str, Embedding] = {}
    for pair in args.ref_embedding:
        if "=" not in pair:
            raise SystemExit(f"--ref-embedding must be LABEL=PATH, got: {pair}")
        ref_label, ref_path = pair.split("=", 1)
        refs[ref_label] = load_embeddings(ref_path)
    reference = load_reference_data(args.reference_dir)

    if args.metric == "map":
        df = benchmark_map(embedding, args.k, reference, args.label, refs or None,
                           take_intersection=not args.no_intersection)
    else:
        df = benchmark_dcg(embedding, args.k, reference, args.label, refs or None,
                           take_intersection=not args.no_intersection, return_max=args.return_max)

    if args.output:
        write_csv(args.output, df)
        print(f"Results written to {args.output}")
    else:
        print(df.to_string(index=False))
    print(json.dumps(summarize_scores(df).to_dict(orient="records"), indent=2, default=str))


if __name__ == "__main__":
    main()
