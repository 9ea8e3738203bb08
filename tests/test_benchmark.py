"""Tests for benchmark_map / benchmark_dcg orchestration and CUI alignment."""
import numpy as np
import pandas as pd
import pytest

from cuibench.embedding import Embedding
from cuibench.errors import InvalidArgumentError
from cuibench.evaluation import relationships
from cuibench.evaluation.benchmark import (
    ScoreRecord,
    align_universes,
    benchmark_dcg,
    benchmark_map,
    name_references,
    summarize_scores,
)
from cuibench.evaluation.relationships import ReferenceData

from conftest import VECTORS


def _shifted(ids, seed):
    rng = np.random.default_rng(seed)
    return Embedding.from_dict({i: list(np.asarray(VECTORS[i]) + rng.normal(0, 0.05, 3)) for i in ids})


class TestNaming:
    def test_mapping_keys(self, embedding):
        named = name_references({"devine": embedding, "claims": embedding})
        assert [n for n, _ in named] == ["devine", "claims"]

    def test_sequence_defaults(self, embedding):
        named = name_references([embedding, embedding])
        assert [n for n, _ in named] == ["reference_1", "reference_2"]

    def test_none(self):
        assert name_references(None) == []


class TestAlignUniverses:
    def test_intersection(self, embedding):
        ref = _shifted(["C001", "C002", "C004", "C005"], 1)
        target_u, ref_u = align_universes(embedding, [("r", ref)], take_intersection=True)
        assert target_u == {"C001", "C002", "C004", "C005"}
        assert ref_u == [target_u]

    def test_pairwise(self, embedding):
        r1 = _shifted(["C001", "C002"], 1)
        r2 = _shifted(["C004", "C005", "C006"], 2)
        target_u, ref_u = align_universes(embedding, [("a", r1), ("b", r2)], take_intersection=False)
        assert target_u == set(VECTORS)
        assert ref_u == [{"C001", "C002"}, {"C004", "C005", "C006"}]


class TestBenchmarkMap:
    def test_target_only(self, embedding, reference):
        df = benchmark_map(embedding, 2, reference, "mine")
        assert list(df.columns) == ["test", "embedding_name", "score"]
        scores = dict(zip(df["test"], df["score"]))
        assert scores == pytest.approx({
            "causative_may_cause": 1.0,
            "semantic_type_T047": 1.0,
            "semantic_type_T121": 1.0,
            "ndf_rt_may_treat": 0.75,
            "comorbidity_obesity_C001": 1.0,
        })
        assert set(df["embedding_name"]) == {"mine"}

    def test_scores_in_unit_interval(self, embedding, reference):
        refs = {"a": _shifted(list(VECTORS), 3), "b": _shifted(list(VECTORS), 4)}
        df = benchmark_map(embedding, 3, reference, "mine", refs)
        assert df["score"].between(0.0, 1.0).all()
        assert list(dict.fromkeys(df["embedding_name"])) == ["mine", "a", "b"]

    def test_label_required(self, embedding, reference):
        with pytest.raises(InvalidArgumentError, match="label"):
            benchmark_map(embedding, 2, reference, "")

    @pytest.mark.parametrize("k", [0, -3])
    def test_invalid_k_fails_call(self, embedding, reference, k):
        with pytest.raises(InvalidArgumentError, match="k must be"):
            benchmark_map(embedding, k, reference, "mine")
        with pytest.raises(InvalidArgumentError, match="k must be"):
            benchmark_dcg(embedding, k, reference, "mine")

    def test_reference_named_like_target(self, embedding, reference):
        other = _shifted(list(VECTORS), 6)
        with pytest.raises(InvalidArgumentError, match="unique"):
            benchmark_map(embedding, 2, reference, "mine", {"mine": other})

    def test_default_name_collision(self, embedding, reference):
        other = _shifted(list(VECTORS), 7)
        with pytest.raises(InvalidArgumentError, match="reference_1"):
            benchmark_dcg(embedding, 2, reference, "reference_1", [other])

    def test_deterministic(self, embedding, reference):
        refs = [_shifted(list(VECTORS), 5)]
        first = benchmark_map(embedding, 2, reference, "mine", refs)
        second = benchmark_map(embedding, 2, reference, "mine", refs)
        pd.testing.assert_frame_equal(first, second)
        assert set(first["embedding_name"]) == {"mine", "reference_1"}

    def test_bad_table_does_not_abort(self, embedding, reference):
        broken = ReferenceData(
            comorbidities=reference.comorbidities,
            causative={"broken": pd.DataFrame({"wrong": ["C001"]})},
            semantic_type=reference.semantic_type,
            ndf_rt=reference.ndf_rt,
        )
        df = benchmark_map(embedding, 2, broken, "mine")
        assert not any(t.startswith("causative_") for t in df["test"])
        assert "semantic_type_T047" in set(df["test"])

    def test_empty_reference(self, embedding):
        df = benchmark_map(embedding, 2, ReferenceData(), "mine")
        assert df.empty
        assert list(df.columns) == ["test", "embedding_name", "score"]


class TestIntersection:
    """Every embedding is ranked and judged on the shared CUIs only."""

    @pytest.fixture
    def pair(self):
        target = Embedding.from_dict({
            "C0001": [1.0, 0.0], "C0002": [0.9, 0.1], "C0003": [0.95, 0.05],
        })
        ref = Embedding.from_dict({
            "C0001": [1.0, 0.0], "C0002": [0.8, 0.2], "C0004": [0.99, 0.01],
        })
        return target, ref

    @pytest.fixture
    def tables(self):
        return ReferenceData(
            causative={"t": pd.DataFrame({"CUI_Cause": ["C0001"], "CUI_Result": ["C0002"]})},
            comorbidities={"c": pd.DataFrame({
                "CUI": ["C0001", "C0002", "C0003"],
                "Type": ["Concept", "Association", "Association"],
            })},
        )

    def test_map_sees_only_shared(self, pair, tables, monkeypatch):
        target, ref = pair
        seen = []
        real_mapk, real_apk = relationships.mapk, relationships.apk

        def spy_mapk(k, actual, predicted):
            seen.extend(predicted)
            seen.extend(actual)
            return real_mapk(k, actual, predicted)

        def spy_apk(k, actual, predicted):
            seen.extend([predicted, actual])
            return real_apk(k, actual, predicted)

        monkeypatch.setattr(relationships, "mapk", spy_mapk)
        monkeypatch.setattr(relationships, "apk", spy_apk)
        df = benchmark_map(target, 5, tables, "target", {"ref": ref})

        shared = {"C0001", "C0002"}
        assert seen
        assert all(set(ids) <= shared for ids in seen)
        # C0003 would outrank C0002 for the target without the intersection
        assert set(df["score"]) == {1.0}

    def test_dcg_sees_only_shared(self, pair, tables, monkeypatch):
        target, ref = pair
        seen = []
        real_dcg = relationships.dcg

        def spy(ranked, truth):
            seen.append(set(ranked.index) | set(truth))
            return real_dcg(ranked, truth)

        monkeypatch.setattr(relationships, "dcg", spy)
        df = benchmark_dcg(target, 5, tables, "target", [ref])
        assert len(seen) == 2
        assert all(ids <= {"C0001", "C0002"} for ids in seen)
        assert list(df["test"]) == ["c_C0001", "c_C0001"]
        assert list(df["embedding_name"]) == ["target", "reference_1"]

    def test_pairwise_keeps_target_universe(self, pair, tables, monkeypatch):
        target, ref = pair
        seen = []
        real_dcg = relationships.dcg

        def spy(ranked, truth):
            seen.append(set(ranked.index))
            return real_dcg(ranked, truth)

        monkeypatch.setattr(relationships, "dcg", spy)
        benchmark_dcg(target, 5, tables, "target", [ref], take_intersection=False)
        assert seen[0] == {"C0002", "C0003"}
        assert seen[1] == {"C0002"}


class TestBenchmarkDcg:
    def test_test_names(self, embedding, reference):
        df = benchmark_dcg(embedding, 2, reference, "mine")
        assert list(df["test"]) == ["obesity_C001"]
        assert df.loc[0, "score"] > 0

    def test_return_max(self, embedding, reference):
        table = pd.DataFrame({
            "CUI": ["C001", "C006", "C002"],
            "Type": ["Concept", "Concept", "Association"],
        })
        ref = ReferenceData(comorbidities={"t": table})
        full = benchmark_dcg(embedding, 2, ref, "mine")
        best = benchmark_dcg(embedding, 2, ref, "mine", return_max=True)
        assert list(full["test"]) == ["t_C001", "t_C006"]
        assert list(best["test"]) == ["t_C001"]
        assert best.loc[0, "score"] == pytest.approx(full["score"].max())


class TestSummarize:
    def test_mean_per_embedding(self):
        df = pd.DataFrame([
            ScoreRecord("a", "x", 1.0).__dict__,
            ScoreRecord("b", "x", 0.5).__dict__,
            ScoreRecord("a", "y", 0.0).__dict__,
        ])
        summary = summarize_scores(df)
        assert summary.to_dict(orient="records") == [
            {"embedding_name": "x", "n_tests": 2, "mean_score": 0.75},
            {"embedding_name": "y", "n_tests": 1, "mean_score": 0.0},
        ]

    def test_empty(self):
        summary = summarize_scores(pd.DataFrame(columns=["test", "embedding_name", "score"]))
        assert summary.empty
