"""Tests for the four relationship benchmark adapters."""
import math

import pandas as pd
import pytest

from cuibench.embedding import Embedding
from cuibench.errors import InvalidArgumentError
from cuibench.evaluation import relationships
from cuibench.evaluation.relationships import (
    ReferenceData,
    benchmark_causative,
    benchmark_comorbidities,
    benchmark_ndf_rt,
    benchmark_semantic_type,
    split_conditions,
)

from conftest import VECTORS


def _cos(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b)))


ALL = set(VECTORS)


class TestComorbidities:
    def test_ap_perfect(self, embedding, comorbidity_table):
        df = benchmark_comorbidities(embedding, 2, ALL, {"obesity": comorbidity_table}, metric="AP")
        assert list(df.columns) == ["test", "concept", "score"]
        assert df.to_dict(orient="records") == [{"test": "obesity", "concept": "C001", "score": 1.0}]

    def test_dcg_value(self, embedding, comorbidity_table):
        df = benchmark_comorbidities(embedding, 2, ALL, {"obesity": comorbidity_table})
        s2 = _cos(VECTORS["C001"], VECTORS["C002"])
        s3 = _cos(VECTORS["C001"], VECTORS["C003"])
        # rank 1 undiscounted, rank 2 discounted by log2(2) = 1
        assert df.loc[0, "score"] == pytest.approx((2 ** s2 - 1) + (2 ** s3 - 1))

    def test_one_row_per_concept(self, embedding):
        table = pd.DataFrame({
            "CUI": ["C001", "C004", "C002", "C005"],
            "Type": ["Concept", "Concept", "Association", "Association"],
        })
        df = benchmark_comorbidities(embedding, 1, ALL, {"t": table}, metric="AP")
        assert list(df["concept"]) == ["C001", "C004"]
        # C001's nearest is C002; C004's nearest is C005
        assert list(df["score"]) == [1.0, 1.0]

    def test_return_max(self, embedding):
        table = pd.DataFrame({
            "CUI": ["C001", "C006", "C002"],
            "Type": ["Concept", "Concept", "Association"],
        })
        df = benchmark_comorbidities(embedding, 2, ALL, {"t": table}, return_max=True, metric="AP")
        assert len(df) == 1
        assert df.loc[0, "concept"] == "C001"

    def test_universe_filters_truth(self, embedding, comorbidity_table):
        universe = ALL - {"C003"}
        df = benchmark_comorbidities(embedding, 1, universe, {"obesity": comorbidity_table}, metric="AP")
        assert df.loc[0, "score"] == 1.0

    def test_unscorable_table_skipped(self, embedding, comorbidity_table):
        only_concepts = pd.DataFrame({"CUI": ["C001"], "Type": ["Concept"]})
        tables = {"obesity": comorbidity_table, "lonely": only_concepts}
        df = benchmark_comorbidities(embedding, 2, ALL, tables)
        assert list(df["test"]) == ["obesity"]

    def test_bad_schema_skipped(self, embedding, comorbidity_table):
        tables = {"obesity": comorbidity_table, "broken": pd.DataFrame({"CUI": ["C001"]})}
        df = benchmark_comorbidities(embedding, 2, ALL, tables)
        assert list(df["test"]) == ["obesity"]

    def test_unknown_metric(self, embedding, comorbidity_table):
        with pytest.raises(InvalidArgumentError, match="Unsupported"):
            benchmark_comorbidities(embedding, 2, ALL, {"o": comorbidity_table}, metric="NDCG")

    def test_empty_tables(self, embedding):
        df = benchmark_comorbidities(embedding, 2, ALL, {})
        assert df.empty
        assert list(df.columns) == ["test", "concept", "score"]


class TestCausative:
    def test_forward(self, embedding, causative_table):
        df = benchmark_causative(embedding, 2, ALL, {"may_cause": causative_table})
        assert df.to_dict(orient="records") == [{"test": "may_cause", "score": 1.0}]

    def test_reverse(self, embedding, causative_table):
        df = benchmark_causative(embedding, 2, ALL, {"may_cause": causative_table}, reverse=True)
        scores = dict(zip(df["test"], df["score"]))
        # C002 -> C001 at rank 1, C003 -> C001 at rank 2, C005 -> C004 at rank 1
        assert scores["may_cause_reverse"] == pytest.approx((1.0 + 0.5 + 1.0) / 3)
        assert scores["may_cause"] == pytest.approx(1.0)

    def test_self_pairs_ignored(self, embedding):
        table = pd.DataFrame({"CUI_Cause": ["C001", "C004"], "CUI_Result": ["C001", "C005"]})
        df = benchmark_causative(embedding, 1, ALL, {"t": table})
        assert df.loc[0, "score"] == 1.0

    def test_nothing_in_universe(self, embedding, causative_table):
        df = benchmark_causative(embedding, 2, {"C006", "C007"}, {"may_cause": causative_table})
        assert df.empty

    def test_invalid_k(self, embedding, causative_table):
        with pytest.raises(InvalidArgumentError):
            benchmark_causative(embedding, 0, ALL, {"may_cause": causative_table})


class TestSemanticType:
    def test_one_test_per_label(self, embedding, semantic_table):
        df = benchmark_semantic_type(embedding, 2, ALL, {"semantic": semantic_table})
        # T999 has a single member, so nothing is left to retrieve
        assert list(df["test"]) == ["T047", "T121"]
        assert list(df["score"]) == [1.0, 1.0]

    def test_label_from_table_name(self, embedding):
        table = pd.DataFrame({"CUI": ["C004", "C005"]})
        df = benchmark_semantic_type(embedding, 1, ALL, {"T184": table})
        assert df.to_dict(orient="records") == [{"test": "T184", "score": 1.0}]

    def test_label_pooled_across_tables(self, embedding):
        tables = {
            "a": pd.DataFrame({"CUI": ["C001", "C002"], "Semantic_Type": ["T047", "T047"]}),
            "b": pd.DataFrame({"CUI": ["C004", "C005"], "Semantic_Type": ["T047", "T047"]}),
        }
        df = benchmark_semantic_type(embedding, 1, ALL, tables)
        assert df["test"].is_unique
        assert list(df["test"]) == ["T047"]
        # every member's nearest neighbour is another T047 member
        assert df.loc[0, "score"] == pytest.approx(1.0)

    def test_pooled_label_uses_all_members(self, embedding):
        tables = {
            "a": pd.DataFrame({"CUI": ["C001", "C002"], "Semantic_Type": ["T047", "T047"]}),
            "b": pd.DataFrame({"CUI": ["C004", "C006"], "Semantic_Type": ["T047", "T047"]}),
        }
        pooled = pd.concat(tables.values(), ignore_index=True)
        split = benchmark_semantic_type(embedding, 2, ALL, tables)
        together = benchmark_semantic_type(embedding, 2, ALL, {"all": pooled})
        pd.testing.assert_frame_equal(split, together)

    def test_max_queries(self, embedding, semantic_table, monkeypatch):
        seen = []
        real_mapk = relationships.mapk

        def spy(k, actual, predicted):
            seen.append(len(actual))
            return real_mapk(k, actual, predicted)

        monkeypatch.setattr(relationships, "mapk", spy)
        benchmark_semantic_type(embedding, 2, ALL, {"semantic": semantic_table}, max_queries=1)
        assert seen == [1, 1]


class TestNdfRt:
    def test_split_conditions(self):
        assert split_conditions("C1, C2;C3 ,") == ["C1", "C2", "C3"]
        assert split_conditions("") == []

    def test_forward(self, embedding, ndf_rt_table):
        df = benchmark_ndf_rt(embedding, 2, ALL, {"may_treat": ndf_rt_table})
        # C004: C005 at rank 1, C003 at rank 2 (C006 missed) -> 0.5 ; C001: C002 at rank 1 -> 1.0
        assert df.loc[0, "score"] == pytest.approx(0.75)

    def test_reverse_adds_test(self, embedding, ndf_rt_table):
        df = benchmark_ndf_rt(embedding, 2, ALL, {"may_treat": ndf_rt_table}, reverse=True)
        assert list(df["test"]) == ["may_treat", "may_treat_reverse"]
        assert df["score"].between(0.0, 1.0).all()


class TestReferenceData:
    def test_summary(self, reference):
        assert reference.summary() == {"comorbidities": 1, "causative": 1, "semantic_type": 1, "ndf_rt": 1}
        assert ReferenceData().is_empty()


def test_ranking_restricted_to_universe(monkeypatch):
    emb = Embedding.from_dict({
        "C001": [1.0, 0.0],
        "C002": [0.0, 1.0],
        "C003": [0.99, 0.01],
    })
    table = pd.DataFrame({"CUI_Cause": ["C001"], "CUI_Result": ["C002"]})
    captured = []

    def spy(k, actual, predicted):
        captured.extend(predicted)
        return 0.0

    monkeypatch.setattr(relationships, "mapk", spy)
    benchmark_causative(emb, 5, {"C001", "C002"}, {"t": table})
    assert captured == [["C002"]]
