"""Shared fixtures: a small hand-checkable embedding and reference tables.

Vectors are chosen so neighbour order is easy to verify by hand:
    C001..C003 cluster along x, C004/C005 along y, C006/C007 along z.
"""
import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

from cuibench.embedding import Embedding
from cuibench.evaluation.relationships import ReferenceData


VECTORS = {
    "C001": [1.0, 0.0, 0.0],
    "C002": [0.9, 0.1, 0.0],
    "C003": [0.8, 0.2, 0.0],
    "C004": [0.0, 1.0, 0.0],
    "C005": [0.0, 0.9, 0.1],
    "C006": [0.0, 0.0, 1.0],
    "C007": [0.1, 0.0, 0.9],
}


@pytest.fixture
def embedding():
    return Embedding.from_dict(VECTORS)


@pytest.fixture
def comorbidity_table():
    return pd.DataFrame({
        "CUI": ["C001", "C002", "C003"],
        "Type": ["Concept", "Association", "Association"],
    })


@pytest.fixture
def causative_table():
    return pd.DataFrame({
        "CUI_Cause": ["C001", "C001", "C004"],
        "CUI_Result": ["C002", "C003", "C005"],
    })


@pytest.fixture
def semantic_table():
    return pd.DataFrame({
        "CUI": ["C001", "C002", "C003", "C006", "C007", "C004"],
        "Semantic_Type": ["T047", "T047", "T047", "T121", "T121", "T999"],
    })


@pytest.fixture
def ndf_rt_table():
    return pd.DataFrame({
        "Treatment": ["C004", "C001"],
        "Condition": ["C005, C006", "C002;C999"],
    })


@pytest.fixture
def reference(comorbidity_table, causative_table, semantic_table, ndf_rt_table):
    return ReferenceData(
        comorbidities={"obesity": comorbidity_table},
        causative={"may_cause": causative_table},
        semantic_type={"semantic": semantic_table},
        ndf_rt={"may_treat": ndf_rt_table},
    )


def write_tsv(path, df):
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def reference_dir(tmp_path, comorbidity_table, causative_table, semantic_table, ndf_rt_table):
    root = tmp_path / "reference"
    write_tsv(root / "comorbidities" / "obesity.txt", comorbidity_table)
    write_tsv(root / "causative" / "may_cause.txt", causative_table)
    write_tsv(root / "semantic_type" / "semantic.txt", semantic_table)
    write_tsv(root / "ndf_rt" / "may_treat.txt", ndf_rt_table)
    return root


@pytest.fixture
def embedding_file(tmp_path):
    """word2vec-style text file: '<n> <dim>' header, trailing spaces."""
    path = tmp_path / "emb.txt"
    lines = [f"{len(VECTORS)} 3"]
    for cui, vec in VECTORS.items():
        lines.append(cui + " " + " ".join(str(v) for v in vec) + " ")
    path.write_text("\n".join(lines) + "\n")
    return path
