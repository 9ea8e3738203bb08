"""I/O module: embeddings, reference-relationship tables, and result writers.

Relationship tables are tab-delimited with a header row:
    comorbidity:    CUI, Type              (Type in {Concept, Association})
    causative:      CUI_Cause, CUI_Result
    semantic type:  CUI [, Semantic_Type]  (file stem is the label when absent)
    NDF-RT:         Treatment, Condition   (Condition holds a comma-separated list)

Reference data directory layout:
    <root>/comorbidities/*.txt
    <root>/causative/*.txt
    <root>/semantic_type/*.txt
    <root>/ndf_rt/*.txt
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from .concepts import ConceptInfo
from .embedding import Embedding
from .errors import InvalidArgumentError
from .evaluation.relationships import (
    CAUSATIVE_COLUMNS, COMORBIDITY_COLUMNS, NDF_RT_COLUMNS, SEMANTIC_TYPE_COLUMNS,
    ReferenceData, require_columns,
)

logger = logging.getLogger("cuibench.io")

TABLE_SUFFIXES = (".txt", ".tsv")


def _check_file(path: str, what: str) -> Path:
    path_obj = Path(path)
    if not path_obj.exists():
        raise FileNotFoundError(
            f"{what} file not found: {path}\n"
            f"  Expected location: {path_obj.resolve()}"
        )
    if not path_obj.is_file():
        raise InvalidArgumentError(f"Path exists but is not a file: {path}")
    return path_obj


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

def load_embeddings(
    filename: str,
    convert_to_cui: bool = False,
    concepts: Optional[ConceptInfo] = None,
    header: bool = False,
    skip: int = 1,
    delim: str = " ",
) -> Embedding:
    """Load an embedding from a delimited text file.

    The first column holds the entity ID, the remaining columns the vector.
    The default ``skip=1`` drops the word2vec "<n> <dim>" header line.

    Args:
        filename: File to read.
        convert_to_cui: Map row IDs (concept IDs) to CUIs using ``concepts``.
        concepts: Concept lookup, required when ``convert_to_cui`` is set.
        header: Whether the (post-skip) first line holds column names.
        skip: Number of leading lines to skip.
        delim: Field delimiter.

    Returns:
        Embedding keyed by entity ID (or CUI).
    """
    path_obj = _check_file(filename, "Embedding")
    if convert_to_cui and concepts is None:
        raise InvalidArgumentError("convert_to_cui=True requires a ConceptInfo")

    try:
        raw = pd.read_csv(
            path_obj, sep=delim, skiprows=skip, header=0 if header else None,
            dtype=str, keep_default_na=False, na_values=[""],
        )
    except pd.errors.ParserError as e:
        # Rows with more fields than the first row
        raise InvalidArgumentError(f"Embedding file {filename} has ragged vectors: {e}") from e
    # Trailing delimiters produce an all-empty final column
    raw = raw.dropna(axis=1, how="all")
    if raw.shape[1] < 2:
        raise InvalidArgumentError(
            f"Embedding file {filename} needs an ID column plus at least one vector column"
        )

    values = raw.iloc[:, 1:].apply(pd.to_numeric, errors="coerce")
    if values.isna().any().any():
        n_bad = int(values.isna().any(axis=1).sum())
        raise InvalidArgumentError(
            f"Embedding file {filename} has {n_bad} row(s) with missing or "
            f"non-numeric values (ragged vectors?)"
        )

    values.index = raw.iloc[:, 0].astype(str).str.strip()
    embedding = Embedding.from_frame(values)
    logger.info(f"Loaded embedding {path_obj.name}: {len(embedding)} rows x {embedding.dim} dims")

    if convert_to_cui:
        embedding = embedding.to_cui(concepts)
        logger.info(f"Converted embedding {path_obj.name} to CUIs: {len(embedding)} rows")
    return embedding


# ---------------------------------------------------------------------------
# Relationship tables
# ---------------------------------------------------------------------------

def _read_table(path: str, what: str, columns: Sequence[str]) -> pd.DataFrame:
    path_obj = _check_file(path, what)
    df = pd.read_csv(path_obj, sep="\t", dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    require_columns(df, columns, path_obj.stem)
    for col in columns:
        df[col] = df[col].str.strip()
    logger.debug(f"Loaded {what} table {path_obj.name}: {len(df)} rows")
    return df


def load_comorbidity(path: str) -> pd.DataFrame:
    return _read_table(path, "Comorbidity", COMORBIDITY_COLUMNS)


def load_semantic_type(path: str) -> pd.DataFrame:
    return _read_table(path, "Semantic type", SEMANTIC_TYPE_COLUMNS)


def load_causative(path: str) -> pd.DataFrame:
    return _read_table(path, "Causative", CAUSATIVE_COLUMNS)


def load_ndf_rt(path: str) -> pd.DataFrame:
    return _read_table(path, "NDF-RT", NDF_RT_COLUMNS)


_REFERENCE_LAYOUT = (
    ("comorbidities", load_comorbidity),
    ("causative", load_causative),
    ("semantic_type", load_semantic_type),
    ("ndf_rt", load_ndf_rt),
)


def load_table_dir(directory: str, loader) -> Dict[str, pd.DataFrame]:
    """Load every table in a directory, keyed by file stem (sorted)."""
    folder = Path(directory)
    files = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix in TABLE_SUFFIXES)
    return {p.stem: loader(str(p)) for p in files}


def load_reference_data(root: str) -> ReferenceData:
    """Load the four reference-relationship groups from the standard layout.

    Missing sub-directories yield an empty group.
    """
    root_obj = Path(root)
    if not root_obj.is_dir():
        raise FileNotFoundError(
            f"Reference data directory not found: {root}\n"
            f"  Expected sub-directories: {[name for name, _ in _REFERENCE_LAYOUT]}"
        )

    groups: Dict[str, Dict[str, pd.DataFrame]] = {}
    for name, loader in _REFERENCE_LAYOUT:
        folder = root_obj / name
        if not folder.is_dir():
            logger.info(f"No {name}/ directory under {root}; skipping")
            groups[name] = {}
            continue
        groups[name] = load_table_dir(str(folder), loader)

    reference = ReferenceData(
        comorbidities=groups["comorbidities"],
        causative=groups["causative"],
        semantic_type=groups["semantic_type"],
        ndf_rt=groups["ndf_rt"],
    )
    logger.info(f"Loaded reference data from {root}: {reference.summary()}")
    return reference


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def ensure_dir(path: str) -> None:
    """Create directory and all parents if they don't exist."""
    os.makedirs(path, exist_ok=True)


def write_json(path: str, obj: Dict[str, Any]) -> None:
    """Write object as formatted JSON; NaN/Inf become null."""
    ensure_dir(os.path.dirname(path) or ".")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2, cls=_SafeJSONEncoder)
    logger.debug(f"Wrote JSON: {path}")


def write_csv(path: str, df: pd.DataFrame) -> None:
    ensure_dir(os.path.dirname(path) or ".")
    df.to_csv(path, index=False, encoding="utf-8")
    logger.debug(f"Wrote CSV: {path} ({len(df)} rows)")


class _SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder for numpy scalars/arrays with NaN/Inf mapped to null."""

    def default(self, obj):
        import numpy as np
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            if np.isnan(obj) or np.isinf(obj):
                return None
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, "isoformat"):
            return obj.isoformat()
        return super().default(obj)

    def iterencode(self, o, _one_shot=False):
        return super().iterencode(_sanitize_for_json(o), _one_shot)


def _sanitize_for_json(obj):
    """Recursively replace NaN/Inf float values with None."""
    import math
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj
    if isinstance(obj, dict):
        return {k: _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    return obj
