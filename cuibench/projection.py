"""2-D t-SNE projection of an embedding and relationship annotation of its points.

get_tsne() returns a frame with columns X1, X2, CUI. The annotate/populate
helpers add a Type column marking where the CUIs of a relationship table
fall; unmarked points are "Background".
"""
from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence, Union

import pandas as pd

from .embedding import Embedding
from .errors import InvalidArgumentError
from .evaluation.relationships import (
    CAUSATIVE_COLUMNS, COMORBIDITY_COLUMNS, NDF_RT_COLUMNS, SEMANTIC_TYPE_COLUMNS,
    require_columns, split_conditions,
)

logger = logging.getLogger("cuibench.projection")

BACKGROUND = "Background"
PROJECTION_KINDS = ("COMORBIDITY", "CAUSATIVE", "SEMANTIC_TYPE", "NDF_RT")


def get_tsne(
    embedding: Embedding,
    perplexity: float = 30.0,
    random_state: Optional[int] = 0,
    verbose: bool = False,
) -> pd.DataFrame:
    """t-SNE of the embedding rows.

    Perplexity is clamped below the number of rows, which sklearn requires.
    """
    from sklearn.manifold import TSNE

    n = len(embedding)
    if n < 2:
        raise InvalidArgumentError(f"t-SNE needs at least 2 rows, got {n}")
    effective = min(float(perplexity), float(n - 1))
    if effective < perplexity:
        logger.info(f"Perplexity lowered from {perplexity} to {effective} for {n} rows")

    tsne = TSNE(
        n_components=2,
        perplexity=effective,
        random_state=random_state,
        verbose=1 if verbose else 0,
    )
    coords = tsne.fit_transform(embedding.to_frame().to_numpy())
    df = pd.DataFrame(coords, columns=["X1", "X2"])
    df["CUI"] = list(embedding.ids)
    return df


def _mark(df: pd.DataFrame, cuis, label: str) -> None:
    df.loc[df["CUI"].isin(set(cuis)), "Type"] = label


def annotate_projection(
    tsne: pd.DataFrame,
    table: pd.DataFrame,
    kind: str,
    name: Optional[str] = None,
) -> pd.DataFrame:
    """Label projected points by their role in one relationship table.

    Args:
        tsne: Output of :func:`get_tsne` (needs a CUI column).
        table: Relationship table of the given kind.
        kind: COMORBIDITY (Concept/Association), CAUSATIVE (Cause/Result),
            SEMANTIC_TYPE (``name``), or NDF_RT (Treatment/Condition).
        name: Label for semantic-type members.

    Returns:
        Copy of ``tsne`` with a Type column.
    """
    kind = kind.upper()
    if "CUI" not in tsne.columns:
        raise InvalidArgumentError("Projection frame has no CUI column; rebuild it with get_tsne()")

    df = tsne.copy()
    df["Type"] = BACKGROUND

    if kind == "COMORBIDITY":
        require_columns(table, COMORBIDITY_COLUMNS, name or "comorbidity")
        _mark(df, table.loc[table["Type"] == "Concept", "CUI"], "Concept")
        _mark(df, table.loc[table["Type"] == "Association", "CUI"], "Association")
    elif kind in ("CAUSATIVE", "CAUSITIVE"):
        require_columns(table, CAUSATIVE_COLUMNS, name or "causative")
        _mark(df, table["CUI_Cause"], "Cause")
        _mark(df, table["CUI_Result"], "Result")
    elif kind == "SEMANTIC_TYPE":
        require_columns(table, SEMANTIC_TYPE_COLUMNS, name or "semantic_type")
        _mark(df, table["CUI"], name or "Semantic type")
    elif kind == "NDF_RT":
        require_columns(table, NDF_RT_COLUMNS, name or "ndf_rt")
        conditions = [c for value in table["Condition"] for c in split_conditions(value)]
        _mark(df, table["Treatment"], "Treatment")
        _mark(df, conditions, "Condition")
    else:
        raise InvalidArgumentError(f"Unknown projection kind: {kind}. Use one of {PROJECTION_KINDS}")

    n_marked = int((df["Type"] != BACKGROUND).sum())
    logger.info(f"Annotated {n_marked}/{len(df)} projected points as {kind}")
    return df


def populate_projection(
    tsne: pd.DataFrame,
    tables: Union[Mapping[str, pd.DataFrame], Sequence[pd.DataFrame]],
    names: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Mark the associated CUIs of several tables, each with its own label.

    Comorbidity tables mark their Association CUIs; tables without a
    Type column (semantic-type lists) mark every CUI. An existing Type
    column is kept and overwritten only where a table matches.

    Args:
        tsne: Projection frame with a CUI column.
        tables: Mapping name -> table, or a sequence of tables.
        names: Readable labels overriding the mapping keys / positions.
    """
    if "CUI" not in tsne.columns:
        raise InvalidArgumentError("Projection frame has no CUI column; rebuild it with get_tsne()")

    df = tsne.copy()
    if "Type" not in df.columns:
        df["Type"] = BACKGROUND

    if isinstance(tables, Mapping):
        items = list(tables.items())
    else:
        items = [(f"table_{i}", t) for i, t in enumerate(tables, start=1)]
    if names is not None:
        if len(names) != len(items):
            raise InvalidArgumentError(f"Got {len(names)} names for {len(items)} tables")
        items = [(label, table) for label, (_, table) in zip(names, items)]

    for label, table in items:
        require_columns(table, ("CUI",), label)
        if "Type" in table.columns:
            # A CUI's role is decided by its first row in the table
            first = table.drop_duplicates("CUI")
            members = first.loc[first["Type"] == "Association", "CUI"]
        else:
            members = table["CUI"]
        _mark(df, members, label)

    return df
