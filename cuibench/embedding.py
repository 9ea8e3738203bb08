"""Embedding value type and cosine-similarity ranker.

An Embedding maps unique entity IDs (usually CUIs) to equal-length
real vectors. It is immutable once built: restriction to a CUI
universe or conversion to CUI keys always returns a new Embedding.

Similarity ranking:
    sim(q, r) = dot(q, r) / (|q| * |r|)
computed for every row at once against precomputed row norms. Rows
(or a query) with zero norm get similarity 0 instead of NaN.
"""
from __future__ import annotations

import logging
import warnings
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .concepts import ConceptInfo
from .errors import DegenerateInputWarning, InvalidArgumentError, NotFoundError

logger = logging.getLogger("cuibench.embedding")


class Embedding:
    """Immutable ID -> vector table.

    Args:
        ids: Unique entity IDs, one per row.
        vectors: 2-D array of shape (len(ids), dim).
        warn_degenerate: Report zero-norm rows (once, here). Embeddings
            derived from an already-checked one pass False.
    """

    def __init__(self, ids: Sequence[str], vectors, warn_degenerate: bool = True):
        matrix = np.array(vectors, dtype=float, copy=True)
        ids = [str(i) for i in ids]

        if matrix.ndim != 2:
            raise InvalidArgumentError(
                f"Embedding vectors must form a 2-D matrix, got {matrix.ndim} dimension(s)"
            )
        if matrix.shape[0] != len(ids):
            raise InvalidArgumentError(
                f"Embedding has {len(ids)} IDs but {matrix.shape[0]} vectors"
            )
        if not np.all(np.isfinite(matrix)):
            raise InvalidArgumentError("Embedding contains missing or non-finite values")

        index = {}
        for pos, entity in enumerate(ids):
            if entity in index:
                raise InvalidArgumentError(f"Duplicate entity ID in embedding: {entity}", key=entity)
            index[entity] = pos

        matrix.setflags(write=False)
        norms = np.sqrt((matrix ** 2).sum(axis=1))
        norms.setflags(write=False)

        n_zero = int((norms == 0).sum())
        if n_zero > 0 and warn_degenerate:
            logger.warning(f"Embedding has {n_zero} zero-norm row(s); their cosine similarity is 0")
            warnings.warn(
                f"Embedding has {n_zero} zero-norm row(s)",
                DegenerateInputWarning, stacklevel=2,
            )

        self._ids: Tuple[str, ...] = tuple(ids)
        self._index = index
        self._matrix = matrix
        self._norms = norms

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "Embedding":
        """Rows of a DataFrame indexed by entity ID."""
        return cls(list(df.index.astype(str)), df.to_numpy(dtype=float))

    @classmethod
    def from_dict(cls, vectors: Mapping[str, Sequence[float]]) -> "Embedding":
        ids = list(vectors.keys())
        rows = [list(vectors[i]) for i in ids]
        lengths = {len(r) for r in rows}
        if len(lengths) > 1:
            raise InvalidArgumentError(f"Embedding vectors have differing lengths: {sorted(lengths)}")
        if not rows:
            return cls([], np.zeros((0, 0)))
        return cls(ids, rows)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, entity: object) -> bool:
        return entity in self._index

    def __repr__(self) -> str:
        return f"Embedding(n={len(self)}, dim={self.dim})"

    @property
    def ids(self) -> Tuple[str, ...]:
        return self._ids

    @property
    def dim(self) -> int:
        return int(self._matrix.shape[1]) if self._matrix.ndim == 2 else 0

    @property
    def vectors(self) -> np.ndarray:
        """Read-only view of the vector matrix."""
        return self._matrix

    @property
    def norms(self) -> np.ndarray:
        return self._norms

    def key_set(self) -> set:
        return set(self._ids)

    def vector(self, entity: str) -> np.ndarray:
        return self._matrix[self._position(entity)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(np.array(self._matrix), index=list(self._ids))

    def _position(self, entity: str) -> int:
        try:
            return self._index[entity]
        except KeyError:
            raise NotFoundError(f"Entity not in embedding: {entity}", key=entity) from None

    # ------------------------------------------------------------------
    # Derived embeddings
    # ------------------------------------------------------------------

    def restrict(self, universe: Iterable[str]) -> "Embedding":
        """Keep only rows whose ID is in ``universe`` (row order preserved)."""
        allowed = set(universe)
        keep = [pos for pos, entity in enumerate(self._ids) if entity in allowed]
        if len(keep) == len(self._ids):
            return self
        return Embedding([self._ids[p] for p in keep], self._matrix[keep], warn_degenerate=False)

    def to_cui(self, concepts: ConceptInfo) -> "Embedding":
        """Re-key rows from concept IDs to CUIs.

        Rows without a CUI mapping are dropped. When several concept IDs
        map to the same CUI, the first row is kept.
        """
        keep_ids: List[str] = []
        keep_pos: List[int] = []
        seen = set()
        n_unmapped = 0
        n_dupe = 0
        for pos, entity in enumerate(self._ids):
            cui = concepts.cui_for_id(entity)
            if cui is None:
                n_unmapped += 1
                continue
            if cui in seen:
                n_dupe += 1
                continue
            seen.add(cui)
            keep_ids.append(cui)
            keep_pos.append(pos)

        if n_unmapped > 0:
            logger.warning(f"Dropped {n_unmapped} embedding rows with no CUI mapping")
        if n_dupe > 0:
            logger.warning(f"Dropped {n_dupe} embedding rows mapping to an already-seen CUI")

        return Embedding(keep_ids, self._matrix[keep_pos], warn_degenerate=False)

    # ------------------------------------------------------------------
    # Similarity ranking
    # ------------------------------------------------------------------

    def get_dist(self, query: str, sort_result: bool = True) -> pd.Series:
        """Cosine similarity of every row (the query included) to ``query``.

        Args:
            query: Entity ID present in the embedding.
            sort_result: Sort descending by similarity (stable, so ties keep
                embedding row order).

        Returns:
            Series indexed by entity ID.

        Raises:
            NotFoundError: If the query is not a row of the embedding.
        """
        pos = self._position(query)
        query_vec = self._matrix[pos]
        denom = self._norms * self._norms[pos]
        dots = self._matrix @ query_vec

        zero = denom == 0
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(zero, 0.0, dots / np.where(zero, 1.0, denom))

        result = pd.Series(sims, index=list(self._ids), name=query)
        if sort_result:
            result = result.sort_values(ascending=False, kind="mergesort")
        return result

    def top_k(self, query: str, k: int) -> List[Tuple[str, float]]:
        """The k most similar entities, the query itself at rank 1."""
        sims = self.get_dist(query).iloc[:k]
        return [(entity, float(score)) for entity, score in sims.items()]

    def top_k_strings(self, query: str, k: int, concepts: ConceptInfo) -> pd.DataFrame:
        """Top-k neighbours of a CUI translated to their strings."""
        if query not in self:
            raise NotFoundError(f"CUI not in embedding: {query}", key=query)
        logger.info(f"Conversion for {query} {concepts.string_for_cui(query)}")
        top = self.top_k(query, k)
        cuis = [c for c, _ in top]
        return pd.DataFrame({
            "CUI": cuis,
            "String": concepts.strings_for_cuis(cuis),
            "similarity": [s for _, s in top],
        })


def get_dist(embedding: Embedding, query: str, sort_result: bool = True) -> pd.Series:
    """Module-level form of :meth:`Embedding.get_dist`."""
    return embedding.get_dist(query, sort_result=sort_result)


def neighbours(embedding: Embedding, query: str, k: Optional[int] = None) -> pd.Series:
    """Similarities of the nearest rows to ``query``, the query itself removed."""
    sims = embedding.get_dist(query).drop(labels=[query])
    if k is not None:
        sims = sims.iloc[:k]
    return sims
