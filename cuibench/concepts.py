"""Concept lookup table: concept ID <-> CUI <-> human-readable string.

Built once from two tab-delimited, headerless files and then passed
explicitly to whatever needs translation (embedding loading, top-k
string views). Nothing here is module-level state.

Expected files:
    id_to_string:  <concept_id>\t<string>
    id_to_cui:     <concept_id>\t<CUI>
"""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .errors import InvalidArgumentError

logger = logging.getLogger("cuibench.concepts")

CONCEPT_COLUMNS = ("Concept_ID", "String", "CUI")


def _read_two_column(path: str, names: List[str]) -> pd.DataFrame:
    path_obj = Path(path)
    if not path_obj.exists():
        raise FileNotFoundError(
            f"Concept table not found: {path}\n"
            f"  Expected location: {path_obj.resolve()}"
        )
    df = pd.read_csv(
        path_obj, sep="\t", header=None, names=names,
        quoting=csv.QUOTE_NONE, dtype=str, keep_default_na=False,
    )
    return df


class ConceptInfo:
    """Immutable concept ID / CUI / string lookup.

    Args:
        frame: DataFrame with columns Concept_ID, String, CUI.
    """

    def __init__(self, frame: pd.DataFrame):
        missing = [c for c in CONCEPT_COLUMNS if c not in frame.columns]
        if missing:
            raise InvalidArgumentError(
                f"Concept table is missing columns {missing}. "
                f"Found: {list(frame.columns)}"
            )
        frame = frame.loc[:, list(CONCEPT_COLUMNS)].astype(str).reset_index(drop=True)
        self._frame = frame
        # First occurrence wins for every direction of the lookup
        self._id_to_cui: Dict[str, str] = dict(
            frame.drop_duplicates("Concept_ID")[["Concept_ID", "CUI"]].itertuples(index=False)
        )
        self._cui_to_string: Dict[str, str] = dict(
            frame.drop_duplicates("CUI")[["CUI", "String"]].itertuples(index=False)
        )

    @classmethod
    def from_files(cls, id_to_string: str, id_to_cui: str) -> "ConceptInfo":
        """Inner-join the two concept files on Concept_ID."""
        strings = _read_two_column(id_to_string, ["Concept_ID", "String"])
        cuis = _read_two_column(id_to_cui, ["Concept_ID", "CUI"])
        joined = strings.merge(cuis, on="Concept_ID", how="inner")
        logger.info(
            f"Loaded concept info: {len(joined)} joined rows "
            f"({len(strings)} strings, {len(cuis)} CUI mappings)"
        )
        return cls(joined)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ConceptInfo":
        """Build from a frame holding Concept_ID, String and CUI columns.

        Extra columns are ignored; the input frame is not modified.
        """
        return cls(df.copy())

    @classmethod
    def from_records(cls, records: Iterable[tuple]) -> "ConceptInfo":
        """Build from (concept_id, string, cui) tuples."""
        return cls(pd.DataFrame(list(records), columns=list(CONCEPT_COLUMNS)))

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, cui: object) -> bool:
        return cui in self._cui_to_string

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def cui_for_id(self, concept_id: str) -> Optional[str]:
        return self._id_to_cui.get(str(concept_id))

    def cui_for_ids(self, concept_ids: Iterable[str]) -> List[Optional[str]]:
        """Map concept IDs to CUIs; None where no mapping exists."""
        return [self.cui_for_id(i) for i in concept_ids]

    def string_for_cui(self, cui: str) -> Optional[str]:
        return self._cui_to_string.get(str(cui))

    def strings_for_cuis(self, cuis: Iterable[str]) -> List[Optional[str]]:
        """Map CUIs to their strings; None for unknown CUIs."""
        return [self.string_for_cui(c) for c in cuis]
