from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional

Strategy = Literal["new", "keep", "overwrite", "dual"]


# ---------- Imports ----------

class ImportReviewIn(BaseModel):
    # parsed content of the import file (full backup or single series envelope)
    payload: Dict[str, Any]


class ImportExecuteIn(BaseModel):
    payload: Dict[str, Any]
    # "<series_key>:<character_index>" -> strategy; missing keys use the review defaults
    strategies: Dict[str, Strategy] = Field(default_factory=dict)


class ImportSeriesIn(BaseModel):
    payload: Dict[str, Any]
    name: Optional[str] = None


class CharacterReviewOut(BaseModel):
    key: str
    name: str
    conflict: bool
    strategy: Strategy
    local_character_id: Optional[str] = None
    allowed: List[Strategy] = Field(default_factory=list)


class SeriesReviewOut(BaseModel):
    key: str
    name: str
    local_series_id: Optional[str] = None
    merge: bool = False
    characters: List[CharacterReviewOut] = Field(default_factory=list)


class ImportPlanOut(BaseModel):
    kind: Literal["full", "single_series"]
    series: List[SeriesReviewOut] = Field(default_factory=list)
    strategies: Dict[str, Strategy] = Field(default_factory=dict)


class ImportResultOut(BaseModel):
    series_created: int = 0
    series_merged: int = 0
    characters_added: int = 0
    characters_overwritten: int = 0
    characters_kept: int = 0
    characters_duplicated: int = 0


class ImportSeriesOut(BaseModel):
    series_id: str
    active_series_id: str
