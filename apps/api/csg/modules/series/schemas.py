from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SeriesItemOut(BaseModel):
    id: str
    name: str
    active: bool = False
    characters: int = 0


class SeriesListOut(BaseModel):
    active_series_id: str
    items: List[SeriesItemOut]


class SeriesCreateIn(BaseModel):
    name: str = Field(min_length=1)


class SeriesRenameIn(BaseModel):
    name: str = Field(min_length=1)


class SeriesMutationOut(BaseModel):
    ok: bool
    series_id: Optional[str] = None
    active_series_id: str


class SettingsOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    series_id: str
    dimensions: int
    tiers: List[str]
    stat_names: Optional[List[str]] = Field(default=None, alias="statNames")


class SettingsUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dimensions: int
    tiers: List[str]
    stat_names: Optional[List[str]] = Field(default=None, alias="statNames")
    # series the draft was opened for; refused when it is no longer active
    expected_series_id: Optional[str] = None


class StatInsertIn(BaseModel):
    index: int = Field(ge=0)
    name: Optional[str] = None


class StatRemoveOut(BaseModel):
    removed: bool
    settings: SettingsOut
