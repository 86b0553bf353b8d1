from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CharacterIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    name: str = Field(min_length=1)
    image: Optional[str] = None
    bg_image: Optional[str] = Field(default=None, alias="bgImage")
    stats: List[int] = Field(default_factory=list)


class CharacterOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str
    image: Optional[str] = None
    bg_image: Optional[str] = Field(default=None, alias="bgImage")
    stats: List[int] = Field(default_factory=list)


class CharactersListOut(BaseModel):
    series_id: str
    items: List[CharacterOut]


class CharacterSaveOut(BaseModel):
    id: str


class CharacterDeleteOut(BaseModel):
    deleted: bool


class ChartOut(BaseModel):
    """Render snapshot: one clamped value per axis."""

    id: str
    name: str
    labels: List[str]
    tiers: List[str]
    stats: List[int]
