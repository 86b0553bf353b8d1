"""
Persisted document schema (v2) and the migration chain from older shapes.

v1: {settings, characters}                     (single implicit series)
v2: {activeSeriesId, lastUpdated, series: {id: {name, settings, characters}}}

JSON keys are camelCase; Python attributes are snake_case (aliases).
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from csg.core.errors import FormatError

CURRENT_VERSION = 2

MIN_DIMENSIONS = 3
DEFAULT_DIMENSIONS = 3
DEFAULT_TIERS = ("F", "B", "A", "S")
DEFAULT_SERIES_ID = "default"
DEFAULT_SERIES_NAME = "My First Series"

SINGLE_SERIES_VERSION = "single_series"
SINGLE_SERIES_VERSIONS = (SINGLE_SERIES_VERSION, "v2_single_series")


def placeholder_stat_name(index: int) -> str:
    return f"Stat {index + 1}"


def resize_stats(stats: Sequence[int], dimensions: int) -> List[int]:
    out = list(stats)[:dimensions]
    out.extend([0] * (dimensions - len(out)))
    return out


def resize_stat_names(names: Optional[Sequence[str]], dimensions: int) -> Optional[List[str]]:
    if names is None:
        return None
    out = list(names)[:dimensions]
    out.extend(placeholder_stat_name(i) for i in range(len(out), dimensions))
    return out


def clamp_stat_values(stats: Sequence[int], tiers: Sequence[str]) -> List[int]:
    top = max(0, len(tiers) - 1)
    return [min(max(int(v), 0), top) for v in stats]


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    dimensions: int = Field(default=DEFAULT_DIMENSIONS, ge=MIN_DIMENSIONS)
    tiers: List[str] = Field(default_factory=lambda: list(DEFAULT_TIERS), min_length=1)
    stat_names: Optional[List[str]] = Field(default=None, alias="statNames")


class Character(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    name: str = ""
    image: Optional[str] = None
    bg_image: Optional[str] = Field(default=None, alias="bgImage")
    stats: List[int] = Field(default_factory=list)


class Series(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    settings: Settings = Field(default_factory=Settings)
    characters: List[Character] = Field(default_factory=list)


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    active_series_id: str = Field(default=DEFAULT_SERIES_ID, alias="activeSeriesId")
    last_updated: int = Field(default=0, alias="lastUpdated")
    series: Dict[str, Series]

    @model_validator(mode="after")
    def _check_series(self) -> "Document":
        if not self.series:
            raise ValueError("document must contain at least one series")
        if self.active_series_id not in self.series:
            self.active_series_id = next(iter(self.series))
        # every stat vector (and axis name list) has exactly `dimensions` entries
        for s in self.series.values():
            dims = s.settings.dimensions
            s.settings.stat_names = resize_stat_names(s.settings.stat_names, dims)
            for c in s.characters:
                if len(c.stats) != dims:
                    c.stats = resize_stats(c.stats, dims)
        return self

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LegacyDocument(BaseModel):
    """v1 shape: one implicit series."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    settings: Optional[Settings] = None
    characters: List[Character] = Field(default_factory=list)


class SingleSeriesExport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: str = SINGLE_SERIES_VERSION
    name: str = "Imported Series"
    settings: Settings
    characters: List[Character] = Field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def default_settings() -> Settings:
    return Settings(dimensions=DEFAULT_DIMENSIONS, tiers=list(DEFAULT_TIERS))


def create_default_document(now_ms: int) -> Document:
    return Document(
        active_series_id=DEFAULT_SERIES_ID,
        last_updated=now_ms,
        series={DEFAULT_SERIES_ID: Series(name=DEFAULT_SERIES_NAME, settings=default_settings())},
    )


def detect_version(payload: Any) -> int:
    if not isinstance(payload, dict):
        raise FormatError("document must be a JSON object", {"type": type(payload).__name__})
    if "series" in payload:
        return 2
    if "settings" in payload and "characters" in payload:
        return 1
    raise FormatError("unrecognized document shape", {"keys": sorted(payload.keys())[:20]})


def migrate_v1_to_v2(payload: Dict[str, Any]) -> Dict[str, Any]:
    legacy = LegacyDocument.model_validate(payload)
    settings = legacy.settings or default_settings()
    return {
        "activeSeriesId": DEFAULT_SERIES_ID,
        "lastUpdated": int(payload.get("lastUpdated") or 0),
        "series": {
            DEFAULT_SERIES_ID: {
                "name": DEFAULT_SERIES_NAME,
                "settings": settings.model_dump(mode="json", by_alias=True, exclude_none=True),
                "characters": [c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in legacy.characters],
            }
        },
    }


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: migrate_v1_to_v2,
}


def upgrade_document(payload: Any) -> Document:
    """Run the migration chain up to CURRENT_VERSION and validate the result."""
    version = detect_version(payload)
    data = payload
    try:
        while version < CURRENT_VERSION:
            data = MIGRATIONS[version](data)
            version += 1
        return Document.model_validate(data)
    except PydanticValidationError as e:
        raise FormatError("document failed validation", {"errors": e.errors(include_url=False, include_context=False, include_input=False)[:20]}) from e


def clamped_stats(stats: List[int], dimensions: int, tiers: List[str]) -> List[int]:
    """Stats snapshot for rendering: exactly `dimensions` values, each within the tier scale."""
    return clamp_stat_values(resize_stats(stats, dimensions), tiers)
