from __future__ import annotations

import datetime
import json
import re
import unicodedata
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from csg.core.errors import FormatError, NotFoundError, ValidationError
from csg.core.ids import new_ulid
from csg.core.observability import emit
from csg.modules.series.document import (
    SINGLE_SERIES_VERSION,
    SINGLE_SERIES_VERSIONS,
    Character,
    Document,
    Series,
    Settings,
    SingleSeriesExport,
    clamped_stats,
    upgrade_document,
)
from csg.modules.series.service import SeriesStore

STRATEGY_NEW = "new"
STRATEGY_KEEP = "keep"
STRATEGY_OVERWRITE = "overwrite"
STRATEGY_DUAL = "dual"

STRATEGIES = (STRATEGY_NEW, STRATEGY_KEEP, STRATEGY_OVERWRITE, STRATEGY_DUAL)
CONFLICT_STRATEGIES = (STRATEGY_KEEP, STRATEGY_OVERWRITE, STRATEGY_DUAL)

KIND_FULL = "full"
KIND_SINGLE = "single_series"
SINGLE_KEY = "single"

DUAL_SUFFIX = " (2)"


# =========
# Parsed import payload
# =========

@dataclass(frozen=True)
class ImportSeries:
    key: str
    name: str
    settings: Settings
    characters: List[Character]


@dataclass(frozen=True)
class ImportPayload:
    kind: str
    series: List[ImportSeries]
    # series offered by "import as new series" (active one of a full backup)
    primary_key: str


def _load_json(raw: Union[bytes, str, Mapping[str, Any]]) -> Any:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FormatError("import file is not UTF-8 text") from e
    try:
        return json.loads(raw)
    except ValueError as e:
        raise FormatError(f"invalid JSON: {e}") from e


def parse_import(raw: Union[bytes, str, Mapping[str, Any]]) -> ImportPayload:
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise FormatError("import file must contain a JSON object")

    if "series" in data:
        doc = upgrade_document(data)
        items = [
            ImportSeries(key=sid, name=s.name, settings=s.settings, characters=list(s.characters))
            for sid, s in doc.series.items()
        ]
        return ImportPayload(kind=KIND_FULL, series=items, primary_key=doc.active_series_id)

    if "settings" in data and "characters" in data:
        version = data.get("version")
        if version is not None and version not in SINGLE_SERIES_VERSIONS:
            raise FormatError("unsupported single series export version", {"version": version})
        try:
            env = SingleSeriesExport.model_validate(data)
        except PydanticValidationError as e:
            raise FormatError(
                "single series export failed validation",
                {"errors": e.errors(include_url=False, include_context=False, include_input=False)[:20]},
            ) from e
        item = ImportSeries(key=SINGLE_KEY, name=env.name, settings=env.settings, characters=list(env.characters))
        return ImportPayload(kind=KIND_SINGLE, series=[item], primary_key=SINGLE_KEY)

    raise FormatError("import file must contain either 'series' (full backup) or 'settings' + 'characters' (single series)")


# =========
# Matching helpers
# =========

def _norm(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


def _find_local_series(series: Mapping[str, Series], name: str) -> Optional[str]:
    wanted = _norm(name)
    for sid, s in series.items():
        if _norm(s.name) == wanted:
            return sid
    return None


def _local_name_index(series: Series) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for idx, c in enumerate(series.characters):
        out.setdefault(_norm(c.name), idx)
    return out


def character_key(series_key: str, index: int) -> str:
    return f"{series_key}:{index}"


# =========
# Review phase
# =========

@dataclass
class CharacterReview:
    key: str
    name: str
    conflict: bool
    strategy: str
    local_character_id: Optional[str] = None
    allowed: List[str] = field(default_factory=list)


@dataclass
class SeriesReview:
    key: str
    name: str
    local_series_id: Optional[str]
    characters: List[CharacterReview] = field(default_factory=list)

    @property
    def merge(self) -> bool:
        return self.local_series_id is not None


@dataclass
class ImportPlan:
    kind: str
    series: List[SeriesReview]

    def default_strategies(self) -> Dict[str, str]:
        return {c.key: c.strategy for s in self.series for c in s.characters}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "series": [dict(asdict(s), merge=s.merge) for s in self.series],
            "strategies": self.default_strategies(),
        }


def review_import(store: SeriesStore, payload: ImportPayload) -> ImportPlan:
    doc = store.document
    reviews: List[SeriesReview] = []
    for s in payload.series:
        local_id = _find_local_series(doc.series, s.name)
        review = SeriesReview(key=s.key, name=s.name, local_series_id=local_id)
        names = _local_name_index(doc.series[local_id]) if local_id is not None else {}
        local_chars = doc.series[local_id].characters if local_id is not None else []
        for idx, c in enumerate(s.characters):
            match = names.get(_norm(c.name))
            conflict = match is not None
            review.characters.append(
                CharacterReview(
                    key=character_key(s.key, idx),
                    name=c.name,
                    conflict=conflict,
                    strategy=STRATEGY_KEEP if conflict else STRATEGY_NEW,
                    local_character_id=local_chars[match].id if conflict else None,
                    allowed=list(CONFLICT_STRATEGIES) if conflict else [STRATEGY_NEW],
                )
            )
        reviews.append(review)
    return ImportPlan(kind=payload.kind, series=reviews)


# =========
# Execute phase
# =========

@dataclass
class ImportResult:
    series_created: int = 0
    series_merged: int = 0
    characters_added: int = 0
    characters_overwritten: int = 0
    characters_kept: int = 0
    characters_duplicated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _fresh_copy(c: Character, dimensions: int, tiers: List[str], **update: Any) -> Character:
    values: Dict[str, Any] = {"id": new_ulid(), "stats": clamped_stats(c.stats, dimensions, tiers)}
    values.update(update)
    return c.model_copy(update=values, deep=True)


def execute_import(
    store: SeriesStore,
    payload: ImportPayload,
    strategies: Optional[Mapping[str, str]] = None,
) -> ImportResult:
    chosen = dict(strategies or {})
    unknown = {k: v for k, v in chosen.items() if v not in STRATEGIES}
    if unknown:
        raise ValidationError("unknown import strategy", {"strategies": unknown, "allowed": list(STRATEGIES)})

    def _merge(doc: Document) -> ImportResult:
        result = ImportResult()
        # matches are against the series and characters present before this import
        existing = dict(doc.series)
        indices = {sid: _local_name_index(series) for sid, series in existing.items()}
        for s in payload.series:
            local_id = _find_local_series(existing, s.name)

            if local_id is None:
                dims = s.settings.dimensions
                doc.series[new_ulid()] = Series(
                    name=s.name,
                    settings=s.settings.model_copy(deep=True),
                    characters=[_fresh_copy(c, dims, s.settings.tiers) for c in s.characters],
                )
                result.series_created += 1
                result.characters_added += len(s.characters)
                continue

            target = doc.series[local_id]
            dims = target.settings.dimensions
            tiers = target.settings.tiers
            names = indices[local_id]
            result.series_merged += 1

            for idx, imp in enumerate(s.characters):
                match = names.get(_norm(imp.name))
                strategy = chosen.get(character_key(s.key, idx)) or (STRATEGY_KEEP if match is not None else STRATEGY_NEW)
                if match is None:
                    strategy = STRATEGY_NEW

                if strategy == STRATEGY_KEEP:
                    result.characters_kept += 1
                elif strategy == STRATEGY_OVERWRITE:
                    local_char_id = target.characters[match].id
                    target.characters[match] = _fresh_copy(imp, dims, tiers, id=local_char_id)
                    result.characters_overwritten += 1
                elif strategy == STRATEGY_DUAL:
                    target.characters.append(_fresh_copy(imp, dims, tiers, name=f"{imp.name}{DUAL_SUFFIX}"))
                    result.characters_duplicated += 1
                else:
                    target.characters.append(_fresh_copy(imp, dims, tiers))
                    result.characters_added += 1
        return result

    result = store.apply(_merge)
    emit("info", "import.executed", "import applied", None, __name__, kind=payload.kind, **result.to_dict())
    return result


def import_series_as_new(store: SeriesStore, payload: ImportPayload, name: Optional[str] = None) -> str:
    """Adopt one series under a new id (optionally renamed) and make it active."""
    source = next((s for s in payload.series if s.key == payload.primary_key), payload.series[0])
    final_name = (name or "").strip() or source.name
    dims = source.settings.dimensions
    series_id = new_ulid()

    def _adopt(doc: Document) -> None:
        doc.series[series_id] = Series(
            name=final_name,
            settings=source.settings.model_copy(deep=True),
            characters=[_fresh_copy(c, dims, source.settings.tiers) for c in source.characters],
        )
        doc.active_series_id = series_id

    store.apply(_adopt)
    emit("info", "import.series_added", "series imported as new", None, __name__, series_id=series_id)
    return series_id


# =========
# Export
# =========

def slugify(value: str) -> str:
    text = unicodedata.normalize("NFKD", str(value or "")).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"\s+", "_", text.strip()).lower()
    text = re.sub(r"[^a-z0-9_\-]+", "", text)
    return text or "series"


def backup_filename(today: Optional[datetime.date] = None) -> str:
    day = today or datetime.datetime.now(datetime.timezone.utc).date()
    return f"csg_backup_{day.isoformat()}.json"


def series_filename(name: str) -> str:
    return f"csg_series_{slugify(name)}.json"


def export_document(store: SeriesStore, today: Optional[datetime.date] = None) -> Tuple[str, Dict[str, Any]]:
    return backup_filename(today), store.document.to_json()


def export_series(store: SeriesStore, series_id: str) -> Tuple[str, Dict[str, Any]]:
    s = store.get_series(series_id)
    if s is None:
        raise NotFoundError("series not found", {"series_id": series_id})
    envelope = SingleSeriesExport(
        version=SINGLE_SERIES_VERSION,
        name=s.name,
        settings=s.settings,
        characters=s.characters,
    )
    return series_filename(s.name), envelope.to_json()
