from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Path

from csg.core.container import get_store
from csg.modules.series.document import Character, clamped_stats, placeholder_stat_name
from csg.modules.series.service import SeriesStore

from .schemas import (
    CharacterDeleteOut,
    CharacterIn,
    CharacterOut,
    CharacterSaveOut,
    CharactersListOut,
    ChartOut,
)

router = APIRouter(tags=["characters"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"error": "not_found", "message": "character not found"})


def _to_out(c: Character) -> Dict[str, Any]:
    return c.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/characters", response_model=CharactersListOut)
def api_list_characters(store: SeriesStore = Depends(get_store)) -> CharactersListOut:
    items = [_to_out(c) for c in store.characters]
    return CharactersListOut(series_id=store.active_series_id, items=items)


@router.post("/characters", response_model=CharacterSaveOut)
def api_save_character(body: CharacterIn, store: SeriesStore = Depends(get_store)) -> CharacterSaveOut:
    cid = store.save_character(body.model_dump(by_alias=True))
    if cid is None:
        raise _not_found()
    return CharacterSaveOut(id=cid)


@router.get("/characters/{character_id}", response_model=CharacterOut)
def api_get_character(character_id: str = Path(...), store: SeriesStore = Depends(get_store)) -> Dict[str, Any]:
    c = store.get_character(character_id)
    if c is None:
        raise _not_found()
    return _to_out(c)


@router.put("/characters/{character_id}", response_model=CharacterSaveOut)
def api_replace_character(character_id: str, body: CharacterIn, store: SeriesStore = Depends(get_store)) -> CharacterSaveOut:
    data = body.model_dump(by_alias=True)
    data["id"] = character_id
    cid = store.save_character(data)
    if cid is None:
        raise _not_found()
    return CharacterSaveOut(id=cid)


@router.delete("/characters/{character_id}", response_model=CharacterDeleteOut)
def api_delete_character(character_id: str, store: SeriesStore = Depends(get_store)) -> CharacterDeleteOut:
    return CharacterDeleteOut(deleted=store.delete_character(character_id))


@router.get("/characters/{character_id}/chart", response_model=ChartOut)
def api_character_chart(character_id: str, store: SeriesStore = Depends(get_store)) -> ChartOut:
    c = store.get_character(character_id)
    if c is None:
        raise _not_found()
    settings = store.settings
    names = list(settings.stat_names or [])
    labels = [names[i] if i < len(names) and names[i] else placeholder_stat_name(i) for i in range(settings.dimensions)]
    return ChartOut(
        id=str(c.id),
        name=c.name,
        labels=labels,
        tiers=list(settings.tiers),
        stats=clamped_stats(c.stats, settings.dimensions, settings.tiers),
    )
