from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from csg.core.container import get_store

from .schemas import (
    SeriesCreateIn,
    SeriesItemOut,
    SeriesListOut,
    SeriesMutationOut,
    SeriesRenameIn,
    SettingsOut,
    SettingsUpdateIn,
    StatInsertIn,
    StatRemoveOut,
)
from .service import SeriesStore

router = APIRouter(tags=["series"])


def _settings_out(store: SeriesStore) -> SettingsOut:
    s = store.settings
    return SettingsOut(
        series_id=store.active_series_id,
        dimensions=s.dimensions,
        tiers=list(s.tiers),
        stat_names=list(s.stat_names) if s.stat_names is not None else None,
    )


@router.get("/series", response_model=SeriesListOut)
def api_list_series(store: SeriesStore = Depends(get_store)) -> SeriesListOut:
    active = store.active_series_id
    items = []
    for row in store.series_list():
        s = store.get_series(row["id"])
        items.append(
            SeriesItemOut(
                id=row["id"],
                name=row["name"],
                active=row["id"] == active,
                characters=len(s.characters) if s is not None else 0,
            )
        )
    return SeriesListOut(active_series_id=active, items=items)


@router.post("/series", response_model=SeriesMutationOut)
def api_create_series(body: SeriesCreateIn, store: SeriesStore = Depends(get_store)) -> SeriesMutationOut:
    sid = store.create_series(body.name)
    return SeriesMutationOut(ok=True, series_id=sid, active_series_id=store.active_series_id)


@router.post("/series/{series_id}/activate", response_model=SeriesMutationOut)
def api_switch_series(series_id: str, store: SeriesStore = Depends(get_store)) -> SeriesMutationOut:
    ok = store.switch_series(series_id)
    return SeriesMutationOut(ok=ok, series_id=series_id, active_series_id=store.active_series_id)


@router.patch("/series/{series_id}", response_model=SeriesMutationOut)
def api_rename_series(series_id: str, body: SeriesRenameIn, store: SeriesStore = Depends(get_store)) -> SeriesMutationOut:
    if not store.rename_series(series_id, body.name):
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": "series not found"})
    return SeriesMutationOut(ok=True, series_id=series_id, active_series_id=store.active_series_id)


@router.delete("/series/{series_id}", response_model=SeriesMutationOut)
def api_delete_series(series_id: str, store: SeriesStore = Depends(get_store)) -> SeriesMutationOut:
    # refused (ok=false) for the last remaining series or an unknown id
    ok = store.delete_series(series_id)
    return SeriesMutationOut(ok=ok, series_id=series_id, active_series_id=store.active_series_id)


@router.get("/settings", response_model=SettingsOut)
def api_get_settings(store: SeriesStore = Depends(get_store)) -> SettingsOut:
    return _settings_out(store)


@router.put("/settings", response_model=SettingsOut)
def api_update_settings(body: SettingsUpdateIn, store: SeriesStore = Depends(get_store)) -> SettingsOut:
    store.update_settings(
        body.dimensions,
        body.tiers,
        body.stat_names,
        expected_series_id=body.expected_series_id,
    )
    return _settings_out(store)


@router.post("/settings/stats", response_model=SettingsOut)
def api_insert_stat(body: StatInsertIn, store: SeriesStore = Depends(get_store)) -> SettingsOut:
    store.insert_stat(body.index, body.name)
    return _settings_out(store)


@router.delete("/settings/stats/{index}", response_model=StatRemoveOut)
def api_remove_stat(index: int, store: SeriesStore = Depends(get_store)) -> StatRemoveOut:
    removed = store.remove_stat(index)
    return StatRemoveOut(removed=removed, settings=_settings_out(store))
