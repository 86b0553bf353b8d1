from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from csg.core.container import get_store
from csg.modules.series.service import SeriesStore

from .schemas import (
    ImportExecuteIn, ImportPlanOut, ImportResultOut, ImportReviewIn,
    ImportSeriesIn, ImportSeriesOut,
)
from . import service


router = APIRouter()


def _download(filename: str, content: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        content=content,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------- Exports ----------

@router.get("/exports/document", tags=["exports"])
def exports_document(store: SeriesStore = Depends(get_store)) -> JSONResponse:
    filename, content = service.export_document(store)
    return _download(filename, content)


@router.get("/exports/series/{series_id}", tags=["exports"])
def exports_series(series_id: str, store: SeriesStore = Depends(get_store)) -> JSONResponse:
    filename, content = service.export_series(store, series_id)
    return _download(filename, content)


# ---------- Imports ----------

@router.post("/imports/review", response_model=ImportPlanOut, tags=["imports"])
def imports_review(body: ImportReviewIn, store: SeriesStore = Depends(get_store)) -> Dict[str, Any]:
    payload = service.parse_import(body.payload)
    return service.review_import(store, payload).to_dict()


@router.post("/imports/execute", response_model=ImportResultOut, tags=["imports"])
def imports_execute(body: ImportExecuteIn, store: SeriesStore = Depends(get_store)) -> Dict[str, Any]:
    payload = service.parse_import(body.payload)
    return service.execute_import(store, payload, body.strategies).to_dict()


@router.post("/imports/series", response_model=ImportSeriesOut, tags=["imports"])
def imports_series(body: ImportSeriesIn, store: SeriesStore = Depends(get_store)) -> ImportSeriesOut:
    payload = service.parse_import(body.payload)
    sid = service.import_series_as_new(store, payload, body.name)
    return ImportSeriesOut(series_id=sid, active_series_id=store.active_series_id)
