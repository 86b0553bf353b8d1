from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from csg.core.container import get_sync

from .schemas import ConflictResolveIn, SignInIn, SyncOutcomeOut, SyncStatusOut, SyncTriggerIn
from .service import SyncEngine

router = APIRouter(tags=["sync"])


@router.get("/sync/status", response_model=SyncStatusOut)
def api_sync_status(sync: SyncEngine = Depends(get_sync)) -> Dict[str, Any]:
    return sync.status()


@router.post("/sync/sign-in", response_model=SyncOutcomeOut)
async def api_sync_sign_in(body: Optional[SignInIn] = None, sync: SyncEngine = Depends(get_sync)) -> Dict[str, Any]:
    outcome = await sync.sign_in(interactive=body.interactive if body is not None else True)
    return outcome.to_dict()


@router.post("/sync/sign-out", response_model=SyncStatusOut)
async def api_sync_sign_out(sync: SyncEngine = Depends(get_sync)) -> Dict[str, Any]:
    await sync.sign_out()
    return sync.status()


@router.post("/sync", response_model=SyncOutcomeOut)
async def api_sync_now(body: Optional[SyncTriggerIn] = None, sync: SyncEngine = Depends(get_sync)) -> Dict[str, Any]:
    outcome = await sync.sync(force=body.force if body is not None else False)
    return outcome.to_dict()


@router.post("/sync/conflict", response_model=SyncOutcomeOut)
async def api_sync_resolve(body: ConflictResolveIn, sync: SyncEngine = Depends(get_sync)) -> Dict[str, Any]:
    outcome = await sync.resolve_conflict(body.choice)
    return outcome.to_dict()
