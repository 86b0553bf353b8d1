from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel


class SyncConflictOut(BaseModel):
    local_updated_ms: int
    local_updated: Optional[str] = None
    local_last_sync_ms: Optional[int] = None
    remote_modified_ms: int
    remote_modified: Optional[str] = None


class SyncStatusOut(BaseModel):
    enabled: bool
    auth_state: Literal["signed_out", "signed_in"]
    state: Literal["idle", "checking", "uploading", "downloading", "conflict_pending"]
    dirty: bool
    unpersisted: bool = False
    last_sync_ms: Optional[int] = None
    last_sync: Optional[str] = None
    last_updated_ms: int
    remote_filename: str
    conflict: Optional[SyncConflictOut] = None
    last_error: Optional[Dict[str, Any]] = None


class SyncOutcomeOut(BaseModel):
    action: Literal["uploaded", "pulled", "conflict", "noop", "skipped", "failed"]
    state: str
    reason: Optional[str] = None
    remote_modified_ms: Optional[int] = None
    error: Optional[Dict[str, Any]] = None


class SyncTriggerIn(BaseModel):
    force: bool = False


class SignInIn(BaseModel):
    interactive: bool = True


class ConflictResolveIn(BaseModel):
    choice: Literal["remote", "local"]
