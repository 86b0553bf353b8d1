"""
SyncEngine: reconciles the local document with one remote blob.

One attempt walks idle -> checking -> {uploading | downloading |
conflict_pending} -> idle. The remote file's modifiedTime is compared with the
locally recorded last-sync time; differences within `tolerance_ms` count as
in sync. A remote that is newer while local edits are unsynced is never
resolved automatically: the engine parks in `conflict_pending` until
`resolve_conflict()` is called.

Transport, format and persistence failures end the attempt, are logged, and
leave the dirty flag as it was.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from csg.core.errors import AuthError, FormatError, PersistenceError, TransportError, ValidationError
from csg.core.observability import emit, ms_to_iso, now_ms
from csg.core.storage import KEY_DRIVE_CONNECTED
from csg.modules.series.document import Document, upgrade_document
from csg.modules.series.service import SeriesStore

from .auth import AuthState, Credential, CredentialProvider
from .transport import BlobTransport, RemoteFile


class SyncState(str, Enum):
    idle = "idle"
    checking = "checking"
    uploading = "uploading"
    downloading = "downloading"
    conflict_pending = "conflict_pending"


ACTION_UPLOADED = "uploaded"
ACTION_PULLED = "pulled"
ACTION_CONFLICT = "conflict"
ACTION_NOOP = "noop"
ACTION_SKIPPED = "skipped"
ACTION_FAILED = "failed"

RESOLVE_REMOTE = "remote"
RESOLVE_LOCAL = "local"


@dataclass(frozen=True)
class SyncConflict:
    local_updated_ms: int
    local_last_sync_ms: Optional[int]
    remote_modified_ms: int
    remote_file: RemoteFile
    remote: Document = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local_updated_ms": self.local_updated_ms,
            "local_updated": ms_to_iso(self.local_updated_ms),
            "local_last_sync_ms": self.local_last_sync_ms,
            "remote_modified_ms": self.remote_modified_ms,
            "remote_modified": ms_to_iso(self.remote_modified_ms),
        }


@dataclass(frozen=True)
class SyncOutcome:
    action: str
    state: SyncState
    reason: Optional[str] = None
    remote_modified_ms: Optional[int] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.action != ACTION_FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "state": self.state.value,
            "reason": self.reason,
            "remote_modified_ms": self.remote_modified_ms,
            "error": self.error,
        }


class SyncEngine:
    def __init__(
        self,
        store: SeriesStore,
        transport: Optional[BlobTransport],
        credentials: CredentialProvider,
        *,
        remote_filename: str = "csg_data.json",
        tolerance_ms: int = 2000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.transport = transport
        self.credentials = credentials
        self.remote_filename = remote_filename
        self.tolerance_ms = int(tolerance_ms)
        self._clock = clock

        self.state = SyncState.idle
        self.auth_state = AuthState.signed_out
        self._credential: Optional[Credential] = None
        self._conflict: Optional[SyncConflict] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._rerun = False
        self.last_error: Optional[Dict[str, Any]] = None
        self.last_outcome: Optional[SyncOutcome] = None

    @property
    def enabled(self) -> bool:
        return self.transport is not None

    @property
    def signed_in(self) -> bool:
        return self._credential is not None

    @property
    def conflict(self) -> Optional[SyncConflict]:
        return self._conflict

    def _flight(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _done(self, outcome: SyncOutcome) -> SyncOutcome:
        self.last_outcome = outcome
        return outcome

    def _skipped(self, reason: str) -> SyncOutcome:
        return self._done(SyncOutcome(action=ACTION_SKIPPED, state=self.state, reason=reason))

    # -------------------------
    # Session
    # -------------------------
    async def sign_in(self, interactive: bool = True) -> SyncOutcome:
        if self.transport is None:
            return self._skipped("sync_disabled")
        result = await self.credentials.acquire(interactive=interactive)
        if not result.ok or result.credential is None:
            self._credential = None
            self.auth_state = AuthState.signed_out
            if not interactive:
                await asyncio.to_thread(self.store.storage.delete, KEY_DRIVE_CONNECTED)
            emit("warn", "sync.auth.failed", str(result.error), None, __name__, interactive=interactive)
            return self._skipped(result.error or "auth_failed")

        self._credential = result.credential
        self.auth_state = AuthState.signed_in
        await asyncio.to_thread(self.store.storage.set, KEY_DRIVE_CONNECTED, True)
        emit("info", "sync.signed_in", "remote sync connected", None, __name__, interactive=interactive)
        return await self.sync()

    async def sign_out(self) -> None:
        credential = self._credential
        self._credential = None
        self.auth_state = AuthState.signed_out
        self._conflict = None
        self.state = SyncState.idle
        if credential is not None:
            await self.credentials.revoke(credential)
        await asyncio.to_thread(self.store.storage.delete, KEY_DRIVE_CONNECTED)
        emit("info", "sync.signed_out", "remote sync disconnected", None, __name__)

    async def restore_session(self) -> Optional[SyncOutcome]:
        """Silent re-auth at startup when a previous session was connected."""
        if self.transport is None:
            return None
        if not await asyncio.to_thread(self.store.storage.get, KEY_DRIVE_CONNECTED):
            return None
        return await self.sign_in(interactive=False)

    # -------------------------
    # Attempts
    # -------------------------
    async def sync(self, force: bool = False) -> SyncOutcome:
        """Manual trigger. Waits for an in-flight attempt, then re-checks (dropping a parked conflict).

        `force` uploads even when local is clean, unless the remote is newer.
        """
        async with self._flight():
            self._conflict = None
            if self.state == SyncState.conflict_pending:
                self.state = SyncState.idle
            return await self._attempt(force=force)

    async def auto_sync(self) -> SyncOutcome:
        """Debounced tick. Never resolves or replaces a pending conflict."""
        if self._conflict is not None:
            return self._skipped("conflict_pending")
        if not self.store.is_dirty:
            return self._skipped("clean")
        lock = self._flight()
        if lock.locked():
            self._rerun = True
            return self._skipped("in_flight")
        async with lock:
            outcome = await self._attempt(force=False)
            while self._rerun and self._conflict is None and self.store.is_dirty and outcome.ok:
                self._rerun = False
                outcome = await self._attempt(force=False)
            self._rerun = False
            return outcome

    async def _attempt(self, *, force: bool) -> SyncOutcome:
        transport = self.transport
        if transport is None:
            return self._skipped("sync_disabled")
        credential = self._credential
        if credential is None:
            return self._skipped("signed_out")

        self.state = SyncState.checking
        try:
            remote = await transport.find(self.remote_filename, credential)
            if remote is None:
                return await self._upload(transport, credential, None, reason="no_remote")

            last_sync = self.store.last_sync_ms or 0
            if remote.modified_ms - last_sync > self.tolerance_ms:
                self.state = SyncState.downloading
                doc = upgrade_document(await transport.download(remote, credential))
                revision = self.store.revision
                if not self.store.is_dirty and await asyncio.to_thread(
                    self.store.replace_document, doc, synced_at_ms=remote.modified_ms, expected_revision=revision
                ):
                    emit("info", "sync.pulled", "local document replaced from remote", None, __name__,
                         remote_modified=remote.modified_iso)
                    return self._done(SyncOutcome(action=ACTION_PULLED, state=SyncState.idle,
                                                  remote_modified_ms=remote.modified_ms))
                return self._park_conflict(remote, doc, last_sync)

            if self.store.is_dirty or force:
                return await self._upload(transport, credential, remote, reason="forced" if force and not self.store.is_dirty else "dirty")

            return self._done(SyncOutcome(action=ACTION_NOOP, state=SyncState.idle, reason="in_sync",
                                          remote_modified_ms=remote.modified_ms))
        except (TransportError, FormatError, PersistenceError) as e:
            return self._failed(e)
        finally:
            if self.state != SyncState.conflict_pending:
                self.state = SyncState.idle

    async def _upload(
        self,
        transport: BlobTransport,
        credential: Credential,
        remote: Optional[RemoteFile],
        *,
        reason: str,
    ) -> SyncOutcome:
        self.state = SyncState.uploading
        payload, revision = await asyncio.to_thread(self.store.snapshot)
        if remote is None:
            written = await transport.create(self.remote_filename, payload, credential)
        else:
            written = await transport.update(remote, payload, credential)
        synced_at = written.modified_ms or self._clock()
        cleared = await asyncio.to_thread(self.store.mark_synced, revision, synced_at_ms=synced_at)
        emit("info", "sync.uploaded", "local document pushed to remote", None, __name__,
             reason=reason, revision=revision, dirty_cleared=cleared)
        return self._done(SyncOutcome(action=ACTION_UPLOADED, state=SyncState.idle, reason=reason,
                                      remote_modified_ms=written.modified_ms))

    def _park_conflict(self, remote: RemoteFile, doc: Document, last_sync: int) -> SyncOutcome:
        self._conflict = SyncConflict(
            local_updated_ms=self.store.last_updated,
            local_last_sync_ms=last_sync or None,
            remote_modified_ms=remote.modified_ms,
            remote_file=remote,
            remote=doc,
        )
        self.state = SyncState.conflict_pending
        emit("warn", "sync.conflict", "remote changed while local edits are unsynced", None, __name__,
             **self._conflict.to_dict())
        return self._done(SyncOutcome(action=ACTION_CONFLICT, state=SyncState.conflict_pending,
                                      remote_modified_ms=remote.modified_ms))

    def _failed(self, e: Exception) -> SyncOutcome:
        if isinstance(e, AuthError):
            self._credential = None
            self.auth_state = AuthState.signed_out
        message = getattr(e, "message", str(e))
        code = getattr(e, "code", "error")
        details = dict(getattr(e, "details", {}) or {})
        self.last_error = {"ts": ms_to_iso(self._clock()), "error": code, "message": message, "details": details}
        emit("error", "sync.failed", message, None, __name__, error=code, state=self.state.value, details=details)
        # a failed attempt started from a parked conflict goes back to it
        state = SyncState.conflict_pending if self._conflict is not None else SyncState.idle
        return self._done(SyncOutcome(action=ACTION_FAILED, state=state, error={"error": code, "message": message}))

    # -------------------------
    # Conflict resolution
    # -------------------------
    async def resolve_conflict(self, choice: str) -> SyncOutcome:
        if choice not in (RESOLVE_REMOTE, RESOLVE_LOCAL):
            raise ValidationError("choice must be 'remote' or 'local'", {"choice": choice})
        async with self._flight():
            conflict = self._conflict
            if conflict is None:
                raise ValidationError("no sync conflict is pending")
            transport = self.transport
            credential = self._credential
            if transport is None or credential is None:
                return self._skipped("signed_out")

            try:
                if choice == RESOLVE_REMOTE:
                    self.state = SyncState.downloading
                    await asyncio.to_thread(
                        self.store.replace_document, conflict.remote, synced_at_ms=conflict.remote_modified_ms
                    )
                    self._conflict = None
                    emit("info", "sync.conflict.resolved", "kept remote document", None, __name__, choice=choice)
                    return self._done(SyncOutcome(action=ACTION_PULLED, state=SyncState.idle, reason="conflict_remote",
                                                  remote_modified_ms=conflict.remote_modified_ms))

                outcome = await self._upload(transport, credential, conflict.remote_file, reason="conflict_local")
                self._conflict = None
                emit("info", "sync.conflict.resolved", "kept local document", None, __name__, choice=choice)
                return outcome
            except (TransportError, PersistenceError) as e:
                return self._failed(e)
            finally:
                self.state = SyncState.conflict_pending if self._conflict is not None else SyncState.idle

    # -------------------------
    # Status
    # -------------------------
    def status(self) -> Dict[str, Any]:
        last_sync = self.store.last_sync_ms
        return {
            "enabled": self.enabled,
            "auth_state": self.auth_state.value,
            "state": self.state.value,
            "dirty": self.store.is_dirty,
            "unpersisted": self.store.has_unpersisted_changes,
            "last_sync_ms": last_sync,
            "last_sync": ms_to_iso(last_sync),
            "last_updated_ms": self.store.last_updated,
            "remote_filename": self.remote_filename,
            "conflict": self._conflict.to_dict() if self._conflict is not None else None,
            "last_error": self.last_error,
        }
