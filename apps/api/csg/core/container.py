"""
Process-wide object graph, built once at startup and injected into routes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine

from csg.core.config import AppConfig
from csg.core.db import make_engine
from csg.core.storage import LocalStorage
from csg.modules.series.service import SeriesStore
from csg.modules.sync.auth import CredentialProvider, NullCredentialProvider, StaticTokenProvider
from csg.modules.sync.scheduler import DebouncedScheduler
from csg.modules.sync.service import SyncEngine
from csg.modules.sync.transport import BlobTransport, DriveBlobTransport, InMemoryBlobTransport


@dataclass
class AppContainer:
    config: AppConfig
    engine: Engine
    storage: LocalStorage
    store: SeriesStore
    sync: SyncEngine
    scheduler: DebouncedScheduler


def _build_transport(config: AppConfig) -> Optional[BlobTransport]:
    kind = config.sync_transport
    if kind == "drive":
        return DriveBlobTransport(
            api_base=config.drive_api_base,
            timeout_s=config.http_timeout_s,
            max_attempts=config.http_max_attempts,
        )
    if kind == "memory":
        return InMemoryBlobTransport()
    return None


def _build_credentials(config: AppConfig) -> CredentialProvider:
    if config.sync_transport == "memory":
        return StaticTokenProvider(config.drive_token or "memory-token")
    if config.drive_token:
        return StaticTokenProvider(config.drive_token)
    return NullCredentialProvider()


def build_container(
    config: AppConfig,
    *,
    transport: Optional[BlobTransport] = None,
    credentials: Optional[CredentialProvider] = None,
) -> AppContainer:
    engine = make_engine(config.database_url)
    storage = LocalStorage(engine)
    store = SeriesStore(
        storage,
        storage_key=config.storage_key,
        legacy_storage_key=config.legacy_storage_key,
    )
    sync = SyncEngine(
        store,
        transport if transport is not None else _build_transport(config),
        credentials if credentials is not None else _build_credentials(config),
        remote_filename=config.remote_filename,
        tolerance_ms=config.sync_tolerance_ms,
    )
    scheduler = DebouncedScheduler(config.sync_debounce_s, sync.auto_sync)
    store.subscribe(scheduler.trigger)
    return AppContainer(config=config, engine=engine, storage=storage, store=store, sync=sync, scheduler=scheduler)


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_store(request: Request) -> SeriesStore:
    return get_container(request).store


def get_sync(request: Request) -> SyncEngine:
    return get_container(request).sync
