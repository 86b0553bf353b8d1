import asyncio
import threading

import pytest

from csg.core.errors import ValidationError
from csg.core.storage import KEY_DRIVE_CONNECTED
from csg.modules.series.document import create_default_document
from csg.modules.series.service import SeriesStore
from csg.modules.sync.auth import AuthState, NullCredentialProvider, StaticTokenProvider
from csg.modules.sync.service import SyncEngine, SyncState
from csg.modules.sync.transport import InMemoryBlobTransport

NAME = "csg_data.json"


@pytest.fixture
def remote(clock) -> InMemoryBlobTransport:
    return InMemoryBlobTransport(clock=clock)


@pytest.fixture
def engine(store: SeriesStore, remote: InMemoryBlobTransport, clock) -> SyncEngine:
    return SyncEngine(store, remote, StaticTokenProvider("token"), remote_filename=NAME, tolerance_ms=2000, clock=clock)


def _remote_doc(name: str, ts: int):
    doc = create_default_document(ts)
    doc.series["default"].name = name
    return doc.to_json()


def test_first_sync_uploads_when_no_remote_exists(engine: SyncEngine, store: SeriesStore, remote) -> None:
    store.create_series("Local")

    outcome = asyncio.run(engine.sign_in())

    assert outcome.action == "uploaded"
    assert remote.writes == 1
    assert remote.body(NAME) == store.document.to_json()
    assert not store.is_dirty
    assert store.last_sync_ms == remote.clock()
    assert engine.state == SyncState.idle


def test_newer_remote_is_pulled_when_local_is_clean(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    remote.put(NAME, _remote_doc("From cloud", clock.now), modified_ms=clock.now + 10_000)

    outcome = asyncio.run(engine.sign_in())

    assert outcome.action == "pulled"
    assert store.active_series.name == "From cloud"
    assert store.last_sync_ms == clock.now + 10_000
    assert not store.is_dirty
    assert remote.writes == 0


def test_newer_remote_with_dirty_local_parks_a_conflict(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    store.create_series("Unsynced work")
    t = store.last_updated
    remote.put(NAME, _remote_doc("From cloud", t), modified_ms=t + 5000)

    outcome = asyncio.run(engine.sign_in())

    assert outcome.action == "conflict"
    assert engine.state == SyncState.conflict_pending
    assert engine.conflict.remote_modified_ms == t + 5000
    assert engine.conflict.local_updated_ms == t
    assert store.active_series.name == "Unsynced work"
    assert store.is_dirty
    assert remote.writes == 0


def test_resolve_conflict_with_remote(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    store.create_series("Unsynced work")
    remote.put(NAME, _remote_doc("From cloud", clock.now), modified_ms=clock.now + 5000)
    asyncio.run(engine.sign_in())

    outcome = asyncio.run(engine.resolve_conflict("remote"))

    assert outcome.action == "pulled"
    assert store.active_series.name == "From cloud"
    assert not store.is_dirty
    assert engine.conflict is None
    assert engine.state == SyncState.idle


def test_resolve_conflict_with_local(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    store.create_series("Unsynced work")
    remote.put(NAME, _remote_doc("From cloud", clock.now), modified_ms=clock.now + 5000)
    asyncio.run(engine.sign_in())

    outcome = asyncio.run(engine.resolve_conflict("local"))

    assert outcome.action == "uploaded"
    assert remote.body(NAME)["series"][store.active_series_id]["name"] == "Unsynced work"
    assert not store.is_dirty
    assert engine.conflict is None


def test_resolve_without_conflict_or_with_bad_choice(engine: SyncEngine) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(engine.resolve_conflict("remote"))
    with pytest.raises(ValidationError):
        asyncio.run(engine.resolve_conflict("both"))


def test_auto_sync_never_resolves_a_conflict(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    store.create_series("Unsynced work")
    remote.put(NAME, _remote_doc("From cloud", clock.now), modified_ms=clock.now + 5000)
    asyncio.run(engine.sign_in())
    store.create_series("More work")

    outcome = asyncio.run(engine.auto_sync())

    assert outcome.action == "skipped"
    assert engine.state == SyncState.conflict_pending
    assert remote.writes == 0


def test_in_sync_and_clean_makes_no_network_write(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    store.create_series("Local")
    asyncio.run(engine.sign_in())
    clock.advance(60_000)

    outcome = asyncio.run(engine.sync())

    assert outcome.action == "noop"
    assert remote.writes == 1
    assert remote.downloads == 0


def test_remote_change_within_tolerance_counts_as_in_sync(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    store.create_series("Local")
    asyncio.run(engine.sign_in())
    remote.put(NAME, _remote_doc("Drifted", clock.now), modified_ms=store.last_sync_ms + 1500)
    store.create_series("Edited")

    outcome = asyncio.run(engine.sync())

    assert outcome.action == "uploaded"
    assert engine.conflict is None
    assert remote.downloads == 0


def test_dirty_local_is_pushed_on_auto_sync(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    asyncio.run(engine.sign_in())
    clock.advance(10_000)
    store.save_character({"name": "New", "stats": [1, 2, 3]})

    outcome = asyncio.run(engine.auto_sync())

    assert outcome.action == "uploaded"
    assert not store.is_dirty
    assert remote.body(NAME)["series"]["default"]["characters"][0]["name"] == "New"


def test_auto_sync_skips_clean_or_signed_out(engine: SyncEngine, store: SeriesStore) -> None:
    assert asyncio.run(engine.auto_sync()).reason == "clean"
    store.create_series("Dirty")
    assert asyncio.run(engine.auto_sync()).reason == "signed_out"


def test_transport_failure_leaves_dirty_flag_untouched(engine: SyncEngine, store: SeriesStore, remote) -> None:
    store.create_series("Local")
    remote.fail_writes = True

    outcome = asyncio.run(engine.sign_in())

    assert outcome.action == "failed"
    assert outcome.error["error"] == "transport_error"
    assert store.is_dirty
    assert engine.state == SyncState.idle
    assert engine.status()["last_error"]["error"] == "transport_error"

    remote.fail_writes = False
    assert asyncio.run(engine.sync()).action == "uploaded"
    assert not store.is_dirty


def test_clean_flag_is_not_faked_after_failed_read(engine: SyncEngine, store: SeriesStore, remote) -> None:
    asyncio.run(engine.sign_in())
    store.create_series("Local")
    remote.fail_reads = True

    assert asyncio.run(engine.sync()).action == "failed"
    assert store.is_dirty


def test_malformed_remote_document_does_not_touch_local(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    remote.put(NAME, {"nothing": "here"}, modified_ms=clock.now + 10_000)
    before = store.document

    outcome = asyncio.run(engine.sign_in())

    assert outcome.action == "failed"
    assert outcome.error["error"] == "format_error"
    assert store.document == before


def test_edit_during_upload_keeps_dirty(store: SeriesStore, clock) -> None:
    class EditingTransport(InMemoryBlobTransport):
        async def create(self, name, payload, credential):
            store.create_series("Typed while uploading")
            return await super().create(name, payload, credential)

    remote = EditingTransport(clock=clock)
    engine = SyncEngine(store, remote, StaticTokenProvider("token"), remote_filename=NAME, clock=clock)
    store.create_series("Before upload")

    assert asyncio.run(engine.sign_in()).action == "uploaded"
    assert store.is_dirty
    assert remote.body(NAME)["activeSeriesId"] != store.active_series_id


def test_sign_in_failure_and_disabled_sync(store: SeriesStore, remote) -> None:
    engine = SyncEngine(store, remote, NullCredentialProvider())
    outcome = asyncio.run(engine.sign_in())
    assert outcome.action == "skipped"
    assert engine.auth_state == AuthState.signed_out

    disabled = SyncEngine(store, None, StaticTokenProvider("token"))
    assert asyncio.run(disabled.sign_in()).reason == "sync_disabled"
    assert disabled.status()["enabled"] is False


def test_sign_out_then_restore_session(engine: SyncEngine, store: SeriesStore) -> None:
    asyncio.run(engine.sign_in())
    assert store.storage.get(KEY_DRIVE_CONNECTED) is True

    restarted = SyncEngine(store, engine.transport, StaticTokenProvider("token"), remote_filename=NAME)
    assert asyncio.run(restarted.restore_session()) is not None
    assert restarted.signed_in

    asyncio.run(restarted.sign_out())
    assert not restarted.signed_in
    assert store.storage.get(KEY_DRIVE_CONNECTED) is None
    assert asyncio.run(restarted.restore_session()) is None


def test_auth_rejection_signs_out(engine: SyncEngine, store: SeriesStore, remote) -> None:
    asyncio.run(engine.sign_in())
    engine._credential = type(engine._credential)("")
    store.create_series("Local")

    outcome = asyncio.run(engine.sync())

    assert outcome.error["error"] == "auth_error"
    assert engine.auth_state == AuthState.signed_out
    assert store.is_dirty


def test_store_writes_run_off_the_event_loop_thread(engine: SyncEngine, store: SeriesStore, remote, monkeypatch) -> None:
    threads = []
    mark_synced = store.mark_synced

    def recording_mark_synced(revision, *, synced_at_ms):
        threads.append(threading.get_ident())
        return mark_synced(revision, synced_at_ms=synced_at_ms)

    monkeypatch.setattr(store, "mark_synced", recording_mark_synced)
    store.create_series("Local")

    assert asyncio.run(engine.sign_in()).action == "uploaded"
    assert threads and threads[0] != threading.get_ident()
    assert not store.is_dirty


def test_pulled_document_is_normalized_to_dimensions(engine: SyncEngine, store: SeriesStore, remote, clock) -> None:
    body = _remote_doc("From cloud", clock.now)
    body["series"]["default"]["settings"]["dimensions"] = 5
    body["series"]["default"]["characters"] = [{"id": "a", "name": "A", "stats": [2]}]
    remote.put(NAME, body, modified_ms=clock.now + 10_000)

    assert asyncio.run(engine.sign_in()).action == "pulled"
    assert store.characters[0].stats == [2, 0, 0, 0, 0]
