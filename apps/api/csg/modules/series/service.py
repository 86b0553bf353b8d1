"""
SeriesStore: sole owner of the in-memory document.

Every mutation goes through `_commit()`, which refreshes `lastUpdated`, bumps
the revision counter, sets the dirty flag, writes the document to local
storage and notifies subscribers (the sync scheduler). Mutations never
interleave (one RLock per store).
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

from csg.core.errors import FormatError, PersistenceError, StaleDraftError, ValidationError
from csg.core.ids import new_ulid
from csg.core.observability import emit, now_ms
from csg.core.storage import KEY_IS_DIRTY, KEY_LAST_SYNC, LocalStorage

from .document import (
    Character,
    Document,
    MIN_DIMENSIONS,
    Series,
    Settings,
    clamp_stat_values,
    create_default_document,
    default_settings,
    detect_version,
    placeholder_stat_name,
    upgrade_document,
)
from .migrator import migrate_dimensions

Listener = Callable[[], None]
T = TypeVar("T")
CharacterInput = Union[Character, Mapping[str, Any]]


def _clean_name(name: Optional[str]) -> str:
    return (name or "").strip()


def _clean_tiers(tiers: Sequence[str]) -> List[str]:
    return [str(t).strip() for t in tiers if t is not None and str(t).strip()]


class SeriesStore:
    def __init__(
        self,
        storage: LocalStorage,
        *,
        storage_key: str = "csg_data_v2",
        legacy_storage_key: str = "csg_data_v1",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.storage = storage
        self.storage_key = storage_key
        self.legacy_storage_key = legacy_storage_key
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._revision = 0
        self._unpersisted = False

        self._dirty = bool(storage.get(KEY_IS_DIRTY))
        last_sync = storage.get(KEY_LAST_SYNC)
        self._last_sync: Optional[int] = int(last_sync) if isinstance(last_sync, (int, float)) else None
        self._doc = self._bootstrap()

    # -------------------------
    # Bootstrap / persistence
    # -------------------------
    def _bootstrap(self) -> Document:
        raw = self.storage.get(self.storage_key)
        if raw is not None:
            try:
                version = detect_version(raw)
                doc = upgrade_document(raw)
                if version != 2:
                    self._persist_quietly(doc)
                return doc
            except FormatError as e:
                emit("error", "store.load.invalid", e.message, None, __name__, key=self.storage_key, details=e.details)
                self.storage.set(f"{self.storage_key}.corrupt", raw)

        legacy = self.storage.get(self.legacy_storage_key)
        if legacy is not None:
            try:
                doc = upgrade_document(legacy)
            except FormatError as e:
                emit("error", "store.load.invalid", e.message, None, __name__, key=self.legacy_storage_key)
            else:
                emit("info", "store.load.migrated_v1", "legacy document migrated", None, __name__)
                self._persist_quietly(doc)
                return doc

        doc = create_default_document(self._clock())
        self._persist_quietly(doc)
        return doc

    def _persist_quietly(self, doc: Document) -> None:
        try:
            self.storage.set(self.storage_key, doc.to_json())
        except PersistenceError as e:
            self._unpersisted = True
            emit("error", "store.persist.failed", e.message, None, __name__, details=e.details)

    def _write(self) -> None:
        try:
            self.storage.set(self.storage_key, self._doc.to_json())
            self.storage.set(KEY_IS_DIRTY, self._dirty)
        except PersistenceError as e:
            self._unpersisted = True
            emit("error", "store.persist.failed", e.message, None, __name__, details=e.details)
            raise
        self._unpersisted = False

    def _commit(self) -> None:
        self._doc.last_updated = self._clock()
        self._revision += 1
        self._dirty = True
        try:
            self._write()
        finally:
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                emit("error", "store.listener.failed", str(e), None, __name__, type=type(e).__name__)

    def flush(self) -> None:
        """Retry writing the in-memory document after a failed local write."""
        with self._lock:
            self._write()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -------------------------
    # Read accessors (copies)
    # -------------------------
    @property
    def document(self) -> Document:
        with self._lock:
            return self._doc.model_copy(deep=True)

    def snapshot(self) -> Tuple[Dict[str, Any], int]:
        with self._lock:
            return self._doc.to_json(), self._revision

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def has_unpersisted_changes(self) -> bool:
        return self._unpersisted

    @property
    def last_sync_ms(self) -> Optional[int]:
        return self._last_sync

    @property
    def last_updated(self) -> int:
        return self._doc.last_updated

    @property
    def active_series_id(self) -> str:
        return self._doc.active_series_id

    @property
    def active_series(self) -> Series:
        with self._lock:
            return self._doc.series[self._doc.active_series_id].model_copy(deep=True)

    @property
    def settings(self) -> Settings:
        return self.active_series.settings

    @property
    def characters(self) -> List[Character]:
        return self.active_series.characters

    def series_list(self) -> List[Dict[str, str]]:
        with self._lock:
            return [{"id": sid, "name": s.name} for sid, s in self._doc.series.items()]

    def get_series(self, series_id: str) -> Optional[Series]:
        with self._lock:
            s = self._doc.series.get(series_id)
            return s.model_copy(deep=True) if s is not None else None

    def get_character(self, character_id: str) -> Optional[Character]:
        with self._lock:
            for c in self._active().characters:
                if c.id == character_id:
                    return c.model_copy(deep=True)
        return None

    def _active(self) -> Series:
        return self._doc.series[self._doc.active_series_id]

    # -------------------------
    # Series
    # -------------------------
    def create_series(self, name: str) -> str:
        clean = _clean_name(name)
        if not clean:
            raise ValidationError("series name must not be empty")
        with self._lock:
            series_id = new_ulid()
            self._doc.series[series_id] = Series(name=clean, settings=default_settings(), characters=[])
            self._doc.active_series_id = series_id
            self._commit()
            return series_id

    def switch_series(self, series_id: str) -> bool:
        with self._lock:
            if series_id not in self._doc.series:
                return False
            self._doc.active_series_id = series_id
            self._commit()
            return True

    def rename_series(self, series_id: str, name: str) -> bool:
        clean = _clean_name(name)
        if not clean:
            raise ValidationError("series name must not be empty")
        with self._lock:
            s = self._doc.series.get(series_id)
            if s is None:
                return False
            s.name = clean
            self._commit()
            return True

    def delete_series(self, series_id: str) -> bool:
        with self._lock:
            if series_id not in self._doc.series or len(self._doc.series) <= 1:
                return False
            del self._doc.series[series_id]
            if self._doc.active_series_id == series_id:
                self._doc.active_series_id = next(iter(self._doc.series))
            self._commit()
            return True

    # -------------------------
    # Settings / axes (active series)
    # -------------------------
    def update_settings(
        self,
        dimensions: int,
        tiers: Sequence[str],
        stat_names: Optional[Sequence[str]] = None,
        *,
        expected_series_id: Optional[str] = None,
    ) -> Settings:
        dims = int(dimensions)
        if dims < MIN_DIMENSIONS:
            raise ValidationError(f"dimensions must be >= {MIN_DIMENSIONS}", {"dimensions": dims})
        clean_tiers = _clean_tiers(tiers)
        if not clean_tiers:
            raise ValidationError("tiers must contain at least one non-blank value")
        names: Optional[List[str]] = None
        if stat_names is not None:
            names = [_clean_name(n) or placeholder_stat_name(i) for i, n in enumerate(stat_names)]
            if len(names) != dims:
                raise ValidationError("statNames length must equal dimensions", {"dimensions": dims, "statNames": len(names)})

        with self._lock:
            if expected_series_id is not None and expected_series_id != self._doc.active_series_id:
                raise StaleDraftError(
                    "active series changed while editing settings",
                    {"expected": expected_series_id, "active": self._doc.active_series_id},
                )
            series = self._active()
            old_dim = series.settings.dimensions
            current_names = series.settings.stat_names
            if dims != old_dim:
                m = migrate_dimensions(series.characters, old_dim, dims, stat_names=current_names)
                series.characters = m.characters
                current_names = m.stat_names

            series.settings.dimensions = dims
            series.settings.tiers = clean_tiers
            series.settings.stat_names = names if names is not None else current_names
            self._commit()
            return series.settings.model_copy(deep=True)

    def insert_stat(self, index: int, name: Optional[str] = None) -> Settings:
        with self._lock:
            series = self._active()
            old_dim = series.settings.dimensions
            m = migrate_dimensions(
                series.characters,
                old_dim,
                old_dim + 1,
                axis_index=index,
                stat_names=series.settings.stat_names,
                axis_name=_clean_name(name) or None,
            )
            series.characters = m.characters
            series.settings.dimensions = m.dimensions
            series.settings.stat_names = m.stat_names
            self._commit()
            return series.settings.model_copy(deep=True)

    def remove_stat(self, index: int) -> bool:
        with self._lock:
            series = self._active()
            old_dim = series.settings.dimensions
            if old_dim <= MIN_DIMENSIONS or index < 0 or index >= old_dim:
                return False
            m = migrate_dimensions(
                series.characters,
                old_dim,
                old_dim - 1,
                axis_index=index,
                stat_names=series.settings.stat_names,
            )
            series.characters = m.characters
            series.settings.dimensions = m.dimensions
            series.settings.stat_names = m.stat_names
            self._commit()
            return True

    # -------------------------
    # Characters (active series)
    # -------------------------
    def save_character(self, data: CharacterInput) -> Optional[str]:
        """Append (fresh id) or replace by id in place. Unknown ids are a no-op (None)."""
        if isinstance(data, Character):
            char = data.model_copy(deep=True)
        else:
            try:
                char = Character.model_validate(dict(data))
            except PydanticValidationError as e:
                raise ValidationError(
                    "invalid character",
                    {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
                ) from e
        with self._lock:
            series = self._active()
            # out-of-scale values are clamped onto the tier scale; vector length is left to the caller
            char.stats = clamp_stat_values(char.stats, series.settings.tiers)
            chars = series.characters
            if not char.id:
                char.id = new_ulid()
                chars.append(char)
                self._commit()
                return char.id
            for idx, existing in enumerate(chars):
                if existing.id == char.id:
                    chars[idx] = char
                    self._commit()
                    return char.id
            return None

    def delete_character(self, character_id: str) -> bool:
        with self._lock:
            series = self._active()
            kept = [c for c in series.characters if c.id != character_id]
            if len(kept) == len(series.characters):
                return False
            series.characters = kept
            self._commit()
            return True

    # -------------------------
    # Whole-document operations (import / sync)
    # -------------------------
    def apply(self, change: Callable[[Document], T]) -> T:
        """Run `change` on a working copy under the store lock; commit it as one mutation.

        Nothing is applied when `change` raises.
        """
        with self._lock:
            working = self._doc.model_copy(deep=True)
            out = change(working)
            if working.active_series_id not in working.series:
                working.active_series_id = next(iter(working.series))
            self._doc = working
            self._commit()
            return out

    def replace_document(self, doc: Document, *, synced_at_ms: int, expected_revision: Optional[int] = None) -> bool:
        """Adopt a remote document verbatim; local state becomes clean.

        Refused (False) when `expected_revision` no longer matches, i.e. a local
        mutation landed after the caller looked at the dirty flag.
        """
        with self._lock:
            if expected_revision is not None and expected_revision != self._revision:
                return False
            incoming = doc.model_copy(deep=True)
            synced_at = int(synced_at_ms)
            # storage first: on failure memory still holds the local document, still dirty
            try:
                self.storage.set(self.storage_key, incoming.to_json())
                self.storage.set(KEY_IS_DIRTY, False)
                self.storage.set(KEY_LAST_SYNC, synced_at)
            except PersistenceError as e:
                self._unpersisted = True
                emit("error", "store.persist.failed", e.message, None, __name__, details=e.details)
                raise
            self._doc = incoming
            self._revision += 1
            self._dirty = False
            self._last_sync = synced_at
            self._unpersisted = False
            return True

    def mark_synced(self, revision: int, *, synced_at_ms: int) -> bool:
        """Record a successful upload of `revision`; clears dirty only if nothing changed since."""
        with self._lock:
            synced_at = int(synced_at_ms)
            cleared = revision == self._revision
            dirty = self._dirty and not cleared
            self.storage.set(KEY_LAST_SYNC, synced_at)
            self.storage.set(KEY_IS_DIRTY, dirty)
            self._last_sync = synced_at
            self._dirty = dirty
            return cleared
