"""
Local key-value storage for the persisted document and sync bookkeeping.

One row per key in `local_entries`; values are stored as JSON text.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel

from csg.core.errors import PersistenceError
from csg.core.observability import now_iso

KEY_IS_DIRTY = "csg_is_dirty"
KEY_LAST_SYNC = "csg_last_sync"
KEY_DRIVE_CONNECTED = "csg_drive_connected"


class LocalEntry(SQLModel, table=True):
    __tablename__ = "local_entries"

    key: str = Field(primary_key=True)
    value_json: str
    updated_at: str


class LocalStorage:
    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        self.engine = engine
        if create_schema:
            # migrations own the schema; this only fills in a missing table
            SQLModel.metadata.create_all(engine, tables=[LocalEntry.__table__])

    def get(self, key: str) -> Optional[Any]:
        try:
            with Session(self.engine) as session:
                row = session.get(LocalEntry, key)
                if row is None:
                    return None
                raw = row.value_json
        except SQLAlchemyError as e:
            raise PersistenceError(f"local read failed for {key!r}", {"type": type(e).__name__}) from e
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        try:
            with Session(self.engine) as session:
                row = session.get(LocalEntry, key)
                if row is None:
                    row = LocalEntry(key=key, value_json=payload, updated_at=now_iso())
                else:
                    row.value_json = payload
                    row.updated_at = now_iso()
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"local write failed for {key!r}", {"type": type(e).__name__}) from e

    def delete(self, key: str) -> None:
        try:
            with Session(self.engine) as session:
                row = session.get(LocalEntry, key)
                if row is not None:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"local delete failed for {key!r}", {"type": type(e).__name__}) from e

    def health(self) -> Dict[str, Any]:
        try:
            self.set(".probe_write", "ok")
            self.delete(".probe_write")
            return {"status": "ok", "kind": "sqlite_kv", "table": LocalEntry.__tablename__}
        except PersistenceError as e:
            return {"status": "error", "kind": "sqlite_kv", "table": LocalEntry.__tablename__, "error": e.message}
