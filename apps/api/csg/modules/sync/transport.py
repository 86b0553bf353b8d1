"""
Remote blob store access for the synced document.

The engine only needs four calls keyed by a well-known file name: find the
file's metadata, download its body, create it, update it. `DriveBlobTransport`
talks to the Drive v3 REST API (appDataFolder space); `InMemoryBlobTransport`
backs tests and the `memory` transport setting.
"""
from __future__ import annotations

import asyncio
import datetime
import json
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import httpx

from csg.core.errors import AuthError, FormatError, TransportError
from csg.core.observability import emit, ms_to_iso, now_ms

from .auth import Credential

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
APP_DATA_SPACE = "appDataFolder"
FILE_FIELDS = "id,name,modifiedTime"


@dataclass(frozen=True)
class RemoteFile:
    file_id: str
    name: str
    modified_ms: int

    @property
    def modified_iso(self) -> Optional[str]:
        return ms_to_iso(self.modified_ms)


class BlobTransport(Protocol):
    async def find(self, name: str, credential: Credential) -> Optional[RemoteFile]: ...

    async def download(self, file: RemoteFile, credential: Credential) -> Any: ...

    async def create(self, name: str, payload: Dict[str, Any], credential: Credential) -> RemoteFile: ...

    async def update(self, file: RemoteFile, payload: Dict[str, Any], credential: Credential) -> RemoteFile: ...


def parse_rfc3339_ms(value: Optional[str]) -> int:
    if not value:
        return 0
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.datetime.fromisoformat(text)
    except ValueError as e:
        raise TransportError("remote modifiedTime is not a valid timestamp", {"modifiedTime": value}) from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return int(dt.timestamp() * 1000)


def backoff_delay(attempt: int, *, base_s: float, retry_after_s: Optional[float] = None, jitter_ratio: float = 0.12) -> float:
    """Exponential delay for `attempt` (1-based), raised to Retry-After when the server sends one."""
    base = max(0.0, base_s) * (2 ** max(0, attempt - 1))
    if retry_after_s is not None:
        base = max(base, retry_after_s)
    return base + base * jitter_ratio * random.random()


def _retry_after(resp: httpx.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


# =========
# Drive v3
# =========

class DriveBlobTransport:
    def __init__(
        self,
        *,
        api_base: str = "https://www.googleapis.com",
        timeout_s: float = 20.0,
        max_attempts: int = 3,
        base_sleep_s: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self.max_attempts = max(1, int(max_attempts))
        self.base_sleep_s = base_sleep_s
        self._client = client
        self._sleep = sleep

    def _files_url(self, file_id: Optional[str] = None) -> str:
        url = f"{self.api_base}/drive/v3/files"
        return f"{url}/{file_id}" if file_id else url

    def _upload_url(self, file_id: str) -> str:
        return f"{self.api_base}/upload/drive/v3/files/{file_id}"

    async def _request(self, op: str, method: str, url: str, credential: Credential, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {credential.token}"

        last: Tuple[str, Dict[str, Any]] = ("no attempt made", {})
        for attempt in range(1, self.max_attempts + 1):
            retry_after: Optional[float] = None
            try:
                if self._client is not None:
                    resp = await self._client.request(method, url, headers=headers, timeout=self.timeout_s, **kwargs)
                else:
                    async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                        resp = await client.request(method, url, headers=headers, **kwargs)
            except httpx.TransportError as e:
                last = (f"{op} failed: {type(e).__name__}", {"op": op, "type": type(e).__name__})
            else:
                if resp.status_code in (401, 403):
                    raise AuthError(f"{op} rejected by remote", {"op": op, "status": resp.status_code})
                if resp.status_code < 400:
                    return resp
                if resp.status_code not in RETRYABLE_STATUS:
                    raise TransportError(f"{op} failed with HTTP {resp.status_code}", {"op": op, "status": resp.status_code})
                retry_after = _retry_after(resp)
                last = (f"{op} failed with HTTP {resp.status_code}", {"op": op, "status": resp.status_code})

            if attempt < self.max_attempts:
                delay = backoff_delay(attempt, base_s=self.base_sleep_s, retry_after_s=retry_after)
                emit("warn", "transport.retry", last[0], None, __name__, attempt=attempt, max_attempts=self.max_attempts, sleep_s=round(delay, 3))
                await self._sleep(delay)

        raise TransportError(last[0], dict(last[1], attempts=self.max_attempts))

    @staticmethod
    def _remote_file(data: Any) -> RemoteFile:
        if not isinstance(data, dict) or not data.get("id"):
            raise TransportError("remote returned unexpected file metadata")
        return RemoteFile(
            file_id=str(data["id"]),
            name=str(data.get("name") or ""),
            modified_ms=parse_rfc3339_ms(data.get("modifiedTime")),
        )

    async def find(self, name: str, credential: Credential) -> Optional[RemoteFile]:
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        resp = await self._request(
            "find",
            "GET",
            self._files_url(),
            credential,
            params={
                "q": f"name = '{escaped}' and trashed = false",
                "spaces": APP_DATA_SPACE,
                "fields": f"files({FILE_FIELDS})",
            },
        )
        files = (resp.json() or {}).get("files") or []
        return self._remote_file(files[0]) if files else None

    async def download(self, file: RemoteFile, credential: Credential) -> Any:
        resp = await self._request("download", "GET", self._files_url(file.file_id), credential, params={"alt": "media"})
        try:
            return json.loads(resp.content.decode("utf-8-sig"))
        except ValueError as e:
            raise FormatError("remote document is not valid JSON", {"file_id": file.file_id}) from e

    async def _upload(self, op: str, file_id: str, payload: Dict[str, Any], credential: Credential) -> RemoteFile:
        resp = await self._request(
            op,
            "PATCH",
            self._upload_url(file_id),
            credential,
            params={"uploadType": "media", "fields": FILE_FIELDS},
            content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        return self._remote_file(resp.json())

    async def create(self, name: str, payload: Dict[str, Any], credential: Credential) -> RemoteFile:
        resp = await self._request(
            "create",
            "POST",
            self._files_url(),
            credential,
            params={"fields": FILE_FIELDS},
            json={"name": name, "mimeType": "application/json", "parents": [APP_DATA_SPACE]},
        )
        created = self._remote_file(resp.json())
        return await self._upload("create", created.file_id, payload, credential)

    async def update(self, file: RemoteFile, payload: Dict[str, Any], credential: Credential) -> RemoteFile:
        return await self._upload("update", file.file_id, payload, credential)


# =========
# In-memory
# =========

class InMemoryBlobTransport:
    """Process-local blob store with a controllable clock and failure injection."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self.clock = clock
        self._files: Dict[str, Tuple[RemoteFile, str]] = {}
        self._seq = 0
        self.fail_reads = False
        self.fail_writes = False
        self.finds = 0
        self.downloads = 0
        self.writes = 0

    def _check(self, credential: Optional[Credential]) -> None:
        if credential is None or not credential.token:
            raise AuthError("missing credential")

    def put(self, name: str, payload: Any, *, modified_ms: Optional[int] = None) -> RemoteFile:
        """Seed or overwrite a remote file directly (not counted as a write)."""
        existing = self._files.get(name)
        if existing is not None:
            file_id = existing[0].file_id
        else:
            self._seq += 1
            file_id = f"mem-{self._seq}"
        f = RemoteFile(file_id=file_id, name=name, modified_ms=int(modified_ms if modified_ms is not None else self.clock()))
        self._files[name] = (f, json.dumps(payload, ensure_ascii=False))
        return f

    def body(self, name: str) -> Optional[Any]:
        entry = self._files.get(name)
        return json.loads(entry[1]) if entry is not None else None

    async def find(self, name: str, credential: Credential) -> Optional[RemoteFile]:
        self._check(credential)
        if self.fail_reads:
            raise TransportError("find failed (injected)", {"op": "find"})
        self.finds += 1
        entry = self._files.get(name)
        return entry[0] if entry is not None else None

    async def download(self, file: RemoteFile, credential: Credential) -> Any:
        self._check(credential)
        if self.fail_reads:
            raise TransportError("download failed (injected)", {"op": "download"})
        self.downloads += 1
        entry = self._files.get(file.name)
        if entry is None:
            raise TransportError("remote file vanished", {"file_id": file.file_id})
        return json.loads(entry[1])

    async def create(self, name: str, payload: Dict[str, Any], credential: Credential) -> RemoteFile:
        self._check(credential)
        if self.fail_writes:
            raise TransportError("create failed (injected)", {"op": "create"})
        self.writes += 1
        return self.put(name, payload)

    async def update(self, file: RemoteFile, payload: Dict[str, Any], credential: Credential) -> RemoteFile:
        self._check(credential)
        if self.fail_writes:
            raise TransportError("update failed (injected)", {"op": "update"})
        self.writes += 1
        return self.put(file.name, payload)
