import asyncio
import datetime
import json

import httpx
import pytest

from csg.core.errors import AuthError, FormatError, TransportError
from csg.modules.sync.auth import Credential
from csg.modules.sync.transport import DriveBlobTransport, RemoteFile, backoff_delay, parse_rfc3339_ms

CRED = Credential("tok")
MODIFIED = "2024-05-01T12:00:00.000Z"
MODIFIED_MS = int(datetime.datetime(2024, 5, 1, 12, tzinfo=datetime.timezone.utc).timestamp() * 1000)


def _transport(handler, *, max_attempts: int = 3):
    delays = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    t = DriveBlobTransport(api_base="https://drive.test", max_attempts=max_attempts, client=client, sleep=fake_sleep)
    return t, delays


def test_parse_rfc3339() -> None:
    assert parse_rfc3339_ms(MODIFIED) == MODIFIED_MS
    assert parse_rfc3339_ms(None) == 0
    with pytest.raises(TransportError):
        parse_rfc3339_ms("yesterday")


def test_backoff_grows_and_honours_retry_after() -> None:
    assert 0.5 <= backoff_delay(1, base_s=0.5) <= 0.5 * 1.12
    assert 1.0 <= backoff_delay(2, base_s=0.5) <= 1.0 * 1.12
    assert backoff_delay(1, base_s=0.5, retry_after_s=4.0) >= 4.0


def test_find_queries_app_data_folder() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"files": [{"id": "f1", "name": "csg_data.json", "modifiedTime": MODIFIED}]})

    t, _ = _transport(handler)
    found = asyncio.run(t.find("csg_data.json", CRED))

    assert found == RemoteFile(file_id="f1", name="csg_data.json", modified_ms=MODIFIED_MS)
    req = seen[0]
    assert req.url.path == "/drive/v3/files"
    assert req.url.params["spaces"] == "appDataFolder"
    assert req.url.params["q"] == "name = 'csg_data.json' and trashed = false"
    assert req.headers["Authorization"] == "Bearer tok"


def test_find_returns_none_without_files() -> None:
    t, _ = _transport(lambda request: httpx.Response(200, json={"files": []}))

    assert asyncio.run(t.find("csg_data.json", CRED)) is None


def test_download_parses_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["alt"] == "media"
        return httpx.Response(200, content=json.dumps({"series": {}}).encode())

    t, _ = _transport(handler)
    f = RemoteFile(file_id="f1", name="csg_data.json", modified_ms=0)

    assert asyncio.run(t.download(f, CRED)) == {"series": {}}


def test_download_of_non_json_is_a_format_error() -> None:
    t, _ = _transport(lambda request: httpx.Response(200, content=b"<html>"))

    with pytest.raises(FormatError):
        asyncio.run(t.download(RemoteFile(file_id="f1", name="x", modified_ms=0), CRED))


def test_create_posts_metadata_then_uploads_media() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.content))
        return httpx.Response(200, json={"id": "new1", "name": "csg_data.json", "modifiedTime": MODIFIED})

    t, _ = _transport(handler)
    created = asyncio.run(t.create("csg_data.json", {"series": {"a": {}}}, CRED))

    assert created.file_id == "new1"
    assert created.modified_ms == MODIFIED_MS
    assert [(m, p) for m, p, _ in seen] == [("POST", "/drive/v3/files"), ("PATCH", "/upload/drive/v3/files/new1")]
    assert json.loads(seen[0][2])["parents"] == ["appDataFolder"]
    assert json.loads(seen[1][2]) == {"series": {"a": {}}}


def test_retries_server_errors_then_succeeds() -> None:
    responses = [httpx.Response(503), httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(200, json={"files": []})]
    t, delays = _transport(lambda request: responses.pop(0))

    assert asyncio.run(t.find("csg_data.json", CRED)) is None
    assert len(delays) == 2
    assert delays[1] >= 2.0


def test_exhausted_retries_raise_transport_error() -> None:
    t, delays = _transport(lambda request: httpx.Response(500), max_attempts=2)

    with pytest.raises(TransportError) as exc:
        asyncio.run(t.find("csg_data.json", CRED))
    assert exc.value.details["attempts"] == 2
    assert len(delays) == 1


def test_connection_errors_are_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"files": []})

    t, _ = _transport(handler)

    assert asyncio.run(t.find("csg_data.json", CRED)) is None
    assert len(calls) == 2


def test_auth_and_client_errors_are_not_retried() -> None:
    t, delays = _transport(lambda request: httpx.Response(401))
    with pytest.raises(AuthError):
        asyncio.run(t.find("csg_data.json", CRED))

    t, delays = _transport(lambda request: httpx.Response(404))
    with pytest.raises(TransportError) as exc:
        asyncio.run(t.update(RemoteFile(file_id="gone", name="x", modified_ms=0), {}, CRED))
    assert exc.value.details["status"] == 404
    assert delays == []
