import json

import httpx
import pytest

from persistence.remote import (
    InMemoryRemote,
    RemoteClient,
    RemoteConfigError,
    RemoteError,
    build_remote,
    require_remote,
)
from planbook.core.config import RemoteConfig


def _client(handler) -> RemoteClient:
    http = httpx.Client(base_url="https://example.supabase.co", transport=httpx.MockTransport(handler))
    return RemoteClient("https://example.supabase.co", "anon-key", client=http)


def test_select_sends_postgrest_params_and_headers() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["headers"] = request.headers
        return httpx.Response(200, json=[{"id": "a1", "name": "Math"}])

    rows = _client(handler).select("activities", filters={"id": "a1"}, order="created_at", descending=True, limit=1)

    assert rows == [{"id": "a1", "name": "Math"}]
    assert seen["path"] == "/rest/v1/activities"
    assert seen["params"] == {"select": "*", "id": "eq.a1", "order": "created_at.desc", "limit": "1"}
    assert seen["headers"]["apikey"] == "anon-key"
    assert seen["headers"]["authorization"] == "Bearer anon-key"


def test_upsert_uses_merge_duplicates_on_primary_key() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        seen["prefer"] = request.headers.get("prefer")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=seen["body"])

    row = _client(handler).upsert("schedules", {"day_time_key": "Lunes-08:00-08:55", "activity_id": "a1"})

    assert seen["method"] == "POST"
    assert seen["params"] == {"on_conflict": "day_time_key"}
    assert seen["prefer"] == "resolution=merge-duplicates,return=representation"
    assert seen["body"] == [{"day_time_key": "Lunes-08:00-08:55", "activity_id": "a1"}]
    assert row["activity_id"] == "a1"


def test_delete_with_empty_body_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        assert request.url.params["id"] == "eq.s1"
        return httpx.Response(204)

    assert _client(handler).delete("students", filters={"id": "s1"}) is None


def test_writes_without_filters_are_rejected() -> None:
    client = _client(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(ValueError):
        client.delete("students", filters={})
    with pytest.raises(ValueError):
        client.update("students", {"name": "x"}, filters={})


def test_http_errors_become_remote_errors() -> None:
    client = _client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(RemoteError) as excinfo:
        client.select("students")
    assert excinfo.value.status_code == 500


def test_transport_failures_become_remote_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(RemoteError) as excinfo:
        _client(handler).insert("students", {"id": "s1", "name": "Ana"})
    assert excinfo.value.status_code is None


def test_in_memory_remote_mirrors_table_semantics() -> None:
    remote = InMemoryRemote()
    remote.insert("students", {"id": "s1", "name": "Ana"})
    remote.insert("students", {"id": "s2", "name": "Bea"})

    with pytest.raises(RemoteError) as excinfo:
        remote.insert("students", {"id": "s1", "name": "Duplicate"})
    assert excinfo.value.status_code == 409

    remote.update("students", {"name": "Ana M."}, filters={"id": "s1"})
    remote.upsert("class_entries", {"entry_key": "a1_2024-09-16", "planned": "x"})
    remote.upsert("class_entries", {"entry_key": "a1_2024-09-16", "planned": "y"})
    remote.delete("students", filters={"id": "s2"})

    assert remote.select("students", columns="name") == [{"name": "Ana M."}]
    assert [row["planned"] for row in remote.select("class_entries")] == ["y"]
    assert ("delete", "students") in remote.calls

    remote.fail_with = RemoteError("down", status_code=503)
    with pytest.raises(RemoteError):
        remote.select("students")


def test_build_remote_from_config() -> None:
    assert build_remote(RemoteConfig()) is None
    assert isinstance(build_remote(RemoteConfig(use_mock=True)), InMemoryRemote)
    assert isinstance(build_remote(RemoteConfig(url="https://x.supabase.co", anon_key="k")), RemoteClient)

    with pytest.raises(RemoteConfigError):
        require_remote(RemoteConfig())
