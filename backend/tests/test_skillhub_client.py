import json

import httpx
import pytest

from core.exceptions import RemoteServiceException, SkillNotFoundException
from core.skillhub_client import SkillHubClient
from schemas.skill import SyncFile


def _client(handler) -> SkillHubClient:
    return SkillHubClient(
        base_url="https://hub.test/",
        access_token="token-123",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_remote_status_parses_files_and_sends_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={
            "current_version": 4,
            "files": [{"filepath": "SKILL.md", "content_hash": "abc", "file_size": 10}],
        })

    client = _client(handler)
    status = await client.get_remote_status("skill-1")
    await client.aclose()

    assert seen["url"] == "https://hub.test/api/user/skills/skill-1/status"
    assert seen["auth"] == "Bearer token-123"
    assert status.current_version == 4
    assert status.files[0].path == "SKILL.md"
    assert status.files[0].content_hash == "abc"


@pytest.mark.asyncio
async def test_pull_passes_version_and_hashes_content():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params.get("version") == "2"
        return httpx.Response(200, json={"version": 2, "files": [{"filepath": "SKILL.md", "content": "# Hi\n"}]})

    client = _client(handler)
    data = await client.pull("skill-1", 2)

    assert data.version == 2
    assert data.files[0].content_hash is not None


@pytest.mark.asyncio
async def test_pull_latest_sends_no_version():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "version" not in request.url.params
        return httpx.Response(200, json={"version": 7, "files": []})

    data = await _client(handler).pull("skill-1")

    assert data.version == 7


@pytest.mark.asyncio
async def test_push_sends_wire_field_names():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "version": 6})

    ack = await _client(handler).push(
        "skill-1", [SyncFile(path="SKILL.md", content="# Hi\n")], "Desktop sync", "desktop"
    )

    assert captured["method"] == "POST"
    assert captured["path"] == "/api/user/skills/push"
    body = captured["body"]
    assert body["skill_id"] == "skill-1"
    assert body["change_summary"] == "Desktop sync"
    assert body["source"] == "desktop"
    assert body["files"][0]["filepath"] == "SKILL.md"
    assert body["files"][0]["content"] == "# Hi\n"
    assert ack.version == 6


@pytest.mark.asyncio
async def test_push_with_empty_body_is_acknowledged():
    ack = await _client(lambda request: httpx.Response(204)).push("skill-1", [], "summary")

    assert ack.success is True
    assert ack.version is None


@pytest.mark.asyncio
async def test_error_body_message_is_surfaced():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "Storage unavailable"})

    with pytest.raises(RemoteServiceException) as exc_info:
        await _client(handler).get_versions("skill-1")

    assert exc_info.value.detail == "Storage unavailable"


@pytest.mark.asyncio
async def test_error_without_body_uses_status_code():
    with pytest.raises(RemoteServiceException) as exc_info:
        await _client(lambda request: httpx.Response(503)).pull("skill-1")

    assert exc_info.value.detail == "Failed to pull skill (503)"


@pytest.mark.asyncio
async def test_unknown_skill_maps_to_not_found():
    with pytest.raises(SkillNotFoundException):
        await _client(lambda request: httpx.Response(404, json={"error": "Not found"})).get_skill("missing")


@pytest.mark.asyncio
async def test_network_failure_is_remote_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteServiceException):
        await _client(handler).get_remote_status("skill-1")


@pytest.mark.asyncio
async def test_timeout_is_remote_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RemoteServiceException) as exc_info:
        await _client(handler).get_remote_status("skill-1")

    assert "Timed out" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    [{"id": "s1", "slug": "one", "name": "One", "currentVersion": 2}],
    {"skills": [{"id": "s1", "slug": "one", "name": "One", "current_version": 2}]},
])
async def test_list_skills_accepts_both_shapes(payload):
    skills = await _client(lambda request: httpx.Response(200, json=payload)).list_skills()

    assert [(s.id, s.current_version) for s in skills] == [("s1", 2)]


@pytest.mark.asyncio
async def test_get_skill_unwraps_envelope():
    payload = {"skill": {"id": "s1", "slug": "one", "name": "One", "current_version": 3}}

    skill = await _client(lambda request: httpx.Response(200, json=payload)).get_skill("s1")

    assert skill.slug == "one"
    assert skill.current_version == 3


@pytest.mark.asyncio
async def test_get_diff_query_and_response():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["from"] == "1"
        assert request.url.params["to"] == "3"
        assert request.url.params["include_content"] == "true"
        return httpx.Response(200, json={
            "from": 1,
            "to": 3,
            "files": [{"filepath": "SKILL.md", "status": "modified", "diff": "@@ -1 +1 @@"}],
        })

    diff = await _client(handler).get_diff("skill-1", 1, 3, include_content=True)

    assert (diff.from_version, diff.to_version) == (1, 3)
    assert diff.files[0].status == "modified"


@pytest.mark.asyncio
async def test_get_history_accepts_history_key():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["include_diff"] == "true"
        assert request.url.params["limit"] == "10"
        return httpx.Response(200, json={"history": [{"version": 2}, {"version": 1}], "total": 2})

    history = await _client(handler).get_history("skill-1", limit=10, include_diff=True)

    assert [v.version for v in history.versions] == [2, 1]


@pytest.mark.asyncio
async def test_export_returns_raw_bytes():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/user/skills/skill-1/export-git"
        return httpx.Response(200, content=b"PK\x03\x04zip", headers={"content-type": "application/zip"})

    assert await _client(handler).export_archive("skill-1") == b"PK\x03\x04zip"


@pytest.mark.asyncio
async def test_malformed_payload_is_remote_service_error():
    with pytest.raises(RemoteServiceException):
        await _client(lambda request: httpx.Response(200, json={"files": []})).get_remote_status("skill-1")


@pytest.mark.asyncio
async def test_status_entry_without_hash_is_rejected():
    payload = {"current_version": 2, "files": [{"filepath": "SKILL.md"}]}

    with pytest.raises(RemoteServiceException) as exc_info:
        await _client(lambda request: httpx.Response(200, json=payload)).get_remote_status("skill-1")

    assert "SKILL.md" in exc_info.value.detail
