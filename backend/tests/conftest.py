"""Shared fixtures: an in-memory SkillHub and a sync manager over temp install roots."""
import asyncio
from pathlib import Path
from typing import Optional

import pytest

from core.exceptions import RemoteServiceException, SkillNotFoundException
from core.local_skill_manager import LocalSkillManager
from core.skill_manager import SkillSyncManager, SyncStateRegistry
from schemas.skill import (
    DiffResponse,
    FileDiff,
    HistoryResponse,
    PullResponse,
    PushAck,
    RemoteSkill,
    RemoteStatus,
    SyncFile,
    VersionEntry,
    VersionListResponse,
)


class FakeSkillHub:
    """In-memory stand-in for SkillHubClient.

    Versions are stored as {skill_id: {version: {path: content}}}.
    """

    def __init__(self):
        self.skills: dict[str, RemoteSkill] = {}
        self.versions: dict[str, dict[int, dict[str, str]]] = {}
        self.calls: list[tuple] = []
        self.push_ack_version: Optional[int] = None
        self.failing: set[str] = set()  # method names that raise
        # When set, pull() signals pull_started and waits for the gate
        self.pull_gate: Optional[asyncio.Event] = None
        self.pull_started: Optional[asyncio.Event] = None

    def add_skill(self, skill_id: str, slug: str, files: dict[str, str], versions: int = 1) -> RemoteSkill:
        self.versions[skill_id] = {v: dict(files) for v in range(1, versions + 1)}
        skill = RemoteSkill(id=skill_id, slug=slug, name=slug.title(), current_version=versions)
        self.skills[skill_id] = skill
        return skill

    def publish(self, skill_id: str, files: dict[str, str]) -> int:
        """Another actor publishes a new version."""
        history = self.versions[skill_id]
        new_version = max(history) + 1
        history[new_version] = dict(files)
        self.skills[skill_id] = self.skills[skill_id].model_copy(update={"current_version": new_version})
        return new_version

    def _check(self, method: str, skill_id: Optional[str] = None):
        self.calls.append((method, skill_id))
        if method in self.failing:
            raise RemoteServiceException(message=f"Failed to {method}", detail="connection reset")
        if skill_id is not None and skill_id not in self.skills:
            raise SkillNotFoundException(detail=f"unknown skill {skill_id}")

    def _files(self, skill_id: str, version: int) -> list[SyncFile]:
        return [SyncFile(path=p, content=c) for p, c in sorted(self.versions[skill_id][version].items())]

    async def list_skills(self) -> list[RemoteSkill]:
        self._check("list_skills")
        return list(self.skills.values())

    async def get_skill(self, skill_id: str) -> RemoteSkill:
        self._check("get_skill", skill_id)
        return self.skills[skill_id]

    async def get_remote_status(self, skill_id: str) -> RemoteStatus:
        self._check("get_remote_status", skill_id)
        current = self.skills[skill_id].current_version
        files = [SyncFile(path=f.path, content_hash=f.content_hash) for f in self._files(skill_id, current)]
        return RemoteStatus(skill_id=skill_id, current_version=current, files=files)

    async def pull(self, skill_id: str, version: Optional[int] = None) -> PullResponse:
        self._check("pull", skill_id)
        if self.pull_gate is not None:
            self.pull_started.set()
            await self.pull_gate.wait()
        version = version or self.skills[skill_id].current_version
        if version not in self.versions[skill_id]:
            raise RemoteServiceException(message="Failed to pull skill", detail=f"no version {version}")
        return PullResponse(skill_id=skill_id, version=version, files=self._files(skill_id, version))

    async def push(self, skill_id: str, files: list[SyncFile], change_summary: str, source: Optional[str] = None) -> PushAck:
        self._check("push", skill_id)
        self.calls[-1] = ("push", skill_id, change_summary, source)
        self.publish(skill_id, {f.path: f.content for f in files})
        return PushAck(success=True, version=self.push_ack_version)

    async def get_versions(self, skill_id: str) -> VersionListResponse:
        self._check("get_versions", skill_id)
        return VersionListResponse(
            skill_id=skill_id,
            current_version=self.skills[skill_id].current_version,
            versions=[VersionEntry(version=v) for v in sorted(self.versions[skill_id], reverse=True)],
        )

    async def get_history(self, skill_id, limit=None, offset=None, include_diff=False) -> HistoryResponse:
        self._check("get_history", skill_id)
        entries = [VersionEntry(version=v) for v in sorted(self.versions[skill_id], reverse=True)]
        return HistoryResponse(skill_id=skill_id, versions=entries, total=len(entries))

    async def get_diff(self, skill_id, from_version, to_version, include_content=False) -> DiffResponse:
        self._check("get_diff", skill_id)
        old = self.versions[skill_id][from_version]
        new = self.versions[skill_id][to_version]
        files = []
        for path in sorted(set(old) | set(new)):
            if path not in old:
                files.append(FileDiff(path=path, status="added"))
            elif path not in new:
                files.append(FileDiff(path=path, status="deleted"))
            elif old[path] != new[path]:
                files.append(FileDiff(path=path, status="modified"))
        return DiffResponse(skill_id=skill_id, from_version=from_version, to_version=to_version, files=files)

    async def export_archive(self, skill_id: str) -> bytes:
        self._check("export_archive", skill_id)
        return b"PK\x05\x06" + b"\x00" * 18

    def network_calls(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_hub() -> FakeSkillHub:
    return FakeSkillHub()


@pytest.fixture
def install_roots(tmp_path: Path) -> list[Path]:
    """Two tool skill directories; only the tool config dirs exist up front."""
    claude = tmp_path / "home" / ".claude"
    codex = tmp_path / "home" / ".codex"
    claude.mkdir(parents=True)
    codex.mkdir(parents=True)
    return [claude / "skills", codex / "skills"]


@pytest.fixture
def local_manager() -> LocalSkillManager:
    return LocalSkillManager(meta_filename=".skillhub.json")


@pytest.fixture
def sync_manager(fake_hub, local_manager, install_roots) -> SkillSyncManager:
    return SkillSyncManager(
        client=fake_hub,
        local=local_manager,
        install_roots=install_roots,
        registry=SyncStateRegistry(),
        trust_push_ack_version=False,
    )


@pytest.fixture
def pdf_skill(fake_hub) -> RemoteSkill:
    return fake_hub.add_skill(
        "skill-1",
        "pdf-tools",
        {"SKILL.md": "# PDF Tools\n\nWork with PDFs.\n", "scripts/extract.py": "print('extract')\n"},
        versions=5,
    )
