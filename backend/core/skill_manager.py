"""Skill synchronization between local copies and SkillHub."""
import asyncio
import logging
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from config import settings
from core.exceptions import (
    AppException,
    LocalStorageException,
    SyncPreconditionException,
    ValidationException,
)
from core.local_skill_manager import LocalSkillManager, local_skill_manager
from core.skillhub_client import SkillHubClient, skillhub_client
from core.sync_status import compare_files, resolve_sync_status
from schemas.skill import (
    DiffResponse,
    HistoryResponse,
    PullResponse,
    RemoteSkill,
    SyncMeta,
    SyncOperationResponse,
    SyncState,
    VersionListResponse,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class BatchResult:
    """Outcome of an operation applied to several skills."""
    succeeded: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    states: dict[str, SyncState] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.errors)


class SyncStateRegistry:
    """Last known SyncState per skill id.

    Checks for different skills finish in any order, so updates replace a
    single key and never the whole mapping.
    """

    def __init__(self):
        self._states: dict[str, SyncState] = {}

    def get(self, skill_id: str) -> Optional[SyncState]:
        return self._states.get(skill_id)

    def update(self, state: SyncState) -> None:
        self._states[state.skill_id] = state

    def snapshot(self) -> dict[str, SyncState]:
        return dict(self._states)


class SkillSyncManager:
    """Reconciles local skill copies with their versions on SkillHub.

    Local copies live at {install_root}/{slug} with a metadata sidecar
    recording the remote version they were last synced to. Install roots
    are searched in order; the first root holding a copy of a skill owns it.

    Operations on one skill must not overlap (the API layer serializes
    them); operations on different skills are independent.
    """

    def __init__(
        self,
        client: Optional[SkillHubClient] = None,
        local: Optional[LocalSkillManager] = None,
        install_roots: Optional[list[Path]] = None,
        registry: Optional[SyncStateRegistry] = None,
        trust_push_ack_version: Optional[bool] = None,
    ):
        self.client = client or skillhub_client
        self.local = local or local_skill_manager
        self.install_roots = install_roots
        self.registry = registry or SyncStateRegistry()
        self.trust_push_ack_version = (
            settings.trust_push_ack_version if trust_push_ack_version is None else trust_push_ack_version
        )

    @property
    def roots(self) -> list[Path]:
        """Install roots in search order."""
        if self.install_roots is not None:
            return [Path(r) for r in self.install_roots]
        return settings.resolved_install_roots()

    def _build_meta(self, skill: RemoteSkill, version: int) -> SyncMeta:
        return SyncMeta(
            skill_id=skill.id,
            skill_slug=skill.slug,
            version=version,
            synced_at=_now(),
            platform_url=settings.platform_url(skill.slug),
        )

    async def _require_local_copy(self, skill: RemoteSkill, action: str) -> tuple[Path, SyncMeta]:
        found = await self.local.find_local_copy(skill, self.roots)
        if found is None:
            raise SyncPreconditionException(
                message=f"Cannot {action}: skill is not synced locally",
                detail=f"No local copy of '{skill.slug}' found in any install location",
                suggested_action="Pull the skill first",
            )
        return found

    # ============== Status ==============

    async def check_sync_state(self, skill: RemoteSkill) -> SyncState:
        """Compute the sync state of one skill and record it in the registry.

        A failed remote check does not raise: the state falls back to a
        stale in_sync view built from the local metadata alone.
        """
        found = await self.local.find_local_copy(skill, self.roots)
        if found is None:
            state = SyncState(skill_id=skill.id, sync_status="not_synced", checked_at=_now())
            self.registry.update(state)
            return state

        local_path, meta = found
        try:
            local_files = await self.local.collect_files(local_path)
            remote_status = await self.client.get_remote_status(skill.id)
        except AppException as e:
            logger.warning(f"Sync check for {skill.slug} degraded to metadata only: {e}")
            state = SyncState(
                skill_id=skill.id,
                sync_status="in_sync",
                local_path=str(local_path),
                sync_meta=meta,
                stale=True,
                checked_at=_now(),
            )
            self.registry.update(state)
            return state

        if local_files is None:
            # Removed between lookup and snapshot
            state = SyncState(skill_id=skill.id, sync_status="not_synced", checked_at=_now())
            self.registry.update(state)
            return state

        compare_result = compare_files(local_files, remote_status.files, ignore=self.local.is_reserved)
        sync_status = resolve_sync_status(
            local_present=True,
            meta_version=meta.version,
            remote_version=remote_status.current_version,
            has_changes=compare_result.has_changes,
        )
        state = SyncState(
            skill_id=skill.id,
            sync_status=sync_status,
            local_path=str(local_path),
            sync_meta=meta,
            compare_result=compare_result,
            remote_version=remote_status.current_version,
            checked_at=_now(),
        )
        logger.debug(f"Skill {skill.slug}: {sync_status} (local v{meta.version}, remote v{remote_status.current_version})")
        self.registry.update(state)
        return state

    async def refresh_all(self, skills: Optional[list[RemoteSkill]] = None) -> BatchResult:
        """Check every skill concurrently; one failure never aborts the rest."""
        if skills is None:
            skills = await self.client.list_skills()

        result = BatchResult()
        outcomes = await asyncio.gather(
            *(self.check_sync_state(skill) for skill in skills),
            return_exceptions=True,
        )
        for skill, outcome in zip(skills, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Error checking sync state of {skill.slug}: {outcome}")
                result.errors.append({"skill": skill.id, "error": str(outcome)})
            else:
                result.succeeded.append(skill.id)
                result.states[skill.id] = outcome

        logger.info(f"Refreshed sync state of {len(result.succeeded)} skills ({result.failed} failed)")
        return result

    # ============== Pull / Push / Rollback ==============

    async def _apply_pull(
        self,
        skill: RemoteSkill,
        target: Path,
        data: PullResponse,
        fallback_version: int,
    ) -> tuple[int, int]:
        """Write a pulled payload, then its metadata. Returns (version, files)."""
        files_count = await self.local.write_files(target, data.files)
        version = data.version if data.version is not None else fallback_version
        await self.local.write_meta(target, self._build_meta(skill, version))
        return version, files_count

    async def pull(self, skill: RemoteSkill, version: Optional[int] = None) -> SyncOperationResponse:
        """Replace the local copy with a remote version (latest by default).

        The copy is written to the first available install root.
        """
        root = await self.local.first_available_root(self.roots)
        if root is None:
            raise SyncPreconditionException(
                message="No install location available",
                detail="None of the configured skill directories exist",
                suggested_action="Install a supported AI coding tool or configure INSTALL_ROOTS",
            )
        target = root / skill.slug

        try:
            existing = await self.local.read_meta(target)
        except LocalStorageException as e:
            logger.warning(f"Overwriting unreadable sync metadata at {target}: {e}")
            existing = None
        if existing and existing.skill_id != skill.id:
            raise SyncPreconditionException(
                message="Install location is taken by another skill",
                detail=f"{target} is synced with skill '{existing.skill_id}'",
                suggested_action="Remove or rename the existing folder and pull again",
            )

        data = await self.client.pull(skill.id, version)
        synced_version, files_count = await self._apply_pull(
            skill, target, data, version if version is not None else skill.current_version
        )
        logger.info(f"Pulled {skill.slug} v{synced_version} ({files_count} files) to {target}")

        state = await self.check_sync_state(skill)
        return SyncOperationResponse(
            skill_id=skill.id,
            operation="pull",
            version=synced_version,
            local_path=str(target),
            files_count=files_count,
            sync_state=state,
        )

    async def push(self, skill: RemoteSkill, change_summary: Optional[str] = None) -> SyncOperationResponse:
        """Upload the local copy as a new remote version.

        The recorded version becomes the previous local version + 1 without
        reading back the server's numbering, unless trust_push_ack_version
        is enabled and the server reports one.
        """
        local_path, meta = await self._require_local_copy(skill, "push")
        files = await self.local.collect_files(local_path)
        if files is None:
            raise SyncPreconditionException(
                message="Cannot push: local copy disappeared",
                detail=str(local_path),
                suggested_action="Pull the skill again",
            )

        ack = await self.client.push(
            skill.id,
            files,
            change_summary or settings.default_change_summary,
            settings.push_source,
        )

        new_version = meta.version + 1
        if ack.version is not None and ack.version != new_version:
            if self.trust_push_ack_version:
                new_version = ack.version
            else:
                logger.warning(
                    f"Push of {skill.slug}: server reports v{ack.version}, recording v{new_version}"
                )
        await self.local.write_meta(local_path, self._build_meta(skill, new_version))
        logger.info(f"Pushed {skill.slug} ({len(files)} files), local metadata now v{new_version}")

        state = await self.check_sync_state(skill)
        return SyncOperationResponse(
            skill_id=skill.id,
            operation="push",
            version=new_version,
            local_path=str(local_path),
            files_count=len(files),
            acknowledged_version=ack.version,
            sync_state=state,
        )

    async def rollback(self, skill: RemoteSkill, target_version: int) -> SyncOperationResponse:
        """Revert the local copy to an earlier remote version."""
        if target_version < 1:
            raise ValidationException(
                message="Invalid version",
                detail=f"Version must be at least 1, got {target_version}",
            )
        local_path, _ = await self._require_local_copy(skill, "rollback")

        data = await self.client.pull(skill.id, target_version)
        synced_version, files_count = await self._apply_pull(skill, local_path, data, target_version)
        logger.info(f"Rolled back {skill.slug} to v{synced_version} at {local_path}")

        state = await self.check_sync_state(skill)
        return SyncOperationResponse(
            skill_id=skill.id,
            operation="rollback",
            version=synced_version,
            local_path=str(local_path),
            files_count=files_count,
            sync_state=state,
        )

    async def pull_many(self, skill_ids: list[str]) -> BatchResult:
        """Pull several skills in turn, counting failures instead of stopping."""
        result = BatchResult()
        for skill_id in skill_ids:
            try:
                skill = await self.client.get_skill(skill_id)
                response = await self.pull(skill)
                result.succeeded.append(skill_id)
                if response.sync_state:
                    result.states[skill_id] = response.sync_state
            except Exception as e:
                logger.error(f"Error pulling skill {skill_id}: {e}")
                result.errors.append({"skill": skill_id, "error": str(e)})

        logger.info(f"Batch pull: {len(result.succeeded)} synced, {result.failed} failed")
        return result

    # ============== Version History ==============

    async def list_versions(self, skill_id: str) -> VersionListResponse:
        return await self.client.get_versions(skill_id)

    async def get_history(
        self,
        skill_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        include_diff: bool = False,
    ) -> HistoryResponse:
        return await self.client.get_history(skill_id, limit=limit, offset=offset, include_diff=include_diff)

    async def diff_versions(
        self,
        skill_id: str,
        from_version: int,
        to_version: int,
        include_content: bool = False,
    ) -> DiffResponse:
        """Diff two remote versions. Read-only."""
        if from_version < 1 or to_version < 1:
            raise ValidationException(
                message="Invalid version range",
                detail=f"Versions must be at least 1 (got {from_version} and {to_version})",
                suggested_action="Select two versions from the version history",
            )
        if from_version == to_version:
            raise ValidationException(
                message="Invalid version range",
                detail="Select two different versions to compare",
                suggested_action="Select two versions from the version history",
            )
        return await self.client.get_diff(skill_id, from_version, to_version, include_content=include_content)

    # ============== Export / Folder ==============

    async def export_archive(self, skill_id: str) -> bytes:
        return await self.client.export_archive(skill_id)

    async def save_export(self, skill_id: str, save_path: Path) -> int:
        data = await self.client.export_archive(skill_id)
        return await self.local.save_export(data, save_path)

    async def open_local_folder(self, skill: RemoteSkill) -> Path:
        local_path, _ = await self._require_local_copy(skill, "open folder")
        await self.local.open_folder(local_path)
        return local_path


# Global instance
skill_sync_manager = SkillSyncManager()
