"""Skill sync API endpoints."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from core.exceptions import (
    AppException,
    OperationInProgressException,
    ValidationException,
)
from core.skill_manager import SkillSyncManager, skill_sync_manager
from schemas.skill import (
    BatchPullRequest,
    BatchPullResponse,
    BatchRefreshResponse,
    DiffResponse,
    ExportSaveRequest,
    ExportSaveResponse,
    HistoryResponse,
    OpenFolderResponse,
    PullRequest,
    PushRequest,
    RollbackRequest,
    SkillWithSyncState,
    SyncError,
    SyncOperationResponse,
    SyncState,
    VersionListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class ActionTracker:
    """In-flight sync action per skill.

    Pull, push and rollback on the same skill must not interleave; a second
    request for a busy skill is rejected instead of queued.
    """

    def __init__(self):
        self._busy: dict[str, str] = {}

    def current(self, skill_id: str) -> Optional[str]:
        return self._busy.get(skill_id)

    @asynccontextmanager
    async def track(self, skill_id: str, action: str) -> AsyncIterator[None]:
        running = self._busy.get(skill_id)
        if running:
            raise OperationInProgressException(
                detail=f"A {running} is already running for this skill",
                suggested_action="Wait for it to finish and try again",
            )
        self._busy[skill_id] = action
        try:
            yield
        finally:
            self._busy.pop(skill_id, None)

    @asynccontextmanager
    async def track_many(self, skill_ids: list[str], action: str) -> AsyncIterator[None]:
        """Mark several skills busy for one batch; all or none are claimed."""
        skill_ids = list(dict.fromkeys(skill_ids))
        busy = [skill_id for skill_id in skill_ids if skill_id in self._busy]
        if busy:
            raise OperationInProgressException(
                detail=f"Skills busy: {', '.join(busy)}",
                suggested_action="Wait for running operations to finish",
            )
        for skill_id in skill_ids:
            self._busy[skill_id] = action
        try:
            yield
        finally:
            for skill_id in skill_ids:
                self._busy.pop(skill_id, None)


action_tracker = ActionTracker()


def get_sync_manager() -> SkillSyncManager:
    return skill_sync_manager


def get_action_tracker() -> ActionTracker:
    return action_tracker


def _wrap_failure(action: str, e: Exception) -> ValidationException:
    logger.error(f"Failed to {action}: {e}")
    return ValidationException(
        message=f"Failed to {action}",
        detail=str(e),
        suggested_action="Please try again",
    )


@router.get("", response_model=list[SkillWithSyncState])
async def list_skills(manager: SkillSyncManager = Depends(get_sync_manager)):
    """List the user's SkillHub skills with their last known sync state."""
    skills = await manager.client.list_skills()
    return [
        SkillWithSyncState(skill=skill, sync_state=manager.registry.get(skill.id))
        for skill in skills
    ]


@router.post("/refresh", response_model=BatchRefreshResponse)
async def refresh_sync_states(manager: SkillSyncManager = Depends(get_sync_manager)):
    """Recompute the sync state of every skill.

    Skills are checked concurrently; a failing skill is reported in
    `errors` without stopping the others.
    """
    try:
        result = await manager.refresh_all()
    except AppException:
        raise
    except Exception as e:
        raise _wrap_failure("refresh sync states", e)

    return BatchRefreshResponse(
        states=result.states,
        checked=len(result.succeeded),
        failed=result.failed,
        errors=[SyncError(**err) for err in result.errors],
    )


@router.post("/pull", response_model=BatchPullResponse)
async def pull_skills(
    request: BatchPullRequest,
    manager: SkillSyncManager = Depends(get_sync_manager),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    """Pull several skills; failures are counted, not fatal.

    Every requested skill stays busy until the whole batch has finished.
    """
    async with tracker.track_many(request.skill_ids, "batch pull"):
        result = await manager.pull_many(request.skill_ids)
    return BatchPullResponse(
        synced=result.succeeded,
        failed=result.failed,
        errors=[SyncError(**err) for err in result.errors],
    )


@router.get("/{skill_id}/status", response_model=SyncState)
async def get_sync_status(skill_id: str, manager: SkillSyncManager = Depends(get_sync_manager)):
    """Check local vs remote state of a skill."""
    skill = await manager.client.get_skill(skill_id)
    return await manager.check_sync_state(skill)


@router.post("/{skill_id}/pull", response_model=SyncOperationResponse)
async def pull_skill(
    skill_id: str,
    request: PullRequest | None = None,
    manager: SkillSyncManager = Depends(get_sync_manager),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    """Pull a skill into the first available install location.

    This will:
    1. Fetch the full file set (latest or requested version)
    2. Replace the local copy
    3. Record the pulled version in the sync metadata
    """
    version = request.version if request else None
    async with tracker.track(skill_id, "pull"):
        try:
            skill = await manager.client.get_skill(skill_id)
            return await manager.pull(skill, version)
        except AppException:
            raise
        except Exception as e:
            raise _wrap_failure("pull skill", e)


@router.post("/{skill_id}/push", response_model=SyncOperationResponse)
async def push_skill(
    skill_id: str,
    request: PushRequest | None = None,
    manager: SkillSyncManager = Depends(get_sync_manager),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    """Push the local copy of a skill as a new remote version."""
    change_summary = request.change_summary if request else None
    async with tracker.track(skill_id, "push"):
        try:
            skill = await manager.client.get_skill(skill_id)
            return await manager.push(skill, change_summary)
        except AppException:
            raise
        except Exception as e:
            raise _wrap_failure("push skill", e)


@router.post("/{skill_id}/rollback", response_model=SyncOperationResponse)
async def rollback_skill(
    skill_id: str,
    request: RollbackRequest,
    manager: SkillSyncManager = Depends(get_sync_manager),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    """Rollback the local copy to a specific remote version."""
    async with tracker.track(skill_id, "rollback"):
        try:
            skill = await manager.client.get_skill(skill_id)
            return await manager.rollback(skill, request.version)
        except AppException:
            raise
        except Exception as e:
            raise _wrap_failure("rollback skill", e)


@router.get("/{skill_id}/versions", response_model=VersionListResponse)
async def list_skill_versions(skill_id: str, manager: SkillSyncManager = Depends(get_sync_manager)):
    """List all remote versions of a skill."""
    return await manager.list_versions(skill_id)


@router.get("/{skill_id}/history", response_model=HistoryResponse)
async def get_skill_history(
    skill_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    offset: Optional[int] = Query(None, ge=0),
    include_diff: bool = False,
    manager: SkillSyncManager = Depends(get_sync_manager),
):
    """Paged version history, optionally with per-version diff summaries."""
    return await manager.get_history(skill_id, limit=limit, offset=offset, include_diff=include_diff)


@router.get("/{skill_id}/diff", response_model=DiffResponse)
async def diff_skill_versions(
    skill_id: str,
    from_version: int = Query(..., alias="from"),
    to_version: int = Query(..., alias="to"),
    include_content: bool = False,
    manager: SkillSyncManager = Depends(get_sync_manager),
):
    """Diff two remote versions of a skill."""
    return await manager.diff_versions(skill_id, from_version, to_version, include_content=include_content)


@router.get("/{skill_id}/export")
async def export_skill(skill_id: str, manager: SkillSyncManager = Depends(get_sync_manager)):
    """Download the skill as a Git ZIP archive."""
    skill = await manager.client.get_skill(skill_id)
    data = await manager.export_archive(skill_id)
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{skill.slug}.zip"'},
    )


@router.post("/{skill_id}/export", response_model=ExportSaveResponse)
async def save_skill_export(
    skill_id: str,
    request: ExportSaveRequest,
    manager: SkillSyncManager = Depends(get_sync_manager),
):
    """Save the skill's Git ZIP archive to a local file."""
    save_path = Path(request.save_path).expanduser()
    size = await manager.save_export(skill_id, save_path)
    return ExportSaveResponse(skill_id=skill_id, save_path=str(save_path), size=size)


@router.post("/{skill_id}/open-folder", response_model=OpenFolderResponse)
async def open_skill_folder(skill_id: str, manager: SkillSyncManager = Depends(get_sync_manager)):
    """Open the local copy of a skill in the system file browser."""
    skill = await manager.client.get_skill(skill_id)
    path = await manager.open_local_folder(skill)
    return OpenFolderResponse(skill_id=skill_id, path=str(path))
