"""Skill sync Pydantic models.

Wire models mirror the SkillHub API payloads; the remaining models are the
request and response bodies of the local sync API.
"""
import hashlib
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

SyncStatus = Literal["not_synced", "in_sync", "local_changes", "remote_changes", "conflict"]


def compute_content_hash(content: str) -> str:
    """Hex SHA-256 of UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


# ============== Remote (SkillHub) Models ==============

class RemoteSkill(BaseModel):
    """A skill owned by the remote service (read-only on this side)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    slug: str = Field(..., min_length=1, description="Path-safe folder name")
    name: str
    description: str | None = None
    current_version: int = Field(
        default=0,
        validation_alias=AliasChoices("current_version", "currentVersion"),
        description="Latest remote version (0 = never published)",
    )
    visibility: str | None = None
    created_at: str | None = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: str | None = Field(default=None, validation_alias=AliasChoices("updated_at", "updatedAt"))


class SyncFile(BaseModel):
    """One file of a skill, keyed by its forward-slash relative path.

    Status listings may carry only the hash; pulled files carry the content.
    """

    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("filepath", "path"),
        serialization_alias="filepath",
    )
    content: str | None = None
    content_hash: str | None = None
    file_size: int | None = None

    @field_validator("path")
    @classmethod
    def normalize_path(cls, value: str) -> str:
        value = value.replace("\\", "/")
        while value.startswith("./"):
            value = value[2:]
        return value

    @model_validator(mode="after")
    def fill_hash(self) -> "SyncFile":
        if self.content is not None:
            if self.content_hash is None:
                self.content_hash = compute_content_hash(self.content)
            if self.file_size is None:
                self.file_size = len(self.content.encode("utf-8"))
        return self


class RemoteStatus(BaseModel):
    """Current version and authoritative file hashes of a remote skill."""

    skill_id: str | None = None
    current_version: int
    files: list[SyncFile] = Field(default_factory=list)

    @field_validator("files")
    @classmethod
    def require_hashes(cls, files: list[SyncFile]) -> list[SyncFile]:
        missing = [f.path for f in files if f.content_hash is None]
        if missing:
            raise ValueError(f"status entries without content or hash: {', '.join(missing)}")
        return files


class PullResponse(BaseModel):
    skill_id: str | None = None
    version: int | None = None
    files: list[SyncFile] = Field(default_factory=list)


class PushAck(BaseModel):
    success: bool = True
    version: int | None = Field(default=None, description="Version assigned by the server, if reported")
    message: str | None = None


class VersionEntry(BaseModel):
    """Immutable point in a skill's remote version history."""

    model_config = ConfigDict(frozen=True)

    version: int
    created_at: str | None = None
    change_summary: str | None = None
    diff_summary: Any = None
    source: str | None = None


class VersionListResponse(BaseModel):
    skill_id: str | None = None
    current_version: int | None = None
    versions: list[VersionEntry] = Field(default_factory=list)


class HistoryResponse(BaseModel):
    skill_id: str | None = None
    versions: list[VersionEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("versions", "history", "entries"),
    )
    total: int | None = None
    limit: int | None = None
    offset: int | None = None


class FileDiff(BaseModel):
    """Change of one file between two remote versions."""

    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(..., validation_alias=AliasChoices("filepath", "path"), serialization_alias="filepath")
    status: Literal["added", "modified", "deleted"]
    old_content: str | None = None
    new_content: str | None = None
    diff: str | None = None


class DiffResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    skill_id: str | None = None
    from_version: int = Field(..., validation_alias=AliasChoices("from_version", "from"))
    to_version: int = Field(..., validation_alias=AliasChoices("to_version", "to"))
    files: list[FileDiff] = Field(default_factory=list)
    summary: Any = None


# ============== Local Sync Models ==============

class SyncMeta(BaseModel):
    """Sidecar record of the remote version a local copy was last synced to."""

    skill_id: str
    skill_slug: str
    version: int = Field(..., ge=0)
    synced_at: str
    platform_url: str


class CompareResult(BaseModel):
    """Directional diff of a local copy against the remote file set.

    Each list names what must change locally to match the remote: ``added``
    files exist only on the remote, ``deleted`` files exist only locally and
    ``modified`` files differ in content. This is not local-edit detection.
    """

    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)


class SyncState(BaseModel):
    """Derived per-skill sync view. Recomputed on every check, never persisted."""

    skill_id: str
    sync_status: SyncStatus
    local_path: str | None = None
    sync_meta: SyncMeta | None = None
    compare_result: CompareResult | None = None
    remote_version: int | None = None
    stale: bool = Field(default=False, description="Remote check failed; status is a metadata-only fallback")
    checked_at: str


# ============== API Request/Response Models ==============

class PullRequest(BaseModel):
    version: int | None = Field(None, ge=1, description="Version to pull (latest when omitted)")


class PushRequest(BaseModel):
    change_summary: str | None = Field(None, max_length=500, description="Optional summary of changes")


class RollbackRequest(BaseModel):
    """Request model for rolling back to a specific version."""

    version: int = Field(..., ge=1, description="Version number to rollback to")


class BatchPullRequest(BaseModel):
    skill_ids: list[str] = Field(..., min_length=1)


class ExportSaveRequest(BaseModel):
    save_path: str = Field(..., min_length=1, description="Destination file for the ZIP archive")


class SyncOperationResponse(BaseModel):
    """Result of a pull, push or rollback."""

    skill_id: str
    operation: Literal["pull", "push", "rollback"]
    version: int = Field(..., description="Version recorded in the local sync metadata")
    local_path: str
    files_count: int = 0
    acknowledged_version: int | None = None
    sync_state: SyncState | None = None


class SkillWithSyncState(BaseModel):
    skill: RemoteSkill
    sync_state: SyncState | None = None


class SyncError(BaseModel):
    """Error detail for sync operation."""
    skill: str
    error: str


class BatchRefreshResponse(BaseModel):
    states: dict[str, SyncState] = Field(default_factory=dict)
    checked: int = Field(default=0, description="Skills whose state was computed")
    failed: int = Field(default=0, description="Skills whose check raised")
    errors: list[SyncError] = Field(default_factory=list)


class BatchPullResponse(BaseModel):
    synced: list[str] = Field(default_factory=list)
    failed: int = 0
    errors: list[SyncError] = Field(default_factory=list)


class ExportSaveResponse(BaseModel):
    skill_id: str
    save_path: str
    size: int


class OpenFolderResponse(BaseModel):
    skill_id: str
    path: str
