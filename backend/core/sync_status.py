"""Pure sync decisions: file set comparison and status resolution."""
import logging
from typing import Callable, Optional

from schemas.skill import CompareResult, SyncFile, SyncStatus

logger = logging.getLogger(__name__)

# Housekeeping entries never collected, never overwritten and never removed
SKIP_NAMES = frozenset({".git", ".DS_Store", ".gitignore", "Thumbs.db"})


def is_reserved_path(path: str, meta_filename: str) -> bool:
    """True if any segment of a relative path is a housekeeping entry.

    Temp files of an in-flight metadata write share the sidecar prefix.
    """
    return any(
        part in SKIP_NAMES or part.startswith(meta_filename)
        for part in path.replace("\\", "/").split("/")
        if part
    )


def compare_files(
    local_files: list[SyncFile],
    remote_files: list[SyncFile],
    ignore: Optional[Callable[[str], bool]] = None,
) -> CompareResult:
    """Compare a local copy against the remote file set.

    The result is directional, relative to the remote:
    - added: only on the remote (must be added locally)
    - deleted: only local (must be deleted locally)
    - modified: on both sides with a different content hash

    Paths matching `ignore` are left out on both sides.
    """
    if ignore is not None:
        local_files = [f for f in local_files if not ignore(f.path)]
        remote_files = [f for f in remote_files if not ignore(f.path)]

    local_map = {f.path: f.content_hash for f in local_files}
    remote_map = {f.path: f.content_hash for f in remote_files}

    added = sorted(path for path in remote_map if path not in local_map)
    deleted = sorted(path for path in local_map if path not in remote_map)
    modified = []
    for path, digest in local_map.items():
        if path not in remote_map:
            continue
        if remote_map[path] is None:
            logger.debug(f"Remote entry {path} has no hash, counting it as modified")
        if remote_map[path] != digest:
            modified.append(path)

    return CompareResult(added=added, modified=sorted(modified), deleted=deleted)


def resolve_sync_status(
    local_present: bool,
    meta_version: int | None,
    remote_version: int | None,
    has_changes: bool,
) -> SyncStatus:
    """Map raw sync facts to one of the five statuses.

    Conflicts are detected from version numbers only: a local copy whose
    recorded version trails the remote counts as behind.
    """
    if not local_present:
        return "not_synced"

    behind = (meta_version or 0) < (remote_version or 0)
    if has_changes:
        return "conflict" if behind else "local_changes"
    return "remote_changes" if behind else "in_sync"
