"""Local skill copies: file snapshots, sync metadata sidecars and install roots."""
import asyncio
import json
import os
import platform
import subprocess
import tempfile
import logging
from pathlib import Path, PurePosixPath
from typing import Optional

from pydantic import ValidationError

from config import settings
from core.exceptions import LocalStorageException, ValidationException
from core.sync_status import is_reserved_path
from schemas.skill import RemoteSkill, SyncFile, SyncMeta

logger = logging.getLogger(__name__)


class LocalSkillManager:
    """Manages on-disk copies of remote skills.

    Storage structure:
    - {install_root}/{skill-slug}/
      - .skillhub.json (sync metadata sidecar)
      - SKILL.md and other skill files...

    Features:
    - Snapshot a local copy as an ordered list of SyncFile entries
    - Replace a local copy with a pulled file set
    - Read/write the sync metadata sidecar atomically
    - Locate the canonical local copy of a skill across install roots
    """

    def __init__(self, meta_filename: Optional[str] = None):
        self.meta_filename = meta_filename or settings.sync_meta_filename

    def _should_skip(self, name: str) -> bool:
        return is_reserved_path(name, self.meta_filename)

    def is_reserved(self, path: str) -> bool:
        """True for relative paths this manager never collects or writes."""
        return is_reserved_path(path, self.meta_filename)

    # ============== Snapshot ==============

    async def path_exists(self, path: Path) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def collect_files(self, path: Path) -> Optional[list[SyncFile]]:
        """Collect every file of a local copy, sorted by relative path.

        Args:
            path: Skill directory

        Returns:
            The file entries, or None when the directory does not exist
        """
        return await asyncio.to_thread(self._collect_files, Path(path))

    def _collect_files(self, root: Path) -> Optional[list[SyncFile]]:
        if not root.is_dir():
            return None

        files = []
        try:
            for current, dirnames, filenames in os.walk(root):
                dirnames[:] = [d for d in dirnames if not self._should_skip(d)]
                for filename in filenames:
                    if self._should_skip(filename):
                        continue
                    file_path = Path(current) / filename
                    raw = file_path.read_bytes()
                    try:
                        content = raw.decode("utf-8")
                    except UnicodeDecodeError:
                        logger.debug(f"Skipping binary file: {file_path}")
                        continue
                    files.append(SyncFile(
                        path=file_path.relative_to(root).as_posix(),
                        content=content,
                        file_size=len(raw),
                    ))
        except OSError as e:
            raise LocalStorageException(
                message="Failed to read local skill files",
                detail=str(e),
                suggested_action="Check that the skill folder is readable",
            )

        files.sort(key=lambda f: f.path)
        return files

    # ============== File Replacement ==============

    @staticmethod
    def validate_relative_path(filepath: str) -> PurePosixPath:
        """Reject absolute paths and parent-directory escapes."""
        relative = PurePosixPath(filepath)
        if (
            not relative.parts
            or relative.is_absolute()
            or ".." in relative.parts
            or ":" in relative.parts[0]
        ):
            raise ValidationException(
                message="Unsafe file path in skill payload",
                detail=f"'{filepath}' escapes the skill directory",
                suggested_action="Ask the skill owner to fix the file layout",
            )
        return relative

    async def write_files(self, path: Path, files: list[SyncFile]) -> int:
        """Replace a local copy with the given file set.

        Every incoming path is validated before the directory is touched.
        Existing files that are not part of the incoming set are removed,
        except the sidecar and housekeeping entries.

        Returns:
            Number of files written
        """
        targets = []
        for sync_file in files:
            relative = self.validate_relative_path(sync_file.path)
            if sync_file.content is None:
                raise ValidationException(
                    message="Incomplete skill payload",
                    detail=f"No content received for '{sync_file.path}'",
                    suggested_action="Please try again",
                )
            if self.is_reserved(relative.as_posix()):
                logger.debug(f"Ignoring reserved path in payload: {sync_file.path}")
                continue
            targets.append((relative, sync_file.content))

        try:
            return await asyncio.to_thread(self._write_files, Path(path), targets)
        except OSError as e:
            raise LocalStorageException(
                message="Failed to write skill files",
                detail=str(e),
                suggested_action="Check disk space and folder permissions",
            )

    def _write_files(self, root: Path, targets: list[tuple[PurePosixPath, str]]) -> int:
        root.mkdir(parents=True, exist_ok=True)

        incoming = set()
        for relative, content in targets:
            file_path = root.joinpath(*relative.parts)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(content.encode("utf-8"))
            incoming.add(relative.as_posix())

        removed = 0
        for current, dirnames, filenames in os.walk(root, topdown=False):
            current_path = Path(current)
            if any(self._should_skip(part) for part in current_path.relative_to(root).parts):
                continue
            for filename in filenames:
                if self._should_skip(filename):
                    continue
                file_path = current_path / filename
                if file_path.relative_to(root).as_posix() not in incoming:
                    file_path.unlink()
                    removed += 1
            if current_path != root and not any(current_path.iterdir()):
                current_path.rmdir()

        logger.info(f"Wrote {len(targets)} files to {root} (removed {removed} stale files)")
        return len(targets)

    # ============== Sync Metadata ==============

    def meta_path(self, path: Path) -> Path:
        return Path(path) / self.meta_filename

    async def read_meta(self, path: Path) -> Optional[SyncMeta]:
        """Read the sync metadata sidecar of a local copy, None if absent."""
        return await asyncio.to_thread(self._read_meta, self.meta_path(path))

    def _read_meta(self, meta_path: Path) -> Optional[SyncMeta]:
        if not meta_path.exists():
            return None
        try:
            return SyncMeta.model_validate_json(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise LocalStorageException(
                message="Failed to read sync metadata",
                detail=f"{meta_path}: {e}",
                suggested_action="Pull the skill again to rewrite its metadata",
            )

    async def write_meta(self, path: Path, meta: SyncMeta) -> None:
        """Write the sidecar atomically (temp file + rename in the same directory)."""
        try:
            await asyncio.to_thread(self._write_meta, self.meta_path(path), meta)
        except OSError as e:
            raise LocalStorageException(
                message="Failed to write sync metadata",
                detail=str(e),
                suggested_action="Check folder permissions",
            )
        logger.debug(f"Wrote sync metadata for {meta.skill_slug} v{meta.version}")

    def _write_meta(self, meta_path: Path, meta: SyncMeta) -> None:
        payload = json.dumps(meta.model_dump(), indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=meta_path.parent, prefix=f"{meta_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, meta_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # ============== Install Roots ==============

    async def find_local_copy(
        self,
        skill: RemoteSkill,
        roots: list[Path],
    ) -> Optional[tuple[Path, SyncMeta]]:
        """Find the canonical local copy of a skill.

        Roots are scanned in order and the first `{root}/{slug}` whose
        sidecar names this skill wins; later roots are not considered.

        Returns:
            (skill directory, its metadata), or None if no root holds a copy
        """
        for root in roots:
            candidate = Path(root) / skill.slug
            try:
                if not await self.path_exists(candidate):
                    continue
                meta = await self.read_meta(candidate)
            except (OSError, LocalStorageException) as e:
                logger.warning(f"Skipping unreadable copy of {skill.slug} at {candidate}: {e}")
                continue
            if meta and meta.skill_id == skill.id:
                return candidate, meta
            if meta:
                logger.debug(f"{candidate} belongs to skill {meta.skill_id}, not {skill.id}")
        return None

    async def first_available_root(self, roots: list[Path]) -> Optional[Path]:
        """First root that exists, or whose tool directory exists."""
        return await asyncio.to_thread(self._first_available_root, [Path(r) for r in roots])

    def _first_available_root(self, roots: list[Path]) -> Optional[Path]:
        for root in roots:
            if root.is_dir() or root.parent.is_dir():
                return root
        return None

    # ============== OS Integration ==============

    async def open_folder(self, path: Path) -> None:
        """Open a directory in the platform file browser, creating it if needed."""
        path = Path(path)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)

        system = platform.system()
        if system == "Darwin":
            command = ["open", str(path)]
        elif system == "Windows":
            command = ["explorer", str(path)]
        else:
            command = ["xdg-open", str(path)]

        try:
            subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            raise LocalStorageException(
                message="Failed to open folder",
                detail=str(e),
                suggested_action=f"Open {path} manually",
            )

    async def save_export(self, data: bytes, save_path: Path) -> int:
        """Save an exported archive to disk. Returns bytes written."""
        save_path = Path(save_path).expanduser()

        def _save() -> int:
            save_path.parent.mkdir(parents=True, exist_ok=True)
            save_path.write_bytes(data)
            return len(data)

        try:
            size = await asyncio.to_thread(_save)
        except OSError as e:
            raise LocalStorageException(
                message="Failed to save export file",
                detail=str(e),
                suggested_action="Choose a writable destination",
            )
        logger.info(f"Saved export ({size} bytes) to {save_path}")
        return size


# Global instance
local_skill_manager = LocalSkillManager()
