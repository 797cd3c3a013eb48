import pytest

from core.sync_status import compare_files, is_reserved_path, resolve_sync_status
from schemas.skill import SyncFile


def _files(mapping: dict[str, str]) -> list[SyncFile]:
    return [SyncFile(path=p, content=c) for p, c in mapping.items()]


SKILL = {"SKILL.md": "# Skill\n", "scripts/run.py": "print(1)\n", "README.md": "readme"}


def test_compare_equal_sets_has_no_changes():
    result = compare_files(_files(SKILL), _files(SKILL))

    assert result.has_changes is False
    assert result.added == []
    assert result.modified == []
    assert result.deleted == []


def test_compare_single_content_change_is_modified_only():
    remote = dict(SKILL, **{"scripts/run.py": "print(2)\n"})

    result = compare_files(_files(SKILL), _files(remote))

    assert result.modified == ["scripts/run.py"]
    assert result.added == []
    assert result.deleted == []
    assert result.has_changes is True


def test_compare_is_directional_relative_to_remote():
    local = {"SKILL.md": "# Skill\n", "notes.md": "local only"}
    remote = {"SKILL.md": "# Skill\n", "extra.md": "remote only"}

    result = compare_files(_files(local), _files(remote))

    # remote-only must be added locally, local-only must be deleted locally
    assert result.added == ["extra.md"]
    assert result.deleted == ["notes.md"]
    assert result.modified == []


def test_compare_uses_hashes_when_remote_has_no_content():
    local = _files(SKILL)
    remote = [SyncFile(filepath=f.path, content_hash=f.content_hash) for f in local]

    assert compare_files(local, remote).has_changes is False


def test_compare_ignores_reserved_paths_on_both_sides():
    local = dict(SKILL, **{".skillhub.json": "{}"})
    remote = dict(SKILL, **{".gitignore": "*.pyc\n", ".git/config": "[core]"})

    result = compare_files(
        _files(local), _files(remote), ignore=lambda path: is_reserved_path(path, ".skillhub.json")
    )

    assert result.has_changes is False


def test_compare_output_is_sorted():
    remote = {"b.md": "b", "a.md": "a", "c/d.md": "d"}

    result = compare_files([], _files(remote))

    assert result.added == ["a.md", "b.md", "c/d.md"]


def test_sync_file_normalizes_windows_paths():
    sync_file = SyncFile(filepath="scripts\\run.py", content="x")

    assert sync_file.path == "scripts/run.py"
    assert sync_file.model_dump(by_alias=True)["filepath"] == "scripts/run.py"


@pytest.mark.parametrize(
    "local_present, meta_version, remote_version, has_changes, expected",
    [
        (True, 3, 3, False, "in_sync"),
        (True, 2, 3, False, "remote_changes"),
        (True, 3, 3, True, "local_changes"),
        (True, 2, 3, True, "conflict"),
        (True, 4, 3, True, "local_changes"),
    ],
)
def test_resolve_sync_status(local_present, meta_version, remote_version, has_changes, expected):
    assert resolve_sync_status(local_present, meta_version, remote_version, has_changes) == expected


@pytest.mark.parametrize("has_changes", [True, False])
@pytest.mark.parametrize("meta_version, remote_version", [(1, 1), (1, 5), (None, None), (7, 2)])
def test_missing_local_copy_is_always_not_synced(meta_version, remote_version, has_changes):
    assert resolve_sync_status(False, meta_version, remote_version, has_changes) == "not_synced"


def test_resolver_is_deterministic():
    args = (True, 2, 3, True)

    assert {resolve_sync_status(*args) for _ in range(10)} == {"conflict"}
