"""Integration tests for GitSnapshotProvider against a real local repository.

These shell out to the ``git`` executable and are skipped when it is missing.
"""

import shutil
import subprocess
from pathlib import Path
from uuid import uuid4

import pytest

from wikigen.errors import SnapshotError
from wikigen.models.warehouse import Warehouse
from wikigen.services.snapshot import GitSnapshotProvider

pytestmark = [
    pytest.mark.slow,
    pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available"),
]


def _git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    """A repository on branch ``main`` with two committed files."""
    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "checkout", "-q", "-b", "main")
    (repo / "README.md").write_text("# Widgets\n")
    (repo / "src").mkdir()
    (repo / "src" / "app.py").write_text("VERSION = 1\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "initial")
    return repo


def _warehouse(origin: Path, version: str | None = None, branch: str = "main") -> Warehouse:
    return Warehouse(
        warehouse_id=str(uuid4()),
        organization_name="acme",
        name="widgets",
        address=str(origin),
        branch=branch,
        version=version,
    )


class TestGitSnapshotProvider:
    """Clone, pull and diff against a real repository."""

    async def test_first_refresh_clones_and_lists_every_file(self, origin: Path, tmp_path: Path) -> None:
        working_tree = tmp_path / "tree"

        result = await GitSnapshotProvider().refresh(_warehouse(origin), working_tree)

        assert result.commit_id == _git(origin, "rev-parse", "HEAD")
        assert result.changes.full_refresh is True
        assert sorted(result.changes.added) == ["README.md", "src/app.py"]
        assert (working_tree / "src" / "app.py").read_text() == "VERSION = 1\n"

    async def test_pull_reports_changes_since_version(self, origin: Path, tmp_path: Path) -> None:
        provider = GitSnapshotProvider()
        working_tree = tmp_path / "tree"
        first = await provider.refresh(_warehouse(origin), working_tree)

        (origin / "src" / "app.py").write_text("VERSION = 2\n")
        _git(origin, "mv", "README.md", "OVERVIEW.md")
        (origin / "CHANGELOG.md").write_text("## 2\n")
        _git(origin, "add", ".")
        _git(origin, "commit", "-q", "-m", "second")

        second = await provider.refresh(_warehouse(origin, version=first.commit_id), working_tree)

        assert second.commit_id == _git(origin, "rev-parse", "HEAD")
        assert second.changes.full_refresh is False
        assert sorted(second.changes.added) == ["CHANGELOG.md", "OVERVIEW.md"]
        assert second.changes.modified == ["src/app.py"]
        assert second.changes.deleted == ["README.md"]
        assert (working_tree / "OVERVIEW.md").exists()

    async def test_unchanged_head_has_no_new_commit(self, origin: Path, tmp_path: Path) -> None:
        provider = GitSnapshotProvider()
        working_tree = tmp_path / "tree"
        first = await provider.refresh(_warehouse(origin), working_tree)

        again = await provider.refresh(_warehouse(origin, version=first.commit_id), working_tree)

        assert again.has_new_commit is False
        assert again.changes.total == 0

    async def test_unknown_branch_raises(self, origin: Path, tmp_path: Path) -> None:
        with pytest.raises(SnapshotError, match="clone"):
            await GitSnapshotProvider().refresh(_warehouse(origin, branch="does-not-exist"), tmp_path / "tree")

    async def test_unreachable_base_version_falls_back_to_full_listing(self, origin: Path, tmp_path: Path) -> None:
        warehouse = _warehouse(origin, version="0" * 40)

        result = await GitSnapshotProvider().refresh(warehouse, tmp_path / "tree")

        assert result.changes.full_refresh is True
        assert sorted(result.changes.added) == ["README.md", "src/app.py"]
