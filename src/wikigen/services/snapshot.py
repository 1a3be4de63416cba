"""Repository snapshot providers: materialize a working tree and report what changed.

``GitSnapshotProvider`` drives the ``git`` CLI through asyncio subprocesses;
``ArchiveSnapshotProvider`` unpacks uploaded zip/tar archives. Both mutate the
working tree in place, which is why only one sync may run per warehouse.
"""

import asyncio
import hashlib
import os
import shutil
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import quote, urlsplit, urlunsplit

import structlog
from pydantic import BaseModel, ConfigDict

from wikigen.errors import SnapshotError
from wikigen.models.base import utc_now
from wikigen.models.sync_record import FileChanges
from wikigen.models.warehouse import Warehouse


class SnapshotResult(BaseModel):
    """Outcome of a refresh.

    ``commit_id`` is None when the working tree already matched
    ``warehouse.version``; ``changes`` is empty in that case.
    """

    commit_id: str | None
    working_tree: Path
    changes: FileChanges = FileChanges()

    model_config = ConfigDict(frozen=True)

    @property
    def has_new_commit(self) -> bool:
        return self.commit_id is not None


class SnapshotProvider(Protocol):
    async def refresh(self, warehouse: Warehouse, working_tree: Path) -> SnapshotResult: ...


def parse_repository_address(address: str) -> tuple[str, str]:
    """Derive ``(organization, name)`` from a git URL or an archive path.

    >>> parse_repository_address("https://github.com/acme/widgets.git")
    ('acme', 'widgets')
    >>> parse_repository_address("git@gitee.com:org/repo.git")
    ('org', 'repo')
    """
    address = address.strip().rstrip("/")
    if not address:
        raise ValueError("repository address cannot be empty")

    if "://" in address:
        path = urlsplit(address).path
    elif ":" in address and "@" in address.split(":", 1)[0]:
        path = address.split(":", 1)[1]
    else:
        archive = PurePosixPath(address.replace("\\", "/"))
        name = archive.name
        for suffix in (".tar.gz", ".tgz", ".tar", ".zip"):
            if name.lower().endswith(suffix):
                name = name[: -len(suffix)]
                break
        return "local", name or "archive"

    parts = [part for part in path.strip("/").split("/") if part]
    if not parts:
        raise ValueError(f"cannot derive a repository name from '{address}'")
    name = parts[-1].removesuffix(".git")
    organization = parts[-2] if len(parts) >= 2 else "default"
    return organization, name


def working_tree_path(root: Path, warehouse: Warehouse) -> Path:
    """``<root>/<organization>/<name>/<branch>``, with branch slashes flattened."""
    return root / warehouse.organization_name / warehouse.name / warehouse.branch.replace("/", "_")


def authenticated_url(address: str, user: str | None, password: str | None) -> str:
    if not (user and password) or "://" not in address:
        return address
    parts = urlsplit(address)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{quote(user, safe='')}:{quote(password, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def parse_name_status(output: str) -> FileChanges:
    """Parse ``git diff --name-status`` output; renames count as delete + add."""
    added: list[str] = []
    modified: list[str] = []
    deleted: list[str] = []
    for line in output.splitlines():
        fields = line.split("\t")
        if len(fields) < 2 or not fields[0]:
            continue
        code = fields[0][0]
        if code == "A" or code == "C":
            added.append(fields[-1])
        elif code == "D":
            deleted.append(fields[1])
        elif code == "R" and len(fields) >= 3:
            deleted.append(fields[1])
            added.append(fields[2])
        else:
            modified.append(fields[1])
    return FileChanges(added=added, modified=modified, deleted=deleted)


class GitSnapshotProvider:
    """Clones or fast-forwards a warehouse's branch with the git CLI."""

    def __init__(
        self,
        git_binary: str = "git",
        timeout_seconds: float = 600.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._git = git_binary
        self._timeout = timeout_seconds
        self._logger = logger or structlog.get_logger(__name__)

    async def refresh(self, warehouse: Warehouse, working_tree: Path) -> SnapshotResult:
        """Bring ``working_tree`` to the tip of ``warehouse.branch``.

        Raises:
            SnapshotError: On any git failure, including auth and network errors.
        """
        url = authenticated_url(warehouse.address, warehouse.git_user_name, warehouse.git_password)
        secrets = [s for s in (warehouse.git_password,) if s]

        if (working_tree / ".git").is_dir():
            await self._run(["remote", "set-url", "origin", url], working_tree, secrets)
            await self._run(["fetch", "--prune", "origin", warehouse.branch], working_tree, secrets)
            await self._run(["reset", "--hard", f"origin/{warehouse.branch}"], working_tree, secrets)
            self._logger.info("repository_pulled", warehouse_id=warehouse.warehouse_id, path=str(working_tree))
        else:
            if working_tree.exists():
                # Half-written clone from an earlier failure.
                await asyncio.to_thread(shutil.rmtree, working_tree)
            working_tree.parent.mkdir(parents=True, exist_ok=True)
            await self._run(
                ["clone", "--branch", warehouse.branch, "--single-branch", url, str(working_tree)],
                working_tree.parent,
                secrets,
            )
            self._logger.info("repository_cloned", warehouse_id=warehouse.warehouse_id, path=str(working_tree))

        head = (await self._run(["rev-parse", "HEAD"], working_tree, secrets)).strip()
        if warehouse.version and head == warehouse.version:
            self._logger.info("repository_up_to_date", warehouse_id=warehouse.warehouse_id, version=head)
            return SnapshotResult(commit_id=None, working_tree=working_tree)

        changes = await self._diff(warehouse.version, head, working_tree, secrets)
        self._logger.info(
            "repository_changed",
            warehouse_id=warehouse.warehouse_id,
            from_version=warehouse.version,
            to_version=head,
            changed_files=changes.total,
        )
        return SnapshotResult(commit_id=head, working_tree=working_tree, changes=changes)

    async def _diff(
        self,
        from_version: str | None,
        head: str,
        working_tree: Path,
        secrets: list[str],
    ) -> FileChanges:
        if from_version:
            try:
                output = await self._run(
                    ["diff", "--name-status", "-M", from_version, head],
                    working_tree,
                    secrets,
                )
                return parse_name_status(output)
            except SnapshotError as exc:
                # Old commit no longer reachable (force push or shallow history).
                self._logger.warning("diff_base_unavailable", from_version=from_version, error=str(exc))
        listing = await self._run(["ls-files"], working_tree, secrets)
        return FileChanges(added=[p for p in listing.splitlines() if p], full_refresh=True)

    async def _run(self, args: list[str], cwd: Path, secrets: list[str]) -> str:
        command = [self._git, "-c", "core.quotepath=off", *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except FileNotFoundError as exc:
            raise SnapshotError(f"git executable '{self._git}' not found") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise SnapshotError(f"git {args[0]} timed out after {self._timeout:.0f}s") from exc

        if process.returncode != 0:
            message = _redact(stderr.decode("utf-8", errors="replace").strip(), secrets)
            self._logger.warning("git_command_failed", command=args[0], returncode=process.returncode)
            raise SnapshotError(f"git {args[0]} failed: {message or f'exit code {process.returncode}'}")
        return stdout.decode("utf-8", errors="replace")


class ArchiveSnapshotProvider:
    """Unpacks an uploaded archive. Archives have no history, so every refresh is a full one."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    async def refresh(self, warehouse: Warehouse, working_tree: Path) -> SnapshotResult:
        archive = Path(warehouse.address)
        if not archive.is_file():
            raise SnapshotError(f"Archive {archive} does not exist")

        try:
            files, digest = await asyncio.to_thread(self._extract, archive, working_tree)
        except (OSError, zipfile.BadZipFile, tarfile.TarError) as exc:
            raise SnapshotError(f"Could not extract {archive.name}: {exc}") from exc

        commit_id = f"archive-{digest[:12]}-{utc_now().strftime('%Y%m%d%H%M%S')}"
        self._logger.info(
            "archive_extracted",
            warehouse_id=warehouse.warehouse_id,
            archive=archive.name,
            file_count=len(files),
        )
        return SnapshotResult(
            commit_id=commit_id,
            working_tree=working_tree,
            changes=FileChanges(added=files, full_refresh=True),
        )

    def _extract(self, archive: Path, working_tree: Path) -> tuple[list[str], str]:
        digest = hashlib.sha256()
        with archive.open("rb") as handle:
            for block in iter(lambda: handle.read(1 << 20), b""):
                digest.update(block)

        if working_tree.exists():
            shutil.rmtree(working_tree)
        working_tree.mkdir(parents=True)
        root = working_tree.resolve()

        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as bundle:
                for member in bundle.namelist():
                    target = (root / member).resolve()
                    if not target.is_relative_to(root):
                        raise SnapshotError(f"Archive member '{member}' escapes the working tree")
                bundle.extractall(root)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive) as bundle:
                try:
                    bundle.extractall(root, filter="data")
                except tarfile.FilterError as exc:
                    raise SnapshotError(f"Archive member rejected: {exc}") from exc
        else:
            raise SnapshotError(f"{archive.name} is not a zip or tar archive")

        files = sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())
        return files, digest.hexdigest()


def _redact(message: str, secrets: list[str]) -> str:
    for secret in secrets:
        message = message.replace(secret, "***").replace(quote(secret, safe=""), "***")
    return message
