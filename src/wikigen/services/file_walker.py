"""File walker service for discovering the documentable files of a working tree."""

import asyncio
import fnmatch
import os
from collections.abc import AsyncIterator
from pathlib import Path

import structlog

DEFAULT_MAX_FILE_SIZE = 1024 * 1024


class IgnoreRule:
    """One .gitignore-style pattern.

    Supports the common subset: ``#`` comments, a trailing ``/`` for
    directory-only rules, a leading ``/`` to anchor at the root, and ``*``/``?``
    wildcards. Matching is case-insensitive. Negation (``!``) is not supported
    and such lines are skipped.
    """

    def __init__(self, pattern: str) -> None:
        pattern = pattern.strip()
        if pattern.startswith("./"):
            pattern = pattern[2:]
        self.directory_only = pattern.endswith("/")
        pattern = pattern.rstrip("/")
        self.anchored = pattern.startswith("/") or "/" in pattern
        self.pattern = pattern.lstrip("/").lower()

    def matches(self, relative_path: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        candidate = relative_path.lower()
        if self.anchored:
            return fnmatch.fnmatchcase(candidate, self.pattern)
        return fnmatch.fnmatchcase(candidate.rsplit("/", 1)[-1], self.pattern)


def parse_ignore_lines(lines: list[str]) -> list[IgnoreRule]:
    rules = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("!"):
            continue
        rules.append(IgnoreRule(stripped))
    return rules


class FileWalker:
    """Walks a working tree to discover files worth documenting.

    Honors include patterns, the repository's ``.gitignore``, configured
    excluded files and folders, skips dot-directories and files at or above
    ``max_file_size``. Uses asyncio.to_thread to avoid blocking the event loop.
    """

    def __init__(
        self,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
        excluded_folders: list[str] | None = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        respect_gitignore: bool = True,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._include_patterns = [p.lower() for p in include_patterns] if include_patterns else ["*"]
        self._exclude_patterns = exclude_patterns or []
        self._excluded_folders = excluded_folders or []
        self._max_file_size = max_file_size
        self._respect_gitignore = respect_gitignore
        self._logger = logger or structlog.get_logger(__name__)

    async def walk(self, directory: Path) -> AsyncIterator[Path]:
        """Walk directory and yield files that pass every filter.

        Args:
            directory: Root of the working tree.

        Yields:
            Absolute Path objects, in sorted order.

        Raises:
            FileNotFoundError: If directory does not exist.
            NotADirectoryError: If path is not a directory.
        """
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")
        if not directory.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {directory}")

        self._logger.info(
            "directory_walk_started",
            directory=str(directory),
            include_patterns=self._include_patterns,
        )

        files = await asyncio.to_thread(self._collect, directory)
        for file_path in files:
            yield file_path

        self._logger.info(
            "directory_walk_completed",
            directory=str(directory),
            file_count=len(files),
        )

    async def list_relative_paths(self, directory: Path) -> list[str]:
        """POSIX-style paths relative to ``directory`` for every walked file."""
        return [path.relative_to(directory).as_posix() async for path in self.walk(directory)]

    def _collect(self, directory: Path) -> list[Path]:
        rules = self._load_rules(directory)
        found: list[Path] = []
        for current, dir_names, file_names in os.walk(directory):
            current_path = Path(current)
            relative_dir = current_path.relative_to(directory).as_posix()
            prefix = "" if relative_dir == "." else f"{relative_dir}/"

            # Prune in place so os.walk never descends into skipped folders.
            dir_names[:] = sorted(
                name for name in dir_names if not self._skip_directory(name, f"{prefix}{name}", rules)
            )
            for name in sorted(file_names):
                relative = f"{prefix}{name}"
                file_path = current_path / name
                if self._skip_file(file_path, relative, rules):
                    continue
                found.append(file_path)
        return found

    def _load_rules(self, directory: Path) -> list[IgnoreRule]:
        rules = parse_ignore_lines(self._exclude_patterns)
        rules.extend(IgnoreRule(folder.rstrip("/") + "/") for folder in self._excluded_folders if folder.strip())
        gitignore = directory / ".gitignore"
        if self._respect_gitignore and gitignore.is_file():
            rules.extend(parse_ignore_lines(gitignore.read_text(encoding="utf-8", errors="replace").splitlines()))
        return rules

    def _skip_directory(self, name: str, relative: str, rules: list[IgnoreRule]) -> bool:
        if name.startswith("."):
            return True
        return any(rule.matches(relative, is_dir=True) for rule in rules)

    def _skip_file(self, file_path: Path, relative: str, rules: list[IgnoreRule]) -> bool:
        if not file_path.is_file():
            return True
        if not any(fnmatch.fnmatchcase(file_path.name.lower(), p) for p in self._include_patterns):
            return True
        if any(rule.matches(relative, is_dir=False) for rule in rules):
            return True
        try:
            return file_path.stat().st_size >= self._max_file_size
        except OSError:
            return True
