"""Repository-level context shared by every LLM call of one run."""

import asyncio
from pathlib import Path

import structlog
from pydantic import BaseModel

from wikigen.models.enums import ClassifyType
from wikigen.models.warehouse import Warehouse
from wikigen.services.file_tree import render_compact_tree
from wikigen.services.file_walker import FileWalker

README_NAMES = ("README.md", "README.txt", "README")


class GenerationContext(BaseModel):
    repository: str
    branch: str
    working_tree: Path
    structure: str
    file_paths: list[str]
    readme: str = ""
    classify: ClassifyType | None = None
    language: str = "English"

    model_config = {"frozen": True}


class GenerationContextBuilder:
    """Walks a working tree once and packages what prompts need about it."""

    def __init__(
        self,
        file_walker: FileWalker,
        language: str = "English",
        max_readme_chars: int = 8000,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._file_walker = file_walker
        self._language = language
        self._max_readme_chars = max_readme_chars
        self._logger = logger or structlog.get_logger(__name__)

    async def build(
        self,
        warehouse: Warehouse,
        working_tree: Path,
        classify: ClassifyType | None = None,
    ) -> GenerationContext:
        paths = await self._file_walker.list_relative_paths(working_tree)
        readme = await asyncio.to_thread(self._read_readme, working_tree)
        self._logger.debug(
            "generation_context_built",
            warehouse_id=warehouse.warehouse_id,
            file_count=len(paths),
            has_readme=bool(readme),
        )
        return GenerationContext(
            repository=warehouse.address,
            branch=warehouse.branch,
            working_tree=working_tree,
            structure=render_compact_tree(paths),
            file_paths=paths,
            readme=readme,
            classify=classify if classify is not None else warehouse.classify,
            language=self._language,
        )

    def _read_readme(self, working_tree: Path) -> str:
        for name in README_NAMES:
            candidate = working_tree / name
            if candidate.is_file():
                return candidate.read_text(encoding="utf-8", errors="replace")[: self._max_readme_chars]
        return ""
