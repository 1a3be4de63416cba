"""Catalog node processor: one LLM call turns a catalog node into a page.

The processor never touches storage. It returns a NodeResult that the caller
persists with ``CatalogStore.replace_file_item``; that keeps page content and
its provenance replaceable as a single unit.
"""

import asyncio
from pathlib import Path, PurePosixPath
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from wikigen.errors import GenerationError, NotFoundError, ValidationError
from wikigen.models.catalog import CatalogDraft, DocumentCatalog
from wikigen.models.file_item import DocumentFileItem, DocumentFileItemSource
from wikigen.services import prompts
from wikigen.services.context import GenerationContext
from wikigen.services.envelope import find_block, parse_json_block, require_version, slugify
from wikigen.services.llm_client import ChatMessage, Completion, LLMClient
from wikigen.services.mermaid import repair_mermaid
from wikigen.services.retry import retry_generation


class PriorContent(BaseModel):
    """The page being replaced and the files it was built from."""

    content: str
    source_paths: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class NodeResult(BaseModel):
    children: list[CatalogDraft] = Field(default_factory=list)
    file_item: DocumentFileItem
    referenced_paths: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    def build_sources(self) -> list[DocumentFileItemSource]:
        """Provenance rows for ``file_item``, one per referenced path."""
        return [
            DocumentFileItemSource(
                source_id=str(uuid4()),
                file_item_id=self.file_item.file_item_id,
                address=path,
                name=PurePosixPath(path).name,
            )
            for path in self.referenced_paths
        ]


class ParsedPage(BaseModel):
    content: str
    sources: list[str] = Field(default_factory=list)
    children: list[CatalogDraft] = Field(default_factory=list)

    model_config = {"frozen": True}


def parse_page_response(text: str) -> ParsedPage:
    """Split a page answer into Markdown, cited paths and proposed sub-pages.

    Without a ``<document>`` block the whole answer is the page and nothing is
    cited.

    Raises:
        GenerationError: On an empty answer, an unsupported envelope version,
            an unterminated block, or a sources/children block that is not the
            expected JSON.
    """
    if not text or not text.strip():
        raise GenerationError("LLM returned an empty response")

    document = find_block(text, "document")
    if document is None:
        return ParsedPage(content=text.strip())

    require_version(document, "document", prompts.DOCUMENT_ENVELOPE_VERSION)
    # Close on the last </document> only if no sources block follows it.
    sources_at = text.lower().find("<sources", document.end)
    if sources_at == -1:
        document = find_block(text, "document", last_close=True) or document
    content = document.body.strip()
    if not content:
        raise GenerationError("LLM returned an empty <document> block")

    sources: list[str] = []
    sources_block = find_block(text, "sources", document.end)
    if sources_block is not None:
        decoded = parse_json_block(sources_block.body, "sources")
        if not isinstance(decoded, list) or not all(isinstance(item, str) for item in decoded):
            raise GenerationError("LLM response <sources> block must be a JSON list of paths")
        sources = decoded

    children: list[CatalogDraft] = []
    children_block = find_block(text, "children", document.end)
    if children_block is not None:
        decoded = parse_json_block(children_block.body, "children")
        if not isinstance(decoded, list):
            raise GenerationError("LLM response <children> block must be a JSON list")
        children = [_child_draft(item) for item in decoded]

    return ParsedPage(content=content, sources=sources, children=children)


def _child_draft(item: object) -> CatalogDraft:
    if not isinstance(item, dict) or not str(item.get("name") or "").strip():
        raise GenerationError("Each proposed child page needs a name")
    name = str(item["name"]).strip()
    try:
        return CatalogDraft(
            name=name,
            url=slugify(str(item.get("url") or name)),
            prompt=str(item.get("prompt") or name).strip(),
            description=str(item.get("description") or ""),
        )
    except PydanticValidationError as exc:
        raise GenerationError(f"Invalid child page proposal: {exc}") from exc


def normalize_referenced_paths(paths: list[str], working_tree: Path) -> list[str]:
    """Keep relative paths that exist inside ``working_tree``, first occurrence wins."""
    root = working_tree.resolve()
    kept: list[str] = []
    seen: set[str] = set()
    for raw in paths:
        candidate = raw.strip().replace("\\", "/")
        while candidate.startswith("./"):
            candidate = candidate[2:]
        candidate = candidate.rstrip("/")
        if not candidate or PurePosixPath(candidate).is_absolute():
            continue
        resolved = (root / candidate).resolve()
        if not resolved.is_relative_to(root) or not resolved.exists():
            continue
        normalized = resolved.relative_to(root).as_posix()
        if normalized in seen:
            continue
        seen.add(normalized)
        kept.append(normalized)
    return kept


class CatalogNodeProcessor:
    """Generates the page for one catalog node."""

    def __init__(
        self,
        llm_client: LLMClient,
        model_name: str = "",
        max_excerpt_chars: int = 6000,
        max_excerpt_files: int = 15,
        max_attempts: int = 1,
        retry_delay_seconds: float = 0.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._llm = llm_client
        self._model_name = model_name
        self._max_excerpt_chars = max_excerpt_chars
        self._max_excerpt_files = max_excerpt_files
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._logger = logger or structlog.get_logger(__name__)

    async def process_node(
        self,
        catalog: DocumentCatalog,
        context: GenerationContext,
        prior: PriorContent | None = None,
    ) -> NodeResult:
        """Ask the LLM for the node's page and parse the answer.

        Args:
            catalog: Node to generate; its prompt must be non-empty.
            context: Repository context for the run.
            prior: Existing page and provenance when regenerating.

        Raises:
            ValidationError: If the node has no prompt.
            NotFoundError: If the working tree is missing.
            GenerationError: If the LLM call fails, or every attempt returns an
                unusable answer.
        """
        if not catalog.prompt.strip():
            raise ValidationError(f"Catalog {catalog.catalog_id} has an empty prompt")
        if not context.working_tree.is_dir():
            raise NotFoundError(f"Working tree {context.working_tree} does not exist")

        self._logger.info(
            "node_generation_started",
            catalog_id=catalog.catalog_id,
            url=catalog.url,
            regenerate=prior is not None,
        )

        excerpt_paths = self._select_excerpt_paths(catalog, context, prior)
        excerpts = await asyncio.to_thread(self._read_excerpts, context.working_tree, excerpt_paths)
        messages = self._build_messages(catalog, context, prior, excerpts)

        async def ask() -> tuple[Completion, ParsedPage]:
            completion = await self._llm.complete(messages)
            return completion, parse_page_response(completion.content)

        completion, parsed = await retry_generation(
            ask,
            self._max_attempts,
            self._retry_delay_seconds,
            self._logger,
            catalog_id=catalog.catalog_id,
        )

        content = repair_mermaid(parsed.content)
        referenced = normalize_referenced_paths(parsed.sources, context.working_tree)
        file_item = DocumentFileItem(
            file_item_id=str(uuid4()),
            catalog_id=catalog.catalog_id,
            title=_extract_title(content) or catalog.name,
            description=_extract_description(content),
            content=content,
            request_token=completion.prompt_tokens,
            response_token=completion.completion_tokens,
            metadata={
                "envelope_version": prompts.DOCUMENT_ENVELOPE_VERSION,
                "model": self._model_name,
            },
            extra={"dropped_sources": len(parsed.sources) - len(referenced)},
        )

        self._logger.info(
            "node_generation_completed",
            catalog_id=catalog.catalog_id,
            content_length=len(content),
            source_count=len(referenced),
            child_count=len(parsed.children),
        )
        return NodeResult(children=parsed.children, file_item=file_item, referenced_paths=referenced)

    def _select_excerpt_paths(
        self,
        catalog: DocumentCatalog,
        context: GenerationContext,
        prior: PriorContent | None,
    ) -> list[str]:
        selected: list[str] = []
        if prior is not None:
            selected.extend(prior.source_paths)
        # Files the node prompt names explicitly.
        selected.extend(path for path in context.file_paths if path in catalog.prompt)
        unique = list(dict.fromkeys(selected))
        return unique[: self._max_excerpt_files]

    def _read_excerpts(self, working_tree: Path, paths: list[str]) -> list[tuple[str, str]]:
        budget = self._max_excerpt_chars
        excerpts: list[tuple[str, str]] = []
        per_file = max(budget // max(len(paths), 1), 200)
        for path in paths:
            if budget <= 0:
                break
            file_path = working_tree / path
            if not file_path.is_file():
                continue
            try:
                text = file_path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                self._logger.warning("excerpt_read_failed", path=path, error=str(exc))
                continue
            text = text[: min(per_file, budget)]
            budget -= len(text)
            excerpts.append((path, text))
        return excerpts

    def _build_messages(
        self,
        catalog: DocumentCatalog,
        context: GenerationContext,
        prior: PriorContent | None,
        excerpts: list[tuple[str, str]],
    ) -> list[ChatMessage]:
        system = prompts.PAGE_SYSTEM.format(
            repository=context.repository,
            branch=context.branch,
            language=context.language,
            version=prompts.DOCUMENT_ENVELOPE_VERSION,
        )
        prior_section = prompts.PRIOR_SECTION.format(content=prior.content) if prior is not None else ""
        excerpt_section = ""
        if excerpts:
            rendered = "\n".join(prompts.EXCERPT_TEMPLATE.format(path=path, text=text) for path, text in excerpts)
            excerpt_section = prompts.EXCERPT_SECTION.format(excerpts=rendered)
        user = prompts.PAGE_USER.format(
            title=catalog.name,
            prompt=catalog.prompt,
            classify=context.classify.value if context.classify else "Unknown",
            guidance=prompts.guidance_for(context.classify),
            structure=context.structure,
            prior_section=prior_section,
            excerpt_section=excerpt_section,
        )
        return [ChatMessage(role="system", content=system), ChatMessage(role="user", content=user)]


def _extract_title(content: str) -> str:
    for line in content.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return ""


def _extract_description(content: str, limit: int = 200) -> str:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith(("#", "```", "<", "|", "-", "*", ">")):
            return stripped[:limit]
    return ""
