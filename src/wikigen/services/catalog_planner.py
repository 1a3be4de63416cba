"""Initial catalog planning and repository classification."""

import re
from collections import deque
from uuid import uuid4

import structlog

from wikigen.errors import GenerationError
from wikigen.models.catalog import CatalogDraft, DocumentCatalog
from wikigen.models.enums import ClassifyType
from wikigen.services import prompts
from wikigen.services.context import GenerationContext
from wikigen.services.envelope import find_block, parse_json_block, require_version, slugify
from wikigen.services.llm_client import ChatMessage, LLMClient
from wikigen.services.retry import retry_generation

_CLASSIFY_TAG = re.compile(r"<classify>\s*classifyName\s*:\s*(?P<name>[\w-]+)\s*</classify>", re.IGNORECASE)


def parse_catalog_response(text: str, max_depth: int) -> list[CatalogDraft]:
    """Turn a ``<catalog>`` answer into draft trees, cut at ``max_depth``.

    Raises:
        GenerationError: If the envelope is missing, has the wrong version, or
            does not hold ``{"items": [...]}``.
    """
    block = find_block(text or "", "catalog")
    if block is None:
        raise GenerationError("LLM response has no <catalog> block")
    require_version(block, "catalog", prompts.CATALOG_ENVELOPE_VERSION)
    decoded = parse_json_block(block.body, "catalog")
    items = decoded.get("items") if isinstance(decoded, dict) else decoded
    if not isinstance(items, list) or not items:
        raise GenerationError("LLM <catalog> block must contain a non-empty items list")
    return [_to_draft(item, depth=1, max_depth=max_depth) for item in items]


def _to_draft(item: object, depth: int, max_depth: int) -> CatalogDraft:
    if not isinstance(item, dict):
        raise GenerationError("Catalog items must be JSON objects")
    title = str(item.get("title") or item.get("name") or "").strip()
    if not title:
        raise GenerationError("Catalog item is missing a title")
    raw_children = item.get("children") or []
    if not isinstance(raw_children, list):
        raise GenerationError("Catalog item children must be a list")
    children = [_to_draft(child, depth + 1, max_depth) for child in raw_children] if depth < max_depth else []
    return CatalogDraft(
        name=title,
        url=slugify(str(item.get("name") or title)),
        prompt=str(item.get("prompt") or "").strip() or title,
        description=str(item.get("description") or ""),
        children=children,
    )


def flatten_drafts(
    drafts: list[CatalogDraft],
    warehouse_id: str,
    taken_names: set[str],
    taken_urls: set[str],
    parent_id: str | None = None,
) -> list[DocumentCatalog]:
    """Assign ids, parents and per-parent order to draft trees, breadth first.

    Names and urls that collide with ``taken_*`` (or with each other) get a
    numeric suffix. The ``taken_*`` sets are updated in place.
    """
    flattened: list[DocumentCatalog] = []
    queue: deque[tuple[list[CatalogDraft], str | None]] = deque([(drafts, parent_id)])
    while queue:
        siblings, parent = queue.popleft()
        for order, draft in enumerate(siblings):
            catalog = DocumentCatalog(
                catalog_id=str(uuid4()),
                warehouse_id=warehouse_id,
                name=_unique(draft.name, taken_names, " "),
                url=_unique(draft.url, taken_urls, "-"),
                description=draft.description,
                parent_id=parent,
                order=order,
                prompt=draft.prompt or draft.name,
            )
            flattened.append(catalog)
            if draft.children:
                queue.append((draft.children, catalog.catalog_id))
    return flattened


def _unique(value: str, taken: set[str], separator: str) -> str:
    candidate = value
    suffix = 2
    while candidate in taken:
        candidate = f"{value}{separator}{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


class CatalogPlanner:
    """Asks the LLM for a documentation outline and a project type."""

    def __init__(
        self,
        llm_client: LLMClient,
        max_depth: int = 4,
        max_attempts: int = 1,
        retry_delay_seconds: float = 0.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._llm = llm_client
        self._max_depth = max_depth
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._logger = logger or structlog.get_logger(__name__)

    async def plan(self, context: GenerationContext) -> list[CatalogDraft]:
        """Top-level draft trees for the repository.

        Raises:
            GenerationError: If the LLM call fails, or every attempt returns an
                unusable catalog.
        """
        messages = [
            ChatMessage(
                role="system",
                content=prompts.PLAN_SYSTEM.format(
                    language=context.language,
                    version=prompts.CATALOG_ENVELOPE_VERSION,
                    max_depth=self._max_depth,
                ),
            ),
            ChatMessage(
                role="user",
                content=prompts.PLAN_USER.format(
                    repository=context.repository,
                    branch=context.branch,
                    classify=context.classify.value if context.classify else "Unknown",
                    guidance=prompts.guidance_for(context.classify),
                    readme=context.readme or "(none)",
                    structure=context.structure,
                ),
            ),
        ]
        async def ask() -> list[CatalogDraft]:
            completion = await self._llm.complete(messages)
            return parse_catalog_response(completion.content, self._max_depth)

        drafts = await retry_generation(
            ask,
            self._max_attempts,
            self._retry_delay_seconds,
            self._logger,
            repository=context.repository,
        )
        self._logger.info("catalog_planned", repository=context.repository, top_level_count=len(drafts))
        return drafts

    async def classify(self, context: GenerationContext) -> ClassifyType | None:
        """Project type from a ``<classify>classifyName:X</classify>`` answer; None if unrecognized."""
        messages = [
            ChatMessage(role="system", content=prompts.CLASSIFY_SYSTEM.format(choices=prompts.classify_choices())),
            ChatMessage(
                role="user",
                content=prompts.CLASSIFY_USER.format(
                    repository=context.repository,
                    readme=context.readme or "(none)",
                    structure=context.structure,
                ),
            ),
        ]
        completion = await self._llm.complete(messages, max_tokens=64)
        match = _CLASSIFY_TAG.search(completion.content)
        if match is None:
            self._logger.warning("classification_unparsed", repository=context.repository)
            return None
        name = match.group("name").lower()
        for member in ClassifyType:
            if member.value.lower() == name:
                return member
        self._logger.warning("classification_unknown", repository=context.repository, value=match.group("name"))
        return None
