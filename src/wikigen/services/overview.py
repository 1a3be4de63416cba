"""Project overview and stand-in README generation."""

import re

import structlog

from wikigen.errors import GenerationError
from wikigen.services import prompts
from wikigen.services.context import GenerationContext
from wikigen.services.envelope import find_block, require_version
from wikigen.services.llm_client import ChatMessage, LLMClient
from wikigen.services.mermaid import repair_mermaid
from wikigen.services.retry import retry_generation

_MARKDOWN_FENCE = re.compile(r"^```(?:markdown|md)?\s*\n(?P<body>.*?)\n?```$", re.DOTALL | re.IGNORECASE)


def parse_overview_response(text: str) -> str:
    """Markdown body of an ``<overview>`` answer.

    Raises:
        GenerationError: If the envelope is missing, empty or has the wrong version.
    """
    block = find_block(text or "", "overview", last_close=True)
    if block is None:
        raise GenerationError("LLM response has no <overview> block")
    require_version(block, "overview", prompts.OVERVIEW_ENVELOPE_VERSION)
    return _unwrap(block.body, "overview")


def parse_readme_response(text: str) -> str:
    block = find_block(text or "", "readme", last_close=True)
    if block is None:
        raise GenerationError("LLM response has no <readme> block")
    return _unwrap(block.body, "readme")


def _unwrap(body: str, tag: str) -> str:
    stripped = body.strip()
    fenced = _MARKDOWN_FENCE.match(stripped)
    if fenced is not None:
        stripped = fenced.group("body").strip()
    if not stripped:
        raise GenerationError(f"LLM <{tag}> block is empty")
    return stripped


class OverviewWriter:
    """Asks the LLM for the wiki's front-page overview and, if needed, a README."""

    def __init__(
        self,
        llm_client: LLMClient,
        max_attempts: int = 1,
        retry_delay_seconds: float = 0.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._llm = llm_client
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._logger = logger or structlog.get_logger(__name__)

    async def write_readme(self, context: GenerationContext) -> str:
        """Draft a README for a repository that ships none.

        The result only feeds later prompts of the same run; nothing is written
        into the working tree.
        """
        messages = [
            ChatMessage(
                role="system",
                content=prompts.README_SYSTEM.format(repository=context.repository, language=context.language),
            ),
            ChatMessage(
                role="user",
                content=prompts.README_USER.format(
                    repository=context.repository,
                    branch=context.branch,
                    classify=context.classify.value if context.classify else "Unknown",
                    structure=context.structure,
                ),
            ),
        ]

        async def ask() -> str:
            completion = await self._llm.complete(messages)
            return parse_readme_response(completion.content)

        readme = await retry_generation(
            ask,
            self._max_attempts,
            self._retry_delay_seconds,
            self._logger,
            repository=context.repository,
        )
        self._logger.info("readme_generated", repository=context.repository, content_length=len(readme))
        return readme

    async def write_overview(self, context: GenerationContext, outline: str) -> str:
        """Markdown overview of the project, given the rendered catalog outline."""
        messages = [
            ChatMessage(
                role="system",
                content=prompts.OVERVIEW_SYSTEM.format(
                    language=context.language,
                    guidance=prompts.guidance_for(context.classify),
                    version=prompts.OVERVIEW_ENVELOPE_VERSION,
                ),
            ),
            ChatMessage(
                role="user",
                content=prompts.OVERVIEW_USER.format(
                    repository=context.repository,
                    branch=context.branch,
                    classify=context.classify.value if context.classify else "Unknown",
                    readme=context.readme or "(none)",
                    outline=outline or "(empty)",
                    structure=context.structure,
                ),
            ),
        ]

        async def ask() -> str:
            completion = await self._llm.complete(messages)
            return parse_overview_response(completion.content)

        overview = await retry_generation(
            ask,
            self._max_attempts,
            self._retry_delay_seconds,
            self._logger,
            repository=context.repository,
        )
        self._logger.info("overview_generated", repository=context.repository, content_length=len(overview))
        return repair_mermaid(overview)
