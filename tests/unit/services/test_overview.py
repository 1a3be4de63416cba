"""Unit tests for the OverviewWriter service."""

from pathlib import Path

import pytest

from wikigen.errors import GenerationError
from wikigen.services.context import GenerationContext
from wikigen.services.llm_client import Completion
from wikigen.services.overview import OverviewWriter, parse_overview_response, parse_readme_response


class FakeLLMClient:
    """Returns queued answers in order and records each message list."""

    def __init__(self, answers: list[str]) -> None:
        self._answers = list(answers)
        self.calls: list[list] = []

    async def complete(self, messages, max_tokens=None, temperature=None) -> Completion:
        self.calls.append(messages)
        return Completion(content=self._answers.pop(0))


@pytest.fixture
def context(tmp_path: Path) -> GenerationContext:
    return GenerationContext(
        repository="https://github.com/acme/widgets.git",
        branch="main",
        working_tree=tmp_path,
        structure="/\n  src/D\n    app.py/F",
        file_paths=["src/app.py"],
    )


class TestParseResponses:
    """Tests for the overview and README envelope parsers."""

    def test_overview_body_is_stripped(self) -> None:
        answer = 'Sure.\n<overview version="1">\n\n# Widgets\n\nGadgets in, widgets out.\n</overview>'

        assert parse_overview_response(answer) == "# Widgets\n\nGadgets in, widgets out."

    def test_markdown_fence_inside_block_is_removed(self) -> None:
        answer = "<readme>\n```markdown\n# Widgets\n```\n</readme>"

        assert parse_readme_response(answer) == "# Widgets"

    @pytest.mark.parametrize(
        "answer",
        [
            "",
            "# Widgets without an envelope",
            '<overview version="2"># Widgets</overview>',
            "<overview>   </overview>",
            "<overview># Widgets",
        ],
    )
    def test_unusable_overviews_raise(self, answer: str) -> None:
        with pytest.raises(GenerationError):
            parse_overview_response(answer)


class TestOverviewWriter:
    """Tests for the LLM-backed writer."""

    async def test_overview_prompt_carries_outline_and_readme(self, context: GenerationContext) -> None:
        llm = FakeLLMClient(['<overview version="1">\n# Widgets\n\n```mermaid\nA[in (raw)] --> B\n```\n</overview>'])
        writer = OverviewWriter(llm_client=llm)

        overview = await writer.write_overview(context.model_copy(update={"readme": "# Widgets"}), "- [ ] API (api)")

        system, user = llm.calls[0]
        assert 'version="1"' in system.content
        assert "- [ ] API (api)" in user.content
        assert "README:\n# Widgets" in user.content
        assert 'A["in (raw)"] --> B' in overview

    async def test_readme_is_retried_until_usable(self, context: GenerationContext) -> None:
        llm = FakeLLMClient(["Nothing to say.", "<readme>\n# Widgets\n</readme>"])
        writer = OverviewWriter(llm_client=llm, max_attempts=2)

        assert await writer.write_readme(context) == "# Widgets"
        assert len(llm.calls) == 2
