"""Unit tests for catalog planning and classification."""

from pathlib import Path
from uuid import uuid4

import pytest

from wikigen.errors import GenerationError
from wikigen.models.catalog import CatalogDraft
from wikigen.models.enums import ClassifyType
from wikigen.services.catalog_planner import CatalogPlanner, flatten_drafts, parse_catalog_response
from wikigen.services.context import GenerationContext
from wikigen.services.llm_client import Completion

OUTLINE = """Here is the outline.
<catalog version="1">
```json
{"items": [
  {"name": "overview", "title": "Overview", "prompt": "Summarize README.md",
   "children": [
     {"title": "Install", "children": [{"title": "From Source", "children": [{"title": "Too Deep"}]}]}
   ]},
  {"name": "API Reference", "title": "API", "prompt": ""}
]}
```
</catalog>"""


class FakeLLMClient:
    """Answers queued texts first, then the same text for every completion."""

    def __init__(self, answer: str) -> None:
        self.answer = answer
        self.queued: list[str] = []
        self.calls: list[tuple[list, int | None]] = []

    async def complete(self, messages, max_tokens=None, temperature=None) -> Completion:
        self.calls.append((messages, max_tokens))
        content = self.queued.pop(0) if self.queued else self.answer
        return Completion(content=content, prompt_tokens=10, completion_tokens=5)


@pytest.fixture
def context(tmp_path: Path) -> GenerationContext:
    return GenerationContext(
        repository="https://github.com/acme/widgets.git",
        branch="main",
        working_tree=tmp_path,
        structure="/\n  README.md/F",
        file_paths=["README.md"],
        readme="# Widgets",
    )


class TestParseCatalogResponse:
    """Tests for the catalog envelope parser."""

    def test_builds_draft_trees_cut_at_max_depth(self) -> None:
        drafts = parse_catalog_response(OUTLINE, max_depth=3)

        overview, api = drafts
        assert (overview.name, overview.url, overview.prompt) == ("Overview", "overview", "Summarize README.md")
        install = overview.children[0]
        assert install.url == "install"
        assert install.prompt == "Install"
        assert [c.name for c in install.children] == ["From Source"]
        assert install.children[0].children == []
        assert (api.name, api.url, api.prompt) == ("API", "api-reference", "API")

    def test_depth_one_drops_all_children(self) -> None:
        drafts = parse_catalog_response(OUTLINE, max_depth=1)

        assert all(draft.children == [] for draft in drafts)

    @pytest.mark.parametrize(
        "answer",
        [
            "no envelope at all",
            '<catalog version="2">{"items": [{"title": "A"}]}</catalog>',
            '<catalog>{"items": []}</catalog>',
            '<catalog>{"items": [{"prompt": "untitled"}]}</catalog>',
            '<catalog>{"items": [{"title": "A", "children": "B"}]}</catalog>',
            "<catalog>{items: []}</catalog>",
        ],
    )
    def test_unusable_answers_raise(self, answer: str) -> None:
        with pytest.raises(GenerationError):
            parse_catalog_response(answer, max_depth=4)


class TestFlattenDrafts:
    """Tests for turning draft trees into catalog rows."""

    def test_assigns_parents_and_order_breadth_first(self) -> None:
        drafts = [
            CatalogDraft(name="Overview", url="overview", children=[CatalogDraft(name="Install", url="install")]),
            CatalogDraft(name="API", url="api", prompt="Document the API"),
        ]
        warehouse_id = str(uuid4())

        rows = flatten_drafts(drafts, warehouse_id, set(), set())

        assert [row.name for row in rows] == ["Overview", "API", "Install"]
        assert [row.order for row in rows] == [0, 1, 0]
        assert rows[0].parent_id is None
        assert rows[2].parent_id == rows[0].catalog_id
        assert rows[0].prompt == "Overview"
        assert rows[1].prompt == "Document the API"
        assert {row.warehouse_id for row in rows} == {warehouse_id}

    def test_collisions_get_numeric_suffixes(self) -> None:
        drafts = [CatalogDraft(name="Overview", url="overview"), CatalogDraft(name="Overview", url="overview")]
        taken_names = {"Overview"}
        taken_urls = {"overview"}

        rows = flatten_drafts(drafts, str(uuid4()), taken_names, taken_urls)

        assert [(row.name, row.url) for row in rows] == [("Overview 2", "overview-2"), ("Overview 3", "overview-3")]
        assert taken_urls == {"overview", "overview-2", "overview-3"}

    def test_attaches_to_given_parent(self) -> None:
        parent_id = str(uuid4())

        rows = flatten_drafts([CatalogDraft(name="Child", url="child")], str(uuid4()), set(), set(), parent_id)

        assert rows[0].parent_id == parent_id


class TestCatalogPlanner:
    """Tests for the LLM-backed planner."""

    async def test_plan_parses_answer(self, context: GenerationContext) -> None:
        llm = FakeLLMClient(OUTLINE)

        drafts = await CatalogPlanner(llm_client=llm, max_depth=2).plan(context)

        assert [d.name for d in drafts] == ["Overview", "API"]
        assert drafts[0].children[0].children == []
        system = llm.calls[0][0][0].content
        assert '<catalog version="1">' in system

    async def test_plan_asks_again_after_unusable_catalog(self, context: GenerationContext) -> None:
        llm = FakeLLMClient(OUTLINE)
        llm.queued.append("Sorry, I cannot help with that.")

        drafts = await CatalogPlanner(llm_client=llm, max_attempts=3).plan(context)

        assert [d.name for d in drafts] == ["Overview", "API"]
        assert len(llm.calls) == 2

    async def test_plan_gives_up_after_max_attempts(self, context: GenerationContext) -> None:
        llm = FakeLLMClient('<catalog version="2">{"items": [{"title": "A"}]}</catalog>')

        with pytest.raises(GenerationError, match="version"):
            await CatalogPlanner(llm_client=llm, max_attempts=3).plan(context)

        assert len(llm.calls) == 3

    @pytest.mark.parametrize(
        ("answer", "expected"),
        [
            ("<classify>classifyName:Libraries</classify>", ClassifyType.LIBRARIES),
            ("I think <CLASSIFY> classifyName : clitools </CLASSIFY>", ClassifyType.CLI_TOOLS),
            ("<classify>classifyName:Games</classify>", None),
            ("It is probably a library.", None),
        ],
    )
    async def test_classify(self, context: GenerationContext, answer: str, expected: ClassifyType | None) -> None:
        llm = FakeLLMClient(answer)

        assert await CatalogPlanner(llm_client=llm).classify(context) == expected
        assert llm.calls[0][1] == 64
