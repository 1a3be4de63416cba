"""Prompt templates for classification, catalog planning and page writing.

Templates use ``str.format`` placeholders. The response envelopes they ask
for are parsed by ``node_processor``, ``catalog_planner`` and ``overview``;
bump the version attribute in both places together.
"""

from wikigen.models.enums import ClassifyType

DOCUMENT_ENVELOPE_VERSION = "1"
CATALOG_ENVELOPE_VERSION = "1"
OVERVIEW_ENVELOPE_VERSION = "1"

CLASSIFY_SYSTEM = """You are a senior software architect who categorizes repositories.
Answer with exactly one tag of the form <classify>classifyName:NAME</classify>
where NAME is one of: {choices}."""

CLASSIFY_USER = """Repository: {repository}

README:
{readme}

Directory structure:
{structure}"""

PLAN_SYSTEM = """You design the table of contents for a technical documentation wiki.
Write every title and prompt in {language}.

Return the outline as JSON inside a single envelope and nothing else:

<catalog version="{version}">
{{"items": [{{"name": "slug-like-id", "title": "Human title", "prompt": "What this page must explain", "children": []}}]}}
</catalog>

Rules:
- Organize top-level sections from overview to internals.
- Nest at most {max_depth} levels.
- Every prompt names the concrete files or directories the page should study."""

PLAN_USER = """Repository: {repository} (branch {branch})
Project type: {classify}
{guidance}

README:
{readme}

Directory structure (name/D = directory, name/F = file):
{structure}"""

PAGE_SYSTEM = """You write one page of a technical documentation wiki for the repository {repository} (branch {branch}).
Write in {language}, in Markdown, grounded only in the files you were given or that exist in the structure.
Mermaid diagrams are welcome; quote node labels that contain punctuation.

Answer with exactly this envelope:

<document version="{version}">
...the Markdown page, starting with a '# ' title...
</document>
<sources>
["relative/path/of/each/file/you/used"]
</sources>

If the topic is too broad for one page you may also propose sub-pages:

<children>
[{{"name": "Sub-page title", "url": "sub-page-slug", "prompt": "What the sub-page must explain"}}]
</children>"""

PAGE_USER = """Page: {title}
Instructions: {prompt}

Project type: {classify}
{guidance}

Directory structure (name/D = directory, name/F = file):
{structure}
{prior_section}{excerpt_section}"""

PRIOR_SECTION = """
The current version of this page is below. Update it to match the code, keeping what is still accurate.
<previous_document>
{content}
</previous_document>
"""

EXCERPT_SECTION = """
Relevant source files:
{excerpts}
"""

EXCERPT_TEMPLATE = """<file path="{path}">
{text}
</file>"""

README_SYSTEM = """You draft the missing README for the repository {repository}.
Write in {language}, in Markdown: what the project does, how it is laid out, how to build and run it.
Base every statement on the directory structure you were given.

Answer with the README inside a single envelope:

<readme>
...Markdown...
</readme>"""

README_USER = """Repository: {repository} (branch {branch})
Project type: {classify}

Directory structure (name/D = directory, name/F = file):
{structure}"""

OVERVIEW_SYSTEM = """You write the project overview shown on the front page of a documentation wiki.
Write in {language}, in Markdown: purpose, main features, architecture, and where to start reading.
{guidance}

Answer with exactly this envelope:

<overview version="{version}">
...the Markdown overview...
</overview>"""

OVERVIEW_USER = """Repository: {repository} (branch {branch})
Project type: {classify}

README:
{readme}

Wiki table of contents:
{outline}

Directory structure (name/D = directory, name/F = file):
{structure}"""

_GUIDANCE = {
    ClassifyType.APPLICATIONS: "Focus on user-facing features, runtime architecture, configuration and deployment.",
    ClassifyType.FRAMEWORKS: "Focus on extension points, lifecycle, core abstractions and how applications plug in.",
    ClassifyType.LIBRARIES: "Focus on the public API, usage examples, data types and error behavior.",
    ClassifyType.DEVELOPMENT_TOOLS: "Focus on workflows the tool automates, integration with editors or CI, and configuration.",
    ClassifyType.CLI_TOOLS: "Focus on commands, flags, input and output formats, and exit codes.",
    ClassifyType.DEVOPS_CONFIGURATION: "Focus on environments, provisioning steps, variables and operational runbooks.",
    ClassifyType.DOCUMENTATION: "Focus on the structure of the content, how it is built and how to contribute.",
}


def guidance_for(classify: ClassifyType | None) -> str:
    if classify is None:
        return "Focus on architecture, main components and how they interact."
    return _GUIDANCE[classify]


def classify_choices() -> str:
    return ", ".join(member.value for member in ClassifyType)
