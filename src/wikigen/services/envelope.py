"""Helpers for pulling tagged, versioned blocks out of LLM answers."""

import json
import re
import unicodedata
from typing import Any

from wikigen.errors import GenerationError

_JSON_FENCE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_VERSION_ATTR = re.compile(r'version\s*=\s*"(?P<version>[^"]*)"', re.IGNORECASE)


class TaggedBlock:
    def __init__(self, body: str, version: str | None, end: int) -> None:
        self.body = body
        self.version = version
        self.end = end


def find_block(text: str, tag: str, start: int = 0, last_close: bool = False) -> TaggedBlock | None:
    """Locate ``<tag ...>body</tag>`` at or after ``start``.

    Returns None when the opening tag is absent. With ``last_close`` the
    final closing tag is used, so bodies may mention the tag themselves.

    Raises:
        GenerationError: If the opening tag is present but never closed.
    """
    opening = re.compile(rf"<{tag}(?P<attrs>\s[^>]*)?>", re.IGNORECASE)
    match = opening.search(text, start)
    if match is None:
        return None
    closing = f"</{tag}>"
    lowered = text.lower()
    close_at = lowered.rfind(closing) if last_close else lowered.find(closing, match.end())
    if close_at < match.end():
        raise GenerationError(f"LLM response has an unterminated <{tag}> block")
    version_match = _VERSION_ATTR.search(match.group("attrs") or "")
    return TaggedBlock(
        body=text[match.end() : close_at],
        version=version_match.group("version") if version_match else None,
        end=close_at + len(closing),
    )


def parse_json_block(body: str, tag: str) -> Any:
    """Decode a block body as JSON, tolerating a Markdown code fence around it."""
    stripped = body.strip()
    fenced = _JSON_FENCE.match(stripped)
    if fenced is not None:
        stripped = fenced.group("body")
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise GenerationError(f"LLM response <{tag}> block is not valid JSON: {exc.msg}") from exc


def require_version(block: TaggedBlock, tag: str, supported: str) -> None:
    # A missing attribute is read as the current version.
    if block.version is not None and block.version != supported:
        raise GenerationError(f"Unsupported <{tag}> envelope version '{block.version}' (expected '{supported}')")


def slugify(value: str) -> str:
    """Lowercase ASCII slug usable as a catalog url."""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or "page"
