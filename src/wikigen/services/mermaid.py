"""Textual repair of Mermaid diagrams embedded in generated Markdown.

Only lines inside ```` ```mermaid ```` fences are touched. Each line is
rewritten until neither rule changes it any more, so a second pass over the
output is a no-op.
"""

import re

_FENCE = re.compile(r"^(?P<indent>[ \t]*)(?P<marker>`{3,}|~{3,})(?P<info>.*)$")
_MERMAID_INFO = re.compile(r"^\s*mermaid\b", re.IGNORECASE)
# One alternation so a single left-to-right scan never rewrites overlapping labels.
_NODE_LABEL = re.compile(r"(?P<id>[\w-]+)(?:\[(?P<square>[^\[\]\"]*)\]|\{(?P<curly>[^{}\"]*)\})")
_UNSAFE_SQUARE = set("()（）{}|;")
_UNSAFE_CURLY = set("()（）|;")
_SHAPE_PREFIXES = ("(", "[", "/", "\\", "{", ">")


def repair_mermaid(markdown: str) -> str:
    """Normalize Mermaid blocks so the renderer can parse them.

    Repairs applied inside mermaid fences:

    * the opening fence line is normalized to ``<indent><marker>mermaid``;
    * a block left open at end of input gets a closing fence;
    * a line with more ``[`` than ``]`` (outside quoted text) gets the
      missing ``]`` appended;
    * ``id[label]`` / ``id{label}`` whose label holds characters Mermaid
      cannot parse unquoted are wrapped in double quotes.

    Labels that already contain ``"`` are left as they are, and so are lines
    with an odd number of ``"``, since their quoting cannot be interpreted
    reliably.
    """
    if "mermaid" not in markdown.lower():
        return markdown

    trailing_newline = markdown.endswith("\n")
    lines = markdown.split("\n")
    if trailing_newline:
        lines.pop()

    output: list[str] = []
    open_fence: tuple[str, str, bool] | None = None  # (indent, marker, is_mermaid)

    for line in lines:
        body = line.rstrip("\r")
        eol = line[len(body):]
        fence = _FENCE.match(body)

        if open_fence is None:
            if fence is None:
                output.append(line)
                continue
            is_mermaid = bool(_MERMAID_INFO.match(fence.group("info")))
            open_fence = (fence.group("indent"), fence.group("marker"), is_mermaid)
            if is_mermaid:
                output.append(f"{fence.group('indent')}{fence.group('marker')}mermaid{eol}")
            else:
                output.append(line)
            continue

        indent, marker, is_mermaid = open_fence
        if _closes(fence, marker):
            open_fence = None
            output.append(line)
            continue

        output.append(_repair_line(body) + eol if is_mermaid else line)

    if open_fence is not None and open_fence[2]:
        output.append(f"{open_fence[0]}{open_fence[1]}")

    result = "\n".join(output)
    return result + "\n" if trailing_newline else result


def _closes(fence: re.Match[str] | None, marker: str) -> bool:
    if fence is None or fence.group("info").strip():
        return False
    closing = fence.group("marker")
    return closing[0] == marker[0] and len(closing) >= len(marker)


def _repair_line(line: str) -> str:
    if line.count('"') % 2 != 0:
        return line

    # Quoting a {label} can hide a "]" that balanced a stray "[", and an appended
    # "]" can complete a label that now needs quoting.
    while True:
        repaired = _quote_line(_balance_brackets(line))
        if repaired == line:
            return line
        line = repaired


def _balance_brackets(line: str) -> str:
    segments = _split_quoted(line)
    opens = sum(text.count("[") for text, quoted in segments if not quoted)
    closes = sum(text.count("]") for text, quoted in segments if not quoted)
    if opens > closes:
        return line + "]" * (opens - closes)
    return line


def _quote_line(line: str) -> str:
    return "".join(text if quoted else _quote_labels(text) for text, quoted in _split_quoted(line))


def _split_quoted(line: str) -> list[tuple[str, bool]]:
    """Split into (text, is_quoted) runs; quoted runs keep their quotes."""
    segments: list[tuple[str, bool]] = []
    start = 0
    while True:
        open_at = line.find('"', start)
        if open_at == -1:
            break
        close_at = line.find('"', open_at + 1)
        if close_at == -1:
            break
        if open_at > start:
            segments.append((line[start:open_at], False))
        segments.append((line[open_at : close_at + 1], True))
        start = close_at + 1
    if start < len(line):
        segments.append((line[start:], False))
    return segments


def _quote_labels(text: str) -> str:
    return _NODE_LABEL.sub(_quoted, text)


def _quoted(match: re.Match[str]) -> str:
    if match.group("square") is not None:
        label, opening, closing, unsafe = match.group("square"), "[", "]", _UNSAFE_SQUARE
    else:
        label, opening, closing, unsafe = match.group("curly"), "{", "}", _UNSAFE_CURLY
    stripped = label.strip()
    if not stripped or stripped.startswith(_SHAPE_PREFIXES) or not any(ch in unsafe for ch in label):
        return match.group(0)
    return f'{match.group("id")}{opening}"{stripped}"{closing}'
