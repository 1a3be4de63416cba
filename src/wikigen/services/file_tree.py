"""Compact directory-structure hint sent to the LLM."""

from collections.abc import Iterable


def render_compact_tree(paths: Iterable[str]) -> str:
    """Render repo-relative file paths as an indented tree.

    The first line is ``/``; each entry is ``name/D`` for a directory or
    ``name/F`` for a file, indented two spaces per level. Directories sort
    before files, then names alphabetically.

    >>> print(render_compact_tree(["src/app.py", "README.md"]))
    /
      src/D
        app.py/F
      README.md/F
    """
    root: dict[str, dict] = {}
    for path in paths:
        parts = [part for part in path.strip("/").split("/") if part and part != "."]
        node = root
        for part in parts[:-1]:
            node = node.setdefault(part + "/", {})
        if parts:
            node.setdefault(parts[-1], {})

    lines = ["/"]
    stack: list[tuple[int, str, dict]] = [(1, key, value) for key, value in reversed(_sorted_entries(root))]
    while stack:
        depth, key, children = stack.pop()
        if key.endswith("/"):
            lines.append(f"{'  ' * depth}{key[:-1]}/D")
            stack.extend((depth + 1, k, v) for k, v in reversed(_sorted_entries(children)))
        else:
            lines.append(f"{'  ' * depth}{key}/F")
    return "\n".join(lines)


def _sorted_entries(node: dict[str, dict]) -> list[tuple[str, dict]]:
    return sorted(node.items(), key=lambda item: (not item[0].endswith("/"), item[0].lower()))
