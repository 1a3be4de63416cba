"""Rebuild catalog forests from flat, self-referencing rows.

Everything here is iterative over index maps keyed by catalog id, so arbitrarily
deep trees and corrupted parent chains cannot blow the stack or loop forever.
"""

from collections import deque
from collections.abc import Iterable, Iterator

import structlog

from wikigen.models.catalog import CatalogTreeNode, DocumentCatalog

_logger = structlog.get_logger(__name__)


def _sort_key(catalog: DocumentCatalog) -> tuple[int, str, str]:
    return (catalog.order, catalog.name, catalog.catalog_id)


def build_forest(
    catalogs: Iterable[DocumentCatalog],
    logger: structlog.stdlib.BoundLogger | None = None,
) -> list[CatalogTreeNode]:
    """Reconstruct parent/child structure ordered by ``order`` within each parent.

    A node whose parent is not among ``catalogs`` becomes a root. Nodes that can
    never be reached from a root sit on a parent cycle; the lowest-ordered node
    of each such group is promoted to a root and the event is logged.
    """
    log = logger or _logger
    arena: dict[str, DocumentCatalog] = {}
    for catalog in catalogs:
        arena[catalog.catalog_id] = catalog

    children_of: dict[str, list[str]] = {catalog_id: [] for catalog_id in arena}
    root_ids: list[str] = []
    for catalog in arena.values():
        if catalog.parent_id is not None and catalog.parent_id in arena:
            children_of[catalog.parent_id].append(catalog.catalog_id)
        else:
            root_ids.append(catalog.catalog_id)

    for ids in children_of.values():
        ids.sort(key=lambda catalog_id: _sort_key(arena[catalog_id]))
    root_ids.sort(key=lambda catalog_id: _sort_key(arena[catalog_id]))

    visit_order = _breadth_first(root_ids, children_of)
    reached = set(visit_order)

    if len(reached) < len(arena):
        unreached = sorted(
            (catalog_id for catalog_id in arena if catalog_id not in reached),
            key=lambda catalog_id: _sort_key(arena[catalog_id]),
        )
        for catalog_id in unreached:
            if catalog_id in reached:
                continue
            # Break the cycle by detaching this node from its parent.
            parent_id = arena[catalog_id].parent_id
            if parent_id is not None:
                children_of[parent_id].remove(catalog_id)
            log.warning(
                "catalog_cycle_detected",
                catalog_id=catalog_id,
                parent_id=parent_id,
                warehouse_id=arena[catalog_id].warehouse_id,
            )
            root_ids.append(catalog_id)
            newly_reached = _breadth_first([catalog_id], children_of)
            visit_order.extend(newly_reached)
            reached.update(newly_reached)

    # Children always appear after their parent in visit_order, so building in
    # reverse guarantees every child node exists before its parent is built.
    built: dict[str, CatalogTreeNode] = {}
    for catalog_id in reversed(visit_order):
        built[catalog_id] = CatalogTreeNode(
            catalog=arena[catalog_id],
            children=[built[child_id] for child_id in children_of[catalog_id]],
        )
    return [built[catalog_id] for catalog_id in root_ids]


def _breadth_first(start_ids: list[str], children_of: dict[str, list[str]]) -> list[str]:
    order: list[str] = []
    seen: set[str] = set()
    queue = deque(start_ids)
    while queue:
        catalog_id = queue.popleft()
        if catalog_id in seen:
            continue
        seen.add(catalog_id)
        order.append(catalog_id)
        queue.extend(children_of[catalog_id])
    return order


def iter_depth_first(forest: list[CatalogTreeNode]) -> Iterator[tuple[int, CatalogTreeNode]]:
    """Yield ``(depth, node)`` in document order without recursion."""
    stack: list[tuple[int, CatalogTreeNode]] = [(0, node) for node in reversed(forest)]
    while stack:
        depth, node = stack.pop()
        yield depth, node
        stack.extend((depth + 1, child) for child in reversed(node.children))


def render_outline(forest: list[CatalogTreeNode]) -> str:
    """Plain-text outline of a forest, one node per line."""
    lines = []
    for depth, node in iter_depth_first(forest):
        marker = "x" if node.catalog.is_completed else " "
        lines.append(f"{'  ' * depth}- [{marker}] {node.catalog.name} ({node.catalog.url})")
    return "\n".join(lines)
