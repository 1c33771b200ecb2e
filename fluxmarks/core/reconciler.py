"""Pure merge of the authoritative bookmark tree with the cosmetic overlay.

Nothing in this module performs I/O or keeps state between calls: the same
(snapshot, overlay, show_hidden) input always yields an equal rendered tree.
Overlay entries that reference ids missing from the snapshot are ignored.
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .model import AuthoritativeNode, OverlayState, RenderedNode, ROOT_ID
from .utils import clamp_index


@dataclass(frozen=True)
class NodeContext:
    """Where a rendered node sits: its effective parent and position among siblings."""
    node: RenderedNode
    parent_id: str
    index: int


def index_snapshot(top_level: Iterable[AuthoritativeNode]
                   ) -> Tuple["OrderedDict[str, AuthoritativeNode]", Dict[str, str]]:
    """Flatten the snapshot (pre-order) into id -> node and id -> authoritative parent."""
    nodes: "OrderedDict[str, AuthoritativeNode]" = OrderedDict()
    parents: Dict[str, str] = {}

    def walk(items: Iterable[AuthoritativeNode], inferred_parent: str) -> None:
        for node in items:
            nodes[node.id] = node
            parents[node.id] = node.parent_id or inferred_parent
            if node.children:
                walk(node.children, node.id)

    walk(top_level, ROOT_ID)
    return nodes, parents


def resolve_effective_parents(nodes: Dict[str, AuthoritativeNode], parents: Dict[str, str],
                              overlay: OverlayState) -> Dict[str, str]:
    """Apply ``virtual_parent`` overrides that are still valid against the snapshot.

    An override is dropped when the target no longer exists, is a bookmark, is the
    synthetic root, when the node is a top-level container, or when honoring it
    would make the node its own ancestor.
    """
    effective = dict(parents)
    for node_id in nodes:
        target = overlay.virtual_parent.get(node_id)
        if not target or target == effective[node_id]:
            continue
        if parents[node_id] == ROOT_ID or target == ROOT_ID:
            continue
        target_node = nodes.get(target)
        if target_node is None or not target_node.is_folder:
            continue
        cursor = target
        while cursor and cursor != ROOT_ID and cursor != node_id:
            cursor = effective.get(cursor)
        if cursor == node_id:
            continue
        effective[node_id] = target
    return effective


def _apply_order(child_ids: List[str], stored: Optional[Sequence[str]]) -> List[str]:
    if not stored:
        return child_ids
    position: Dict[str, int] = {}
    for i, cid in enumerate(stored):
        position.setdefault(cid, i)
    tail = len(stored)
    # sorted() is stable: unlisted children keep their authoritative relative order
    return sorted(child_ids, key=lambda cid: position.get(cid, tail))


def _child_map(nodes: Dict[str, AuthoritativeNode], effective: Dict[str, str],
               overlay: OverlayState) -> Dict[str, List[str]]:
    children_of: Dict[str, List[str]] = {}
    for node_id in nodes:
        children_of.setdefault(effective[node_id], []).append(node_id)
    return {pid: _apply_order(ids, overlay.order.get(pid)) for pid, ids in children_of.items()}


def effective_children(top_level: Iterable[AuthoritativeNode],
                       overlay: OverlayState) -> Dict[str, List[str]]:
    """parent id -> ordered child ids as rendered, hidden ones included."""
    nodes, parents = index_snapshot(top_level)
    return _child_map(nodes, resolve_effective_parents(nodes, parents, overlay), overlay)


def build_rendered_tree(top_level: Sequence[AuthoritativeNode], overlay: OverlayState,
                        show_hidden: bool = False) -> Tuple[RenderedNode, ...]:
    """Reconcile the authoritative top-level nodes with ``overlay``.

    The root list is the authoritative top-level order; ``order`` overrides apply
    only below it. A hidden node is skipped together with its subtree unless
    ``show_hidden`` is set, in which case it is kept with ``is_hidden=True``.
    """
    nodes, parents = index_snapshot(top_level)
    effective = resolve_effective_parents(nodes, parents, overlay)
    children_of = _child_map(nodes, effective, overlay)
    hidden = overlay.hidden

    def build(node_id: str) -> RenderedNode:
        node = nodes[node_id]
        children = None
        if node.is_folder:
            built = []
            for cid in children_of.get(node_id, []):
                if cid in hidden and not show_hidden:
                    continue
                built.append(build(cid))
            children = tuple(built)
        title = overlay.titles[node_id] if node_id in overlay.titles else node.title
        return RenderedNode(
            id=node_id,
            title=title,
            url=node.url,
            children=children,
            is_hidden=node_id in hidden,
            date_added=node.date_added,
            parent_id=effective[node_id],
        )

    return tuple(build(node.id) for node in top_level)


def flatten_rendered(nodes: Iterable[RenderedNode]) -> Iterator[RenderedNode]:
    for node in nodes:
        yield node
        if node.children:
            yield from flatten_rendered(node.children)


def find_node_context(roots: Sequence[RenderedNode], node_id: str) -> Optional[NodeContext]:
    def search(siblings: Sequence[RenderedNode], parent_id: str) -> Optional[NodeContext]:
        for i, node in enumerate(siblings):
            if node.id == node_id:
                return NodeContext(node, parent_id, i)
            if node.children:
                found = search(node.children, node.id)
                if found:
                    return found
        return None

    return search(roots, ROOT_ID)


def get_new_order(current_order: Sequence[str], moving_id: str, new_index: Optional[int]) -> List[str]:
    """Remove ``moving_id`` from the list and re-insert it at the clamped index."""
    order = [cid for cid in current_order if cid != moving_id]
    order.insert(clamp_index(new_index, len(order)), moving_id)
    return order
