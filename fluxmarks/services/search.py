from typing import Iterable, List

from fluxmarks.core.model import RenderedNode
from fluxmarks.core.reconciler import flatten_rendered


def search_bookmarks(nodes: Iterable[RenderedNode], query: str) -> List[RenderedNode]:
    """
    タイトルまたはURLに `query` を含むノードを、ツリー順のフラットなリストで返す（大文字小文字を区別しない）。

    空文字列はすべてに一致する。UI側は空入力では検索しない。
    """
    q = (query or "").lower()
    results = []
    for node in flatten_rendered(nodes):
        if q in (node.title or "").lower() or (node.url and q in node.url.lower()):
            results.append(node)
    return results
