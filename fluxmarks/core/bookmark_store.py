import os
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .errors import InvalidOperationError, NotFoundError, StoreUnavailableError
from .model import (
    AuthoritativeNode,
    BOOKMARKS_BAR_ID,
    CONTAINER_TITLES,
    NetscapeBookmarkParser,
    OTHER_BOOKMARKS_ID,
    ROOT_ID,
    export_netscape_html,
)
from .utils import clamp_index

"""
正本（authoritative）ブックマークツリーのストア。
- `BookmarkTreeStore` : メモリ上のツリー＋変更通知
- `HtmlBookmarkStore` : Netscape形式HTMLファイルに保存するストア
"""

logger = logging.getLogger(__name__)

CREATED = "created"
REMOVED = "removed"
MOVED = "moved"
CHANGED = "changed"


@dataclass(frozen=True)
class BookmarkEvent:
    """ストアの変更通知"""
    kind: str
    id: str
    node: Optional[AuthoritativeNode] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class BookmarkTreeStore:
    """
    メモリ上の正本ツリー。ルート直下はトップレベルコンテナ（固定）。

    スナップショットは常に複製を返すため、呼び出し側が変更してもストアには影響しない。
    """

    def __init__(self, top_level: Optional[Iterable[AuthoritativeNode]] = None):
        self._lock = threading.RLock()
        self._listeners: List[Callable[[BookmarkEvent], None]] = []
        self._root = AuthoritativeNode(ROOT_ID, "")
        self._index: Dict[str, AuthoritativeNode] = {ROOT_ID: self._root}
        self._next_id = 1
        self._install(top_level)

    def _install(self, top_level: Optional[Iterable[AuthoritativeNode]]) -> None:
        self._root.children = []
        self._index = {ROOT_ID: self._root}
        nodes = list(top_level) if top_level is not None else [
            AuthoritativeNode(cid, title) for cid, title in CONTAINER_TITLES.items()
        ]
        self._next_id = max([int(i) for i in self._collect_ids(nodes) if i.isdigit()] + [len(CONTAINER_TITLES)]) + 1
        for node in nodes:
            self._adopt(node, self._root)

    @staticmethod
    def _collect_ids(nodes: Iterable[AuthoritativeNode]) -> List[str]:
        ids = []
        stack = list(nodes)
        while stack:
            node = stack.pop()
            if node.id:
                ids.append(str(node.id))
            stack.extend(node.children or [])
        return ids

    def _new_id(self) -> str:
        while str(self._next_id) in self._index:
            self._next_id += 1
        new_id = str(self._next_id)
        self._next_id += 1
        return new_id

    def _adopt(self, node: AuthoritativeNode, parent: AuthoritativeNode) -> None:
        """ノードを登録する。IDが無い・重複している場合は採番し直す。"""
        if not node.id or str(node.id) in self._index:
            node.id = self._new_id()
        node.id = str(node.id)
        children = node.children
        if node.is_folder:
            node.children = []
        parent.append(node)
        self._index[node.id] = node
        for child in children or []:
            self._adopt(child, node)

    @classmethod
    def from_records(cls, records: List[dict]) -> "BookmarkTreeStore":
        """`{"id", "title", "url", "children"}` 形式の辞書リストから構築する。"""

        def build(record: dict) -> AuthoritativeNode:
            node = AuthoritativeNode(record.get("id"), record.get("title", ""), record.get("url"),
                                     date_added=record.get("date_added", 0))
            if node.is_folder:
                node.children = [build(ch) for ch in record.get("children", [])]
            return node

        return cls([build(r) for r in records])

    # ---------- 通知 ----------

    def add_listener(self, callback: Callable[[BookmarkEvent], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[BookmarkEvent], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: BookmarkEvent) -> None:
        for callback in list(self._listeners):
            callback(event)

    # ---------- 読み取り ----------

    def _require(self, node_id: str) -> AuthoritativeNode:
        node = self._index.get(node_id)
        if node is None:
            raise NotFoundError(f"Can't find bookmark for id {node_id}.")
        return node

    def get_tree(self) -> List[AuthoritativeNode]:
        """トップレベルコンテナのスナップショット（複製）"""
        with self._lock:
            return [ch.copy() for ch in self._root.children]

    def get_node(self, node_id: str) -> AuthoritativeNode:
        with self._lock:
            return self._require(node_id).copy()

    def get_children(self, parent_id: str) -> List[AuthoritativeNode]:
        with self._lock:
            parent = self._require(parent_id)
            return [ch.copy() for ch in parent.children or []]

    def __contains__(self, node_id) -> bool:
        return node_id in self._index

    # ---------- 変更 ----------

    def _require_folder(self, parent_id: str) -> AuthoritativeNode:
        if parent_id == ROOT_ID:
            raise InvalidOperationError("Can't modify the root bookmark folders.")
        parent = self._require(parent_id)
        if not parent.is_folder:
            raise InvalidOperationError(f"Parent {parent_id} is not a folder.")
        return parent

    def _require_movable(self, node_id: str) -> AuthoritativeNode:
        node = self._require(node_id)
        if node_id == ROOT_ID or node.parent_id == ROOT_ID:
            raise InvalidOperationError("Can't modify the root bookmark folders.")
        return node

    def _persist(self) -> None:
        """変更後の保存フック。メモリ版では何もしない。"""

    def _commit(self, backup: List[AuthoritativeNode], next_id: int) -> None:
        try:
            self._persist()
        except StoreUnavailableError:
            self._install(backup)
            self._next_id = next_id
            raise

    def create(self, parent_id: str, title: str, url: Optional[str] = None,
               index: Optional[int] = None) -> AuthoritativeNode:
        with self._lock:
            parent = self._require_folder(parent_id)
            backup, next_id = self.get_tree(), self._next_id
            node = AuthoritativeNode(self._new_id(), title or "", url, parent.id, _now_ms())
            parent.children.insert(clamp_index(index, len(parent.children)), node)
            self._index[node.id] = node
            self._commit(backup, next_id)
            created = node.copy()
        logger.debug("Created %s under %s", created.id, parent_id)
        self._emit(BookmarkEvent(CREATED, created.id, created))
        return created

    def move(self, node_id: str, parent_id: str, index: Optional[int] = None) -> AuthoritativeNode:
        """
        ノードを移動する。同じ親の中で後ろへ移動する場合、`index` は移動前の並びでの位置。

        Raises:
            NotFoundError: ID が存在しない
            InvalidOperationError: ルートコンテナの移動、自身の子孫への移動
        """
        with self._lock:
            node = self._require_movable(node_id)
            parent = self._require_folder(parent_id)
            cursor = parent
            while cursor is not None:
                if cursor.id == node_id:
                    raise InvalidOperationError("Cannot move a folder into its own descendant.")
                cursor = self._index.get(cursor.parent_id) if cursor.parent_id else None
            backup, next_id = self.get_tree(), self._next_id
            old_parent = self._index[node.parent_id]
            old_index = old_parent.children.index(node)
            old_parent.children.pop(old_index)
            if index is not None and old_parent is parent and old_index < index:
                index -= 1
            parent.children.insert(clamp_index(index, len(parent.children)), node)
            node.parent_id = parent.id
            self._commit(backup, next_id)
            moved = node.copy()
        logger.debug("Moved %s to %s", node_id, parent_id)
        self._emit(BookmarkEvent(MOVED, node_id, moved))
        return moved

    def update(self, node_id: str, title: Optional[str] = None, url: Optional[str] = None) -> AuthoritativeNode:
        with self._lock:
            node = self._require_movable(node_id)
            if url is not None and node.is_folder:
                raise InvalidOperationError("Can't set a URL on a folder.")
            backup, next_id = self.get_tree(), self._next_id
            if title is not None:
                node.title = title
            if url is not None:
                node.url = url
            self._commit(backup, next_id)
            changed = node.copy()
        self._emit(BookmarkEvent(CHANGED, node_id, changed))
        return changed

    def _detach(self, node: AuthoritativeNode) -> None:
        self._index[node.parent_id].children.remove(node)
        stack = [node]
        while stack:
            current = stack.pop()
            self._index.pop(current.id, None)
            stack.extend(current.children or [])

    def remove(self, node_id: str) -> None:
        with self._lock:
            node = self._require_movable(node_id)
            if node.is_folder and node.children:
                raise InvalidOperationError("Can't remove non-empty folder.")
            backup, next_id = self.get_tree(), self._next_id
            self._detach(node)
            self._commit(backup, next_id)
        self._emit(BookmarkEvent(REMOVED, node_id))

    def remove_subtree(self, node_id: str) -> None:
        with self._lock:
            node = self._require_movable(node_id)
            backup, next_id = self.get_tree(), self._next_id
            self._detach(node)
            self._commit(backup, next_id)
        logger.debug("Removed subtree %s", node_id)
        self._emit(BookmarkEvent(REMOVED, node_id))


class HtmlBookmarkStore(BookmarkTreeStore):
    """
    Netscape形式HTMLファイルを正本とするストア。変更のたびにファイル全体を書き直す。

    ツールバー見出し（PERSONAL_TOOLBAR_FOLDER）は Bookmarks bar、それ以外のトップレベル項目は
    Other bookmarks に入る。ID属性で採番済みIDを保持するので、セッションをまたいでIDが変わらない。
    """

    def __init__(self, path: str):
        self.path = path
        super().__init__(self._load(path) if os.path.exists(path) else None)

    @staticmethod
    def _load(path: str) -> List[AuthoritativeNode]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = f.read()
        except OSError as e:
            raise StoreUnavailableError(f"Failed to read {path}: {e}") from e
        parser = NetscapeBookmarkParser()
        parser.feed(data)
        parser.close()

        bar = parser.toolbar_folder or AuthoritativeNode(BOOKMARKS_BAR_ID, CONTAINER_TITLES[BOOKMARKS_BAR_ID])
        other = parser.other_folder or AuthoritativeNode(OTHER_BOOKMARKS_ID, CONTAINER_TITLES[OTHER_BOOKMARKS_ID])
        bar.id, other.id = BOOKMARKS_BAR_ID, OTHER_BOOKMARKS_ID
        loose = [ch for ch in parser.root.children if ch is not bar and ch is not other]
        other.children = list(other.children) + loose
        logger.info("Loaded bookmarks from %s (%d loose top-level items)", path, len(loose))
        return [bar, other]

    def _persist(self) -> None:
        html_text = export_netscape_html(self._root.children)
        tmp_path = self.path + ".tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(html_text)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to write {self.path}: {e}") from e
