import datetime
import logging
import threading
from typing import Callable, Iterable, List, Optional, Set

from fluxmarks.core.bookmark_store import BookmarkTreeStore
from fluxmarks.core.errors import (
    BookmarkError,
    InvalidOperationError,
    MutationResult,
    NotFoundError,
    StoreUnavailableError,
)
from fluxmarks.core.model import AuthoritativeNode, OTHER_BOOKMARKS_ID, OpenFlag, OverlayState, ROOT_ID
from fluxmarks.core.overlay import FlagStore, OverlayStore
from fluxmarks.core.reconciler import (
    build_rendered_tree,
    effective_children,
    find_node_context,
    get_new_order,
    index_snapshot,
    resolve_effective_parents,
)
from fluxmarks.core.utils import AppConstants, clamp_index, session_folder_title
from fluxmarks.services.tabs import TabController


class MutationEngine:
    """
    ユーザー操作（移動・並べ替え・名前変更・非表示・作成・削除）を正本ストアとオーバーレイに反映する。

    両方に書き込む操作は必ず「正本 → オーバーレイ」の順。途中で中断しても、オーバーレイは
    正本がすでに到達した状態を参照するだけで、正本ツリーを壊すことはない。
    各操作は例外を送出せず `MutationResult` を返す。
    """

    def __init__(self, tree_store: BookmarkTreeStore, overlay_store: OverlayStore, flag_store: FlagStore,
                 tabs: Optional[TabController] = None, session_parent_id: str = OTHER_BOOKMARKS_ID,
                 session_title_format: str = AppConstants.SESSION_TITLE_FORMAT,
                 logger: Optional[logging.Logger] = None):
        self.tree_store = tree_store
        self.overlay_store = overlay_store
        self.flag_store = flag_store
        self.tabs = tabs
        self.session_parent_id = session_parent_id
        self.session_title_format = session_title_format
        self.logger = logger or logging.getLogger(__name__)
        # オーバーレイの読み込み〜保存を操作単位で直列化する
        self._lock = threading.RLock()

    def _guard(self, action: str, node_id: Optional[str], fn: Callable[[], MutationResult]) -> MutationResult:
        try:
            with self._lock:
                result = fn()
        except BookmarkError as e:
            self.logger.warning("%s %s failed (%s): %s", action, node_id, e.kind, e)
            return MutationResult.failure(e, node_id)
        if result.ok:
            self.logger.info("%s %s ok%s", action, node_id, f": {result.message}" if result.message else "")
        return result

    def _update_overlay(self, mutate: Callable[[OverlayState], None]) -> None:
        """オーバーレイ全体を読み込み、変更して、丸ごと保存する。"""
        state = self.overlay_store.load()
        mutate(state)
        self.overlay_store.save(state)

    def _require_node(self, node_id: str) -> AuthoritativeNode:
        return self.tree_store.get_node(node_id)

    # ---------- 移動 ----------

    def move(self, node_id: str, target_parent_id: str, index: Optional[int] = None) -> MutationResult:
        """
        ノードを `target_parent_id` の下へ移動する。

        Args:
            node_id: 移動するノード
            target_parent_id: 移動先フォルダ
            index: 移動先の子リストでの位置（同じ親の中で動かす場合は移動前の並びでの位置）。None で末尾
        """
        return self._guard("move", node_id, lambda: self._move(node_id, target_parent_id, index))

    def _move(self, node_id: str, target_parent_id: str, index: Optional[int]) -> MutationResult:
        top_level = self.tree_store.get_tree()
        overlay = self.overlay_store.load()
        nodes, parents = index_snapshot(top_level)
        if node_id not in nodes:
            raise NotFoundError(f"Can't find bookmark for id {node_id}.")
        if resolve_effective_parents(nodes, parents, overlay)[node_id] == ROOT_ID:
            raise InvalidOperationError("Top-level bookmark folders can't be moved.")
        if target_parent_id == ROOT_ID:
            raise InvalidOperationError("Can't move a bookmark to the root.")
        target = nodes.get(target_parent_id)
        if target is None:
            raise NotFoundError(f"Can't find bookmark for id {target_parent_id}.")
        if not target.is_folder:
            raise InvalidOperationError(f"Target {target_parent_id} is not a folder.")

        if index is not None:
            siblings = effective_children(top_level, overlay).get(target_parent_id, [])
            # 取り除いた後の位置に換算する
            if node_id in siblings and siblings.index(node_id) < index:
                index -= 1

        self.tree_store.move(node_id, target_parent_id)

        def apply(state: OverlayState) -> None:
            state.virtual_parent.pop(node_id, None)
            for pid in list(state.order):
                state.order[pid] = [cid for cid in state.order[pid] if cid != node_id]
                if not state.order[pid]:
                    del state.order[pid]
            current = effective_children(self.tree_store.get_tree(), state).get(target_parent_id, [])
            state.order[target_parent_id] = get_new_order(current, node_id, index)

        self._update_overlay(apply)
        return MutationResult.success(node_id, f"-> {target_parent_id}[{'end' if index is None else index}]")

    def drop(self, active_id: str, over_id: str, expanded: Iterable[str] = ()) -> MutationResult:
        """
        ドラッグ＆ドロップの確定。

        - 閉じているフォルダの上に落とした場合は、そのフォルダの末尾へ入れる
        - 同じ親の中で後ろへ動かす場合は `target_index + 1` を渡す（取り除いた分だけ後ろの位置が詰まるため）
        """
        if active_id == over_id:
            return MutationResult.success(active_id)
        with self._lock:
            return self._drop(active_id, over_id, set(expanded))

    def _drop(self, active_id: str, over_id: str, expanded: Set[str]) -> MutationResult:
        try:
            roots = build_rendered_tree(self.tree_store.get_tree(), self.overlay_store.load(), show_hidden=True)
        except BookmarkError as e:
            self.logger.warning("drop %s failed (%s): %s", active_id, e.kind, e)
            return MutationResult.failure(e, active_id)
        active = find_node_context(roots, active_id)
        over = find_node_context(roots, over_id)
        if active is None or over is None:
            missing = active_id if active is None else over_id
            return MutationResult.failure(NotFoundError(f"Can't find bookmark for id {missing}."), active_id)

        if over.node.is_folder and over_id not in expanded:
            return self.move(active_id, over_id)
        if active.parent_id == over.parent_id and active.index < over.index:
            index = over.index + 1
        else:
            index = over.index
        return self.move(active_id, over.parent_id, index)

    # ---------- 見た目だけの変更 ----------

    def rename(self, node_id: str, new_title: Optional[str]) -> MutationResult:
        """表示名だけを変える（正本は変更しない）。None で上書きを解除。"""

        def run() -> MutationResult:
            self._require_node(node_id)

            def apply(state: OverlayState) -> None:
                if new_title is None:
                    state.titles.pop(node_id, None)
                else:
                    state.titles[node_id] = new_title

            self._update_overlay(apply)
            return MutationResult.success(node_id)

        return self._guard("rename", node_id, run)

    def hide(self, node_id: str) -> MutationResult:
        def run() -> MutationResult:
            node = self._require_node(node_id)
            if node.parent_id == ROOT_ID:
                raise InvalidOperationError("Top-level bookmark folders can't be hidden.")
            self._update_overlay(lambda state: state.hidden.add(node_id))
            return MutationResult.success(node_id)

        return self._guard("hide", node_id, run)

    def restore(self, node_id: str) -> MutationResult:
        def run() -> MutationResult:
            self._require_node(node_id)
            self._update_overlay(lambda state: state.hidden.discard(node_id))
            return MutationResult.success(node_id)

        return self._guard("restore", node_id, run)

    def reset_overlay(self) -> MutationResult:
        def run() -> MutationResult:
            self.overlay_store.reset()
            return MutationResult.success()

        return self._guard("reset", None, run)

    # ---------- 作成・削除 ----------

    def _create(self, parent_id: str, title: str, url: Optional[str], index: Optional[int]) -> MutationResult:
        created = self.tree_store.create(parent_id, title, url, index)

        def apply(state: OverlayState) -> None:
            if parent_id in state.order:
                current = [cid for cid in state.order[parent_id] if cid != created.id]
                current.insert(clamp_index(index, len(current)), created.id)
                state.order[parent_id] = current

        self._update_overlay(apply)
        return MutationResult.success(created.id)

    def create_folder(self, parent_id: str, title: str, index: Optional[int] = None) -> MutationResult:
        return self._guard("create_folder", parent_id, lambda: self._create(parent_id, title, None, index))

    def create_bookmark(self, parent_id: str, title: str, url: str, index: Optional[int] = None) -> MutationResult:
        def run() -> MutationResult:
            if not url:
                raise InvalidOperationError("A bookmark needs a URL.")
            return self._create(parent_id, title or url, url, index)

        return self._guard("create_bookmark", parent_id, run)

    def delete(self, node_id: str) -> MutationResult:
        """正本からサブツリーごと削除し、オーバーレイ内の参照も掃除する。"""

        def run() -> MutationResult:
            node = self._require_node(node_id)
            removed = _subtree_ids(node)
            if node.is_folder:
                self.tree_store.remove_subtree(node_id)
            else:
                self.tree_store.remove(node_id)

            def apply(state: OverlayState) -> None:
                state.order = {pid: [cid for cid in ids if cid not in removed]
                               for pid, ids in state.order.items() if pid not in removed}
                state.hidden -= removed
                state.titles = {k: v for k, v in state.titles.items() if k not in removed}
                state.virtual_parent = {k: v for k, v in state.virtual_parent.items()
                                        if k not in removed and v not in removed}

            self._update_overlay(apply)
            return MutationResult.success(node_id, f"{len(removed)} removed")

        return self._guard("delete", node_id, run)

    # ---------- 開き方フラグ ----------

    def set_flag(self, bookmark_id: str, flag: OpenFlag) -> MutationResult:
        def run() -> MutationResult:
            self._require_node(bookmark_id)
            self.flag_store.set_flag(bookmark_id, flag)
            return MutationResult.success(bookmark_id, flag.value)

        return self._guard("set_flag", bookmark_id, run)

    def bulk_set_flag(self, folder_id: str, flag: OpenFlag, recursive: bool = False) -> MutationResult:
        """正本のサブツリーからブックマークを集め、1回の保存でフラグを書き込む。"""

        def run() -> MutationResult:
            folder = self._require_node(folder_id)
            if not folder.is_folder:
                raise InvalidOperationError(f"{folder_id} is not a folder.")
            count = self.flag_store.set_flags(_leaf_ids(folder, recursive), flag)
            return MutationResult.success(folder_id, f"{count} bookmarks set to {flag.value}")

        return self._guard("bulk_set_flag", folder_id, run)

    def set_default_flag(self, flag: OpenFlag) -> MutationResult:
        def run() -> MutationResult:
            self.flag_store.set_default(flag)
            return MutationResult.success(None, flag.value)

        return self._guard("set_default_flag", None, run)

    # ---------- セッション保存 ----------

    def save_session(self, window_id: Optional[int] = None,
                     now: Optional[datetime.datetime] = None) -> MutationResult:
        """現在のウィンドウのタブをすべて、日時付きフォルダへブックマークする。途中で失敗しても巻き戻さない。"""

        def run() -> MutationResult:
            if self.tabs is None:
                raise StoreUnavailableError("No tab controller configured.")
            tabs = self.tabs.query_all_tabs(window_id)
            title = session_folder_title(now, self.session_title_format)
            folder = self.tree_store.create(self.session_parent_id, title)
            saved = 0
            try:
                for tab in tabs:
                    self.tree_store.create(folder.id, tab.title or tab.url, tab.url)
                    saved += 1
            except BookmarkError as e:
                self.logger.warning("Session save stopped after %d of %d tabs: %s", saved, len(tabs), e)
                return MutationResult(False, e.kind, f"{saved} of {len(tabs)} tabs saved: {e}", folder.id)
            return MutationResult.success(folder.id, f"{title} ({saved} tabs)")

        return self._guard("save_session", self.session_parent_id, run)


def _subtree_ids(node: AuthoritativeNode) -> Set[str]:
    ids = set()
    stack = [node]
    while stack:
        current = stack.pop()
        ids.add(current.id)
        stack.extend(current.children or [])
    return ids


def _leaf_ids(folder: AuthoritativeNode, recursive: bool) -> List[str]:
    ids = []
    for child in folder.children or []:
        if not child.is_folder:
            ids.append(child.id)
        elif recursive:
            ids.extend(_leaf_ids(child, recursive))
    return ids
