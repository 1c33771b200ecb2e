import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from fluxmarks.core.bookmark_store import BookmarkEvent, BookmarkTreeStore
from fluxmarks.core.errors import BookmarkError, MutationResult
from fluxmarks.core.model import OpenFlag, RenderedNode
from fluxmarks.core.overlay import FlagStore, OverlayStore, ViewStateStore
from fluxmarks.core.reconciler import build_rendered_tree
from fluxmarks.core.storage import JsonStateStore
from fluxmarks.core.utils import AppConstants

IDLE = "idle"
REFRESHING = "refreshing"

_STOP = object()


@dataclass(frozen=True)
class TreeSnapshot:
    """1回の再構築の結果。UI・検索はこれだけを見る。"""
    roots: Tuple[RenderedNode, ...]
    expanded: FrozenSet[str] = frozenset()
    flags: Dict[str, OpenFlag] = field(default_factory=dict)
    show_hidden: bool = False
    generation: int = 0


class SyncCoordinator:
    """
    ストアの変更通知を受けて再構築し、結果を配信する。

    受信側は `events` キュー（変更イベント）、送信側は `outbox` キュー。
    送信メッセージは `(kind, data)` のタプル:
        ('loading', bool) / ('tree', TreeSnapshot) / ('expanded', frozenset) / ('error', str)

    通知ごとに1回ずつ再構築する（間引きはしない）。再構築は純粋関数なので、
    何度走っても結果は現在のストアの状態だけで決まる。
    """

    WATCHED_KEYS = (AppConstants.STATE_KEY, AppConstants.FLAGS_KEY, AppConstants.DEFAULT_FLAG_KEY)

    def __init__(self, tree_store: BookmarkTreeStore, state_store: JsonStateStore, overlay_store: OverlayStore,
                 view_store: ViewStateStore, flag_store: FlagStore, show_hidden: bool = False,
                 logger: Optional[logging.Logger] = None):
        self.tree_store = tree_store
        self.state_store = state_store
        self.overlay_store = overlay_store
        self.view_store = view_store
        self.flag_store = flag_store
        self.show_hidden = show_hidden
        self.logger = logger or logging.getLogger(__name__)

        self.events: "queue.Queue" = queue.Queue()
        self.outbox: "queue.Queue" = queue.Queue()
        self.state = IDLE
        self.expanded: FrozenSet[str] = frozenset()
        self.generation = 0
        self.passes = 0
        self.last_snapshot: Optional[TreeSnapshot] = None
        self._subscribers: List[Callable[[str, object], None]] = []
        self._pass_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._attached = False

    # ---------- 購読 ----------

    def attach(self) -> None:
        if self._attached:
            return
        self.tree_store.add_listener(self._on_bookmark_event)
        self.state_store.add_listener(self._on_state_changed)
        self._attached = True

    def detach(self) -> None:
        self.tree_store.remove_listener(self._on_bookmark_event)
        self.state_store.remove_listener(self._on_state_changed)
        self._attached = False

    def _on_bookmark_event(self, event: BookmarkEvent) -> None:
        self.events.put(("bookmarks", event.kind, event.id))

    def _on_state_changed(self, key: str, old, new) -> None:
        if key in self.WATCHED_KEYS:
            self.events.put(("state", key, None))

    def subscribe(self, callback: Callable[[str, object], None]) -> None:
        self._subscribers.append(callback)

    def _publish(self, kind: str, data) -> None:
        self.outbox.put((kind, data))
        for callback in list(self._subscribers):
            callback(kind, data)

    # ---------- 再構築 ----------

    def mount(self) -> Optional[TreeSnapshot]:
        """初回表示。購読を開始し、ローディング表示付きで再構築する。"""
        self.attach()
        return self.refresh(silent=False)

    def refresh(self, silent: bool = True) -> Optional[TreeSnapshot]:
        """
        ストアの現在の状態から再構築して配信する。

        Args:
            silent: False の場合は前後に ('loading', True/False) を配信する

        Returns:
            新しいスナップショット。ストアの読み込みに失敗した場合は None
        """
        with self._pass_lock:
            self.state = REFRESHING
            if not silent:
                self._publish("loading", True)
            snapshot = None
            try:
                top_level = self.tree_store.get_tree()
                overlay = self.overlay_store.load()
                expanded = frozenset(self.view_store.load_expanded())
                flags = self.flag_store.get_flags()
            except BookmarkError as e:
                self.logger.error("Failed to fetch bookmarks: %s", e)
                self._publish("error", str(e))
            else:
                roots = build_rendered_tree(top_level, overlay, self.show_hidden)
                self.expanded = expanded
                self.generation += 1
                snapshot = TreeSnapshot(roots, expanded, flags, self.show_hidden, self.generation)
                self.last_snapshot = snapshot
                self._publish("tree", snapshot)
            finally:
                self.passes += 1
                if not silent:
                    self._publish("loading", False)
                self.state = IDLE
        return snapshot

    def process_pending(self) -> int:
        """溜まっている通知を同期的に処理する。戻り値は実行した再構築の回数。"""
        count = 0
        while True:
            try:
                item = self.events.get_nowait()
            except queue.Empty:
                return count
            if item is _STOP:
                continue
            self.refresh(silent=True)
            count += 1

    def _run(self) -> None:
        while True:
            item = self.events.get()
            if item is _STOP:
                break
            self.refresh(silent=True)

    def start(self) -> None:
        """ワーカースレッドで通知処理を開始する。"""
        if self._worker and self._worker.is_alive():
            return
        self.attach()
        self._worker = threading.Thread(target=self._run, name="fluxmarks-sync", daemon=True)
        self._worker.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._worker is None:
            return
        self.events.put(_STOP)
        self._worker.join(timeout)
        self._worker = None

    # ---------- UI向け操作 ----------

    def toggle_node(self, node_id: str, expanded: bool) -> FrozenSet[str]:
        ids = set(self.expanded)
        if expanded:
            ids.add(node_id)
        else:
            ids.discard(node_id)
        self.expanded = frozenset(ids)
        try:
            self.view_store.save_expanded(ids)
        except BookmarkError as e:
            self.logger.warning("Failed to save expanded state: %s", e)
            self._publish("error", str(e))
        self._publish("expanded", self.expanded)
        return self.expanded

    def set_show_hidden(self, show_hidden: bool) -> Optional[TreeSnapshot]:
        self.show_hidden = bool(show_hidden)
        return self.refresh(silent=True)

    def handle_result(self, result: MutationResult) -> MutationResult:
        """失敗した操作の後はローディング表示付きで再構築し、表示を正本に合わせ直す。"""
        if not result.ok:
            self.logger.warning("Mutation failed (%s): %s; resynchronizing", result.error, result.message)
            self.refresh(silent=False)
        return result
