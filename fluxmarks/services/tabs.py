import logging
import threading
import webbrowser
from dataclasses import dataclass, replace
from typing import List, Optional

from fluxmarks.core.errors import NotFoundError, StoreUnavailableError

"""
タブ操作モジュール。
- `TabController` : タブ操作のインターフェース
- `WebBrowserTabController` : 標準の `webbrowser` でURLを開く実装
"""

DEFAULT_WINDOW_ID = 1


@dataclass
class Tab:
    id: int
    url: str
    title: str = ""
    active: bool = False
    window_id: int = DEFAULT_WINDOW_ID


class TabController:
    """タブ操作のインターフェース。window_id が None の場合は現在のウィンドウ。"""

    def create_tab(self, url: str, active: bool) -> Tab:
        raise NotImplementedError

    def query_active_tab(self, window_id: Optional[int] = None) -> Optional[Tab]:
        raise NotImplementedError

    def update_tab(self, tab_id: int, url: str) -> None:
        raise NotImplementedError

    def query_all_tabs(self, window_id: Optional[int] = None) -> List[Tab]:
        raise NotImplementedError


class WebBrowserTabController(TabController):
    """
    システムのブラウザでURLを開く。ブラウザのタブ一覧は取得できないため、
    このプロセスが開いたタブだけを記録して返す。

    Args:
        browser: `webbrowser.get()` に渡すブラウザ名（None で既定のブラウザ）
    """

    def __init__(self, browser: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._browser_name = browser
        self._tabs: List[Tab] = []
        self._next_id = 1
        self._lock = threading.Lock()

    def _open(self, url: str, new: int, autoraise: bool) -> None:
        try:
            browser = webbrowser.get(self._browser_name) if self._browser_name else webbrowser.get()
            opened = browser.open(url, new=new, autoraise=autoraise)
        except webbrowser.Error as e:
            raise StoreUnavailableError(f"No browser available: {e}") from e
        if not opened:
            raise StoreUnavailableError(f"Browser refused to open {url}")

    def create_tab(self, url: str, active: bool) -> Tab:
        self._open(url, new=2, autoraise=active)
        with self._lock:
            if active:
                for tab in self._tabs:
                    tab.active = False
            tab = Tab(self._next_id, url, active=active)
            self._next_id += 1
            self._tabs.append(tab)
        self.logger.debug("Opened tab %s (active=%s): %s", tab.id, active, url)
        return replace(tab)

    def query_active_tab(self, window_id: Optional[int] = None) -> Optional[Tab]:
        window_id = window_id or DEFAULT_WINDOW_ID
        with self._lock:
            for tab in reversed(self._tabs):
                if tab.active and tab.window_id == window_id:
                    return replace(tab)
        return None

    def update_tab(self, tab_id: int, url: str) -> None:
        with self._lock:
            tab = next((t for t in self._tabs if t.id == tab_id), None)
        if tab is None:
            raise NotFoundError(f"No tab with id {tab_id}.")
        self._open(url, new=0, autoraise=True)
        with self._lock:
            tab.url = url

    def query_all_tabs(self, window_id: Optional[int] = None) -> List[Tab]:
        window_id = window_id or DEFAULT_WINDOW_ID
        with self._lock:
            return [replace(t) for t in self._tabs if t.window_id == window_id]
