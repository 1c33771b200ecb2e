import logging
from typing import Iterable, List, Optional

from fluxmarks.core.model import OpenFlag
from fluxmarks.core.overlay import FlagStore
from fluxmarks.services.tabs import Tab, TabController


class OpenPolicyResolver:
    """ブックマークの開き方を決めて実行する。

    優先順位: ブックマークごとのフラグ → 既定フラグ → NEW_BACKGROUND
    """

    def __init__(self, flag_store: FlagStore, tabs: TabController, logger: Optional[logging.Logger] = None):
        self.flag_store = flag_store
        self.tabs = tabs
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, bookmark_id: str) -> OpenFlag:
        local = self.flag_store.get_flag(bookmark_id)
        if local is not OpenFlag.UNSET:
            return local
        default = self.flag_store.get_default()
        if default is not OpenFlag.UNSET:
            return default
        return OpenFlag.NEW_BACKGROUND

    def execute(self, flag: OpenFlag, url: str, window_id: Optional[int] = None) -> Tab:
        if flag is OpenFlag.NEW_FOREGROUND:
            return self.tabs.create_tab(url, active=True)
        if flag is OpenFlag.RELOAD_CURRENT:
            tab = self.tabs.query_active_tab(window_id)
            if tab is not None:
                self.tabs.update_tab(tab.id, url)
                tab.url = url
                return tab
            self.logger.debug("No active tab, opening %s in a new foreground tab", url)
            return self.tabs.create_tab(url, active=True)
        return self.tabs.create_tab(url, active=False)

    def open_bookmark(self, node, force_background: bool = False) -> Optional[Tab]:
        """
        ブックマークを開く。フォルダ（URLなし）は何もしない。

        Args:
            node: `id` と `url` を持つノード
            force_background: 修飾キー／コンテキストメニューからの起動。フラグを無視して裏で開く
        """
        if not node.url:
            return None
        if force_background:
            return self.tabs.create_tab(node.url, active=False)
        return self.execute(self.resolve(node.id), node.url)

    def open_folder(self, folder, recursive: bool = False) -> List[Tab]:
        """フォルダ内のブックマークを順番に裏で開く。途中で失敗した場合もそれまでの結果はそのまま。"""
        opened = []
        for url in _folder_urls(folder.children or (), recursive):
            opened.append(self.tabs.create_tab(url, active=False))
        self.logger.info("Opened %d bookmarks from folder %s", len(opened), folder.id)
        return opened


def _folder_urls(children: Iterable, recursive: bool) -> List[str]:
    urls = []
    for child in children:
        if child.url:
            urls.append(child.url)
        elif recursive and child.children:
            urls.extend(_folder_urls(child.children, recursive))
    return urls
