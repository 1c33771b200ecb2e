import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Optional

from fluxmarks.core.bookmark_store import BookmarkTreeStore, HtmlBookmarkStore
from fluxmarks.core.overlay import FlagStore, OverlayStore, ViewStateStore
from fluxmarks.core.storage import ConfigManager, JsonStateStore
from fluxmarks.core.utils import AppConstants
from fluxmarks.services.mutations import MutationEngine
from fluxmarks.services.opener import OpenPolicyResolver
from fluxmarks.services.sync import SyncCoordinator
from fluxmarks.services.tabs import TabController, WebBrowserTabController

"""
アプリケーションの組み立て。
- `setup_logging` : ファイル（ローテーション）とコンソールへのログ出力
- `build_services` : 設定 → ストア → エンジン／リゾルバ／コーディネータを配線する
"""


def setup_logging(log_file: str = AppConstants.DEFAULT_LOG_FILE, level: str = "INFO") -> logging.Logger:
    """パッケージのロガーにハンドラを設定する。"""
    logger = logging.getLogger("fluxmarks")
    logger.setLevel(getattr(logging, level, logging.INFO))
    log_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = RotatingFileHandler(log_file, maxBytes=AppConstants.LOG_MAX_BYTES,
                                       backupCount=AppConstants.LOG_BACKUP_COUNT, encoding='utf-8')
    file_handler.setFormatter(log_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    console_handler.setLevel(logging.WARNING)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger


@dataclass
class Services:
    config: ConfigManager
    tree_store: BookmarkTreeStore
    state_store: JsonStateStore
    overlay_store: OverlayStore
    view_store: ViewStateStore
    flag_store: FlagStore
    tabs: TabController
    engine: MutationEngine
    resolver: OpenPolicyResolver
    coordinator: SyncCoordinator


def build_services(config: Optional[ConfigManager] = None, tree_store: Optional[BookmarkTreeStore] = None,
                   state_store: Optional[JsonStateStore] = None,
                   tabs: Optional[TabController] = None) -> Services:
    """
    各コンポーネントを生成して配線する。

    Args:
        config: 設定。None の場合はカレントディレクトリの config.ini
        tree_store: 正本ストア。None の場合は設定のHTMLファイル
        state_store: 永続化ストア。None の場合は設定のJSONファイル
        tabs: タブ操作。None の場合はシステムのブラウザ
    """
    config = config or ConfigManager()
    tree_store = tree_store if tree_store is not None else HtmlBookmarkStore(config.get_bookmarks_path())
    state_store = state_store if state_store is not None else JsonStateStore(config.get_state_path())
    tabs = tabs or WebBrowserTabController()

    overlay_store = OverlayStore(state_store)
    view_store = ViewStateStore(state_store)
    flag_store = FlagStore(state_store, fallback_default=config.get_default_flag())
    session = config.get_session_settings()

    engine = MutationEngine(tree_store, overlay_store, flag_store, tabs,
                            session_parent_id=session["parent_id"],
                            session_title_format=session["title_format"])
    resolver = OpenPolicyResolver(flag_store, tabs)
    coordinator = SyncCoordinator(tree_store, state_store, overlay_store, view_store, flag_store)
    return Services(config, tree_store, state_store, overlay_store, view_store, flag_store,
                    tabs, engine, resolver, coordinator)
