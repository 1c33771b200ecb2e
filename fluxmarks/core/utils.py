import re
import datetime
from typing import Optional
from urllib.parse import urlparse

"""
ユーティリティモジュール。
- `AppConstants` : アプリ全体の定数
- `clamp_index` : 挿入位置の正規化
- `session_folder_title` : セッション保存フォルダ名
- `is_valid_url` : ブックマークとして保存できるURLかの判定
"""

_HOSTNAME = re.compile(r'^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$')
_SCHEMES = ('http', 'https', 'ftp', 'file')


# アプリケーション定数
class AppConstants:
    """アプリケーション全体で使用する定数"""

    # 永続化キー
    STATE_KEY = "virtual_bookmark_state"
    EXPANDED_KEY = "expanded_nodes"
    FLAGS_KEY = "bookmark_flags"
    DEFAULT_FLAG_KEY = "default_open_flag"
    SAFETY_MODE_KEY = "safety_mode"

    # 既定ファイル
    DEFAULT_BOOKMARKS_FILE = "bookmarks.html"
    DEFAULT_STATE_FILE = "fluxmarks_state.json"
    DEFAULT_LOG_FILE = "fluxmarks.log"

    # セッション保存
    SESSION_TITLE_FORMAT = "Session %Y-%m-%d %H:%M"

    # ログ
    LOG_MAX_BYTES = 1024 * 1024 * 5
    LOG_BACKUP_COUNT = 3

    # UI
    QUEUE_POLL_MS = 100
    SEARCH_DELAY_MS = 200
    STATE_POLL_MS = 2000
    HOVER_EXPAND_MS = 800


def clamp_index(index: Optional[int], length: int) -> int:
    """None は末尾、範囲外は [0, length] に丸める。"""
    if index is None or index > length:
        return length
    if index < 0:
        return 0
    return index


def session_folder_title(now: Optional[datetime.datetime] = None,
                         fmt: str = AppConstants.SESSION_TITLE_FORMAT) -> str:
    return (now or datetime.datetime.now()).strftime(fmt)


def is_valid_url(url: str) -> bool:
    """スキームとホスト名を確認する。file: はホストなしを許す。"""
    if not url:
        return False
    try:
        result = urlparse(url.strip())
    except ValueError:
        return False
    scheme = result.scheme.lower()
    if scheme not in _SCHEMES:
        return False
    if scheme == 'file':
        return bool(result.path)
    if not result.netloc:
        return False
    return scheme == 'ftp' or bool(_HOSTNAME.match(result.hostname or ''))
