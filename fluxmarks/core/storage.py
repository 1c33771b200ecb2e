import os
import copy
import configparser
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .errors import StoreUnavailableError
from .model import OTHER_BOOKMARKS_ID, OpenFlag
from .utils import AppConstants

"""
ストレージ／設定モジュール。
- `ConfigManager` : `config.ini` を管理するクラス
- `JsonStateStore` : キー／値の永続化ストア（JSONファイル1つ）
"""

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigManager:
    """設定ファイル(config.ini)の管理を専門に行うクラス。"""

    def __init__(self, config_path='config.ini'):
        self.config_path = config_path
        self.config = configparser.ConfigParser()
        self.load_config()

    def load_config(self):
        """設定ファイルを読み込む"""
        if os.path.exists(self.config_path):
            self.config.read(self.config_path, encoding='utf-8')

    def _get_path(self, env_name: str, option: str, default: str) -> str:
        """
        ファイルパスを取得する（環境変数を優先）。

        優先順位:
        1. 環境変数
        2. config.ini の [Storage] セクション
        3. 既定値
        """
        value = os.environ.get(env_name)
        if value and value.strip():
            return value.strip()
        value = self.config.get("Storage", option, fallback="").strip()
        return value or default

    def get_bookmarks_path(self) -> str:
        return self._get_path("FLUXMARKS_BOOKMARKS", "bookmarks_file", AppConstants.DEFAULT_BOOKMARKS_FILE)

    def get_state_path(self) -> str:
        return self._get_path("FLUXMARKS_STATE", "state_file", AppConstants.DEFAULT_STATE_FILE)

    def get_default_flag(self) -> OpenFlag:
        """既定の開き方。未設定・不正値は NEW_BACKGROUND。"""
        flag = OpenFlag.parse(self.config.get("Open", "default_flag", fallback="NB"))
        return OpenFlag.NEW_BACKGROUND if flag is OpenFlag.UNSET else flag

    def get_session_settings(self) -> Dict[str, str]:
        """セッション保存先フォルダとフォルダ名の書式"""
        parent_id = self.config.get("Session", "parent_id", fallback="").strip() or OTHER_BOOKMARKS_ID
        title_format = self.config.get("Session", "title_format", fallback="").strip() \
            or AppConstants.SESSION_TITLE_FORMAT
        return {"parent_id": parent_id, "title_format": title_format}

    def get_log_settings(self) -> Dict[str, str]:
        log_file = self.config.get("Logging", "log_file", fallback="").strip() or AppConstants.DEFAULT_LOG_FILE
        level = self.config.get("Logging", "level", fallback="INFO").strip().upper()
        if level not in _LOG_LEVELS:
            level = "INFO"
        return {"log_file": log_file, "level": level}


class JsonStateStore:
    """
    キー／値ストア。値は丸ごと読み書きし（load-modify-save）、最後に書いた側が勝つ。

    Args:
        path: 保存先JSONファイル。None の場合はメモリ上のみ。
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = {}
        self._listeners: List[Callable[[str, Any, Any], None]] = []
        self._mtime = None
        if path and os.path.exists(path):
            try:
                self._data = self._read_file()
            except StoreUnavailableError as e:
                logger.warning("State file %s could not be read, starting empty: %s", path, e)

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._mtime = os.path.getmtime(self.path)
        except (OSError, ValueError) as e:
            raise StoreUnavailableError(f"Failed to read {self.path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        if not self.path:
            return
        tmp_path = self.path + ".tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
            self._mtime = os.path.getmtime(self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailableError(f"Failed to write {self.path}: {e}") from e

    def add_listener(self, callback: Callable[[str, Any, Any], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[str, Any, Any], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, changes) -> None:
        for key, old, new in changes:
            for callback in list(self._listeners):
                callback(key, old, new)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            had_old = key in self._data
            old = self._data.get(key)
            self._data[key] = copy.deepcopy(value)
            try:
                self._flush()
            except StoreUnavailableError:
                if had_old:
                    self._data[key] = old
                else:
                    del self._data[key]
                raise
        self._notify([(key, copy.deepcopy(old), copy.deepcopy(value))])

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            old = self._data.pop(key)
            try:
                self._flush()
            except StoreUnavailableError:
                self._data[key] = old
                raise
        self._notify([(key, copy.deepcopy(old), None)])

    def reload(self) -> List[str]:
        """
        ファイルを読み直し、別インスタンスによる変更をリスナーへ通知する。

        Returns:
            変更があったキーのリスト
        """
        if not self.path:
            return []
        with self._lock:
            fresh = self._read_file() if os.path.exists(self.path) else {}
            changes = []
            for key in sorted(set(self._data) | set(fresh)):
                old, new = self._data.get(key), fresh.get(key)
                if old != new:
                    changes.append((key, copy.deepcopy(old), copy.deepcopy(new)))
            self._data = fresh
        if changes:
            logger.info("State file changed externally: %s", ", ".join(k for k, _, _ in changes))
        self._notify(changes)
        return [key for key, _, _ in changes]

    def reload_if_changed(self) -> List[str]:
        """更新時刻が変わっている場合のみ `reload` する。"""
        if not self.path or not os.path.exists(self.path):
            return []
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            return []
        if mtime == self._mtime:
            return []
        return self.reload()
