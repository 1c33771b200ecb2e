import logging
from typing import Dict, Iterable, Optional, Set

from .model import OpenFlag, OverlayState
from .storage import JsonStateStore
from .utils import AppConstants

"""
オーバーレイ（見た目だけの上書き）と表示状態の永続化。マージ処理は持たない。
- `OverlayStore` : OverlayState の読み書き
- `ViewStateStore` : 展開中フォルダ・セーフティモード
- `FlagStore` : ブックマークごとの開き方フラグと既定フラグ
"""

logger = logging.getLogger(__name__)


class OverlayStore:
    """OverlayState を1レコードとして丸ごと読み書きする。"""

    def __init__(self, state_store: JsonStateStore, key: str = AppConstants.STATE_KEY):
        self.state_store = state_store
        self.key = key

    def load(self) -> OverlayState:
        return OverlayState.from_record(self.state_store.get(self.key))

    def save(self, state: OverlayState) -> None:
        self.state_store.set(self.key, state.to_record())

    def reset(self) -> None:
        logger.info("Overlay state cleared")
        self.state_store.remove(self.key)


class ViewStateStore:
    """展開状態は内容ではなく表示の状態なので、オーバーレイとは別キーに保存する。"""

    def __init__(self, state_store: JsonStateStore):
        self.state_store = state_store

    def load_expanded(self) -> Set[str]:
        ids = self.state_store.get(AppConstants.EXPANDED_KEY)
        return {str(i) for i in ids} if isinstance(ids, list) else set()

    def save_expanded(self, ids: Iterable[str]) -> None:
        self.state_store.set(AppConstants.EXPANDED_KEY, sorted(ids))

    def load_safety_mode(self) -> bool:
        return bool(self.state_store.get(AppConstants.SAFETY_MODE_KEY, False))

    def save_safety_mode(self, enabled: bool) -> None:
        self.state_store.set(AppConstants.SAFETY_MODE_KEY, bool(enabled))


class FlagStore:
    """
    開き方フラグ。`{bookmark_id: 'NF' | 'RF' | 'NB'}` のマップと、プロセス全体の既定値を持つ。

    Args:
        state_store: 永続化ストア
        fallback_default: 既定値が保存されていない場合に使う値（config.ini 由来）
    """

    def __init__(self, state_store: JsonStateStore, fallback_default: OpenFlag = OpenFlag.UNSET):
        self.state_store = state_store
        self.fallback_default = fallback_default

    def get_flags(self) -> Dict[str, OpenFlag]:
        raw = self.state_store.get(AppConstants.FLAGS_KEY)
        if not isinstance(raw, dict):
            return {}
        flags = {str(k): OpenFlag.parse(v) for k, v in raw.items()}
        return {k: v for k, v in flags.items() if v is not OpenFlag.UNSET}

    def get_flag(self, bookmark_id: str) -> OpenFlag:
        return self.get_flags().get(bookmark_id, OpenFlag.UNSET)

    def set_flags(self, bookmark_ids: Iterable[str], flag: OpenFlag) -> int:
        """
        複数IDのフラグを1回の保存でまとめて設定する。UNSET は削除。

        Returns:
            対象になったIDの数
        """
        raw = self.state_store.get(AppConstants.FLAGS_KEY)
        flags = dict(raw) if isinstance(raw, dict) else {}
        count = 0
        for bookmark_id in bookmark_ids:
            count += 1
            if flag is OpenFlag.UNSET:
                flags.pop(bookmark_id, None)
            else:
                flags[bookmark_id] = flag.value
        self.state_store.set(AppConstants.FLAGS_KEY, flags)
        return count

    def set_flag(self, bookmark_id: str, flag: OpenFlag) -> None:
        self.set_flags([bookmark_id], flag)

    def get_default(self) -> OpenFlag:
        stored = OpenFlag.parse(self.state_store.get(AppConstants.DEFAULT_FLAG_KEY))
        return stored if stored is not OpenFlag.UNSET else self.fallback_default

    def set_default(self, flag: Optional[OpenFlag]) -> None:
        if flag is None or flag is OpenFlag.UNSET:
            self.state_store.remove(AppConstants.DEFAULT_FLAG_KEY)
        else:
            self.state_store.set(AppConstants.DEFAULT_FLAG_KEY, flag.value)
