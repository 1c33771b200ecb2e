from dataclasses import dataclass
from typing import Optional

"""
エラーモジュール。
- `BookmarkError` とその派生クラス : ストア操作が送出する例外
- `MutationResult` : 変更操作の結果（例外の代わりに呼び出し元へ返す）
"""

NOT_FOUND = "NotFound"
INVALID_OPERATION = "InvalidOperation"
STORE_UNAVAILABLE = "StoreUnavailable"


class BookmarkError(Exception):
    """ブックマーク操作の基底例外。"""
    kind = "BookmarkError"


class NotFoundError(BookmarkError):
    """指定IDがツリーに存在しない。"""
    kind = NOT_FOUND


class InvalidOperationError(BookmarkError):
    """ルートフォルダの移動、自身の子孫への移動など。"""
    kind = INVALID_OPERATION


class StoreUnavailableError(BookmarkError):
    """ストアの読み書きに失敗した。"""
    kind = STORE_UNAVAILABLE


@dataclass
class MutationResult:
    """変更操作の結果。`ok` が False の場合 `error` に種別が入る。"""
    ok: bool
    error: Optional[str] = None
    message: str = ""
    node_id: Optional[str] = None

    @classmethod
    def success(cls, node_id: Optional[str] = None, message: str = "") -> "MutationResult":
        return cls(True, None, message, node_id)

    @classmethod
    def failure(cls, exc: BookmarkError, node_id: Optional[str] = None) -> "MutationResult":
        return cls(False, exc.kind, str(exc), node_id)

    def __bool__(self) -> bool:
        return self.ok
