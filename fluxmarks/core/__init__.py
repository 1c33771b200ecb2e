"""Core modules: bookmark tree, overlay state and reconciliation."""

from .errors import (
    BookmarkError,
    InvalidOperationError,
    MutationResult,
    NotFoundError,
    StoreUnavailableError,
)
from .model import (
    AuthoritativeNode,
    OpenFlag,
    OverlayState,
    RenderedNode,
    ViewState,
    ROOT_ID,
    BOOKMARKS_BAR_ID,
    OTHER_BOOKMARKS_ID,
)
from .bookmark_store import BookmarkTreeStore, HtmlBookmarkStore
from .storage import ConfigManager, JsonStateStore
from .overlay import FlagStore, OverlayStore, ViewStateStore
from .reconciler import build_rendered_tree, find_node_context, get_new_order

__all__ = [
    # Errors
    "BookmarkError",
    "InvalidOperationError",
    "MutationResult",
    "NotFoundError",
    "StoreUnavailableError",
    # Models
    "AuthoritativeNode",
    "OpenFlag",
    "OverlayState",
    "RenderedNode",
    "ViewState",
    "ROOT_ID",
    "BOOKMARKS_BAR_ID",
    "OTHER_BOOKMARKS_ID",
    # Stores
    "BookmarkTreeStore",
    "HtmlBookmarkStore",
    "ConfigManager",
    "JsonStateStore",
    "FlagStore",
    "OverlayStore",
    "ViewStateStore",
    # Reconciliation
    "build_rendered_tree",
    "find_node_context",
    "get_new_order",
]
