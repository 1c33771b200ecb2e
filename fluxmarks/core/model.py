import io
import html
from dataclasses import dataclass, field
from enum import Enum
from html.parser import HTMLParser
from typing import Dict, FrozenSet, List, Optional, Tuple

# 仮想ルートと固定のトップレベルコンテナ
ROOT_ID = "0"
BOOKMARKS_BAR_ID = "1"
OTHER_BOOKMARKS_ID = "2"
CONTAINER_TITLES = {
    BOOKMARKS_BAR_ID: "Bookmarks bar",
    OTHER_BOOKMARKS_ID: "Other bookmarks",
}

# Netscape Bookmark HTML Format
BOOKMARK_HTML_HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
"""
BOOKMARK_HTML_FOOTER = """</DL><p>
"""


class AuthoritativeNode:
    """ホスト側が所有するブックマークノード。`url` が None ならフォルダ。"""
    __slots__ = ("id", "title", "url", "parent_id", "date_added", "children")

    def __init__(self, id_, title="", url=None, parent_id=None, date_added=0):
        self.id = id_
        self.title = title
        self.url = url
        self.parent_id = parent_id
        self.date_added = date_added
        self.children = [] if url is None else None

    @property
    def is_folder(self) -> bool:
        return self.url is None

    def append(self, child: "AuthoritativeNode") -> None:
        child.parent_id = self.id
        self.children.append(child)

    def copy(self) -> "AuthoritativeNode":
        """サブツリーごとの複製（スナップショット用）。"""
        dup = AuthoritativeNode(self.id, self.title, self.url, self.parent_id, self.date_added)
        if self.children is not None:
            dup.children = [ch.copy() for ch in self.children]
        return dup

    def __repr__(self):
        kind = "folder" if self.is_folder else "bookmark"
        return f"AuthoritativeNode(id='{self.id}', {kind}, title='{self.title}')"


@dataclass(frozen=True)
class RenderedNode:
    """再構築のたびに作り直される描画用ノード。変更しても永続化されない。"""
    id: str
    title: str
    url: Optional[str] = None
    children: Optional[Tuple["RenderedNode", ...]] = None
    is_hidden: bool = False
    date_added: int = 0
    parent_id: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.children is not None


@dataclass
class OverlayState:
    """見た目だけの上書き情報（並び順・非表示・タイトル・仮想親）。"""
    order: Dict[str, List[str]] = field(default_factory=dict)
    hidden: set = field(default_factory=set)
    titles: Dict[str, str] = field(default_factory=dict)
    virtual_parent: Dict[str, str] = field(default_factory=dict)

    def to_record(self) -> dict:
        return {
            "order": {pid: list(ids) for pid, ids in self.order.items()},
            "hidden": sorted(self.hidden),
            "titles": dict(self.titles),
            "virtualParent": dict(self.virtual_parent),
        }

    @classmethod
    def from_record(cls, record) -> "OverlayState":
        """保存レコードから復元する。壊れたフィールドは空として扱う。"""
        if not isinstance(record, dict):
            return cls()

        def as_dict(value):
            return value if isinstance(value, dict) else {}

        order = {str(pid): [str(cid) for cid in ids]
                 for pid, ids in as_dict(record.get("order")).items() if isinstance(ids, list)}
        hidden = record.get("hidden")
        return cls(
            order=order,
            hidden={str(i) for i in hidden} if isinstance(hidden, list) else set(),
            titles={str(k): str(v) for k, v in as_dict(record.get("titles")).items()},
            virtual_parent={str(k): str(v) for k, v in as_dict(record.get("virtualParent")).items()},
        )


class OpenFlag(Enum):
    NEW_FOREGROUND = "NF"
    RELOAD_CURRENT = "RF"
    NEW_BACKGROUND = "NB"
    UNSET = "UNSET"

    @classmethod
    def parse(cls, value) -> "OpenFlag":
        """文字列（'NF' / 'NEW_FOREGROUND' など）から変換。不明な値は UNSET。"""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UNSET
        text = str(value).strip()
        for flag in cls:
            if text.upper() in (flag.value, flag.name):
                return flag
        return cls.UNSET


@dataclass(frozen=True)
class ViewState:
    """表示側の状態。アンビエントなシングルトンにせず明示的に受け渡す。"""
    expanded: FrozenSet[str] = frozenset()
    show_hidden: bool = False
    safety_mode: bool = False

    @property
    def allows_edit(self) -> bool:
        return not self.safety_mode


class NetscapeBookmarkParser(HTMLParser):
    """Netscape形式のHTMLを読み込み、`AuthoritativeNode` の素のツリーを作る。

    ID属性があればそのまま使い、無ければ None のまま（採番はストア側）。
    ツールバー／未整理フォルダの見出しは `toolbar_folder` / `other_folder` に記録する。
    """

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = AuthoritativeNode(ROOT_ID, "")
        self.stack = [self.root]
        self.toolbar_folder = None
        self.other_folder = None
        self._pending_link = None
        self._pending_folder = None
        self._capture_text_for = None
        self._buffer = []

    @staticmethod
    def _date_of(attr: dict) -> int:
        try:
            return int(attr.get("add_date") or 0) * 1000
        except ValueError:
            return 0

    def handle_starttag(self, tag, attrs):
        attr = dict(attrs)
        tag = tag.lower()
        if tag == "h3":
            self._pending_folder = AuthoritativeNode(attr.get("id"), date_added=self._date_of(attr))
            if len(self.stack) == 1:
                if attr.get("personal_toolbar_folder", "").lower() == "true" and self.toolbar_folder is None:
                    self.toolbar_folder = self._pending_folder
                elif attr.get("unfiled_bookmarks_folder", "").lower() == "true" and self.other_folder is None:
                    self.other_folder = self._pending_folder
            self._capture_text_for = "folder"
            self._buffer = []
        elif tag == "a":
            self._pending_link = AuthoritativeNode(attr.get("id"), url=attr.get("href", ""),
                                                   date_added=self._date_of(attr))
            self._capture_text_for = "link"
            self._buffer = []

    def handle_endtag(self, tag):
        tag = tag.lower()
        if tag in ("h3", "a"):
            text = "".join(self._buffer).strip()
            self._buffer = []
            if self._capture_text_for == "folder" and self._pending_folder:
                self._pending_folder.title = text or "Untitled"
                self.stack[-1].append(self._pending_folder)
                self.stack.append(self._pending_folder)
                self._pending_folder = None
            elif self._capture_text_for == "link" and self._pending_link:
                self._pending_link.title = text
                self.stack[-1].append(self._pending_link)
                self._pending_link = None
            self._capture_text_for = None
        elif tag == "dl":
            if len(self.stack) > 1: self.stack.pop()

    def handle_data(self, data):
        if self._capture_text_for in ("folder", "link"): self._buffer.append(data)


def export_netscape_html(top_level: List[AuthoritativeNode]) -> str:
    """トップレベルコンテナのリストをNetscape形式に書き出す（ID属性付き）。"""
    out = io.StringIO()
    out.write(BOOKMARK_HTML_HEADER)

    def esc(s) -> str:
        return html.escape(str(s or ""), quote=True)

    def add_date(node: AuthoritativeNode) -> str:
        return str((node.date_added or 0) // 1000)

    def write_folder(node: AuthoritativeNode, indent: int = 1) -> None:
        ind = "    " * indent
        extra = ""
        if node.id == BOOKMARKS_BAR_ID:
            extra = ' PERSONAL_TOOLBAR_FOLDER="true"'
        elif node.id == OTHER_BOOKMARKS_ID:
            extra = ' UNFILED_BOOKMARKS_FOLDER="true"'
        out.write(f'{ind}<DT><H3 ID="{esc(node.id)}" ADD_DATE="{add_date(node)}"{extra}>{esc(node.title)}</H3>\n')
        out.write(f"{ind}<DL><p>\n")
        for ch in node.children:
            if ch.is_folder:
                write_folder(ch, indent + 1)
            else:
                out.write(
                    f'{ind}    <DT><A HREF="{esc(ch.url)}" ID="{esc(ch.id)}" ADD_DATE="{add_date(ch)}">{esc(ch.title)}</A>\n')
        out.write(f"{ind}</DL><p>\n")

    for node in top_level:
        write_folder(node, 1)
    out.write(BOOKMARK_HTML_FOOTER)
    return out.getvalue()
