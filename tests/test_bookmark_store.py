import pytest

from fluxmarks.core.bookmark_store import (
    CREATED,
    MOVED,
    REMOVED,
    BookmarkTreeStore,
    HtmlBookmarkStore,
)
from fluxmarks.core.errors import InvalidOperationError, NotFoundError, StoreUnavailableError
from fluxmarks.core.model import export_netscape_html

SAMPLE_HTML = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
    <DT><H3 ADD_DATE="1700000000" PERSONAL_TOOLBAR_FOLDER="true">Toolbar</H3>
    <DL><p>
        <DT><A HREF="https://example.com" ADD_DATE="1700000000">Example &amp; Co</A>
    </DL><p>
    <DT><A HREF="https://loose.example">Loose</A>
</DL><p>
"""


def _titles(nodes):
    return [n.title for n in nodes]


def test_default_containers():
    store = BookmarkTreeStore()

    assert [(n.id, n.title) for n in store.get_tree()] == [("1", "Bookmarks bar"), ("2", "Other bookmarks")]
    assert all(n.parent_id == "0" for n in store.get_tree())


def test_snapshots_are_copies(tree_store):
    snapshot = tree_store.get_tree()
    snapshot[0].children.clear()
    tree_store.get_node("11").title = "changed"

    assert len(tree_store.get_children("1")) == 5
    assert tree_store.get_node("11").title == "Example"


def test_duplicate_and_missing_ids_are_reassigned():
    store = BookmarkTreeStore.from_records([
        {"id": "1", "title": "Bar", "children": [
            {"id": "5", "title": "first", "url": "https://1.example"},
            {"id": "5", "title": "second", "url": "https://2.example"},
            {"title": "third", "url": "https://3.example"},
        ]},
        {"id": "2", "title": "Other", "children": []},
    ])

    ids = [n.id for n in store.get_children("1")]
    assert ids[0] == "5"
    assert len(set(ids)) == 3
    assert all(i.isdigit() and int(i) > 5 for i in ids[1:])


def test_create_emits_event_and_respects_index(tree_store):
    events = []
    tree_store.add_listener(events.append)

    node = tree_store.create("10", "Zero", "https://zero.example", 0)

    assert _titles(tree_store.get_children("10")) == ["Zero", "Example", "Python"]
    assert node.date_added > 0
    assert [(e.kind, e.id) for e in events] == [(CREATED, node.id)]


def test_move_within_parent_uses_pre_removal_index(tree_store):
    tree_store.move("20", "1", 4)

    assert [n.id for n in tree_store.get_children("1")] == ["10", "21", "22", "20", "23"]


def test_move_errors(tree_store):
    with pytest.raises(InvalidOperationError):
        tree_store.move("1", "2")
    with pytest.raises(InvalidOperationError):
        tree_store.move("30", "32")
    with pytest.raises(InvalidOperationError):
        tree_store.move("20", "0")
    with pytest.raises(InvalidOperationError):
        tree_store.move("20", "21")
    with pytest.raises(NotFoundError):
        tree_store.move("nope", "1")


def test_move_emits_event(tree_store):
    events = []
    tree_store.add_listener(events.append)

    moved = tree_store.move("20", "30")

    assert moved.parent_id == "30"
    assert events[0].kind == MOVED and events[0].node.parent_id == "30"


def test_update_and_remove(tree_store):
    tree_store.update("11", title="Renamed", url="https://renamed.example")
    assert tree_store.get_node("11").url == "https://renamed.example"

    with pytest.raises(InvalidOperationError):
        tree_store.update("10", url="https://folder.example")
    with pytest.raises(InvalidOperationError):
        tree_store.remove("10")

    events = []
    tree_store.add_listener(events.append)
    tree_store.remove("11")
    tree_store.remove_subtree("30")

    assert "11" not in tree_store
    assert "33" not in tree_store
    assert [(e.kind, e.id) for e in events] == [(REMOVED, "11"), (REMOVED, "30")]


def test_html_store_loads_toolbar_and_loose_items(tmp_path):
    path = tmp_path / "bookmarks.html"
    path.write_text(SAMPLE_HTML, encoding="utf-8")

    store = HtmlBookmarkStore(str(path))

    bar, other = store.get_tree()
    assert (bar.id, bar.title) == ("1", "Toolbar")
    assert other.id == "2"
    assert _titles(bar.children) == ["Example & Co"]
    assert bar.children[0].date_added == 1700000000000
    assert _titles(other.children) == ["Loose"]


def test_html_store_keeps_ids_across_sessions(tmp_path):
    path = str(tmp_path / "bookmarks.html")
    store = HtmlBookmarkStore(path)
    folder = store.create("1", "Reading")
    link = store.create(folder.id, "Site <1>", "https://site.example/?a=1&b=2")

    reopened = HtmlBookmarkStore(path)

    node = reopened.get_node(link.id)
    assert node.parent_id == folder.id
    assert node.title == "Site <1>"
    assert node.url == "https://site.example/?a=1&b=2"
    assert reopened.get_node(folder.id).title == "Reading"


def test_export_marks_containers():
    text = export_netscape_html(BookmarkTreeStore().get_tree())

    assert 'ID="1"' in text and 'PERSONAL_TOOLBAR_FOLDER="true"' in text
    assert 'UNFILED_BOOKMARKS_FOLDER="true"' in text


def test_failed_write_rolls_back(tmp_path):
    store = HtmlBookmarkStore(str(tmp_path / "missing" / "bookmarks.html"))
    events = []
    store.add_listener(events.append)

    with pytest.raises(StoreUnavailableError):
        store.create("1", "Lost")

    assert store.get_children("1") == []
    assert events == []
