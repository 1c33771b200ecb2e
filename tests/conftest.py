"""Shared fixtures: a small bookmark tree, in-memory state and a scripted tab controller."""

import pytest

from fluxmarks.core.bookmark_store import BookmarkTreeStore
from fluxmarks.core.overlay import FlagStore, OverlayStore, ViewStateStore
from fluxmarks.core.reconciler import build_rendered_tree, find_node_context
from fluxmarks.core.storage import JsonStateStore
from fluxmarks.services.mutations import MutationEngine
from fluxmarks.services.sync import SyncCoordinator
from fluxmarks.services.tabs import Tab, TabController

SAMPLE_TREE = [
    {"id": "1", "title": "Bookmarks bar", "children": [
        {"id": "10", "title": "News", "children": [
            {"id": "11", "title": "Example", "url": "https://example.com"},
            {"id": "12", "title": "Python", "url": "https://www.python.org"},
        ]},
        {"id": "20", "title": "A", "url": "https://a.example"},
        {"id": "21", "title": "X", "url": "https://x.example"},
        {"id": "22", "title": "B", "url": "https://b.example"},
        {"id": "23", "title": "C", "url": "https://c.example"},
    ]},
    {"id": "2", "title": "Other bookmarks", "children": [
        {"id": "30", "title": "Docs", "children": [
            {"id": "31", "title": "Guide", "url": "https://docs.example/guide"},
            {"id": "32", "title": "Deep", "children": [
                {"id": "33", "title": "Leaf", "url": "https://leaf.example"},
            ]},
        ]},
    ]},
]


class FakeTabs(TabController):
    def __init__(self, tabs=None):
        self.tabs = list(tabs or [])
        self.created = []
        self.updated = []
        self._next_id = 100

    def create_tab(self, url, active):
        tab = Tab(self._next_id, url, active=active)
        self._next_id += 1
        if active:
            for t in self.tabs:
                t.active = False
        self.tabs.append(tab)
        self.created.append(tab)
        return tab

    def query_active_tab(self, window_id=None):
        return next((t for t in self.tabs if t.active), None)

    def update_tab(self, tab_id, url):
        self.updated.append((tab_id, url))
        for t in self.tabs:
            if t.id == tab_id:
                t.url = url

    def query_all_tabs(self, window_id=None):
        return list(self.tabs)


@pytest.fixture
def tree_store():
    return BookmarkTreeStore.from_records(SAMPLE_TREE)


@pytest.fixture
def state_store():
    return JsonStateStore()


@pytest.fixture
def overlay_store(state_store):
    return OverlayStore(state_store)


@pytest.fixture
def view_store(state_store):
    return ViewStateStore(state_store)


@pytest.fixture
def flag_store(state_store):
    return FlagStore(state_store)


@pytest.fixture
def tabs():
    return FakeTabs([
        Tab(1, "https://one.example", "One", active=True),
        Tab(2, "https://two.example", ""),
    ])


@pytest.fixture
def engine(tree_store, overlay_store, flag_store, tabs):
    return MutationEngine(tree_store, overlay_store, flag_store, tabs)


@pytest.fixture
def coordinator(tree_store, state_store, overlay_store, view_store, flag_store):
    coordinator = SyncCoordinator(tree_store, state_store, overlay_store, view_store, flag_store)
    yield coordinator
    coordinator.stop(timeout=2)
    coordinator.detach()


@pytest.fixture
def render(tree_store, overlay_store):
    def _render(show_hidden=False):
        return build_rendered_tree(tree_store.get_tree(), overlay_store.load(), show_hidden)

    return _render


@pytest.fixture
def child_titles(render):
    """Titles of a folder's rendered children."""

    def _child_titles(folder_id, show_hidden=False):
        context = find_node_context(render(show_hidden), folder_id)
        assert context is not None, folder_id
        return [child.title for child in context.node.children]

    return _child_titles
