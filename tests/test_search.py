from fluxmarks.core.model import OverlayState
from fluxmarks.core.reconciler import build_rendered_tree
from fluxmarks.services.search import search_bookmarks


def test_matches_title_and_url_case_insensitively(tree_store):
    roots = build_rendered_tree(tree_store.get_tree(), OverlayState())

    assert [n.id for n in search_bookmarks(roots, "PYTHON")] == ["12"]
    assert [n.id for n in search_bookmarks(roots, "docs.example")] == ["31"]


def test_results_follow_rendered_order_and_titles(tree_store):
    overlay = OverlayState(order={"1": ["23", "22"]}, titles={"12": "Example mirror"})
    roots = build_rendered_tree(tree_store.get_tree(), overlay)

    assert [n.id for n in search_bookmarks(roots, "example")] == [
        "23", "22", "11", "12", "20", "21", "31", "33",
    ]


def test_folders_match_by_title(tree_store):
    roots = build_rendered_tree(tree_store.get_tree(), OverlayState())

    assert [n.id for n in search_bookmarks(roots, "deep")] == ["32"]


def test_hidden_nodes_only_searchable_when_shown(tree_store):
    overlay = OverlayState(hidden={"10"})

    assert search_bookmarks(build_rendered_tree(tree_store.get_tree(), overlay), "python") == []
    shown = build_rendered_tree(tree_store.get_tree(), overlay, show_hidden=True)
    assert [n.id for n in search_bookmarks(shown, "python")] == ["12"]


def test_empty_query_matches_everything(tree_store):
    roots = build_rendered_tree(tree_store.get_tree(), OverlayState())

    assert len(search_bookmarks(roots, "")) == 13
