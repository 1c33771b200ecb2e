import datetime
import threading
import time

from fluxmarks.core.bookmark_store import BookmarkTreeStore
from fluxmarks.core.errors import INVALID_OPERATION, NOT_FOUND, STORE_UNAVAILABLE, StoreUnavailableError
from fluxmarks.core.model import OpenFlag, OverlayState
from fluxmarks.core.overlay import FlagStore, OverlayStore
from fluxmarks.core.storage import JsonStateStore
from fluxmarks.services.mutations import MutationEngine

from conftest import SAMPLE_TREE


def _ids(nodes):
    return [n.id for n in nodes]


# ---------- move ----------

def test_move_across_folders_updates_both_stores(engine, tree_store, overlay_store, child_titles):
    result = engine.move("11", "30", 0)

    assert result.ok
    assert tree_store.get_node("11").parent_id == "30"
    assert child_titles("30") == ["Example", "Guide", "Deep"]
    assert child_titles("10") == ["Python"]
    assert overlay_store.load().order["30"] == ["11", "31", "32"]


def test_move_without_index_appends(engine, child_titles):
    assert engine.move("20", "30").ok
    assert child_titles("30") == ["Guide", "Deep", "A"]


def test_move_down_within_parent_counts_index_before_removal(engine, tree_store, overlay_store, child_titles):
    # [News, A, X, B, C]: index 4 is the slot of C, so A ends up just before it
    assert engine.move("20", "1", 4).ok
    assert child_titles("1") == ["News", "X", "B", "A", "C"]
    assert overlay_store.load().order["1"] == ["10", "21", "22", "20", "23"]
    assert tree_store.get_node("20").parent_id == "1"


def test_move_up_within_parent(engine, child_titles):
    assert engine.move("23", "1", 1).ok
    assert child_titles("1") == ["News", "C", "A", "X", "B"]


def test_move_clears_virtual_parent(engine, tree_store, overlay_store, child_titles):
    overlay_store.save(OverlayState(virtual_parent={"20": "30"}))

    assert engine.move("20", "10").ok
    assert "20" not in overlay_store.load().virtual_parent
    assert tree_store.get_node("20").parent_id == "10"
    assert child_titles("10") == ["Example", "Python", "A"]
    assert "A" not in child_titles("30")


def test_top_level_folders_cannot_move(engine, tree_store, overlay_store):
    before = tree_store.get_tree()
    result = engine.move("1", "2")

    assert not result.ok
    assert result.error == INVALID_OPERATION
    assert [_ids(n.children) for n in tree_store.get_tree()] == [_ids(n.children) for n in before]
    assert overlay_store.load() == OverlayState()


def test_move_rejects_bad_targets(engine):
    assert engine.move("20", "0").error == INVALID_OPERATION
    assert engine.move("20", "21").error == INVALID_OPERATION
    assert engine.move("20", "nope").error == NOT_FOUND
    assert engine.move("nope", "30").error == NOT_FOUND


def test_move_into_own_descendant_fails_without_touching_overlay(engine, tree_store, overlay_store):
    result = engine.move("30", "32")

    assert result.error == INVALID_OPERATION
    assert "descendant" in result.message
    assert tree_store.get_node("30").parent_id == "2"
    assert overlay_store.load() == OverlayState()


# ---------- drop ----------

def test_drop_down_within_same_parent_lands_after_target(engine, child_titles):
    # [News, A, X, B, C]: dropping A on B puts A right after B
    assert engine.drop("20", "22").ok
    assert child_titles("1") == ["News", "X", "B", "A", "C"]


def test_drop_up_within_same_parent_lands_before_target(engine, child_titles):
    assert engine.drop("23", "21").ok
    assert child_titles("1") == ["News", "A", "C", "X", "B"]


def test_drop_across_parents_takes_target_position(engine, tree_store, child_titles):
    assert engine.drop("12", "21").ok
    assert child_titles("1") == ["News", "A", "Python", "X", "B", "C"]
    assert tree_store.get_node("12").parent_id == "1"


def test_drop_on_collapsed_folder_appends_inside(engine, child_titles):
    assert engine.drop("20", "30", expanded=()).ok
    assert child_titles("30") == ["Guide", "Deep", "A"]


def test_drop_on_expanded_folder_takes_its_position(engine, child_titles):
    assert engine.drop("20", "30", expanded={"30"}).ok
    assert child_titles("2") == ["A", "Docs"]


def test_drop_on_itself_is_a_no_op(engine, overlay_store):
    assert engine.drop("20", "20").ok
    assert overlay_store.load() == OverlayState()


def test_drop_counts_hidden_siblings(engine, child_titles):
    assert engine.hide("21").ok
    assert engine.drop("20", "22").ok
    assert child_titles("1", show_hidden=True) == ["News", "X", "B", "A", "C"]
    assert child_titles("1") == ["News", "B", "A", "C"]


def test_drop_unknown_node_reports_not_found(engine):
    assert engine.drop("20", "nope").error == NOT_FOUND


def test_drop_into_top_level_row_fails(engine, tree_store):
    result = engine.drop("20", "2", expanded={"2"})

    assert result.error == INVALID_OPERATION
    assert tree_store.get_node("20").parent_id == "1"


# ---------- cosmetic operations ----------

def test_rename_and_clear_override(engine, tree_store, child_titles):
    assert engine.rename("11", "Ex").ok
    assert child_titles("10") == ["Ex", "Python"]
    assert tree_store.get_node("11").title == "Example"

    assert engine.rename("11", None).ok
    assert child_titles("10") == ["Example", "Python"]


def test_rename_unknown_node(engine):
    assert engine.rename("nope", "x").error == NOT_FOUND


def test_hide_and_restore(engine, child_titles):
    assert engine.hide("30").ok
    assert child_titles("2") == []
    assert child_titles("2", show_hidden=True) == ["Docs"]

    assert engine.restore("30").ok
    assert child_titles("2") == ["Docs"]


def test_top_level_folder_cannot_be_hidden(engine):
    assert engine.hide("1").error == INVALID_OPERATION


def test_reset_overlay_restores_authoritative_view(engine, overlay_store, child_titles):
    engine.drop("20", "22")
    engine.rename("21", "Renamed")
    engine.hide("23")

    assert engine.reset_overlay().ok
    assert overlay_store.load() == OverlayState()
    # the authoritative move made by the drop remains
    assert child_titles("1") == ["News", "X", "B", "C", "A"]


# ---------- create / delete ----------

def test_create_folder_appends_without_order(engine, tree_store, child_titles):
    result = engine.create_folder("30", "Sub")

    assert result.ok
    assert tree_store.get_node(result.node_id).is_folder
    assert child_titles("30") == ["Guide", "Deep", "Sub"]


def test_create_folder_splices_into_existing_order(engine, overlay_store, child_titles):
    engine.drop("20", "22")
    result = engine.create_folder("1", "New", 0)

    assert result.ok
    assert child_titles("1") == ["New", "News", "X", "B", "A", "C"]
    assert overlay_store.load().order["1"][0] == result.node_id


def test_create_bookmark(engine, tree_store):
    result = engine.create_bookmark("10", "", "https://new.example")

    assert result.ok
    node = tree_store.get_node(result.node_id)
    assert node.title == "https://new.example"
    assert node.parent_id == "10"
    assert engine.create_bookmark("10", "No URL", "").error == INVALID_OPERATION


def test_create_under_root_fails(engine):
    assert engine.create_folder("0", "Nope").error == INVALID_OPERATION


def test_delete_prunes_overlay_references(engine, tree_store, overlay_store, child_titles):
    overlay_store.save(OverlayState(
        order={"30": ["32", "31"], "1": ["23", "32"]},
        hidden={"33", "21"},
        titles={"31": "Handbook", "20": "Alpha"},
        virtual_parent={"20": "32", "31": "10"},
    ))

    result = engine.delete("30")

    assert result.ok
    assert "30" not in tree_store and "33" not in tree_store
    state = overlay_store.load()
    assert state.order == {"1": ["23"]}
    assert state.hidden == {"21"}
    assert state.titles == {"20": "Alpha"}
    assert state.virtual_parent == {}
    assert "Alpha" in child_titles("1")


def test_delete_top_level_fails(engine):
    assert engine.delete("2").error == INVALID_OPERATION


# ---------- flags ----------

def test_set_flag_and_clear(engine, flag_store):
    assert engine.set_flag("11", OpenFlag.RELOAD_CURRENT).ok
    assert flag_store.get_flag("11") is OpenFlag.RELOAD_CURRENT

    assert engine.set_flag("11", OpenFlag.UNSET).ok
    assert flag_store.get_flags() == {}


def test_bulk_set_flag_direct_and_recursive(engine, flag_store):
    result = engine.bulk_set_flag("30", OpenFlag.NEW_FOREGROUND)
    assert result.ok
    assert flag_store.get_flags() == {"31": OpenFlag.NEW_FOREGROUND}

    result = engine.bulk_set_flag("30", OpenFlag.NEW_BACKGROUND, recursive=True)
    assert "2 bookmarks" in result.message
    assert flag_store.get_flags() == {"31": OpenFlag.NEW_BACKGROUND, "33": OpenFlag.NEW_BACKGROUND}


def test_bulk_set_flag_on_bookmark_fails(engine):
    assert engine.bulk_set_flag("31", OpenFlag.NEW_FOREGROUND).error == INVALID_OPERATION


def test_set_default_flag(engine, flag_store):
    assert engine.set_default_flag(OpenFlag.NEW_FOREGROUND).ok
    assert flag_store.get_default() is OpenFlag.NEW_FOREGROUND


# ---------- session ----------

def test_save_session_creates_dated_folder(engine, tree_store):
    result = engine.save_session(now=datetime.datetime(2024, 5, 6, 7, 8))

    assert result.ok
    folder = tree_store.get_node(result.node_id)
    assert folder.title == "Session 2024-05-06 07:08"
    assert folder.parent_id == "2"
    assert [(c.title, c.url) for c in folder.children] == [
        ("One", "https://one.example"),
        ("https://two.example", "https://two.example"),
    ]


def test_save_session_without_tab_controller(tree_store, overlay_store, flag_store):
    engine = MutationEngine(tree_store, overlay_store, flag_store)

    assert engine.save_session().error == STORE_UNAVAILABLE


def test_save_session_reports_partial_failure(overlay_store, flag_store, tabs):
    class FlakyStore(BookmarkTreeStore):
        def __init__(self, top_level=None):
            self.creates = 0
            super().__init__(top_level)

        def create(self, parent_id, title, url=None, index=None):
            self.creates += 1
            if self.creates == 3:
                raise StoreUnavailableError("disk full")
            return super().create(parent_id, title, url, index)

    store = FlakyStore(BookmarkTreeStore.from_records(SAMPLE_TREE).get_tree())
    engine = MutationEngine(store, overlay_store, flag_store, tabs)

    result = engine.save_session(now=datetime.datetime(2024, 1, 1))

    assert not result.ok
    assert result.error == STORE_UNAVAILABLE
    assert result.message.startswith("1 of 2 tabs saved")
    assert len(store.get_node(result.node_id).children) == 1


def test_failed_persistence_leaves_overlay_untouched(tree_store, tabs):
    class BrokenState(JsonStateStore):
        def _flush(self):
            raise StoreUnavailableError("read-only")

    state = BrokenState()
    engine = MutationEngine(tree_store, OverlayStore(state), FlagStore(state), tabs)

    result = engine.rename("11", "Ex")

    assert result.error == STORE_UNAVAILABLE
    assert OverlayStore(state).load() == OverlayState()


def test_concurrent_operations_do_not_lose_overlay_edits(tree_store, tabs):
    class SlowState(JsonStateStore):
        def get(self, key, default=None):
            time.sleep(0.05)
            return super().get(key, default)

    state = SlowState()
    engine = MutationEngine(tree_store, OverlayStore(state), FlagStore(state), tabs)
    results = []
    workers = [threading.Thread(target=lambda i=i: results.append(engine.hide(i))) for i in ("20", "21", "22")]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=5)

    assert len(results) == 3 and all(r.ok for r in results)
    assert OverlayStore(state).load().hidden == {"20", "21", "22"}
