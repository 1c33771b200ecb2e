import sys
import queue
import logging
import threading
import tkinter as tk
from dataclasses import replace
from tkinter import messagebox, simpledialog
from typing import Callable, Dict, Optional

import ttkbootstrap as tb
import tkinter.font as tkfont

from fluxmarks.app import Services, build_services, setup_logging
from fluxmarks.core.errors import BookmarkError, MutationResult
from fluxmarks.core.model import OpenFlag, RenderedNode, ROOT_ID, ViewState
from fluxmarks.core.reconciler import flatten_rendered
from fluxmarks.core.storage import ConfigManager
from fluxmarks.core.utils import AppConstants
from fluxmarks.gui.dialogs import BookmarkDialog
from fluxmarks.services.search import search_bookmarks
from fluxmarks.services.sync import TreeSnapshot

FLAG_LABELS = [
    (OpenFlag.NEW_FOREGROUND, "New tab (foreground)"),
    (OpenFlag.RELOAD_CURRENT, "Current tab"),
    (OpenFlag.NEW_BACKGROUND, "New tab (background)"),
]

logger = logging.getLogger(__name__)


class App(tb.Window):
    """ブックマークのサイドパネル。ツリーはスナップショットの描画だけで、状態は持たない。"""

    def __init__(self, services: Services):
        super().__init__(themename="cosmo")
        self.title("FluxMarks")
        self.geometry("460x820")
        self.minsize(320, 400)

        self.logger = logger
        self.services = services
        self.engine = services.engine
        self.resolver = services.resolver
        self.coordinator = services.coordinator

        self.ui_queue = queue.Queue()
        self.snapshot: Optional[TreeSnapshot] = None
        self._nodes: Dict[str, RenderedNode] = {}
        self.view = ViewState(safety_mode=services.view_store.load_safety_mode())
        self._search_after_id = None
        self._hover_after_id = None
        self._hover_iid = None
        self._ctx_submenus = []
        self.drag_start_iid = None
        self.drag_start_pos = None
        self.dragging_iid = None
        self.drop_target_iid = None
        self.drag_window = None
        self._drag_threshold = 5

        self.search_var = tk.StringVar()
        self.search_var.trace_add("write", self._on_search_var_changed)
        self.show_hidden_var = tk.BooleanVar(value=False)
        self.safety_var = tk.BooleanVar(value=self.view.safety_mode)
        self.default_flag_var = tk.StringVar(value=services.flag_store.get_default().value)

        self._build_ui()
        self.protocol("WM_DELETE_WINDOW", self._on_close)

        self.coordinator.mount()
        self.coordinator.start()
        self.after(AppConstants.QUEUE_POLL_MS, self._process_ui_queue)
        self.after(AppConstants.STATE_POLL_MS, self._poll_state_file)

    def _build_ui(self) -> None:
        menubar = tk.Menu(self)
        filem = tk.Menu(menubar, tearoff=0)
        filem.add_command(label="Save Session", command=self.cmd_save_session)
        filem.add_separator()
        filem.add_command(label="Reset Custom Layout…", command=self.cmd_reset_overlay)
        filem.add_separator()
        filem.add_command(label="Exit", command=self._on_close)
        menubar.add_cascade(label="File", menu=filem)

        viewm = tk.Menu(menubar, tearoff=0)
        viewm.add_checkbutton(label="Show Hidden Items", variable=self.show_hidden_var,
                              command=self._on_show_hidden_toggled)
        viewm.add_checkbutton(label="Safety Mode", variable=self.safety_var, command=self._on_safety_toggled)
        menubar.add_cascade(label="View", menu=viewm)

        openm = tk.Menu(menubar, tearoff=0)
        for flag, label in FLAG_LABELS:
            openm.add_radiobutton(label=label, value=flag.value, variable=self.default_flag_var,
                                  command=self.cmd_set_default_flag)
        menubar.add_cascade(label="Default Open Mode", menu=openm)
        self.config(menu=menubar)

        # ========== ツールバー ==========
        toolbar = tb.Frame(self, bootstyle="light")
        toolbar.pack(fill="x", padx=10, pady=8)

        self.search_entry = tb.Entry(toolbar, textvariable=self.search_var, bootstyle="primary")
        self.search_entry.pack(side="left", fill="x", expand=True, padx=(0, 6))
        tb.Button(toolbar, text="Clear", command=self._clear_search,
                  bootstyle="secondary-outline", width=6).pack(side="left")

        toggles = tb.Frame(self, bootstyle="light")
        toggles.pack(fill="x", padx=10, pady=(0, 6))
        tb.Checkbutton(toggles, text="Safety mode", variable=self.safety_var,
                       command=self._on_safety_toggled, bootstyle="round-toggle").pack(side="left", padx=(0, 12))
        tb.Checkbutton(toggles, text="Show hidden", variable=self.show_hidden_var,
                       command=self._on_show_hidden_toggled, bootstyle="round-toggle").pack(side="left")
        tb.Button(toggles, text="💾 Save Session", command=self.cmd_save_session,
                  bootstyle="success-outline").pack(side="right")

        tb.Separator(self, orient="horizontal").pack(fill="x")

        # ========== ツリービュー ==========
        body = tb.Frame(self, bootstyle="light")
        body.pack(fill="both", expand=True, padx=6, pady=6)

        self.tree = tb.Treeview(body, columns=("mode",), show="tree headings",
                                selectmode="browse", bootstyle="primary")
        self.tree.heading("#0", text="📑 Bookmarks")
        self.tree.heading("mode", text="Mode")
        self.tree.column("#0", width=360, anchor="w", minwidth=160)
        self.tree.column("mode", width=60, anchor="center", stretch=False)

        ysb = tb.Scrollbar(body, orient="vertical", command=self.tree.yview, bootstyle="primary-round")
        self.tree.configure(yscroll=ysb.set)
        self.tree.grid(row=0, column=0, sticky="nsew")
        ysb.grid(row=0, column=1, sticky="ns")
        body.rowconfigure(0, weight=1)
        body.columnconfigure(0, weight=1)

        default_font = tkfont.nametofont("TkDefaultFont")
        bold_font = default_font.copy()
        bold_font.configure(weight="bold")
        self.tree.tag_configure('folder', font=bold_font, foreground='#E67E22')
        self.tree.tag_configure('hidden', foreground='#95A5A6')
        self.tree.tag_configure("drop_folder", background="#E3F2FD", foreground="#1976D2")
        self.tree.tag_configure("drop_target", background="#FFF3E0", foreground="#F57C00")

        style = tb.Style()
        base_font = ("Segoe UI", 10) if sys.platform == "win32" else ("", 10)
        style.configure("Treeview", rowheight=26, font=base_font)

        self.ctx = tk.Menu(self, tearoff=0)
        self.tree.bind("<Button-3>", self._popup_ctx)
        self.tree.bind("<ButtonPress-1>", self._on_tree_press)
        self.tree.bind("<B1-Motion>", self._on_tree_drag)
        self.tree.bind("<ButtonRelease-1>", self._on_tree_release)
        self.tree.bind("<Double-1>", self._on_double_click)
        self.tree.bind("<Return>", lambda e: self._open_selected())
        self.tree.bind("<Delete>", lambda e: self._with_selected(self.cmd_delete))
        self.tree.bind("<F2>", lambda e: self._with_selected(self.cmd_rename))
        self.tree.bind("<<TreeviewOpen>>", self._on_folder_open)
        self.tree.bind("<<TreeviewClose>>", self._on_folder_close)
        self.bind_all("<Control-f>", lambda e: self.search_entry.focus_set())
        self.search_entry.bind("<Escape>", lambda e: self._clear_search())

        # ========== ステータスバー ==========
        tb.Separator(self, orient="horizontal").pack(fill="x")
        status_bar = tb.Frame(self, bootstyle="light", height=28)
        status_bar.pack(fill="x", side="bottom")
        status_bar.pack_propagate(False)
        self.status_stats_label = tb.Label(status_bar, text="", font=("", 9), bootstyle="secondary")
        self.status_stats_label.pack(side="left", padx=10)
        self.status_info_label = tb.Label(status_bar, text="Ready", font=("", 9), bootstyle="secondary")
        self.status_info_label.pack(side="right", padx=10)

    # ---------- キュー処理 ----------

    @staticmethod
    def _drain(q: queue.Queue, handler: Callable) -> None:
        try:
            while True:
                kind, data = q.get_nowait()
                handler(kind, data)
        except queue.Empty:
            pass

    def _process_ui_queue(self):
        """同期コーディネータとワーカースレッドからの通知をUIスレッドで処理する。"""
        try:
            self._drain(self.coordinator.outbox, self._handle_sync_message)
            self._drain(self.ui_queue, self._handle_ui_task)
        finally:
            self.after(AppConstants.QUEUE_POLL_MS, self._process_ui_queue)

    def _handle_sync_message(self, kind: str, data) -> None:
        if kind == 'loading':
            self._update_status("Loading…" if data else "Ready", 0)
        elif kind == 'tree':
            if self.snapshot is not None and data.generation < self.snapshot.generation:
                return
            self.snapshot = data
            self.view = replace(self.view, expanded=data.expanded, show_hidden=data.show_hidden)
            self._refresh_tree()
        elif kind == 'expanded':
            self.view = replace(self.view, expanded=data)
        elif kind == 'error':
            self._update_status(f"⚠ {data}", 0)
            messagebox.showwarning("Bookmarks", data)

    def _handle_ui_task(self, task_type: str, data) -> None:
        if task_type == 'result':
            label, result = data
            if result.ok:
                self._update_status(f"{label}: {result.message}" if result.message else f"{label}: done")
                if result.node_id and self.tree.exists(result.node_id):
                    self.tree.selection_set(result.node_id)
                    self.tree.see(result.node_id)
            else:
                messagebox.showwarning(label, result.message)
        elif task_type == 'opened':
            self._update_status(data)
        elif task_type == 'error':
            messagebox.showwarning("Error", data)

    def _run_mutation(self, label: str, fn: Callable[[], MutationResult]) -> None:
        """変更はワーカースレッドで実行し、失敗時はコーディネータに再同期させる。"""

        def worker():
            result = fn()
            self.coordinator.handle_result(result)
            self.ui_queue.put(('result', (label, result)))

        threading.Thread(target=worker, daemon=True).start()

    def _run_open(self, label: str, fn: Callable[[], object]) -> None:
        def worker():
            try:
                fn()
            except BookmarkError as e:
                self.logger.warning("%s failed: %s", label, e)
                self.ui_queue.put(('error', f"{label}: {e}"))
                return
            self.ui_queue.put(('opened', label))

        threading.Thread(target=worker, daemon=True).start()

    def _poll_state_file(self):
        """別プロセスによる状態ファイルの更新を取り込む。"""
        try:
            self.services.state_store.reload_if_changed()
        except BookmarkError as e:
            self.logger.warning("Failed to reload state file: %s", e)
        finally:
            self.after(AppConstants.STATE_POLL_MS, self._poll_state_file)

    # ---------- 描画 ----------

    def _refresh_tree(self) -> None:
        """スナップショットからツリーを描画し直す。検索中は一致したノードだけをフラットに並べる。"""
        if self.snapshot is None:
            return
        selected = self.tree.selection()
        self.tree.delete(*self.tree.get_children())
        self._nodes = {node.id: node for node in flatten_rendered(self.snapshot.roots)}

        query = self.search_var.get().strip()
        if query:
            for node in search_bookmarks(self.snapshot.roots, query):
                self._insert_node("", node)
        else:
            def add_items(parent_iid: str, nodes) -> None:
                for node in nodes:
                    self._insert_node(parent_iid, node)
                    if node.is_folder:
                        add_items(node.id, node.children)

            add_items("", self.snapshot.roots)

        keep = [iid for iid in selected if self.tree.exists(iid)]
        if keep:
            self.tree.selection_set(keep)
        self._update_statistics()

    def _insert_node(self, parent_iid: str, node: RenderedNode) -> None:
        tags = []
        if node.is_folder:
            tags.append('folder')
            text = "📁 " + (node.title or "")
            mode = ""
        else:
            text = node.title or node.url or "(Untitled)"
            flag = self.snapshot.flags.get(node.id, OpenFlag.UNSET)
            mode = "" if flag is OpenFlag.UNSET else flag.value
        if node.is_hidden:
            tags.append('hidden')
            text = "👁 " + text
        self.tree.insert(parent_iid, "end", iid=node.id, text=text, values=(mode,),
                         open=node.id in self.snapshot.expanded, tags=tuple(tags))

    def _update_statistics(self):
        nodes = list(self._nodes.values())
        folders = sum(1 for n in nodes if n.is_folder)
        hidden = sum(1 for n in nodes if n.is_hidden)
        text = f"📊 {len(nodes) - folders} bookmarks · {folders} folders"
        if hidden:
            text += f" · {hidden} hidden"
        self.status_stats_label.config(text=text)

    def _update_status(self, message: str, duration: int = 3000):
        """ステータスバーにメッセージを表示"""
        self.status_info_label.config(text=message)
        if duration > 0:
            self.after(duration, lambda: self.status_info_label.config(text="Ready"))

    # ---------- 検索 ----------

    def _on_search_var_changed(self, *args):
        if self._search_after_id:
            self.after_cancel(self._search_after_id)
        self._search_after_id = self.after(AppConstants.SEARCH_DELAY_MS, self._apply_search)

    def _apply_search(self) -> None:
        self._search_after_id = None
        self._refresh_tree()

    def _clear_search(self) -> None:
        """検索バーをクリアする"""
        self.search_var.set("")
        self.search_entry.focus_set()

    # ---------- 展開状態 ----------

    def _on_folder_open(self, event=None):
        iid = self.tree.focus()
        if iid and iid in self._nodes and self._nodes[iid].is_folder:
            self.view = replace(self.view, expanded=self.coordinator.toggle_node(iid, True))

    def _on_folder_close(self, event=None):
        iid = self.tree.focus()
        if iid and iid in self._nodes and self._nodes[iid].is_folder:
            self.view = replace(self.view, expanded=self.coordinator.toggle_node(iid, False))

    def _on_show_hidden_toggled(self):
        show = self.show_hidden_var.get()
        threading.Thread(target=self.coordinator.set_show_hidden, args=(show,), daemon=True).start()

    def _on_safety_toggled(self):
        enabled = self.safety_var.get()
        self.view = replace(self.view, safety_mode=enabled)
        try:
            self.services.view_store.save_safety_mode(enabled)
        except BookmarkError as e:
            self.logger.warning("Failed to save safety mode: %s", e)
        self._update_status("Safety mode on: editing is disabled" if enabled else "Safety mode off")

    # ---------- 開く ----------

    def _on_double_click(self, event) -> None:
        iid = self.tree.identify_row(event.y)
        node = self._nodes.get(iid)
        if node is None or node.is_folder:
            return
        # Ctrl+ダブルクリックはフラグを無視して裏で開く
        self.cmd_open(node, force_background=bool(event.state & 0x0004))

    def _open_selected(self) -> None:
        sels = self.tree.selection()
        node = self._nodes.get(sels[0]) if sels else None
        if node is not None and not node.is_folder:
            self.cmd_open(node)

    def cmd_open(self, node: RenderedNode, force_background: bool = False) -> None:
        self._run_open(f"Opened {node.title or node.url}",
                       lambda: self.resolver.open_bookmark(node, force_background))

    def cmd_open_folder(self, node: RenderedNode, recursive: bool = False) -> None:
        label = f"Opened all in {node.title}" + (" (including subfolders)" if recursive else "")
        self._run_open(label, lambda: self.resolver.open_folder(node, recursive))

    # ---------- コンテキストメニュー ----------

    def _with_selected(self, command: Callable[[RenderedNode], None]) -> None:
        sels = self.tree.selection()
        node = self._nodes.get(sels[0]) if sels else None
        if node is not None:
            command(node)

    def _flag_menu(self, command: Callable[[OpenFlag], None], current: Optional[OpenFlag] = None) -> tk.Menu:
        menu = tk.Menu(self.ctx, tearoff=0)
        for flag, label in FLAG_LABELS:
            prefix = "✓ " if flag is current else ""
            menu.add_command(label=prefix + label, command=lambda f=flag: command(f))
        menu.add_separator()
        menu.add_command(label="Use Default", command=lambda: command(OpenFlag.UNSET))
        self._ctx_submenus.append(menu)
        return menu

    def _build_ctx(self, node: RenderedNode) -> None:
        self.ctx.delete(0, "end")
        for menu in self._ctx_submenus:
            menu.destroy()
        self._ctx_submenus = []

        edit_state = "normal" if self.view.allows_edit else "disabled"
        top_level_state = "disabled" if node.parent_id == ROOT_ID else edit_state

        if node.is_folder:
            self.ctx.add_command(label="Open All", command=lambda: self.cmd_open_folder(node))
            self.ctx.add_command(label="Open All (Including Subfolders)",
                                 command=lambda: self.cmd_open_folder(node, recursive=True))
            self.ctx.add_separator()
            self.ctx.add_command(label="New Folder…", command=lambda: self.cmd_new_folder(node), state=edit_state)
            self.ctx.add_command(label="New Bookmark…", command=lambda: self.cmd_new_bookmark(node),
                                 state=edit_state)
            self.ctx.add_separator()
            self.ctx.add_cascade(label="Open Mode for Bookmarks Here",
                                 menu=self._flag_menu(lambda f: self.cmd_bulk_set_flag(node, f, False)))
            self.ctx.add_cascade(label="Open Mode (Including Subfolders)",
                                 menu=self._flag_menu(lambda f: self.cmd_bulk_set_flag(node, f, True)))
        else:
            self.ctx.add_command(label="Open", command=lambda: self.cmd_open(node))
            self.ctx.add_command(label="Open in Background", command=lambda: self.cmd_open(node, True))
            self.ctx.add_separator()
            current = self.snapshot.flags.get(node.id) if self.snapshot else None
            self.ctx.add_cascade(label="Open Mode",
                                 menu=self._flag_menu(lambda f: self.cmd_set_flag(node, f), current))
        self.ctx.add_separator()
        self.ctx.add_command(label="Rename…", command=lambda: self.cmd_rename(node), state=edit_state)
        if node.is_hidden:
            self.ctx.add_command(label="Show", command=lambda: self.cmd_restore(node), state=edit_state)
        else:
            self.ctx.add_command(label="Hide", command=lambda: self.cmd_hide(node), state=top_level_state)
        self.ctx.add_separator()
        self.ctx.add_command(label="Delete", command=lambda: self.cmd_delete(node), state=top_level_state)

    def _popup_ctx(self, e) -> None:
        iid = self.tree.identify_row(e.y)
        node = self._nodes.get(iid)
        if node is None:
            return
        self.tree.selection_set(iid)
        self.tree.focus(iid)
        self._build_ctx(node)
        try:
            self.ctx.tk_popup(e.x_root, e.y_root)
        finally:
            self.ctx.grab_release()

    # ---------- 編集コマンド ----------

    def _editable(self) -> bool:
        if not self.view.allows_edit:
            self._update_status("Safety mode is on")
            return False
        return True

    def cmd_new_folder(self, parent: RenderedNode) -> None:
        if not self._editable():
            return
        name = simpledialog.askstring("New Folder", "Folder name:", parent=self)
        if not name:
            return
        self._run_mutation("New Folder", lambda: self.engine.create_folder(parent.id, name.strip()))

    def cmd_new_bookmark(self, parent: RenderedNode) -> None:
        if not self._editable():
            return
        dialog = BookmarkDialog(self, "New Bookmark")
        if dialog.result is None:
            return
        title, url = dialog.result
        self._run_mutation("New Bookmark", lambda: self.engine.create_bookmark(parent.id, title, url))

    def cmd_rename(self, node: RenderedNode) -> None:
        if not self._editable():
            return
        new_title = simpledialog.askstring("Rename", "Title (leave empty to restore the original):",
                                           initialvalue=node.title, parent=self)
        if new_title is None:
            return
        self._run_mutation("Rename", lambda: self.engine.rename(node.id, new_title.strip() or None))

    def cmd_hide(self, node: RenderedNode) -> None:
        if self._editable():
            self._run_mutation("Hide", lambda: self.engine.hide(node.id))

    def cmd_restore(self, node: RenderedNode) -> None:
        if self._editable():
            self._run_mutation("Show", lambda: self.engine.restore(node.id))

    def cmd_delete(self, node: RenderedNode) -> None:
        if not self._editable():
            return
        if node.is_folder:
            count = len(list(flatten_rendered(node.children)))
            if not messagebox.askyesno("Delete", f"Delete '{node.title}' and its {count} items?"):
                return
        self._run_mutation("Delete", lambda: self.engine.delete(node.id))

    def cmd_set_flag(self, node: RenderedNode, flag: OpenFlag) -> None:
        self._run_mutation("Open Mode", lambda: self.engine.set_flag(node.id, flag))

    def cmd_bulk_set_flag(self, folder: RenderedNode, flag: OpenFlag, recursive: bool) -> None:
        self._run_mutation("Open Mode", lambda: self.engine.bulk_set_flag(folder.id, flag, recursive))

    def cmd_set_default_flag(self) -> None:
        flag = OpenFlag.parse(self.default_flag_var.get())
        self._run_mutation("Default Open Mode", lambda: self.engine.set_default_flag(flag))

    def cmd_save_session(self) -> None:
        self._run_mutation("Save Session", lambda: self.engine.save_session())

    def cmd_reset_overlay(self) -> None:
        if not self._editable():
            return
        if messagebox.askyesno("Reset", "Discard custom order, titles and hidden items?"):
            self._run_mutation("Reset", self.engine.reset_overlay)

    # ---------- ドラッグ＆ドロップ ----------

    def _on_tree_press(self, event) -> None:
        """マウスボタン押下時の処理"""
        self.drag_start_iid = self.tree.identify_row(event.y)
        self.drag_start_pos = (event.x_root, event.y_root)
        self.dragging_iid = None
        self.drop_target_iid = None

    def _can_drag(self, iid: str) -> bool:
        node = self._nodes.get(iid)
        if node is None or node.parent_id == ROOT_ID:
            return False
        if self.search_var.get().strip():
            self._update_status("Clear the search to reorder bookmarks")
            return False
        return self._editable()

    def _on_tree_drag(self, event) -> None:
        """ドラッグ中の処理"""
        if not self.drag_start_iid or not self.drag_start_pos:
            return
        dx = abs(event.x_root - self.drag_start_pos[0])
        dy = abs(event.y_root - self.drag_start_pos[1])
        if (dx ** 2 + dy ** 2) ** 0.5 < self._drag_threshold:
            return

        if not self.dragging_iid:
            if not self._can_drag(self.drag_start_iid):
                self.drag_start_iid = None
                return
            self.dragging_iid = self.drag_start_iid
            self.config(cursor="fleur")
            self._create_drag_window()

        if self.drag_window:
            self.drag_window.geometry(f"+{event.x_root + 15}+{event.y_root + 10}")
        self._update_drop_indicator(event.y)

    def _on_tree_release(self, event) -> None:
        """マウスボタン解放時の処理（ドロップ処理）"""
        self._destroy_drag_window()
        self._clear_drop_highlight()
        self._cancel_hover_expand()
        self.config(cursor="")

        active, over = self.dragging_iid, self.drop_target_iid
        self.dragging_iid = None
        self.drop_target_iid = None
        self.drag_start_iid = None
        self.drag_start_pos = None
        if not active or not over:
            return
        expanded = self.view.expanded
        self._run_mutation("Move", lambda: self.engine.drop(active, over, expanded))

    def _create_drag_window(self):
        self._destroy_drag_window()
        self.drag_window = tk.Toplevel(self)
        self.drag_window.overrideredirect(True)
        self.drag_window.attributes('-alpha', 0.7)
        self.drag_window.attributes('-topmost', True)
        node = self._nodes.get(self.dragging_iid)
        text = (node.title if node else "") or "(Untitled)"
        tb.Label(self.drag_window, text=text, padding=5, bootstyle="inverse-secondary").pack()

    def _destroy_drag_window(self):
        if self.drag_window:
            self.drag_window.destroy()
            self.drag_window = None

    def _clear_drop_highlight(self):
        for iid in self._nodes:
            if not self.tree.exists(iid):
                continue
            tags = list(self.tree.item(iid, "tags"))
            if "drop_folder" in tags or "drop_target" in tags:
                self.tree.item(iid, tags=tuple(t for t in tags if t not in ("drop_folder", "drop_target")))

    def _update_drop_indicator(self, y):
        """閉じたフォルダの上は「中へ」、それ以外は「その位置へ」としてハイライトする。"""
        iid = self.tree.identify_row(y)
        if iid == self.drop_target_iid:
            return
        self._clear_drop_highlight()
        self._cancel_hover_expand()
        self.drop_target_iid = None
        node = self._nodes.get(iid)
        if node is None or iid == self.dragging_iid:
            return

        self.drop_target_iid = iid
        into_folder = node.is_folder and iid not in self.view.expanded
        tags = list(self.tree.item(iid, "tags"))
        tags.append("drop_folder" if into_folder else "drop_target")
        self.tree.item(iid, tags=tuple(tags))
        if into_folder:
            self._hover_iid = iid
            self._hover_after_id = self.after(AppConstants.HOVER_EXPAND_MS, self._hover_expand)

    def _cancel_hover_expand(self):
        if self._hover_after_id:
            self.after_cancel(self._hover_after_id)
        self._hover_after_id = None
        self._hover_iid = None

    def _hover_expand(self):
        """ドラッグ中に閉じたフォルダの上で止まったら開く。"""
        iid = self._hover_iid
        self._hover_after_id = None
        if not self.dragging_iid or iid != self.drop_target_iid or not self.tree.exists(iid):
            return
        self.tree.item(iid, open=True)
        self.view = replace(self.view, expanded=self.coordinator.toggle_node(iid, True))
        self._clear_drop_highlight()
        tags = list(self.tree.item(iid, "tags")) + ["drop_target"]
        self.tree.item(iid, tags=tuple(tags))

    def _on_close(self):
        self.coordinator.stop(timeout=1.0)
        self.coordinator.detach()
        self.destroy()


def main(config_path: str = 'config.ini') -> int:
    config = ConfigManager(config_path)
    settings = config.get_log_settings()
    setup_logging(settings["log_file"], settings["level"])
    try:
        services = build_services(config)
    except BookmarkError as e:
        logger.error("Failed to start: %s", e)
        messagebox.showerror("FluxMarks", str(e))
        return 1
    app = App(services)
    app.mainloop()
    return 0
