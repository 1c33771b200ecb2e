from tkinter import simpledialog
import ttkbootstrap as tb

from fluxmarks.core.utils import is_valid_url


class BookmarkDialog(simpledialog.Dialog):
    """タイトルとURLを入力する。結果は `(title, url)`、キャンセル時は None。"""

    def __init__(self, parent, title=None, initial_title="", initial_url=""):
        self.initial_title = initial_title
        self.initial_url = initial_url
        super().__init__(parent, title)

    def body(self, master):
        self.result = None
        tb.Label(master, text="Title:", font=("", 10, "bold")).pack(anchor="w", padx=5, pady=(5, 0))
        self.title_entry = tb.Entry(master, width=50)
        self.title_entry.insert(0, self.initial_title)
        self.title_entry.pack(padx=5, pady=2, fill="x")

        tb.Label(master, text="URL:", font=("", 10, "bold")).pack(anchor="w", padx=5, pady=(10, 0))
        self.url_entry = tb.Entry(master, width=50)
        self.url_entry.insert(0, self.initial_url)
        self.url_entry.pack(padx=5, pady=2, fill="x")

        self.error_label = tb.Label(master, text="", bootstyle="danger")
        self.error_label.pack(anchor="w", padx=5, pady=(5, 0))
        return self.title_entry

    def validate(self):
        if not is_valid_url(self.url_entry.get().strip()):
            self.error_label.config(text="無効なURL形式です。http://、https://、ftp:// または file:// で始まるURLを入力してください。")
            return False
        return True

    def apply(self):
        url = self.url_entry.get().strip()
        self.result = (self.title_entry.get().strip() or url, url)
