"""Native dialogs used by the presentation layer."""

from __future__ import annotations

from tkinter import filedialog
from typing import Any


def select_directory(parent: Any = None, initial: str | None = None) -> str | None:
    """Open a directory picker; None when the user cancels.

    Without ``parent`` a hidden customtkinter root hosts the dialog and is
    destroyed afterwards.
    """
    owned = None
    if parent is None:
        import customtkinter as ctk

        owned = ctk.CTk()
        owned.withdraw()
    try:
        selected = filedialog.askdirectory(
            parent=parent or owned,
            initialdir=initial or None,
            title="Select project directory",
            mustexist=True,
        )
    finally:
        if owned is not None:
            owned.destroy()
    return selected or None
