"""Interactive editing UI components."""

from .overlay import EditorOverlay, run_editor

__all__ = ["EditorOverlay", "run_editor"]
