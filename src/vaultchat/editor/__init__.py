"""Editor package containing the document surfaces used by the sink."""

from .document import EditorAdapter, MarkdownFileDocument, SelectionRange, TextDocument

__all__ = ["EditorAdapter", "MarkdownFileDocument", "SelectionRange", "TextDocument"]
