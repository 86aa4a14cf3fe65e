"""Chat from a Markdown note with human approval of every tool call and result."""

__version__ = "0.1.0"
