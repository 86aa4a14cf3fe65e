"""Capability executors available to the model."""

from . import base, corpus_search, errors, file_read, registry, web_search

__all__ = [
    "base",
    "corpus_search",
    "errors",
    "file_read",
    "registry",
    "web_search",
]
