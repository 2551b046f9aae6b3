"""Chunked LLM translation pipeline for plain text and EPUB books."""

__version__ = "1.0.0"
