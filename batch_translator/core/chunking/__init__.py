"""
Chunking of plain text and EPUB node lists into translation units.
"""

from .models import BoundaryType, ChunkBoundary, ChunkingError, ChunkingConfigurationError
from .boundary_detector import find_sentence_boundary, find_sentence_ends, find_cut_boundary
from .character_chunker import (
    split_text_into_chunks,
    combine_chunks,
    split_chunk_by_sentences,
    split_in_half,
    split_chunk_in_two,
    split_chunk_recursively,
)
from .node_chunker import chunk_nodes, unit_source_text

__all__ = [
    'BoundaryType',
    'ChunkBoundary',
    'ChunkingError',
    'ChunkingConfigurationError',
    'find_sentence_boundary',
    'find_sentence_ends',
    'find_cut_boundary',
    'split_text_into_chunks',
    'combine_chunks',
    'split_chunk_by_sentences',
    'split_in_half',
    'split_chunk_in_two',
    'split_chunk_recursively',
    'chunk_nodes',
    'unit_source_text',
]
