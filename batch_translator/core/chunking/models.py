"""
Data models for character-based chunking.

Provides enums, dataclasses, and exceptions for the chunking system.
"""

from dataclasses import dataclass
from enum import Enum


class BoundaryType(Enum):
    """Type of chunk boundary, in preference order."""
    PARAGRAPH_END = "paragraph_end"
    LINE_END = "line_end"
    SENTENCE_END = "sentence_end"
    FORCED_SIZE = "forced_size"


class ChunkingError(Exception):
    """Base exception for chunking operations."""
    pass


class ChunkingConfigurationError(ChunkingError):
    """Raised when chunking parameters are invalid."""
    pass


@dataclass
class ChunkBoundary:
    """Cut position chosen inside a text, with how it was found."""
    position: int
    type: BoundaryType

    @property
    def fallback_used(self) -> bool:
        return self.type == BoundaryType.FORCED_SIZE
