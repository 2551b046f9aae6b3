"""
Character-based text chunking algorithm.

Splits text into units of bounded size along natural boundaries. Splitting is
lossless: joining the returned pieces with an empty separator gives back the
input exactly, so every newline and space stays inside some unit.
"""

import logging
import math
from typing import List, Optional

from .models import ChunkingConfigurationError
from .boundary_detector import find_cut_boundary, find_sentence_ends

logger = logging.getLogger(__name__)


def split_text_into_chunks(text: str, max_size: int,
                           terminators: Optional[List[str]] = None) -> List[str]:
    """
    Split text into ordered units no longer than ``max_size`` characters.

    Args:
        text: Source text
        max_size: Maximum characters per unit
        terminators: Sentence terminators used for the sentence fallback

    Returns:
        Ordered list of units; ``combine_chunks`` of it equals ``text``

    Behavior:
        Each unit ends at the last blank line inside the window, else the
        last line break, else the last sentence end, else exactly at
        ``max_size`` characters.
    """
    if max_size <= 0:
        raise ChunkingConfigurationError(f"max_size must be > 0, got {max_size}")

    chunks = []
    position = 0
    forced_cuts = 0
    while len(text) - position > max_size:
        boundary = find_cut_boundary(text, position, max_size, terminators)
        if boundary.fallback_used:
            forced_cuts += 1
        chunks.append(text[position:boundary.position])
        position = boundary.position

    if position < len(text):
        chunks.append(text[position:])

    if forced_cuts:
        logger.warning(f"{forced_cuts} unit(s) had no natural boundary and were cut at {max_size} characters")
    logger.debug(f"Split {len(text)} characters into {len(chunks)} units (max_size={max_size})")
    return chunks


def combine_chunks(chunks: List[str]) -> str:
    """Inverse of ``split_text_into_chunks``."""
    return "".join(chunks)


def split_chunk_by_sentences(text: str, num_pieces: int = 2,
                             terminators: Optional[List[str]] = None) -> List[str]:
    """
    Split text into ``num_pieces`` parts of similar length at sentence ends.

    Returns ``[text]`` when the text has no inner sentence boundary.
    """
    if num_pieces < 2 or not text:
        return [text]

    ends = find_sentence_ends(text, terminators)
    if not ends:
        return [text]

    cuts = []
    for k in range(1, num_pieces):
        target = len(text) * k / num_pieces
        nearest = min(ends, key=lambda pos: abs(pos - target))
        if nearest not in cuts and 0 < nearest < len(text):
            cuts.append(nearest)
    cuts.sort()

    pieces = []
    previous = 0
    for cut in cuts + [len(text)]:
        pieces.append(text[previous:cut])
        previous = cut
    return [piece for piece in pieces if piece]


def split_in_half(text: str) -> List[str]:
    """Hard 50/50 character cut."""
    half = math.ceil(len(text) / 2)
    if half == 0 or half >= len(text):
        return [text]
    return [text[:half], text[half:]]


def split_chunk_in_two(text: str, by_sentences: bool = False,
                       terminators: Optional[List[str]] = None) -> List[str]:
    """
    Split one failing unit into smaller pieces, trying each strategy in turn.

    The boundary-priority split at half the length is tried first (or the
    sentence split when ``by_sentences`` is set), then the sentence split,
    then a hard 50/50 cut. Any text longer than one character always comes
    back as at least two pieces.
    """
    half = max(1, math.ceil(len(text) / 2))
    strategies = [
        lambda: split_text_into_chunks(text, half, terminators),
        lambda: split_chunk_by_sentences(text, 2, terminators),
    ]
    if by_sentences:
        strategies.reverse()

    for strategy in strategies:
        pieces = strategy()
        if len(pieces) > 1:
            return pieces
    return split_in_half(text)


def split_chunk_recursively(text: str, target_size: int, min_size: int,
                            max_depth: int, depth: int = 0,
                            terminators: Optional[List[str]] = None) -> List[str]:
    """
    Emergency re-split of a unit into ever smaller pieces.

    Halves the target size at every level until each piece is no longer
    than ``min_size`` or ``max_depth`` levels were used.

    Args:
        text: Unit to split
        target_size: Unit size used at this level
        min_size: Pieces at or below this length are not split further
        max_depth: Maximum recursion depth
        depth: Current depth

    Returns:
        Ordered leaf pieces; joined they equal ``text``
    """
    if len(text) <= min_size or depth >= max_depth:
        return [text]

    target_size = max(1, target_size)
    pieces = split_text_into_chunks(text, target_size, terminators)
    if len(pieces) <= 1:
        pieces = split_chunk_by_sentences(text, 2, terminators)
    if len(pieces) <= 1:
        pieces = split_in_half(text)
    if len(pieces) <= 1:
        return [text]

    next_target = max(1, math.ceil(target_size / 2))
    leaves = []
    for piece in pieces:
        leaves.extend(split_chunk_recursively(
            piece, next_target, min_size, max_depth, depth + 1, terminators
        ))
    return leaves
