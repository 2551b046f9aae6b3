"""
Sentence and paragraph boundary detection for chunking.

Finds the cut position that breaks a text window at the most natural place:
blank line, then line break, then sentence end, then a hard cut.
"""

import re
from typing import Tuple, List, Optional
from .models import BoundaryType, ChunkBoundary


# Common abbreviations that shouldn't be treated as sentence endings
COMMON_ABBREVIATIONS = {
    'Dr.', 'Mr.', 'Mrs.', 'Ms.', 'Prof.', 'Sr.', 'Jr.', 'Inc.', 'Ltd.', 'Corp.',
    'etc.', 'vs.', 'i.e.', 'e.g.', 'cf.', 'Fig.', 'fig.', 'No.', 'Vol.', 'vol.',
    'p.', 'pp.', 'Ed.', 'ed.', 'Rev.', 'Gen.', 'Col.', 'Lt.', 'Capt.', 'Sgt.',
    'Ave.', 'Blvd.', 'St.', 'Rd.', 'Mt.', 'ft.', 'in.', 'oz.', 'lb.', 'kg.',
    'Jan.', 'Feb.', 'Mar.', 'Apr.', 'Jun.', 'Jul.', 'Aug.', 'Sep.', 'Oct.', 'Nov.', 'Dec.'
}

DEFAULT_TERMINATORS = [
    '.', '!', '?', '."', '?"', '!"', ".'", "?'", "!'", '.)',
    '。', '！', '？', '」', '』', '…',
]

# Full-width terminators end a sentence even when no space follows
CJK_TERMINATORS = {'。', '！', '？', '」', '』'}

# Regex patterns
URL_PATTERN = re.compile(r'https?://[^\s]+|www\.[^\s]+')
PARAGRAPH_BREAK_PATTERN = re.compile(r'\n[ \t\r]*\n')


def find_sentence_boundary(
    text: str,
    start_position: int,
    search_direction: str = "forward",
    max_search_distance: int = 500,
    terminators: Optional[List[str]] = None
) -> Tuple[int, str, float]:
    """
    Locate the nearest sentence-ending position in text.

    Args:
        text: Full text to search within
        start_position: Character position to start search
        search_direction: "forward" or "backward"
        max_search_distance: Maximum characters to search
        terminators: List of sentence-ending punctuation

    Returns:
        Tuple of (position, terminator_found, confidence_score). The position
        is just after the terminator; confidence is 1.0 when a boundary was
        found and 0.0 otherwise (position is then start_position).
    """
    if terminators is None:
        terminators = DEFAULT_TERMINATORS

    if not text or start_position < 0 or start_position > len(text):
        return (start_position, "", 0.0)

    ordered = sorted(terminators, key=len, reverse=True)
    if search_direction == "forward":
        return _search_forward(text, start_position, max_search_distance, ordered)
    return _search_backward(text, start_position, max_search_distance, ordered)


def _search_forward(
    text: str,
    start_position: int,
    max_distance: int,
    terminators: List[str]
) -> Tuple[int, str, float]:
    """Search forward for sentence boundary."""
    end_pos = min(start_position + max_distance, len(text))

    for i in range(start_position, end_pos):
        for term in terminators:
            if text[i:i + len(term)] == term and _is_valid_sentence_end(text, i, term):
                return (i + len(term), term, 1.0)

    return (start_position, "", 0.0)


def _search_backward(
    text: str,
    start_position: int,
    max_distance: int,
    terminators: List[str]
) -> Tuple[int, str, float]:
    """Search backward for sentence boundary ending at or before start_position."""
    begin_pos = max(start_position - max_distance, 0)

    for i in range(start_position - 1, begin_pos - 1, -1):
        for term in terminators:
            check_start = i - len(term) + 1
            if check_start < 0:
                continue
            if text[check_start:i + 1] == term and _is_valid_sentence_end(text, check_start, term):
                return (i + 1, term, 1.0)

    return (start_position, "", 0.0)


def _is_valid_sentence_end(text: str, position: int, terminator: str) -> bool:
    """
    Check if the terminator at position is a valid sentence ending.

    Avoids false positives from abbreviations, URLs, decimal numbers, etc.
    """
    end_pos = position + len(terminator)

    if terminator[-1] in CJK_TERMINATORS or terminator == '…':
        return True

    # Must be followed by whitespace, end of text, or closing punctuation
    if end_pos < len(text):
        next_char = text[end_pos]
        if not (next_char.isspace() or next_char in '")]}>\'”’'):
            return False

    if terminator.startswith('.'):
        word_start = position - 1
        while word_start >= 0 and text[word_start].isalpha():
            word_start -= 1
        word_start += 1

        potential_abbrev = text[word_start:position + 1]
        if potential_abbrev in COMMON_ABBREVIATIONS:
            return False

        # Single letter initials (e.g., "J. R. R.")
        if position - word_start == 1 and text[word_start].isupper():
            return False

        # Ellipsis
        if position > 0 and text[position - 1] == '.':
            return False

    # Inside a URL
    context_start = max(0, position - 100)
    context = text[context_start:end_pos]
    for match in URL_PATTERN.finditer(context):
        url_start_in_text = context_start + match.start()
        url_end_in_text = context_start + match.end()
        if url_start_in_text <= position < url_end_in_text:
            return False

    return True


def find_sentence_ends(text: str, terminators: Optional[List[str]] = None) -> List[int]:
    """
    Return every position just after a valid sentence ending, in order.

    The end of the text is never included.
    """
    ends = []
    position = 0
    while position < len(text):
        pos, term, confidence = find_sentence_boundary(
            text, position, "forward", len(text), terminators
        )
        if confidence < 1.0:
            break
        if pos < len(text):
            ends.append(pos)
        position = pos
    return ends


def find_cut_boundary(text: str, start: int, max_size: int,
                      terminators: Optional[List[str]] = None) -> ChunkBoundary:
    """
    Choose where the unit starting at ``start`` should end.

    The returned position is strictly greater than ``start`` and at most
    ``start + max_size``.

    Args:
        text: Full text being chunked
        start: Start of the current unit
        max_size: Maximum unit length
        terminators: Sentence terminators

    Returns:
        ChunkBoundary describing the cut
    """
    limit = min(start + max_size, len(text))
    window = text[start:limit]

    paragraph_ends = [m.end() for m in PARAGRAPH_BREAK_PATTERN.finditer(window)]
    if paragraph_ends:
        return ChunkBoundary(start + paragraph_ends[-1], BoundaryType.PARAGRAPH_END)

    newline = window.rfind('\n')
    if newline >= 0:
        return ChunkBoundary(start + newline + 1, BoundaryType.LINE_END)

    pos, _, confidence = find_sentence_boundary(
        text, limit, "backward", limit - start, terminators
    )
    if confidence == 1.0 and pos > start:
        return ChunkBoundary(pos, BoundaryType.SENTENCE_END)

    return ChunkBoundary(limit, BoundaryType.FORCED_SIZE)
