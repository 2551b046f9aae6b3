"""
Node-list chunking for EPUB translation.

Units are contiguous runs of nodes; boundaries only fall between nodes.
"""

import logging
from typing import List, TYPE_CHECKING

from .models import ChunkingConfigurationError

if TYPE_CHECKING:
    from ..epub.node_codec import EpubNode

logger = logging.getLogger(__name__)


def chunk_nodes(nodes: List['EpubNode'], chunk_size: int, max_nodes: int) -> List[List['EpubNode']]:
    """
    Group nodes into ordered units.

    A new unit starts before a node that would push the unit's text
    characters above ``chunk_size`` or its node count above ``max_nodes``.
    Only text nodes count toward the character budget; every node counts
    toward the node cap. A single node larger than ``chunk_size`` forms a
    unit of its own.

    Args:
        nodes: Flattened nodes in reading order
        chunk_size: Character budget per unit
        max_nodes: Node cap per unit

    Returns:
        List of units, each a list of nodes
    """
    if chunk_size <= 0 or max_nodes < 1:
        raise ChunkingConfigurationError(
            f"chunk_size must be > 0 and max_nodes >= 1 (got {chunk_size}, {max_nodes})"
        )

    units: List[List['EpubNode']] = []
    current: List['EpubNode'] = []
    current_chars = 0

    for node in nodes:
        if current and (current_chars + node.char_count > chunk_size or len(current) + 1 > max_nodes):
            units.append(current)
            current = []
            current_chars = 0
        current.append(node)
        current_chars += node.char_count

    if current:
        units.append(current)

    logger.debug(f"Grouped {len(nodes)} nodes into {len(units)} units")
    return units


def unit_source_text(unit: List['EpubNode']) -> str:
    """Text of a unit's text nodes joined by blank lines; used for skip checks and review."""
    return "\n\n".join(node.content for node in unit if node.is_text)
