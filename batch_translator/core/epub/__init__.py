"""
EPUB support

Components:
    - node_codec: flatten XHTML chapters into nodes and rebuild them
    - epub_package: read the OPF spine, write the translated archive
    - translator: JSON batch translation of text nodes
"""

from .exceptions import EpubTranslationError, EpubStructureError, XmlParsingError
from .node_codec import EpubNode, NodeType, parse_xhtml, reconstruct_xhtml, resolve_path
from .epub_package import (
    EpubBook,
    EpubChapter,
    load_epub,
    load_epub_bytes,
    build_epub_units,
    collect_translations,
    apply_translations,
    translated_files,
    write_epub,
    write_epub_bytes,
)

__all__ = [
    'EpubTranslationError',
    'EpubStructureError',
    'XmlParsingError',
    'EpubNode',
    'NodeType',
    'parse_xhtml',
    'reconstruct_xhtml',
    'resolve_path',
    'EpubBook',
    'EpubChapter',
    'load_epub',
    'load_epub_bytes',
    'build_epub_units',
    'collect_translations',
    'apply_translations',
    'translated_files',
    'write_epub',
    'write_epub_bytes',
]
