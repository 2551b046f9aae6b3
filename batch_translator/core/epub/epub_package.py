"""
EPUB package reading and writing.

Reads ``META-INF/container.xml`` to find the OPF package, follows its
spine to list chapter documents in reading order, and flattens each one
with ``node_codec``. Writing copies every archive member unchanged except
the chapters that received translations.
"""

import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote

from lxml import etree

from batch_translator.config import TranslationConfig
from ..chunking.node_chunker import chunk_nodes
from ..models import TranslationResult
from .exceptions import EpubStructureError, XmlParsingError
from .node_codec import (
    EpubNode,
    find_child,
    get_attributes,
    parse_document,
    parse_xhtml,
    reconstruct_xhtml,
    resolve_path,
)

logger = logging.getLogger(__name__)

NAMESPACES = {
    'container': 'urn:oasis:names:tc:opendocument:xmlns:container',
    'opf': 'http://www.idpf.org/2007/opf',
}

XHTML_MEDIA_TYPES = {'application/xhtml+xml', 'text/html'}
XHTML_SUFFIXES = ('.xhtml', '.html', '.htm')


@dataclass
class EpubChapter:
    """One spine document and its flattened nodes."""
    file_name: str
    nodes: List[EpubNode]
    head_html: Optional[str] = None
    html_attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class EpubBook:
    """A loaded EPUB: original archive bytes plus flattened chapters."""
    source_bytes: bytes
    chapters: List[EpubChapter]
    opf_path: str = ''
    name: str = ''
    skipped_files: List[str] = field(default_factory=list)

    @property
    def all_nodes(self) -> List[EpubNode]:
        return [node for chapter in self.chapters for node in chapter.nodes]

    @property
    def text_node_count(self) -> int:
        return sum(1 for node in self.all_nodes if node.is_text)


def _read_xml(archive: zipfile.ZipFile, path: str):
    try:
        data = archive.read(path)
    except KeyError as e:
        raise EpubStructureError(f"Missing file in EPUB: {path}") from e
    try:
        return etree.fromstring(data, etree.XMLParser(resolve_entities=False))
    except etree.XMLSyntaxError as e:
        raise EpubStructureError(f"Invalid XML in {path}: {e}") from e


def find_opf_path(archive: zipfile.ZipFile) -> str:
    container = _read_xml(archive, 'META-INF/container.xml')
    rootfile = container.find('.//container:rootfile', namespaces=NAMESPACES)
    if rootfile is None or not rootfile.get('full-path'):
        raise EpubStructureError("container.xml does not name an OPF package")
    return rootfile.get('full-path')


def spine_documents(archive: zipfile.ZipFile, opf_path: str) -> List[str]:
    """Archive paths of the XHTML spine documents, in reading order."""
    opf = _read_xml(archive, opf_path)
    manifest = {}
    for item in opf.iterfind('.//opf:manifest/opf:item', namespaces=NAMESPACES):
        manifest[item.get('id')] = (item.get('href', ''), item.get('media-type', ''))

    spine = opf.find('.//opf:spine', namespaces=NAMESPACES)
    if spine is None:
        raise EpubStructureError(f"No spine in {opf_path}")

    documents = []
    for itemref in spine.iterfind('opf:itemref', namespaces=NAMESPACES):
        href, media_type = manifest.get(itemref.get('idref'), ('', ''))
        if not href:
            continue
        if media_type not in XHTML_MEDIA_TYPES and not href.lower().endswith(XHTML_SUFFIXES):
            continue
        documents.append(resolve_path(opf_path, unquote(href)))
    return documents


def load_epub_bytes(data: bytes, name: str = '', skip_invalid: bool = True,
                    log_callback: Optional[Callable[[str, str], None]] = None) -> EpubBook:
    """
    Parse an EPUB archive held in memory.

    Args:
        data: Archive bytes
        name: Display name of the book
        skip_invalid: Skip malformed chapter documents instead of failing
        log_callback: Receives ``(level, message)`` for skipped documents

    Raises:
        EpubStructureError: If the archive, container or package is unusable
        XmlParsingError: If a chapter is malformed and ``skip_invalid`` is off
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise EpubStructureError(f"Not a valid EPUB archive: {e}") from e

    with archive:
        opf_path = find_opf_path(archive)
        chapters = []
        skipped = []
        for path in spine_documents(archive, opf_path):
            try:
                content = archive.read(path)
            except KeyError:
                logger.warning(f"Spine document missing from archive: {path}")
                skipped.append(path)
                continue

            try:
                nodes = parse_xhtml(content, path)
                root = parse_document(content, path)
            except XmlParsingError as e:
                if not skip_invalid:
                    raise
                message = f"Skipping malformed chapter {path}: {e}"
                logger.warning(message)
                if log_callback:
                    log_callback('warning', message)
                skipped.append(path)
                continue

            head = find_child(root, 'head')
            chapters.append(EpubChapter(
                file_name=path,
                nodes=nodes,
                head_html=etree.tostring(head, encoding='unicode', with_tail=False) if head is not None else None,
                html_attributes=get_attributes(root),
            ))

    logger.debug(f"Loaded {len(chapters)} chapters from {name or 'EPUB'} ({len(skipped)} skipped)")
    return EpubBook(source_bytes=data, chapters=chapters, opf_path=opf_path, name=name, skipped_files=skipped)


def load_epub(path, skip_invalid: bool = True,
              log_callback: Optional[Callable[[str, str], None]] = None) -> EpubBook:
    """Read and parse an EPUB file from disk."""
    path = Path(path)
    return load_epub_bytes(path.read_bytes(), path.name, skip_invalid, log_callback)


def build_epub_units(book: EpubBook, config: TranslationConfig) -> List[List[EpubNode]]:
    """Translation units of a book under the given settings."""
    return chunk_nodes(book.all_nodes, config.epub_chunk_size, config.epub_max_nodes_per_chunk)


def collect_translations(units: List[List[EpubNode]],
                         results: List[TranslationResult]) -> Dict[str, str]:
    """
    Map text node ids to translated text from unit results.

    Only successful results whose segment count matches the unit's text
    nodes contribute.
    """
    translations = {}
    by_index = {result.chunk_index: result for result in results}
    for index, unit in enumerate(units):
        result = by_index.get(index)
        if result is None or not result.success or result.translated_segments is None:
            continue
        text_nodes = [node for node in unit if node.is_text]
        if len(text_nodes) != len(result.translated_segments):
            logger.warning(f"Unit {index}: {len(result.translated_segments)} segments for {len(text_nodes)} text nodes, ignored")
            continue
        for node, segment in zip(text_nodes, result.translated_segments):
            translations[node.id] = segment
    return translations


def apply_translations(book: EpubBook, translations: Dict[str, str]) -> EpubBook:
    """Return a copy of the book whose text nodes carry the given translations."""
    chapters = []
    for chapter in book.chapters:
        nodes = [
            node.with_content(translations[node.id]) if node.id in translations else node
            for node in chapter.nodes
        ]
        chapters.append(EpubChapter(chapter.file_name, nodes, chapter.head_html, dict(chapter.html_attributes)))
    return EpubBook(book.source_bytes, chapters, book.opf_path, book.name, list(book.skipped_files))


def write_epub_bytes(book: EpubBook, changed_files: Optional[set] = None) -> bytes:
    """
    Serialize the book into a new archive.

    Chapters listed in ``changed_files`` (all chapters when None) are
    rebuilt from their nodes; every other member is copied unchanged.
    ``mimetype`` is written first and stored uncompressed.
    """
    rebuilt = {
        chapter.file_name: reconstruct_xhtml(chapter.nodes, chapter.head_html, chapter.html_attributes)
        for chapter in book.chapters
        if changed_files is None or chapter.file_name in changed_files
    }

    output = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(book.source_bytes)) as source, \
            zipfile.ZipFile(output, 'w', zipfile.ZIP_DEFLATED) as target:
        names = source.namelist()
        if 'mimetype' in names:
            target.writestr(zipfile.ZipInfo('mimetype'), source.read('mimetype'), compress_type=zipfile.ZIP_STORED)
        for info in source.infolist():
            if info.filename == 'mimetype':
                continue
            if info.filename in rebuilt:
                target.writestr(info.filename, rebuilt[info.filename].encode('utf-8'))
            else:
                target.writestr(info, source.read(info.filename))
    return output.getvalue()


def translated_files(book: EpubBook, translations: Dict[str, str]) -> set:
    """Chapter files containing at least one translated node."""
    return {
        chapter.file_name for chapter in book.chapters
        if any(node.id in translations for node in chapter.nodes)
    }


def write_epub(book: EpubBook, output_path, changed_files: Optional[set] = None) -> None:
    Path(output_path).write_bytes(write_epub_bytes(book, changed_files))
