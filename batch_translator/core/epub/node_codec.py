"""
XHTML flattening and reconstruction.

A chapter document is flattened into an ordered list of nodes:

- ``text`` nodes carry the normalized text of one block (inline markup
  and ruby annotations removed) plus the tag name and attributes needed to
  re-emit it;
- ``image`` and ``ignored`` nodes carry their original markup verbatim and
  are never modified.

Node ids are ``{file_name}_{ordinal}`` so that parsing the same document
twice always yields the same ids.
"""

import html
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Union

from lxml import etree

from .exceptions import XmlParsingError

XHTML_NS = 'http://www.w3.org/1999/xhtml'
EPUB_NS = 'http://www.idpf.org/2007/ops'
XML_NS = 'http://www.w3.org/XML/1998/namespace'
XLINK_NS = 'http://www.w3.org/1999/xlink'

# Attribute namespaces that survive reconstruction, with the prefix used on output
ATTRIBUTE_PREFIXES = {
    XML_NS: 'xml',
    EPUB_NS: 'epub',
}

IMAGE_TAGS = {'img', 'svg'}
LEAF_BLOCK_TAGS = {'p', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'pre', 'hr'}
CONTAINER_TAGS = {
    'div', 'section', 'article', 'main', 'aside', 'header', 'footer',
    'blockquote', 'ul', 'ol', 'li', 'dl', 'dt', 'dd', 'table', 'tr', 'td', 'th',
    'body', 'form', 'nav',
}
# Pronunciation hints, not translatable content
RUBY_ANNOTATION_TAGS = {'rt', 'rp'}


class NodeType(Enum):
    TEXT = "text"
    IMAGE = "image"
    IGNORED = "ignored"


@dataclass
class EpubNode:
    """One structural element of a flattened chapter."""
    id: str
    type: NodeType
    tag: str
    content: Optional[str] = None
    html: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    image_path: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.type == NodeType.TEXT

    @property
    def char_count(self) -> int:
        """Characters counted toward a unit's budget (text nodes only)."""
        return len(self.content or '') if self.is_text else 0

    def with_content(self, content: str) -> 'EpubNode':
        """Return a copy of a text node carrying new content."""
        if not self.is_text:
            return self
        return replace(self, content=content)


def _local_name(element) -> str:
    return etree.QName(element).localname.lower()


def _is_element(node) -> bool:
    return isinstance(node.tag, str)


def extract_pure_text(element) -> str:
    """
    Text content of an element without ruby annotations, trimmed.

    ``rt``/``rp`` subtrees are skipped but the text that follows them
    (their tail) is kept.
    """
    parts = []

    def walk(el):
        if el.text:
            parts.append(el.text)
        for child in el:
            if _is_element(child) and _local_name(child) not in RUBY_ANNOTATION_TAGS:
                walk(child)
            if child.tail:
                parts.append(child.tail)

    walk(element)
    return ''.join(parts).strip()


def get_attributes(element) -> Dict[str, str]:
    """Attributes of an element with namespaced names rewritten as ``prefix:name``."""
    attrs = {}
    for name, value in element.attrib.items():
        qname = etree.QName(name)
        if qname.namespace is None:
            attrs[qname.localname] = value
        elif qname.namespace in ATTRIBUTE_PREFIXES:
            attrs[f"{ATTRIBUTE_PREFIXES[qname.namespace]}:{qname.localname}"] = value
    return attrs


def resolve_path(base_path: str, relative_path: str) -> str:
    """
    Resolve a reference found in ``base_path`` to an archive path.

    Absolute paths and URLs are returned unchanged; ``.`` and ``..``
    segments are collapsed.

    >>> resolve_path('OEBPS/Text/ch1.xhtml', '../Images/a.jpg')
    'OEBPS/Images/a.jpg'
    """
    if relative_path.startswith('/') or ':' in relative_path.split('/')[0]:
        return relative_path

    stack = base_path.split('/')[:-1]
    for part in relative_path.split('/'):
        if part in ('', '.'):
            continue
        if part == '..':
            if stack:
                stack.pop()
        else:
            stack.append(part)
    return '/'.join(stack)


def _image_reference(element, tag: str) -> Optional[str]:
    if tag == 'img':
        return element.get('src')
    for child in element.iter():
        if _is_element(child) and _local_name(child) == 'image':
            return child.get('href') or child.get(f'{{{XLINK_NS}}}href')
    return None


def _serialize(element) -> str:
    return etree.tostring(element, encoding='unicode', with_tail=False)


def parse_document(content: Union[str, bytes], file_name: str = ''):
    """Parse an XHTML document strictly; raise XmlParsingError on malformed input."""
    data = content.encode('utf-8') if isinstance(content, str) else content
    parser = etree.XMLParser(recover=False, resolve_entities=False, huge_tree=True)
    try:
        return etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        preview = data[:200].decode('utf-8', errors='replace')
        raise XmlParsingError(
            f"Malformed XHTML in {file_name or 'document'}: {e}",
            original_error=e,
            content_preview=preview,
            file_name=file_name,
        ) from e


def find_child(root, name: str):
    """First direct child element of ``root`` with the given local name."""
    for child in root:
        if _is_element(child) and _local_name(child) == name:
            return child
    return None


def parse_xhtml(content: Union[str, bytes], file_name: str) -> List[EpubNode]:
    """
    Flatten an XHTML document into an ordered node list.

    Args:
        content: Document markup
        file_name: Archive path of the document; used for ids and image paths

    Returns:
        Nodes in document order

    Raises:
        XmlParsingError: If the document is not well-formed
    """
    root = parse_document(content, file_name)
    body = find_child(root, 'body')
    if body is None:
        return []

    nodes: List[EpubNode] = []
    ordinal = 0

    def next_id() -> str:
        nonlocal ordinal
        node_id = f"{file_name}_{ordinal}"
        ordinal += 1
        return node_id

    def text_node(el, tag: str, node_id: str, content: str) -> EpubNode:
        return EpubNode(id=node_id, type=NodeType.TEXT, tag=tag,
                        content=content, attributes=get_attributes(el))

    def traverse(parent):
        for el in parent:
            if not _is_element(el):
                continue
            tag = _local_name(el)

            if tag in IMAGE_TAGS:
                reference = _image_reference(el, tag)
                nodes.append(EpubNode(
                    id=next_id(), type=NodeType.IMAGE, tag=tag, html=_serialize(el),
                    image_path=resolve_path(file_name, reference) if reference else None,
                ))
                continue

            if tag in LEAF_BLOCK_TAGS:
                node_id = next_id()
                if tag == 'hr':
                    nodes.append(EpubNode(id=node_id, type=NodeType.IGNORED, tag=tag, html=_serialize(el)))
                else:
                    text = extract_pure_text(el)
                    if text:
                        nodes.append(text_node(el, tag, node_id, text))
                continue

            if tag in CONTAINER_TAGS:
                has_block_children = any(
                    _is_element(child) and _local_name(child) in (LEAF_BLOCK_TAGS | CONTAINER_TAGS)
                    for child in el
                )
                if has_block_children:
                    traverse(el)
                    continue

            text = extract_pure_text(el)
            if text:
                nodes.append(text_node(el, tag, next_id(), text))

    traverse(body)
    return nodes


def _attributes_to_string(attributes: Dict[str, str]) -> str:
    return ''.join(f' {name}="{html.escape(value, quote=True)}"' for name, value in attributes.items())


def reconstruct_xhtml(nodes: List[EpubNode], head_html: Optional[str] = None,
                      html_attributes: Optional[Dict[str, str]] = None) -> str:
    """
    Rebuild a chapter document from its (possibly translated) node list.

    Text nodes become ``<tag attrs>escaped content</tag>``; image and
    ignored nodes are emitted exactly as stored.
    """
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<html xmlns="{XHTML_NS}" xmlns:epub="{EPUB_NS}"{_attributes_to_string(html_attributes or {})}>',
        head_html or '<head><title></title></head>',
        '<body>',
    ]
    for node in nodes:
        if node.is_text:
            attrs = _attributes_to_string(node.attributes)
            lines.append(f'  <{node.tag}{attrs}>{html.escape(node.content or "", quote=True)}</{node.tag}>')
        else:
            lines.append(f'  {node.html}')
    lines.append('</body>')
    lines.append('</html>')
    return '\n'.join(lines)
