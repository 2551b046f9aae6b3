"""
File utilities for translation operations
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from batch_translator.config import TranslationConfig
from batch_translator.core.chunking import split_text_into_chunks
from batch_translator.core.epub.epub_package import (
    EpubBook,
    apply_translations,
    build_epub_units,
    collect_translations,
    translated_files,
    write_epub_bytes,
)
from batch_translator.core.models import GlossaryEntry, TranslationResult


def get_unique_output_path(output_path) -> str:
    """
    Add a number suffix to a path whose file already exists.

    Examples:
        book.epub -> book.epub (if it doesn't exist)
        book.epub -> book (1).epub (if book.epub exists)
    """
    path = Path(output_path)
    if not path.exists():
        return str(output_path)

    counter = 1
    while True:
        candidate = path.parent / f"{path.stem} ({counter}){path.suffix}"
        if not candidate.exists():
            return str(candidate)
        counter += 1
        if counter > 9999:
            raise RuntimeError(f"Could not find unique filename after 9999 attempts for: {output_path}")


async def read_text_file(path) -> str:
    async with aiofiles.open(path, 'r', encoding='utf-8') as f:
        return await f.read()


async def write_text_file(path, text: str) -> None:
    async with aiofiles.open(path, 'w', encoding='utf-8') as f:
        await f.write(text)


async def read_bytes_file(path) -> bytes:
    async with aiofiles.open(path, 'rb') as f:
        return await f.read()


async def write_bytes_file(path, data: bytes) -> None:
    async with aiofiles.open(path, 'wb') as f:
        await f.write(data)


async def read_snapshot_file(path) -> Dict[str, Any]:
    """Read a snapshot JSON file; validation happens in ``import_snapshot``."""
    return json.loads(await read_text_file(path))


async def write_snapshot_file(path, snapshot: Dict[str, Any]) -> None:
    await write_text_file(path, json.dumps(snapshot, ensure_ascii=False, indent=2))


async def load_glossary_file(path) -> List[GlossaryEntry]:
    """
    Read glossary entries from a JSON file.

    Accepts a list of entry objects, or an object with an ``entries`` list.
    """
    data = json.loads(await read_text_file(path))
    if isinstance(data, dict):
        data = data.get('entries', [])
    if not isinstance(data, list):
        raise ValueError(f"Glossary file {path} must contain a list of entries")
    return [GlossaryEntry.from_dict(item) for item in data if isinstance(item, dict) and item.get('keyword')]


def assemble_text(source_text: str, config: TranslationConfig,
                  results: List[TranslationResult]) -> str:
    """
    Join unit translations into the output document.

    Units without a successful result keep their source text, so the
    output always covers the whole input.
    """
    by_index = {result.chunk_index: result for result in results}
    parts = []
    for index, chunk in enumerate(split_text_into_chunks(source_text, config.chunk_size)):
        result = by_index.get(index)
        parts.append(result.translated_text if result is not None and result.success else chunk)
    return "".join(parts)


def assemble_epub(book: EpubBook, config: TranslationConfig,
                  results: List[TranslationResult]) -> bytes:
    """Archive bytes of the book with every translated node applied."""
    translations = collect_translations(build_epub_units(book, config), results)
    translated_book = apply_translations(book, translations)
    return write_epub_bytes(translated_book, translated_files(book, translations))


async def save_text_output(output_path, source_text: str, config: TranslationConfig,
                           results: List[TranslationResult]) -> None:
    await write_text_file(output_path, assemble_text(source_text, config, results))


async def save_epub_output(output_path, book: EpubBook, config: TranslationConfig,
                           results: List[TranslationResult]) -> None:
    await write_bytes_file(output_path, assemble_epub(book, config, results))


def default_output_path(input_path, target_language: Optional[str] = None) -> str:
    """``book.epub`` becomes ``book_translated.epub`` (or ``book_French.epub``)."""
    path = Path(input_path)
    tag = target_language or 'translated'
    return str(path.with_name(f"{path.stem}_{tag}{path.suffix}"))
