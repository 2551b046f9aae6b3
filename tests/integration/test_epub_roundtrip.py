"""
End-to-end EPUB translation: load, translate, write, reload.
"""

import io
import zipfile

import pytest

from batch_translator.core.epub import load_epub_bytes
from batch_translator.core.llm.gateway import ApiGateway
from batch_translator.core.models import JobState
from batch_translator.core.translator import TranslationOrchestrator
from batch_translator.persistence import export_snapshot, import_snapshot
from batch_translator.utils.file_utils import assemble_epub
from conftest import FakeProvider, blocking_handler


@pytest.mark.asyncio
async def test_every_text_node_is_translated(make_config, sample_epub_bytes):
    book = load_epub_bytes(sample_epub_bytes, "book.epub")
    config = make_config(epub_max_nodes_per_chunk=4, max_workers=2)
    orchestrator = TranslationOrchestrator(ApiGateway(FakeProvider()), config)

    results = await orchestrator.translate_epub(book)
    data = assemble_epub(book, config, results)

    assert orchestrator.job_state == JobState.COMPLETED
    translated = load_epub_bytes(data)
    texts = [node.content for node in translated.all_nodes if node.is_text]
    assert texts == [
        "T:One", "T:First paragraph.", "T:Second paragraph.", "T:Third one.",
        "T:Two", "T:Fourth paragraph.", "T:Fifth & last.",
    ]
    assert [node.type for node in translated.all_nodes] == [node.type for node in book.all_nodes]
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert archive.read("OEBPS/Images/pic.png") == b"\x89PNG fake image bytes"
        assert archive.read("mimetype") == b"application/epub+zip"


@pytest.mark.asyncio
async def test_blocked_node_stays_in_source_language(make_config, sample_epub_bytes):
    book = load_epub_bytes(sample_epub_bytes, "book.epub")
    config = make_config()
    orchestrator = TranslationOrchestrator(ApiGateway(FakeProvider(handler=blocking_handler("Third"))), config)

    results = await orchestrator.translate_epub(book)
    translated = load_epub_bytes(assemble_epub(book, config, results))

    texts = [node.content for node in translated.all_nodes if node.is_text]
    assert "Third one." in texts
    assert "T:Second paragraph." in texts


@pytest.mark.asyncio
async def test_resume_with_different_node_cap(make_config, sample_epub_bytes):
    book = load_epub_bytes(sample_epub_bytes, "book.epub")
    first_config = make_config(epub_max_nodes_per_chunk=3)
    first = await TranslationOrchestrator(ApiGateway(FakeProvider()), first_config).translate_epub(book)

    snapshot = export_snapshot(first_config, first, book=book)
    snapshot['config']['epub_max_nodes_per_chunk'] = 5
    restored = import_snapshot(snapshot, make_config())

    provider = FakeProvider()
    orchestrator = TranslationOrchestrator(ApiGateway(provider), restored.config)
    final = await orchestrator.translate_epub(restored.book, restored.results)

    assert provider.call_count == 0
    assert all(result.success for result in final)
    translated = load_epub_bytes(assemble_epub(restored.book, restored.config, final))
    assert all(node.content.startswith("T:") for node in translated.all_nodes if node.is_text)
