"""Unit tests for reading and writing EPUB archives."""
import io
import zipfile

import pytest

from batch_translator.core.epub import (
    EpubStructureError,
    XmlParsingError,
    apply_translations,
    build_epub_units,
    collect_translations,
    load_epub_bytes,
    translated_files,
    write_epub_bytes,
)
from batch_translator.core.models import TranslationResult
from conftest import build_epub, chapter_xhtml

CH1 = "OEBPS/Text/ch1.xhtml"
CH2 = "OEBPS/Text/ch2.xhtml"


class TestLoad:

    def test_spine_order_and_nodes(self, sample_epub_bytes):
        book = load_epub_bytes(sample_epub_bytes, "book.epub")
        assert [chapter.file_name for chapter in book.chapters] == [CH1, CH2]
        assert book.opf_path == "OEBPS/content.opf"
        assert book.text_node_count == 7
        assert len(book.all_nodes) == 9
        assert "<title>One</title>" in book.chapters[0].head_html

    def test_malformed_chapter_is_skipped(self):
        data = build_epub({
            "ch1.xhtml": chapter_xhtml("One", ["Fine."]),
            "ch2.xhtml": "<html><body><p>broken</body></html>",
        })
        messages = []
        book = load_epub_bytes(data, log_callback=lambda level, message: messages.append(level))

        assert [chapter.file_name for chapter in book.chapters] == [CH1]
        assert book.skipped_files == [CH2]
        assert messages == ["warning"]

    def test_malformed_chapter_strict(self):
        data = build_epub({"ch1.xhtml": "<html><body><p>broken</body></html>"})
        with pytest.raises(XmlParsingError):
            load_epub_bytes(data, skip_invalid=False)

    def test_not_a_zip(self):
        with pytest.raises(EpubStructureError):
            load_epub_bytes(b"plain text")

    def test_missing_container(self):
        output = io.BytesIO()
        with zipfile.ZipFile(output, "w") as archive:
            archive.writestr("mimetype", "application/epub+zip")
        with pytest.raises(EpubStructureError):
            load_epub_bytes(output.getvalue())


class TestCollectTranslations:

    def test_segments_map_to_text_nodes(self, sample_epub_bytes, make_config):
        book = load_epub_bytes(sample_epub_bytes)
        units = build_epub_units(book, make_config(epub_max_nodes_per_chunk=3))
        results = [TranslationResult(1, "", "", True, translated_segments=["Trois.", "Deux"])]

        translations = collect_translations(units, results)

        assert translations == {f"{CH1}_3": "Trois.", f"{CH2}_0": "Deux"}

    def test_mismatched_or_failed_results_are_ignored(self, sample_epub_bytes, make_config):
        book = load_epub_bytes(sample_epub_bytes)
        units = build_epub_units(book, make_config(epub_max_nodes_per_chunk=3))
        results = [
            TranslationResult(0, "", "", True, translated_segments=["only one"]),
            TranslationResult(1, "", "", False, error="boom"),
        ]
        assert collect_translations(units, results) == {}


class TestWrite:

    def test_translated_archive(self, sample_epub_bytes):
        book = load_epub_bytes(sample_epub_bytes)
        translations = {f"{CH1}_1": "Premier paragraphe."}
        changed = translated_files(book, translations)
        assert changed == {CH1}

        data = write_epub_bytes(apply_translations(book, translations), changed)

        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            infos = archive.infolist()
            assert infos[0].filename == "mimetype"
            assert infos[0].compress_type == zipfile.ZIP_STORED
            assert archive.read("OEBPS/Images/pic.png") == b"\x89PNG fake image bytes"
        with zipfile.ZipFile(io.BytesIO(sample_epub_bytes)) as original, \
                zipfile.ZipFile(io.BytesIO(data)) as written:
            assert written.read(CH2) == original.read(CH2)

        reloaded = load_epub_bytes(data)
        assert reloaded.chapters[0].nodes[1].content == "Premier paragraphe."
        assert reloaded.chapters[0].nodes[2].content == "Second paragraph."

    def test_apply_does_not_touch_original(self, sample_epub_bytes):
        book = load_epub_bytes(sample_epub_bytes)
        apply_translations(book, {f"{CH1}_0": "Un"})
        assert book.chapters[0].nodes[0].content == "One"
