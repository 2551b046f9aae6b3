"""
Cleanup of raw model output before it is stored as a translation.

Each step is switched on by its own config flag; nothing runs when
``enable_post_processing`` is off.
"""

import re

from batch_translator.config import TranslationConfig

# Leading lines such as "## Translation result:" or "번역 결과:"
TRANSLATION_HEADER_PATTERN = re.compile(
    r'^\s*(?:#+\s*)?(?:\*\*)?(?:translation(?: result)?|translated text|번역 결과|번역문|翻訳結果|翻译结果)'
    r'(?:\*\*)?\s*:?\s*(?:\*\*)?\s*\n',
    re.IGNORECASE,
)
MARKDOWN_FENCE_PATTERN = re.compile(r'^\s*```[\w-]*\s*\n(.*?)\n\s*```\s*$', re.DOTALL)
CHUNK_INDEX_PATTERN = re.compile(r'^\s*\[(?:chunk|청크)\s*\d+(?:\s*/\s*\d+)?\]\s*\n?', re.IGNORECASE | re.MULTILINE)
WRAPPER_TAG_PATTERN = re.compile(r'</?main\b[^>]*>', re.IGNORECASE)
TRAILING_NEWLINES_PATTERN = re.compile(r'(\r?\n[ \t\r\n]*)$')


def remove_translation_headers(text: str) -> str:
    return TRANSLATION_HEADER_PATTERN.sub('', text, count=1)


def remove_markdown_blocks(text: str) -> str:
    match = MARKDOWN_FENCE_PATTERN.match(text)
    return match.group(1) if match else text


def remove_chunk_indexes(text: str) -> str:
    return CHUNK_INDEX_PATTERN.sub('', text)


def clean_html_tags(text: str) -> str:
    """Drop the ``<main>`` wrapper the default prompt puts around the source."""
    return WRAPPER_TAG_PATTERN.sub('', text)


def restore_trailing_newlines(original: str, translated: str) -> str:
    """
    Give the translation the same trailing line breaks as its source unit.

    Units are joined without a separator, so a unit that ended with a
    paragraph break must keep it for paragraphs to stay apart.
    """
    match = TRAILING_NEWLINES_PATTERN.search(original)
    if not match:
        return translated
    return translated.rstrip() + match.group(1)


def clean_translated_text(text: str, config: TranslationConfig) -> str:
    """Apply every enabled cleanup step to a model answer."""
    if not config.enable_post_processing or not text:
        return text

    if config.remove_markdown_blocks:
        text = remove_markdown_blocks(text)
    if config.remove_translation_headers:
        text = remove_translation_headers(text)
    if config.remove_chunk_indexes:
        text = remove_chunk_indexes(text)
    if config.clean_html_tags:
        text = clean_html_tags(text)
    return text.strip('\n')
