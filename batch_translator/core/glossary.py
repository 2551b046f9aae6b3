"""
Glossary injection and prompt construction.
"""

from typing import Iterable, List, Optional

from batch_translator.config import NO_GLOSSARY_CONTEXT, TranslationConfig
from .models import GlossaryEntry

SLOT_PLACEHOLDER = "{{slot}}"
GLOSSARY_PLACEHOLDER = "{{glossary_context}}"


def format_glossary_entry(entry: GlossaryEntry) -> str:
    return f"- {entry.keyword} → {entry.translated_keyword} ({entry.target_language})"


def select_glossary_entries(entries: Iterable[GlossaryEntry], chunk_text: str,
                            max_entries: int = 30, max_chars: int = 2000) -> List[GlossaryEntry]:
    """
    Pick the glossary entries worth injecting for one unit.

    Only entries whose keyword occurs in the text (case-insensitive) are
    considered, most frequent first. Entries are added while both the entry
    cap and the character cap hold; the first relevant entry is always
    kept even if it alone exceeds ``max_chars``.
    """
    chunk_lower = chunk_text.lower()
    relevant = sorted(
        (e for e in entries if e.keyword and e.keyword.lower() in chunk_lower),
        key=lambda e: e.occurrence_count,
        reverse=True,
    )

    selected: List[GlossaryEntry] = []
    current_chars = 0
    for entry in relevant:
        if len(selected) >= max_entries:
            break
        entry_length = len(format_glossary_entry(entry))
        if current_chars + entry_length > max_chars and selected:
            break
        selected.append(entry)
        current_chars += entry_length + 1

    return selected


def format_glossary_for_prompt(entries: Iterable[GlossaryEntry], chunk_text: str,
                               max_entries: int = 30, max_chars: int = 2000) -> str:
    """Render the selected entries one per line, or the no-context marker."""
    selected = select_glossary_entries(entries, chunk_text, max_entries, max_chars)
    if not selected:
        return NO_GLOSSARY_CONTEXT
    return "\n".join(format_glossary_entry(entry) for entry in selected)


def build_prompt(chunk_text: str, config: TranslationConfig,
                 glossary: Optional[Iterable[GlossaryEntry]] = None,
                 template: Optional[str] = None) -> str:
    """
    Fill the prompt template for one unit.

    The glossary placeholder is filled before the text is inserted, so
    placeholder-like strings inside the text are left alone.
    """
    prompt = template if template is not None else config.prompt_template

    if GLOSSARY_PLACEHOLDER in prompt:
        if config.enable_dynamic_glossary_injection:
            context = format_glossary_for_prompt(
                glossary or [],
                chunk_text,
                config.max_glossary_entries_per_chunk_injection,
                config.max_glossary_chars_per_chunk_injection,
            )
        else:
            context = NO_GLOSSARY_CONTEXT
        prompt = prompt.replace(GLOSSARY_PLACEHOLDER, context, 1)

    if SLOT_PLACEHOLDER in prompt:
        return prompt.replace(SLOT_PLACEHOLDER, chunk_text, 1)
    return f"{prompt}\n\n{chunk_text}"
