"""
Tests for glossary filtering and prompt construction.
"""

from batch_translator.config import NO_GLOSSARY_CONTEXT
from batch_translator.core.glossary import (
    build_prompt,
    format_glossary_entry,
    format_glossary_for_prompt,
    select_glossary_entries,
)
from batch_translator.core.models import GlossaryEntry


def entry(keyword, translated, count=0):
    return GlossaryEntry(keyword=keyword, translated_keyword=translated,
                         target_language="French", occurrence_count=count)


class TestSelectGlossaryEntries:

    def test_only_entries_found_in_text(self):
        entries = [entry("Dragon", "Dragon"), entry("Castle", "Château"), entry("Sword", "Épée")]
        selected = select_glossary_entries(entries, "The dragon flew over the castle.")
        assert [e.keyword for e in selected] == ["Dragon", "Castle"]

    def test_case_insensitive(self):
        selected = select_glossary_entries([entry("ALICE", "Alice")], "alice smiled")
        assert len(selected) == 1

    def test_sorted_by_occurrence(self):
        entries = [entry("a1", "x", 1), entry("a3", "x", 3), entry("a2", "x", 2)]
        selected = select_glossary_entries(entries, "a1 a2 a3")
        assert [e.keyword for e in selected] == ["a3", "a2", "a1"]

    def test_fifty_matching_entries_capped_at_three(self):
        """Only the three most frequent of fifty matching terms are injected."""
        entries = [entry(f"term{i:02d}", f"terme{i:02d}", count=i) for i in range(50)]
        text = " ".join(f"term{i:02d}" for i in range(50))
        selected = select_glossary_entries(entries, text, max_entries=3, max_chars=500)
        assert [e.keyword for e in selected] == ["term49", "term48", "term47"]

    def test_character_cap(self):
        entries = [entry("alpha", "A" * 40, 3), entry("beta", "B" * 40, 2), entry("gamma", "C" * 40, 1)]
        selected = select_glossary_entries(entries, "alpha beta gamma", max_entries=10, max_chars=120)
        assert [e.keyword for e in selected] == ["alpha", "beta"]

    def test_first_entry_kept_even_if_too_long(self):
        selected = select_glossary_entries([entry("long", "L" * 600)], "a long text", max_chars=100)
        assert len(selected) == 1

    def test_empty_keyword_ignored(self):
        assert select_glossary_entries([entry("", "x")], "anything") == []


class TestFormatting:

    def test_entry_line(self):
        assert format_glossary_entry(entry("Castle", "Château")) == "- Castle → Château (French)"

    def test_no_match_gives_marker(self):
        assert format_glossary_for_prompt([entry("Castle", "Château")], "no match") == NO_GLOSSARY_CONTEXT

    def test_lines_joined(self):
        text = format_glossary_for_prompt([entry("a", "b", 2), entry("c", "d", 1)], "a c")
        assert text == "- a → b (French)\n- c → d (French)"


class TestBuildPrompt:

    def test_slot_and_glossary(self, make_config):
        config = make_config(
            prompt_template="Glossary:\n{{glossary_context}}\nText:\n{{slot}}",
            enable_dynamic_glossary_injection=True,
        )
        prompt = build_prompt("The castle stood.", config, [entry("castle", "château")])
        assert prompt == "Glossary:\n- castle → château (French)\nText:\nThe castle stood."

    def test_injection_disabled_gives_marker(self, make_config):
        config = make_config(prompt_template="{{glossary_context}}|{{slot}}")
        prompt = build_prompt("castle", config, [entry("castle", "château")])
        assert prompt == f"{NO_GLOSSARY_CONTEXT}|castle"

    def test_text_containing_placeholder_is_left_alone(self, make_config):
        config = make_config(prompt_template="{{glossary_context}}|{{slot}}")
        prompt = build_prompt("literal {{glossary_context}} here", config)
        assert prompt == f"{NO_GLOSSARY_CONTEXT}|literal {{{{glossary_context}}}} here"

    def test_template_without_slot_appends_text(self, make_config):
        config = make_config(prompt_template="Translate:")
        assert build_prompt("Hello", config) == "Translate:\n\nHello"

    def test_default_template_wraps_text(self):
        from batch_translator.config import TranslationConfig
        prompt = build_prompt("Hello world", TranslationConfig())
        assert '<main id="content">Hello world</main>' in prompt
        assert NO_GLOSSARY_CONTEXT in prompt
