"""
Centralized configuration class
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field, fields, asdict
from typing import Optional, List, Dict, Any
from dotenv import load_dotenv

# Setup debug logger for configuration
_config_logger = logging.getLogger('config')

# Check for DEBUG_MODE early (before .env is loaded, check environment)
_debug_mode = os.getenv('DEBUG_MODE', 'false').lower() == 'true'
if _debug_mode:
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug("DEBUG_MODE enabled - verbose logging active")

# .env is looked up in the current working directory
_env_file = Path.cwd() / '.env'
_dotenv_result = load_dotenv(_env_file)
if _debug_mode:
    _config_logger.debug(f"Looking for .env at: {_env_file.absolute()} (loaded: {_dotenv_result})")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


# Load from environment variables with defaults
DEBUG_MODE = _debug_mode
GEMINI_API_KEY = os.getenv('GEMINI_API_KEY', '')
DEFAULT_MODEL = os.getenv('DEFAULT_MODEL', 'gemini-2.5-flash')
REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '900'))

# Generation parameters
TEMPERATURE = float(os.getenv('TEMPERATURE', '0.7'))
TOP_P = float(os.getenv('TOP_P', '0.9'))
TOP_K = int(os.getenv('TOP_K', '40'))
MAX_OUTPUT_TOKENS = int(os.getenv('MAX_OUTPUT_TOKENS', '8192'))

# Scheduling
CHUNK_SIZE = int(os.getenv('CHUNK_SIZE', '10000'))
REQUESTS_PER_MINUTE = int(os.getenv('REQUESTS_PER_MINUTE', '2'))
MAX_WORKERS = int(os.getenv('MAX_WORKERS', '1'))

# Content-safety recovery by recursive splitting
USE_CONTENT_SAFETY_RETRY = _env_bool('USE_CONTENT_SAFETY_RETRY', 'true')
MAX_CONTENT_SAFETY_SPLIT_ATTEMPTS = int(os.getenv('MAX_CONTENT_SAFETY_SPLIT_ATTEMPTS', '5'))
MIN_CONTENT_SAFETY_CHUNK_SIZE = int(os.getenv('MIN_CONTENT_SAFETY_CHUNK_SIZE', '100'))
CONTENT_SAFETY_SPLIT_BY_SENTENCES = _env_bool('CONTENT_SAFETY_SPLIT_BY_SENTENCES', 'true')

# Glossary injection
ENABLE_DYNAMIC_GLOSSARY_INJECTION = _env_bool('ENABLE_DYNAMIC_GLOSSARY_INJECTION', 'false')
MAX_GLOSSARY_ENTRIES_PER_CHUNK = int(os.getenv('MAX_GLOSSARY_ENTRIES_PER_CHUNK', '3'))
MAX_GLOSSARY_CHARS_PER_CHUNK = int(os.getenv('MAX_GLOSSARY_CHARS_PER_CHUNK', '500'))

# EPUB batching
EPUB_CHUNK_SIZE = int(os.getenv('EPUB_CHUNK_SIZE', '5000'))
EPUB_MAX_NODES_PER_CHUNK = int(os.getenv('EPUB_MAX_NODES_PER_CHUNK', '30'))

# Chat-style requests with a cached conversation before the prompt
ENABLE_PREFILL_TRANSLATION = _env_bool('ENABLE_PREFILL_TRANSLATION', 'false')

# Post-processing of model output
ENABLE_POST_PROCESSING = _env_bool('ENABLE_POST_PROCESSING', 'true')

DEFAULT_TARGET_LANGUAGE = os.getenv('DEFAULT_TARGET_LANGUAGE', 'English')

# Literal substituted for {{glossary_context}} when no glossary entry applies
NO_GLOSSARY_CONTEXT = "No glossary context"

DEFAULT_PROMPT_TEMPLATE = f"""# Glossary context (when provided, use these translations for the listed terms)

{{{{glossary_context}}}}

## Source text
Translate the text inside the <main> element into {DEFAULT_TARGET_LANGUAGE}.
Keep line breaks and paragraph structure. Output ONLY the translation.

<main id="content">{{{{slot}}}}</main>"""

DEFAULT_PREFILL_SYSTEM_INSTRUCTION = (
    "You are an expert professional translator. Translate faithfully and naturally, "
    "keeping the meaning, tone and structure of the original. Output only the translation."
)

EPUB_SYSTEM_INSTRUCTION = (
    "You translate book segments. The input is a JSON array of objects with 'id' and 'text'. "
    "Answer with a JSON array of objects with 'id' and 'translated_text', one per input object, "
    "keeping every id unchanged. Output only the JSON array."
)

# Legacy camelCase keys found in older snapshots and web payloads
CONFIG_KEY_ALIASES = {
    'modelName': 'model_name',
    'topP': 'top_p',
    'topK': 'top_k',
    'maxOutputTokens': 'max_output_tokens',
    'chunkSize': 'chunk_size',
    'requestsPerMinute': 'requests_per_minute',
    'maxWorkers': 'max_workers',
    'prompts': 'prompt_template',
    'promptTemplate': 'prompt_template',
    'enablePrefillTranslation': 'enable_prefill_translation',
    'prefillSystemInstruction': 'prefill_system_instruction',
    'prefillCachedHistory': 'prefill_cached_history',
    'useContentSafetyRetry': 'use_content_safety_retry',
    'maxContentSafetySplitAttempts': 'max_content_safety_split_attempts',
    'minContentSafetyChunkSize': 'min_content_safety_chunk_size',
    'contentSafetySplitBySentences': 'content_safety_split_by_sentences',
    'enableDynamicGlossaryInjection': 'enable_dynamic_glossary_injection',
    'maxGlossaryEntriesPerChunkInjection': 'max_glossary_entries_per_chunk_injection',
    'maxGlossaryCharsPerChunkInjection': 'max_glossary_chars_per_chunk_injection',
    'epubChunkSize': 'epub_chunk_size',
    'epubMaxNodesPerChunk': 'epub_max_nodes_per_chunk',
    'enablePostProcessing': 'enable_post_processing',
    'removeTranslationHeaders': 'remove_translation_headers',
    'removeMarkdownBlocks': 'remove_markdown_blocks',
    'removeChunkIndexes': 'remove_chunk_indexes',
    'cleanHtmlTags': 'clean_html_tags',
    'apiKey': 'api_key',
}

# Fields that decide unit boundaries and prompts; these travel inside snapshots
SNAPSHOT_CONFIG_FIELDS = (
    'model_name', 'temperature', 'top_p', 'chunk_size', 'prompt_template',
    'use_content_safety_retry', 'max_content_safety_split_attempts',
    'min_content_safety_chunk_size', 'content_safety_split_by_sentences',
    'enable_dynamic_glossary_injection', 'max_glossary_entries_per_chunk_injection',
    'max_glossary_chars_per_chunk_injection', 'epub_chunk_size', 'epub_max_nodes_per_chunk',
)


@dataclass
class TranslationConfig:
    """Unified configuration for the translation pipeline"""

    # Model settings
    model_name: str = DEFAULT_MODEL
    temperature: float = TEMPERATURE
    top_p: float = TOP_P
    top_k: int = TOP_K
    max_output_tokens: int = MAX_OUTPUT_TOKENS
    api_key: str = GEMINI_API_KEY
    timeout: int = REQUEST_TIMEOUT

    # Scheduling
    chunk_size: int = CHUNK_SIZE
    requests_per_minute: int = REQUESTS_PER_MINUTE
    max_workers: int = MAX_WORKERS

    # Prompting
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    enable_prefill_translation: bool = ENABLE_PREFILL_TRANSLATION
    prefill_system_instruction: str = DEFAULT_PREFILL_SYSTEM_INSTRUCTION
    prefill_cached_history: List[Dict[str, Any]] = field(default_factory=list)

    # Content-safety recovery
    use_content_safety_retry: bool = USE_CONTENT_SAFETY_RETRY
    max_content_safety_split_attempts: int = MAX_CONTENT_SAFETY_SPLIT_ATTEMPTS
    min_content_safety_chunk_size: int = MIN_CONTENT_SAFETY_CHUNK_SIZE
    content_safety_split_by_sentences: bool = CONTENT_SAFETY_SPLIT_BY_SENTENCES

    # Glossary injection
    enable_dynamic_glossary_injection: bool = ENABLE_DYNAMIC_GLOSSARY_INJECTION
    max_glossary_entries_per_chunk_injection: int = MAX_GLOSSARY_ENTRIES_PER_CHUNK
    max_glossary_chars_per_chunk_injection: int = MAX_GLOSSARY_CHARS_PER_CHUNK

    # EPUB
    epub_chunk_size: int = EPUB_CHUNK_SIZE
    epub_max_nodes_per_chunk: int = EPUB_MAX_NODES_PER_CHUNK

    # Post-processing
    enable_post_processing: bool = ENABLE_POST_PROCESSING
    remove_translation_headers: bool = True
    remove_markdown_blocks: bool = True
    remove_chunk_indexes: bool = True
    clean_html_tags: bool = True

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.epub_chunk_size <= 0:
            raise ValueError(f"epub_chunk_size must be > 0, got {self.epub_chunk_size}")
        if self.epub_max_nodes_per_chunk < 1:
            raise ValueError(f"epub_max_nodes_per_chunk must be >= 1, got {self.epub_max_nodes_per_chunk}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.requests_per_minute < 0:
            raise ValueError(f"requests_per_minute must be >= 0, got {self.requests_per_minute}")
        if self.min_content_safety_chunk_size < 1:
            raise ValueError(
                f"min_content_safety_chunk_size must be >= 1, got {self.min_content_safety_chunk_size}"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]],
                  fallback: Optional['TranslationConfig'] = None) -> 'TranslationConfig':
        """
        Build a config from a (possibly partial or legacy) dictionary.

        Every field missing from ``data`` takes its value from ``fallback``,
        or from the class default when no fallback is given. Unknown keys
        are ignored.
        """
        base = asdict(fallback) if fallback is not None else {}
        known = {f.name for f in fields(cls)}

        values = dict(base)
        for key, value in (data or {}).items():
            name = CONFIG_KEY_ALIASES.get(key, key)
            if name in known and value is not None:
                values[name] = value

        _config_logger.debug(f"Config built from {len(data or {})} keys (fallback: {fallback is not None})")
        return cls(**values)

    @classmethod
    def from_cli_args(cls, args) -> 'TranslationConfig':
        """Create config from CLI arguments"""
        return cls(
            model_name=args.model,
            api_key=args.api_key,
            chunk_size=args.chunk_size,
            requests_per_minute=args.rpm,
            max_workers=args.workers,
            enable_dynamic_glossary_injection=bool(getattr(args, 'glossary', None)),
            enable_prefill_translation=getattr(args, 'prefill', ENABLE_PREFILL_TRANSLATION),
            enable_post_processing=not getattr(args, 'no_post_processing', False),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return asdict(self)

    def snapshot_subset(self) -> dict:
        """Return the fields stored in snapshots (never the API key)"""
        return {name: getattr(self, name) for name in SNAPSHOT_CONFIG_FIELDS}
