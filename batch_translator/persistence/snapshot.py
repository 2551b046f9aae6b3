"""
Job snapshots for resuming interrupted translations.

A snapshot stores the *original* source (text, or the EPUB archive as
base64), the config fields that decide unit boundaries, and the successful
results keyed by unit index. Boundaries are never stored: they are
recomputed at import time, so a snapshot survives a chunk size change at
the cost of re-translating the units after the point of divergence.

Schema history:

- version 1: camelCase keys, no version field, no segment granularity
- version 2: snake_case keys, explicit ``segment_granularity``
"""

import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from batch_translator.config import CONFIG_KEY_ALIASES, TranslationConfig
from batch_translator.core.chunking import split_text_into_chunks, unit_source_text
from batch_translator.core.epub.epub_package import EpubBook, build_epub_units, load_epub_bytes
from batch_translator.core.epub.node_codec import EpubNode
from batch_translator.core.exceptions import TranslationError
from batch_translator.core.models import JobProgress, TranslationResult

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 2

MODE_TEXT = 'text'
MODE_EPUB = 'epub'

GRANULARITY_TEXT_NODES = 'text_nodes'
GRANULARITY_ALL_NODES = 'all_nodes'
GRANULARITIES = (GRANULARITY_TEXT_NODES, GRANULARITY_ALL_NODES)

# Config field deciding unit boundaries, per mode
_SIZE_FIELDS = {MODE_TEXT: 'chunk_size', MODE_EPUB: 'epub_chunk_size'}

# version 1 key -> version 2 key
_V1_KEYS = {
    'originalText': 'source_text',
    'sourceText': 'source_text',
    'epubData': 'source_epub',
    'sourceEpub': 'source_epub',
    'fileType': 'mode',
    'fileName': 'source_name',
    'translationResults': 'results',
    'createdAt': 'created_at',
    'segmentGranularity': 'segment_granularity',
}
_V1_RESULT_KEYS = {
    'originalText': 'original_text',
    'translatedText': 'translated_text',
    'translatedSegments': 'segments',
    'translated_segments': 'segments',
}


class SnapshotValidationError(TranslationError):
    """A snapshot is malformed or from an unsupported schema version."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)


@dataclass
class StoredResult:
    """A successful unit as stored in a snapshot."""
    original_text: str
    translated_text: str
    segments: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'original_text': self.original_text, 'translated_text': self.translated_text}
        if self.segments is not None:
            data['segments'] = list(self.segments)
        return data


@dataclass
class TranslationSnapshot:
    """Validated, current-version view of a snapshot."""
    mode: str
    config: Dict[str, Any]
    results: Dict[int, StoredResult]
    source_text: Optional[str] = None
    source_epub: Optional[str] = None
    source_name: str = ''
    segment_granularity: Optional[str] = None
    created_at: float = 0.0
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'version': self.version,
            'mode': self.mode,
            'source_name': self.source_name,
            'created_at': self.created_at,
            'config': dict(self.config),
            'results': {str(index): stored.to_dict() for index, stored in sorted(self.results.items())},
        }
        if self.mode == MODE_TEXT:
            data['source_text'] = self.source_text
        else:
            data['source_epub'] = self.source_epub
            data['segment_granularity'] = self.segment_granularity
        return data

    @classmethod
    def from_dict(cls, data: Any) -> 'TranslationSnapshot':
        """Migrate and validate a raw snapshot dictionary."""
        data = validate_snapshot(migrate_snapshot(data))
        return cls(
            version=data['version'],
            mode=data['mode'],
            config=dict(data.get('config') or {}),
            results={
                int(index): StoredResult(
                    original_text=entry.get('original_text', ''),
                    translated_text=entry['translated_text'],
                    segments=entry.get('segments'),
                )
                for index, entry in data['results'].items()
            },
            source_text=data.get('source_text'),
            source_epub=data.get('source_epub'),
            source_name=data.get('source_name', ''),
            segment_granularity=data.get('segment_granularity'),
            created_at=float(data.get('created_at') or 0.0),
        )


@dataclass
class RestoredJob:
    """What a caller needs to resume a job from a snapshot."""
    config: TranslationConfig
    mode: str
    results: List[TranslationResult]
    progress: JobProgress
    source_text: Optional[str] = None
    book: Optional[EpubBook] = None
    source_name: str = ''
    skipped_units: List[int] = field(default_factory=list)


def _rename(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    renamed = {}
    for key, value in data.items():
        renamed.setdefault(mapping.get(key, key), value)
    return renamed


def migrate_snapshot(data: Any) -> Dict[str, Any]:
    """
    Bring a raw snapshot to the current schema version.

    Version 1 snapshots (camelCase keys, results as a list or a map) are
    renamed key by key. Unknown keys are kept and ignored later.

    Raises:
        SnapshotValidationError: If ``data`` is not a dictionary or its
            version is newer than this code understands
    """
    if not isinstance(data, dict):
        raise SnapshotValidationError("Snapshot must be a JSON object",
                                      {'type': type(data).__name__})

    version = data.get('version', 1)
    if not isinstance(version, int) or version < 1:
        raise SnapshotValidationError("Invalid snapshot version", {'version': version})
    if version > SNAPSHOT_VERSION:
        raise SnapshotValidationError("Snapshot was written by a newer version",
                                      {'version': version, 'supported': SNAPSHOT_VERSION})
    if version == SNAPSHOT_VERSION:
        return dict(data)

    migrated = _rename(data, _V1_KEYS)
    results = migrated.get('results') or {}
    if isinstance(results, list):
        results = {
            item.get('chunkIndex', item.get('chunk_index', position)): item
            for position, item in enumerate(results)
            if isinstance(item, dict)
        }
    if isinstance(results, dict):
        migrated_results = {}
        for index, entry in results.items():
            if not isinstance(entry, dict):
                migrated_results[index] = entry
                continue
            # Version 1 stored failures too; they must be translated again
            if entry.get('success') is False:
                continue
            migrated_results[index] = _rename(entry, _V1_RESULT_KEYS)
        results = migrated_results
    migrated['results'] = results

    if 'mode' not in migrated:
        migrated['mode'] = MODE_EPUB if migrated.get('source_epub') else MODE_TEXT
    migrated['version'] = SNAPSHOT_VERSION
    logger.debug(f"Migrated snapshot from version {version} to {SNAPSHOT_VERSION}")
    return migrated


def validate_snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a current-version snapshot before anything uses it.

    Raises:
        SnapshotValidationError: On the first problem found
    """
    mode = data.get('mode')
    if mode not in (MODE_TEXT, MODE_EPUB):
        raise SnapshotValidationError("Unknown snapshot mode", {'mode': mode})

    if mode == MODE_TEXT and not isinstance(data.get('source_text'), str):
        raise SnapshotValidationError("Text snapshot has no source text")
    if mode == MODE_EPUB and not isinstance(data.get('source_epub'), str):
        raise SnapshotValidationError("EPUB snapshot has no source archive")

    config = data.get('config')
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise SnapshotValidationError("Snapshot config must be an object")
    # Unit boundaries come from the snapshot, never from the current settings
    size_field = _SIZE_FIELDS[mode]
    stored = {CONFIG_KEY_ALIASES.get(key, key): value for key, value in config.items()}
    if stored.get(size_field) is None:
        raise SnapshotValidationError("Snapshot config has no chunk size", {'field': size_field})

    granularity = data.get('segment_granularity')
    if granularity is not None and granularity not in GRANULARITIES:
        raise SnapshotValidationError("Unknown segment granularity", {'granularity': granularity})

    results = data.get('results')
    if not isinstance(results, dict):
        raise SnapshotValidationError("Snapshot results must be an object keyed by unit index")
    for index, entry in results.items():
        try:
            if int(index) < 0:
                raise ValueError(index)
        except (TypeError, ValueError):
            raise SnapshotValidationError("Result key is not a unit index", {'key': index})
        if not isinstance(entry, dict) or not isinstance(entry.get('translated_text'), str):
            raise SnapshotValidationError("Result has no translated text", {'index': index})
        original = entry.get('original_text', '')
        if not isinstance(original, str):
            raise SnapshotValidationError("Result original text must be a string", {'index': index})
        segments = entry.get('segments')
        if segments is not None and (not isinstance(segments, list)
                                     or not all(isinstance(s, str) for s in segments)):
            raise SnapshotValidationError("Result segments must be a list of strings", {'index': index})
    return data


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------

def export_snapshot(config: TranslationConfig, results: List[TranslationResult],
                    source_text: Optional[str] = None, book: Optional[EpubBook] = None,
                    source_name: str = '') -> Dict[str, Any]:
    """
    Serialize a job for later resume.

    Exactly one of ``source_text`` and ``book`` must be given. Only
    successful results are stored, so failed units are attempted again.

    Returns:
        JSON-serializable dictionary
    """
    if (source_text is None) == (book is None):
        raise ValueError("export_snapshot needs exactly one of source_text or book")

    stored = {
        result.chunk_index: StoredResult(result.original_text, result.translated_text,
                                         list(result.translated_segments)
                                         if result.translated_segments is not None else None)
        for result in results
        if result.success
    }

    if book is not None:
        snapshot = TranslationSnapshot(
            mode=MODE_EPUB,
            config=config.snapshot_subset(),
            results=stored,
            source_epub=base64.b64encode(book.source_bytes).decode('ascii'),
            source_name=source_name or book.name,
            segment_granularity=GRANULARITY_TEXT_NODES,
            created_at=time.time(),
        )
    else:
        snapshot = TranslationSnapshot(
            mode=MODE_TEXT,
            config=config.snapshot_subset(),
            results=stored,
            source_text=source_text,
            source_name=source_name,
            created_at=time.time(),
        )

    logger.info(f"Exported snapshot with {len(stored)} of {len(results)} results")
    return snapshot.to_dict()


# ----------------------------------------------------------------------
# Import
# ----------------------------------------------------------------------

def _restore_text_results(source_text: str, stored: Dict[int, StoredResult],
                          config: TranslationConfig) -> tuple:
    chunks = split_text_into_chunks(source_text, config.chunk_size)
    results = []
    for index, chunk in enumerate(chunks):
        entry = stored.get(index)
        if entry is None:
            continue
        if entry.original_text and entry.original_text != chunk:
            logger.info(f"Unit boundaries diverge from the snapshot at unit {index}")
            break
        results.append(TranslationResult(index, chunk, entry.translated_text, True))
    return results, len(chunks)


def collect_segment_pool(stored: Dict[int, StoredResult]) -> List[str]:
    """
    Flat list of stored segments in unit order, up to the first gap.

    A missing unit, or one stored without segments, ends the pool:
    segments after a gap cannot be placed safely.
    """
    pool = []
    index = 0
    while index in stored and stored[index].segments is not None:
        pool.extend(stored[index].segments)
        index += 1
    return pool


def detect_granularity(stored: Dict[int, StoredResult], units: List[List[EpubNode]]) -> str:
    """
    Guess the segment granularity of a snapshot written without it.

    Compares the segment count of unit 0 with its text node count and its
    total node count. When both match (a unit without non-text nodes) the
    answer is ambiguous and text-node granularity is assumed.
    """
    first = stored.get(0)
    if first is None or first.segments is None or not units:
        return GRANULARITY_TEXT_NODES

    count = len(first.segments)
    text_count = sum(1 for node in units[0] if node.is_text)
    if count == text_count:
        return GRANULARITY_TEXT_NODES
    if count == len(units[0]):
        return GRANULARITY_ALL_NODES
    logger.warning(f"Snapshot unit 0 has {count} segments for {text_count} text nodes "
                   f"and {len(units[0])} nodes; assuming text-node granularity")
    return GRANULARITY_TEXT_NODES


def redistribute_segments(pool: List[str], units: List[List[EpubNode]],
                          granularity: str) -> List[TranslationResult]:
    """
    Deal a flat segment pool out over freshly computed units.

    Stops at the first unit whose requirement the remaining pool cannot
    fill; later units stay untranslated.
    """
    results = []
    position = 0
    for index, unit in enumerate(units):
        needed = len(unit) if granularity == GRANULARITY_ALL_NODES else sum(1 for n in unit if n.is_text)
        if len(pool) - position < needed:
            break
        taken = pool[position:position + needed]
        position += needed

        if granularity == GRANULARITY_ALL_NODES:
            segments = [segment for node, segment in zip(unit, taken) if node.is_text]
        else:
            segments = taken
        results.append(TranslationResult(
            index, unit_source_text(unit), "\n\n".join(segments), True, translated_segments=segments,
        ))
    return results


def _restore_epub_results(snapshot: TranslationSnapshot, book: EpubBook,
                          config: TranslationConfig) -> tuple:
    units = build_epub_units(book, config)
    granularity = snapshot.segment_granularity or detect_granularity(snapshot.results, units)
    pool = collect_segment_pool(snapshot.results)
    logger.debug(f"Redistributing {len(pool)} segments ({granularity}) over {len(units)} units")
    return redistribute_segments(pool, units, granularity), len(units)


def import_snapshot(data: Any, current_config: Optional[TranslationConfig] = None) -> RestoredJob:
    """
    Rebuild a resumable job from a snapshot.

    Args:
        data: Raw snapshot dictionary (any supported version)
        current_config: Supplies every config field the snapshot lacks

    Returns:
        RestoredJob whose ``results`` can be passed as prior results to the
        orchestrator

    Raises:
        SnapshotValidationError: If the snapshot is malformed
        EpubStructureError: If the stored EPUB cannot be read
    """
    snapshot = TranslationSnapshot.from_dict(data)
    try:
        config = TranslationConfig.from_dict(snapshot.config, fallback=current_config)
    except (TypeError, ValueError) as e:
        raise SnapshotValidationError(f"Snapshot config is invalid: {e}") from e

    book = None
    if snapshot.mode == MODE_TEXT:
        results, total = _restore_text_results(snapshot.source_text, snapshot.results, config)
    else:
        try:
            epub_bytes = base64.b64decode(snapshot.source_epub, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SnapshotValidationError("Stored EPUB is not valid base64") from e
        book = load_epub_bytes(epub_bytes, snapshot.source_name)
        results, total = _restore_epub_results(snapshot, book, config)

    restored_indexes = {result.chunk_index for result in results}
    skipped = sorted(index for index in snapshot.results if index not in restored_indexes)
    progress = JobProgress(
        total_chunks=total,
        processed_chunks=len(results),
        successful_chunks=len(results),
        current_status_message=f"Restored {len(results)}/{total} units from snapshot",
    )
    logger.info(f"Imported {snapshot.mode} snapshot: {len(results)}/{total} units restored")

    return RestoredJob(
        config=config,
        mode=snapshot.mode,
        results=results,
        progress=progress,
        source_text=snapshot.source_text,
        book=book,
        source_name=snapshot.source_name,
        skipped_units=skipped,
    )
