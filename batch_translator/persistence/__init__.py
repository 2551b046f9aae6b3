"""
Persistence of translation jobs: snapshot export, migration and import.
"""

from .snapshot import (
    SNAPSHOT_VERSION,
    MODE_TEXT,
    MODE_EPUB,
    GRANULARITY_TEXT_NODES,
    GRANULARITY_ALL_NODES,
    SnapshotValidationError,
    StoredResult,
    TranslationSnapshot,
    RestoredJob,
    migrate_snapshot,
    validate_snapshot,
    export_snapshot,
    import_snapshot,
    collect_segment_pool,
    detect_granularity,
    redistribute_segments,
)

__all__ = [
    'SNAPSHOT_VERSION',
    'MODE_TEXT',
    'MODE_EPUB',
    'GRANULARITY_TEXT_NODES',
    'GRANULARITY_ALL_NODES',
    'SnapshotValidationError',
    'StoredResult',
    'TranslationSnapshot',
    'RestoredJob',
    'migrate_snapshot',
    'validate_snapshot',
    'export_snapshot',
    'import_snapshot',
    'collect_segment_pool',
    'detect_granularity',
    'redistribute_segments',
]
