"""
Data models shared by the translation pipeline.

Units and results are created fresh for every run; persistence of these
objects is left to the caller (see ``persistence.snapshot``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


# Error marker carried by results whose call was abandoned by a stop request
CANCELLED_MARKER = "[cancelled]"


class JobState(Enum):
    """Lifecycle of one translate call"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERRORED = "errored"


class UnitState(Enum):
    """Lifecycle of one unit inside a job"""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class QualityIssueType(Enum):
    OMISSION = "omission"
    HALLUCINATION = "hallucination"


@dataclass
class TranslationResult:
    """
    Outcome of one unit.

    Failed results keep ``original_text`` so they can be retried;
    ``translated_segments`` holds the per-node strings of an EPUB unit.
    """
    chunk_index: int
    original_text: str
    translated_text: str = ""
    success: bool = False
    error: Optional[str] = None
    translated_segments: Optional[List[str]] = None

    @property
    def cancelled(self) -> bool:
        return not self.success and self.error == CANCELLED_MARKER


@dataclass
class JobProgress:
    """Aggregate counters of a run, reset at run start"""
    total_chunks: int = 0
    processed_chunks: int = 0
    successful_chunks: int = 0
    failed_chunks: int = 0
    current_status_message: str = ""
    current_chunk_processing: Optional[int] = None
    last_error_message: Optional[str] = None
    eta_seconds: Optional[int] = None

    @property
    def percentage(self) -> float:
        if self.total_chunks == 0:
            return 0.0
        return self.processed_chunks / self.total_chunks * 100


@dataclass
class GlossaryEntry:
    """Externally supplied term; read-only to the pipeline"""
    keyword: str
    translated_keyword: str
    target_language: str = ""
    occurrence_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GlossaryEntry':
        return cls(
            keyword=data.get('keyword', ''),
            translated_keyword=data.get('translated_keyword', data.get('translatedKeyword', '')),
            target_language=data.get('target_language', data.get('targetLanguage', '')),
            occurrence_count=int(data.get('occurrence_count', data.get('occurrenceCount', 0)) or 0),
        )


@dataclass
class QualityIssue:
    """A unit whose length ratio is an outlier for the job"""
    chunk_index: int
    issue_type: QualityIssueType
    z_score: float
    ratio: float


@dataclass
class LogEntry:
    """Structured log record handed to log sinks"""
    level: str
    message: str
    timestamp: float = 0.0
    data: Dict[str, Any] = field(default_factory=dict)
