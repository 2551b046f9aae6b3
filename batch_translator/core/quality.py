"""
Length-ratio quality check over a finished job.

A unit whose translated/original length ratio lies far below the job's
mean is flagged as a likely omission; far above, as a likely
hallucination.
"""

import statistics
from typing import List

from .models import QualityIssue, QualityIssueType, TranslationResult


def detect_quality_issues(results: List[TranslationResult], z_threshold: float = 2.0) -> List[QualityIssue]:
    """
    Flag successful units whose length ratio is an outlier.

    Args:
        results: Unit results of one job
        z_threshold: Absolute z-score from which a unit is reported

    Returns:
        Issues ordered by unit index
    """
    ratios = {}
    for result in results:
        original_length = len(result.original_text.strip())
        if result.success and original_length > 0:
            ratios[result.chunk_index] = len(result.translated_text.strip()) / original_length

    if len(ratios) < 3:
        return []

    mean = statistics.mean(ratios.values())
    stdev = statistics.pstdev(ratios.values())
    if stdev == 0:
        return []

    issues = []
    for index in sorted(ratios):
        z_score = (ratios[index] - mean) / stdev
        if abs(z_score) >= z_threshold:
            issue_type = QualityIssueType.OMISSION if z_score < 0 else QualityIssueType.HALLUCINATION
            issues.append(QualityIssue(
                chunk_index=index,
                issue_type=issue_type,
                z_score=round(z_score, 3),
                ratio=round(ratios[index], 3),
            ))
    return issues
