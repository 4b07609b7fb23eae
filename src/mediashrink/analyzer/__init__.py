"""File analysis: validation, probing and transcoding decisions."""

from mediashrink.analyzer.analyzer import FileAnalyzer
from mediashrink.analyzer.estimates import (
    SizeEstimate,
    estimate_output_size,
    heuristic_savings_ratio,
)
from mediashrink.analyzer.types import (
    AnalysisRejection,
    EstimateMethod,
    FileAnalysis,
    QualityDecision,
    RejectionReason,
    SkipReason,
    TranscodingDecision,
)

__all__ = [
    "AnalysisRejection",
    "EstimateMethod",
    "FileAnalysis",
    "FileAnalyzer",
    "QualityDecision",
    "RejectionReason",
    "SizeEstimate",
    "SkipReason",
    "TranscodingDecision",
    "estimate_output_size",
    "heuristic_savings_ratio",
]
