"""Typed results of file analysis.

Expected "not worth transcoding" outcomes are values, not exceptions:
a file is either rejected before probing (AnalysisRejection) or probed and
given a TranscodingDecision listing accepted qualities and the reason every
other quality was skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from mediashrink.core.codecs import CodecEfficiency
from mediashrink.core.formatting import sized
from mediashrink.introspector.types import MediaInfo


class RejectionReason(Enum):
    """Why a file was rejected before a transcoding decision was made."""

    FILE_MISSING = "file_missing"
    NOT_A_FILE = "not_a_file"
    TOO_SMALL = "too_small"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PROBE_FAILED = "probe_failed"

    @property
    def is_failure(self) -> bool:
        """True if the rejection means the input itself is unusable."""
        return self in (
            RejectionReason.FILE_MISSING,
            RejectionReason.NOT_A_FILE,
            RejectionReason.PROBE_FAILED,
        )


class SkipReason(Enum):
    """Why a probed file, or one of its quality levels, was skipped."""

    UNKNOWN_CODEC = "unknown_codec"
    EFFICIENT_CODEC = "efficient_codec"
    NO_QUALITY_ACCEPTED = "no_quality_accepted"
    ALREADY_TRANSCODED = "already_transcoded"
    DATA_INFLATION = "data_inflation"
    INSUFFICIENT_SAVINGS = "insufficient_savings"


class EstimateMethod(Enum):
    """How an output size estimate was produced."""

    BITRATE = "bitrate"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class AnalysisRejection:
    reason: RejectionReason
    message: str


@dataclass(frozen=True)
class QualityDecision:
    """Outcome for one candidate quality level.

    Attributes:
        quality: Quality label (e.g. "720p").
        accepted: True if the quality should be produced.
        estimated_size: Estimated output size in bytes.
        estimated_savings: original size - estimated size (negative = growth).
        savings_percent: estimated_savings as a percentage of the original.
        method: Estimation method used.
        skip_reason: Why the quality was rejected, None if accepted.
        message: Human-readable explanation.
    """

    quality: str
    accepted: bool
    estimated_size: int
    estimated_savings: int
    savings_percent: float
    method: EstimateMethod
    skip_reason: SkipReason | None = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "quality": self.quality,
            "accepted": self.accepted,
            "estimated_size": sized(self.estimated_size),
            "estimated_savings": sized(self.estimated_savings),
            "savings_percent": round(self.savings_percent, 1),
            "method": self.method.value,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class TranscodingDecision:
    """Whether, and at which qualities, a probed file should be transcoded."""

    needs_transcoding: bool
    reason: str
    codec: CodecEfficiency
    recommended_qualities: list[str] = field(default_factory=list)
    qualities: dict[str, QualityDecision] = field(default_factory=dict)
    skip_reason: SkipReason | None = None

    @property
    def skip_reasons(self) -> dict[str, str]:
        """Diagnostic message for every rejected quality."""
        return {
            quality: decision.message
            for quality, decision in self.qualities.items()
            if not decision.accepted
        }

    @property
    def max_savings_percent(self) -> float:
        accepted = [d.savings_percent for d in self.qualities.values() if d.accepted]
        return max(accepted) if accepted else 0.0

    def to_dict(self) -> dict:
        return {
            "needs_transcoding": self.needs_transcoding,
            "reason": self.reason,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "codec": self.codec.codec,
            "codec_efficiency": self.codec.score,
            "codec_description": self.codec.description,
            "recommended_qualities": list(self.recommended_qualities),
            "qualities": {q: d.to_dict() for q, d in self.qualities.items()},
            "skip_reasons": self.skip_reasons,
        }


@dataclass(frozen=True)
class FileAnalysis:
    """Complete analysis of one candidate file."""

    path: str
    file_size: int
    media_info: MediaInfo | None = None
    decision: TranscodingDecision | None = None
    rejection: AnalysisRejection | None = None

    @property
    def is_valid(self) -> bool:
        return self.rejection is None

    @property
    def needs_transcoding(self) -> bool:
        return self.decision is not None and self.decision.needs_transcoding

    @property
    def recommended_qualities(self) -> list[str]:
        return list(self.decision.recommended_qualities) if self.decision else []

    @property
    def reason(self) -> str:
        """Human-readable outcome."""
        if self.rejection is not None:
            return self.rejection.message
        if self.decision is not None:
            return self.decision.reason
        return ""

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "file_size": sized(self.file_size),
            "is_valid": self.is_valid,
            "needs_transcoding": self.needs_transcoding,
            "reason": self.reason,
            "rejection": self.rejection.reason.value if self.rejection else None,
            "media_info": self.media_info.to_dict() if self.media_info else None,
            "decision": self.decision.to_dict() if self.decision else None,
        }
