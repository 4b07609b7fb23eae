"""File analyzer: decides whether and at which qualities to transcode."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from mediashrink.analyzer.estimates import estimate_output_size
from mediashrink.analyzer.types import (
    AnalysisRejection,
    FileAnalysis,
    QualityDecision,
    RejectionReason,
    SkipReason,
    TranscodingDecision,
)
from mediashrink.config.models import MIB, AnalyzerConfig
from mediashrink.core.codecs import (
    UNKNOWN_CODEC,
    get_codec_efficiency,
    normalize_codec,
)
from mediashrink.core.file_utils import get_file_size, iter_files, normalize_path
from mediashrink.core.formatting import format_file_size, sized
from mediashrink.db.store import JobStore
from mediashrink.events import BatchAnalysisProgress, EventBus
from mediashrink.introspector.interface import (
    MediaIntrospectionError,
    MediaIntrospector,
)
from mediashrink.introspector.types import MediaInfo

logger = logging.getLogger(__name__)

GIB = 1024**3


class FileAnalyzer:
    """Inspects candidate files and produces FileAnalysis values.

    Args:
        config: Analyzer thresholds and estimation tables.
        introspector: Media probe.
        store: Used to find (and purge stale) previous results.
        bus: Optional event bus for batch progress events.
    """

    def __init__(
        self,
        config: AnalyzerConfig,
        introspector: MediaIntrospector,
        store: JobStore,
        bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self._introspector = introspector
        self._store = store
        self._bus = bus

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def validate_file(self, path: Path) -> AnalysisRejection | None:
        """Check existence, size and extension. Returns None if acceptable."""
        if not path.exists():
            return AnalysisRejection(
                RejectionReason.FILE_MISSING, f"File not found: {path}"
            )
        if not path.is_file():
            return AnalysisRejection(
                RejectionReason.NOT_A_FILE, f"Not a regular file: {path}"
            )

        size = get_file_size(path) or 0
        minimum = self.config.min_file_size_bytes
        if size < minimum:
            return AnalysisRejection(
                RejectionReason.TOO_SMALL,
                f"File too small: {format_file_size(size)} "
                f"(minimum: {format_file_size(minimum)})",
            )

        extension = path.suffix.casefold()
        if extension not in self.config.supported_extensions:
            return AnalysisRejection(
                RejectionReason.UNSUPPORTED_FORMAT,
                f"Unsupported format: {extension or '(none)'}",
            )
        return None

    def analyze(self, path: Path | str) -> FileAnalysis:
        """Analyze one file.

        Never raises for expected conditions: missing, small, unsupported or
        unprobeable files come back as a FileAnalysis with a rejection.
        """
        path = Path(normalize_path(path))
        rejection = self.validate_file(path)
        size = get_file_size(path) or 0
        if rejection is not None:
            logger.info("Rejected %s: %s", path.name, rejection.message)
            return FileAnalysis(path=str(path), file_size=size, rejection=rejection)

        try:
            media_info = self._introspector.get_media_info(path)
        except MediaIntrospectionError as e:
            logger.warning("Probe failed for %s: %s", path, e)
            return FileAnalysis(
                path=str(path),
                file_size=size,
                rejection=AnalysisRejection(
                    RejectionReason.PROBE_FAILED, f"Probe failed: {e}"
                ),
            )

        decision = self.decide_transcoding_need(media_info, path)
        logger.info(
            "Analyzed %s: %s",
            path.name,
            decision.reason,
            extra={
                "codec": decision.codec.codec,
                "recommended": decision.recommended_qualities,
            },
        )
        return FileAnalysis(
            path=str(path), file_size=size, media_info=media_info, decision=decision
        )

    def decide_transcoding_need(
        self, media_info: MediaInfo, path: Path | str
    ) -> TranscodingDecision:
        """Decide which candidate qualities are worth producing.

        Args:
            media_info: Probed properties of the file.
            path: The file (used for previous-result lookup and size).

        Returns:
            TranscodingDecision with a QualityDecision per candidate quality
            when the codec is inefficient, or none when the file is skipped
            outright.
        """
        path = Path(normalize_path(path))
        codec = get_codec_efficiency(media_info.video_codec)

        if codec.codec == UNKNOWN_CODEC or codec.score == 0:
            return TranscodingDecision(
                needs_transcoding=False,
                reason="Codec detection failed",
                codec=codec,
                skip_reason=SkipReason.UNKNOWN_CODEC,
            )
        if codec.efficient:
            return TranscodingDecision(
                needs_transcoding=False,
                reason=f"Already using efficient codec: {codec.codec} "
                f"({codec.description})",
                codec=codec,
                skip_reason=SkipReason.EFFICIENT_CODEC,
            )

        original_size = media_info.file_size or get_file_size(path) or 0
        qualities = {
            quality: self._decide_quality(media_info, path, original_size, quality)
            for quality in self.config.candidate_qualities
        }
        recommended = [q for q, d in qualities.items() if d.accepted]

        if not recommended:
            return TranscodingDecision(
                needs_transcoding=False,
                reason="No quality level offers sufficient savings",
                codec=codec,
                qualities=qualities,
                skip_reason=SkipReason.NO_QUALITY_ACCEPTED,
            )
        return TranscodingDecision(
            needs_transcoding=True,
            reason=f"Transcoding recommended for {', '.join(recommended)}",
            codec=codec,
            recommended_qualities=recommended,
            qualities=qualities,
        )

    def _decide_quality(
        self, media_info: MediaInfo, path: Path, original_size: int, quality: str
    ) -> QualityDecision:
        estimate = estimate_output_size(
            media_info, original_size, quality, self.config
        )
        savings = original_size - estimate.estimated_size
        percent = savings / original_size * 100 if original_size > 0 else 0.0

        def rejected(reason: SkipReason, message: str) -> QualityDecision:
            return QualityDecision(
                quality=quality,
                accepted=False,
                estimated_size=estimate.estimated_size,
                estimated_savings=savings,
                savings_percent=percent,
                method=estimate.method,
                skip_reason=reason,
                message=message,
            )

        existing = self.find_existing_output(path, quality)
        if existing is not None:
            return rejected(
                SkipReason.ALREADY_TRANSCODED, f"Already transcoded: {existing}"
            )

        if self.config.prevent_data_inflation:
            allowed_growth = original_size * self.config.max_inflation_percent / 100
            if -savings > allowed_growth:
                return rejected(
                    SkipReason.DATA_INFLATION,
                    f"Would increase file size by {format_file_size(-savings)}",
                )

        if percent < self.config.min_compression_percent:
            return rejected(
                SkipReason.INSUFFICIENT_SAVINGS,
                f"Insufficient savings: {percent:.1f}% "
                f"(minimum: {self.config.min_compression_percent:g}%)",
            )

        return QualityDecision(
            quality=quality,
            accepted=True,
            estimated_size=estimate.estimated_size,
            estimated_savings=savings,
            savings_percent=percent,
            method=estimate.method,
            message=(
                f"Estimated savings: {format_file_size(savings)} ({percent:.1f}%)"
            ),
        )

    def find_existing_output(self, path: Path | str, quality: str) -> str | None:
        """Return the output path of a still-valid previous result.

        A persisted result whose output is gone or smaller than
        ``existing_output_min_bytes`` is stale and is deleted.
        """
        result = self._store.find_result(normalize_path(path), quality)
        if result is None:
            return None
        size = get_file_size(Path(result.transcoded_path))
        if size is not None and size >= self.config.existing_output_min_bytes:
            return result.transcoded_path

        logger.info(
            "Purging stale result %s for %s at %s",
            result.id,
            Path(result.original_path).name,
            quality,
        )
        if result.id is not None:
            self._store.delete_result(result.id)
        return None

    def get_file_codec(self, path: Path | str) -> str:
        """Quick probe of a file's canonical video codec ("unknown" on failure)."""
        path = Path(path)
        size = get_file_size(path)
        if size is None or size < MIB:
            return UNKNOWN_CODEC
        try:
            return self._introspector.get_media_info(path).video_codec
        except MediaIntrospectionError as e:
            logger.debug("Codec probe failed for %s: %s", path, e)
            return UNKNOWN_CODEC

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def analyze_batch(self, paths: Sequence[Path | str]) -> list[FileAnalysis]:
        """Analyze many files, ``config.batch_size`` at a time.

        Results are returned in input order. An unexpected error for one
        file becomes a PROBE_FAILED rejection for that file only.
        """
        results: list[FileAnalysis] = []
        total = len(paths)
        batch_size = self.config.batch_size

        with ThreadPoolExecutor(
            max_workers=batch_size, thread_name_prefix="mediashrink-analyze"
        ) as pool:
            for start in range(0, total, batch_size):
                batch = paths[start : start + batch_size]
                futures = [pool.submit(self.analyze, p) for p in batch]
                for candidate, future in zip(batch, futures):
                    try:
                        results.append(future.result())
                    except Exception as e:
                        logger.exception("Analysis failed for %s", candidate)
                        results.append(
                            FileAnalysis(
                                path=str(candidate),
                                file_size=get_file_size(Path(candidate)) or 0,
                                rejection=AnalysisRejection(
                                    RejectionReason.PROBE_FAILED,
                                    f"Analysis failed: {e}",
                                ),
                            )
                        )
                if self._bus is not None:
                    self._bus.publish(
                        BatchAnalysisProgress(completed=len(results), total=total)
                    )

        return results

    def summarize(self, analyses: Iterable[FileAnalysis]) -> dict:
        """Aggregate a set of analyses into a report.

        Returns:
            Dict with file counts, codec and quality breakdowns, recommended
            jobs (with priorities) and total potential savings.
        """
        analyses = list(analyses)
        codec_breakdown: dict[str, int] = {}
        quality_breakdown: dict[str, int] = {}
        recommended_jobs: list[dict] = []
        total_savings = 0

        for analysis in analyses:
            if analysis.media_info is None or analysis.decision is None:
                continue
            codec = normalize_codec(analysis.media_info.video_codec)
            codec_breakdown[codec] = codec_breakdown.get(codec, 0) + 1
            if not analysis.needs_transcoding:
                continue

            for quality in analysis.recommended_qualities:
                decision = analysis.decision.qualities[quality]
                total_savings += max(decision.estimated_savings, 0)
                quality_breakdown[quality] = quality_breakdown.get(quality, 0) + 1

            recommended_jobs.append(
                {
                    "path": analysis.path,
                    "qualities": analysis.recommended_qualities,
                    "priority": self.calculate_job_priority(analysis),
                    "max_savings_percent": round(
                        analysis.decision.max_savings_percent, 1
                    ),
                }
            )

        recommended_jobs.sort(key=lambda job: job["priority"], reverse=True)
        return {
            "total_files": len(analyses),
            "valid_files": sum(1 for a in analyses if a.is_valid),
            "needs_transcoding": len(recommended_jobs),
            "codec_breakdown": codec_breakdown,
            "quality_breakdown": quality_breakdown,
            "recommended_jobs": recommended_jobs,
            "total_potential_savings": sized(total_savings),
        }

    def analyze_storage_usage(self, media_dir: Path | str, top_n: int = 10) -> dict:
        """Survey every file below ``media_dir`` for compression potential.

        All files count towards totals, per-extension counts and the largest
        files. Files with a supported extension are analyzed; those worth
        transcoding become candidates (largest estimated savings first),
        those with a valid previous output are listed as already transcoded
        and the rest are tallied by rejection or skip reason.

        Raises:
            NotADirectoryError: ``media_dir`` is not a directory.
        """
        root = Path(media_dir)
        if not root.is_dir():
            raise NotADirectoryError(f"Media directory not found: {root}")

        entries: list[tuple[Path, int, float]] = []
        file_types: dict[str, int] = {}
        for path in iter_files(root):
            try:
                stat = path.stat()
            except OSError as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            entries.append((path, stat.st_size, stat.st_mtime))
            extension = path.suffix.casefold() or "(none)"
            file_types[extension] = file_types.get(extension, 0) + 1
        logger.info("Surveying %d files under %s", len(entries), root)

        media = [
            path
            for path, _size, _mtime in entries
            if path.suffix.casefold() in self.config.supported_extensions
        ]
        candidates: list[dict] = []
        already_transcoded: list[dict] = []
        skip_reasons: dict[str, int] = {}
        for analysis in self.analyze_batch(media):
            if analysis.needs_transcoding:
                qualities = analysis.decision.qualities
                savings = sum(
                    max(qualities[q].estimated_savings, 0)
                    for q in analysis.recommended_qualities
                )
                candidates.append(
                    {
                        "path": analysis.path,
                        "size": sized(analysis.file_size),
                        "codec": analysis.decision.codec.codec,
                        "qualities": analysis.recommended_qualities,
                        "estimated_savings": sized(savings),
                    }
                )
                continue

            existing = {
                quality: output
                for quality in self.config.candidate_qualities
                if (output := self.find_existing_output(analysis.path, quality))
            }
            if existing:
                already_transcoded.append(
                    {
                        "path": analysis.path,
                        "size": sized(analysis.file_size),
                        "outputs": existing,
                    }
                )
                continue

            if analysis.rejection is not None:
                reason = analysis.rejection.reason.value
            else:
                reason = analysis.decision.skip_reason.value
            skip_reasons[reason] = skip_reasons.get(reason, 0) + 1

        candidates.sort(key=lambda c: c["estimated_savings"]["bytes"], reverse=True)
        entries.sort(key=lambda entry: entry[1], reverse=True)
        total_savings = sum(c["estimated_savings"]["bytes"] for c in candidates)
        return {
            "media_dir": str(root),
            "total_files": len(entries),
            "total_size": sized(sum(size for _path, size, _mtime in entries)),
            "file_types": dict(sorted(file_types.items())),
            "largest_files": [
                {
                    "path": str(path),
                    "size": sized(size),
                    "modified_at": datetime.fromtimestamp(
                        mtime, tz=timezone.utc
                    ).isoformat(),
                }
                for path, size, mtime in entries[:top_n]
            ],
            "compression_candidates": candidates,
            "already_transcoded": already_transcoded,
            "skip_reasons": skip_reasons,
            "summary": {
                "total_candidates": len(candidates),
                "total_already_transcoded": len(already_transcoded),
                "estimated_total_savings": sized(total_savings),
            },
        }

    @staticmethod
    def calculate_job_priority(analysis: FileAnalysis) -> int:
        """Score a file for queue priority (higher runs first).

        Larger files, less efficient codecs and bigger estimated savings
        score higher. Range 0-8.
        """
        priority = 0

        size_gb = analysis.file_size / GIB
        if size_gb > 2:
            priority += 3
        elif size_gb > 1:
            priority += 2
        elif size_gb > 0.5:
            priority += 1

        if analysis.decision is None:
            return priority

        score = analysis.decision.codec.score
        if score < 30:
            priority += 3
        elif score < 60:
            priority += 2
        elif score < 80:
            priority += 1

        max_savings = analysis.decision.max_savings_percent
        if max_savings > 50:
            priority += 2
        elif max_savings > 30:
            priority += 1

        return priority
