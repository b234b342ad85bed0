"""
Normalises raw analysis service responses into an AnalysisResult.

The service has shipped several response shapes over time: flat
``{status, markdown_report, error_message}``, the same wrapped in an
``analysis_result`` key, and camelCase variants of both. Everything is
folded into one AnalysisResult whose status is one of completed,
completed_no_findings or failed.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from caseflow.config import settings
from caseflow.models.database_models import AnalysisStatus
from caseflow.models.schemas import AnalysisResult

logger = logging.getLogger(__name__)

FINDINGS_VOCABULARY = (
    "accommodation",
    "barrier",
    "impact",
    "support",
    "recommend",
    "finding",
    "need",
    "strength",
    "challenge",
)

_FINDINGS_RE = re.compile("|".join(FINDINGS_VOCABULARY), re.IGNORECASE)

_KEY_ALIASES = {
    "markdown_report": ("markdown_report", "markdownReport", "report", "markdown"),
    "error_message": ("error_message", "errorMessage", "error"),
    "status": ("status",),
    "analysis_date": ("analysis_date", "analysisDate"),
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(raw: Mapping[str, Any], field_name: str) -> Any:
    for key in _KEY_ALIASES[field_name]:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


class ResponseValidator:
    """Classifies an analysis service response."""

    def __init__(self, min_substantial_chars: Optional[int] = None) -> None:
        self.min_substantial_chars = (
            settings.SUBSTANTIAL_REPORT_MIN_CHARS
            if min_substantial_chars is None
            else min_substantial_chars
        )

    def validate(self, raw: Any, analysis_date: Optional[str] = None) -> AnalysisResult:
        """
        Normalise *raw* into an AnalysisResult. Never raises.

        Rules, in order: a non-mapping is failed; an explicit failed status is
        failed; an empty report is failed; an explicit completed_no_findings
        is honoured; otherwise the report is completed when it is substantial
        and mentions findings vocabulary, completed_no_findings when not.
        """
        if not isinstance(raw, Mapping):
            logger.warning("Analysis response is not an object: %s", type(raw).__name__)
            return self.failed("Invalid response structure from analysis service", analysis_date)

        nested = raw.get("analysis_result", raw.get("analysisResult"))
        if isinstance(nested, Mapping):
            raw = nested

        # The service's own timestamp wins over the caller's
        reported = _pick(raw, "analysis_date")
        if isinstance(reported, str) and reported.strip():
            analysis_date = reported.strip()
        analysis_date = analysis_date or _now_iso()

        status = str(_pick(raw, "status") or "").strip().lower()
        markdown = _pick(raw, "markdown_report")
        if not isinstance(markdown, str):
            markdown = ""
        error_message = _pick(raw, "error_message")
        if error_message is not None and not isinstance(error_message, str):
            error_message = str(error_message)

        if status == AnalysisStatus.FAILED.value:
            return AnalysisResult(
                analysis_date=analysis_date,
                status=AnalysisStatus.FAILED,
                error_message=error_message or "Analysis service reported a failure",
                markdown_report=markdown,
            )

        if not markdown.strip():
            return self.failed(
                error_message or "Analysis service returned an empty report", analysis_date
            )

        if status == AnalysisStatus.COMPLETED_NO_FINDINGS.value:
            outcome = AnalysisStatus.COMPLETED_NO_FINDINGS
        elif self.is_substantial(markdown):
            outcome = AnalysisStatus.COMPLETED
        else:
            outcome = AnalysisStatus.COMPLETED_NO_FINDINGS

        logger.info(
            "Analysis response classified as %s (%d chars)", outcome.value, len(markdown)
        )
        return AnalysisResult(
            analysis_date=analysis_date,
            status=outcome,
            error_message=None,
            markdown_report=markdown,
        )

    def is_substantial(self, markdown: str) -> bool:
        """True when the report is long enough and mentions findings vocabulary."""
        return (
            len(markdown) > self.min_substantial_chars
            and _FINDINGS_RE.search(markdown) is not None
        )

    @staticmethod
    def failed(message: str, analysis_date: Optional[str] = None) -> AnalysisResult:
        return AnalysisResult(
            analysis_date=analysis_date or _now_iso(),
            status=AnalysisStatus.FAILED,
            error_message=message,
            markdown_report="",
        )
