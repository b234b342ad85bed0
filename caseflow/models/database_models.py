"""
SQLAlchemy ORM models for the Caseflow case store.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    JSON,
)
from sqlalchemy.sql import func
import enum

from caseflow.database import Base


# Enums
class CaseStatus(str, enum.Enum):
    """Lifecycle status of an assessment case."""

    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_NO_FINDINGS = "completed_no_findings"
    DOCUMENT_PROCESSING_ERROR = "document_processing_error"
    ERROR = "error"

    @classmethod
    def coerce(cls, value) -> "CaseStatus":
        """Map a stored value onto the enum; anything unrecognised reads as ERROR."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return cls.ERROR


class AnalysisStatus(str, enum.Enum):
    """Normalised outcome of one call to the AI analysis service."""

    COMPLETED = "completed"
    COMPLETED_NO_FINDINGS = "completed_no_findings"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    CaseStatus.COMPLETED,
    CaseStatus.COMPLETED_NO_FINDINGS,
    CaseStatus.DOCUMENT_PROCESSING_ERROR,
    CaseStatus.ERROR,
})

COMPLETION_STATUSES = frozenset({
    CaseStatus.COMPLETED,
    CaseStatus.COMPLETED_NO_FINDINGS,
})


# Models
class AssessmentCase(Base):
    """One subject's document set and its analysis outcome."""

    __tablename__ = "assessment_cases"

    id = Column(String(64), primary_key=True)
    # Identifier the case carried before canonical-id migration
    legacy_id = Column(String(255), nullable=True, unique=True, index=True)
    module_type = Column(String(50), nullable=False, index=True)

    display_name = Column(String(255), nullable=True)
    student_name = Column(String(255), nullable=True)
    student_grade = Column(String(50), nullable=True)
    report_author = Column(String(255), nullable=True)

    # Plain string so values written by older deployments still load
    status = Column(String(40), nullable=False, default=CaseStatus.DRAFT.value, index=True)

    # [{id, name, kind, size, upload_date}]; emptied after a completed analysis
    documents = Column(JSON, nullable=False, default=list)
    cleared_document_count = Column(Integer, nullable=True)

    # {analysis_date, status, error_message, markdown_report}; report bodies
    # can run to hundreds of KB so no length cap here
    analysis_result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    created_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_updated = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
