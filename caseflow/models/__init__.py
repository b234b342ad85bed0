"""Database and schema models for Caseflow."""
from caseflow.models.database_models import (
    AssessmentCase,
    AnalysisStatus,
    CaseStatus,
    COMPLETION_STATUSES,
    TERMINAL_STATUSES,
)
from caseflow.models.schemas import (
    AnalysisRequest,
    AnalysisResult,
    CaseCreate,
    CaseRecord,
    DocumentDescriptor,
    DocumentText,
    HealthCheckResponse,
    ReportSectionsResponse,
)

__all__ = [
    # Database models
    "AssessmentCase",
    "AnalysisStatus",
    "CaseStatus",
    "COMPLETION_STATUSES",
    "TERMINAL_STATUSES",
    # Pydantic schemas
    "AnalysisRequest",
    "AnalysisResult",
    "CaseCreate",
    "CaseRecord",
    "DocumentDescriptor",
    "DocumentText",
    "HealthCheckResponse",
    "ReportSectionsResponse",
]
