"""
Pydantic schemas for request/response validation.
"""
import json
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from caseflow.models.database_models import AnalysisStatus, CaseStatus


# Document Schemas
class DocumentDescriptor(BaseModel):
    """Metadata for one uploaded document, kept on the case until cleanup."""

    id: str
    name: str
    kind: str
    size: int = 0
    upload_date: str


class DocumentText(BaseModel):
    """Extracted text for one uploaded file."""

    filename: str
    content: str


# Analysis Schemas
class AnalysisRequest(BaseModel):
    """Canonical request sent to the AI analysis service."""

    documents: List[DocumentText]
    module_type: str
    student_grade: Optional[str] = None
    student_name: Optional[str] = None


class AnalysisResult(BaseModel):
    """Normalised AI analysis outcome stored on the case."""

    analysis_date: str
    status: AnalysisStatus
    error_message: Optional[str] = None
    markdown_report: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        try:
            return AnalysisStatus(str(getattr(value, "value", value)))
        except ValueError:
            return AnalysisStatus.FAILED

    @field_validator("markdown_report", mode="before")
    @classmethod
    def _report_as_string(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


# Case Schemas
class CaseCreate(BaseModel):
    """Schema for creating a new assessment case."""

    module_type: str = Field(..., min_length=1, max_length=50)
    # Callers importing older records may supply their own (legacy) id
    id: Optional[str] = Field(None, min_length=1, max_length=255)
    display_name: Optional[str] = Field(None, max_length=255)
    student_name: Optional[str] = Field(None, max_length=255)
    student_grade: Optional[str] = Field(None, max_length=50)
    report_author: Optional[str] = Field(None, max_length=255)


class CaseRecord(BaseModel):
    """A snapshot of one assessment case as read from the store."""

    id: str
    legacy_id: Optional[str] = None
    module_type: str
    display_name: Optional[str] = None
    student_name: Optional[str] = None
    student_grade: Optional[str] = None
    report_author: Optional[str] = None
    status: CaseStatus = CaseStatus.DRAFT
    documents: List[DocumentDescriptor] = []
    cleared_document_count: Optional[int] = None
    analysis_result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None
    created_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> CaseStatus:
        return CaseStatus.coerce(value)

    @field_validator("documents", mode="before")
    @classmethod
    def _documents_list(cls, value: Any) -> Any:
        return value or []

    @field_validator("analysis_result", mode="before")
    @classmethod
    def _decode_result(cls, value: Any) -> Any:
        # Some older rows hold the result as a JSON string
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return None
        if value is not None and not isinstance(value, (dict, AnalysisResult)):
            return None
        return value


class ProcessingStatusResponse(BaseModel):
    """Live progress of an in-flight processing attempt."""

    case_id: str
    stage: str
    started_at: Optional[datetime] = None
    elapsed_seconds: float = 0.0


class LegacyIdMigrationResponse(BaseModel):
    """Result of rewriting a legacy case id into canonical form."""

    previous_id: str
    migrated: bool
    case: CaseRecord


# Report Schemas
class CaseInfoSchema(BaseModel):
    subject_name: str
    grade: str
    period: str
    author: str
    date_created: str
    date_updated: str


class StrategySchema(BaseModel):
    title: str
    description: str


class FindingSchema(BaseModel):
    title: str
    observable_signs: List[str] = []
    recommended_actions: List[str] = []
    cautions: List[str] = []


class ReportSectionsResponse(BaseModel):
    """Section-addressable view of a case report, rebuilt on every request."""

    case_id: str
    dialect: str
    case_info: CaseInfoSchema
    overview: str
    strategies: List[StrategySchema]
    strengths: List[FindingSchema]
    challenges: List[FindingSchema]


# Prompt Import Schemas
class LookupTableExtractRequest(BaseModel):
    """Free-form prompt text that may embed a lookup table."""

    text: str = Field(..., min_length=1)


class LookupTableExtractResponse(BaseModel):
    found: bool
    keys: List[str] = []
    table: Optional[Dict[str, Any]] = None


# Health Schemas
class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    database: str
    analysis_service: str
    timestamp: datetime
    version: str = "0.1.0"
