"""
Assessment case endpoints.

POST   /                  create a case.
GET    /                  list cases, optionally for one module.
GET    /{id}              case record.
DELETE /{id}              delete a case.
POST   /{id}/process      upload documents and run analysis.
GET    /{id}/processing   live stage of an in-flight attempt.
GET    /{id}/report       parsed report sections.
POST   /{id}/migrate-id   rewrite a legacy id into canonical form.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from fastapi.responses import JSONResponse

from caseflow.config import settings
from caseflow.dependencies.services import (
    get_case_store,
    get_leases,
    get_lifecycle_controller,
    get_report_parser,
)
from caseflow.models.schemas import (
    CaseCreate,
    CaseRecord,
    LegacyIdMigrationResponse,
    ProcessingStatusResponse,
    ReportSectionsResponse,
)
from caseflow.services.case_lifecycle import CaseLifecycleController, InvalidTransitionError
from caseflow.services.case_store import CaseAlreadyExistsError, CaseNotFoundError, CaseStore
from caseflow.services.persistence_verifier import StorageTruncationError
from caseflow.services.processing_leases import CaseBusyError, ProcessingLeaseRegistry
from caseflow.services.report_parser import MarkdownReportParser
from caseflow.services.text_extraction import UploadedFile
from caseflow.utils.helpers import format_file_size

logger = logging.getLogger(__name__)

router = APIRouter()

_READ_SLICE = 1024 * 1024  # 1 MB


async def _require_case(store: CaseStore, case_id: str) -> CaseRecord:
    case = await store.get(case_id)
    if case is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Case {case_id} not found.",
        )
    return case


def _ensure_idle(leases: ProcessingLeaseRegistry, case_id: str) -> None:
    if leases.is_held(case_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Case {case_id} is currently being processed.",
        )


async def _read_upload(upload: UploadFile) -> UploadedFile:
    """Read an upload into memory, enforcing MAX_FILE_SIZE."""
    data = bytearray()
    while True:
        chunk = await upload.read(_READ_SLICE)
        if not chunk:
            break
        data.extend(chunk)
        if len(data) > settings.MAX_FILE_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=(
                    f"File {upload.filename!r} exceeds the "
                    f"{format_file_size(settings.MAX_FILE_SIZE)} size limit."
                ),
            )
    return UploadedFile(
        filename=upload.filename or "upload",
        data=bytes(data),
        content_type=upload.content_type,
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@router.post("", response_model=CaseRecord, status_code=status.HTTP_201_CREATED)
async def create_case(
    payload: CaseCreate,
    store: CaseStore = Depends(get_case_store),
) -> CaseRecord:
    """Create a new case in ``draft`` status."""
    try:
        return await store.create(payload)
    except CaseAlreadyExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("", response_model=List[CaseRecord])
async def list_cases(
    module_type: Optional[str] = Query(None, description="Only cases for this module"),
    store: CaseStore = Depends(get_case_store),
) -> List[CaseRecord]:
    return await store.list(module_type)


@router.get("/{case_id}", response_model=CaseRecord)
async def get_case(
    case_id: str,
    store: CaseStore = Depends(get_case_store),
) -> CaseRecord:
    return await _require_case(store, case_id)


@router.delete("/{case_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_case(
    case_id: str,
    store: CaseStore = Depends(get_case_store),
    leases: ProcessingLeaseRegistry = Depends(get_leases),
) -> Response:
    _ensure_idle(leases, case_id)
    if not await store.delete(case_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Case {case_id} not found.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

@router.post("/{case_id}/process", response_model=CaseRecord)
async def process_case(
    case_id: str,
    files: Optional[List[UploadFile]] = File(None),
    store: CaseStore = Depends(get_case_store),
    controller: CaseLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Upload documents for a case and run the full analysis.

    The response is the case in its terminal status. Extraction and analysis
    failures are reported through that status, not as HTTP errors.
    """
    if not files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one file must be uploaded.",
        )

    case = await _require_case(store, case_id)
    uploads = [await _read_upload(f) for f in files]

    try:
        return await controller.process(case, uploads)
    except CaseNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Case {case_id} not found.",
        )
    except (CaseBusyError, InvalidTransitionError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except StorageTruncationError as exc:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Analysis report was not stored intact.",
                "error": "storage_integrity_fault",
                "case_id": exc.case_id,
                "status": exc.case.status.value if exc.case is not None else None,
                "expected_length": exc.expected_length,
                "stored_length": exc.stored_length,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


@router.get("/{case_id}/processing", response_model=ProcessingStatusResponse)
async def get_processing_status(
    case_id: str,
    store: CaseStore = Depends(get_case_store),
    leases: ProcessingLeaseRegistry = Depends(get_leases),
) -> ProcessingStatusResponse:
    """Stage of the running attempt, or ``idle`` when nothing is running."""
    lease = leases.get(case_id)
    if lease is not None:
        return ProcessingStatusResponse(
            case_id=case_id,
            stage=lease.stage.value,
            started_at=lease.started_at,
            elapsed_seconds=lease.elapsed_seconds,
        )

    await _require_case(store, case_id)
    return ProcessingStatusResponse(case_id=case_id, stage="idle")


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

@router.get("/{case_id}/report", response_model=ReportSectionsResponse)
async def get_case_report(
    case_id: str,
    store: CaseStore = Depends(get_case_store),
    parser: MarkdownReportParser = Depends(get_report_parser),
) -> ReportSectionsResponse:
    """Parse the stored markdown report into sections."""
    case = await _require_case(store, case_id)
    result = case.analysis_result
    if result is None or not result.markdown_report:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Case {case_id} has no analysis report.",
        )

    sections = parser.parse(
        result.markdown_report,
        subject_name=case.student_name,
        author=case.report_author,
    )
    return ReportSectionsResponse(case_id=case.id, **dataclasses.asdict(sections))


# ---------------------------------------------------------------------------
# Legacy ids
# ---------------------------------------------------------------------------

@router.post("/{case_id}/migrate-id", response_model=LegacyIdMigrationResponse)
async def migrate_case_id(
    case_id: str,
    store: CaseStore = Depends(get_case_store),
    leases: ProcessingLeaseRegistry = Depends(get_leases),
) -> LegacyIdMigrationResponse:
    """Give a legacy case a canonical UUID; repeating the call is harmless."""
    _ensure_idle(leases, case_id)
    try:
        case, migrated = await store.migrate_legacy_id(case_id)
    except CaseNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Case {case_id} not found.",
        )
    return LegacyIdMigrationResponse(previous_id=case_id, migrated=migrated, case=case)
