"""
SQLAlchemy-backed store for assessment cases.

Every method opens its own short-lived session from the injected session
factory and returns CaseRecord snapshots, never live ORM objects.
"""
from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from caseflow.database import AsyncSessionLocal
from caseflow.models.database_models import AssessmentCase
from caseflow.models.schemas import CaseCreate, CaseRecord
from caseflow.utils.helpers import is_canonical_case_id, new_case_id

logger = logging.getLogger(__name__)


class CaseNotFoundError(LookupError):
    """No case exists with the given id."""

    def __init__(self, case_id: str) -> None:
        self.case_id = case_id
        super().__init__(f"Case {case_id} not found")


class CaseAlreadyExistsError(ValueError):
    """A case with the requested id is already stored."""


def _to_storable(value: Any) -> Any:
    """Convert pydantic models and enums into JSON-column friendly values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_storable(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_storable(v) for k, v in value.items()}
    return value


class CaseStore:
    """Create/read/update/delete/list access to the assessment_cases table."""

    UPDATABLE_FIELDS = frozenset({
        "display_name",
        "student_name",
        "student_grade",
        "report_author",
        "status",
        "documents",
        "cleared_document_count",
        "analysis_result",
        "error_message",
    })

    # Columns carried across a legacy id rewrite
    _COPIED_COLUMNS = (
        "module_type",
        "display_name",
        "student_name",
        "student_grade",
        "report_author",
        "status",
        "documents",
        "cleared_document_count",
        "analysis_result",
        "error_message",
        "created_date",
    )

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal

    async def create(self, data: CaseCreate) -> CaseRecord:
        case_id = data.id or new_case_id()
        async with self._session_factory() as session:
            if await session.get(AssessmentCase, case_id) is not None:
                raise CaseAlreadyExistsError(f"Case {case_id} already exists")

            row = AssessmentCase(
                id=case_id,
                module_type=data.module_type,
                display_name=data.display_name,
                student_name=data.student_name,
                student_grade=data.student_grade,
                report_author=data.report_author,
                status="draft",
                documents=[],
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)

            logger.info("Created case %s (module=%s)", case_id, data.module_type)
            return CaseRecord.model_validate(row)

    async def get(self, case_id: str) -> Optional[CaseRecord]:
        async with self._session_factory() as session:
            row = await session.get(AssessmentCase, case_id)
            return CaseRecord.model_validate(row) if row is not None else None

    async def require(self, case_id: str) -> CaseRecord:
        """Like get(), but raises CaseNotFoundError when the case is missing."""
        case = await self.get(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    async def update(self, case_id: str, changes: Mapping[str, Any]) -> CaseRecord:
        """
        Apply a partial update and refresh ``last_updated``.

        Raises:
            CaseNotFoundError: No such case.
            ValueError:        *changes* names a field that cannot be updated.
        """
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update case fields: {sorted(unknown)}")

        async with self._session_factory() as session:
            row = await session.get(AssessmentCase, case_id)
            if row is None:
                raise CaseNotFoundError(case_id)

            for field_name, value in changes.items():
                setattr(row, field_name, _to_storable(value))
            row.last_updated = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(row)
            return CaseRecord.model_validate(row)

    async def delete(self, case_id: str) -> bool:
        async with self._session_factory() as session:
            row = await session.get(AssessmentCase, case_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            logger.info("Deleted case %s", case_id)
            return True

    async def list(self, module_type: Optional[str] = None) -> List[CaseRecord]:
        query = select(AssessmentCase).order_by(AssessmentCase.created_date.desc())
        if module_type:
            query = query.where(AssessmentCase.module_type == module_type)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [CaseRecord.model_validate(row) for row in result.scalars().all()]

    async def migrate_legacy_id(self, case_id: str) -> Tuple[CaseRecord, bool]:
        """
        Rewrite a legacy (non-UUID) case id into canonical form.

        Returns ``(case, migrated)``. Canonical ids are returned unchanged, and
        a legacy id that was already migrated resolves to the migrated case,
        so repeating the call is harmless.

        Raises:
            CaseNotFoundError: Neither a case nor a migrated case matches.
        """
        async with self._session_factory() as session:
            row = await session.get(AssessmentCase, case_id)

            if row is None:
                result = await session.execute(
                    select(AssessmentCase).where(AssessmentCase.legacy_id == case_id)
                )
                migrated_row = result.scalar_one_or_none()
                if migrated_row is None:
                    raise CaseNotFoundError(case_id)
                return CaseRecord.model_validate(migrated_row), False

            if is_canonical_case_id(row.id):
                return CaseRecord.model_validate(row), False

            copied: Dict[str, Any] = {
                column: getattr(row, column) for column in self._COPIED_COLUMNS
            }
            new_row = AssessmentCase(id=new_case_id(), legacy_id=row.id, **copied)
            new_row.last_updated = datetime.now(timezone.utc)

            await session.delete(row)
            await session.flush()
            session.add(new_row)
            await session.commit()
            await session.refresh(new_row)

            logger.info("Migrated legacy case id %s -> %s", case_id, new_row.id)
            return CaseRecord.model_validate(new_row), True
