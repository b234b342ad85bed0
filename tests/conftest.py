"""
Shared fixtures for Caseflow backend tests.

API and store tests run against a throwaway SQLite database (aiosqlite) in a
temporary directory; tables are created before and dropped after every test.
The AI analysis service is replaced by an httpx.MockTransport, and controller
tests use an in-memory case store.
"""
from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Mapping, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any caseflow module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
_TMP_DIR = tempfile.mkdtemp(prefix="caseflow-tests-")
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'caseflow_test.db')}",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from caseflow.database import Base, get_db  # noqa: E402
from caseflow.dependencies.services import get_analysis_invoker, get_case_store  # noqa: E402
from caseflow.main import app  # noqa: E402
from caseflow.models import database_models  # noqa: E402,F401
from caseflow.models.schemas import AnalysisResult, CaseCreate, CaseRecord  # noqa: E402
from caseflow.services.analysis_invoker import AnalysisInvoker  # noqa: E402
from caseflow.services.analysis_request import AnalysisRequestBuilder  # noqa: E402
from caseflow.services.case_lifecycle import CaseLifecycleController  # noqa: E402
from caseflow.services.case_store import CaseNotFoundError, CaseStore  # noqa: E402
from caseflow.services.document_cleanup import DocumentCleanupStage  # noqa: E402
from caseflow.services.persistence_verifier import PersistenceVerifier  # noqa: E402
from caseflow.services.processing_leases import ProcessingLeaseRegistry  # noqa: E402
from caseflow.services.text_extraction import TextExtractionStage  # noqa: E402
from caseflow.utils.helpers import new_case_id  # noqa: E402

AI_BASE_URL = "http://analysis.test"


# ---------------------------------------------------------------------------
# Report fixtures
# ---------------------------------------------------------------------------

FINDINGS_REPORT = """# Learning Profile: Jordan Lee

**Student Name:** Jordan Lee
**Grade:** 7
**Analysis Date:** 2024-03-15
**Author:** Ms. Rivera
School Year: 2023-2024

## Executive Summary

Jordan is a thoughtful student who works well with peers and benefits from clear
structure and visual supports across all subject areas.

### Validated Findings

#### 1. Strength: Peer Collaboration
**Evidence:** Teacher observation notes from three classes
**Teacher-Friendly Description:** Jordan excels when working with classmates
**Observable Behaviors:** Leads group discussions and helps others stay on task
**Primary Support Strategy:** Use structured group roles
**Secondary Support Strategy:** Pair with a reading partner
**Implementation Caution:** Avoid always assigning the leader role

#### 2. Reading Fluency Difficulty
**Evidence:** Oral reading fluency below grade benchmark
**Teacher-Friendly Description:** Jordan struggles to read grade-level text aloud
**Observable Behaviors:** Slow, effortful reading with frequent self-corrections
**Primary Support Strategy:** Provide audio versions of texts
**Implementation Caution:** Do not require reading aloud in front of the class

### Next Steps

Review accommodations and support in six weeks to confirm the impact of each recommendation.
"""


def make_report(min_length: int = 600) -> str:
    """A findings report padded past the substantial-report threshold."""
    report = FINDINGS_REPORT
    while len(report) <= min_length:
        report += "\nAdditional support notes for the team to review.\n"
    return report


# ---------------------------------------------------------------------------
# Fake analysis service
# ---------------------------------------------------------------------------

class FakeAnalysisService:
    """Stands in for the AI service behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.status_code = 200
        self.body: Any = {"status": "completed", "markdown_report": make_report()}
        self.raw_text: Optional[str] = None
        self.error: Optional[Exception] = None
        self.healthy = True
        self.requests: List[httpx.Request] = []
        self.on_analyze = None

    def reply(self, body: Any, status_code: int = 200) -> None:
        self.body = body
        self.status_code = status_code
        self.raw_text = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/health":
            return httpx.Response(200 if self.healthy else 503, json={"status": "ok"})
        if self.on_analyze is not None:
            self.on_analyze(request)
        if self.error is not None:
            raise self.error
        if self.raw_text is not None:
            return httpx.Response(self.status_code, text=self.raw_text)
        return httpx.Response(self.status_code, json=self.body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# In-memory case store
# ---------------------------------------------------------------------------

class InMemoryCaseStore:
    """Dict-backed stand-in with the same async interface as CaseStore."""

    def __init__(self) -> None:
        self.cases: Dict[str, CaseRecord] = {}
        self.updates: List[Dict[str, Any]] = []

    async def create(self, data: CaseCreate) -> CaseRecord:
        now = datetime.now(timezone.utc)
        case = CaseRecord(
            id=data.id or new_case_id(),
            module_type=data.module_type,
            display_name=data.display_name,
            student_name=data.student_name,
            student_grade=data.student_grade,
            report_author=data.report_author,
            created_date=now,
            last_updated=now,
        )
        self.cases[case.id] = case
        return case

    async def get(self, case_id: str) -> Optional[CaseRecord]:
        return self.cases.get(case_id)

    async def require(self, case_id: str) -> CaseRecord:
        case = self.cases.get(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    async def update(self, case_id: str, changes: Mapping[str, Any]) -> CaseRecord:
        case = await self.require(case_id)
        self.updates.append(dict(changes))
        data = case.model_dump()
        data.update(self._stored(changes))
        data["last_updated"] = datetime.now(timezone.utc)
        updated = CaseRecord.model_validate(data)
        self.cases[case_id] = updated
        return updated

    async def delete(self, case_id: str) -> bool:
        return self.cases.pop(case_id, None) is not None

    async def list(self, module_type: Optional[str] = None) -> List[CaseRecord]:
        return [c for c in self.cases.values() if not module_type or c.module_type == module_type]

    def _stored(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(changes)


class TruncatingCaseStore(InMemoryCaseStore):
    """Silently cuts stored reports to *limit* characters."""

    def __init__(self, limit: int) -> None:
        super().__init__()
        self.limit = limit

    def _stored(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        stored = dict(changes)
        result = stored.get("analysis_result")
        if isinstance(result, AnalysisResult):
            stored["analysis_result"] = result.model_copy(
                update={"markdown_report": result.markdown_report[: self.limit]}
            )
        return stored


def build_controller(
    store: Any,
    invoker: AnalysisInvoker,
    leases: Optional[ProcessingLeaseRegistry] = None,
    pre_process_hooks: Optional[Mapping[str, Any]] = None,
) -> CaseLifecycleController:
    return CaseLifecycleController(
        store=store,
        extractor=TextExtractionStage(),
        request_builder=AnalysisRequestBuilder(),
        invoker=invoker,
        verifier=PersistenceVerifier(store),
        cleanup=DocumentCleanupStage(store),
        leases=leases or ProcessingLeaseRegistry(),
        pre_process_hooks=pre_process_hooks,
    )


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def analysis_service() -> FakeAnalysisService:
    return FakeAnalysisService()


@pytest.fixture
def invoker(analysis_service: FakeAnalysisService) -> AnalysisInvoker:
    return AnalysisInvoker(
        base_url=AI_BASE_URL,
        timeout=5,
        api_key="",
        transport=analysis_service.transport(),
    )


@pytest.fixture
def memory_store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Provide a session factory bound to a fresh schema. All tables are
    dropped after the test so each test starts with a clean slate.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker) -> CaseStore:
    return CaseStore(session_factory)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker,
    store: CaseStore,
    invoker: AnalysisInvoker,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the database, the case
    store and the analysis service overridden.
    """

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_case_store] = lambda: store
    app.dependency_overrides[get_analysis_invoker] = lambda: invoker
    app.state.leases = ProcessingLeaseRegistry()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
