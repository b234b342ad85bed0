"""
Case lifecycle controller.

Drives one processing attempt for an assessment case through a fixed
sequence of steps and owns every status transition along the way.

Public API
----------
CaseLifecycleController.process(case, files) -> CaseRecord

Steps
-----
1. Run the module's pre-process hook, if one is registered.
2. Mark the case ``processing`` with descriptors of the submitted files.
3. Extract text from the files.
4. Build the analysis request and call the analysis service.
5. Persist the terminal result and verify the stored report length.
6. On a completion status, purge the document descriptors.

Stage failures never escape process(); the returned case carries the
terminal status instead. The one exception is a storage integrity fault,
which is raised after cleanup so the caller can surface it.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Sequence

from caseflow.models.database_models import (
    AnalysisStatus,
    CaseStatus,
    COMPLETION_STATUSES,
    TERMINAL_STATUSES,
)
from caseflow.models.schemas import AnalysisResult, CaseRecord, DocumentDescriptor
from caseflow.services.analysis_invoker import AnalysisInvoker
from caseflow.services.analysis_request import AnalysisRequestBuilder
from caseflow.services.case_store import CaseStore
from caseflow.services.document_cleanup import DocumentCleanupStage
from caseflow.services.persistence_verifier import PersistenceVerifier, StorageTruncationError
from caseflow.services.processing_leases import (
    ProcessingLease,
    ProcessingLeaseRegistry,
    ProcessingStage,
)
from caseflow.services.text_extraction import (
    DocumentExtractionError,
    EmptyDocumentError,
    TextExtractionStage,
    UploadedFile,
)
from caseflow.utils.helpers import new_case_id

logger = logging.getLogger(__name__)

PreProcessHook = Callable[[CaseRecord], Awaitable[Any]]


VALID_TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.DRAFT: frozenset({CaseStatus.PROCESSING}),
    CaseStatus.PROCESSING: TERMINAL_STATUSES,
    # Re-submission restarts any finished case
    CaseStatus.COMPLETED: frozenset({CaseStatus.PROCESSING}),
    CaseStatus.COMPLETED_NO_FINDINGS: frozenset({CaseStatus.PROCESSING}),
    CaseStatus.DOCUMENT_PROCESSING_ERROR: frozenset({CaseStatus.PROCESSING}),
    CaseStatus.ERROR: frozenset({CaseStatus.PROCESSING}),
}

_RESULT_TO_STATUS: Dict[AnalysisStatus, CaseStatus] = {
    AnalysisStatus.COMPLETED: CaseStatus.COMPLETED,
    AnalysisStatus.COMPLETED_NO_FINDINGS: CaseStatus.COMPLETED_NO_FINDINGS,
    AnalysisStatus.FAILED: CaseStatus.ERROR,
}


class InvalidTransitionError(RuntimeError):
    """A status change not allowed by VALID_TRANSITIONS."""

    def __init__(self, case_id: str, current: CaseStatus, target: CaseStatus) -> None:
        self.case_id = case_id
        self.current = current
        self.target = target
        super().__init__(
            f"Case {case_id} cannot move from {current.value} to {target.value}"
        )


def _describe(upload: UploadedFile, uploaded_at: str) -> DocumentDescriptor:
    return DocumentDescriptor(
        id=new_case_id(),
        name=upload.filename,
        kind=upload.content_type or upload.extension.lstrip(".") or "unknown",
        size=upload.size,
        upload_date=uploaded_at,
    )


class CaseLifecycleController:
    """Runs processing attempts; all collaborators are injected."""

    def __init__(
        self,
        store: CaseStore,
        extractor: TextExtractionStage,
        request_builder: AnalysisRequestBuilder,
        invoker: AnalysisInvoker,
        verifier: PersistenceVerifier,
        cleanup: DocumentCleanupStage,
        leases: ProcessingLeaseRegistry,
        pre_process_hooks: Optional[Mapping[str, PreProcessHook]] = None,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.request_builder = request_builder
        self.invoker = invoker
        self.verifier = verifier
        self.cleanup = cleanup
        self.leases = leases
        self.pre_process_hooks: Dict[str, PreProcessHook] = dict(pre_process_hooks or {})

    async def process(self, case: CaseRecord, files: Sequence[UploadedFile]) -> CaseRecord:
        """
        Run one processing attempt for *case*.

        Raises:
            ValueError:             *files* is empty.
            CaseNotFoundError:      The case no longer exists.
            CaseBusyError:          Another attempt for this case is running.
            InvalidTransitionError: The case cannot enter ``processing``.
            StorageTruncationError: The report was stored truncated; ``.case``
                                    holds the case as persisted.
        """
        if not files:
            raise ValueError("At least one document is required to process a case")

        async with self.leases.hold(case.id) as lease:
            current = await self.store.require(case.id)
            self._check_entry(current)

            # ---- Step 1: module pre-process hook ----
            lease.advance(ProcessingStage.CLEANUP)
            await self._run_pre_process_hook(current)

            # ---- Step 2: mark processing ----
            uploaded_at = datetime.now(timezone.utc).isoformat()
            logger.info("Case %s: [2/6] marking processing (%d files)", case.id, len(files))
            current = await self.store.update(
                case.id,
                {
                    "status": CaseStatus.PROCESSING,
                    "documents": [_describe(f, uploaded_at) for f in files],
                    "analysis_result": None,
                    "error_message": None,
                },
            )

            # ---- Steps 3 and 4: extract, then analyse ----
            try:
                lease.advance(ProcessingStage.EXTRACTING)
                logger.info("Case %s: [3/6] extracting text", case.id)
                documents = await self.extractor.extract(files)

                lease.advance(ProcessingStage.ANALYZING)
                logger.info("Case %s: [4/6] requesting analysis", case.id)
                request = self.request_builder.build(documents, current)
                result = await self.invoker.invoke(request)
            except (EmptyDocumentError, DocumentExtractionError) as exc:
                logger.warning("Case %s: document processing failed: %s", case.id, exc)
                return await self._fail(
                    current, CaseStatus.DOCUMENT_PROCESSING_ERROR, str(exc), lease
                )
            except Exception as exc:
                logger.error("Case %s: processing failed: %s", case.id, exc, exc_info=True)
                return await self._fail(
                    current, CaseStatus.ERROR, str(exc) or exc.__class__.__name__, lease
                )

            # ---- Step 5: persist and verify ----
            return await self._finish(current, result, lease)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _check_entry(self, current: CaseRecord) -> None:
        if current.status == CaseStatus.PROCESSING:
            # The lease is ours, so nothing in this process is working on it
            logger.warning(
                "Case %s was left in processing by an earlier attempt; restarting",
                current.id,
            )
            return
        self._check_transition(current, CaseStatus.PROCESSING)

    async def _run_pre_process_hook(self, case: CaseRecord) -> None:
        hook = self.pre_process_hooks.get(case.module_type)
        if hook is None:
            return
        logger.info("Case %s: [1/6] running %s pre-process hook", case.id, case.module_type)
        try:
            await hook(case)
        except Exception as exc:
            logger.warning(
                "Case %s: pre-process hook failed (continuing): %s", case.id, exc
            )

    async def _finish(
        self, current: CaseRecord, result: AnalysisResult, lease: ProcessingLease
    ) -> CaseRecord:
        target = _RESULT_TO_STATUS[result.status]
        self._check_transition(current, target)

        lease.advance(ProcessingStage.PERSISTING)
        logger.info("Case %s: [5/6] saving %s result", current.id, result.status.value)
        try:
            persisted = await self.store.update(
                current.id,
                {
                    "status": target,
                    "analysis_result": result,
                    "error_message": result.error_message if target == CaseStatus.ERROR else None,
                },
            )
        except Exception as exc:
            logger.error("Case %s: failed to save analysis result: %s", current.id, exc)
            return await self._fail(
                current, CaseStatus.ERROR, f"Failed to save analysis result: {exc}", lease
            )

        integrity_fault: Optional[StorageTruncationError] = None
        if result.markdown_report:
            lease.advance(ProcessingStage.VERIFYING)
            try:
                await self.verifier.verify(current.id, len(result.markdown_report))
            except StorageTruncationError as exc:
                logger.critical(
                    "Case %s: STORAGE INTEGRITY FAULT, report stored as %d of %d characters",
                    current.id,
                    exc.stored_length,
                    exc.expected_length,
                )
                integrity_fault = exc

        # ---- Step 6: purge documents ----
        if persisted.status in COMPLETION_STATUSES:
            lease.advance(ProcessingStage.PURGING)
            logger.info("Case %s: [6/6] clearing document metadata", current.id)
            try:
                persisted = await self.cleanup.purge(persisted)
            except Exception as exc:
                logger.error("Case %s: document cleanup failed: %s", current.id, exc)

        lease.advance(
            ProcessingStage.COMPLETED
            if persisted.status in COMPLETION_STATUSES
            else ProcessingStage.FAILED
        )
        logger.info("Case %s: finished with status %s", current.id, persisted.status.value)

        if integrity_fault is not None:
            integrity_fault.case = persisted
            raise integrity_fault
        return persisted

    async def _fail(
        self,
        current: CaseRecord,
        status: CaseStatus,
        message: str,
        lease: ProcessingLease,
    ) -> CaseRecord:
        self._check_transition(current, status)
        lease.advance(ProcessingStage.FAILED)
        return await self.store.update(
            current.id,
            {"status": status, "error_message": message, "analysis_result": None},
        )

    @staticmethod
    def _check_transition(current: CaseRecord, target: CaseStatus) -> None:
        if target not in VALID_TRANSITIONS.get(current.status, frozenset()):
            raise InvalidTransitionError(current.id, current.status, target)
