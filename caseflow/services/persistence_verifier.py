"""
Read-after-write check for stored analysis reports.
"""
import logging

from caseflow.services.case_store import CaseNotFoundError, CaseStore

logger = logging.getLogger(__name__)


class StorageTruncationError(RuntimeError):
    """The stored report is not the length that was written."""

    def __init__(self, case_id: str, expected_length: int, stored_length: int) -> None:
        self.case_id = case_id
        self.expected_length = expected_length
        self.stored_length = stored_length
        # Set by the lifecycle controller to the case as persisted
        self.case = None
        super().__init__(
            f"Stored report for case {case_id} is {stored_length} characters, "
            f"expected {expected_length}"
        )


class PersistenceVerifier:
    """Re-reads a case and compares the stored report length."""

    def __init__(self, store: CaseStore) -> None:
        self.store = store

    async def verify(self, case_id: str, expected_length: int) -> None:
        """
        Raises:
            StorageTruncationError: Stored length differs, or the report is missing.
        """
        try:
            case = await self.store.require(case_id)
        except CaseNotFoundError:
            raise StorageTruncationError(case_id, expected_length, 0)

        result = case.analysis_result
        stored_length = len(result.markdown_report) if result is not None else 0

        if stored_length != expected_length:
            raise StorageTruncationError(case_id, expected_length, stored_length)

        logger.info(
            "Verified stored report for case %s (%d characters)", case_id, stored_length
        )
