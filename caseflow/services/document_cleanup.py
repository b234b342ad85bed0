"""
Purges document metadata from a case once its analysis has completed.
"""
import logging

from caseflow.models.database_models import COMPLETION_STATUSES
from caseflow.models.schemas import CaseRecord
from caseflow.services.case_store import CaseStore

logger = logging.getLogger(__name__)


class DocumentCleanupStage:
    """Empties ``documents`` and records how many descriptors were removed."""

    def __init__(self, store: CaseStore) -> None:
        self.store = store

    async def purge(self, case: CaseRecord) -> CaseRecord:
        """
        Clear the document list of a completed case.

        Cases in any other status are returned unchanged.
        """
        if case.status not in COMPLETION_STATUSES:
            logger.debug(
                "Skipping document cleanup for case %s in status %s",
                case.id,
                case.status.value,
            )
            return case

        removed = len(case.documents)
        updated = await self.store.update(
            case.id, {"documents": [], "cleared_document_count": removed}
        )
        logger.info("Cleared %d document descriptors from case %s", removed, case.id)
        return updated
