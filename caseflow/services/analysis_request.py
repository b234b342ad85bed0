"""
Builds the canonical request sent to the AI analysis service.
"""
import logging
from typing import Sequence

from caseflow.models.schemas import AnalysisRequest, CaseRecord, DocumentText

logger = logging.getLogger(__name__)


class AnalysisRequestBuilder:
    """Combines extracted document text with case metadata."""

    def build(self, documents: Sequence[DocumentText], case: CaseRecord) -> AnalysisRequest:
        """
        Build an AnalysisRequest for *case*.

        Raises:
            ValueError: The case has no module type or there are no documents.
        """
        if not case.module_type:
            raise ValueError(f"Case {case.id} has no module_type")
        if not documents:
            raise ValueError(f"Case {case.id} has no extracted documents to analyse")

        request = AnalysisRequest(
            documents=list(documents),
            module_type=case.module_type,
            student_grade=case.student_grade or None,
            student_name=case.student_name or None,
        )
        logger.debug(
            "Built analysis request for case %s: %d documents, module=%s",
            case.id,
            len(request.documents),
            request.module_type,
        )
        return request
