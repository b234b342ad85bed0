"""
Prompt import endpoints.
"""
import logging

from fastapi import APIRouter, Depends

from caseflow.dependencies.services import get_lookup_table_extractor
from caseflow.models.schemas import LookupTableExtractRequest, LookupTableExtractResponse
from caseflow.services.lookup_table import LookupTableExtractor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/lookup-table", response_model=LookupTableExtractResponse)
async def extract_lookup_table(
    payload: LookupTableExtractRequest,
    extractor: LookupTableExtractor = Depends(get_lookup_table_extractor),
) -> LookupTableExtractResponse:
    """
    Find the lookup table embedded in imported prompt text.

    Returns ``found: false`` rather than an error when the text holds no
    recognisable table.
    """
    table = extractor.extract(payload.text)
    if table is None:
        return LookupTableExtractResponse(found=False)
    return LookupTableExtractResponse(found=True, keys=sorted(table.keys()), table=table)
