"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime, timezone
import logging

from caseflow.database import get_db
from caseflow.dependencies.services import get_analysis_invoker
from caseflow.models.schemas import HealthCheckResponse
from caseflow.services.analysis_invoker import AnalysisInvoker

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    invoker: AnalysisInvoker = Depends(get_analysis_invoker),
):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and the analysis service
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check analysis service
    service_status = "ok" if await invoker.check_health() else "error"

    # Overall status
    overall_status = "healthy" if db_status == "ok" and service_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        analysis_service=service_status,
        timestamp=datetime.now(timezone.utc),
    )
