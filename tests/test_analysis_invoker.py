"""
Tests for AnalysisInvoker against an httpx.MockTransport analysis service.
"""
import json

import httpx
import pytest

from caseflow.models.database_models import AnalysisStatus
from caseflow.models.schemas import AnalysisRequest, DocumentText
from caseflow.services.analysis_invoker import AnalysisInvoker
from conftest import AI_BASE_URL, make_report


def _request(**kwargs) -> AnalysisRequest:
    return AnalysisRequest(
        documents=[DocumentText(filename="notes.txt", content="Observation notes")],
        module_type="k12",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_completed_report_is_returned_unchanged(invoker, analysis_service):
    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.COMPLETED
    assert result.markdown_report == analysis_service.body["markdown_report"]
    assert result.error_message is None
    assert result.analysis_date


@pytest.mark.asyncio
async def test_posts_to_analyze_without_empty_fields(invoker, analysis_service):
    await invoker.invoke(_request(student_name="Jordan Lee"))

    request = analysis_service.requests[-1]
    assert request.method == "POST"
    assert str(request.url) == f"{AI_BASE_URL}/analyze"
    body = json.loads(request.content)
    assert body["student_name"] == "Jordan Lee"
    assert "student_grade" not in body
    assert body["documents"] == [{"filename": "notes.txt", "content": "Observation notes"}]
    assert "authorization" not in request.headers


@pytest.mark.asyncio
async def test_api_key_is_sent_as_bearer_token(analysis_service):
    invoker = AnalysisInvoker(
        base_url=AI_BASE_URL + "/",
        api_key="s3cret",
        transport=analysis_service.transport(),
    )

    await invoker.invoke(_request())

    request = analysis_service.requests[-1]
    assert request.headers["authorization"] == "Bearer s3cret"
    assert str(request.url) == f"{AI_BASE_URL}/analyze"


@pytest.mark.asyncio
async def test_camel_case_wrapped_response(invoker, analysis_service):
    report = make_report()
    analysis_service.reply({"analysisResult": {"status": "completed", "markdownReport": report}})

    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.COMPLETED
    assert result.markdown_report == report


@pytest.mark.asyncio
async def test_http_error_status_is_failed(invoker, analysis_service):
    analysis_service.reply({"detail": "internal error"}, status_code=500)

    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.FAILED
    assert result.error_message.startswith("Analysis service returned HTTP 500")
    assert result.markdown_report == ""


@pytest.mark.asyncio
async def test_invalid_json_is_failed(invoker, analysis_service):
    analysis_service.raw_text = "<html>gateway timeout</html>"

    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.FAILED
    assert result.error_message == "Analysis service returned invalid JSON"


@pytest.mark.asyncio
async def test_timeout_is_failed(invoker, analysis_service):
    analysis_service.error = httpx.ReadTimeout("read timed out")

    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.FAILED
    assert "timed out" in result.error_message


@pytest.mark.asyncio
async def test_connection_error_is_failed(invoker, analysis_service):
    analysis_service.error = httpx.ConnectError("connection refused")

    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.FAILED
    assert result.error_message.startswith("Could not connect to analysis service")


@pytest.mark.asyncio
async def test_non_object_body_is_failed(invoker, analysis_service):
    analysis_service.reply(["not", "an", "object"])

    result = await invoker.invoke(_request())

    assert result.status == AnalysisStatus.FAILED
    assert result.error_message == "Invalid response structure from analysis service"


@pytest.mark.asyncio
async def test_check_health(invoker, analysis_service):
    assert await invoker.check_health() is True

    analysis_service.healthy = False
    assert await invoker.check_health() is False


@pytest.mark.asyncio
async def test_check_health_unreachable():
    def refuse(request):
        raise httpx.ConnectError("connection refused")

    invoker = AnalysisInvoker(base_url=AI_BASE_URL, transport=httpx.MockTransport(refuse))

    assert await invoker.check_health() is False
