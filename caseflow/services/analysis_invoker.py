"""
HTTP client for the external AI analysis service.

POSTs an AnalysisRequest to ``{AI_SERVICE_URL}/analyze`` and hands the
response to ResponseValidator. Every transport or protocol problem becomes a
``failed`` AnalysisResult; invoke() never raises.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from caseflow.config import settings
from caseflow.models.schemas import AnalysisRequest, AnalysisResult
from caseflow.services.response_validator import ResponseValidator
from caseflow.utils.helpers import truncate_text

logger = logging.getLogger(__name__)


class AnalysisInvoker:
    """Calls the analysis service once per processing attempt."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        validator: Optional[ResponseValidator] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.AI_SERVICE_URL).rstrip("/")
        self.timeout_seconds = float(timeout or settings.AI_SERVICE_TIMEOUT)
        self.timeout = httpx.Timeout(self.timeout_seconds, connect=10.0)
        self.api_key = settings.AI_SERVICE_API_KEY if api_key is None else api_key
        self.validator = validator or ResponseValidator()
        # Injected by tests (httpx.MockTransport)
        self._transport = transport

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def invoke(self, request: AnalysisRequest) -> AnalysisResult:
        """Send *request* and return the validated result."""
        payload = request.model_dump(exclude_none=True)
        url = f"{self.base_url}/analyze"

        try:
            async with self._client() as client:
                resp = await client.post(url, json=payload)
        except httpx.TimeoutException:
            logger.error("invoke: analysis request timed out after %.0f s", self.timeout_seconds)
            return self.validator.failed(
                f"Analysis service timed out after {self.timeout_seconds:.0f} seconds"
            )
        except httpx.ConnectError as exc:
            logger.error("invoke: connection error: %s", exc)
            return self.validator.failed(f"Could not connect to analysis service: {exc}")
        except httpx.HTTPError as exc:
            logger.error("invoke: transport error: %s", exc)
            return self.validator.failed(f"Analysis service request failed: {exc}")

        if resp.status_code < 200 or resp.status_code >= 300:
            logger.error(
                "invoke: analysis service returned HTTP %d: %s",
                resp.status_code,
                resp.text[:300],
            )
            return self.validator.failed(
                f"Analysis service returned HTTP {resp.status_code}: {truncate_text(resp.text, 200)}"
            )

        try:
            body: Any = resp.json()
        except ValueError:
            logger.error("invoke: response is not valid JSON. Preview: %s", resp.text[:300])
            return self.validator.failed("Analysis service returned invalid JSON")

        return self.validator.validate(body)

    async def check_health(self) -> bool:
        """Return True if the analysis service answers its health endpoint."""
        try:
            async with self._client(timeout=httpx.Timeout(5.0)) as client:
                resp = await client.get(f"{self.base_url}/health")
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.debug("Analysis service health check failed: %s", exc)
            return False
