from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
import json
import logging
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import Request, urlopen

from app.core.config import Settings
from app.services.observability import current_trace_id, emit_structured_log


class OracleUnavailableError(RuntimeError):
    """Raised when the assessment oracle cannot be reached or is not configured."""


class OracleResponseError(ValueError):
    """Raised when the assessment oracle answers with an unusable payload."""


@dataclass(frozen=True)
class OracleAssessment:
    recommendation: str | None = None
    confidence: float | None = None
    rationale: str | None = None
    structured_fields: dict[str, Any] = field(default_factory=dict)


class AssessmentOracle(Protocol):
    def assess(self, context: dict[str, Any]) -> OracleAssessment: ...


def assessment_from_payload(payload: Any) -> OracleAssessment:
    if not isinstance(payload, dict):
        raise OracleResponseError("oracle_payload_not_object")

    confidence_raw = payload.get("confidence")
    confidence: float | None = None
    if isinstance(confidence_raw, (int, float)) and not isinstance(confidence_raw, bool):
        confidence = float(confidence_raw)

    recommendation = payload.get("recommendation")
    rationale = payload.get("rationale")
    structured = payload.get("structured_fields") or payload.get("structuredFields") or {}
    if not isinstance(structured, dict):
        raise OracleResponseError("oracle_structured_fields_not_object")

    return OracleAssessment(
        recommendation=recommendation if isinstance(recommendation, str) else None,
        confidence=confidence,
        rationale=rationale if isinstance(rationale, str) else None,
        structured_fields=structured,
    )


class DisabledAssessmentOracle:
    """Oracle used when no assessment service is configured; every call falls back."""

    def assess(self, context: dict[str, Any]) -> OracleAssessment:
        raise OracleUnavailableError("oracle_not_configured")


class HttpAssessmentOracle:
    def __init__(self, base_url: str, *, timeout_seconds: float, api_key: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.api_key = api_key

    def assess(self, context: dict[str, Any]) -> OracleAssessment:
        body = json.dumps(context, sort_keys=True, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        trace_id = current_trace_id()
        if trace_id:
            headers["X-Trace-Id"] = trace_id

        request = Request(urljoin(f"{self.base_url}/", "assess"), data=body, method="POST", headers=headers)
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            raise OracleUnavailableError(f"http_error:{exc.code}") from exc
        except URLError as exc:
            raise OracleUnavailableError(f"url_error:{exc.reason}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise OracleResponseError("oracle_payload_not_json") from exc
        return assessment_from_payload(payload)


def build_assessment_oracle(settings: Settings) -> AssessmentOracle:
    if not settings.oracle_url:
        return DisabledAssessmentOracle()
    return HttpAssessmentOracle(
        settings.oracle_url,
        timeout_seconds=settings.oracle_timeout_seconds,
        api_key=settings.oracle_api_key,
    )


def consult_oracle(
    oracle: AssessmentOracle,
    context: dict[str, Any],
    *,
    timeout_seconds: float,
    release_version: str | None = None,
) -> OracleAssessment | None:
    """Call the oracle with a hard deadline; any failure yields ``None`` so callers use their fallback."""
    kind = context.get("kind")
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="oracle")
    future = executor.submit(oracle.assess, context)
    try:
        result = future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        emit_structured_log(
            component="oracle",
            event="oracle_timeout",
            level=logging.WARNING,
            release_version=release_version,
            kind=kind,
            timeout_seconds=timeout_seconds,
        )
        return None
    except Exception as exc:
        emit_structured_log(
            component="oracle",
            event="oracle_failed",
            level=logging.WARNING,
            release_version=release_version,
            kind=kind,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return None
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not isinstance(result, OracleAssessment):
        emit_structured_log(
            component="oracle",
            event="oracle_invalid_result",
            level=logging.WARNING,
            release_version=release_version,
            kind=kind,
            result_type=type(result).__name__,
        )
        return None
    return result
