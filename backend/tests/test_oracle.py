from __future__ import annotations

import json
import os
from pathlib import Path
import sys
import unittest
from unittest.mock import patch

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.core.config import Settings
from app.services import oracle as oracle_module
from app.services.oracle import (
    DisabledAssessmentOracle,
    HttpAssessmentOracle,
    OracleAssessment,
    OracleResponseError,
    assessment_from_payload,
    build_assessment_oracle,
    consult_oracle,
)


class _FakeResponse:
    def __init__(self, body: str) -> None:
        self._body = body.encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        return None


class OracleTests(unittest.TestCase):
    def test_payload_parsing_accepts_camel_case_structured_fields(self) -> None:
        assessment = assessment_from_payload(
            {"recommendation": "GO", "confidence": 1, "rationale": "ok", "structuredFields": {"risk_level": "low"}}
        )
        self.assertEqual(assessment.confidence, 1.0)
        self.assertEqual(assessment.structured_fields, {"risk_level": "low"})

        with self.assertRaises(OracleResponseError):
            assessment_from_payload(["not", "an", "object"])
        with self.assertRaises(OracleResponseError):
            assessment_from_payload({"structured_fields": "nope"})

    def test_boolean_confidence_is_dropped(self) -> None:
        self.assertIsNone(assessment_from_payload({"confidence": True}).confidence)

    def test_build_uses_disabled_oracle_without_url(self) -> None:
        self.assertIsInstance(build_assessment_oracle(Settings(oracle_url=None)), DisabledAssessmentOracle)
        http_oracle = build_assessment_oracle(Settings(oracle_url="http://oracle.local/", oracle_api_key="k"))
        self.assertIsInstance(http_oracle, HttpAssessmentOracle)
        self.assertEqual(http_oracle.base_url, "http://oracle.local")

    def test_consult_returns_none_when_oracle_fails(self) -> None:
        self.assertIsNone(consult_oracle(DisabledAssessmentOracle(), {"kind": "readiness"}, timeout_seconds=1.0))

    def test_consult_rejects_non_assessment_results(self) -> None:
        class WrongTypeOracle:
            def assess(self, context):
                return {"recommendation": "GO"}

        self.assertIsNone(consult_oracle(WrongTypeOracle(), {"kind": "readiness"}, timeout_seconds=1.0))

    def test_http_oracle_posts_context_and_parses_answer(self) -> None:
        captured = {}

        def fake_urlopen(request, timeout):
            captured["url"] = request.full_url
            captured["body"] = json.loads(request.data.decode("utf-8"))
            captured["auth"] = request.get_header("Authorization")
            captured["timeout"] = timeout
            return _FakeResponse(json.dumps({"rationale": "fine", "structured_fields": {"summary": "s"}}))

        http_oracle = HttpAssessmentOracle("http://oracle.local", timeout_seconds=3.0, api_key="secret")
        with patch.object(oracle_module, "urlopen", fake_urlopen):
            result = consult_oracle(http_oracle, {"kind": "changelog", "version": "1.0.0"}, timeout_seconds=5.0)

        self.assertIsInstance(result, OracleAssessment)
        self.assertEqual(result.rationale, "fine")
        self.assertEqual(captured["url"], "http://oracle.local/assess")
        self.assertEqual(captured["body"]["kind"], "changelog")
        self.assertEqual(captured["auth"], "Bearer secret")
        self.assertEqual(captured["timeout"], 3.0)

    def test_http_oracle_invalid_json_falls_back(self) -> None:
        http_oracle = HttpAssessmentOracle("http://oracle.local", timeout_seconds=3.0)
        with patch.object(oracle_module, "urlopen", lambda request, timeout: _FakeResponse("<html>")):
            self.assertIsNone(consult_oracle(http_oracle, {"kind": "changelog"}, timeout_seconds=5.0))


if __name__ == "__main__":
    unittest.main()
