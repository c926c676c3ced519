"""
Tests for model invocation: tiers, timeouts, retries and the manual stub
"""

import json
import asyncio
from unittest.mock import patch

import pytest

from gradescan.core.config import settings
from gradescan.models.schemas import ExtractionResult, MultiExtractionResult
from gradescan.services.extraction import (
    ModelReply,
    ScanService,
    classify_model_error,
    manual_entry_stub,
    race_timeout,
)
from gradescan.utils.exceptions import ModelErrorKind, ModelInvocationError

from conftest import ScriptedExtractor, make_image


SINGLE_JSON = json.dumps({
    "student": {"fullName": "DUPONT Jean"},
    "className": "6ème A",
    "grades": [{"subject": "Mathématiques", "score": 15, "scale": 20}]
})
MULTI_JSON = json.dumps({
    "students": [{"student": {"fullName": "MARTIN Marie"}, "grades": [{"subject": "Anglais", "score": 14, "scale": 20}]}],
    "totalStudentsFound": 1
})
EMPTY_MULTI_JSON = '{"students": [], "totalStudentsFound": 0}'


def quota_error():
    return ModelInvocationError("429 RESOURCE_EXHAUSTED: quota exceeded", kind=ModelErrorKind.RATE_LIMITED)


def scan(script, multi=False, filename="bulletin.png"):
    extractor = ScriptedExtractor(script)
    service = ScanService(extractor=extractor)
    result = asyncio.run(service.extract(make_image(), filename, multi=multi))
    return result, extractor, service


class TestSingleMode:

    def test_primary_call(self):
        result, extractor, service = scan({"default": [SINGLE_JSON]})

        assert result.source == "gemini"
        assert result.confidence == 0.95
        assert isinstance(result.parsed, ExtractionResult)
        assert result.parsed.student.full_name == "DUPONT Jean"
        assert [(t.name, t.max_tokens) for t in extractor.calls] == [("default", settings.single_max_tokens)]
        assert service.current_method == "gemini"

    def test_blocked_content_lowers_confidence(self):
        result, _, _ = scan({"default": [ModelReply(text=SINGLE_JSON, blocked=True)]})
        assert result.confidence == 0.5

    def test_quota_error_retries_on_light_tier(self):
        result, extractor, _ = scan({"default": [quota_error()], "light": [SINGLE_JSON]})

        assert result.source == "gemini-retry"
        assert result.confidence == 0.9
        assert [t.name for t in extractor.calls] == ["default", "light"]
        assert extractor.calls[1].max_tokens == settings.light_max_tokens

    def test_no_escalation_in_single_mode(self):
        result, extractor, _ = scan({"default": ['{"grades": []}']})
        assert result.source == "gemini"
        assert len(extractor.calls) == 1

    def test_other_errors_give_manual_stub(self):
        error = ModelInvocationError("boom", kind=ModelErrorKind.TRANSPORT)
        result, extractor, _ = scan({"default": [error]})

        assert result.source == "fallback"
        assert result.confidence == 0.1
        assert result.requires_manual_correction
        assert result.error_kind == "transport"
        assert len(extractor.calls) == 1

    def test_failed_light_retry_gives_manual_stub(self):
        retry_error = ModelInvocationError("down", kind=ModelErrorKind.TRANSPORT)
        result, _, _ = scan({"default": [quota_error()], "light": [retry_error]})

        assert result.source == "fallback"
        # the original quota error is the one reported
        assert result.error_kind == "rate_limited"

    def test_timeout_gives_manual_stub(self):
        with patch.object(settings, "single_timeout_seconds", 0.05):
            result, _, _ = scan({"default": [2.0]})

        assert result.source == "fallback"
        assert result.error_kind == "timeout"

    def test_prose_reply_uses_text_fallback(self):
        result, _, _ = scan({"default": ["DUPONT Jean\nMathématiques: 15/20\nFrançais: 12 sur 20"]})

        assert result.source == "gemini"
        assert result.parsed.student.full_name == "DUPONT Jean"
        assert len(result.parsed.grades) == 2


class TestMultiMode:

    def test_primary_call(self):
        result, extractor, _ = scan({"default": [MULTI_JSON]}, multi=True)

        assert result.source == "gemini-multi"
        assert isinstance(result.parsed, MultiExtractionResult)
        assert extractor.calls[0].max_tokens == settings.multi_max_tokens

    def test_zero_students_escalates_to_pro(self):
        result, extractor, _ = scan({"default": [EMPTY_MULTI_JSON], "pro": [MULTI_JSON]}, multi=True)

        assert result.source == "gemini-multi-pro"
        assert len(result.parsed.students) == 1
        assert [(t.name, t.max_tokens) for t in extractor.calls] == [
            ("default", settings.multi_max_tokens),
            ("pro", settings.escalation_max_tokens),
        ]

    def test_empty_escalation_keeps_first_result(self):
        result, extractor, _ = scan({"default": [EMPTY_MULTI_JSON], "pro": [EMPTY_MULTI_JSON]}, multi=True)

        assert result.source == "gemini-multi"
        assert result.parsed.students == []
        assert result.parsed.total_students_found == 0
        assert len(extractor.calls) == 2

    def test_failed_escalation_keeps_first_result(self):
        error = ModelInvocationError("pro down", kind=ModelErrorKind.UNKNOWN)
        result, _, _ = scan({"default": [EMPTY_MULTI_JSON], "pro": [error]}, multi=True)
        assert result.source == "gemini-multi"
        assert result.success

    def test_quota_retry(self):
        result, _, _ = scan({"default": [quota_error()], "light": [MULTI_JSON]}, multi=True)
        assert result.source == "gemini-multi-retry"
        assert result.confidence == 0.9

    def test_manual_stub(self):
        result, _, _ = scan({"default": [ModelInvocationError("blocked", kind=ModelErrorKind.BLOCKED)]}, multi=True)

        assert result.source == "fallback-multi"
        assert result.parsed.total_students_found == 1
        assert result.parsed.detected_class == ""
        assert len(result.parsed.students[0].grades) == 1


class TestWithoutModel:

    def test_no_extractor_goes_straight_to_stub(self):
        service = ScanService(extractor=None)
        service._initialized = True
        result = asyncio.run(service.extract(make_image(), "scan.jpg"))

        assert result.source == "fallback"
        assert result.requires_manual_correction
        assert service.status() == {
            "gemini": False,
            "currentMethod": "fallback",
            "isReady": True,
            "multiStudentSupport": True,
        }

    def test_initialize_without_key_stays_ready(self):
        service = ScanService()
        with patch.object(settings, "google_api_key", None):
            assert asyncio.run(service.initialize()) is True
        assert service.gemini_available is False
        assert service.status()["isReady"] is True

    def test_user_key_gets_its_own_service(self):
        server = ScriptedExtractor({})
        service = ScanService(extractor=server)

        with patch("gradescan.services.extraction.GeminiExtractor", lambda api_key=None: ScriptedExtractor({})):
            keyed = service.with_api_key("alice-key")

        assert keyed is not service
        assert keyed.extractor is not server
        assert service.extractor is server

    def test_cleanup(self):
        service = ScanService(extractor=ScriptedExtractor({}))
        asyncio.run(service.cleanup())
        assert service.status()["gemini"] is False


class TestHelpers:

    def test_race_timeout_returns_fast_result(self):
        async def quick():
            return "ok"

        assert asyncio.run(race_timeout(quick(), 1, "test")) == "ok"

    def test_race_timeout_raises_timeout_kind(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(ModelInvocationError) as exc_info:
            asyncio.run(race_timeout(slow(), 0.01, "test"))
        assert exc_info.value.kind == ModelErrorKind.TIMEOUT
        assert exc_info.value.error_code == "MODEL_TIMEOUT"

    @pytest.mark.parametrize("error, kind", [
        (Exception("429 Too Many Requests"), ModelErrorKind.RATE_LIMITED),
        (Exception("You exceeded your current quota"), ModelErrorKind.RATE_LIMITED),
        (asyncio.TimeoutError(), ModelErrorKind.TIMEOUT),
        (ConnectionError("reset by peer"), ModelErrorKind.TRANSPORT),
        (ValueError("weird"), ModelErrorKind.UNKNOWN),
    ])
    def test_classify_model_error(self, error, kind):
        assert classify_model_error(error) == kind

    def test_stub_shape(self):
        stub = manual_entry_stub()
        assert stub.success
        assert stub.parsed.student.full_name == ""
        assert stub.parsed.grades[0].scale == 20
        assert stub.parsed.grades[0].raw_score == ""
