import time
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional
from abc import ABC, abstractmethod

import httpx
from loguru import logger
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from gradescan.core.config import settings
from gradescan.services.prompts import get_extraction_prompt, MANUAL_ENTRY_TEXT
from gradescan.services.response_parser import parse_model_response
from gradescan.models.schemas import (
    ExtractedGrade,
    ExtractedStudent,
    ExtractionResult,
    MultiExtractionResult,
    ScanResult,
    StudentEntry,
)
from gradescan.utils.exceptions import (
    LLMConnectionError,
    ModelErrorKind,
    ModelInvocationError,
    ScanFailedError,
)
from gradescan.utils.file_processor import FileProcessor, file_processor


@dataclass
class ModelTier:
    """One model configuration: which model to call and how much it may write."""
    name: str
    model: str
    max_tokens: int


@dataclass
class ModelReply:
    text: str
    blocked: bool = False
    model: str = ""


def default_tier(multi: bool = False) -> ModelTier:
    return ModelTier(
        name="default",
        model=settings.gemini_model,
        max_tokens=settings.multi_max_tokens if multi else settings.single_max_tokens,
    )


def light_tier() -> ModelTier:
    return ModelTier(name="light", model=settings.gemini_light_model, max_tokens=settings.light_max_tokens)


def pro_tier() -> ModelTier:
    return ModelTier(name="pro", model=settings.gemini_pro_model, max_tokens=settings.escalation_max_tokens)


def classify_model_error(exc: BaseException) -> ModelErrorKind:
    """Map an SDK or transport exception onto the error kinds the scan service acts on."""
    if isinstance(exc, ModelInvocationError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ModelErrorKind.TIMEOUT

    if isinstance(exc, genai_errors.APIError):
        if exc.code == 429 or (exc.status or "").upper() == "RESOURCE_EXHAUSTED":
            return ModelErrorKind.RATE_LIMITED

    message = str(exc).lower()
    if "429" in message or "quota" in message or "resource_exhausted" in message:
        return ModelErrorKind.RATE_LIMITED
    if "timeout" in message or "timed out" in message:
        return ModelErrorKind.TIMEOUT

    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return ModelErrorKind.TRANSPORT
    return ModelErrorKind.UNKNOWN


def _consume_abandoned(task: asyncio.Future) -> None:
    # the call outlived its deadline, nobody awaits it any more
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned model call finished with: {exc}")


async def race_timeout(call: Awaitable[Any], timeout: float, label: str) -> Any:
    """
    Await `call` for at most `timeout` seconds.

    On expiry a TIMEOUT error is raised and the call is left to finish on
    its own; its result is discarded.
    """
    task = asyncio.ensure_future(call)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()

    task.add_done_callback(_consume_abandoned)
    raise ModelInvocationError(
        f"Timeout: {label} ne répond pas ({timeout:g}s)",
        kind=ModelErrorKind.TIMEOUT,
        details={"timeout_seconds": timeout},
    )


class BaseVisionExtractor(ABC):
    """Abstract base class for vision model clients"""

    @abstractmethod
    async def generate(
        self,
        image: bytes,
        mime_type: str,
        prompt: str,
        tier: ModelTier
    ) -> ModelReply:
        """Send one image and a prompt, return the raw text"""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the model connection is healthy"""
        pass


class GeminiExtractor(BaseVisionExtractor):

    def __init__(self, api_key: Optional[str] = None):

        self.api_key = api_key or settings.google_api_key

        if not self.api_key:
            raise LLMConnectionError("Google API key not configured. Set GOOGLE_API_KEY in environment.")

        try:
            self.client = genai.Client(api_key=self.api_key)
        except Exception as e:
            raise LLMConnectionError(f"Failed to initialize Gemini: {str(e)}")

        key_source = "user-provided" if api_key else "system"
        logger.info(f"Initialized Gemini extractor with model: {settings.gemini_model} (using {key_source} API key)")

    async def health_check(self) -> bool:
        try:
            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=settings.gemini_light_model,
                contents="Say OK",
            )
            return bool(response.text) and "ok" in response.text.lower()
        except Exception as e:
            logger.error(f"Gemini health check failed: {e}")
            return False

    async def generate(
        self,
        image: bytes,
        mime_type: str,
        prompt: str,
        tier: ModelTier
    ) -> ModelReply:
        try:
            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=tier.model,
                contents=[
                    types.Content(
                        role="user",
                        parts=[
                            types.Part(text=prompt),
                            types.Part.from_bytes(data=image, mime_type=mime_type),
                        ],
                    )
                ],
                config=types.GenerateContentConfig(
                    temperature=settings.gemini_temperature,
                    max_output_tokens=tier.max_tokens,
                    safety_settings=[],
                ),
            )
        except Exception as e:
            kind = classify_model_error(e)
            logger.error(f"Gemini call on {tier.model} failed ({kind.value}): {e}")
            raise ModelInvocationError(str(e), kind=kind, details={"model": tier.model}) from e

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        text = response.text or ""

        if not text:
            if block_reason:
                raise ModelInvocationError(
                    f"Contenu bloqué par le modèle: {block_reason}",
                    kind=ModelErrorKind.BLOCKED,
                    details={"model": tier.model},
                )
            raise ModelInvocationError("Empty response from Gemini", details={"model": tier.model})

        if block_reason:
            logger.warning(f"Gemini flagged the request ({block_reason}) but returned text")
        return ModelReply(text=text, blocked=bool(block_reason), model=tier.model)


def manual_entry_stub(multi: bool = False, error_kind: Optional[ModelErrorKind] = None) -> ScanResult:
    """Empty template the user fills in by hand when no model could read the document."""
    template_grade = ExtractedGrade(subject="", score=0, scale=20, raw_score="")

    if multi:
        parsed = MultiExtractionResult(
            students=[StudentEntry(student=ExtractedStudent(), class_name="", grades=[template_grade])],
            detected_class="",
            total_students_found=1,
        )
        source = "fallback-multi"
    else:
        parsed = ExtractionResult(student=ExtractedStudent(), class_name="", grades=[template_grade])
        source = "fallback"

    return ScanResult(
        success=True,
        text=MANUAL_ENTRY_TEXT,
        parsed=parsed,
        source=source,
        confidence=0.1,
        requires_manual_correction=True,
        error_kind=error_kind.value if error_kind else None,
    )


class ScanService:
    """
    Reads a document through the vision model and returns a canonical record.

    Model failures never reach the caller: a rate-limited call is retried
    once on the light tier, a multi-student scan that finds nobody is
    re-run on the pro tier, and anything else ends in the manual-entry stub.
    """

    def __init__(
        self,
        extractor: Optional[BaseVisionExtractor] = None,
        processor: Optional[FileProcessor] = None
    ):
        self.extractor = extractor
        self.processor = processor or file_processor
        self.current_method = "none"
        self._initialized = extractor is not None

    async def initialize(self) -> bool:
        """Set up the model client on the server key; without one the service still runs in manual mode."""
        if self._initialized and self.extractor is not None:
            return True

        if settings.gemini_enabled:
            try:
                self.extractor = GeminiExtractor()
                self.current_method = "gemini"
            except LLMConnectionError as e:
                logger.warning(f"Gemini unavailable, scans will fall back to manual entry: {e.message}")
                self.extractor = None
                self.current_method = "fallback"
        else:
            logger.info("Gemini disabled by configuration, manual entry only")
            self.current_method = "fallback"

        self._initialized = True
        return True

    def with_api_key(self, api_key: str) -> "ScanService":
        """
        One-off service on a caller's own Gemini key.

        This instance keeps its server-key client, so the next request
        without a key is not served with someone else's.
        """
        try:
            extractor = GeminiExtractor(api_key=api_key)
        except LLMConnectionError as e:
            logger.warning(f"User-provided key rejected, this scan falls back to manual entry: {e.message}")
            extractor = None

        service = ScanService(extractor=extractor, processor=self.processor)
        service._initialized = True
        return service

    @property
    def gemini_available(self) -> bool:
        return self.extractor is not None

    def status(self) -> Dict[str, Any]:
        return {
            "gemini": self.gemini_available,
            "currentMethod": self.current_method,
            "isReady": True,
            "multiStudentSupport": True,
        }

    async def health_check(self) -> bool:
        if not self.extractor:
            return False
        return await self.extractor.health_check()

    async def cleanup(self) -> None:
        self.extractor = None
        self._initialized = False
        self.current_method = "none"
        logger.info("Scan service cleaned up")

    async def _invoke(
        self,
        image: bytes,
        mime_type: str,
        tier: ModelTier,
        multi: bool
    ) -> ModelReply:
        timeout = settings.multi_timeout_seconds if multi else settings.single_timeout_seconds
        logger.info(f"Calling {tier.model} ({tier.name} tier, {tier.max_tokens} tokens, {timeout:g}s)")
        return await race_timeout(
            self.extractor.generate(image, mime_type, get_extraction_prompt(multi), tier),
            timeout,
            f"Gemini {tier.name}",
        )

    def _parse(self, reply: ModelReply, multi: bool):
        parsed = parse_model_response(reply.text, multi=multi)
        if parsed is None:
            raise ModelInvocationError("L'analyse de la réponse a échoué", details={"model": reply.model})
        return parsed

    async def _quota_retry(
        self,
        image: bytes,
        mime_type: str,
        multi: bool,
        original: ModelInvocationError
    ) -> ScanResult:
        logger.warning("Quota exceeded on the default model, retrying on the light tier")
        try:
            reply = await self._invoke(image, mime_type, light_tier(), multi)
            parsed = self._parse(reply, multi)
        except ModelInvocationError as retry_error:
            logger.error(f"Light tier retry failed: {retry_error.message}")
            raise original

        return ScanResult(
            success=True,
            text=reply.text,
            parsed=parsed,
            source="gemini-multi-retry" if multi else "gemini-retry",
            confidence=0.5 if reply.blocked else 0.9,
        )

    async def _scan_single(self, image: bytes, mime_type: str) -> ScanResult:
        try:
            reply = await self._invoke(image, mime_type, default_tier(multi=False), multi=False)
            parsed = self._parse(reply, multi=False)
        except ModelInvocationError as e:
            if e.kind == ModelErrorKind.RATE_LIMITED:
                return await self._quota_retry(image, mime_type, False, e)
            raise

        return ScanResult(
            success=True,
            text=reply.text,
            parsed=parsed,
            source="gemini",
            confidence=0.5 if reply.blocked else 0.95,
        )

    async def _scan_multi(self, image: bytes, mime_type: str) -> ScanResult:
        try:
            reply = await self._invoke(image, mime_type, default_tier(multi=True), multi=True)
            parsed = self._parse(reply, multi=True)
        except ModelInvocationError as e:
            if e.kind == ModelErrorKind.RATE_LIMITED:
                return await self._quota_retry(image, mime_type, True, e)
            raise

        result = ScanResult(
            success=True,
            text=reply.text,
            parsed=parsed,
            source="gemini-multi",
            confidence=0.5 if reply.blocked else 0.95,
        )

        if parsed.students:
            return result

        logger.info("No student found, retrying on the pro tier")
        try:
            pro_reply = await self._invoke(image, mime_type, pro_tier(), multi=True)
            pro_parsed = self._parse(pro_reply, multi=True)
        except ModelInvocationError as e:
            logger.warning(f"Pro tier escalation failed, keeping the first result: {e.message}")
            return result

        if not pro_parsed.students:
            logger.info("Pro tier found no student either")
            return result

        return ScanResult(
            success=True,
            text=pro_reply.text,
            parsed=pro_parsed,
            source="gemini-multi-pro",
            confidence=0.5 if pro_reply.blocked else 0.95,
        )

    async def extract(self, content: bytes, filename: str, multi: bool = False) -> ScanResult:
        """
        Scan one document.

        Always returns a record: the model output when some tier succeeded,
        otherwise the manual-entry stub flagged `requires_manual_correction`.
        """
        if not self._initialized:
            await self.initialize()

        start_time = time.time()
        max_width = settings.multi_max_width if multi else settings.single_max_width
        image, mime_type = await self.processor.preprocess(content, filename, max_width)

        error_kind: Optional[ModelErrorKind] = None
        if self.extractor is not None:
            try:
                result = await (self._scan_multi(image, mime_type) if multi else self._scan_single(image, mime_type))
                self.current_method = result.source
                logger.info(
                    f"Scan of '{filename}' completed in {time.time() - start_time:.2f}s "
                    f"via {result.source} (confidence {result.confidence})"
                )
                return result
            except ModelInvocationError as e:
                error_kind = e.kind
                logger.error(f"Gemini scan failed ({e.kind.value}): {e.message}")

        try:
            result = manual_entry_stub(multi=multi, error_kind=error_kind)
        except Exception as e:
            logger.error(f"Manual entry fallback failed: {e}")
            raise ScanFailedError(
                "Toutes les méthodes OCR ont échoué.",
                details={"error_kind": error_kind.value if error_kind else None}
            ) from e

        self.current_method = result.source
        logger.info(f"Returning manual entry template for '{filename}'")
        return result


scan_service = ScanService()
