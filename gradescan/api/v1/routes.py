import time
from typing import List, Optional
from fastapi import APIRouter, Depends, File, UploadFile, HTTPException, status, Query, Request
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from gradescan.models.schemas import (
    ApplySuggestionRequest,
    ErrorResponse,
    ExtractionResult,
    HealthResponse,
    JsonCheckRequest,
    JsonCheckResult,
    MultiExtractionResult,
    SaveRequest,
    SaveResponse,
    ScanHistoryEntry,
    ScanResponse,
    SuggestionBundle,
    SuggestionRequest,
    ValidationResponse,
)
from gradescan.api.security import get_api_key
from gradescan.services.pipeline import pipeline, save_message
from gradescan.services.response_parser import check_json_response
from gradescan.services.suggestions import apply_suggestion
from gradescan.services.validation import (
    generate_validation_report,
    validate_multi_student,
    validate_single_student,
)
from gradescan.utils.file_processor import file_processor
from gradescan.utils.exceptions import (
    FileTooLargeError,
    InvalidFileTypeError,
    FileProcessingError,
)
from gradescan.core.config import settings

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


router = APIRouter()


SCAN_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid file or request"},
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    413: {"model": ErrorResponse, "description": "File too large"},
    422: {"model": ErrorResponse, "description": "Scan failed"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Internal server error"}
}


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Status of the scan service; manual entry keeps it ready without a model"
)
async def health_check(
    check: bool = Query(default=False, description="Send a tiny request to the model to check it answers")
):
    scan_status = pipeline.scanner.status()
    healthy = scan_status["gemini"]

    llm_status = None
    if check:
        healthy = await pipeline.scanner.health_check()
        llm_status = "connected" if healthy else "disconnected"

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        llm_provider="gemini" if scan_status["gemini"] else "none",
        current_method=scan_status["currentMethod"],
        is_ready=scan_status["isReady"],
        llm_status=llm_status
    )


async def _run_scan(
    file: UploadFile,
    multi: bool,
    class_name: Optional[str],
    grade_scale: Optional[int],
    apikey: Optional[str]
) -> ScanResponse:
    start_time = time.time()

    try:
        file_content = await file.read()
        file_size = len(file_content)

        logger.info(f"Processing {'multi' if multi else 'single'} scan: {file.filename} ({file_size} bytes)")

        file_processor.validate_file(filename=file.filename, file_size=file_size)

        result, suggestions = await pipeline.scan(
            file_content,
            file.filename,
            multi=multi,
            class_name=class_name,
            grade_scale=grade_scale,
            api_key=apikey
        )

        processing_time = (time.time() - start_time) * 1000

        return ScanResponse(
            success=result.success,
            data=result,
            suggestions=suggestions,
            processing_time_ms=round(processing_time, 2),
            file_name=file.filename,
            file_size_bytes=file_size
        )

    except FileTooLargeError as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(e)
        )
    except InvalidFileTypeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except FileProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    finally:
        await file.close()


@router.post(
    "/scan",
    response_model=ScanResponse,
    responses=SCAN_RESPONSES,
    summary="Scan a single-student document",
    dependencies=[Depends(get_api_key)]
)
@limiter.limit(f"{settings.rate_limit_requests}/minute")
async def scan_single(
    request: Request,
    file: UploadFile = File(..., description="Report card (JPG, PNG, WEBP or PDF)"),
    class_name: Optional[str] = Query(default=None, description="Class chosen before scanning, wins over the one read"),
    grade_scale: Optional[int] = Query(default=None, description="Scale applied to every grade (5, 10, 20...)"),
    apikey: Optional[str] = Query(default=None, description="Your Gemini API key. If not provided, server default key will be used.")
):
    return await _run_scan(file, False, class_name, grade_scale, apikey)


@router.post(
    "/scan/multi",
    response_model=ScanResponse,
    responses=SCAN_RESPONSES,
    summary="Scan a document listing several students",
    dependencies=[Depends(get_api_key)]
)
@limiter.limit(f"{settings.rate_limit_requests}/minute")
async def scan_multi(
    request: Request,
    file: UploadFile = File(..., description="Class list or grade sheet (JPG, PNG, WEBP or PDF)"),
    class_name: Optional[str] = Query(default=None, description="Class chosen before scanning, forced on every student"),
    grade_scale: Optional[int] = Query(default=None, description="Scale applied to every grade (5, 10, 20...)"),
    apikey: Optional[str] = Query(default=None, description="Your Gemini API key (optional)")
):
    return await _run_scan(file, True, class_name, grade_scale, apikey)


@router.post(
    "/suggestions",
    response_model=SuggestionBundle,
    summary="Rank correction suggestions for an extracted record"
)
async def get_suggestions(body: SuggestionRequest):
    return await pipeline.suggestions.generate(body.data)


@router.post(
    "/suggestions/apply",
    summary="Apply one suggestion chosen by the user",
    description="Returns a new record; the posted one is not modified"
)
async def apply_selected_suggestion(body: ApplySuggestionRequest):
    updated = apply_suggestion(body.data, body.selection)
    return updated.model_dump(by_alias=True)


@router.post(
    "/validate",
    response_model=ValidationResponse,
    summary="Validate a single- or multi-student record"
)
async def validate_record(body: SuggestionRequest):
    if isinstance(body.data, MultiExtractionResult):
        validation = validate_multi_student(body.data)
    else:
        validation = validate_single_student(body.data)

    return ValidationResponse(
        validation=validation,
        report=generate_validation_report(validation)
    )


@router.post(
    "/save",
    response_model=SaveResponse,
    responses={401: {"model": ErrorResponse, "description": "Missing or invalid API key"}},
    summary="Save a reviewed multi-student record",
    dependencies=[Depends(get_api_key)]
)
async def save_record(body: SaveRequest):
    summary = await pipeline.save_students(body.data, class_name=body.class_name)
    return SaveResponse(
        success=summary.failed_students == 0 and summary.failed_grades == 0,
        message=save_message(summary),
        summary=summary
    )


@router.get(
    "/history",
    response_model=List[ScanHistoryEntry],
    summary="Recent scans, newest first"
)
async def get_history():
    return await pipeline.history.list()


@router.delete(
    "/history",
    summary="Clear the scan history",
    dependencies=[Depends(get_api_key)]
)
async def clear_history():
    await pipeline.history.clear()
    return {"success": True}


@router.post(
    "/check-json",
    response_model=JsonCheckResult,
    summary="Check a raw model response",
    description="Diagnostic for prompt work: reports structural problems without repairing them"
)
async def check_json(body: JsonCheckRequest):
    return check_json_response(body.text)


@router.get(
    "/schema",
    summary="Get Extraction Schema",
    description="JSON schema of the extraction record"
)
async def get_schema(multi: bool = Query(default=True, description="Multi-student record schema")):
    if multi:
        return MultiExtractionResult.model_json_schema()
    return ExtractionResult.model_json_schema()
