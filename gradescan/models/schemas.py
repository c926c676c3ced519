from typing import List, Optional, Union, Any, Literal
from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for records exchanged with the client: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True)


# extracted data, owned by one scan session until saved or dropped

class ExtractedStudent(WireModel):
    full_name: str = Field(default="", alias="fullName", description="Raw full name as read on the document")


class ExtractedGrade(WireModel):
    subject: str = Field(default="", description="Subject label as read on the document")
    score: float = Field(default=0.0, allow_inf_nan=False, description="Numeric score, 0 when the value could not be read")
    scale: int = Field(default=20, description="Grading scale (5, 10 or 20 usually)")
    raw_score: Optional[str] = Field(
        default=None,
        alias="rawScore",
        description="Original value when it could not be read as a number"
    )

    @property
    def score_unreadable(self) -> bool:
        return self.raw_score is not None


class StudentEntry(WireModel):
    student: ExtractedStudent = Field(default_factory=ExtractedStudent)
    class_name: Optional[str] = Field(default=None, alias="className")
    grades: List[ExtractedGrade] = Field(default_factory=list)


class ExtractionResult(WireModel):
    """Single-student extraction."""

    student: ExtractedStudent
    class_name: str = Field(default="", alias="className")
    grades: List[ExtractedGrade] = Field(default_factory=list)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "student": {"fullName": "DUPONT Jean"},
                "className": "6ème A",
                "grades": [
                    {"subject": "Mathématiques", "score": 15.5, "scale": 20},
                    {"subject": "Français", "score": 12, "scale": 20}
                ]
            }
        }
    )


class MultiExtractionResult(WireModel):
    """Multi-student extraction, one entry per student found on the document."""

    students: List[StudentEntry]
    detected_class: Optional[str] = Field(default=None, alias="detectedClass")
    total_students_found: int = Field(default=0, alias="totalStudentsFound")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "students": [
                    {
                        "student": {"fullName": "MARTIN Marie"},
                        "grades": [{"subject": "Mathématiques", "score": 16, "scale": 20}]
                    },
                    {
                        "student": {"fullName": "Pierre BERNARD"},
                        "grades": [{"subject": "Français", "score": 14, "scale": 20}]
                    }
                ],
                "detectedClass": "6ème A",
                "totalStudentsFound": 2
            }
        }
    )


Extraction = Union[MultiExtractionResult, ExtractionResult]


class ScanResult(WireModel):
    success: bool = Field(..., description="Whether a usable record was produced")
    text: str = Field(default="", description="Raw model output (or the manual-entry notice)")
    parsed: Extraction
    source: str = Field(..., description="Model tier or path that served the request")
    confidence: float = Field(..., ge=0.0, le=1.0)
    requires_manual_correction: bool = Field(default=False, alias="requiresManualCorrection")
    error_kind: Optional[str] = Field(
        default=None,
        alias="errorKind",
        description="Why the model path failed when the manual stub was returned"
    )


# suggestions

class NameSuggestion(WireModel):
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    class_name: Optional[str] = Field(default=None, alias="className")


class Suggestion(WireModel):
    type: str = Field(..., description="similar_name, name_parsing, subject or class")
    suggestion: Union[NameSuggestion, str]
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = Field(default="")


class SuggestionGroup(WireModel):
    original: str
    suggestions: List[Suggestion] = Field(default_factory=list)


class StudentSuggestions(WireModel):
    index: Optional[int] = Field(default=None, description="Student position in a multi-student record")
    suggestions: List[Suggestion] = Field(default_factory=list)


class SuggestionBundle(WireModel):
    students: List[StudentSuggestions] = Field(default_factory=list)
    subjects: List[SuggestionGroup] = Field(default_factory=list)
    classes: List[SuggestionGroup] = Field(default_factory=list)
    confidence: float = Field(default=0.0)


class SuggestionSelection(WireModel):
    type: Literal["student", "subject", "class"]
    original: str = Field(default="", description="Value being replaced")
    suggestion: Suggestion
    index: Optional[int] = Field(default=None, description="Target student in multi mode")


# validation

class StudentValidation(WireModel):
    index: int
    student_name: str = Field(alias="studentName")
    is_valid: bool = Field(alias="isValid")
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    score: int = 100


class ValidationResult(WireModel):
    is_valid: bool = Field(alias="isValid")
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    score: int = Field(default=100, ge=0, le=100)
    student_validations: Optional[List[StudentValidation]] = Field(default=None, alias="studentValidations")


class JsonCheckResult(WireModel):
    success: bool = False
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    parsed_data: Optional[Any] = Field(default=None, alias="parsedData")


# stored records

class StudentRecord(WireModel):
    id: str
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    class_name: str = Field(default="", alias="className")
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class SubjectRecord(WireModel):
    id: str
    name: str
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class GradeRecord(WireModel):
    id: str
    student_id: str = Field(alias="studentId")
    subject_id: str = Field(alias="subjectId")
    score: float
    grade_scale: str = Field(default="20", alias="gradeScale")
    coefficient: float = 1
    date: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class ScanHistoryEntry(WireModel):
    id: str
    timestamp: str
    type: Literal["single", "multi"]
    status: Literal["success", "error"]
    source: Optional[str] = None
    confidence: Optional[float] = None
    filename: Optional[str] = None
    students_count: Optional[int] = Field(default=None, alias="studentsCount")
    error: Optional[str] = None


class SaveSummary(WireModel):
    saved_students: int = Field(default=0, alias="savedStudents")
    failed_students: int = Field(default=0, alias="failedStudents")
    total_grades: int = Field(default=0, alias="totalGrades")
    failed_grades: int = Field(default=0, alias="failedGrades")
    new_subjects_created: int = Field(default=0, alias="newSubjectsCreated")
    errors: List[str] = Field(default_factory=list)


# api bodies

class ScanResponse(WireModel):
    success: bool = Field(..., description="whether the scan produced a record")
    data: ScanResult
    suggestions: SuggestionBundle
    processing_time_ms: float = Field(..., alias="processingTimeMs")
    file_name: str = Field(..., alias="fileName")
    file_size_bytes: Optional[int] = Field(default=None, alias="fileSizeBytes")


class SuggestionRequest(WireModel):
    data: Extraction


class ApplySuggestionRequest(WireModel):
    data: Extraction
    selection: SuggestionSelection


class SaveRequest(WireModel):
    data: MultiExtractionResult
    class_name: Optional[str] = Field(default=None, alias="className")


class SaveResponse(WireModel):
    success: bool
    message: str
    summary: SaveSummary


class ValidationResponse(WireModel):
    validation: ValidationResult
    report: str


class JsonCheckRequest(WireModel):
    text: str = Field(..., description="Raw model response to check")


class HealthResponse(WireModel):
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    llm_provider: str = Field(..., description="Active LLM provider")
    current_method: str = Field(..., description="Path that served the last scan")
    is_ready: bool = Field(..., description="Scans can be accepted (manual fallback counts)")
    llm_status: Optional[str] = Field(default=None, description="Result of a live model request, only when check=true")


class ErrorResponse(BaseModel):
    success: bool = Field(default=False)
    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Error code for debugging")
    details: Optional[dict] = Field(None, description="Additional error details")
