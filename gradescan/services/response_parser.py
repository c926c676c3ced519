"""
Turns raw vision-model output into canonical extraction records.

Every layout the model is known to produce (fenced JSON, prose around the
object, a single `student` where `students` was asked for, missing or
malformed fields) is normalised here, so nothing downstream has to look at
the wire shape again. Nothing in this module raises to the caller: text
that holds no usable JSON goes to the heuristic text parser instead.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger

from gradescan.models.schemas import (
    ExtractedGrade,
    ExtractedStudent,
    ExtractionResult,
    JsonCheckResult,
    MultiExtractionResult,
    StudentEntry,
)
from gradescan.services.text_fallback import (
    fallback_multi_student_parsing,
    fallback_text_parsing,
)

DEFAULT_SCALE = 20

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FIRST_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", (text or "").strip()).strip()


def _balanced_object(text: str) -> Optional[str]:
    """First top-level {...} with braces counted outside string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            char = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from here, try the next opening brace
        start = text.find("{", start + 1)
    return None


def locate_json_object(text: str) -> Optional[str]:
    """
    Find the JSON object in cleaned model output: a balanced-brace match
    first, then whatever lies between the first `{` and the last `}`.
    """
    balanced = _balanced_object(text)
    if balanced is not None:
        return balanced

    match = _FIRST_OBJECT.search(text)
    if match:
        return match.group(0)

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return None


def _finite_float(literal: str) -> Any:
    value = float(literal)
    return value if math.isfinite(value) else str(value)


def _finite_int(literal: str) -> Any:
    as_float = float(literal)
    return int(literal) if math.isfinite(as_float) else str(as_float)


def _decode(candidate: str) -> Any:
    # NaN, Infinity and overflowing literals stay as text, read later as unreadable values
    return json.loads(candidate, parse_constant=str, parse_float=_finite_float, parse_int=_finite_int)


def load_json_payload(text: str) -> Dict[str, Any]:
    """Clean, locate and decode; raises ValueError when no object can be read."""
    cleaned = strip_code_fences(text)
    candidate = locate_json_object(cleaned)
    if candidate is None:
        raise ValueError("Aucun JSON trouvé dans la réponse.")

    try:
        data = _decode(candidate)
    except json.JSONDecodeError:
        # the balanced slice may stop early on a stray brace in prose,
        # retry on the widest slice before giving up
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start or cleaned[start:end + 1] == candidate:
            raise
        data = _decode(cleaned[start:end + 1])

    if not isinstance(data, dict):
        raise ValueError("La réponse JSON n'est pas un objet.")
    return data


# ---- per-entity cleaning ----

def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _coerce_score(value: Any) -> Tuple[float, Optional[str]]:
    """Numeric score plus the raw text when it could not be read (then score is 0)."""
    if isinstance(value, bool):
        return 0.0, str(value)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return 0.0, str(value)
        return float(value), None
    text = _clean_text(value)
    if not text:
        return 0.0, text
    match = re.match(r"^[+-]?\d+(?:[.,]\d+)?", text)
    if not match:
        return 0.0, text
    score = float(match.group(0).replace(",", "."))
    if not math.isfinite(score):
        return 0.0, text
    return score, None


def _coerce_scale(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_SCALE
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return DEFAULT_SCALE
        return int(value) or DEFAULT_SCALE
    match = re.match(r"^\s*[+-]?(\d+)", _clean_text(value))
    if not match:
        return DEFAULT_SCALE
    return int(match.group(1)) or DEFAULT_SCALE


def clean_grades(raw_grades: Any) -> List[ExtractedGrade]:
    if not isinstance(raw_grades, list):
        return []

    grades = []
    for raw in raw_grades:
        if not isinstance(raw, dict):
            continue
        subject = _clean_text(raw.get("subject"))
        if not subject:
            continue
        score, raw_score = _coerce_score(raw.get("score"))
        grades.append(ExtractedGrade(
            subject=subject,
            score=score,
            scale=_coerce_scale(raw.get("scale")),
            raw_score=raw_score,
        ))
    return grades


def _clean_student(raw: Any) -> ExtractedStudent:
    if isinstance(raw, str):
        return ExtractedStudent(full_name=raw.strip())
    if not isinstance(raw, dict):
        return ExtractedStudent()

    full_name = _clean_text(raw.get("fullName"))
    if not full_name:
        # older prompts asked for split fields
        full_name = " ".join(
            part for part in (
                _clean_text(raw.get("firstName")),
                _clean_text(raw.get("lastName")),
            ) if part
        )
    return ExtractedStudent(full_name=full_name)


def _clean_class(value: Any) -> Optional[str]:
    text = _clean_text(value)
    return text or None


def _coerce_count(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        count = int(value)
    except (TypeError, ValueError):
        return default
    return count if count > 0 else default


# ---- canonical records ----

def normalize_single_payload(data: Dict[str, Any]) -> ExtractionResult:
    student = data.get("student")
    grades = data.get("grades")

    # model answered with the multi layout, keep its first student
    if student is None and isinstance(data.get("students"), list) and data["students"]:
        first = data["students"][0]
        if isinstance(first, dict):
            student = first.get("student")
            grades = first.get("grades") if grades is None else grades

    return ExtractionResult(
        student=_clean_student(student),
        class_name=_clean_text(data.get("className")),
        grades=clean_grades(grades),
    )


def normalize_multi_payload(data: Dict[str, Any]) -> MultiExtractionResult:
    raw_students = data.get("students")
    if not isinstance(raw_students, list):
        if data.get("student"):
            raw_students = [{
                "student": data["student"],
                "className": data.get("className"),
                "grades": data.get("grades") or [],
            }]
        else:
            raw_students = []

    students = []
    for index, raw in enumerate(raw_students):
        if not isinstance(raw, dict):
            logger.warning(f"Student {index} is invalid: {raw!r}")
            continue
        students.append(StudentEntry(
            student=_clean_student(raw.get("student")),
            class_name=_clean_class(raw.get("className")),
            grades=clean_grades(raw.get("grades")),
        ))

    return MultiExtractionResult(
        students=students,
        detected_class=_clean_class(data.get("detectedClass")),
        total_students_found=_coerce_count(data.get("totalStudentsFound"), len(students)),
    )


def parse_model_response(
    text: str,
    multi: bool = False,
) -> Optional[Union[ExtractionResult, MultiExtractionResult]]:
    """
    Canonical record from raw model text.

    Falls back to regex extraction when no JSON object can be decoded.
    Returns None only when that fallback fails too.
    """
    try:
        data = load_json_payload(text)
    except (ValueError, json.JSONDecodeError) as e:
        logger.warning(f"Model response is not usable JSON ({e}), trying text parsing")
        logger.debug(f"Raw response: {(text or '')[:500]}")
        if multi:
            return fallback_multi_student_parsing(text)
        return fallback_text_parsing(text)

    if multi:
        result = normalize_multi_payload(data)
        logger.info(f"Parsed {len(result.students)} student(s) from model response")
        return result

    result = normalize_single_payload(data)
    logger.info(f"Parsed student '{result.student.full_name}' with {len(result.grades)} grade(s)")
    return result


def check_json_response(text: str) -> JsonCheckResult:
    """
    Diagnostic check of a raw model response, used to test prompts.

    Reports structural problems instead of repairing them; never raises.
    """
    result = JsonCheckResult()

    try:
        data = load_json_payload(text or "")
    except ValueError as e:
        if isinstance(e, json.JSONDecodeError):
            result.errors.append(f"Erreur de parsing JSON: {e}")
        else:
            result.errors.append(str(e))
        return result

    result.parsed_data = data

    if "student" in data:
        student = data.get("student")
        if not isinstance(student, dict) or not (
            student.get("fullName") or student.get("firstName") or student.get("lastName")
        ):
            result.warnings.append("Nom et prénom de l'élève manquants")
        grades = data.get("grades")
        if not isinstance(grades, list):
            result.errors.append("Grades manquants ou invalides")
        elif not grades:
            result.warnings.append("Aucune note trouvée")

    if "students" in data:
        students = data.get("students")
        if not isinstance(students, list):
            result.errors.append("Students doit être un tableau")
        elif not students:
            result.warnings.append("Aucun élève trouvé")
        else:
            for index, entry in enumerate(students, start=1):
                if not isinstance(entry, dict) or not entry.get("student"):
                    result.errors.append(f"Élève {index}: informations manquantes")
                    continue
                student = entry["student"]
                if not isinstance(student, dict) or not (
                    student.get("fullName") or student.get("firstName") or student.get("lastName")
                ):
                    result.warnings.append(f"Élève {index}: nom et prénom manquants")
                if not isinstance(entry.get("grades"), list):
                    result.warnings.append(f"Élève {index}: notes manquantes")

    if "student" not in data and "students" not in data:
        result.warnings.append("Aucune clé student ou students dans la réponse")

    result.success = not result.errors
    return result
