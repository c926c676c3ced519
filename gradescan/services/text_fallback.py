"""
Regex extraction used when the model output holds no decodable JSON.

Best effort only: names are capitalised two-word sequences (SURNAME
Firstname or Firstname SURNAME), grades are "label: score/scale" or
"score/scale label" with `/` or the word "sur" as separator.
"""

import re
from typing import List, Optional, Tuple

from loguru import logger

from gradescan.models.schemas import (
    ExtractedGrade,
    ExtractedStudent,
    ExtractionResult,
    MultiExtractionResult,
    StudentEntry,
)
from gradescan.services.similarity import suggest_class_from_text

_UPPER = "A-ZÀÁÂÃÄÅÆÇÈÉÊËÌÍÎÏÐÑÒÓÔÕÖØÙÚÛÜÝÞ"
_LOWER = "a-zàáâãäåæçèéêëìíîïðñòóôõöøùúûüýþß"
_LETTER = _UPPER + _LOWER

# grades are looked up from 100 chars before a name to 200 chars after it
WINDOW_BEFORE = 100
WINDOW_AFTER = 200

_LABEL = r"(?i:nom|name|élève|eleve|étudiant|etudiant|student)"

SINGLE_NAME_PATTERNS = [
    re.compile(rf"\b{_LABEL}[ \t]*:?[ \t]*([{_LETTER}]+[ \t]+[{_LETTER}]+)"),
    re.compile(rf"\b([{_UPPER}]{{2,}}[ \t]+[{_UPPER}][{_LOWER}]+)\b"),
    re.compile(rf"\b([{_UPPER}][{_LOWER}]+[ \t]+[{_UPPER}]{{2,}})\b"),
]

MULTI_NAME_PATTERNS = [
    # SURNAME Firstname at the start of a line, optionally labelled
    re.compile(
        rf"(?:^|\n)[ \t]*(?:{_LABEL}[ \t]*:[ \t]*)?([{_UPPER}]+[ \t]+[{_UPPER}][{_LOWER}]+)\b"
    ),
    # Firstname SURNAME anywhere
    re.compile(rf"\b([{_UPPER}][{_LOWER}]+[ \t]+[{_UPPER}]{{2,}})\b"),
]

_SCORE = r"(?P<score>\d{1,2}(?:[.,]\d{1,2})?)"
_SEPARATOR = r"[ \t]*(?:/|sur)[ \t]*"
_SCALE = r"(?P<scale>\d{1,3})"

# "Mathématiques: 15/20", "Français 12 sur 20"
LABEL_FIRST_GRADE = re.compile(
    rf"(?P<subject>[{_LETTER}][{_LETTER}'\- \t]*?)[ \t]*[:\-]?[ \t]*{_SCORE}{_SEPARATOR}{_SCALE}"
)
# "15/20 Mathématiques"
SCORE_FIRST_GRADE = re.compile(
    rf"{_SCORE}{_SEPARATOR}{_SCALE}[ \t]+(?P<subject>[{_LETTER}][{_LETTER}'\- \t]*[{_LETTER}])"
)


def _overlaps(span: Tuple[int, int], spans: List[Tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in spans)


def find_grades(text: str, require_in_scale: bool = False) -> List[ExtractedGrade]:
    grades = []
    consumed: List[Tuple[int, int]] = []

    for pattern in (LABEL_FIRST_GRADE, SCORE_FIRST_GRADE):
        for match in pattern.finditer(text):
            # a score-first match inside a label-first one reads the next subject
            if _overlaps(match.span(), consumed):
                continue

            subject = match.group("subject").strip(" \t-")
            score = float(match.group("score").replace(",", "."))
            scale = int(match.group("scale")) or 20

            if not subject or score <= 0:
                continue
            if require_in_scale and score > scale:
                continue

            consumed.append(match.span())
            grades.append(ExtractedGrade(subject=subject, score=score, scale=scale))

    return grades


def find_name(text: str) -> str:
    for pattern in SINGLE_NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return ""


def find_names(text: str) -> List[Tuple[int, str]]:
    """Distinct candidate names with their position, in reading order."""
    seen = set()
    found = []

    for pattern in MULTI_NAME_PATTERNS:
        for match in pattern.finditer(text):
            full_name = match.group(1).strip()
            if full_name in seen or len(full_name) <= 3 or " " not in full_name:
                continue
            seen.add(full_name)
            found.append((match.start(1), full_name))

    return sorted(found)


def fallback_text_parsing(text: str) -> Optional[ExtractionResult]:
    logger.info("Attempting fallback text parsing")

    try:
        result = ExtractionResult(
            student=ExtractedStudent(full_name=find_name(text or "")),
            class_name=suggest_class_from_text(text),
            grades=find_grades(text or ""),
        )
    except Exception as e:
        logger.error(f"Fallback parsing failed: {e}")
        return None

    logger.info(
        f"Fallback parsing found name '{result.student.full_name}' "
        f"and {len(result.grades)} grade(s)"
    )
    return result


def fallback_multi_student_parsing(text: str) -> Optional[MultiExtractionResult]:
    logger.info("Attempting fallback multi-student text parsing")

    try:
        text = text or ""
        students = []
        for position, full_name in find_names(text):
            window = text[max(0, position - WINDOW_BEFORE):min(len(text), position + WINDOW_AFTER)]
            students.append(StudentEntry(
                student=ExtractedStudent(full_name=full_name),
                grades=find_grades(window, require_in_scale=True),
            ))
    except Exception as e:
        logger.error(f"Fallback multi-student parsing failed: {e}")
        return None

    logger.info(f"Fallback multi-student parsing found {len(students)} student(s)")
    return MultiExtractionResult(
        students=students,
        detected_class=suggest_class_from_text(text),
        total_students_found=len(students)
    )
