"""
Correction suggestions for an extracted record, ranked against what is
already in the gradebook, and the helpers that apply them.

Applying never mutates the record it is given: every function here
returns a new record and leaves its input untouched.
"""

from typing import Dict, List, Optional, Sequence, Union

from loguru import logger

from gradescan.core.config import settings
from gradescan.models.schemas import (
    ExtractedGrade,
    ExtractedStudent,
    Extraction,
    MultiExtractionResult,
    NameSuggestion,
    StudentEntry,
    StudentRecord,
    StudentSuggestions,
    Suggestion,
    SuggestionBundle,
    SuggestionGroup,
    SuggestionSelection,
)
from gradescan.services.similarity import (
    COMMON_SUBJECTS,
    SUBJECT_SYNONYMS,
    match_labels,
    names_similar,
    normalize_class_name,
    normalize_label,
    normalize_subject,
    parse_full_name,
)
from gradescan.services.storage import GradebookRepository
from gradescan.utils.exceptions import ValidationError

MAX_STUDENT_SUGGESTIONS = 3
MAX_SUBJECT_SUGGESTIONS = 3
MAX_CLASS_SUGGESTIONS = 2

SIMILAR_NAME_CONFIDENCE = 0.8
NAME_PARSING_CONFIDENCE = 0.7
STANDARD_SUBJECT_CONFIDENCE = 0.8


def _entries(extraction: Extraction) -> List[StudentEntry]:
    if isinstance(extraction, MultiExtractionResult):
        return list(extraction.students)
    return [StudentEntry(
        student=extraction.student,
        class_name=extraction.class_name,
        grades=extraction.grades,
    )]


def _distinct(values) -> List[str]:
    seen = []
    for value in values:
        value = (value or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def _ranked(suggestions: List[Suggestion], limit: int) -> List[Suggestion]:
    # one entry per proposed value, keeping its best score
    best: Dict[str, Suggestion] = {}
    for suggestion in suggestions:
        key = suggestion.suggestion if isinstance(suggestion.suggestion, str) else suggestion.suggestion.model_dump_json()
        if key not in best or suggestion.confidence > best[key].confidence:
            best[key] = suggestion
    return sorted(best.values(), key=lambda s: s.confidence, reverse=True)[:limit]


# ---- students ----

def suggest_students(full_name: str, existing: Sequence[StudentRecord]) -> List[Suggestion]:
    suggestions = []
    full_name = (full_name or "").strip()
    if not full_name:
        return suggestions

    parsed = parse_full_name(full_name)

    for record in existing:
        candidates = (
            f"{record.first_name} {record.last_name}",
            f"{record.last_name} {record.first_name}",
        )
        if full_name in candidates:
            continue
        if names_similar(parsed, record):
            suggestions.append(Suggestion(
                type="similar_name",
                suggestion=NameSuggestion(
                    first_name=record.first_name,
                    last_name=record.last_name,
                    class_name=record.class_name or None,
                ),
                confidence=SIMILAR_NAME_CONFIDENCE,
                reason="Nom similaire trouvé dans la base de données",
            ))

    if parsed["first_name"] and parsed["last_name"]:
        if f"{parsed['first_name']} {parsed['last_name']}" != full_name:
            suggestions.append(Suggestion(
                type="name_parsing",
                suggestion=NameSuggestion(first_name=parsed["first_name"], last_name=parsed["last_name"]),
                confidence=NAME_PARSING_CONFIDENCE,
                reason="Amélioration du parsing du nom",
            ))

    return _ranked(suggestions, MAX_STUDENT_SUGGESTIONS)


# ---- subjects and classes ----

def _label_suggestions(
    original: str,
    candidates: List[str],
    kind: str,
    normalizer,
    containment_reason: str,
    distance_reason: str
) -> List[Suggestion]:
    suggestions = []
    for candidate, confidence, match_kind in match_labels(original, candidates, normalizer):
        if match_kind == "containment":
            reason = containment_reason
        else:
            reason = f"{distance_reason} ({round(confidence * 100)}% de similarité)"
        suggestions.append(Suggestion(
            type=kind,
            suggestion=candidate,
            confidence=confidence,
            reason=reason,
        ))
    return suggestions


def suggest_subjects(original: str, existing: List[str]) -> List[Suggestion]:
    suggestions = _label_suggestions(
        original,
        existing,
        "subject",
        normalize_label,
        "Matière similaire existante",
        "Matière similaire",
    )

    key = normalize_label(original)
    standard = COMMON_SUBJECTS.get(key) or SUBJECT_SYNONYMS.get(key.replace("-", " ").replace("_", " "))
    if standard and normalize_label(standard) != key:
        suggestions.append(Suggestion(
            type="subject",
            suggestion=standard,
            confidence=STANDARD_SUBJECT_CONFIDENCE,
            reason="Matière standard suggérée",
        ))

    return _ranked(suggestions, MAX_SUBJECT_SUGGESTIONS)


def suggest_classes(original: str, existing: List[str]) -> List[Suggestion]:
    suggestions = _label_suggestions(
        original,
        existing,
        "class",
        normalize_class_name,
        "Classe similaire existante",
        "Classe similaire",
    )
    return _ranked(suggestions, MAX_CLASS_SUGGESTIONS)


def build_suggestions(
    extraction: Extraction,
    students: Sequence[StudentRecord],
    subjects: List[str],
    classes: List[str]
) -> SuggestionBundle:
    """Rank suggestions for every student, subject and class found in `extraction`."""
    bundle = SuggestionBundle()
    entries = _entries(extraction)
    multi = isinstance(extraction, MultiExtractionResult)

    for index, entry in enumerate(entries):
        found = suggest_students(entry.student.full_name, students)
        if found:
            bundle.students.append(StudentSuggestions(index=index if multi else None, suggestions=found))

    for subject in _distinct(grade.subject for entry in entries for grade in entry.grades):
        found = suggest_subjects(subject, subjects)
        if found:
            bundle.subjects.append(SuggestionGroup(original=subject, suggestions=found))

    if multi:
        class_names = [extraction.detected_class] + [entry.class_name for entry in entries]
    else:
        class_names = [extraction.class_name]
    for class_name in _distinct(class_names):
        found = suggest_classes(class_name, classes)
        if found:
            bundle.classes.append(SuggestionGroup(original=class_name, suggestions=found))

    confidences = [
        s.confidence
        for group in bundle.students + bundle.subjects + bundle.classes
        for s in group.suggestions
    ]
    bundle.confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return bundle


class SuggestionEngine:

    def __init__(self, repository: GradebookRepository):
        self.repository = repository

    async def generate(self, extraction: Extraction) -> SuggestionBundle:
        students = await self.repository.list_students()
        subjects = [s.name for s in await self.repository.list_subjects()]
        classes = await self.repository.list_classes()

        bundle = build_suggestions(extraction, students, subjects, classes)
        logger.info(
            f"Generated suggestions: {len(bundle.students)} student(s), "
            f"{len(bundle.subjects)} subject(s), {len(bundle.classes)} class(es)"
        )
        return bundle


# ---- applying ----

def _rewrite(
    extraction: Extraction,
    subjects: Dict[str, str],
    classes: Dict[str, str],
    only_index: Optional[int] = None
) -> Extraction:
    def grades_of(grades: List[ExtractedGrade]) -> List[ExtractedGrade]:
        return [
            g.model_copy(update={"subject": subjects[g.subject]}) if g.subject in subjects else g
            for g in grades
        ]

    def class_of(value: Optional[str]) -> Optional[str]:
        return classes.get(value, value) if value else value

    if isinstance(extraction, MultiExtractionResult):
        students = []
        for index, entry in enumerate(extraction.students):
            if only_index is not None and index != only_index:
                students.append(entry)
                continue
            students.append(entry.model_copy(update={
                "grades": grades_of(entry.grades),
                "class_name": class_of(entry.class_name),
            }))
        detected = extraction.detected_class if only_index is not None else class_of(extraction.detected_class)
        return extraction.model_copy(update={"students": students, "detected_class": detected})

    return extraction.model_copy(update={
        "grades": grades_of(extraction.grades),
        "class_name": class_of(extraction.class_name),
    })


def _best_map(groups: List[SuggestionGroup], min_confidence: float) -> Dict[str, str]:
    mapping = {}
    for group in groups:
        if not group.suggestions:
            continue
        best = max(group.suggestions, key=lambda s: s.confidence)
        if best.confidence >= min_confidence and isinstance(best.suggestion, str):
            mapping[group.original] = best.suggestion
    return mapping


def apply_best_suggestions(
    extraction: Extraction,
    bundle: SuggestionBundle,
    min_confidence: Optional[float] = None
) -> Extraction:
    """
    Rewrite subjects and classes whose top suggestion reaches `min_confidence`.

    Only the single best suggestion of each group is considered. Student
    names are never rewritten automatically.
    """
    threshold = settings.auto_apply_threshold if min_confidence is None else min_confidence
    subjects = _best_map(bundle.subjects, threshold)
    classes = _best_map(bundle.classes, threshold)

    if subjects or classes:
        logger.info(f"Auto-applying {len(subjects)} subject and {len(classes)} class suggestion(s)")
    return _rewrite(extraction, subjects, classes)


def apply_suggestion(extraction: Extraction, selection: SuggestionSelection) -> Extraction:
    """Apply one suggestion picked by the user."""
    payload: Union[NameSuggestion, str] = selection.suggestion.suggestion

    if selection.type == "student":
        if isinstance(payload, str):
            payload = NameSuggestion(**parse_full_name(payload))
        full_name = f"{payload.first_name} {payload.last_name}".strip()
        student = ExtractedStudent(full_name=full_name)

        if isinstance(extraction, MultiExtractionResult):
            index = selection.index if selection.index is not None else 0
            if index < 0 or index >= len(extraction.students):
                raise ValidationError(f"Aucun élève à la position {index}", details={"index": index})
            students = list(extraction.students)
            update = {"student": student}
            if payload.class_name:
                update["class_name"] = payload.class_name
            students[index] = students[index].model_copy(update=update)
            return extraction.model_copy(update={"students": students})

        update = {"student": student}
        if payload.class_name:
            update["class_name"] = payload.class_name
        return extraction.model_copy(update=update)

    if not isinstance(payload, str):
        payload = f"{payload.first_name} {payload.last_name}".strip()

    if selection.type == "subject":
        return _rewrite(extraction, {selection.original: payload}, {}, selection.index)
    return _rewrite(extraction, {}, {selection.original: payload}, selection.index)


def shape_scan_result(
    extraction: Extraction,
    class_name: Optional[str] = None,
    grade_scale: Optional[int] = None
) -> Extraction:
    """
    Final shaping before a record is shown for review: the class chosen by
    the user wins over whatever was read, subject abbreviations are
    expanded and the chosen grading scale is applied to every grade.
    """
    def grades_of(grades: List[ExtractedGrade]) -> List[ExtractedGrade]:
        shaped = []
        for grade in grades:
            update = {"subject": normalize_subject(grade.subject)}
            if grade_scale:
                update["scale"] = grade_scale
            shaped.append(grade.model_copy(update=update))
        return shaped

    if isinstance(extraction, MultiExtractionResult):
        students = [
            entry.model_copy(update={
                "grades": grades_of(entry.grades),
                "class_name": class_name or entry.class_name,
            })
            for entry in extraction.students
        ]
        return extraction.model_copy(update={
            "students": students,
            "detected_class": class_name or extraction.detected_class,
        })

    return extraction.model_copy(update={
        "grades": grades_of(extraction.grades),
        "class_name": class_name or extraction.class_name,
    })
