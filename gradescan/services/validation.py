"""
Rule-based checks on extracted records before they are saved.

Errors block the save, warnings only flag something worth a second look.
Each record gets a quality score: 100, minus 20 per error and 5 per
warning, floored at 0. Messages are in French, they are shown as is.
"""

from typing import List, Optional, Tuple

from gradescan.models.schemas import (
    ExtractedGrade,
    ExtractionResult,
    MultiExtractionResult,
    StudentEntry,
    StudentValidation,
    ValidationResult,
)
from gradescan.services.similarity import (
    is_valid_class_name,
    is_valid_name,
    names_similar,
    split_full_name,
)

COMMON_SCALES = {5, 10, 20}


def calculate_validation_score(errors: List[str], warnings: List[str]) -> int:
    return max(0, 100 - len(errors) * 20 - len(warnings) * 5)


def _check_grade(position: int, grade: ExtractedGrade) -> Tuple[List[str], List[str]]:
    errors, warnings = [], []
    label = f"Note {position}"

    subject = (grade.subject or "").strip()
    if not subject:
        errors.append(f"{label}: Matière manquante")
    elif len(subject) < 2:
        warnings.append(f"{label}: Nom de matière très court")

    if grade.score_unreadable:
        if grade.raw_score:
            errors.append(f"{label}: Valeur de note invalide ({grade.raw_score})")
        else:
            errors.append(f"{label}: Valeur de note manquante")
    elif grade.score < 0:
        errors.append(f"{label}: Note négative")
    elif grade.score > grade.scale:
        errors.append(f"{label}: Note supérieure à l'échelle ({grade.score:g}/{grade.scale})")
    elif grade.score == 0:
        warnings.append(f"{label}: Note de 0 détectée")

    if grade.scale not in COMMON_SCALES:
        warnings.append(f"{label}: Échelle inhabituelle ({grade.scale})")

    return errors, warnings


def _check_student(entry: StudentEntry) -> Tuple[List[str], List[str]]:
    errors, warnings = [], []
    first_name, last_name = split_full_name(entry.student.full_name)

    if not first_name:
        errors.append("Le prénom de l'élève est obligatoire")
    elif not is_valid_name(first_name):
        errors.append("Le prénom de l'élève n'est pas valide")

    if not last_name:
        errors.append("Le nom de l'élève est obligatoire")
    elif not is_valid_name(last_name):
        errors.append("Le nom de l'élève n'est pas valide")

    if not entry.class_name:
        warnings.append("Aucune classe spécifiée pour l'élève")
    elif not is_valid_class_name(entry.class_name):
        warnings.append("Le nom de la classe semble invalide")

    if not entry.grades:
        warnings.append("Aucune note trouvée pour l'élève")

    for position, grade in enumerate(entry.grades, start=1):
        grade_errors, grade_warnings = _check_grade(position, grade)
        errors.extend(grade_errors)
        warnings.extend(grade_warnings)

    return errors, warnings


def validate_single_student(extraction: ExtractionResult) -> ValidationResult:
    errors, warnings = _check_student(StudentEntry(
        student=extraction.student,
        class_name=extraction.class_name,
        grades=extraction.grades,
    ))
    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        score=calculate_validation_score(errors, warnings),
    )


def _has_name(name: dict) -> bool:
    return bool(name["first_name"] or name["last_name"])


def find_duplicate_students(students: List[StudentEntry]) -> List[List[int]]:
    """Groups of student positions that probably denote the same person."""
    names = []
    for entry in students:
        first_name, last_name = split_full_name(entry.student.full_name)
        names.append({"first_name": first_name, "last_name": last_name})

    groups = []
    grouped = set()
    for i in range(len(names)):
        if i in grouped or not _has_name(names[i]):
            continue
        group = [i]
        for j in range(i + 1, len(names)):
            if j not in grouped and _has_name(names[j]) and names_similar(names[i], names[j]):
                group.append(j)
        if len(group) > 1:
            grouped.update(group)
            groups.append(group)
    return groups


def validate_multi_student(extraction: Optional[MultiExtractionResult]) -> ValidationResult:
    if extraction is None:
        errors = ["Aucun élève trouvé dans les données"]
        return ValidationResult(is_valid=False, errors=errors, score=0)

    if not extraction.students:
        return ValidationResult(
            is_valid=False,
            errors=["La liste des élèves est vide"],
            score=0,
            student_validations=[],
        )

    errors, warnings = [], []
    student_validations = []

    for index, entry in enumerate(extraction.students):
        student_errors, student_warnings = _check_student(entry)
        prefix = f"Élève {index + 1}: "
        errors.extend(prefix + message for message in student_errors)
        warnings.extend(prefix + message for message in student_warnings)
        student_validations.append(StudentValidation(
            index=index,
            student_name=entry.student.full_name or f"Élève {index + 1}",
            is_valid=not student_errors,
            errors=student_errors,
            warnings=student_warnings,
            score=calculate_validation_score(student_errors, student_warnings),
        ))

    for group in find_duplicate_students(extraction.students):
        names = ", ".join(extraction.students[i].student.full_name for i in group)
        warnings.append(f"Élèves potentiellement identiques: {names}")

    if extraction.detected_class and not is_valid_class_name(extraction.detected_class):
        warnings.append("La classe détectée semble invalide")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        score=calculate_validation_score(errors, warnings),
        student_validations=student_validations,
    )


def generate_validation_report(validation: ValidationResult) -> str:
    """Plain-text report of a validation result, for display or export."""
    lines = ["=== RAPPORT DE VALIDATION ===", ""]
    lines.append(f"Score de qualité: {validation.score}/100")
    lines.append(f"Statut: {'✓ Valide' if validation.is_valid else '✗ Invalide'}")
    lines.append("")

    if validation.errors:
        lines.append(f"ERREURS ({len(validation.errors)}):")
        lines.extend(f"  • {error}" for error in validation.errors)
        lines.append("")

    if validation.warnings:
        lines.append(f"AVERTISSEMENTS ({len(validation.warnings)}):")
        lines.extend(f"  • {warning}" for warning in validation.warnings)
        lines.append("")

    if validation.student_validations:
        lines.append("DÉTAIL PAR ÉLÈVE:")
        for student in validation.student_validations:
            status = "✓" if student.is_valid else "✗"
            lines.append(f"  {status} {student.student_name}: {student.score}/100")
            lines.extend(f"      - {error}" for error in student.errors)
        lines.append("")

    return "\n".join(lines)
