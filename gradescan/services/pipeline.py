import time
from typing import Optional, Tuple

from loguru import logger

from gradescan.core.config import settings
from gradescan.models.schemas import (
    MultiExtractionResult,
    SaveSummary,
    ScanResult,
    SuggestionBundle,
)
from gradescan.services.extraction import ScanService, scan_service
from gradescan.services.similarity import split_full_name
from gradescan.services.storage import (
    GradebookRepository,
    KeyValueStore,
    ScanHistory,
    create_store,
)
from gradescan.services.suggestions import (
    SuggestionEngine,
    apply_best_suggestions,
    shape_scan_result,
)
from gradescan.utils.exceptions import GradeScanError

UNSPECIFIED_CLASS = "Non spécifiée"


class ScanPipeline:
    """
    One scan session end to end: read the document, rank suggestions,
    auto-apply the confident ones, shape the record for review and log
    the attempt in the scan history. Saving is a separate step, after review.
    """

    def __init__(
        self,
        scanner: Optional[ScanService] = None,
        store: Optional[KeyValueStore] = None
    ):
        self.scanner = scanner or scan_service
        self.store = store or create_store()
        self.repository = GradebookRepository(self.store)
        self.history = ScanHistory(self.store)
        self.suggestions = SuggestionEngine(self.repository)

    async def scan(
        self,
        content: bytes,
        filename: str,
        multi: bool = False,
        class_name: Optional[str] = None,
        grade_scale: Optional[int] = None,
        api_key: Optional[str] = None
    ) -> Tuple[ScanResult, SuggestionBundle]:
        scan_type = "multi" if multi else "single"
        start_time = time.time()
        scanner = self.scanner.with_api_key(api_key) if api_key else self.scanner

        try:
            result = await scanner.extract(content, filename, multi=multi)
        except GradeScanError as e:
            await self.history.record(
                type=scan_type,
                status="error",
                filename=filename,
                error=e.message,
            )
            raise

        bundle = await self.suggestions.generate(result.parsed)
        parsed = apply_best_suggestions(result.parsed, bundle, settings.auto_apply_threshold)
        parsed = shape_scan_result(parsed, class_name=class_name, grade_scale=grade_scale)
        result = result.model_copy(update={"parsed": parsed})

        students_count = len(parsed.students) if isinstance(parsed, MultiExtractionResult) else 1
        await self.history.record(
            type=scan_type,
            status="success",
            source=result.source,
            confidence=result.confidence,
            filename=filename,
            students_count=students_count,
        )

        logger.info(
            f"Scan session for '{filename}' done in {time.time() - start_time:.2f}s: "
            f"{students_count} student(s), source {result.source}"
        )
        return result, bundle

    async def save_students(
        self,
        extraction: MultiExtractionResult,
        class_name: Optional[str] = None
    ) -> SaveSummary:
        """
        Persist a reviewed multi-student record, best effort.

        A student or grade that cannot be stored is counted and reported,
        the rest of the batch is still saved.
        """
        summary = SaveSummary()
        subjects = await self.repository.list_subjects()

        for index, entry in enumerate(extraction.students, start=1):
            first_name, last_name = split_full_name(entry.student.full_name)
            try:
                student = await self.repository.create_student(
                    first_name,
                    last_name,
                    entry.class_name or class_name or UNSPECIFIED_CLASS,
                )
            except GradeScanError as e:
                logger.error(f"Student {index} not saved: {e.message}")
                summary.failed_students += 1
                summary.errors.append(f"Élève {index}: {e.message}")
                continue

            summary.saved_students += 1

            for grade in entry.grades:
                if not grade.subject.strip() or grade.score_unreadable:
                    continue

                try:
                    subject = next(
                        (s for s in subjects if s.name.lower() == grade.subject.strip().lower()),
                        None
                    )
                    if subject is None:
                        subject = await self.repository.create_subject(grade.subject)
                        subjects.append(subject)
                        summary.new_subjects_created += 1

                    await self.repository.create_grade(student.id, subject.id, grade.score, grade.scale)
                    summary.total_grades += 1
                except GradeScanError as e:
                    logger.error(f"Grade '{grade.subject}' of student {index} not saved: {e.message}")
                    summary.failed_grades += 1
                    summary.errors.append(f"Élève {index}, {grade.subject}: {e.message}")

        logger.info(
            f"Save finished: {summary.saved_students} student(s), {summary.total_grades} grade(s), "
            f"{summary.new_subjects_created} new subject(s), "
            f"{summary.failed_students + summary.failed_grades} failure(s)"
        )
        return summary


def save_message(summary: SaveSummary) -> str:
    message = f"{summary.saved_students} élève(s) et {summary.total_grades} note(s) sauvegardés"
    if summary.new_subjects_created:
        message += f", {summary.new_subjects_created} nouvelle(s) matière(s) créée(s)"
    if summary.failed_students or summary.failed_grades:
        message += f" ({summary.failed_students + summary.failed_grades} échec(s))"
    return message + "."


pipeline = ScanPipeline()
