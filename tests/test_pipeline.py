"""
Tests for the scan session, the scan history and the save path
"""

import json
import asyncio

import pytest

from gradescan.models.schemas import (
    ExtractedGrade,
    ExtractedStudent,
    MultiExtractionResult,
    StudentEntry,
)
from gradescan.services.pipeline import save_message
from gradescan.services.storage import (
    DEFAULT_SUBJECTS,
    GRADES_KEY,
    GradebookRepository,
    JsonFileStore,
    ScanHistory,
)
from gradescan.utils.exceptions import ModelErrorKind, ModelInvocationError, StorageError

from conftest import make_image


MULTI_JSON = json.dumps({
    "students": [
        {"student": {"fullName": "MARTIN Marie"}, "grades": [{"subject": "math", "score": 16, "scale": 20}]},
        {"student": {"fullName": "Pierre BERNARD"}, "grades": [{"subject": "fr", "score": 11, "scale": 20}]},
    ],
    "detectedClass": "5ème B",
    "totalStudentsFound": 2
})


def batch(*entries):
    return MultiExtractionResult(students=list(entries), total_students_found=len(entries))


def entry(full_name, grades, class_name=None):
    return StudentEntry(student=ExtractedStudent(full_name=full_name), class_name=class_name, grades=grades)


class TestRepository:

    def test_default_subjects_are_seeded(self, memory_store):
        repository = GradebookRepository(memory_store)
        names = [s.name for s in asyncio.run(repository.list_subjects())]
        assert names == DEFAULT_SUBJECTS

    def test_create_subject_is_case_insensitive(self, memory_store):
        repository = GradebookRepository(memory_store)

        async def run():
            first = await repository.create_subject("Musique")
            second = await repository.create_subject("MUSIQUE")
            return first, second, await repository.list_subjects()

        first, second, subjects = asyncio.run(run())
        assert first.id == second.id
        assert [s.name for s in subjects].count("Musique") == 1

    def test_grade_must_fit_the_scale(self, memory_store):
        repository = GradebookRepository(memory_store)
        with pytest.raises(StorageError):
            asyncio.run(repository.create_grade("s", "m", 25, 20))

    def test_student_needs_both_names(self, memory_store):
        repository = GradebookRepository(memory_store)
        with pytest.raises(StorageError):
            asyncio.run(repository.create_student("", "Dupont", "6A"))

    def test_json_file_store_round_trip(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "data" / "gradebook.json"))
        repository = GradebookRepository(store)

        async def run():
            await repository.create_student("Jean", "Dupont", "6A")
            return await GradebookRepository(JsonFileStore(str(tmp_path / "data" / "gradebook.json"))).list_students()

        students = asyncio.run(run())
        assert [(s.first_name, s.last_name, s.class_name) for s in students] == [("Jean", "Dupont", "6A")]


class TestHistory:

    def test_newest_first_and_bounded(self, memory_store):
        history = ScanHistory(memory_store, limit=3)

        async def run():
            for i in range(5):
                await history.record(type="single", status="success", filename=f"scan{i}.jpg")
            return await history.list()

        entries = asyncio.run(run())
        assert [e.filename for e in entries] == ["scan4.jpg", "scan3.jpg", "scan2.jpg"]


class TestScanSession:

    def test_multi_scan_is_shaped_and_logged(self, make_pipeline):
        pipeline = make_pipeline({"default": [MULTI_JSON]})

        async def run():
            result, bundle = await pipeline.scan(make_image(), "classe.png", multi=True, class_name="5B", grade_scale=20)
            return result, bundle, await pipeline.history.list()

        result, bundle, history = asyncio.run(run())

        subjects = [g.subject for s in result.parsed.students for g in s.grades]
        assert subjects == ["Mathématiques", "Français"]
        assert all(s.class_name == "5B" for s in result.parsed.students)
        assert result.source == "gemini-multi"
        assert bundle.subjects

        assert len(history) == 1
        assert history[0].status == "success"
        assert history[0].students_count == 2
        assert history[0].source == "gemini-multi"

    def test_model_failure_still_yields_a_record(self, make_pipeline):
        error = ModelInvocationError("down", kind=ModelErrorKind.TRANSPORT)
        pipeline = make_pipeline({"default": [error]})

        result, _ = asyncio.run(pipeline.scan(make_image(), "scan.png"))

        assert result.source == "fallback"
        assert result.requires_manual_correction

    def test_scan_error_is_logged(self, make_pipeline):
        pipeline = make_pipeline(None)

        async def broken(*args, **kwargs):
            raise ModelInvocationError("plus rien ne marche")

        pipeline.scanner.extract = broken

        async def run():
            with pytest.raises(ModelInvocationError):
                await pipeline.scan(make_image(), "scan.png")
            return await pipeline.history.list()

        history = asyncio.run(run())
        assert history[0].status == "error"
        assert history[0].error == "plus rien ne marche"


class TestSave:

    def test_save_batch(self, make_pipeline):
        pipeline = make_pipeline(None)
        record = batch(
            entry("Marie Martin", [
                ExtractedGrade(subject="mathématiques", score=16, scale=20),
                ExtractedGrade(subject="Chant", score=12, scale=20),
            ]),
            entry("Pierre Bernard", [ExtractedGrade(subject="Chant", score=0, scale=20)], class_name="5A"),
        )

        async def run():
            summary = await pipeline.save_students(record, class_name="5B")
            return (
                summary,
                await pipeline.repository.list_students(),
                await pipeline.repository.list_subjects(),
                await pipeline.store.get(GRADES_KEY),
            )

        summary, students, subjects, grades = asyncio.run(run())

        assert summary.saved_students == 2
        assert summary.total_grades == 3
        assert summary.new_subjects_created == 1
        assert summary.failed_students == summary.failed_grades == 0
        assert [(s.first_name, s.last_name, s.class_name) for s in students] == [
            ("Marie", "Martin", "5B"),
            ("Pierre", "Bernard", "5A"),
        ]
        assert [s.name for s in subjects].count("Chant") == 1
        assert len(grades) == 3

    def test_single_token_name_and_default_class(self, make_pipeline):
        pipeline = make_pipeline(None)

        async def run():
            await pipeline.save_students(batch(entry("Madonna", [])))
            return await pipeline.repository.list_students()

        students = asyncio.run(run())
        assert (students[0].first_name, students[0].last_name, students[0].class_name) == ("Madonna", "Madonna", "Non spécifiée")

    def test_failures_do_not_stop_the_batch(self, make_pipeline):
        pipeline = make_pipeline(None)
        record = batch(
            entry("", [ExtractedGrade(subject="Anglais", score=10, scale=20)]),
            entry("Jean Dupont", [
                ExtractedGrade(subject="Anglais", score=30, scale=20),
                ExtractedGrade(subject="Anglais", score=0, scale=20, raw_score="abs"),
                ExtractedGrade(subject="", score=12, scale=20),
                ExtractedGrade(subject="Sciences", score=14, scale=20),
            ]),
        )

        summary = asyncio.run(pipeline.save_students(record, class_name="6A"))

        assert summary.failed_students == 1
        assert summary.saved_students == 1
        assert summary.failed_grades == 1
        assert summary.total_grades == 1
        assert len(summary.errors) == 2
        assert save_message(summary) == "1 élève(s) et 1 note(s) sauvegardés (2 échec(s))."
