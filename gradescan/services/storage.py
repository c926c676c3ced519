"""
Key-value persistence for the gradebook and the scan history.

Records are kept as camelCase JSON lists under a handful of keys
(`students`, `subjects`, `grades`, `scan_history`). The in-memory store
backs tests and the default run; `JsonFileStore` keeps everything in a
single JSON file when `DATA_FILE` is set.
"""

import json
import uuid
import asyncio
from pathlib import Path
from datetime import datetime, timezone
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from loguru import logger

from gradescan.core.config import settings
from gradescan.models.schemas import (
    GradeRecord,
    ScanHistoryEntry,
    StudentRecord,
    SubjectRecord,
)
from gradescan.utils.exceptions import StorageError

STUDENTS_KEY = "students"
SUBJECTS_KEY = "subjects"
GRADES_KEY = "grades"
HISTORY_KEY = "scan_history"

DEFAULT_SUBJECTS = [
    "Mathématiques",
    "Français",
    "Histoire-Géographie",
    "Sciences",
    "Anglais",
]


def generate_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyValueStore(ABC):
    """Async key-value store holding JSON-serialisable values"""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class MemoryStore(KeyValueStore):

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        # callers get their own copy, like a value read back from disk
        return json.loads(json.dumps(value)) if value is not None else value

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read data file {self.path}: {e}")
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp_path.replace(self.path)
        except OSError as e:
            raise StorageError(f"Cannot write data file {self.path}: {e}")

    async def get(self, key: str, default: Any = None) -> Any:
        data = await asyncio.to_thread(self._read)
        return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if key in data:
                del data[key]
                await asyncio.to_thread(self._write, data)


def create_store() -> KeyValueStore:
    if settings.data_file:
        logger.info(f"Using JSON file store at {settings.data_file}")
        return JsonFileStore(settings.data_file)
    logger.info("Using in-memory store, data is lost on restart")
    return MemoryStore()


class GradebookRepository:
    """Students, subjects and grades on top of a key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _load(self, key: str) -> List[Dict[str, Any]]:
        records = await self.store.get(key, [])
        return records if isinstance(records, list) else []

    async def list_students(self) -> List[StudentRecord]:
        return [StudentRecord.model_validate(r) for r in await self._load(STUDENTS_KEY)]

    async def list_subjects(self) -> List[SubjectRecord]:
        records = await self._load(SUBJECTS_KEY)
        if not records:
            return await self.seed_default_subjects()
        return [SubjectRecord.model_validate(r) for r in records]

    async def list_classes(self) -> List[str]:
        """Distinct non-empty class names of the stored students."""
        seen = []
        for student in await self.list_students():
            if student.class_name and student.class_name not in seen:
                seen.append(student.class_name)
        return seen

    async def seed_default_subjects(self) -> List[SubjectRecord]:
        subjects = [
            SubjectRecord(id=generate_id(), name=name, created_at=utc_now())
            for name in DEFAULT_SUBJECTS
        ]
        await self.store.set(SUBJECTS_KEY, [s.model_dump(by_alias=True) for s in subjects])
        logger.info(f"Seeded {len(subjects)} default subjects")
        return subjects

    async def create_student(self, first_name: str, last_name: str, class_name: str) -> StudentRecord:
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        if not first_name or not last_name:
            raise StorageError(
                "Le prénom et le nom de l'élève sont obligatoires",
                details={"first_name": first_name, "last_name": last_name}
            )

        student = StudentRecord(
            id=generate_id(),
            first_name=first_name,
            last_name=last_name,
            class_name=(class_name or "").strip(),
            created_at=utc_now(),
        )
        records = await self._load(STUDENTS_KEY)
        records.append(student.model_dump(by_alias=True))
        await self.store.set(STUDENTS_KEY, records)
        logger.debug(f"Student created: {student.first_name} {student.last_name} ({student.class_name})")
        return student

    async def create_subject(self, name: str) -> SubjectRecord:
        """Create a subject, or return the existing one with the same name in any case."""
        name = (name or "").strip()
        if not name:
            raise StorageError("Le nom de la matière est obligatoire")

        subjects = await self.list_subjects()
        for subject in subjects:
            if subject.name.lower() == name.lower():
                return subject

        subject = SubjectRecord(id=generate_id(), name=name, created_at=utc_now())
        await self.store.set(
            SUBJECTS_KEY,
            [s.model_dump(by_alias=True) for s in subjects] + [subject.model_dump(by_alias=True)]
        )
        logger.info(f"Subject created: {subject.name}")
        return subject

    async def create_grade(
        self,
        student_id: str,
        subject_id: str,
        score: float,
        grade_scale: Any = 20,
        coefficient: float = 1
    ) -> GradeRecord:
        try:
            scale = float(grade_scale)
        except (TypeError, ValueError):
            raise StorageError(f"Échelle de notation invalide: {grade_scale}")

        if score < 0 or score > scale:
            raise StorageError(
                f"La note doit être entre 0 et {grade_scale}",
                details={"score": score, "scale": grade_scale}
            )

        grade = GradeRecord(
            id=generate_id(),
            student_id=student_id,
            subject_id=subject_id,
            score=score,
            grade_scale=str(grade_scale),
            coefficient=coefficient,
            date=utc_now(),
            created_at=utc_now(),
        )
        records = await self._load(GRADES_KEY)
        records.append(grade.model_dump(by_alias=True))
        await self.store.set(GRADES_KEY, records)
        return grade


class ScanHistory:
    """Most recent scans first, capped at `limit` entries."""

    def __init__(self, store: KeyValueStore, limit: Optional[int] = None):
        self.store = store
        self.limit = limit or settings.scan_history_limit

    async def list(self) -> List[ScanHistoryEntry]:
        records = await self.store.get(HISTORY_KEY, [])
        if not isinstance(records, list):
            return []
        return [ScanHistoryEntry.model_validate(r) for r in records]

    async def record(self, **fields) -> ScanHistoryEntry:
        entry = ScanHistoryEntry(id=generate_id(), timestamp=utc_now(), **fields)
        entries = [entry] + await self.list()
        await self.store.set(
            HISTORY_KEY,
            [e.model_dump(by_alias=True) for e in entries[:self.limit]]
        )
        return entry

    async def clear(self) -> None:
        await self.store.delete(HISTORY_KEY)
