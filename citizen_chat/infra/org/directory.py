"""Read-only view of the org hierarchy (secretaries, departments, services, Q&A).

The hierarchy is owned by another service; the engine only needs to know
whether ids exist, which secretary a department belongs to and the
scripted questions of a service.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field


class QuestionAnswer(BaseModel):
    question: str
    answer: str


class ServiceEntry(BaseModel):
    id: str
    name: str = ""
    questions: list[QuestionAnswer] = Field(default_factory=list)


class DepartmentEntry(BaseModel):
    id: str
    name: str = ""
    secretary_id: str | None = None
    services: list[ServiceEntry] = Field(default_factory=list)


class OrgDirectoryDocument(BaseModel):
    departments: list[DepartmentEntry] = Field(default_factory=list)


class OrgDirectory(Protocol):
    def department_exists(self, department_id: str) -> bool: ...

    def service_exists(self, service_id: str, department_id: str | None) -> bool: ...

    def secretary_of(self, department_id: str) -> str | None: ...

    def questions_for(
        self, department_id: str | None, service_id: str | None
    ) -> list[QuestionAnswer]: ...


class StaticOrgDirectory:
    def __init__(self, document: OrgDirectoryDocument) -> None:
        self._departments = {entry.id: entry for entry in document.departments}
        self._services: dict[str, tuple[str, ServiceEntry]] = {}
        for department in document.departments:
            for service in department.services:
                self._services[service.id] = (department.id, service)

    @classmethod
    def from_file(cls, path: str | Path) -> StaticOrgDirectory:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(OrgDirectoryDocument.model_validate(raw))

    def department_exists(self, department_id: str) -> bool:
        return department_id in self._departments

    def service_exists(self, service_id: str, department_id: str | None) -> bool:
        found = self._services.get(service_id)
        if found is None:
            return False
        owner_department_id, _ = found
        return department_id is None or owner_department_id == department_id

    def secretary_of(self, department_id: str) -> str | None:
        department = self._departments.get(department_id)
        if department is None:
            return None
        return department.secretary_id

    def questions_for(
        self, department_id: str | None, service_id: str | None
    ) -> list[QuestionAnswer]:
        if service_id is not None:
            found = self._services.get(service_id)
            return list(found[1].questions) if found else []
        if department_id is not None and department_id in self._departments:
            return [
                question
                for service in self._departments[department_id].services
                for question in service.questions
            ]
        return []


class PermissiveOrgDirectory:
    """Accepts every id; used when no hierarchy file is configured."""

    def department_exists(self, department_id: str) -> bool:
        return bool(department_id)

    def service_exists(self, service_id: str, department_id: str | None) -> bool:
        return bool(service_id)

    def secretary_of(self, department_id: str) -> str | None:
        return None

    def questions_for(
        self, department_id: str | None, service_id: str | None
    ) -> list[QuestionAnswer]:
        return []
