"""
Relational store contract for provisioning plus an in-memory implementation.

Why:
    The orchestrator writes to `profiles`, `teachers` and `students`. Tests and
    local development run against `InMemoryProvisioningRepo`; production uses
    `repo_db.DBProvisioningRepo`. Both return plain dicts and raise the same
    exceptions so the orchestrator stays storage-agnostic.

Constraints mirrored from the schema:
    - profiles.id primary key
    - teachers.user_id unique, teachers.employee_id unique, user_id → profiles
    - students.admission_number unique, parent_id → profiles
"""
from __future__ import annotations

from copy import deepcopy
from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence
import uuid


class ProvisioningRepoError(Exception):
    """Relational store rejected or failed a statement."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class DuplicateRecordError(ProvisioningRepoError):
    """A unique constraint was violated."""


class ProvisioningRepoProtocol(Protocol):
    def get_profile(self, profile_id: str) -> Optional[dict]: ...

    def insert_profile(
        self,
        *,
        profile_id: str,
        role: str,
        full_name: str,
        phone: str | None = None,
        address: str | None = None,
    ) -> dict: ...

    def delete_profile(self, profile_id: str) -> bool: ...

    def insert_teacher(
        self, *, user_id: str, employee_id: str, subjects: Sequence[str], joining_date: date
    ) -> dict: ...

    def get_teacher(self, teacher_id: str) -> Optional[dict]: ...

    def insert_student(
        self,
        *,
        full_name: str,
        admission_number: str,
        class_id: str,
        date_of_birth: date,
        parent_id: str,
        enrollment_date: date,
        gender: str | None = None,
        blood_group: str | None = None,
        address: str | None = None,
        emergency_contact: str | None = None,
        medical_conditions: str | None = None,
    ) -> dict: ...

    def get_student(self, student_id: str) -> Optional[dict]: ...

    def list_students_for_parent(self, parent_id: str) -> List[dict]: ...


class InMemoryProvisioningRepo:
    """Dict-backed repo enforcing the same keys and uniqueness as the schema."""

    def __init__(self) -> None:
        self.profiles: Dict[str, dict] = {}
        self.teachers: Dict[str, dict] = {}
        self.students: Dict[str, dict] = {}

    # --- Profiles ----------------------------------------------------------------

    def get_profile(self, profile_id: str) -> Optional[dict]:
        rec = self.profiles.get(profile_id)
        return deepcopy(rec) if rec else None

    def insert_profile(
        self,
        *,
        profile_id: str,
        role: str,
        full_name: str,
        phone: str | None = None,
        address: str | None = None,
    ) -> dict:
        if profile_id in self.profiles:
            raise DuplicateRecordError("profile_exists", "duplicate key value violates unique constraint \"profiles_pkey\"")
        rec = {
            "id": profile_id,
            "role": role,
            "full_name": full_name,
            "phone": phone,
            "address": address,
            "is_active": True,
        }
        self.profiles[profile_id] = rec
        return deepcopy(rec)

    def delete_profile(self, profile_id: str) -> bool:
        if self.profiles.pop(profile_id, None) is None:
            return False
        # ON DELETE CASCADE for teachers.user_id
        self.teachers = {k: v for k, v in self.teachers.items() if v["user_id"] != profile_id}
        return True

    # --- Teachers ----------------------------------------------------------------

    def insert_teacher(
        self, *, user_id: str, employee_id: str, subjects: Sequence[str], joining_date: date
    ) -> dict:
        if user_id not in self.profiles:
            raise ProvisioningRepoError("foreign_key_violation", "teachers.user_id references a missing profile")
        for t in self.teachers.values():
            if t["user_id"] == user_id:
                raise DuplicateRecordError("teacher_exists", "duplicate key value violates unique constraint \"teachers_user_id_key\"")
            if t["employee_id"] == employee_id:
                raise DuplicateRecordError(
                    "employee_id_exists", "duplicate key value violates unique constraint \"teachers_employee_id_key\""
                )
        rec = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "employee_id": employee_id,
            "subjects": list(subjects),
            "joining_date": joining_date,
        }
        self.teachers[rec["id"]] = rec
        return deepcopy(rec)

    def get_teacher(self, teacher_id: str) -> Optional[dict]:
        rec = self.teachers.get(teacher_id)
        return deepcopy(rec) if rec else None

    # --- Students ----------------------------------------------------------------

    def insert_student(
        self,
        *,
        full_name: str,
        admission_number: str,
        class_id: str,
        date_of_birth: date,
        parent_id: str,
        enrollment_date: date,
        gender: str | None = None,
        blood_group: str | None = None,
        address: str | None = None,
        emergency_contact: str | None = None,
        medical_conditions: str | None = None,
    ) -> dict:
        if parent_id not in self.profiles:
            raise ProvisioningRepoError("foreign_key_violation", "students.parent_id references a missing profile")
        if any(s["admission_number"] == admission_number for s in self.students.values()):
            raise DuplicateRecordError(
                "admission_number_exists",
                "duplicate key value violates unique constraint \"students_admission_number_key\"",
            )
        rec = {
            "id": str(uuid.uuid4()),
            "full_name": full_name,
            "admission_number": admission_number,
            "class_id": class_id,
            "date_of_birth": date_of_birth,
            "parent_id": parent_id,
            "enrollment_date": enrollment_date,
            "gender": gender,
            "blood_group": blood_group,
            "address": address,
            "emergency_contact": emergency_contact,
            "medical_conditions": medical_conditions,
        }
        self.students[rec["id"]] = rec
        return deepcopy(rec)

    def get_student(self, student_id: str) -> Optional[dict]:
        rec = self.students.get(student_id)
        return deepcopy(rec) if rec else None

    def list_students_for_parent(self, parent_id: str) -> List[dict]:
        return [deepcopy(s) for s in self.students.values() if s["parent_id"] == parent_id]


__all__ = [
    "DuplicateRecordError",
    "InMemoryProvisioningRepo",
    "ProvisioningRepoError",
    "ProvisioningRepoProtocol",
]
