"""
Postgres-backed repository for provisioning (profiles, teachers, students).

Security:
- Uses a service-role DSN: provisioning writes rows on behalf of other users,
  which Row Level Security would otherwise block. Keep this DSN server-side.

Design:
- Minimal psycopg3 usage; each call opens a short-lived autocommit connection
  so a saga step is durable once the method returns.
- Returns plain dicts to keep the orchestrator independent of any ORM.
- Constraint violations surface as `DuplicateRecordError`, every other
  driver error as `ProvisioningRepoError`.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from contextlib import contextmanager
import os

try:
    import psycopg
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

try:
    from psycopg.errors import UniqueViolation  # type: ignore
except Exception:  # pragma: no cover - fallback when errors module unavailable
    UniqueViolation = None  # type: ignore

from .repo import DuplicateRecordError, ProvisioningRepoError


def _dsn() -> str:
    """Resolve the service DSN for provisioning writes."""
    candidates = [
        os.getenv("PROVISIONING_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
        os.getenv("SUPABASE_DB_URL"),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBProvisioningRepo")


_PROFILE_COLUMNS_SQL = "id::text, role::text, full_name, phone, address, is_active"

_STUDENT_COLUMNS_SQL = """
    id::text,
    full_name,
    admission_number,
    class_id::text,
    date_of_birth,
    parent_id::text,
    enrollment_date,
    gender,
    blood_group,
    address,
    emergency_contact,
    medical_conditions
"""


def _profile_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "role": row[1],
        "full_name": row[2],
        "phone": row[3],
        "address": row[4],
        "is_active": bool(row[5]) if row[5] is not None else True,
    }


def _teacher_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "user_id": row[1],
        "employee_id": row[2],
        "subjects": list(row[3] or []),
        "joining_date": row[4],
    }


def _student_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "full_name": row[1],
        "admission_number": row[2],
        "class_id": row[3],
        "date_of_birth": row[4],
        "parent_id": row[5],
        "enrollment_date": row[6],
        "gender": row[7],
        "blood_group": row[8],
        "address": row[9],
        "emergency_contact": row[10],
        "medical_conditions": row[11],
    }


class DBProvisioningRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBProvisioningRepo")
        self._dsn = dsn or _dsn()

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    yield cur
        except (DuplicateRecordError, ProvisioningRepoError):
            raise
        except Exception as exc:
            if UniqueViolation is not None and isinstance(exc, UniqueViolation):
                raise DuplicateRecordError("unique_violation", str(exc)) from exc
            if psycopg is not None and isinstance(exc, getattr(psycopg, "Error", ())):
                raise ProvisioningRepoError(exc.__class__.__name__, str(exc)) from exc
            raise

    # --- Profiles ----------------------------------------------------------------

    def get_profile(self, profile_id: str) -> Optional[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"select {_PROFILE_COLUMNS_SQL} from public.profiles where id = %s::uuid",
                (profile_id,),
            )
            row = cur.fetchone()
        return _profile_row_to_dict(row) if row else None

    def insert_profile(
        self,
        *,
        profile_id: str,
        role: str,
        full_name: str,
        phone: str | None = None,
        address: str | None = None,
    ) -> dict:
        with self._cursor() as cur:
            cur.execute(
                "insert into public.profiles (id, role, full_name, phone, address, is_active) "
                f"values (%s::uuid, %s, %s, %s, %s, true) returning {_PROFILE_COLUMNS_SQL}",
                (profile_id, role, full_name, phone, address),
            )
            row = cur.fetchone()
        if not row:
            raise ProvisioningRepoError("profile_insert_empty", "Failed to create profile")
        return _profile_row_to_dict(row)

    def delete_profile(self, profile_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("delete from public.profiles where id = %s::uuid returning id", (profile_id,))
            row = cur.fetchone()
        return bool(row)

    # --- Teachers ----------------------------------------------------------------

    def insert_teacher(
        self, *, user_id: str, employee_id: str, subjects: Sequence[str], joining_date: date
    ) -> dict:
        with self._cursor() as cur:
            cur.execute(
                "insert into public.teachers (user_id, employee_id, subjects, joining_date) "
                "values (%s::uuid, %s, %s, %s) "
                "returning id::text, user_id::text, employee_id, subjects, joining_date",
                (user_id, employee_id, Json(list(subjects)), joining_date),
            )
            row = cur.fetchone()
        if not row:
            raise ProvisioningRepoError("teacher_insert_empty", "Failed to create teacher record")
        return _teacher_row_to_dict(row)

    def get_teacher(self, teacher_id: str) -> Optional[dict]:
        with self._cursor() as cur:
            cur.execute(
                "select id::text, user_id::text, employee_id, subjects, joining_date "
                "from public.teachers where id = %s::uuid",
                (teacher_id,),
            )
            row = cur.fetchone()
        return _teacher_row_to_dict(row) if row else None

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
        with self._cursor() as cur:
            cur.execute(
                "insert into public.students (full_name, admission_number, class_id, date_of_birth, parent_id, "
                "enrollment_date, gender, blood_group, address, emergency_contact, medical_conditions) "
                "values (%s, %s, %s::uuid, %s, %s::uuid, %s, %s, %s, %s, %s, %s) "
                f"returning {_STUDENT_COLUMNS_SQL}",
                (
                    full_name,
                    admission_number,
                    class_id,
                    date_of_birth,
                    parent_id,
                    enrollment_date,
                    gender,
                    blood_group,
                    address,
                    emergency_contact,
                    medical_conditions,
                ),
            )
            row = cur.fetchone()
        if not row:
            raise ProvisioningRepoError("student_insert_empty", "Failed to create student record")
        return _student_row_to_dict(row)

    def get_student(self, student_id: str) -> Optional[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"select {_STUDENT_COLUMNS_SQL} from public.students where id = %s::uuid",
                (student_id,),
            )
            row = cur.fetchone()
        return _student_row_to_dict(row) if row else None

    def list_students_for_parent(self, parent_id: str) -> List[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"select {_STUDENT_COLUMNS_SQL} from public.students where parent_id = %s::uuid "
                "order by enrollment_date, full_name",
                (parent_id,),
            )
            rows = cur.fetchall()
        return [_student_row_to_dict(r) for r in rows or []]


__all__ = ["DBProvisioningRepo"]
