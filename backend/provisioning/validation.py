"""
Input validation for provisioning, run before any remote call.

Why:
    A request that is missing a required field must not touch either store.
    Both the HTTP boundary and the CLI funnel through these helpers via the
    orchestrator, so the rules cannot drift between entry points.
"""
from __future__ import annotations

import os
import re
from typing import Iterable, List, Tuple

from .errors import InvalidProvisioningInput
from .models import StudentProvisioningInput, TeacherProvisioningInput


DEFAULT_MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def min_password_length() -> int:
    try:
        return max(1, int(os.getenv("PROVISIONING_MIN_PASSWORD_LENGTH", str(DEFAULT_MIN_PASSWORD_LENGTH))))
    except ValueError:
        return DEFAULT_MIN_PASSWORD_LENGTH


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match((value or "").strip()))


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _missing(pairs: Iterable[Tuple[str, object]]) -> List[str]:
    return [name for name, value in pairs if _is_blank(value)]


def _raise_missing(missing: List[str]) -> None:
    if missing:
        raise InvalidProvisioningInput(f"Missing required fields: {', '.join(missing)}", fields=missing)


def _check_email(field_name: str, value: str) -> None:
    if not is_valid_email(value):
        raise InvalidProvisioningInput(f"Invalid email address: {field_name}", fields=[field_name])


def _check_password(value: str, minimum: int) -> None:
    if len(value) < minimum:
        raise InvalidProvisioningInput(
            f"temporary_password must be at least {minimum} characters", fields=["temporary_password"]
        )


def validate_teacher_input(data: TeacherProvisioningInput, *, min_password: int | None = None) -> None:
    _raise_missing(
        _missing(
            [
                ("email", data.email),
                ("full_name", data.full_name),
                ("employee_id", data.employee_id),
                ("joining_date", data.joining_date),
                ("temporary_password", data.temporary_password),
            ]
        )
    )
    _check_email("email", data.email)
    if data.subjects is None or any(not isinstance(s, str) for s in data.subjects):
        raise InvalidProvisioningInput("subjects must be a list of strings", fields=["subjects"])
    _check_password(data.temporary_password, min_password if min_password is not None else min_password_length())


def validate_student_input(data: StudentProvisioningInput, *, min_password: int | None = None) -> None:
    _raise_missing(
        _missing(
            [
                ("student_full_name", data.student_full_name),
                ("admission_number", data.admission_number),
                ("class_id", data.class_id),
                ("date_of_birth", data.date_of_birth),
                ("enrollment_date", data.enrollment_date),
                ("parent_email", data.parent_email),
                ("parent_full_name", data.parent_full_name),
                ("temporary_password", data.temporary_password),
            ]
        )
    )
    _check_email("parent_email", data.parent_email)
    _check_password(data.temporary_password, min_password if min_password is not None else min_password_length())


__all__ = [
    "DEFAULT_MIN_PASSWORD_LENGTH",
    "is_valid_email",
    "min_password_length",
    "validate_student_input",
    "validate_teacher_input",
]
