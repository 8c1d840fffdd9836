"""
Provisioning error taxonomy.

Each saga step has its own failure kind so the web layer can report the step
that actually failed. Compensation problems never replace the primary error;
they travel along on `compensation_failures`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class CompensationFailed:
    """A best-effort cleanup step that did not succeed (logged, not retried)."""

    saga: str
    step: str
    reason: str


class ProvisioningError(Exception):
    code = "provisioning_failed"
    default_message = "Provisioning failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.compensation_failures: List[CompensationFailed] = []


class InvalidProvisioningInput(ProvisioningError):
    code = "validation_error"
    default_message = "Invalid input"

    def __init__(self, message: str | None = None, *, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = list(fields or [])


class IdentityCreationFailed(ProvisioningError):
    code = "identity_creation_failed"
    default_message = "Failed to create auth user"


class DuplicateEmail(IdentityCreationFailed):
    code = "duplicate_email"
    default_message = "A user with this email address has already been registered"


class ProfileCreationFailed(ProvisioningError):
    code = "profile_creation_failed"
    default_message = "Failed to create profile"


class TeacherRecordCreationFailed(ProvisioningError):
    code = "teacher_record_creation_failed"
    default_message = "Failed to create teacher record"


class StudentRecordCreationFailed(ProvisioningError):
    code = "student_record_creation_failed"
    default_message = "Failed to create student record"


__all__ = [
    "CompensationFailed",
    "DuplicateEmail",
    "IdentityCreationFailed",
    "InvalidProvisioningInput",
    "ProfileCreationFailed",
    "ProvisioningError",
    "StudentRecordCreationFailed",
    "TeacherRecordCreationFailed",
]
