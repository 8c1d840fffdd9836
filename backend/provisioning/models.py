"""Input and result shapes for the provisioning orchestrator."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass
class TeacherProvisioningInput:
    email: str
    full_name: str
    employee_id: str
    joining_date: Optional[date]
    temporary_password: str
    subjects: List[str] = field(default_factory=list)
    phone: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class TeacherProvisioningResult:
    teacher_id: str
    user_id: str
    email: str
    # Echoed once for out-of-band delivery; never stored.
    temporary_password: str


@dataclass
class StudentProvisioningInput:
    student_full_name: str
    admission_number: str
    class_id: str
    date_of_birth: Optional[date]
    enrollment_date: Optional[date]
    parent_email: str
    parent_full_name: str
    temporary_password: str
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    student_address: Optional[str] = None
    emergency_contact: Optional[str] = None
    medical_conditions: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_address: Optional[str] = None


@dataclass(frozen=True)
class StudentProvisioningResult:
    student_id: str
    parent_id: str
    parent_email: str
    parent_created: bool
    # None when an existing parent was reused: no credential was set by this call.
    temporary_password: Optional[str] = None


__all__ = [
    "StudentProvisioningInput",
    "StudentProvisioningResult",
    "TeacherProvisioningInput",
    "TeacherProvisioningResult",
]
