"""
Provisioning orchestrator: creates identities and their dependent records.

Why:
    The identity store (Supabase Auth) and the relational store (Postgres)
    cannot share a transaction. Each operation is a fixed sequence of steps;
    when a later step fails, the steps that already succeeded are undone in
    reverse order (see `saga.Saga`).

Behavior:
    - Input is validated before the first remote call.
    - Steps run strictly in order; nothing runs concurrently, nothing retries.
    - The raised error always names the step that failed. Failed cleanups
      are logged and attached as `compensation_failures`.

Permissions:
    The orchestrator does not check roles. Every caller must run
    `identity_access.guard.authorize` first.
"""
from __future__ import annotations

from typing import NoReturn, Type
import logging

from backend.identity_access.admin_client import DuplicateEmailError
from backend.identity_access.domain import PARENT, TEACHER, mask_email
from backend.identity_access.stores import IdentityStoreProtocol

from .errors import (
    DuplicateEmail,
    IdentityCreationFailed,
    ProfileCreationFailed,
    ProvisioningError,
    StudentRecordCreationFailed,
    TeacherRecordCreationFailed,
)
from .models import (
    StudentProvisioningInput,
    StudentProvisioningResult,
    TeacherProvisioningInput,
    TeacherProvisioningResult,
)
from .repo import ProvisioningRepoProtocol
from .saga import Saga
from .validation import validate_student_input, validate_teacher_input


logger = logging.getLogger("campus.provisioning")


def _reason(exc: Exception) -> str | None:
    msg = getattr(exc, "message", None) or str(exc)
    return msg or None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ProvisioningOrchestrator:
    def __init__(
        self,
        identity: IdentityStoreProtocol,
        repo: ProvisioningRepoProtocol,
        *,
        min_password_length: int | None = None,
    ) -> None:
        self._identity = identity
        self._repo = repo
        self._min_password = min_password_length

    # --- Shared steps --------------------------------------------------------------

    def _create_identity(self, saga: Saga, *, email: str, password: str, full_name: str) -> str:
        try:
            identity = self._identity.create_user(
                email=email, password=password, email_confirm=True, full_name=full_name
            )
        except DuplicateEmailError as exc:
            logger.warning("provisioning.identity_duplicate saga=%s email=%s", saga.name, mask_email(email))
            raise DuplicateEmail(_reason(exc)) from exc
        except Exception as exc:
            logger.warning(
                "provisioning.identity_failed saga=%s email=%s reason=%s",
                saga.name,
                mask_email(email),
                exc.__class__.__name__,
            )
            raise IdentityCreationFailed(_reason(exc)) from exc
        user_id = identity.id
        saga.record("identity", lambda: self._identity.delete_user(user_id))
        return user_id

    def _create_profile(
        self, saga: Saga, *, user_id: str, role: str, full_name: str, phone: str | None, address: str | None
    ) -> None:
        try:
            self._repo.insert_profile(
                profile_id=user_id, role=role, full_name=full_name, phone=_clean(phone), address=_clean(address)
            )
        except Exception as exc:
            self._fail(saga, ProfileCreationFailed, exc)
        saga.record("profile", lambda: self._repo.delete_profile(user_id))

    def _fail(self, saga: Saga, kind: Type[ProvisioningError], exc: Exception) -> NoReturn:
        logger.warning(
            "provisioning.step_failed saga=%s kind=%s completed=%s reason=%s",
            saga.name,
            kind.code,
            ",".join(saga.completed_steps) or "-",
            exc.__class__.__name__,
        )
        failures = saga.compensate()
        error = kind(_reason(exc))
        error.compensation_failures = failures
        raise error from exc

    # --- Operations ----------------------------------------------------------------

    def provision_teacher(self, data: TeacherProvisioningInput) -> TeacherProvisioningResult:
        """Create identity, teacher profile and teacher record (in that order).

        Raises:
            InvalidProvisioningInput, IdentityCreationFailed (DuplicateEmail),
            ProfileCreationFailed, TeacherRecordCreationFailed.
        """
        validate_teacher_input(data, min_password=self._min_password)
        email = data.email.strip()
        full_name = data.full_name.strip()
        saga = Saga("provision_teacher")

        user_id = self._create_identity(saga, email=email, password=data.temporary_password, full_name=full_name)
        self._create_profile(
            saga, user_id=user_id, role=TEACHER, full_name=full_name, phone=data.phone, address=data.address
        )
        try:
            teacher = self._repo.insert_teacher(
                user_id=user_id,
                employee_id=data.employee_id.strip(),
                subjects=[s.strip() for s in data.subjects if s.strip()],
                joining_date=data.joining_date,  # type: ignore[arg-type]
            )
        except Exception as exc:
            self._fail(saga, TeacherRecordCreationFailed, exc)

        logger.info("provisioning.teacher_created user_id=%s teacher_id=%s", user_id, teacher["id"])
        return TeacherProvisioningResult(
            teacher_id=str(teacher["id"]),
            user_id=user_id,
            email=email,
            temporary_password=data.temporary_password,
        )

    def provision_student_with_parent(self, data: StudentProvisioningInput) -> StudentProvisioningResult:
        """Create a student record, reusing or creating the parent account.

        Behavior:
            - An existing profile with role `parent` for the email is reused;
              the supplied password and parent contact fields are ignored.
            - Otherwise a parent identity and profile are created first.
            - When the student insert fails, only a parent created by this
              call is removed.
        """
        validate_student_input(data, min_password=self._min_password)
        parent_email = data.parent_email.strip()
        saga = Saga("provision_student_with_parent")

        parent_id = self._find_parent(parent_email)
        created = parent_id is None
        if parent_id is None:
            parent_full_name = data.parent_full_name.strip()
            parent_id = self._create_identity(
                saga, email=parent_email, password=data.temporary_password, full_name=parent_full_name
            )
            self._create_profile(
                saga,
                user_id=parent_id,
                role=PARENT,
                full_name=parent_full_name,
                phone=data.parent_phone,
                address=data.parent_address,
            )
        else:
            logger.info("provisioning.parent_reused parent_id=%s", parent_id)

        try:
            student = self._repo.insert_student(
                full_name=data.student_full_name.strip(),
                admission_number=data.admission_number.strip(),
                class_id=data.class_id.strip(),
                date_of_birth=data.date_of_birth,  # type: ignore[arg-type]
                parent_id=parent_id,
                enrollment_date=data.enrollment_date,  # type: ignore[arg-type]
                gender=_clean(data.gender),
                blood_group=_clean(data.blood_group),
                address=_clean(data.student_address),
                emergency_contact=_clean(data.emergency_contact),
                medical_conditions=_clean(data.medical_conditions),
            )
        except Exception as exc:
            self._fail(saga, StudentRecordCreationFailed, exc)

        logger.info(
            "provisioning.student_created student_id=%s parent_id=%s parent_created=%s",
            student["id"],
            parent_id,
            created,
        )
        return StudentProvisioningResult(
            student_id=str(student["id"]),
            parent_id=parent_id,
            parent_email=parent_email,
            parent_created=created,
            temporary_password=data.temporary_password if created else None,
        )

    def _find_parent(self, email: str) -> str | None:
        """Return the profile id of an existing parent with this email, if any.

        Lookup failures propagate unclassified: nothing has been created yet.
        """
        identity = self._identity.find_user_by_email(email)
        if identity is None:
            return None
        profile = self._repo.get_profile(identity.id)
        if profile and profile.get("role") == PARENT:
            return identity.id
        return None


__all__ = ["ProvisioningOrchestrator"]
