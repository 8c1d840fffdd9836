"""
Users API routes: account provisioning for school administrators.

Why:
    Super admins create teacher accounts; super admins and teachers enroll
    students together with their parent account. Each endpoint runs the same
    pipeline: bearer caller (resolved by the auth middleware) → role guard →
    body validation → orchestrator → JSON response.

Ordering:
    The JSON body is parsed only after the guard passed, so unauthenticated or
    unauthorized callers never reach validation or any store write.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Iterable, List, Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from pydantic.functional_validators import field_validator

from backend.identity_access.domain import SUPER_ADMIN, TEACHER
from backend.identity_access.guard import ProfileNotFound, Unauthenticated, authorize
from backend.provisioning.errors import InvalidProvisioningInput, ProvisioningError
from backend.provisioning.models import StudentProvisioningInput, TeacherProvisioningInput
from backend.web.provisioning_wiring import get_services


logger = logging.getLogger("campus.web.users")

users_router = APIRouter(tags=["Users"])  # explicit paths below

CREATE_TEACHER_ROLES = frozenset({SUPER_ADMIN})
CREATE_STUDENT_ROLES = frozenset({SUPER_ADMIN, TEACHER})
GET_EMAIL_ROLES = frozenset({SUPER_ADMIN, TEACHER})


def _private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def _json_private(payload: Any, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers=_private_no_store())


def _error(message: str, status_code: int) -> JSONResponse:
    return _json_private({"error": message}, status_code=status_code)


# --- Request models ------------------------------------------------------------------
# Required fields default to None; the provisioning validators report the
# missing ones together ("Missing required fields: ...").

def _strip_or_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v if v else None
    return v


class CreateTeacherPayload(BaseModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    employee_id: Optional[str] = None
    subjects: List[str] = []
    joining_date: Optional[date] = None
    temporary_password: Optional[str] = None

    @field_validator("email", "full_name", "phone", "address", "employee_id", "joining_date", mode="before")
    @classmethod
    def _strip_empty(cls, v):
        return _strip_or_none(v)

    @field_validator("subjects", mode="before")
    @classmethod
    def _subjects_default(cls, v):
        return [] if v is None else v

    def to_input(self) -> TeacherProvisioningInput:
        return TeacherProvisioningInput(
            email=self.email or "",
            full_name=self.full_name or "",
            employee_id=self.employee_id or "",
            joining_date=self.joining_date,
            temporary_password=self.temporary_password or "",
            subjects=list(self.subjects),
            phone=self.phone,
            address=self.address,
        )


class CreateStudentPayload(BaseModel):
    student_full_name: Optional[str] = None
    admission_number: Optional[str] = None
    class_id: Optional[str] = None
    date_of_birth: Optional[date] = None
    enrollment_date: Optional[date] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    student_address: Optional[str] = None
    emergency_contact: Optional[str] = None
    medical_conditions: Optional[str] = None
    parent_email: Optional[str] = None
    parent_full_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_address: Optional[str] = None
    temporary_password: Optional[str] = None

    @field_validator(
        "student_full_name",
        "admission_number",
        "class_id",
        "date_of_birth",
        "enrollment_date",
        "gender",
        "blood_group",
        "student_address",
        "emergency_contact",
        "medical_conditions",
        "parent_email",
        "parent_full_name",
        "parent_phone",
        "parent_address",
        mode="before",
    )
    @classmethod
    def _strip_empty(cls, v):
        return _strip_or_none(v)

    def to_input(self) -> StudentProvisioningInput:
        return StudentProvisioningInput(
            student_full_name=self.student_full_name or "",
            admission_number=self.admission_number or "",
            class_id=self.class_id or "",
            date_of_birth=self.date_of_birth,
            enrollment_date=self.enrollment_date,
            parent_email=self.parent_email or "",
            parent_full_name=self.parent_full_name or "",
            temporary_password=self.temporary_password or "",
            gender=self.gender,
            blood_group=self.blood_group,
            student_address=self.student_address,
            emergency_contact=self.emergency_contact,
            medical_conditions=self.medical_conditions,
            parent_phone=self.parent_phone,
            parent_address=self.parent_address,
        )


def _invalid_fields(exc: ValidationError) -> list[str]:
    names: list[str] = []
    for err in exc.errors():
        loc = err.get("loc") or ()
        name = str(loc[0]) if loc else "body"
        if name not in names:
            names.append(name)
    return names


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel:
    """Parse the JSON body into `model`, mapping every problem to a validation error."""
    try:
        raw = await request.json()
    except ValueError as exc:
        raise InvalidProvisioningInput("Request body must be a JSON object") from exc
    if not isinstance(raw, dict):
        raise InvalidProvisioningInput("Request body must be a JSON object")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        fields = _invalid_fields(exc)
        raise InvalidProvisioningInput(f"Invalid fields: {', '.join(fields)}", fields=fields) from exc


# --- Guard ---------------------------------------------------------------------------

def _check_caller(request: Request, allowed: Iterable[str], forbidden_message: str) -> JSONResponse | None:
    """Run the role guard for the resolved caller; return an error response or None."""
    caller = getattr(request.state, "caller", None)
    caller_id = getattr(caller, "id", None)
    try:
        allowed_ok = authorize(caller_id, allowed, profiles=get_services().repo)
    except Unauthenticated:
        return _error("Unauthorized - Invalid token", 401)
    except ProfileNotFound:
        logger.info("users.forbidden caller=%s reason=profile_not_found path=%s", caller_id, request.url.path)
        return _error(forbidden_message, 403)
    if not allowed_ok:
        logger.info("users.forbidden caller=%s reason=role path=%s", caller_id, request.url.path)
        return _error(forbidden_message, 403)
    return None


# --- Endpoints -----------------------------------------------------------------------

@users_router.post("/api/users/create-teacher")
async def create_teacher(request: Request):
    """Create a teacher account (identity, profile, teacher record).

    Permissions:
        Caller must have role `super_admin`.

    Responses:
        201 with ids and the temporary password for out-of-band delivery;
        400 on validation or step failure; 401/403 from the guard.
    """
    try:
        denied = _check_caller(request, CREATE_TEACHER_ROLES, "Forbidden - Super Admin access required")
        if denied is not None:
            return denied
        payload = await _parse_body(request, CreateTeacherPayload)
        result = get_services().orchestrator().provision_teacher(payload.to_input())  # type: ignore[attr-defined]
    except ProvisioningError as exc:
        return _error(exc.message, 400)
    except Exception:
        logger.exception("users.create_teacher_failed")
        return _error("Internal server error", 500)
    return _json_private(
        {
            "success": True,
            "message": "Teacher created successfully",
            "data": {
                "teacher_id": result.teacher_id,
                "user_id": result.user_id,
                "email": result.email,
                "temporary_password": result.temporary_password,
            },
        },
        status_code=201,
    )


@users_router.post("/api/users/create-student")
async def create_student(request: Request):
    """Create a student record and link it to a new or existing parent.

    Permissions:
        Caller must have role `super_admin` or `teacher`.

    Responses:
        201; `data.temporary_password` is present only when a parent account
        was created by this request.
    """
    try:
        denied = _check_caller(request, CREATE_STUDENT_ROLES, "Forbidden - Admin or Teacher access required")
        if denied is not None:
            return denied
        payload = await _parse_body(request, CreateStudentPayload)
        result = get_services().orchestrator().provision_student_with_parent(payload.to_input())  # type: ignore[attr-defined]
    except ProvisioningError as exc:
        return _error(exc.message, 400)
    except Exception:
        logger.exception("users.create_student_failed")
        return _error("Internal server error", 500)

    data: dict[str, Any] = {
        "student_id": result.student_id,
        "parent_id": result.parent_id,
        "parent_email": result.parent_email,
    }
    if result.parent_created:
        data["temporary_password"] = result.temporary_password
    return _json_private(
        {"success": True, "message": "Student and parent created successfully", "data": data},
        status_code=201,
    )


@users_router.get("/api/users/get-email")
async def get_user_email(request: Request, userId: str | None = None):  # noqa: N803 - public query name
    """Return the identity-store email for `userId` (or null when unknown)."""
    try:
        denied = _check_caller(request, GET_EMAIL_ROLES, "Forbidden - Admin or Teacher access required")
        if denied is not None:
            return denied
        user_id = (userId or "").strip()
        if not user_id:
            return _error("User ID is required", 400)
        try:
            identity = get_services().identity.get_user(user_id)
        except Exception:
            logger.warning("users.get_email_failed user_id=%s", user_id)
            return _error("Failed to fetch user email", 500)
    except Exception:
        logger.exception("users.get_email_unexpected")
        return _error("Internal server error", 500)
    return _json_private({"email": identity.email if identity else None})


__all__ = ["users_router", "CREATE_TEACHER_ROLES", "CREATE_STUDENT_ROLES", "GET_EMAIL_ROLES"]
