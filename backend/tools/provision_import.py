"""Bulk provisioning of teacher and student accounts from CSV files.

Runs every row through the same authorization guard and orchestrator as the
HTTP API, so a failed row is rolled back exactly like a failed request.

Usage example:

    python -m backend.tools.provision_import teachers teachers.csv \
        --actor-id 3f0c...-admin-profile-id \
        --output results.csv

Teacher CSV columns: email, full_name, employee_id, joining_date, subjects
(separated by `;`), phone, address, temporary_password.

Student CSV columns: student_full_name, admission_number, class_id,
date_of_birth, enrollment_date, gender, blood_group, student_address,
emergency_contact, medical_conditions, parent_email, parent_full_name,
parent_phone, parent_address, temporary_password.

Rows without `temporary_password` get a generated one; it is written to the
output CSV (the only place it is ever shown). Configuration is read from the
same environment variables as the web app (SUPABASE_URL, DATABASE_URL, ...).
"""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, TextIO

import click

from backend.identity_access.domain import SUPER_ADMIN, TEACHER, mask_email
from backend.identity_access.guard import ProfileNotFound, Unauthenticated, authorize
from backend.provisioning.errors import InvalidProvisioningInput, ProvisioningError
from backend.provisioning.models import StudentProvisioningInput, TeacherProvisioningInput
from backend.provisioning.passwords import generate_temporary_password
from backend.provisioning.validation import validate_student_input, validate_teacher_input
from backend.web.provisioning_wiring import ProvisioningServices, build_services


logger = logging.getLogger("campus.tools.provision_import")

TEACHER_ROLES = frozenset({SUPER_ADMIN})
STUDENT_ROLES = frozenset({SUPER_ADMIN, TEACHER})

INTERNAL_ERROR = "Internal error"

TEACHER_OUTPUT_FIELDS = ["row", "status", "error", "email", "user_id", "teacher_id", "temporary_password"]
STUDENT_OUTPUT_FIELDS = [
    "row",
    "status",
    "error",
    "parent_email",
    "student_id",
    "parent_id",
    "parent_created",
    "temporary_password",
]


@dataclass
class RowOutcome:
    row: int
    status: str
    error: str = ""
    values: Dict[str, object] = field(default_factory=dict)

    def as_csv(self) -> Dict[str, object]:
        return {"row": self.row, "status": self.status, "error": self.error, **self.values}


def _cell(record: Dict[str, Optional[str]], name: str) -> Optional[str]:
    value = record.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _date_cell(record: Dict[str, Optional[str]], name: str) -> Optional[date]:
    value = _cell(record, name)
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidProvisioningInput(f"Invalid date: {name}", fields=[name]) from exc


def teacher_input_from_row(record: Dict[str, Optional[str]]) -> TeacherProvisioningInput:
    subjects = [s.strip() for s in (_cell(record, "subjects") or "").split(";") if s.strip()]
    return TeacherProvisioningInput(
        email=_cell(record, "email") or "",
        full_name=_cell(record, "full_name") or "",
        employee_id=_cell(record, "employee_id") or "",
        joining_date=_date_cell(record, "joining_date"),
        temporary_password=_cell(record, "temporary_password") or generate_temporary_password(),
        subjects=subjects,
        phone=_cell(record, "phone"),
        address=_cell(record, "address"),
    )


def student_input_from_row(record: Dict[str, Optional[str]]) -> StudentProvisioningInput:
    return StudentProvisioningInput(
        student_full_name=_cell(record, "student_full_name") or "",
        admission_number=_cell(record, "admission_number") or "",
        class_id=_cell(record, "class_id") or "",
        date_of_birth=_date_cell(record, "date_of_birth"),
        enrollment_date=_date_cell(record, "enrollment_date"),
        parent_email=_cell(record, "parent_email") or "",
        parent_full_name=_cell(record, "parent_full_name") or "",
        temporary_password=_cell(record, "temporary_password") or generate_temporary_password(),
        gender=_cell(record, "gender"),
        blood_group=_cell(record, "blood_group"),
        student_address=_cell(record, "student_address"),
        emergency_contact=_cell(record, "emergency_contact"),
        medical_conditions=_cell(record, "medical_conditions"),
        parent_phone=_cell(record, "parent_phone"),
        parent_address=_cell(record, "parent_address"),
    )


def import_teachers(
    records: Iterable[Dict[str, Optional[str]]], *, services: ProvisioningServices, dry_run: bool = False
) -> List[RowOutcome]:
    """Provision one teacher per record; a failing row never stops the run."""
    orchestrator = services.orchestrator()
    outcomes: List[RowOutcome] = []
    for idx, record in enumerate(records, start=1):
        try:
            data = teacher_input_from_row(record)
            if dry_run:
                validate_teacher_input(data)
                outcomes.append(RowOutcome(idx, "valid", values={"email": data.email}))
                continue
            result = orchestrator.provision_teacher(data)
        except ProvisioningError as exc:
            logger.warning("Row %d failed: %s (%s)", idx, exc.code, mask_email(record.get("email") or ""))
            outcomes.append(RowOutcome(idx, "failed", exc.message, {"email": record.get("email") or ""}))
            continue
        except Exception:
            logger.exception("Row %d failed unexpectedly (%s)", idx, mask_email(record.get("email") or ""))
            outcomes.append(RowOutcome(idx, "failed", INTERNAL_ERROR, {"email": record.get("email") or ""}))
            continue
        logger.info("Row %d: created teacher %s", idx, mask_email(result.email))
        outcomes.append(
            RowOutcome(
                idx,
                "created",
                values={
                    "email": result.email,
                    "user_id": result.user_id,
                    "teacher_id": result.teacher_id,
                    "temporary_password": result.temporary_password,
                },
            )
        )
    return outcomes


def import_students(
    records: Iterable[Dict[str, Optional[str]]], *, services: ProvisioningServices, dry_run: bool = False
) -> List[RowOutcome]:
    """Provision one student per record, reusing parents already on file."""
    orchestrator = services.orchestrator()
    outcomes: List[RowOutcome] = []
    for idx, record in enumerate(records, start=1):
        parent_email = record.get("parent_email") or ""
        try:
            data = student_input_from_row(record)
            if dry_run:
                validate_student_input(data)
                outcomes.append(RowOutcome(idx, "valid", values={"parent_email": data.parent_email}))
                continue
            result = orchestrator.provision_student_with_parent(data)
        except ProvisioningError as exc:
            logger.warning("Row %d failed: %s (%s)", idx, exc.code, mask_email(parent_email))
            outcomes.append(RowOutcome(idx, "failed", exc.message, {"parent_email": parent_email}))
            continue
        except Exception:
            logger.exception("Row %d failed unexpectedly (%s)", idx, mask_email(parent_email))
            outcomes.append(RowOutcome(idx, "failed", INTERNAL_ERROR, {"parent_email": parent_email}))
            continue
        logger.info(
            "Row %d: created student %s (parent %s, new=%s)",
            idx,
            result.student_id,
            mask_email(result.parent_email),
            result.parent_created,
        )
        outcomes.append(
            RowOutcome(
                idx,
                "created",
                values={
                    "parent_email": result.parent_email,
                    "student_id": result.student_id,
                    "parent_id": result.parent_id,
                    "parent_created": result.parent_created,
                    "temporary_password": result.temporary_password or "",
                },
            )
        )
    return outcomes


def _write_outcomes(stream: TextIO, fieldnames: List[str], outcomes: List[RowOutcome]) -> None:
    writer = csv.DictWriter(stream, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()
    for outcome in outcomes:
        writer.writerow(outcome.as_csv())


def _ensure_actor(services: ProvisioningServices, actor_id: str, roles: frozenset[str]) -> None:
    try:
        allowed = authorize(actor_id, roles, profiles=services.repo)
    except (Unauthenticated, ProfileNotFound) as exc:
        raise click.ClickException(f"Actor {actor_id!r} has no profile ({exc.code})") from exc
    if not allowed:
        raise click.ClickException(f"Actor {actor_id!r} may not provision with roles {', '.join(sorted(roles))}")


def _run(
    *,
    csv_file: TextIO,
    actor_id: str,
    output: Optional[TextIO],
    dry_run: bool,
    roles: frozenset[str],
    importer: Callable[..., List[RowOutcome]],
    fieldnames: List[str],
) -> None:
    try:
        services = build_services()
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc
    _ensure_actor(services, actor_id, roles)

    records = list(csv.DictReader(csv_file))
    mode_text = "DRY-RUN" if dry_run else "LIVE"
    click.echo(f"Processing {len(records)} rows ({mode_text})")
    outcomes = importer(records, services=services, dry_run=dry_run)

    if output is not None:
        _write_outcomes(output, fieldnames, outcomes)
    failed = [o for o in outcomes if o.status == "failed"]
    for outcome in failed:
        click.echo(f"Row {outcome.row}: {outcome.error}", err=True)
    click.echo(f"Done: {len(outcomes) - len(failed)} ok, {len(failed)} failed")
    if failed:
        raise SystemExit(1)


_actor_option = click.option(
    "--actor-id", required=True, help="Profile id of the administrator running the import."
)
_output_option = click.option(
    "--output",
    type=click.File("w", encoding="utf-8"),
    default=None,
    help="Write per-row results (ids, temporary passwords) to this CSV file.",
)
_dry_run_option = click.option(
    "--dry-run", is_flag=True, default=False, help="Validate rows without creating any account."
)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
def cli() -> None:
    """Provision school accounts in bulk from CSV files."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")


@cli.command("teachers")
@click.argument("csv_file", type=click.File("r", encoding="utf-8"))
@_actor_option
@_output_option
@_dry_run_option
def teachers_command(csv_file: TextIO, actor_id: str, output: Optional[TextIO], dry_run: bool) -> None:
    """Create teacher accounts (super admins only)."""
    _run(
        csv_file=csv_file,
        actor_id=actor_id,
        output=output,
        dry_run=dry_run,
        roles=TEACHER_ROLES,
        importer=import_teachers,
        fieldnames=TEACHER_OUTPUT_FIELDS,
    )


@cli.command("students")
@click.argument("csv_file", type=click.File("r", encoding="utf-8"))
@_actor_option
@_output_option
@_dry_run_option
def students_command(csv_file: TextIO, actor_id: str, output: Optional[TextIO], dry_run: bool) -> None:
    """Create students and their parent accounts (super admins and teachers)."""
    _run(
        csv_file=csv_file,
        actor_id=actor_id,
        output=output,
        dry_run=dry_run,
        roles=STUDENT_ROLES,
        importer=import_students,
        fieldnames=STUDENT_OUTPUT_FIELDS,
    )


if __name__ == "__main__":  # pragma: no cover
    cli()
