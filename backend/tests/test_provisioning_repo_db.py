"""
Postgres provisioning repo: SQL shape, row mapping and error translation.

Runs against a scripted psycopg fake; no database required.
"""
from __future__ import annotations

from datetime import date

import pytest

from backend.provisioning import repo_db
from backend.provisioning.repo import DuplicateRecordError, ProvisioningRepoError
from backend.tests.utils.fake_psycopg import FakeDatabaseError, FakeJson, FakeUniqueViolation, install_fake_psycopg

DSN = "postgresql://svc:pw@localhost:5432/postgres"
PROFILE_ID = "0b7e1c6a-0000-4000-8000-000000000001"


def test_dsn_resolution_order(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://c")
    assert repo_db._dsn() == "postgresql://c"
    monkeypatch.setenv("DATABASE_URL", "postgresql://b")
    assert repo_db._dsn() == "postgresql://b"
    monkeypatch.setenv("PROVISIONING_DATABASE_URL", "postgresql://a")
    assert repo_db._dsn() == "postgresql://a"


def test_missing_dsn_raises(monkeypatch: pytest.MonkeyPatch):
    install_fake_psycopg(monkeypatch, repo_db)
    with pytest.raises(RuntimeError):
        repo_db.DBProvisioningRepo()


def test_insert_profile_uses_autocommit_and_maps_row(monkeypatch: pytest.MonkeyPatch):
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script((PROFILE_ID, "teacher", "Tanja Weber", None, None, True))
    repo = repo_db.DBProvisioningRepo(DSN)

    profile = repo.insert_profile(profile_id=PROFILE_ID, role="teacher", full_name="Tanja Weber")

    assert db.connects == [{"dsn": DSN, "autocommit": True}]
    sql, params = db.executed[0]
    assert sql.startswith("insert into public.profiles")
    assert "is_active" in sql and "returning" in sql
    assert params == (PROFILE_ID, "teacher", "Tanja Weber", None, None)
    assert profile == {
        "id": PROFILE_ID,
        "role": "teacher",
        "full_name": "Tanja Weber",
        "phone": None,
        "address": None,
        "is_active": True,
    }


def test_insert_teacher_wraps_subjects_as_json(monkeypatch: pytest.MonkeyPatch):
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script(("t-1", PROFILE_ID, "EMP-001", ["Math"], date(2024, 8, 1)))
    repo = repo_db.DBProvisioningRepo(DSN)

    teacher = repo.insert_teacher(
        user_id=PROFILE_ID, employee_id="EMP-001", subjects=("Math",), joining_date=date(2024, 8, 1)
    )

    _, params = db.executed[0]
    assert isinstance(params[2], FakeJson) and params[2].obj == ["Math"]
    assert teacher["id"] == "t-1"
    assert teacher["subjects"] == ["Math"]


def test_unique_violation_becomes_duplicate_record(monkeypatch: pytest.MonkeyPatch):
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script(FakeUniqueViolation('duplicate key value violates unique constraint "teachers_employee_id_key"'))
    repo = repo_db.DBProvisioningRepo(DSN)

    with pytest.raises(DuplicateRecordError) as excinfo:
        repo.insert_teacher(user_id=PROFILE_ID, employee_id="EMP-001", subjects=[], joining_date=date(2024, 8, 1))
    assert "teachers_employee_id_key" in excinfo.value.message


def test_driver_error_becomes_repo_error(monkeypatch: pytest.MonkeyPatch):
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script(FakeDatabaseError("connection reset"))
    repo = repo_db.DBProvisioningRepo(DSN)

    with pytest.raises(ProvisioningRepoError) as excinfo:
        repo.get_profile(PROFILE_ID)
    assert not isinstance(excinfo.value, DuplicateRecordError)
    assert excinfo.value.code == "FakeDatabaseError"


def test_delete_profile_reports_whether_a_row_was_removed(monkeypatch: pytest.MonkeyPatch):
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script((PROFILE_ID,), None)
    repo = repo_db.DBProvisioningRepo(DSN)

    assert repo.delete_profile(PROFILE_ID) is True
    assert repo.delete_profile(PROFILE_ID) is False


def test_insert_student_and_list_for_parent(monkeypatch: pytest.MonkeyPatch):
    row = (
        "s-1",
        "Mia Schulz",
        "ADM-1",
        "c-1",
        date(2015, 3, 14),
        PROFILE_ID,
        date(2024, 9, 1),
        None,
        None,
        None,
        None,
        None,
    )
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script(row, [row])
    repo = repo_db.DBProvisioningRepo(DSN)

    student = repo.insert_student(
        full_name="Mia Schulz",
        admission_number="ADM-1",
        class_id="c-1",
        date_of_birth=date(2015, 3, 14),
        parent_id=PROFILE_ID,
        enrollment_date=date(2024, 9, 1),
    )
    listed = repo.list_students_for_parent(PROFILE_ID)

    assert student["parent_id"] == PROFILE_ID
    assert [s["id"] for s in listed] == ["s-1"]
    insert_sql, insert_params = db.executed[0]
    assert insert_sql.startswith("insert into public.students")
    assert len(insert_params) == 11
    assert "where parent_id = %s::uuid" in db.executed[1][0]


def test_get_profile_missing_returns_none(monkeypatch: pytest.MonkeyPatch):
    db = install_fake_psycopg(monkeypatch, repo_db)
    db.script(None)
    assert repo_db.DBProvisioningRepo(DSN).get_profile(PROFILE_ID) is None
