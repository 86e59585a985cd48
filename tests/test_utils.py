# tests/test_utils.py
from datetime import date, datetime, timezone

from models.instance import Instance, InstanceStatus
from models.supplier_project import SupplierProjectInstance
from services.audit import audit_consistency
from services.instances import backfill_for_supplier, set_status
from services.results import AuditReport, OrphanedInstance
from services.templates import create_template
from utils.dates import as_utc, parse_date, parse_datetime, shift_date, utcnow
from utils.progress import compute_project_compliance, compute_supplier_progress
from utils.report import AUDIT_COLUMNS, audit_report_df, schedule_df_for_project


def test_compute_supplier_progress():
    class DummyResult(list):
        def all(self):
            return list(self)

    class DummySession:
        def exec(self, stmt):
            due = date(2025, 2, 1)
            return DummyResult([
                Instance(template_id=1, due_date=due, status=InstanceStatus.COMPLETED),
                Instance(template_id=2, due_date=due, status=InstanceStatus.IN_PROGRESS),
                Instance(template_id=3, due_date=due, status=InstanceStatus.CANCELLED),
                Instance(template_id=4, due_date=due, status=InstanceStatus.COMPLETED, is_applied=False),
            ])

    spi = SupplierProjectInstance(id=1, supplier_id=1, project_id=1)
    assert compute_supplier_progress(spi, DummySession()) == 50.0


def test_project_compliance_per_supplier(repo, world):
    for t in world.tasks:
        create_template(repo, world.project.id, t.id)
    for s in world.suppliers:
        backfill_for_supplier(repo, s.id, world.project.id)
    acme = world.suppliers[0]
    spi = repo.get_supplier_project(acme.id, world.project.id)
    set_status(repo, repo.instances_for_supplier_project(spi.id)[0].id, "completed")

    assert compute_project_compliance(repo, world.project.id) == {acme.id: 50.0, world.suppliers[1].id: 0.0}


def test_schedule_frame(repo, world):
    create_template(repo, world.project.id, world.tasks[0].id)
    backfill_for_supplier(repo, world.suppliers[0].id, world.project.id)

    df = schedule_df_for_project(repo, world.project.id)

    assert list(df["Supplier"]) == ["Acme Castings"]
    assert list(df["Status"]) == ["not_started"]
    assert df["Due"].iloc[0].date() == date(2025, 1, 6)


def test_audit_frame():
    report = AuditReport(orphaned_instances=[OrphanedInstance(instance_id=5, reason="Missing task template")])
    df = audit_report_df(report)
    assert list(df.columns) == AUDIT_COLUMNS
    assert df.iloc[0]["Check"] == "orphaned"
    assert audit_report_df(AuditReport()).empty


def test_empty_audit_frame_from_store(repo, world):
    assert audit_report_df(audit_consistency(repo)).empty


def test_dates():
    assert parse_date("2025-03-01") == date(2025, 3, 1)
    assert parse_date(datetime(2025, 3, 1, 9, 30)) == date(2025, 3, 1)
    assert parse_date("") is None
    assert parse_date("soon") is None
    assert parse_datetime(date(2025, 3, 1)) == datetime(2025, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime("2025-03-01T10:00:00+02:00") == datetime(2025, 3, 1, 8, tzinfo=timezone.utc)
    assert as_utc(datetime(2025, 3, 1, 8)) == datetime(2025, 3, 1, 8, tzinfo=timezone.utc)
    assert utcnow().tzinfo is not None
    assert shift_date(date(2025, 2, 27), 2) == date(2025, 3, 1)
