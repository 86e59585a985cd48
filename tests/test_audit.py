# tests/test_audit.py
import logging
from datetime import date

from sqlalchemy import delete, update

from models import Instance, SupplierProjectInstance, Template
from services.audit import (
    MISSING_SUPPLIER_PROJECT, MISSING_TEMPLATE, audit_consistency, find_duplicate_instances,
)
from services.instances import backfill_for_supplier, cleanup_orphaned_instances
from services.repository import ComplianceRepository
from services.templates import create_template


def test_synced_project_is_consistent(repo, world):
    for t in world.tasks:
        create_template(repo, world.project.id, t.id)
    for s in world.suppliers:
        backfill_for_supplier(repo, s.id, world.project.id)

    report = audit_consistency(repo)

    assert report.is_consistent
    assert report.as_dict()["orphaned_instances"] == []


def test_supplier_project_without_instances_is_reported(repo, world):
    templates = [create_template(repo, world.project.id, t.id) for t in world.tasks]
    acme = world.suppliers[0]
    with repo.transaction():
        spi = repo.add(SupplierProjectInstance(supplier_id=acme.id, project_id=world.project.id))

    report = audit_consistency(repo)

    assert [(m.supplier_project_instance_id, m.template_id) for m in report.missing_instances] == [
        (spi.id, templates[0].id), (spi.id, templates[1].id),
    ]
    assert report.missing_instances[0].supplier_id == acme.id


def test_instance_of_deleted_template_is_orphaned(loose_repo, loose_world):
    repo, world = loose_repo, loose_world
    t = create_template(repo, world.project.id, world.tasks[0].id)
    backfill_for_supplier(repo, world.suppliers[0].id, world.project.id)
    (inst,) = repo.instances_for_template(t.id)

    with repo.transaction():
        repo.session.connection().execute(delete(Template.__table__).where(Template.__table__.c.id == t.id))
    repo.session.expunge_all()

    report = audit_consistency(repo)

    assert [(o.instance_id, o.reason) for o in report.orphaned_instances] == [(inst.id, MISSING_TEMPLATE)]
    assert not report.is_consistent


def test_instance_of_removed_supplier_project_is_orphaned(loose_repo, loose_world):
    repo, world = loose_repo, loose_world
    create_template(repo, world.project.id, world.tasks[0].id)
    backfill_for_supplier(repo, world.suppliers[0].id, world.project.id)
    spi = repo.get_supplier_project(world.suppliers[0].id, world.project.id)

    table = SupplierProjectInstance.__table__
    with repo.transaction():
        repo.session.connection().execute(delete(table).where(table.c.id == spi.id))

    reasons = {o.reason for o in audit_consistency(repo).orphaned_instances}
    assert reasons == {MISSING_SUPPLIER_PROJECT}


def test_stale_instance_is_reported(repo, world):
    t = create_template(repo, world.project.id, world.tasks[0].id)
    backfill_for_supplier(repo, world.suppliers[0].id, world.project.id)
    (inst,) = repo.instances_for_template(t.id)

    table = Instance.__table__
    with repo.transaction():
        repo.session.connection().execute(
            update(table).where(table.c.id == inst.id).values(due_date=date(2030, 1, 1))
        )

    (stale,) = audit_consistency(repo).stale_instances
    assert stale.instance_id == inst.id
    assert stale.instance_due_date == date(2030, 1, 1)
    assert stale.template_due_date == t.due_date


def test_duplicates_are_reported_and_logged(repo, caplog):
    class LeakyRepository(ComplianceRepository):
        def duplicate_instance_rows(self):
            return [(3, 7, 2)]

    leaky = LeakyRepository(repo.session)
    (dup,) = find_duplicate_instances(leaky)
    assert (dup.supplier_project_instance_id, dup.template_id, dup.count) == (3, 7, 2)

    with caplog.at_level(logging.ERROR, logger="services.audit"):
        report = audit_consistency(leaky)
    assert len(report.duplicate_instances) == 1
    assert "duplicate instance groups" in caplog.text


def test_cleanup_removes_only_orphans(loose_repo, loose_world):
    repo, world = loose_repo, loose_world
    psw, plan = (create_template(repo, world.project.id, t.id) for t in world.tasks)
    for s in world.suppliers:
        backfill_for_supplier(repo, s.id, world.project.id)
    borealis_spi = repo.get_supplier_project(world.suppliers[1].id, world.project.id)

    with repo.transaction():
        conn = repo.session.connection()
        conn.execute(delete(Template.__table__).where(Template.__table__.c.id == psw.id))
        conn.execute(delete(SupplierProjectInstance.__table__)
                     .where(SupplierProjectInstance.__table__.c.id == borealis_spi.id))
    repo.session.expunge_all()

    # acme's psw, borealis' psw and borealis' plan
    assert cleanup_orphaned_instances(repo) == 3
    assert audit_consistency(repo).orphaned_instances == []
    assert [i.template_id for i in repo.instances_for_template(plan.id)] == [plan.id]
    assert cleanup_orphaned_instances(repo) == 0
