# tests/test_propagation.py
from datetime import date, datetime, timedelta

import pytest

from models import Project, ProjectTaskType
from services.errors import ConcurrencyError, ValidationError
from services.instances import backfill_for_supplier, update_instance
from services.propagation import (
    PropagationScope, bulk_shift_dates, check_optimistic_lock, coerce_scope, propagate_template_change,
)
from services.hierarchy import add_section
from services.templates import create_template
from utils.dates import as_utc


def _assigned(repo, world, supplier_index=0, task_index=0):
    t = create_template(repo, world.project.id, world.tasks[task_index].id)
    backfill_for_supplier(repo, world.suppliers[supplier_index].id, world.project.id)
    return t, repo.instances_for_template(t.id)


def test_shift_moves_template_and_instance(repo, world):
    t, (inst,) = _assigned(repo, world)
    d0 = t.due_date
    assert inst.due_date == d0

    result = bulk_shift_dates(repo, world.project.id, 5, scope="project")

    assert result.updated_count == 1
    assert result.errors == []
    assert t.due_date == d0 + timedelta(days=5)
    assert inst.due_date == d0 + timedelta(days=5)


def test_shift_leaves_overridden_instance_alone(repo, world):
    t, (inst,) = _assigned(repo, world)
    d0, d1 = t.due_date, date(2025, 4, 1)
    update_instance(repo, inst.id, actual_due_date=d1)

    result = bulk_shift_dates(repo, world.project.id, 5)

    assert result.updated_count == 0
    assert t.due_date == d0 + timedelta(days=5)
    assert inst.due_date == d0
    assert inst.actual_due_date == d1


def test_not_applied_instances_are_skipped(repo, world):
    t, (inst,) = _assigned(repo, world)
    update_instance(repo, inst.id, is_applied=False)

    result = propagate_template_change(repo, t.id, "2025-05-05")

    assert result.updated_count == 0
    assert t.due_date == date(2025, 5, 5)
    assert inst.due_date != date(2025, 5, 5)


def test_each_template_shifts_from_its_own_date(repo, world):
    psw = create_template(repo, world.project.id, world.tasks[0].id, offset_days=0)
    plan = create_template(repo, world.project.id, world.tasks[1].id, offset_days=10)
    backfill_for_supplier(repo, world.suppliers[0].id, world.project.id)
    before = {psw.id: psw.due_date, plan.id: plan.due_date}

    result = bulk_shift_dates(repo, world.project.id, -3, section_id=world.section.id)

    assert result.templates_updated == 2
    assert result.updated_count == 2
    for t in (psw, plan):
        assert t.due_date == before[t.id] - timedelta(days=3)
        assert repo.instances_for_template(t.id)[0].due_date == t.due_date


def test_type_scope_reaches_other_projects(repo, world):
    t, _ = _assigned(repo, world)
    with repo.transaction():
        other = repo.add(Project(name="Cybertruck", start_date=date(2025, 6, 1)))
        repo.add(ProjectTaskType(project_id=other.id, task_type_id=world.task_type.id))
    t2 = create_template(repo, other.id, world.tasks[0].id)
    backfill_for_supplier(repo, world.suppliers[1].id, other.id)

    result = propagate_template_change(repo, t.id, date(2025, 9, 1), PropagationScope.ALL_PROJECTS_USING_TYPE)

    assert result.templates_updated == 2
    assert result.updated_count == 2
    assert t2.due_date == date(2025, 9, 1)
    assert repo.instances_for_template(t2.id)[0].due_date == date(2025, 9, 1)


def test_shift_validation(repo, world):
    with pytest.raises(ValidationError):
        bulk_shift_dates(repo, world.project.id, "5")
    with pytest.raises(ValidationError):
        bulk_shift_dates(repo, world.project.id, True)
    with pytest.raises(ValidationError):
        coerce_scope("everywhere")
    with pytest.raises(ValidationError):
        propagate_template_change(repo, 1, "not a date")


def test_empty_selection_is_not_an_error(repo, world):
    result = bulk_shift_dates(repo, world.project.id, 7)
    assert result.as_dict() == {"updated_count": 0, "errors": [], "templates_updated": 0}


def test_optimistic_lock(repo, world):
    t, _ = _assigned(repo, world)
    stamp = t.updated_at
    assert check_optimistic_lock(repo, "template", t.id, stamp)
    assert not check_optimistic_lock(repo, "template", t.id, datetime(2000, 1, 1))

    propagate_template_change(repo, t.id, date(2025, 3, 3), expected_updated_at=stamp)
    with pytest.raises(ConcurrencyError):
        propagate_template_change(repo, t.id, date(2025, 3, 4), expected_updated_at=datetime(2000, 1, 1))
    with pytest.raises(ValidationError):
        check_optimistic_lock(repo, "supplier", 1, stamp)


def test_failed_instance_does_not_block_the_rest(repo, world):
    t = create_template(repo, world.project.id, world.tasks[0].id)
    for s in world.suppliers:
        backfill_for_supplier(repo, s.id, world.project.id)
    stuck, free = repo.instances_for_template(t.id)
    with repo.transaction():
        repo.session.connection().exec_driver_sql(
            "CREATE TRIGGER stuck_instance BEFORE UPDATE OF due_date ON supplier_task_instances "
            f"WHEN OLD.id = {stuck.id} BEGIN SELECT RAISE(ABORT, 'instance locked'); END"
        )

    result = propagate_template_change(repo, t.id, date(2025, 8, 8))

    assert result.updated_count == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith(f"Instance {stuck.id}:")
    assert not result.ok
    repo.session.expire_all()
    assert free.due_date == date(2025, 8, 8)
    assert stuck.due_date != date(2025, 8, 8)


def test_unfiltered_type_shift_reaches_every_project(repo, world):
    t, (inst,) = _assigned(repo, world)
    with repo.transaction():
        other = repo.add(Project(name="Cybertruck", start_date=date(2025, 6, 1)))
        repo.add(ProjectTaskType(project_id=other.id, task_type_id=world.task_type.id))
    t2 = create_template(repo, other.id, world.tasks[1].id)
    before = (t.due_date, t2.due_date)

    result = bulk_shift_dates(repo, world.project.id, 5, scope="all-projects-using-type")

    assert result.templates_updated == 2
    assert result.errors == []
    assert (t.due_date, t2.due_date) == tuple(d + timedelta(days=5) for d in before)
    assert inst.due_date == t.due_date


def test_section_filter_follows_the_template(repo, world):
    t, _ = _assigned(repo, world)
    moved = add_section(repo, world.task_type.id, "Run at Rate", sequence=2)
    with repo.transaction():
        t.section_id = moved.id
    d0 = t.due_date

    assert bulk_shift_dates(repo, world.project.id, 2, section_id=world.section.id).templates_updated == 0
    result = bulk_shift_dates(repo, world.project.id, 2, section_id=moved.id)

    assert result.templates_updated == 1
    assert t.due_date == d0 + timedelta(days=2)


def test_edit_stamp_survives_a_round_trip(repo, world):
    t, (inst,) = _assigned(repo, world)
    repo.session.expire_all()
    stamp = t.updated_at

    assert check_optimistic_lock(repo, "template", t.id, stamp)
    assert check_optimistic_lock(repo, "template", t.id, stamp.isoformat())
    assert check_optimistic_lock(repo, "template", t.id, as_utc(stamp))

    update_instance(repo, inst.id, expected_updated_at=inst.updated_at, notes="confirmed")
    propagate_template_change(repo, t.id, date(2025, 3, 3), expected_updated_at=stamp)
    assert not check_optimistic_lock(repo, "template", t.id, stamp)
