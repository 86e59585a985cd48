# tests/conftest.py
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.pool import StaticPool

from db import get_session, init_db, make_engine
from models import Project, ProjectTaskType, Section, Supplier, Task, TaskType
from services.repository import ComplianceRepository

PROJECT_START = date(2025, 1, 6)


def _memory_engine(enforce_foreign_keys=True):
    eng = make_engine("sqlite://", enforce_foreign_keys=enforce_foreign_keys, poolclass=StaticPool)
    init_db(eng)
    return eng


def seed(repo):
    """One project running one task type (two tasks in one section) and two suppliers."""
    with repo.transaction():
        project = repo.add(Project(name="Model Y Refresh", start_date=PROJECT_START))
        task_type = repo.add(TaskType(name="PPAP", category="Part Approval"))
        section = repo.add(Section(task_type_id=task_type.id, name="Submission", sequence=1))
        psw = repo.add(Task(task_type_id=task_type.id, section_id=section.id, name="PSW", sequence=1))
        plan = repo.add(Task(task_type_id=task_type.id, section_id=section.id, name="Control Plan", sequence=2))
        acme = repo.add(Supplier(name="Acme Castings", supplier_number="S-001"))
        borealis = repo.add(Supplier(name="Borealis Plastics", supplier_number="S-002"))
        repo.add(ProjectTaskType(project_id=project.id, task_type_id=task_type.id))
    return SimpleNamespace(
        project=project, task_type=task_type, section=section,
        tasks=[psw, plan], suppliers=[acme, borealis],
    )


@pytest.fixture
def engine():
    eng = _memory_engine()
    yield eng
    eng.dispose()


@pytest.fixture
def repo(engine):
    with get_session(engine) as s:
        yield ComplianceRepository(s)


@pytest.fixture
def world(repo):
    return seed(repo)


@pytest.fixture
def loose_repo():
    """Foreign keys off, for rows deleted behind the cascade's back."""
    eng = _memory_engine(enforce_foreign_keys=False)
    with get_session(eng) as s:
        yield ComplianceRepository(s)
    eng.dispose()


@pytest.fixture
def loose_world(loose_repo):
    return seed(loose_repo)
