"""
Store access for the compliance engine.

Services never touch a global session: every operation receives a
``ComplianceRepository`` and goes through it. Uniqueness is left to the
database constraints; ``insert_if_absent`` is the insert-or-skip primitive the
backfills are built on.
"""

from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Type

from sqlalchemy import and_, func, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, col, select

from models import (
    Instance, InstanceStatus, ProjectTaskType, Section, SupplierProjectInstance, Task, Template, TaskType,
)
from services.errors import NotFoundError
from utils.dates import as_utc, parse_datetime, utcnow

_CONFLICT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class ComplianceRepository:
    def __init__(self, session: Session):
        self.session = session

    # ---- transactions ----
    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @contextmanager
    def savepoint(self) -> Iterator[Session]:
        with self.session.begin_nested():
            yield self.session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ---- generic ----
    def get(self, model: Type[SQLModel], entity_id):
        if entity_id is None:
            return None
        return self.session.get(model, entity_id)

    def require(self, model: Type[SQLModel], entity_id):
        obj = self.get(model, entity_id)
        if obj is None:
            raise NotFoundError(model.__name__, entity_id)
        return obj

    def add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.flush()

    def _dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def insert_if_absent(self, model: Type[SQLModel], values: Dict, conflict_columns: Sequence[str]) -> bool:
        """Insert one row unless its unique key already exists.

        Returns True when a row was written, False when the key was taken.
        Errors other than the uniqueness conflict are raised.
        """
        self.session.flush()
        table = model.__table__
        make_insert = _CONFLICT_INSERTS.get(self._dialect())
        if make_insert is not None:
            stmt = make_insert(table).values(**values).on_conflict_do_nothing(
                index_elements=list(conflict_columns)
            )
            result = self.session.connection().execute(stmt)
            return result.rowcount == 1
        try:
            with self.session.begin_nested():
                self.session.connection().execute(insert(table).values(**values))
            return True
        except IntegrityError:
            key = [getattr(model, c) == values[c] for c in conflict_columns]
            if self.session.exec(select(model).where(*key)).first() is not None:
                return False
            raise

    def is_unmodified_since(self, model: Type[SQLModel], entity_id, prev_updated_at) -> bool:
        expected = parse_datetime(prev_updated_at)
        current = self.session.exec(
            select(model.updated_at).where(model.id == entity_id)
        ).first()
        if current is None or expected is None:
            return False
        return as_utc(current) == expected

    # ---- hierarchy ----
    def tasks_of_type(self, task_type_id: int) -> List[Task]:
        stmt = (
            select(Task)
            .outerjoin(Section, Task.section_id == Section.id)
            .where(Task.task_type_id == task_type_id)
            .order_by(Section.sequence, Task.sequence, Task.id)
        )
        return list(self.session.exec(stmt).all())

    def get_task_type_by_name(self, name: str) -> Optional[TaskType]:
        return self.session.exec(select(TaskType).where(TaskType.name == name)).first()

    def get_section_by_name(self, task_type_id: int, name: str) -> Optional[Section]:
        return self.session.exec(
            select(Section).where(Section.task_type_id == task_type_id, Section.name == name)
        ).first()

    def get_association(self, project_id: int, task_type_id: int) -> Optional[ProjectTaskType]:
        return self.session.exec(
            select(ProjectTaskType).where(
                ProjectTaskType.project_id == project_id,
                ProjectTaskType.task_type_id == task_type_id,
            )
        ).first()

    # ---- templates ----
    def get_template_for(self, project_id: int, task_id: int) -> Optional[Template]:
        return self.session.exec(
            select(Template).where(Template.project_id == project_id, Template.task_id == task_id)
        ).first()

    def active_templates(self, project_id: int) -> List[Template]:
        stmt = (
            select(Template)
            .where(Template.project_id == project_id, col(Template.is_active).is_(True))
            .order_by(Template.id)
        )
        return list(self.session.exec(stmt).all())

    def templates_of_type(self, task_type_id: int, project_id: Optional[int] = None) -> List[Template]:
        stmt = select(Template).join(Task, Template.task_id == Task.id).where(Task.task_type_id == task_type_id)
        if project_id is not None:
            stmt = stmt.where(Template.project_id == project_id)
        return list(self.session.exec(stmt.order_by(Template.id)).all())

    def templates_for_shift(self, project_id: Optional[int], task_type_id: Optional[int] = None,
                            section_id: Optional[int] = None) -> List[Template]:
        stmt = select(Template).join(Task, Template.task_id == Task.id)
        if project_id is not None:
            stmt = stmt.where(Template.project_id == project_id)
        if task_type_id is not None:
            stmt = stmt.where(Task.task_type_id == task_type_id)
        if section_id is not None:
            stmt = stmt.where(Template.section_id == section_id)
        return list(self.session.exec(stmt.order_by(Template.id)).all())

    def task_type_id_of(self, template: Template) -> int:
        return self.require(Task, template.task_id).task_type_id

    # ---- supplier projects ----
    def get_supplier_project(self, supplier_id: int, project_id: int) -> Optional[SupplierProjectInstance]:
        return self.session.exec(
            select(SupplierProjectInstance).where(
                SupplierProjectInstance.supplier_id == supplier_id,
                SupplierProjectInstance.project_id == project_id,
            )
        ).first()

    def active_supplier_projects(self, project_id: int) -> List[SupplierProjectInstance]:
        stmt = (
            select(SupplierProjectInstance)
            .where(SupplierProjectInstance.project_id == project_id,
                   SupplierProjectInstance.status == "active")
            .order_by(SupplierProjectInstance.id)
        )
        return list(self.session.exec(stmt).all())

    def upsert_supplier_project(self, supplier_id: int, project_id: int) -> SupplierProjectInstance:
        """Create the assignment, or flip an existing one back to active."""
        self.session.flush()
        now = utcnow()
        make_insert = _CONFLICT_INSERTS.get(self._dialect())
        if make_insert is not None:
            stmt = make_insert(SupplierProjectInstance.__table__).values(
                supplier_id=supplier_id, project_id=project_id, status="active",
                assigned_at=now, created_at=now, updated_at=now,
            ).on_conflict_do_update(
                index_elements=["supplier_id", "project_id"],
                set_={"status": "active", "updated_at": now},
            )
            self.session.connection().execute(stmt)
        else:
            spi = self.get_supplier_project(supplier_id, project_id)
            if spi is None:
                try:
                    with self.session.begin_nested():
                        self.session.add(SupplierProjectInstance(supplier_id=supplier_id, project_id=project_id))
                except IntegrityError:
                    pass  # lost the race; the row exists now
            spi = self.get_supplier_project(supplier_id, project_id)
            spi.status = "active"
            self.session.flush()
        return self.session.exec(
            select(SupplierProjectInstance)
            .where(SupplierProjectInstance.supplier_id == supplier_id,
                   SupplierProjectInstance.project_id == project_id)
            .execution_options(populate_existing=True)
        ).one()

    # ---- instances ----
    def instances_for_supplier_project(self, spi_id: int) -> List[Instance]:
        return list(self.session.exec(
            select(Instance).where(Instance.supplier_project_instance_id == spi_id).order_by(Instance.id)
        ).all())

    def instances_for_template(self, template_id: int) -> List[Instance]:
        return list(self.session.exec(
            select(Instance).where(Instance.template_id == template_id).order_by(Instance.id)
        ).all())

    def propagatable_instances(self, template_ids: Iterable[int]) -> List[Instance]:
        """Applied instances with no supplier override."""
        ids = list(template_ids)
        if not ids:
            return []
        stmt = (
            select(Instance)
            .where(col(Instance.template_id).in_(ids),
                   col(Instance.actual_due_date).is_(None),
                   col(Instance.is_applied).is_(True))
            .order_by(Instance.id)
        )
        return list(self.session.exec(stmt).all())

    def delete_instances(self, instance_ids: Iterable[int]) -> int:
        ids = list(instance_ids)
        if not ids:
            return 0
        doomed = self.session.exec(select(Instance).where(col(Instance.id).in_(ids))).all()
        for inst in doomed:
            self.session.delete(inst)
        self.session.flush()
        return len(doomed)

    def count_instances_for_templates(self, template_ids: Iterable[int]) -> int:
        ids = list(template_ids)
        if not ids:
            return 0
        return self.session.exec(
            select(func.count(Instance.id)).where(col(Instance.template_id).in_(ids))
        ).one()

    def new_instance_values(self, spi_id: int, template: Template) -> Dict:
        now = utcnow()
        return {
            "supplier_project_instance_id": spi_id,
            "template_id": template.id,
            "status": InstanceStatus.NOT_STARTED,
            "due_date": template.due_date,
            "actual_due_date": None,
            "owner": template.owner,
            "notes": template.notes,
            "is_applied": True,
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        }

    def insert_instance_if_absent(self, spi_id: int, template: Template) -> bool:
        return self.insert_if_absent(
            Instance,
            self.new_instance_values(spi_id, template),
            ("supplier_project_instance_id", "template_id"),
        )

    # ---- audit queries (read only) ----
    def missing_instance_rows(self) -> List[Tuple[int, int, int, int]]:
        stmt = (
            select(SupplierProjectInstance.supplier_id, SupplierProjectInstance.project_id,
                   SupplierProjectInstance.id, Template.id)
            .join(Template, and_(Template.project_id == SupplierProjectInstance.project_id,
                                 col(Template.is_active).is_(True)))
            .outerjoin(Instance, and_(Instance.supplier_project_instance_id == SupplierProjectInstance.id,
                                      Instance.template_id == Template.id))
            .where(SupplierProjectInstance.status == "active", col(Instance.id).is_(None))
            .order_by(SupplierProjectInstance.id, Template.id)
        )
        return [tuple(r) for r in self.session.exec(stmt).all()]

    def instances_missing_supplier_project(self) -> List[int]:
        stmt = (
            select(Instance.id)
            .outerjoin(SupplierProjectInstance,
                       Instance.supplier_project_instance_id == SupplierProjectInstance.id)
            .where(col(SupplierProjectInstance.id).is_(None))
            .order_by(Instance.id)
        )
        return list(self.session.exec(stmt).all())

    def instances_missing_template(self) -> List[int]:
        stmt = (
            select(Instance.id)
            .outerjoin(Template, Instance.template_id == Template.id)
            .where(col(Template.id).is_(None))
            .order_by(Instance.id)
        )
        return list(self.session.exec(stmt).all())

    def duplicate_instance_rows(self) -> List[Tuple[int, int, int]]:
        n = func.count(Instance.id)
        stmt = (
            select(Instance.supplier_project_instance_id, Instance.template_id, n)
            .group_by(Instance.supplier_project_instance_id, Instance.template_id)
            .having(n > 1)
        )
        return [tuple(r) for r in self.session.exec(stmt).all()]

    def stale_instance_rows(self) -> List[Tuple[int, int, date, date]]:
        stmt = (
            select(Instance.id, Template.id, Instance.due_date, Template.due_date)
            .join(Template, Instance.template_id == Template.id)
            .where(col(Instance.actual_due_date).is_(None),
                   col(Instance.is_applied).is_(True),
                   Instance.due_date != Template.due_date)
            .order_by(Instance.id)
        )
        return [tuple(r) for r in self.session.exec(stmt).all()]
