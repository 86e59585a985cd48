# models/instance.py
from enum import Enum
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING
from datetime import date, datetime

from utils.dates import utcnow

if TYPE_CHECKING:
    from models.template import Template
    from models.supplier_project import SupplierProjectInstance

class InstanceStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

class Instance(SQLModel, table=True):
    """One supplier's copy of a project template.

    ``due_date`` follows the template. A non-null ``actual_due_date`` is a
    supplier override and locks the row against propagation.
    """

    __tablename__ = "supplier_task_instances"
    __table_args__ = (
        UniqueConstraint("supplier_project_instance_id", "template_id", name="uq_instance_supplier_template"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    supplier_project_instance_id: int = Field(foreign_key="supplier_project_instances.id",
                                              ondelete="CASCADE", index=True)
    template_id: int = Field(foreign_key="project_task_templates.id", ondelete="CASCADE", index=True)
    status: InstanceStatus = Field(default=InstanceStatus.NOT_STARTED)
    due_date: date
    actual_due_date: Optional[date] = None
    owner: Optional[str] = None
    notes: Optional[str] = None
    is_applied: bool = Field(default=True)
    blocked_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})

    template: "Template" = Relationship(back_populates="instances")
    supplier_project: "SupplierProjectInstance" = Relationship(back_populates="instances")

    @property
    def effective_due_date(self) -> date:
        return self.actual_due_date or self.due_date

    @property
    def is_overridden(self) -> bool:
        return self.actual_due_date is not None
