# models/supplier_project.py
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime

from utils.dates import utcnow

if TYPE_CHECKING:
    from models.project import Project
    from models.supplier import Supplier
    from models.instance import Instance

SUPPLIER_PROJECT_STATUSES = ("active", "inactive")

class SupplierProjectInstance(SQLModel, table=True):
    __tablename__ = "supplier_project_instances"
    __table_args__ = (
        UniqueConstraint("supplier_id", "project_id", name="uq_supplier_project"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    supplier_id: int = Field(foreign_key="suppliers.id", ondelete="CASCADE", index=True)
    project_id: int = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    status: str = Field(default="active", index=True)  # active | inactive
    assigned_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})

    supplier: "Supplier" = Relationship(back_populates="project_instances")
    project: "Project" = Relationship(back_populates="supplier_instances")
    instances: List["Instance"] = Relationship(
        back_populates="supplier_project",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )
