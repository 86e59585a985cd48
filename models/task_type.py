# models/task_type.py
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime

from utils.dates import utcnow

if TYPE_CHECKING:
    from models.task import Task

TASK_TYPE_CATEGORIES = ("Part Approval", "NMR", "New Model Builds", "General", "Production Readiness")

class TaskType(SQLModel, table=True):
    __tablename__ = "task_types"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    category: str = Field(default="General", index=True)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    sections: List["Section"] = Relationship(
        back_populates="task_type",
        sa_relationship_kwargs={"order_by": "Section.sequence", "cascade": "all, delete-orphan"},
    )
    tasks: List["Task"] = Relationship(
        back_populates="task_type",
        sa_relationship_kwargs={"order_by": "Task.sequence", "cascade": "all, delete-orphan"},
    )

class Section(SQLModel, table=True):
    __tablename__ = "task_type_sections"
    __table_args__ = (
        UniqueConstraint("task_type_id", "name", name="uq_section_task_type_name"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    task_type_id: int = Field(foreign_key="task_types.id", ondelete="CASCADE", index=True)
    name: str
    sequence: int = Field(default=0)
    description: Optional[str] = None

    task_type: "TaskType" = Relationship(back_populates="sections")
    tasks: List["Task"] = Relationship(
        back_populates="section",
        sa_relationship_kwargs={"order_by": "Task.sequence"},
    )
