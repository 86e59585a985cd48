# models/template.py
from enum import Enum
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import date, datetime

from utils.dates import utcnow

if TYPE_CHECKING:
    from models.project import Project
    from models.task import Task
    from models.instance import Instance

class Anchor(str, Enum):
    PROJECT_START = "PROJECT_START"
    MILESTONE_DATE = "MILESTONE_DATE"
    RELATIVE_TO_TASK = "RELATIVE_TO_TASK"

class Template(SQLModel, table=True):
    """Project-level schedule for one task; supplier instances mirror it."""

    __tablename__ = "project_task_templates"
    __table_args__ = (
        UniqueConstraint("project_id", "task_id", name="uq_template_project_task"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    task_id: int = Field(foreign_key="tasks.id", ondelete="CASCADE", index=True)
    section_id: Optional[int] = Field(default=None, foreign_key="task_type_sections.id",
                                      ondelete="SET NULL", index=True)
    due_date: date
    anchor: Anchor = Field(default=Anchor.PROJECT_START)
    offset_days: int = Field(default=0)
    owner: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})

    project: "Project" = Relationship(back_populates="templates")
    task: "Task" = Relationship(back_populates="templates")
    instances: List["Instance"] = Relationship(
        back_populates="template",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )
