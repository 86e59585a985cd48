# models/project_task_type.py
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING
from datetime import datetime

from utils.dates import utcnow

if TYPE_CHECKING:
    from models.project import Project
    from models.task_type import TaskType

class ProjectTaskType(SQLModel, table=True):
    __tablename__ = "project_task_types"
    __table_args__ = (
        UniqueConstraint("project_id", "task_type_id", name="uq_project_task_type"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    task_type_id: int = Field(foreign_key="task_types.id", ondelete="CASCADE", index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})

    project: "Project" = Relationship(back_populates="task_types")
    task_type: "TaskType" = Relationship()
