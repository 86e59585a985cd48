# models/task.py
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING

if TYPE_CHECKING:
    from models.task_type import TaskType, Section
    from models.template import Template

class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    task_type_id: int = Field(foreign_key="task_types.id", ondelete="CASCADE", index=True)
    section_id: Optional[int] = Field(default=None, foreign_key="task_type_sections.id",
                                      ondelete="SET NULL", index=True)
    # one level only: a parent never has a parent of its own
    parent_task_id: Optional[int] = Field(default=None, foreign_key="tasks.id", ondelete="CASCADE")
    name: str
    description: Optional[str] = None
    sequence: int = Field(default=0)
    default_owner: Optional[str] = None
    default_notes: Optional[str] = None
    is_required: bool = Field(default=True)

    task_type: "TaskType" = Relationship(back_populates="tasks")
    section: Optional["Section"] = Relationship(back_populates="tasks")
    sub_tasks: List["Task"] = Relationship(
        back_populates="parent",
        sa_relationship_kwargs={"order_by": "Task.sequence"},
    )
    parent: Optional["Task"] = Relationship(
        back_populates="sub_tasks",
        sa_relationship_kwargs={"remote_side": "Task.id"},
    )
    templates: List["Template"] = Relationship(
        back_populates="task",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )
