import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from models import Project, ProjectTaskType, Section, Task, TaskType
from models.task_type import TASK_TYPE_CATEGORIES
from services.errors import ConflictError, NotFoundError, ValidationError
from services.instances import backfill_for_template
from services.repository import ComplianceRepository
from services.results import AttachResult
from services.templates import create_template

logger = logging.getLogger(__name__)


def create_task_type(repo: ComplianceRepository, name: str, category: str = "General",
                     description: Optional[str] = None) -> TaskType:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required", field="name")
    if category not in TASK_TYPE_CATEGORIES:
        raise ValidationError(f"Unknown category '{category}'", field="category", value=category)
    if repo.get_task_type_by_name(name) is not None:
        raise ConflictError(f"Task type '{name}' already exists", entity_type="TaskType")
    try:
        with repo.transaction():
            return repo.add(TaskType(name=name, category=category, description=description))
    except IntegrityError:
        raise ConflictError(f"Task type '{name}' already exists", entity_type="TaskType")


def add_section(repo: ComplianceRepository, task_type_id: int, name: str, sequence: int = 0,
                description: Optional[str] = None) -> Section:
    repo.require(TaskType, task_type_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Section name is required", field="name")
    if sequence < 0:
        raise ValidationError("Sequence must be non-negative", field="sequence", value=sequence)
    if repo.get_section_by_name(task_type_id, name) is not None:
        raise ConflictError(f"Section '{name}' already exists for this task type", entity_type="Section")
    with repo.transaction():
        return repo.add(Section(task_type_id=task_type_id, name=name, sequence=sequence,
                                description=description))


def add_task(repo: ComplianceRepository, task_type_id: int, name: str, section_id: Optional[int] = None,
             parent_task_id: Optional[int] = None, sequence: int = 0,
             default_owner: Optional[str] = None, default_notes: Optional[str] = None,
             is_required: bool = True, description: Optional[str] = None) -> Task:
    repo.require(TaskType, task_type_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Task name is required", field="name")
    if section_id is not None:
        section = repo.require(Section, section_id)
        if section.task_type_id != task_type_id:
            raise ValidationError("Section belongs to another task type", field="section_id", value=section_id)
    if parent_task_id is not None:
        parent = repo.require(Task, parent_task_id)
        if parent.task_type_id != task_type_id:
            raise ValidationError("Parent task belongs to another task type", field="parent_task_id",
                                  value=parent_task_id)
        if parent.parent_task_id is not None:
            raise ValidationError("Sub-tasks cannot have sub-tasks", field="parent_task_id", value=parent_task_id)
        if section_id is None:
            section_id = parent.section_id
    with repo.transaction():
        return repo.add(Task(task_type_id=task_type_id, section_id=section_id, parent_task_id=parent_task_id,
                             name=name, description=description, sequence=sequence,
                             default_owner=default_owner, default_notes=default_notes,
                             is_required=is_required))


def attach_task_type(repo: ComplianceRepository, project_id: int, task_type_id: int) -> AttachResult:
    """Activate a task type on a project and materialize its templates.

    One template per task of the type, then each new template is backfilled to
    the project's active suppliers. Re-attaching an inactive association
    reactivates it.
    """
    repo.require(Project, project_id)
    repo.require(TaskType, task_type_id)

    association = repo.get_association(project_id, task_type_id)
    if association is not None and association.is_active:
        raise ConflictError("Task type already associated with this project", entity_type="ProjectTaskType")

    with repo.transaction():
        if association is None:
            association = repo.add(ProjectTaskType(project_id=project_id, task_type_id=task_type_id))
        else:
            association.is_active = True
            for template in repo.templates_of_type(task_type_id, project_id):
                template.is_active = True

    result = AttachResult(association_id=association.id)
    for task in repo.tasks_of_type(task_type_id):
        existing = repo.get_template_for(project_id, task.id)
        create_template(repo, project_id, task.id, backfill=False)
        if existing is None:
            result.templates_created += 1

    for template in repo.templates_of_type(task_type_id, project_id):
        backfill = backfill_for_template(repo, template.id)
        result.instances_created += backfill.created
        result.errors.extend(backfill.failed)

    logger.info("task type %s attached to project %s: %d templates, %d instances",
                task_type_id, project_id, result.templates_created, result.instances_created)
    return result


def deactivate_task_type(repo: ComplianceRepository, project_id: int, task_type_id: int) -> int:
    """Switch the association and its templates off; returns templates touched."""
    association = repo.get_association(project_id, task_type_id)
    if association is None:
        raise NotFoundError("ProjectTaskType", f"{project_id}/{task_type_id}")
    templates = repo.templates_of_type(task_type_id, project_id)
    with repo.transaction():
        association.is_active = False
        for template in templates:
            template.is_active = False
    return len(templates)


def detach_task_type(repo: ComplianceRepository, project_id: int, task_type_id: int) -> int:
    """Remove the association and its templates while no supplier has started on them."""
    association = repo.get_association(project_id, task_type_id)
    if association is None:
        raise NotFoundError("ProjectTaskType", f"{project_id}/{task_type_id}")
    templates = repo.templates_of_type(task_type_id, project_id)
    in_use = repo.count_instances_for_templates(t.id for t in templates)
    if in_use:
        raise ConflictError(
            f"Cannot remove task type from project. {in_use} supplier task instances exist.",
            entity_type="ProjectTaskType",
        )
    with repo.transaction():
        for template in templates:
            repo.session.delete(template)
        repo.delete(association)
    return len(templates)
