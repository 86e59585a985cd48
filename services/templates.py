import logging
from datetime import date
from typing import Optional, Union

from models import Anchor, Project, Task, Template
from services.errors import ConcurrencyError, ValidationError
from services.instances import backfill_for_template
from services.propagation import PropagationScope, propagate_template_change
from services.repository import ComplianceRepository
from utils.dates import parse_date, shift_date, utcnow

logger = logging.getLogger(__name__)


def coerce_anchor(anchor: Union[Anchor, str, None]) -> Anchor:
    if anchor is None:
        return Anchor.PROJECT_START
    if isinstance(anchor, Anchor):
        return anchor
    try:
        return Anchor(str(anchor).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown anchor '{anchor}'", field="anchor", value=anchor)


def coerce_offset(offset_days) -> int:
    if offset_days is None:
        return 0
    if isinstance(offset_days, bool) or not isinstance(offset_days, int):
        raise ValidationError("offset_days must be a whole number of days", field="offset_days", value=offset_days)
    return offset_days


def compute_due_date(anchor: Union[Anchor, str], offset_days: Optional[int], base_date: date,
                     milestone_date: Optional[date] = None,
                     relative_task_date: Optional[date] = None) -> date:
    """Resolve the anchor's reference date and add ``offset_days`` calendar days.

    A missing milestone or related-task date falls back to ``base_date``.
    """
    anchor = coerce_anchor(anchor)
    if anchor is Anchor.MILESTONE_DATE:
        reference = milestone_date or base_date
    elif anchor is Anchor.RELATIVE_TO_TASK:
        reference = relative_task_date or base_date
    else:
        reference = base_date
    return shift_date(reference, coerce_offset(offset_days))


def _resolve_due_date(repo: ComplianceRepository, project: Project, anchor: Anchor, offset_days: int,
                      milestone_date: Optional[date], relative_task_id: Optional[int]) -> date:
    relative_task_date = None
    if anchor is Anchor.RELATIVE_TO_TASK and relative_task_id is not None:
        related = repo.get_template_for(project.id, relative_task_id)
        if related is not None:
            relative_task_date = related.due_date
        else:
            logger.info("no template for related task %s in project %s, using project start",
                        relative_task_id, project.id)
    base_date = project.start_date or date.today()
    return compute_due_date(anchor, offset_days, base_date, parse_date(milestone_date), relative_task_date)


def create_template(repo: ComplianceRepository, project_id: int, task_id: int,
                    anchor: Union[Anchor, str] = Anchor.PROJECT_START, offset_days: int = 0,
                    milestone_date: Optional[date] = None, relative_task_id: Optional[int] = None,
                    owner: Optional[str] = None, notes: Optional[str] = None,
                    backfill: bool = True) -> Template:
    """Return the project's template for ``task_id``, creating it if needed.

    Calling this again for the same (project, task) returns the existing row
    unchanged. A newly created template is backfilled to the project's active
    suppliers unless ``backfill`` is False.
    """
    anchor = coerce_anchor(anchor)
    offset_days = coerce_offset(offset_days)
    project = repo.require(Project, project_id)
    task = repo.require(Task, task_id)

    existing = repo.get_template_for(project_id, task_id)
    if existing is not None:
        return existing
    association = repo.get_association(project_id, task.task_type_id)
    if association is None or not association.is_active:
        raise ValidationError("Task type is not active on this project", field="task_id", value=task_id)

    due = _resolve_due_date(repo, project, anchor, offset_days, milestone_date, relative_task_id)
    with repo.transaction():
        created = repo.insert_if_absent(Template, {
            "project_id": project_id,
            "task_id": task_id,
            "section_id": task.section_id,
            "due_date": due,
            "anchor": anchor,
            "offset_days": offset_days,
            "owner": owner if owner is not None else task.default_owner,
            "notes": notes if notes is not None else task.default_notes,
            "is_active": True,
            "created_at": utcnow(),
            "updated_at": utcnow(),
        }, ("project_id", "task_id"))
    template = repo.get_template_for(project_id, task_id)

    if created:
        logger.info("template %s created for project %s task %s due %s",
                    template.id, project_id, task_id, template.due_date)
        if backfill:
            backfill_for_template(repo, template.id)
    return template


def update_template_schedule(repo: ComplianceRepository, template_id: int,
                             anchor: Union[Anchor, str, None] = None, offset_days: Optional[int] = None,
                             milestone_date: Optional[date] = None, relative_task_id: Optional[int] = None,
                             expected_updated_at=None):
    """Re-anchor a template, recompute its due date and push it to instances."""
    template = repo.require(Template, template_id)
    if expected_updated_at is not None and not repo.is_unmodified_since(Template, template_id, expected_updated_at):
        raise ConcurrencyError("Template", template_id, expected_updated_at)
    new_anchor = coerce_anchor(anchor) if anchor is not None else template.anchor
    new_offset = coerce_offset(offset_days) if offset_days is not None else template.offset_days
    project = repo.require(Project, template.project_id)
    due = _resolve_due_date(repo, project, new_anchor, new_offset, milestone_date, relative_task_id)

    template.anchor = new_anchor
    template.offset_days = new_offset
    return propagate_template_change(repo, template_id, due, PropagationScope.PROJECT)


def set_template_active(repo: ComplianceRepository, template_id: int, is_active: bool) -> Template:
    template = repo.require(Template, template_id)
    was_active = template.is_active
    with repo.transaction():
        template.is_active = bool(is_active)
    if is_active and not was_active:
        backfill_for_template(repo, template_id)
    return template


def delete_template(repo: ComplianceRepository, template_id: int) -> int:
    """Delete a template and, by cascade, every instance of it."""
    template = repo.require(Template, template_id)
    instances = repo.instances_for_template(template_id)
    removed = len(instances)
    with repo.transaction():
        for inst in instances:
            repo.session.delete(inst)
        repo.delete(template)
    logger.info("template %s deleted with %d instances", template_id, removed)
    return removed
