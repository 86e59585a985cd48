"""
Due date propagation.

Template dates flow down to supplier instances, never back up. Instances with
a supplier override (``actual_due_date``) or opted out (``is_applied`` false)
are left alone.

Each template and the instance updates it causes commit together. A bulk shift
commits template by template, so a late failure never undoes templates that
were already shifted; callers must read ``errors`` even when
``updated_count`` is non-zero.
"""

import logging
from enum import Enum
from typing import List, Optional, Union

from models import Instance, Project, Section, TaskType, Template
from services.errors import STORE_ERRORS, ConcurrencyError, ValidationError, describe
from services.repository import ComplianceRepository
from services.results import PropagationResult
from utils.dates import parse_date, shift_date

logger = logging.getLogger(__name__)


class PropagationScope(str, Enum):
    PROJECT = "project"
    ALL_PROJECTS_USING_TYPE = "all-projects-using-type"


_LOCKABLE = {"template": Template, "instance": Instance}


def coerce_scope(scope: Union[PropagationScope, str]) -> PropagationScope:
    if isinstance(scope, PropagationScope):
        return scope
    try:
        return PropagationScope(str(scope).strip().lower())
    except ValueError:
        raise ValidationError(
            'Scope must be either "project" or "all-projects-using-type"', field="scope", value=scope
        )


def check_optimistic_lock(repo: ComplianceRepository, model, entity_id, prev_updated_at) -> bool:
    """True when the row still carries ``prev_updated_at``.

    Nothing calls this on its own; writers opt in by passing
    ``expected_updated_at``.
    """
    if isinstance(model, str):
        model = _LOCKABLE.get(model.lower())
        if model is None:
            raise ValidationError("Only templates and instances carry an edit stamp", field="model")
    return repo.is_unmodified_since(model, entity_id, prev_updated_at)


def _cascade(repo: ComplianceRepository, templates: List[Template], new_due_date, result: PropagationResult) -> None:
    for template in templates:
        template.due_date = new_due_date
    repo.session.flush()

    for inst in repo.propagatable_instances(t.id for t in templates):
        try:
            with repo.savepoint():
                inst.due_date = new_due_date
                repo.session.flush()
        except STORE_ERRORS as exc:
            logger.warning("instance %s kept its old due date: %s", inst.id, exc)
            result.errors.append(f"Instance {inst.id}: {describe(exc)}")
            continue
        result.updated_count += 1


def propagate_template_change(repo: ComplianceRepository, template_id: int, new_due_date,
                              scope: Union[PropagationScope, str] = PropagationScope.PROJECT,
                              expected_updated_at=None) -> PropagationResult:
    """Give a template a new due date and push it to its instances.

    ``project`` scope touches this template only. ``all-projects-using-type``
    moves every template, in any project, whose task has the same task type,
    together with their instances.
    """
    scope = coerce_scope(scope)
    new_due = parse_date(new_due_date)
    if new_due is None:
        raise ValidationError("A valid due date is required", field="new_due_date", value=new_due_date)
    template = repo.require(Template, template_id)
    if expected_updated_at is not None and not repo.is_unmodified_since(Template, template_id, expected_updated_at):
        raise ConcurrencyError("Template", template_id, expected_updated_at)

    if scope is PropagationScope.PROJECT:
        targets = [template]
    else:
        targets = repo.templates_of_type(repo.task_type_id_of(template))

    result = PropagationResult()
    try:
        with repo.transaction():
            _cascade(repo, targets, new_due, result)
    except STORE_ERRORS as exc:
        logger.warning("propagation from template %s rolled back: %s", template_id, exc)
        return PropagationResult(errors=result.errors + [f"Template {template_id}: {describe(exc)}"])

    result.templates_updated = len(targets)
    logger.info("template %s -> %s (%s): %d instances updated, %d errors",
                template_id, new_due, scope.value, result.updated_count, len(result.errors))
    return result


def bulk_shift_dates(repo: ComplianceRepository, project_id: int, days: int,
                     task_type_id: Optional[int] = None, section_id: Optional[int] = None,
                     scope: Union[PropagationScope, str] = PropagationScope.PROJECT) -> PropagationResult:
    """Move a set of templates by ``days`` calendar days.

    Templates are picked by project (``project`` scope only), task type and
    section; with the wider scope and no filter every template is shifted.
    Every template shifts from its own current date and carries its own
    instances along, one transaction per template.
    """
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError("Days must be an integer", field="days", value=days)
    scope = coerce_scope(scope)
    repo.require(Project, project_id)
    if task_type_id is not None:
        repo.require(TaskType, task_type_id)
    if section_id is not None:
        repo.require(Section, section_id)

    templates = repo.templates_for_shift(
        project_id if scope is PropagationScope.PROJECT else None, task_type_id, section_id
    )
    result = PropagationResult()
    if not templates:
        logger.info("bulk shift of project %s matched no templates", project_id)
        return result

    for template in templates:
        tid = template.id
        partial = PropagationResult()
        try:
            with repo.transaction():
                _cascade(repo, [template], shift_date(template.due_date, days), partial)
        except STORE_ERRORS as exc:
            logger.warning("shift of template %s rolled back: %s", tid, exc)
            result.errors.append(f"Template {tid}: {describe(exc)}")
            continue
        result.templates_updated += 1
        result.updated_count += partial.updated_count
        result.errors.extend(partial.errors)

    logger.info("bulk shift %+d days (%s, project %s): %d templates, %d instances, %d errors",
                days, scope.value, project_id, result.templates_updated, result.updated_count,
                len(result.errors))
    return result
