"""
One-time import of the old milestone-shaped layout.

The old layout grouped tasks under milestones and scheduled them per project
as "milestone tasks". Importing maps each milestone to a section named
``"<code> - <name>"``, re-homes its tasks into that section and turns every
project milestone task into a template anchored on the project start.
Running it twice changes nothing.

Expected payload (JSON object or dict)::

    {
      "milestones": [{"id", "task_type_id", "code", "name", "sequence", "description"}],
      "tasks": [{"task_id", "milestone_id"}],
      "project_milestone_tasks": [{"project_id", "milestone_id", "task_id", "due_date",
                                   "notes", "responsible_parties", "is_active", "created_at"}]
    }
"""

import logging
from typing import Dict, List

import pandas as pd

from models import ProjectTaskType, Section, Task, Template, Anchor, Project
from services.errors import STORE_ERRORS, ComplianceError, describe
from services.instances import backfill_for_template
from services.repository import ComplianceRepository
from services.results import ImportSummary
from utils.dates import parse_date, parse_datetime, utcnow

logger = logging.getLogger(__name__)


def load_legacy_payload(source) -> Dict:
    """Read a legacy export from a dict, a JSON file path or an open file."""
    if isinstance(source, dict):
        return source
    return pd.read_json(source, typ="series", dtype=False, convert_dates=False).to_dict()


def _records(payload: Dict, key: str, sort_by: List[str] = None) -> List[Dict]:
    rows = payload.get(key) or []
    if not rows:
        return []
    df = pd.DataFrame(rows)
    if sort_by:
        df = df.sort_values([c for c in sort_by if c in df.columns], kind="stable")
    df = df.astype(object).where(df.notna(), None)
    return df.to_dict("records")


def _import_milestones(repo: ComplianceRepository, payload: Dict, summary: ImportSummary) -> Dict:
    section_for = {}
    for m in _records(payload, "milestones", ["task_type_id", "sequence"]):
        name = f"{m.get('code')} - {m.get('name')}"
        try:
            with repo.savepoint():
                section = repo.get_section_by_name(int(m["task_type_id"]), name)
                if section is None:
                    section = repo.add(Section(
                        task_type_id=int(m["task_type_id"]),
                        name=name,
                        sequence=int(m.get("sequence") or 0),
                        description=m.get("description") or f"Migrated from milestone {m.get('code')}",
                    ))
                    summary.sections_created += 1
        except STORE_ERRORS as exc:
            summary.errors.append(f"milestone {m.get('id')}: {describe(exc)}")
            continue
        section_for[m.get("id")] = section.id
    return section_for


def _link_tasks(repo: ComplianceRepository, payload: Dict, section_for: Dict, summary: ImportSummary) -> None:
    for link in _records(payload, "tasks"):
        section_id = section_for.get(link.get("milestone_id"))
        task = repo.get(Task, int(link["task_id"])) if link.get("task_id") is not None else None
        if task is None or section_id is None:
            summary.errors.append(f"task {link.get('task_id')}: unknown task or milestone {link.get('milestone_id')}")
            continue
        if task.section_id != section_id:
            task.section_id = section_id
            summary.tasks_linked += 1


def _import_milestone_tasks(repo: ComplianceRepository, payload: Dict, section_for: Dict,
                            summary: ImportSummary) -> List[int]:
    created = []
    for pmt in _records(payload, "project_milestone_tasks"):
        label = f"project milestone task {pmt.get('id') or (pmt.get('project_id'), pmt.get('task_id'))}"
        due = parse_date(pmt.get("due_date"))
        project = repo.get(Project, int(pmt["project_id"])) if pmt.get("project_id") is not None else None
        task = repo.get(Task, int(pmt["task_id"])) if pmt.get("task_id") is not None else None
        if due is None or project is None or task is None:
            summary.errors.append(f"{label}: missing project, task or due date")
            continue

        legacy_created = parse_datetime(pmt.get("created_at"))
        offset = (due - legacy_created.date()).days if legacy_created else 0
        section_id = section_for.get(pmt.get("milestone_id"), task.section_id)
        try:
            with repo.savepoint():
                if repo.get_association(project.id, task.task_type_id) is None:
                    repo.add(ProjectTaskType(project_id=project.id, task_type_id=task.task_type_id))
                inserted = repo.insert_if_absent(Template, {
                    "project_id": project.id,
                    "task_id": task.id,
                    "section_id": section_id,
                    "due_date": due,
                    "anchor": Anchor.PROJECT_START,
                    "offset_days": offset,
                    "owner": pmt.get("responsible_parties"),
                    "notes": pmt.get("notes"),
                    "is_active": pmt.get("is_active") is not False,
                    "created_at": utcnow(),
                    "updated_at": utcnow(),
                }, ("project_id", "task_id"))
        except STORE_ERRORS as exc:
            summary.errors.append(f"{label}: {describe(exc)}")
            continue
        if inserted:
            summary.templates_created += 1
            created.append(repo.get_template_for(project.id, task.id).id)
    return created


def import_legacy_layout(repo: ComplianceRepository, source) -> ImportSummary:
    payload = load_legacy_payload(source)
    summary = ImportSummary()

    with repo.transaction():
        section_for = _import_milestones(repo, payload, summary)
        _link_tasks(repo, payload, section_for, summary)
    with repo.transaction():
        created = _import_milestone_tasks(repo, payload, section_for, summary)

    for template_id in created:
        try:
            backfill = backfill_for_template(repo, template_id)
        except ComplianceError as exc:
            summary.errors.append(f"template {template_id}: {exc.message}")
            continue
        summary.errors.extend(backfill.failed)

    logger.info("legacy import: %d sections, %d tasks re-homed, %d templates, %d errors",
                summary.sections_created, summary.tasks_linked, summary.templates_created,
                len(summary.errors))
    return summary
