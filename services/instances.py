"""
Instance synchronizer.

Keeps exactly one Instance per (supplier project, active template). Backfills
lean on the store's unique constraint: an instance that already exists is
counted as ``skipped_duplicate``, never as a failure, so every backfill can be
retried safely.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from models import Instance, InstanceStatus, Project, Supplier, SupplierProjectInstance, Template
from services.errors import STORE_ERRORS, ConcurrencyError, NotFoundError, ValidationError, describe
from services.repository import ComplianceRepository
from services.results import BackfillResult, BulkUpdateResult, RemovalResult
from utils.dates import as_utc, parse_date, parse_datetime, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("status", "actual_due_date", "notes", "owner", "is_applied", "blocked_reason", "completed_at")


def coerce_status(status: Union[InstanceStatus, str]) -> InstanceStatus:
    if isinstance(status, InstanceStatus):
        return status
    try:
        return InstanceStatus(str(status).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown status '{status}'", field="status", value=status)


def apply_status(instance: Instance, status: Union[InstanceStatus, str],
                 completed_at: Optional[datetime] = None) -> Instance:
    """Set the status and keep ``completed_at`` in step with it.

    Any status may follow any other. Entering completed stamps ``completed_at``
    (keeping an existing stamp), leaving completed clears it.
    """
    status = coerce_status(status)
    if status == InstanceStatus.COMPLETED:
        if completed_at is not None:
            instance.completed_at = as_utc(completed_at)
        elif instance.status != InstanceStatus.COMPLETED or instance.completed_at is None:
            instance.completed_at = utcnow()
    else:
        instance.completed_at = None
    instance.status = status
    return instance


def _insert_one(repo: ComplianceRepository, spi_id: int, template: Template, result: BackfillResult) -> None:
    try:
        with repo.savepoint():
            created = repo.insert_instance_if_absent(spi_id, template)
    except STORE_ERRORS as exc:
        logger.warning("instance for supplier project %s template %s failed: %s", spi_id, template.id, exc)
        result.failed.append(f"supplier project {spi_id}, template {template.id}: {describe(exc)}")
        return
    if created:
        result.created += 1
    else:
        result.skipped_duplicate += 1


def _finish(repo: ComplianceRepository, result: BackfillResult) -> BackfillResult:
    try:
        repo.commit()
    except STORE_ERRORS as exc:
        repo.rollback()
        result.failed.append(f"commit failed: {describe(exc)}")
        result.created = 0
    return result


def backfill_for_supplier(repo: ComplianceRepository, supplier_id: int, project_id: int) -> BackfillResult:
    """Assign a supplier to a project and create its missing instances."""
    repo.require(Supplier, supplier_id)
    repo.require(Project, project_id)
    result = BackfillResult()

    try:
        with repo.transaction():
            spi = repo.upsert_supplier_project(supplier_id, project_id)
    except STORE_ERRORS as exc:
        logger.warning("supplier %s could not join project %s: %s", supplier_id, project_id, exc)
        result.failed.append(f"supplier project {supplier_id}/{project_id}: {describe(exc)}")
        return result

    for template in repo.active_templates(project_id):
        _insert_one(repo, spi.id, template, result)
    _finish(repo, result)
    logger.info("backfill supplier %s project %s: created=%d skipped=%d failed=%d",
                supplier_id, project_id, result.created, result.skipped_duplicate, len(result.failed))
    return result


def backfill_for_template(repo: ComplianceRepository, template_id: int) -> BackfillResult:
    """Create the template's instance for every active supplier of its project."""
    template = repo.require(Template, template_id)
    result = BackfillResult()
    if not template.is_active:
        logger.info("template %s is inactive, nothing to backfill", template_id)
        return result

    for spi in repo.active_supplier_projects(template.project_id):
        _insert_one(repo, spi.id, template, result)
    _finish(repo, result)
    logger.info("backfill template %s: created=%d skipped=%d failed=%d",
                template_id, result.created, result.skipped_duplicate, len(result.failed))
    return result


def remove_for_supplier(repo: ComplianceRepository, supplier_id: int, project_id: int) -> RemovalResult:
    """Drop a supplier from a project along with all of its instances.

    Completed work is deleted too; ``completed_lost_count`` tells the caller
    how much of it went.
    """
    spi = repo.get_supplier_project(supplier_id, project_id)
    if spi is None:
        raise NotFoundError("SupplierProjectInstance", f"{supplier_id}/{project_id}")

    instances = repo.instances_for_supplier_project(spi.id)
    completed = sum(1 for i in instances if i.status == InstanceStatus.COMPLETED)
    try:
        with repo.transaction():
            for inst in instances:
                repo.session.delete(inst)
            repo.delete(spi)
    except STORE_ERRORS as exc:
        logger.warning("removing supplier %s from project %s failed: %s", supplier_id, project_id, exc)
        return RemovalResult(errors=[describe(exc)])

    if completed:
        logger.warning("supplier %s removed from project %s, %d completed instances discarded",
                       supplier_id, project_id, completed)
    return RemovalResult(removed_count=len(instances), completed_lost_count=completed)


def deactivate_supplier(repo: ComplianceRepository, supplier_id: int, project_id: int) -> SupplierProjectInstance:
    """Mark the assignment inactive; instances and their history stay."""
    spi = repo.get_supplier_project(supplier_id, project_id)
    if spi is None:
        raise NotFoundError("SupplierProjectInstance", f"{supplier_id}/{project_id}")
    with repo.transaction():
        spi.status = "inactive"
    return spi


def cleanup_orphaned_instances(repo: ComplianceRepository) -> int:
    """Delete instances whose supplier project or template no longer exists.

    The corrective counterpart of the audit's orphan check; runs in one
    transaction and returns how many rows went.
    """
    orphan_ids = set(repo.instances_missing_supplier_project())
    orphan_ids.update(repo.instances_missing_template())
    with repo.transaction():
        removed = repo.delete_instances(sorted(orphan_ids))
    if removed:
        logger.warning("%d orphaned instances deleted", removed)
    return removed


def _normalize_changes(changes: Dict) -> Dict:
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"Field '{field}' cannot be updated", field=field)

    clean = dict(changes)
    if "status" in clean:
        clean["status"] = coerce_status(clean["status"])
    if "actual_due_date" in clean and clean["actual_due_date"] is not None:
        value = parse_date(clean["actual_due_date"])
        if value is None:
            raise ValidationError("Invalid override date", field="actual_due_date", value=clean["actual_due_date"])
        clean["actual_due_date"] = value
    if "completed_at" in clean and clean["completed_at"] is not None:
        value = parse_datetime(clean["completed_at"])
        if value is None:
            raise ValidationError("Invalid completion time", field="completed_at", value=clean["completed_at"])
        clean["completed_at"] = value
    if "completed_at" in clean and clean.get("status") != InstanceStatus.COMPLETED:
        raise ValidationError("completed_at can only be set together with status completed",
                              field="completed_at", value=clean["completed_at"])
    if "is_applied" in clean and not isinstance(clean["is_applied"], bool):
        raise ValidationError("is_applied must be true or false", field="is_applied", value=clean["is_applied"])
    return clean


def _apply_changes(repo: ComplianceRepository, instance: Instance, changes: Dict) -> None:
    for name in ("notes", "owner", "blocked_reason"):
        if name in changes:
            setattr(instance, name, changes[name])
    if "actual_due_date" in changes:
        instance.actual_due_date = changes["actual_due_date"]
    if "is_applied" in changes:
        instance.is_applied = changes["is_applied"]
    if "status" in changes:
        apply_status(instance, changes["status"], changes.get("completed_at"))
    # opted back in, or override dropped: follow the template again
    if instance.is_applied and instance.actual_due_date is None:
        instance.due_date = repo.require(Template, instance.template_id).due_date


def update_instance(repo: ComplianceRepository, instance_id: int, expected_updated_at=None, **changes) -> Instance:
    """Edit one instance.

    ``expected_updated_at`` turns on the optimistic lock: the write is refused
    with ConcurrencyError when the row changed since the caller read it.
    """
    clean = _normalize_changes(changes)
    instance = repo.require(Instance, instance_id)
    if expected_updated_at is not None and not repo.is_unmodified_since(Instance, instance_id, expected_updated_at):
        raise ConcurrencyError("Instance", instance_id, expected_updated_at)
    with repo.transaction():
        _apply_changes(repo, instance, clean)
    return instance


def set_status(repo: ComplianceRepository, instance_id: int, status: Union[InstanceStatus, str]) -> Instance:
    return update_instance(repo, instance_id, status=status)


def clear_override(repo: ComplianceRepository, instance_id: int) -> Instance:
    return update_instance(repo, instance_id, actual_due_date=None)


def bulk_update_instances(repo: ComplianceRepository, instance_ids: Iterable[int], **changes) -> BulkUpdateResult:
    ids = list(instance_ids)
    if not ids:
        raise ValidationError("At least one instance id is required", field="instance_ids")
    clean = _normalize_changes(changes)
    result = BulkUpdateResult()

    for instance_id in ids:
        instance = repo.get(Instance, instance_id)
        if instance is None:
            result.errors.append(f"Instance {instance_id} not found")
            continue
        try:
            with repo.savepoint():
                _apply_changes(repo, instance, clean)
                repo.session.flush()
        except STORE_ERRORS as exc:
            logger.warning("bulk update of instance %s failed: %s", instance_id, exc)
            result.errors.append(f"Instance {instance_id}: {describe(exc)}")
            continue
        result.updated_count += 1

    try:
        repo.commit()
    except STORE_ERRORS as exc:
        repo.rollback()
        return BulkUpdateResult(errors=result.errors + [f"commit failed: {describe(exc)}"])
    return result
