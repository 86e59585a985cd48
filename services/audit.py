"""
Consistency audit.

Read-only sweep over every supplier project and template, so its cost grows
with suppliers x templates. Run it from a maintenance job, not inside a user
request. It reports and never repairs; ``services.instances.cleanup_orphaned_instances``
is the corrective step for orphans.
"""

import logging

from services.repository import ComplianceRepository
from services.results import (
    AuditReport, DuplicateInstance, MissingInstance, OrphanedInstance, StaleInstance,
)

logger = logging.getLogger(__name__)

MISSING_SUPPLIER_PROJECT = "Missing supplier project"
MISSING_TEMPLATE = "Missing task template"


def find_missing_instances(repo: ComplianceRepository):
    return [
        MissingInstance(supplier_id=supplier_id, project_id=project_id,
                        supplier_project_instance_id=spi_id, template_id=template_id)
        for supplier_id, project_id, spi_id, template_id in repo.missing_instance_rows()
    ]


def find_orphaned_instances(repo: ComplianceRepository):
    orphans = [OrphanedInstance(instance_id=i, reason=MISSING_SUPPLIER_PROJECT)
               for i in repo.instances_missing_supplier_project()]
    orphans += [OrphanedInstance(instance_id=i, reason=MISSING_TEMPLATE)
                for i in repo.instances_missing_template()]
    orphans.sort(key=lambda o: (o.instance_id, o.reason))
    return orphans


def find_duplicate_instances(repo: ComplianceRepository):
    # the unique constraint should make this empty; anything here means it is not enforced
    return [
        DuplicateInstance(supplier_project_instance_id=spi_id, template_id=template_id, count=count)
        for spi_id, template_id, count in repo.duplicate_instance_rows()
    ]


def find_stale_instances(repo: ComplianceRepository):
    return [
        StaleInstance(instance_id=instance_id, template_id=template_id,
                      instance_due_date=instance_due, template_due_date=template_due)
        for instance_id, template_id, instance_due, template_due in repo.stale_instance_rows()
    ]


def audit_consistency(repo: ComplianceRepository) -> AuditReport:
    report = AuditReport(
        missing_instances=find_missing_instances(repo),
        orphaned_instances=find_orphaned_instances(repo),
        duplicate_instances=find_duplicate_instances(repo),
        stale_instances=find_stale_instances(repo),
    )
    if report.duplicate_instances:
        logger.error("%d duplicate instance groups found, unique constraint is not holding",
                     len(report.duplicate_instances))
    logger.info("audit: missing=%d orphaned=%d duplicate=%d stale=%d",
                len(report.missing_instances), len(report.orphaned_instances),
                len(report.duplicate_instances), len(report.stale_instances))
    return report
