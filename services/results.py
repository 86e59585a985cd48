from dataclasses import asdict, dataclass, field
from typing import List, Optional


@dataclass
class BackfillResult:
    created: int = 0
    skipped_duplicate: int = 0
    failed: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return self.failed

    def merge(self, other: "BackfillResult") -> "BackfillResult":
        self.created += other.created
        self.skipped_duplicate += other.skipped_duplicate
        self.failed.extend(other.failed)
        return self

    def as_dict(self) -> dict:
        d = asdict(self)
        d["errors"] = list(self.failed)
        return d


@dataclass
class RemovalResult:
    removed_count: int = 0
    completed_lost_count: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class PropagationResult:
    updated_count: int = 0
    errors: List[str] = field(default_factory=list)
    templates_updated: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class BulkUpdateResult:
    updated_count: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class AttachResult:
    association_id: Optional[int] = None
    templates_created: int = 0
    instances_created: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class MissingInstance:
    supplier_id: int
    project_id: int
    supplier_project_instance_id: int
    template_id: int


@dataclass
class OrphanedInstance:
    instance_id: int
    reason: str


@dataclass
class DuplicateInstance:
    supplier_project_instance_id: int
    template_id: int
    count: int


@dataclass
class StaleInstance:
    instance_id: int
    template_id: int
    instance_due_date: object
    template_due_date: object


@dataclass
class AuditReport:
    missing_instances: List[MissingInstance] = field(default_factory=list)
    orphaned_instances: List[OrphanedInstance] = field(default_factory=list)
    duplicate_instances: List[DuplicateInstance] = field(default_factory=list)
    stale_instances: List[StaleInstance] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (self.missing_instances or self.orphaned_instances
                    or self.duplicate_instances or self.stale_instances)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ImportSummary:
    sections_created: int = 0
    tasks_linked: int = 0
    templates_created: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)
