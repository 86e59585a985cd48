# models/__init__.py
from .project import Project
from .supplier import Supplier
from .task_type import TaskType, Section
from .task import Task
from .project_task_type import ProjectTaskType
from .template import Template, Anchor
from .supplier_project import SupplierProjectInstance
from .instance import Instance, InstanceStatus
