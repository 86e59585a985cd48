# utils/report.py
import pandas as pd
from sqlmodel import select
from models.instance import Instance
from models.supplier import Supplier
from models.supplier_project import SupplierProjectInstance
from models.task import Task
from models.template import Template

AUDIT_COLUMNS = ["Check", "Instance", "Supplier Project", "Template", "Detail"]

def audit_report_df(report) -> pd.DataFrame:
    rows = []
    for m in report.missing_instances:
        rows.append({
            "Check": "missing",
            "Instance": None,
            "Supplier Project": m.supplier_project_instance_id,
            "Template": m.template_id,
            "Detail": f"supplier {m.supplier_id} / project {m.project_id}",
        })
    for o in report.orphaned_instances:
        rows.append({
            "Check": "orphaned",
            "Instance": o.instance_id,
            "Supplier Project": None,
            "Template": None,
            "Detail": o.reason,
        })
    for d in report.duplicate_instances:
        rows.append({
            "Check": "duplicate",
            "Instance": None,
            "Supplier Project": d.supplier_project_instance_id,
            "Template": d.template_id,
            "Detail": f"{d.count} rows",
        })
    for st_ in report.stale_instances:
        rows.append({
            "Check": "stale",
            "Instance": st_.instance_id,
            "Supplier Project": None,
            "Template": st_.template_id,
            "Detail": f"{st_.instance_due_date} != {st_.template_due_date}",
        })
    return pd.DataFrame(rows, columns=AUDIT_COLUMNS)

def schedule_df_for_project(repo, project_id: int) -> pd.DataFrame:
    """One row per supplier instance with the date the supplier is held to."""
    rows = (
        repo.session.exec(
            select(Instance, Template, Task, Supplier)
            .join(Template, Instance.template_id == Template.id)
            .join(Task, Template.task_id == Task.id)
            .join(SupplierProjectInstance, Instance.supplier_project_instance_id == SupplierProjectInstance.id)
            .join(Supplier, SupplierProjectInstance.supplier_id == Supplier.id)
            .where(Template.project_id == project_id)
            .order_by(Supplier.name, Template.due_date, Task.sequence)
        ).all()
    )
    df = pd.DataFrame([
        {
            "Supplier": sup.name,
            "Task": task.name,
            "Template Due": tpl.due_date,
            "Due": inst.effective_due_date,
            "Override": inst.actual_due_date is not None,
            "Status": inst.status.value,
            "Applied": inst.is_applied,
        }
        for inst, tpl, task, sup in rows
    ], columns=["Supplier", "Task", "Template Due", "Due", "Override", "Status", "Applied"])
    if not df.empty:
        df["Due"] = pd.to_datetime(df["Due"])
        df["Template Due"] = pd.to_datetime(df["Template Due"])
    return df
