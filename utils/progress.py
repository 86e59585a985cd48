# utils/progress.py
from sqlmodel import select, col
from models.instance import Instance, InstanceStatus
from models.supplier_project import SupplierProjectInstance

def compute_supplier_progress(spi: SupplierProjectInstance, session) -> float:
    """Percent of a supplier's applied instances that are completed."""
    insts = session.exec(select(Instance).where(Instance.supplier_project_instance_id == spi.id)).all()
    applied = [i for i in insts if i.is_applied and i.status != InstanceStatus.CANCELLED]
    if not applied:
        return 0.0
    done = sum(1 for i in applied if i.status == InstanceStatus.COMPLETED)
    return float(done * 100.0 / len(applied))

def compute_project_compliance(repo, project_id: int) -> dict:
    """{supplier_id: percent complete} for every active supplier of the project."""
    s = repo.session
    spis = s.exec(
        select(SupplierProjectInstance)
        .where(SupplierProjectInstance.project_id == project_id,
               col(SupplierProjectInstance.status) == "active")
        .order_by(SupplierProjectInstance.supplier_id)
    ).all()
    return {spi.supplier_id: compute_supplier_progress(spi, s) for spi in spis}
