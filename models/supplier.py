# models/supplier.py
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime

from utils.dates import utcnow

if TYPE_CHECKING:
    from models.supplier_project import SupplierProjectInstance

class Supplier(SQLModel, table=True):
    __tablename__ = "suppliers"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    supplier_number: Optional[str] = Field(default=None, unique=True)
    location: Optional[str] = None
    contact_info: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    project_instances: List["SupplierProjectInstance"] = Relationship(
        back_populates="supplier",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )
