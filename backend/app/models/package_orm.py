"""
Local copy of a linked customer's CRM packages, refreshed by package sync.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Date, DateTime, Float, String
from backend.app.core.database import Base


class CrmPackageORM(Base):
    __tablename__ = "crm_packages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    crm_package_id = Column(String(100), nullable=False, unique=True)
    stable_hash_id = Column(String(100), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    package_type_name = Column(String(255), nullable=False)
    first_use_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=False)
    remaining_hours = Column(Float, nullable=True)
    synced_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
