"""
ORM models for the CRM database (read-only from this service).
"""
from sqlalchemy import Column, Date, DateTime, Float, String
from backend.app.core.database import CrmBase


class CrmCustomerORM(CrmBase):
    __tablename__ = "crm_customers"

    id = Column(String(100), primary_key=True) # CRM primary key; may change on re-import
    customer_name = Column(String(255), nullable=True)
    contact_number = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    stable_hash_id = Column(String(100), nullable=True, unique=True, index=True)

    store = Column(String(100), nullable=True)
    address = Column(String(500), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    date_joined = Column(Date, nullable=True)
    available_credit = Column(Float, nullable=True)
    available_point = Column(Float, nullable=True)
    source = Column(String(100), nullable=True)
    update_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)


class CrmCustomerPackageORM(CrmBase):
    __tablename__ = "crm_customer_packages"

    crm_package_id = Column(String(100), primary_key=True)
    stable_hash_id = Column(String(100), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    package_type_name = Column(String(255), nullable=False)
    first_use_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=False)
    remaining_hours = Column(Float, nullable=True)
