"""
ORM models for profile <-> CRM customer identity mappings.

Two storage generations coexist:
- crm_customer_mapping (legacy): one row per (profile, CRM customer) candidate,
  with a snapshot of the CRM record and the match metadata.
- crm_profile_links + vip_customer_data (current): one link per profile pointing
  at the customer's stable_hash_id, and the durable local VIP record keyed by it.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, UniqueConstraint
from backend.app.core.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class CrmCustomerMappingORM(Base):
    __tablename__ = "crm_customer_mapping"
    __table_args__ = (
        UniqueConstraint("profile_id", "crm_customer_id", name="uq_crm_mapping_profile_customer"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    profile_id = Column(String(36), nullable=False, index=True)
    crm_customer_id = Column(String(100), nullable=False)
    crm_customer_data = Column(JSON, nullable=True) # Snapshot of the CRM record at match time
    stable_hash_id = Column(String(100), nullable=True, index=True)

    is_matched = Column(Boolean, nullable=False, default=False)
    match_method = Column(String(100), nullable=True)
    match_confidence = Column(Float, nullable=False, default=0.0) # 0.0 to 1.0
    match_reasons = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<CrmCustomerMapping {self.profile_id} -> {self.crm_customer_id} matched={self.is_matched}>"


class CrmProfileLinkORM(Base):
    __tablename__ = "crm_profile_links"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    profile_id = Column(String(36), nullable=False, unique=True)
    stable_hash_id = Column(String(100), nullable=False, index=True)
    crm_customer_id = Column(String(100), nullable=True) # Informational; the hash is the join key
    match_confidence = Column(Float, nullable=False, default=0.0)
    match_method = Column(String(100), nullable=True)

    linked_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class VipCustomerDataORM(Base):
    __tablename__ = "vip_customer_data"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Null for placeholder records of profiles not (yet) linked to the CRM
    stable_hash_id = Column(String(100), nullable=True, unique=True)
    vip_display_name = Column(String(255), nullable=True)
    vip_email = Column(String(255), nullable=True)
    vip_phone_number = Column(String(50), nullable=True)
    vip_marketing_preference = Column(Boolean, nullable=False, default=True)
    vip_tier_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
