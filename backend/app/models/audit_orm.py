"""
Audit trail for customer matching decisions.

Written best-effort next to every mapping change so operators can review why
a profile was (or was not) linked.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Float, JSON
from backend.app.core.database import Base


class MatchAuditEntryORM(Base):
    __tablename__ = "crm_match_audit_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    profile_id = Column(String(36), index=True, nullable=False)

    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    action = Column(String(50), nullable=False)  # matched | candidate_recorded | superseded | manual_link | manual_unlink
    actor = Column(String(255), nullable=False)  # "auto", "sync_script", or the admin profile id
    crm_customer_id = Column(String(100), nullable=True)
    match_confidence = Column(Float, nullable=True)
    details = Column(JSON, nullable=True)

    trace_id = Column(String(128), nullable=True)

    def __repr__(self):
        return f"<MatchAuditEntry {self.action} by {self.actor} for {self.profile_id}>"
