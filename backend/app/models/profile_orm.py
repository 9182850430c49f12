"""
ORM model for booking-site profiles.

Profiles are created by the identity provider at sign-up; this service only
reads them and updates the identity columns.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey
from backend.app.core.database import Base


class ProfileORM(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    display_name = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone_number = Column(String(50), nullable=True)
    provider = Column(String(50), nullable=True) # google | line | facebook | guest | admin

    # Identity columns maintained by customer matching
    stable_hash_id = Column(String(100), nullable=True, index=True)
    vip_customer_data_id = Column(String(36), ForeignKey("vip_customer_data.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<Profile {self.id} ({self.display_name or self.name})>"
