"""
Identity matching schemas.

Shared contract between the matching services, the relink job and the API.
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime, date
from pydantic import BaseModel, Field


class ProfileData(BaseModel):
    """The matching-relevant view of a booking-site profile."""
    id: str
    display_name: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    stable_hash_id: Optional[str] = None
    vip_customer_data_id: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def match_name(self) -> str:
        return self.display_name or self.name or ""

    def has_matchable_data(self) -> bool:
        return any([self.phone_number, self.email, self.name, self.display_name])


class ExternalCustomer(BaseModel):
    """A CRM customer. Only the typed fields are used for matching."""
    id: str
    name: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    stable_hash_id: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)


class CrmPackageInfo(BaseModel):
    crm_package_id: str
    stable_hash_id: str
    customer_name: Optional[str] = None
    package_type_name: str
    first_use_date: Optional[date] = None
    expiration_date: date
    remaining_hours: Optional[float] = None

    class Config:
        from_attributes = True


class MatchScore(BaseModel):
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)


class MatchCandidate(MatchScore):
    customer: ExternalCustomer


class ProfileCandidate(MatchScore):
    """Best profile for a CRM customer, used by the customer-driven sync."""
    profile: ProfileData


class MappingGeneration(str, Enum):
    V2_LINK = "v2_link"
    V1_LEGACY = "v1_legacy"


class IdentityMapping(BaseModel):
    profile_id: str
    external_customer_id: Optional[str] = None
    stable_hash_id: Optional[str] = None
    is_matched: bool = False
    match_method: Optional[str] = None
    match_confidence: float = Field(0.0, ge=0.0, le=1.0)
    match_reasons: List[str] = Field(default_factory=list)
    generation: MappingGeneration = MappingGeneration.V1_LEGACY
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IdentityMappingUpsert(BaseModel):
    """Write model for a (profile, CRM customer) candidate row."""
    profile_id: str
    external_customer_id: str
    stable_hash_id: Optional[str] = None
    is_matched: bool = False
    match_method: Optional[str] = None
    match_confidence: float = Field(0.0, ge=0.0, le=1.0)
    match_reasons: List[str] = Field(default_factory=list)
    customer_snapshot: Optional[Dict[str, Any]] = None


class MatchResult(BaseModel):
    matched: bool
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    crm_customer_id: Optional[str] = None
    stable_hash_id: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    match_method: Optional[str] = None
    is_new_match: bool = False
    source: str = "computed" # computed | cache

    @classmethod
    def from_mapping(cls, mapping: IdentityMapping) -> "MatchResult":
        return cls(
            matched=mapping.is_matched,
            confidence=mapping.match_confidence,
            crm_customer_id=mapping.external_customer_id,
            stable_hash_id=mapping.stable_hash_id,
            reasons=mapping.match_reasons,
            match_method=mapping.match_method,
            source="cache",
        )


class RelinkReport(BaseModel):
    total_scanned: int = 0
    already_valid: int = 0
    fixed: int = 0
    unmatched: int = 0
    no_matchable_data: int = 0
    would_fix: int = 0
    failed: List[Dict[str, str]] = Field(default_factory=list)
    last_profile_id: Optional[str] = None
    confidence_distribution: Dict[str, int] = Field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )


class CrmSyncReport(BaseModel):
    total_crm_customers: int = 0
    potential_matches: int = 0
    high_confidence_matches: int = 0
    linked: int = 0
    skipped_conflicts: int = 0
