"""
Request/response schemas for the VIP and CRM API routers.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from backend.app.schemas.identity import CrmPackageInfo


class VipStatus(str, Enum):
    NOT_LINKED = "not_linked"
    LINKED_MATCHED = "linked_matched"
    LINKED_UNMATCHED = "linked_unmatched"
    VIP_DATA_EXISTS_CRM_UNMATCHED = "vip_data_exists_crm_unmatched"


class VipStatusResponse(BaseModel):
    status: VipStatus
    crm_customer_id: Optional[str] = None
    stable_hash_id: Optional[str] = None


class LinkAccountRequest(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=50)


class LinkAccountResponse(BaseModel):
    success: bool = True
    message: str
    status: VipStatus
    crm_customer_id: Optional[str] = None
    stable_hash_id: Optional[str] = None


class MatchRequest(BaseModel):
    profile_id: str


class ManualMappingRequest(BaseModel):
    profile_id: str
    crm_customer_id: str
    is_matched: bool = True


class PackageListResponse(BaseModel):
    profile_id: str
    packages: List[CrmPackageInfo] = Field(default_factory=list)


class PackageSyncResponse(PackageListResponse):
    packages_synced: int


class CrmSyncRequest(BaseModel):
    updated_since: Optional[datetime] = None
