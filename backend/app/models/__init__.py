"""Models package."""

from backend.app.models.profile_orm import ProfileORM
from backend.app.models.identity_mapping_orm import (
    CrmCustomerMappingORM,
    CrmProfileLinkORM,
    VipCustomerDataORM,
)
from backend.app.models.crm_orm import CrmCustomerORM, CrmCustomerPackageORM
from backend.app.models.package_orm import CrmPackageORM
from backend.app.models.audit_orm import MatchAuditEntryORM

__all__ = [
    "ProfileORM",
    "CrmCustomerMappingORM",
    "CrmProfileLinkORM",
    "VipCustomerDataORM",
    "CrmCustomerORM",
    "CrmCustomerPackageORM",
    "CrmPackageORM",
    "MatchAuditEntryORM",
]
