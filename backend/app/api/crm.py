"""
CRM API Router.

Mapping inspection, forced re-matching and package sync. Customers act on
their own profile; operators with crm:admin may act on any profile, review
recorded candidates, set mappings by hand and run the CRM-side sync.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Security
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.vip import get_status_cache
from backend.app.core.database import get_db
from backend.app.core.security import (
    CRM_ADMIN, VIP_READ, VIP_WRITE,
    User, ensure_profile_access, get_current_user,
)
from backend.app.schemas.identity import CrmSyncReport, IdentityMapping, MatchResult
from backend.app.schemas.vip import (
    CrmSyncRequest,
    ManualMappingRequest,
    MatchRequest,
    PackageListResponse,
    PackageSyncResponse,
)
from backend.app.services.crm_adapter import CrmCustomerSource, get_crm_source
from backend.app.services.customer_matching import CrmCustomerNotFound, CustomerMatchingService
from backend.app.services.mapping_store import MappingStore
from backend.app.services.package_sync import PackageSyncService
from backend.app.services.vip_status import StatusCache

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/mapping", response_model=Optional[IdentityMapping])
async def get_mapping(
    profile_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    current_user: User = Security(get_current_user, scopes=[VIP_READ]),
):
    """Authoritative mapping of a profile (the caller's by default), or null."""
    profile_id = profile_id or current_user.profile_id
    ensure_profile_access(current_user, profile_id)
    return await MappingStore(db, crm_source).get_authoritative_mapping(profile_id)


@router.post("/match", response_model=Optional[MatchResult])
async def match_profile(
    payload: MatchRequest,
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    cache: StatusCache = Depends(get_status_cache),
    current_user: User = Security(get_current_user, scopes=[VIP_WRITE]),
):
    """Re-run matching for a profile, ignoring any stored mapping."""
    ensure_profile_access(current_user, payload.profile_id)
    matcher = CustomerMatchingService(db, crm_source, status_cache=cache)
    return await matcher.match_profile(payload.profile_id, force_refresh=True)


@router.get("/packages", response_model=PackageListResponse)
async def get_packages(
    profile_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    current_user: User = Security(get_current_user, scopes=[VIP_READ]),
):
    """Locally synced packages of a profile's linked customer."""
    profile_id = profile_id or current_user.profile_id
    ensure_profile_access(current_user, profile_id)
    packages = await PackageSyncService(db, crm_source).get_packages_for_profile(profile_id)
    return PackageListResponse(profile_id=profile_id, packages=packages)


@router.post("/sync-packages", response_model=PackageSyncResponse)
async def sync_packages(
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    current_user: User = Security(get_current_user, scopes=[VIP_WRITE]),
):
    service = PackageSyncService(db, crm_source)
    count = await service.sync_packages_for_profile(current_user.profile_id)
    packages = await service.get_packages_for_profile(current_user.profile_id)
    return PackageSyncResponse(profile_id=current_user.profile_id, packages_synced=count, packages=packages)


@router.get("/admin/mappings", response_model=List[IdentityMapping])
async def list_mappings(
    profile_id: str = Query(...),
    crm_customer_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    current_user: User = Security(get_current_user, scopes=[CRM_ADMIN]),
):
    """Every recorded candidate of a profile, best first, for manual review."""
    store = MappingStore(db, crm_source)
    if crm_customer_id:
        mapping = await store.get_mapping(profile_id, crm_customer_id)
        return [mapping] if mapping is not None else []
    return await store.list_mappings(profile_id)


@router.post("/admin/mapping", response_model=IdentityMapping)
async def set_manual_mapping(
    payload: ManualMappingRequest,
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    cache: StatusCache = Depends(get_status_cache),
    current_user: User = Security(get_current_user, scopes=[CRM_ADMIN]),
):
    """Link or unlink a profile and a CRM customer by hand."""
    matcher = CustomerMatchingService(db, crm_source, status_cache=cache)
    try:
        mapping = await matcher.set_manual_mapping(
            payload.profile_id,
            payload.crm_customer_id,
            is_matched=payload.is_matched,
            actor=current_user.profile_id,
        )
    except CrmCustomerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    if mapping is None:
        raise HTTPException(
            status_code=404,
            detail=f"No mapping between {payload.profile_id} and {payload.crm_customer_id}",
        )
    return mapping


@router.post("/admin/sync", response_model=CrmSyncReport)
async def sync_crm_customers(
    payload: Optional[CrmSyncRequest] = None,
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    cache: StatusCache = Depends(get_status_cache),
    current_user: User = Security(get_current_user, scopes=[CRM_ADMIN]),
):
    """Match CRM customers (all, or those updated since a timestamp) to profiles."""
    updated_since = payload.updated_since if payload else None
    logger.info(f"CRM sync requested by {current_user.profile_id} (updated_since={updated_since})")
    matcher = CustomerMatchingService(db, crm_source, status_cache=cache)
    return await matcher.sync_crm_customers(updated_since=updated_since)
