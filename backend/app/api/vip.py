"""
VIP API Router.

Customer-facing endpoints: the caller's VIP status and self-service linking of
the caller's profile to a CRM customer by phone number.
"""
import logging

from fastapi import APIRouter, Depends, Request, Security, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.core.security import VIP_READ, VIP_WRITE, User, get_current_user
from backend.app.schemas.vip import (
    LinkAccountRequest,
    LinkAccountResponse,
    VipStatus,
    VipStatusResponse,
)
from backend.app.services.crm_adapter import CrmCustomerSource, get_crm_source
from backend.app.services.customer_matching import CustomerMatchingService
from backend.app.services.vip_status import StatusCache, VipStatusService

logger = logging.getLogger(__name__)
router = APIRouter()


def get_status_cache(request: Request) -> StatusCache:
    return request.app.state.status_cache


@router.get("/status", response_model=VipStatusResponse)
async def get_vip_status(
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    cache: StatusCache = Depends(get_status_cache),
    current_user: User = Security(get_current_user, scopes=[VIP_READ]),
):
    """VIP status of the calling profile."""
    return await VipStatusService(db, crm_source, cache).get_status(current_user.profile_id)


@router.post("/link-account", response_model=LinkAccountResponse)
async def link_account(
    payload: LinkAccountRequest,
    db: AsyncSession = Depends(get_db),
    crm_source: CrmCustomerSource = Depends(get_crm_source),
    cache: StatusCache = Depends(get_status_cache),
    current_user: User = Security(get_current_user, scopes=[VIP_WRITE]),
):
    """
    Link the caller's profile to a CRM customer using the phone number they
    enter. A customer already linked to another profile is refused (409).
    """
    profile_id = current_user.profile_id
    matcher = CustomerMatchingService(db, crm_source, status_cache=cache)

    current = await matcher.store.get_authoritative_mapping(profile_id)
    if current is not None:
        return LinkAccountResponse(
            message="Account is already linked",
            status=VipStatus.LINKED_MATCHED,
            crm_customer_id=current.external_customer_id,
            stable_hash_id=current.stable_hash_id,
        )

    result = await matcher.match_profile(
        profile_id,
        force_refresh=True,
        phone_number_override=payload.phone_number,
        exclusive=True,
    )
    if result is None or not result.matched:
        logger.info(f"Link-account found no confident match for {profile_id}")
        # Returned rather than raised so the recorded candidate is committed
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": {
                "code": "no_match_found",
                "message": "No customer record matches this phone number",
            }},
        )

    return LinkAccountResponse(
        message="Account linked",
        status=VipStatus.LINKED_MATCHED,
        crm_customer_id=result.crm_customer_id,
        stable_hash_id=result.stable_hash_id,
    )
