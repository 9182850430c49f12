"""
VIP status projection.

Turns persisted mapping state into the VipStatus the booking UI shows. The
stored is_matched flag is never trusted on its own: the CRM customer is
re-resolved on every projection.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.schemas.identity import IdentityMapping
from backend.app.schemas.vip import VipStatus, VipStatusResponse
from backend.app.services.mapping_store import MappingStore

logger = logging.getLogger(__name__)


def project_status(
    mapping: Optional[IdentityMapping],
    external_customer_exists: bool,
    has_local_vip_data: bool = False,
) -> VipStatus:
    if mapping is None:
        return VipStatus.NOT_LINKED
    if mapping.is_matched and external_customer_exists:
        return VipStatus.LINKED_MATCHED
    if has_local_vip_data:
        return VipStatus.VIP_DATA_EXISTS_CRM_UNMATCHED
    return VipStatus.LINKED_UNMATCHED


@dataclass
class CachedStatus:
    value: VipStatusResponse
    expires_at: float


class StatusCache:
    """Per-profile status cache with explicit expiry and invalidation."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CachedStatus] = {}

    def get(self, profile_id: str) -> Optional[VipStatusResponse]:
        entry = self._entries.get(profile_id)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[profile_id]
            return None
        return entry.value

    def put(self, profile_id: str, value: VipStatusResponse) -> None:
        if self.ttl_seconds <= 0:
            return
        now = self._clock()
        self._prune(now)
        self._entries[profile_id] = CachedStatus(value=value, expires_at=now + self.ttl_seconds)

    def _prune(self, now: float) -> None:
        expired = [pid for pid, entry in self._entries.items() if now >= entry.expires_at]
        for pid in expired:
            del self._entries[pid]

    def invalidate(self, profile_id: str) -> None:
        self._entries.pop(profile_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class VipStatusService:
    def __init__(self, session: AsyncSession, crm_source, cache: Optional[StatusCache] = None):
        self.store = MappingStore(session, crm_source)
        self.cache = cache

    async def get_status(self, profile_id: str) -> VipStatusResponse:
        if self.cache is not None:
            cached = self.cache.get(profile_id)
            if cached is not None:
                return cached

        # The authoritative read already validated the customer against the CRM
        mapping = await self.store.get_authoritative_mapping(profile_id)
        exists = mapping is not None
        if mapping is None:
            mapping = await self.store.get_latest_mapping(profile_id)
        has_vip_data = await self.store.has_local_vip_data(profile_id)

        status = project_status(mapping, exists, has_vip_data)
        response = VipStatusResponse(
            status=status,
            crm_customer_id=mapping.external_customer_id if mapping else None,
            stable_hash_id=mapping.stable_hash_id if mapping else None,
        )
        logger.debug(f"VIP status for {profile_id}: {status.value}")

        if self.cache is not None:
            self.cache.put(profile_id, response)
        return response
