"""
Mapping Store - persistence of profile <-> CRM customer identity mappings.

Reads and writes both storage generations:
- crm_profile_links (+ vip_customer_data): authoritative when its stable_hash_id
  still resolves in the CRM.
- crm_customer_mapping: legacy fallback, and the per-candidate history used for
  manual review.

Mappings are re-validated against the CRM on every authoritative read; CRM
re-imports can delete customers that old rows still point at.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.identity_mapping_orm import (
    CrmCustomerMappingORM,
    CrmProfileLinkORM,
    VipCustomerDataORM,
)
from backend.app.models.profile_orm import ProfileORM
from backend.app.schemas.identity import IdentityMapping, IdentityMappingUpsert, MappingGeneration

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Persistence failure (connectivity, constraint violation)."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MappingStore:
    """Repository for identity mappings across both storage generations."""

    def __init__(self, session: AsyncSession, crm_source):
        self.session = session
        self.crm_source = crm_source

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    async def _scalar(self, query):
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise StoreError(f"Mapping query failed: {e}") from e
        return result.scalars().first()

    async def _scalars(self, query) -> list:
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise StoreError(f"Mapping query failed: {e}") from e
        return list(result.scalars().all())

    async def _flush(self, operation: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Mapping store {operation} failed: {e}")
            raise StoreError(f"Mapping store {operation} failed: {e}") from e

    async def _get_row(self, profile_id: str, crm_customer_id: str) -> Optional[CrmCustomerMappingORM]:
        return await self._scalar(
            select(CrmCustomerMappingORM).where(
                CrmCustomerMappingORM.profile_id == profile_id,
                CrmCustomerMappingORM.crm_customer_id == crm_customer_id,
            )
        )

    async def _get_link(self, profile_id: str) -> Optional[CrmProfileLinkORM]:
        return await self._scalar(
            select(CrmProfileLinkORM).where(CrmProfileLinkORM.profile_id == profile_id)
        )

    @staticmethod
    def _mapping_from_row(row: CrmCustomerMappingORM) -> IdentityMapping:
        return IdentityMapping(
            profile_id=row.profile_id,
            external_customer_id=row.crm_customer_id,
            stable_hash_id=row.stable_hash_id,
            is_matched=bool(row.is_matched),
            match_method=row.match_method,
            match_confidence=row.match_confidence or 0.0,
            match_reasons=list(row.match_reasons or []),
            generation=MappingGeneration.V1_LEGACY,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _mapping_from_link(
        link: CrmProfileLinkORM,
        row: Optional[CrmCustomerMappingORM] = None,
        customer_id: Optional[str] = None,
    ) -> IdentityMapping:
        return IdentityMapping(
            profile_id=link.profile_id,
            external_customer_id=customer_id or link.crm_customer_id,
            stable_hash_id=link.stable_hash_id,
            is_matched=True,
            match_method=link.match_method,
            match_confidence=link.match_confidence or 0.0,
            match_reasons=list(row.match_reasons or []) if row is not None else [],
            generation=MappingGeneration.V2_LINK,
            created_at=link.linked_at,
            updated_at=link.updated_at,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def customer_exists(self, mapping: IdentityMapping) -> bool:
        """Whether the CRM customer a mapping points at can still be resolved."""
        if mapping.stable_hash_id:
            return await self.crm_source.get_customer_by_stable_hash_id(mapping.stable_hash_id) is not None
        if mapping.external_customer_id:
            return await self.crm_source.get_customer_by_id(mapping.external_customer_id) is not None
        return False

    async def get_authoritative_mapping(self, profile_id: str) -> Optional[IdentityMapping]:
        """
        Current-generation link if it still resolves, else the matched legacy
        row if it still resolves, else None.
        """
        link = await self._get_link(profile_id)
        if link is not None:
            customer = await self.crm_source.get_customer_by_stable_hash_id(link.stable_hash_id)
            if customer is not None:
                row = await self._get_row(profile_id, customer.id)
                return self._mapping_from_link(link, row, customer_id=customer.id)
            logger.warning(
                f"Profile {profile_id} links to stable_hash_id {link.stable_hash_id} which no longer exists in the CRM"
            )

        row = await self._scalar(
            select(CrmCustomerMappingORM)
            .where(
                CrmCustomerMappingORM.profile_id == profile_id,
                CrmCustomerMappingORM.is_matched.is_(True),
            )
            .order_by(desc(CrmCustomerMappingORM.updated_at))
        )
        if row is not None:
            mapping = self._mapping_from_row(row)
            if await self.customer_exists(mapping):
                return mapping
            logger.warning(
                f"Legacy mapping {profile_id} -> {row.crm_customer_id} points at a missing CRM customer"
            )
        return None

    async def get_latest_mapping(self, profile_id: str) -> Optional[IdentityMapping]:
        """Most relevant mapping of either generation, without CRM validation."""
        link = await self._get_link(profile_id)
        if link is not None:
            row = await self._get_row(profile_id, link.crm_customer_id) if link.crm_customer_id else None
            return self._mapping_from_link(link, row)

        row = await self._scalar(
            select(CrmCustomerMappingORM)
            .where(CrmCustomerMappingORM.profile_id == profile_id)
            .order_by(desc(CrmCustomerMappingORM.is_matched), desc(CrmCustomerMappingORM.updated_at))
        )
        return self._mapping_from_row(row) if row is not None else None

    async def get_mapping(self, profile_id: str, crm_customer_id: str) -> Optional[IdentityMapping]:
        row = await self._get_row(profile_id, crm_customer_id)
        return self._mapping_from_row(row) if row is not None else None

    async def list_mappings(self, profile_id: str) -> List[IdentityMapping]:
        rows = await self._scalars(
            select(CrmCustomerMappingORM)
            .where(CrmCustomerMappingORM.profile_id == profile_id)
            .order_by(desc(CrmCustomerMappingORM.match_confidence))
        )
        return [self._mapping_from_row(row) for row in rows]

    async def find_linked_profiles(self, stable_hash_id: str) -> List[str]:
        """Profiles whose current-generation link points at this customer."""
        return await self._scalars(
            select(CrmProfileLinkORM.profile_id).where(CrmProfileLinkORM.stable_hash_id == stable_hash_id)
        )

    async def has_local_vip_data(self, profile_id: str) -> bool:
        vip_data_id = await self._scalar(
            select(ProfileORM.vip_customer_data_id).where(ProfileORM.id == profile_id)
        )
        return vip_data_id is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, mapping: IdentityMappingUpsert) -> IdentityMapping:
        """Insert or update the row for (profile_id, external_customer_id)."""
        row = await self._get_row(mapping.profile_id, mapping.external_customer_id)
        if row is None:
            row = CrmCustomerMappingORM(
                id=str(uuid.uuid4()),
                profile_id=mapping.profile_id,
                crm_customer_id=mapping.external_customer_id,
                created_at=_utcnow(),
            )
            self.session.add(row)

        row.stable_hash_id = mapping.stable_hash_id
        row.is_matched = mapping.is_matched
        row.match_method = mapping.match_method
        row.match_confidence = mapping.match_confidence
        row.match_reasons = list(mapping.match_reasons)
        if mapping.customer_snapshot is not None:
            row.crm_customer_data = mapping.customer_snapshot
        row.updated_at = _utcnow()

        await self._flush("upsert")
        return self._mapping_from_row(row)

    async def set_matched(
        self,
        profile_id: str,
        external_customer_id: str,
        stable_hash_id: Optional[str],
    ) -> IdentityMapping:
        """
        Mark a recorded candidate as the profile's authoritative mapping.

        Does not demote other matched rows; see clear_matched.
        """
        row = await self._get_row(profile_id, external_customer_id)
        if row is None:
            raise StoreError(f"No mapping recorded for {profile_id} -> {external_customer_id}")

        row.is_matched = True
        row.updated_at = _utcnow()
        if stable_hash_id:
            row.stable_hash_id = stable_hash_id

        link = await self._get_link(profile_id)
        if not row.stable_hash_id:
            # No durable key to link on; the legacy row becomes the only record
            # and a link to a previous customer must not outrank it
            if link is not None:
                await self.session.delete(link)
            await self._flush("set_matched")
            return self._mapping_from_row(row)

        if link is None:
            link = CrmProfileLinkORM(id=str(uuid.uuid4()), profile_id=profile_id, linked_at=_utcnow())
            self.session.add(link)
        elif link.stable_hash_id != row.stable_hash_id:
            link.linked_at = _utcnow()
        link.stable_hash_id = row.stable_hash_id
        link.crm_customer_id = external_customer_id
        link.match_confidence = row.match_confidence
        link.match_method = row.match_method
        link.updated_at = _utcnow()

        await self._ensure_vip_customer_data(profile_id, row.stable_hash_id)
        await self._flush("set_matched")
        return self._mapping_from_link(link, row)

    async def clear_matched(self, profile_id: str, keep_customer_id: Optional[str] = None) -> int:
        """Demote every matched legacy row of the profile except keep_customer_id."""
        query = select(CrmCustomerMappingORM).where(
            CrmCustomerMappingORM.profile_id == profile_id,
            CrmCustomerMappingORM.is_matched.is_(True),
        )
        if keep_customer_id is not None:
            query = query.where(CrmCustomerMappingORM.crm_customer_id != keep_customer_id)

        rows = await self._scalars(query)
        for row in rows:
            row.is_matched = False
            row.updated_at = _utcnow()
        if rows:
            await self._flush("clear_matched")
        return len(rows)

    async def unlink(self, profile_id: str, crm_customer_id: str) -> Optional[IdentityMapping]:
        """Demote one pair and drop the current-generation link if it points at it."""
        row = await self._get_row(profile_id, crm_customer_id)
        if row is None:
            return None
        row.is_matched = False
        row.updated_at = _utcnow()

        link = await self._get_link(profile_id)
        if link is not None and (
            link.crm_customer_id == crm_customer_id
            or (row.stable_hash_id and link.stable_hash_id == row.stable_hash_id)
        ):
            await self.session.delete(link)

        await self._flush("unlink")
        return self._mapping_from_row(row)

    async def _ensure_vip_customer_data(self, profile_id: str, stable_hash_id: str) -> str:
        """Point the profile at the VIP record for stable_hash_id, creating it if needed."""
        profile = await self.session.get(ProfileORM, profile_id)
        vip_data = await self._scalar(
            select(VipCustomerDataORM).where(VipCustomerDataORM.stable_hash_id == stable_hash_id)
        )

        if vip_data is None and profile is not None and profile.vip_customer_data_id:
            placeholder = await self.session.get(VipCustomerDataORM, profile.vip_customer_data_id)
            if placeholder is not None and placeholder.stable_hash_id is None:
                # Adopt the profile's unlinked VIP record
                placeholder.stable_hash_id = stable_hash_id
                vip_data = placeholder

        if vip_data is None:
            vip_data = VipCustomerDataORM(
                id=str(uuid.uuid4()),
                stable_hash_id=stable_hash_id,
                vip_display_name=profile.display_name if profile else None,
                vip_email=profile.email if profile else None,
                vip_phone_number=profile.phone_number if profile else None,
            )
            self.session.add(vip_data)
            await self._flush("create_vip_customer_data")

        if profile is not None:
            profile.vip_customer_data_id = vip_data.id
        return vip_data.id
