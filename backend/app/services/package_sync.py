"""
Package Sync - refreshes and reads the local copy of a linked customer's CRM
packages.
"""
import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.package_orm import CrmPackageORM
from backend.app.schemas.identity import CrmPackageInfo
from backend.app.services.mapping_store import MappingStore, StoreError

logger = logging.getLogger(__name__)


class PackageSyncService:
    def __init__(self, session: AsyncSession, crm_source):
        self.session = session
        self.crm_source = crm_source

    async def sync_packages_for_profile(self, profile_id: str) -> int:
        """Replace the profile's cached packages. Returns the number written."""
        mapping = await MappingStore(self.session, self.crm_source).get_authoritative_mapping(profile_id)
        if mapping is None or not mapping.stable_hash_id:
            logger.info(f"Package sync skipped for {profile_id}: no linked CRM customer")
            return 0
        return await self.sync_packages_for_customer(mapping.stable_hash_id)

    async def sync_packages_for_customer(self, stable_hash_id: str) -> int:
        packages = await self.crm_source.list_packages(stable_hash_id)
        package_ids = [p.crm_package_id for p in packages]
        now = datetime.now(timezone.utc)

        try:
            await self.session.execute(
                delete(CrmPackageORM).where(
                    or_(
                        CrmPackageORM.stable_hash_id == stable_hash_id,
                        CrmPackageORM.crm_package_id.in_(package_ids),
                    )
                )
            )
            for package in packages:
                self.session.add(CrmPackageORM(**package.model_dump(), synced_at=now))
            await self.session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Package sync failed for {stable_hash_id}: {e}") from e

        logger.info(
            f"Synced {len(packages)} packages for {stable_hash_id}",
            extra={"extra_data": {"stable_hash_id": stable_hash_id, "packages": len(packages)}},
        )
        return len(packages)

    async def get_packages_for_profile(self, profile_id: str) -> List[CrmPackageInfo]:
        """Locally cached packages of the profile's linked customer, soonest expiry first."""
        mapping = await MappingStore(self.session, self.crm_source).get_authoritative_mapping(profile_id)
        if mapping is None or not mapping.stable_hash_id:
            return []
        try:
            result = await self.session.execute(
                select(CrmPackageORM)
                .where(CrmPackageORM.stable_hash_id == mapping.stable_hash_id)
                .order_by(CrmPackageORM.expiration_date, CrmPackageORM.crm_package_id)
            )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read packages for {profile_id}: {e}") from e
        return [CrmPackageInfo.model_validate(row) for row in result.scalars().all()]
