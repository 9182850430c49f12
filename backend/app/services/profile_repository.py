"""
Profile Repository - read access to booking-site profiles.

Profiles are owned by the identity provider; only the identity columns and
the phone number are written from here.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.profile_orm import ProfileORM
from backend.app.schemas.identity import ProfileData
from backend.app.services.mapping_store import StoreError

_UPDATABLE_FIELDS = {"phone_number", "stable_hash_id", "vip_customer_data_id", "display_name", "email"}


class ProfileNotFound(Exception):
    def __init__(self, profile_id: str):
        super().__init__(f"Profile {profile_id} not found")
        self.profile_id = profile_id


class ProfileRepository:
    """Repository for profile lookups and identity updates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_orm(self, profile_id: str) -> ProfileORM:
        try:
            orm_obj = await self.session.get(ProfileORM, profile_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load profile {profile_id}: {e}") from e
        if orm_obj is None:
            raise ProfileNotFound(profile_id)
        return orm_obj

    async def get_profile(self, profile_id: str) -> ProfileData:
        return ProfileData.model_validate(await self._get_orm(profile_id))

    async def update_profile(self, profile_id: str, **fields) -> ProfileData:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update profile fields: {sorted(unknown)}")

        orm_obj = await self._get_orm(profile_id)
        for key, value in fields.items():
            setattr(orm_obj, key, value)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update profile {profile_id}: {e}") from e
        return ProfileData.model_validate(orm_obj)

    async def list_profile_ids(self, after_id: Optional[str] = None, limit: int = 100) -> List[str]:
        """Profile ids in ascending order, for keyset-paginated batch jobs."""
        query = select(ProfileORM.id).order_by(ProfileORM.id).limit(limit)
        if after_id is not None:
            query = query.where(ProfileORM.id > after_id)
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list profiles: {e}") from e
        return list(result.scalars().all())

    async def list_profiles(self, after_id: Optional[str] = None, limit: int = 500) -> List[ProfileData]:
        query = select(ProfileORM).order_by(ProfileORM.id).limit(limit)
        if after_id is not None:
            query = query.where(ProfileORM.id > after_id)
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list profiles: {e}") from e
        return [ProfileData.model_validate(row) for row in result.scalars().all()]
