"""
Integration tests for CRM package sync.
"""
from sqlalchemy import select

from backend.app.models import CrmPackageORM
from backend.app.services.customer_matching import CustomerMatchingService
from backend.app.services.package_sync import PackageSyncService
from tests.data.crm_fixtures import make_customer, make_package


async def _package_ids(session, stable_hash_id: str):
    result = await session.execute(
        select(CrmPackageORM.crm_package_id).where(CrmPackageORM.stable_hash_id == stable_hash_id)
    )
    return sorted(result.scalars().all())


async def test_unlinked_profile_syncs_nothing(db_session, crm_source, make_profile):
    profile_id = await make_profile(display_name="Somchai Jaidee")

    assert await PackageSyncService(db_session, crm_source).sync_packages_for_profile(profile_id) == 0


async def test_sync_replaces_local_copy(db_session, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee", phone="0812345678"))
    crm_source.add_package(make_package("pkg-1", "hash-c1"))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")
    await CustomerMatchingService(db_session, crm_source).match_profile(profile_id)
    assert await _package_ids(db_session, "hash-c1") == ["pkg-1"]

    # pkg-1 used up and removed in the CRM, pkg-2 bought
    crm_source.replace_packages("hash-c1", [make_package("pkg-2", "hash-c1", package_type_name="Silver 5H")])
    count = await PackageSyncService(db_session, crm_source).sync_packages_for_profile(profile_id)

    assert count == 1
    assert await _package_ids(db_session, "hash-c1") == ["pkg-2"]


async def test_read_cached_packages(db_session, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee", phone="0812345678"))
    crm_source.add_package(make_package("pkg-b", "hash-c1", package_type_name="Silver 5H"))
    crm_source.add_package(make_package("pkg-a", "hash-c1"))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")
    service = PackageSyncService(db_session, crm_source)
    assert await service.get_packages_for_profile(profile_id) == []

    await CustomerMatchingService(db_session, crm_source).match_profile(profile_id)
    # Later CRM changes are not visible until the next sync
    crm_source.replace_packages("hash-c1", [])
    packages = await service.get_packages_for_profile(profile_id)

    assert [p.crm_package_id for p in packages] == ["pkg-a", "pkg-b"]
    assert packages[1].package_type_name == "Silver 5H"
    assert packages[0].remaining_hours == 7.5
