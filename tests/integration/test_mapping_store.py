"""
Integration tests for the mapping store across both storage generations.
"""
import pytest
from sqlalchemy import func, select

from backend.app.models import CrmCustomerMappingORM, CrmProfileLinkORM, ProfileORM, VipCustomerDataORM
from backend.app.schemas.identity import IdentityMappingUpsert, MappingGeneration
from backend.app.services.mapping_store import MappingStore, StoreError
from tests.data.crm_fixtures import make_customer


def _upsert(profile_id: str, customer_id: str, is_matched: bool = False, confidence: float = 0.5, **kw):
    return IdentityMappingUpsert(
        profile_id=profile_id,
        external_customer_id=customer_id,
        stable_hash_id=kw.pop("stable_hash_id", f"hash-{customer_id}"),
        is_matched=is_matched,
        match_method=kw.pop("match_method", "auto_email"),
        match_confidence=confidence,
        match_reasons=kw.pop("match_reasons", ["exact_email_match"]),
        **kw,
    )


async def _row_count(session, profile_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(CrmCustomerMappingORM).where(CrmCustomerMappingORM.profile_id == profile_id)
    )
    return result.scalar_one()


@pytest.fixture
def store(db_session, crm_source):
    return MappingStore(db_session, crm_source)


async def test_upsert_is_idempotent(db_session, store, make_profile):
    profile_id = await make_profile(display_name="Somchai Jaidee")

    await store.upsert(_upsert(profile_id, "c1", confidence=0.5))
    mapping = await store.upsert(
        _upsert(profile_id, "c1", confidence=0.7, match_reasons=["partial_phone_match"], customer_snapshot={"id": "c1"})
    )

    assert await _row_count(db_session, profile_id) == 1
    assert mapping.match_confidence == pytest.approx(0.7)
    assert mapping.match_reasons == ["partial_phone_match"]
    assert mapping.generation == MappingGeneration.V1_LEGACY


async def test_set_matched_creates_link_and_vip_data(db_session, store, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee"))
    profile_id = await make_profile(display_name="Somchai Jaidee", email="s@example.com")
    await store.upsert(_upsert(profile_id, "c1", is_matched=True, confidence=1.0))

    mapping = await store.set_matched(profile_id, "c1", "hash-c1")

    assert mapping.generation == MappingGeneration.V2_LINK
    assert mapping.stable_hash_id == "hash-c1"

    vip_data = (await db_session.execute(
        select(VipCustomerDataORM).where(VipCustomerDataORM.stable_hash_id == "hash-c1")
    )).scalar_one()
    assert vip_data.vip_email == "s@example.com"
    profile = await db_session.get(ProfileORM, profile_id)
    assert profile.vip_customer_data_id == vip_data.id
    assert await store.has_local_vip_data(profile_id)

    authoritative = await store.get_authoritative_mapping(profile_id)
    assert authoritative.generation == MappingGeneration.V2_LINK
    assert authoritative.external_customer_id == "c1"
    assert authoritative.match_reasons == ["exact_email_match"]


async def test_set_matched_adopts_placeholder_vip_data(db_session, store, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1"))
    profile_id = await make_profile(display_name="Guest", with_vip_placeholder=True)
    placeholder_id = (await db_session.get(ProfileORM, profile_id)).vip_customer_data_id
    await store.upsert(_upsert(profile_id, "c1", is_matched=True))

    await store.set_matched(profile_id, "c1", "hash-c1")

    placeholder = await db_session.get(VipCustomerDataORM, placeholder_id)
    assert placeholder.stable_hash_id == "hash-c1"
    assert (await db_session.get(ProfileORM, profile_id)).vip_customer_data_id == placeholder_id


async def test_set_matched_requires_recorded_candidate(store, make_profile):
    profile_id = await make_profile(display_name="Nobody")
    with pytest.raises(StoreError):
        await store.set_matched(profile_id, "missing", "hash-missing")


async def test_authoritative_falls_back_to_legacy_row(db_session, store, crm_source, make_profile):
    """A link to a hash the CRM no longer knows gives way to a valid legacy row."""
    crm_source.add_customer(make_customer("c2"))
    profile_id = await make_profile(display_name="Somchai")
    db_session.add(CrmProfileLinkORM(profile_id=profile_id, stable_hash_id="hash-gone", crm_customer_id="gone"))
    await store.upsert(_upsert(profile_id, "c2", is_matched=True, confidence=0.9))

    mapping = await store.get_authoritative_mapping(profile_id)

    assert mapping.generation == MappingGeneration.V1_LEGACY
    assert mapping.external_customer_id == "c2"


async def test_authoritative_follows_hash_when_crm_id_changes(db_session, store, crm_source, make_profile):
    """CRM re-imports change customer ids but keep the stable hash."""
    profile_id = await make_profile(display_name="Somchai")
    db_session.add(CrmProfileLinkORM(profile_id=profile_id, stable_hash_id="hash-x", crm_customer_id="old-id"))
    crm_source.add_customer(make_customer("new-id", stable_hash_id="hash-x"))

    mapping = await store.get_authoritative_mapping(profile_id)

    assert mapping.external_customer_id == "new-id"


async def test_authoritative_none_when_customer_missing(store, crm_source, make_profile):
    profile_id = await make_profile(display_name="Somchai")
    await store.upsert(_upsert(profile_id, "c1", is_matched=True, confidence=0.9))

    assert await store.get_authoritative_mapping(profile_id) is None

    latest = await store.get_latest_mapping(profile_id)
    assert latest.external_customer_id == "c1"
    assert latest.is_matched is True


async def test_legacy_row_without_hash_validated_by_id(store, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1", stable_hash_id=""))
    profile_id = await make_profile(display_name="Somchai")
    await store.upsert(_upsert(profile_id, "c1", is_matched=True, stable_hash_id=None))

    mapping = await store.get_authoritative_mapping(profile_id)

    assert mapping is not None
    assert mapping.external_customer_id == "c1"


async def test_clear_matched_keeps_one(db_session, store, make_profile):
    profile_id = await make_profile(display_name="Somchai")
    await store.upsert(_upsert(profile_id, "c1", is_matched=True))
    await store.upsert(_upsert(profile_id, "c2", is_matched=True))
    await store.upsert(_upsert(profile_id, "c3", is_matched=False))

    demoted = await store.clear_matched(profile_id, keep_customer_id="c2")

    assert demoted == 1
    assert (await store.get_mapping(profile_id, "c1")).is_matched is False
    assert (await store.get_mapping(profile_id, "c2")).is_matched is True
    assert len(await store.list_mappings(profile_id)) == 3


async def test_find_linked_profiles(db_session, store, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1"))
    profile_id = await make_profile(display_name="Somchai")
    await store.upsert(_upsert(profile_id, "c1", is_matched=True))
    await store.set_matched(profile_id, "c1", "hash-c1")

    assert await store.find_linked_profiles("hash-c1") == [profile_id]
    assert await store.find_linked_profiles("hash-other") == []


async def test_unlink_drops_link(db_session, store, crm_source, make_profile):
    crm_source.add_customer(make_customer("c1"))
    profile_id = await make_profile(display_name="Somchai")
    await store.upsert(_upsert(profile_id, "c1", is_matched=True))
    await store.set_matched(profile_id, "c1", "hash-c1")

    mapping = await store.unlink(profile_id, "c1")

    assert mapping.is_matched is False
    assert await store.get_authoritative_mapping(profile_id) is None
    assert await store.find_linked_profiles("hash-c1") == []
    assert await store.unlink(profile_id, "never-recorded") is None
