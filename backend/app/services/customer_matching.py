"""
Customer Matching Service.

Links a booking-site profile to its CRM customer:
1. Reuse the authoritative mapping when it still resolves (unless forced).
2. Otherwise score the profile against the full CRM customer set.
3. Persist the best candidate; only candidates at or above the confidence
   threshold become the profile's authoritative mapping.

Candidates below the threshold are still recorded (is_matched=False) so
operators can review near-misses.

sync_crm_customers runs the same reconciliation from the CRM side: every
(recently updated) CRM customer is scored against all profiles.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import get_settings
from backend.app.core.logging import correlation_id_ctx
from backend.app.models.audit_orm import MatchAuditEntryORM
from backend.app.schemas.identity import (
    CrmSyncReport,
    ExternalCustomer,
    IdentityMapping,
    IdentityMappingUpsert,
    MatchResult,
    ProfileData,
)
from backend.app.services.candidate_ranker import find_best_match, find_best_profile
from backend.app.services.mapping_store import MappingStore
from backend.app.services.match_scorer import derive_match_method
from backend.app.services.package_sync import PackageSyncService
from backend.app.services.profile_repository import ProfileRepository
from backend.app.services.vip_status import StatusCache

logger = logging.getLogger(__name__)

MANUAL_MATCH_METHOD = "manual"
CRM_SYNC_SOURCE = "crm_sync"
PROFILE_PAGE_SIZE = 500


class CustomerAlreadyLinked(Exception):
    """The CRM customer is already linked to a different profile."""

    def __init__(self, stable_hash_id: str, linked_profile_id: str):
        super().__init__(f"CRM customer {stable_hash_id} is already linked to another profile")
        self.stable_hash_id = stable_hash_id
        self.linked_profile_id = linked_profile_id


class CrmCustomerNotFound(Exception):
    def __init__(self, crm_customer_id: str):
        super().__init__(f"CRM customer {crm_customer_id} not found")
        self.crm_customer_id = crm_customer_id


class CustomerMatchingService:
    def __init__(
        self,
        session: AsyncSession,
        crm_source,
        threshold: Optional[float] = None,
        package_sync: Optional[PackageSyncService] = None,
        status_cache: Optional[StatusCache] = None,
    ):
        self.session = session
        self.crm_source = crm_source
        self.threshold = threshold if threshold is not None else get_settings().match_confidence_threshold
        self.store = MappingStore(session, crm_source)
        self.profiles = ProfileRepository(session)
        self.package_sync = package_sync or PackageSyncService(session, crm_source)
        self.status_cache = status_cache

    async def match_profile(
        self,
        profile_id: str,
        force_refresh: bool = False,
        phone_number_override: Optional[str] = None,
        exclusive: bool = False,
        method_source: str = "auto",
    ) -> Optional[MatchResult]:
        """
        Match a profile against the CRM.

        Returns None when the profile has nothing to match on, and an unmatched
        result with zero confidence when no CRM customer scores at all.
        With exclusive=True a confident match on a customer already linked to
        another profile raises CustomerAlreadyLinked instead of linking.
        """
        current: Optional[IdentityMapping] = await self.store.get_authoritative_mapping(profile_id)
        if current is not None and not force_refresh:
            return MatchResult.from_mapping(current)

        profile = await self.profiles.get_profile(profile_id)
        if phone_number_override:
            profile = profile.model_copy(update={"phone_number": phone_number_override})
        if not profile.has_matchable_data():
            logger.info(f"Profile {profile_id} has no matchable data; skipping")
            return None

        customers = await self.crm_source.list_customers()
        best = find_best_match(profile, customers)
        if best is None or best.confidence <= 0:
            logger.info(f"No CRM candidate for profile {profile_id} among {len(customers)} customers")
            return MatchResult(matched=False, confidence=0.0)

        customer = best.customer
        method = derive_match_method(best.reasons, method_source)
        confident = best.confidence >= self.threshold

        if confident and exclusive and customer.stable_hash_id:
            others = [
                pid for pid in await self.store.find_linked_profiles(customer.stable_hash_id)
                if pid != profile_id
            ]
            if others:
                logger.warning(
                    f"CRM customer {customer.id} already linked to profile {others[0]}; refusing link for {profile_id}"
                )
                raise CustomerAlreadyLinked(customer.stable_hash_id, others[0])

        # A weak re-score of the customer we are already linked to keeps the link
        keep_link = current is not None and current.external_customer_id == customer.id
        await self.store.upsert(
            IdentityMappingUpsert(
                profile_id=profile_id,
                external_customer_id=customer.id,
                stable_hash_id=customer.stable_hash_id,
                is_matched=confident or keep_link,
                match_method=method,
                match_confidence=best.confidence,
                match_reasons=best.reasons,
                customer_snapshot=customer.model_dump(mode="json"),
            )
        )

        if confident:
            superseded = await self._apply_link(profile_id, customer, phone_number_override)
            action = "matched"
            details = {"superseded": superseded, "method_source": method_source}
        else:
            action = "candidate_recorded"
            details = {"threshold": self.threshold, "kept_existing_link": keep_link}

        is_new_match = confident and (current is None or current.external_customer_id != customer.id)
        await self._record_audit(
            profile_id, action, method_source, customer.id, best.confidence,
            {**details, "reasons": best.reasons, "match_method": method},
        )
        self._invalidate_status(profile_id)

        logger.info(
            f"Profile {profile_id} -> CRM {customer.id}: confidence={best.confidence} matched={confident}",
            extra={"extra_data": {
                "crm_customer_id": customer.id,
                "match_confidence": best.confidence,
                "match_method": method,
                "is_new_match": is_new_match,
            }},
        )
        return MatchResult(
            matched=confident or keep_link,
            confidence=best.confidence,
            crm_customer_id=customer.id,
            stable_hash_id=customer.stable_hash_id,
            reasons=best.reasons,
            match_method=method,
            is_new_match=is_new_match,
        )

    async def set_manual_mapping(
        self,
        profile_id: str,
        crm_customer_id: str,
        is_matched: bool = True,
        actor: str = "admin",
    ) -> Optional[IdentityMapping]:
        """
        Operator override. Linking supersedes every other match of the profile;
        unlinking demotes the pair and returns None if it was never recorded.
        """
        profile = await self.profiles.get_profile(profile_id)

        if is_matched:
            customer = await self.crm_source.get_customer_by_id(crm_customer_id)
            if customer is None:
                raise CrmCustomerNotFound(crm_customer_id)

            await self.store.upsert(
                IdentityMappingUpsert(
                    profile_id=profile_id,
                    external_customer_id=customer.id,
                    stable_hash_id=customer.stable_hash_id,
                    is_matched=True,
                    match_method=MANUAL_MATCH_METHOD,
                    match_confidence=1.0,
                    match_reasons=["manual_override"],
                    customer_snapshot=customer.model_dump(mode="json"),
                )
            )
            await self.store.clear_matched(profile_id, keep_customer_id=customer.id)
            mapping = await self.store.set_matched(profile_id, customer.id, customer.stable_hash_id)
            await self.profiles.update_profile(profile_id, stable_hash_id=customer.stable_hash_id)
            action = "manual_link"
        else:
            mapping = await self.store.unlink(profile_id, crm_customer_id)
            if mapping is None:
                return None
            if mapping.stable_hash_id and profile.stable_hash_id == mapping.stable_hash_id:
                await self.profiles.update_profile(profile_id, stable_hash_id=None)
            action = "manual_unlink"

        await self._record_audit(profile_id, action, actor, crm_customer_id, mapping.match_confidence, {})
        self._invalidate_status(profile_id)
        logger.info(f"Manual mapping {action} {profile_id} -> {crm_customer_id} by {actor}")
        return mapping

    async def sync_crm_customers(self, updated_since: Optional[datetime] = None) -> CrmSyncReport:
        """
        Record the best-scoring profile of every CRM customer, or only of those
        updated at or after updated_since.

        A confident candidate becomes the profile's link only when neither side
        is linked to someone else yet; otherwise it is kept for review.
        """
        if updated_since is not None and updated_since.tzinfo is None:
            updated_since = updated_since.replace(tzinfo=timezone.utc)

        customers = await self.crm_source.list_customers(updated_since=updated_since)
        profiles = [p for p in await self._all_profiles() if p.has_matchable_data()]
        report = CrmSyncReport(total_crm_customers=len(customers))
        logger.info(f"CRM sync: {len(customers)} customers against {len(profiles)} profiles (since={updated_since})")

        for customer in customers:
            best = find_best_profile(customer, profiles)
            if best is None or best.confidence <= 0:
                continue
            report.potential_matches += 1
            confident = best.confidence >= self.threshold
            if confident:
                report.high_confidence_matches += 1

            profile_id = best.profile.id
            current = await self.store.get_authoritative_mapping(profile_id)
            keep_link = current is not None and current.external_customer_id == customer.id
            conflict = confident and not keep_link and await self._linked_elsewhere(profile_id, current, customer)
            link = confident and not keep_link and not conflict
            if conflict:
                report.skipped_conflicts += 1

            method = derive_match_method(best.reasons, CRM_SYNC_SOURCE)
            await self.store.upsert(
                IdentityMappingUpsert(
                    profile_id=profile_id,
                    external_customer_id=customer.id,
                    stable_hash_id=customer.stable_hash_id,
                    is_matched=link or keep_link,
                    match_method=method,
                    match_confidence=best.confidence,
                    match_reasons=best.reasons,
                    customer_snapshot=customer.model_dump(mode="json"),
                )
            )
            if link:
                await self._apply_link(profile_id, customer)
                report.linked += 1

            await self._record_audit(
                profile_id, "matched" if link else "candidate_recorded", CRM_SYNC_SOURCE,
                customer.id, best.confidence,
                {"reasons": best.reasons, "match_method": method, "conflict": conflict},
            )
            self._invalidate_status(profile_id)

        logger.info("CRM sync complete.", extra={"extra_data": report.model_dump()})
        return report

    async def _all_profiles(self) -> List[ProfileData]:
        profiles: List[ProfileData] = []
        after_id = None
        while True:
            page = await self.profiles.list_profiles(after_id=after_id, limit=PROFILE_PAGE_SIZE)
            profiles.extend(page)
            if len(page) < PROFILE_PAGE_SIZE:
                return profiles
            after_id = page[-1].id

    async def _linked_elsewhere(
        self,
        profile_id: str,
        current: Optional[IdentityMapping],
        customer: ExternalCustomer,
    ) -> bool:
        if current is not None:
            return True
        if not customer.stable_hash_id:
            return False
        return any(pid != profile_id for pid in await self.store.find_linked_profiles(customer.stable_hash_id))

    async def _apply_link(
        self,
        profile_id: str,
        customer: ExternalCustomer,
        phone_number_override: Optional[str] = None,
    ) -> int:
        """Make an already recorded candidate the profile's only match. Returns the number superseded."""
        superseded = await self.store.clear_matched(profile_id, keep_customer_id=customer.id)
        await self.store.set_matched(profile_id, customer.id, customer.stable_hash_id)

        updates = {"stable_hash_id": customer.stable_hash_id}
        if phone_number_override:
            updates["phone_number"] = phone_number_override
        await self.profiles.update_profile(profile_id, **updates)

        await self._sync_packages(profile_id)
        return superseded

    async def _sync_packages(self, profile_id: str) -> None:
        # Best-effort: a failed package refresh must not undo the link
        try:
            async with self.session.begin_nested():
                await self.package_sync.sync_packages_for_profile(profile_id)
        except Exception as e:
            logger.warning(f"Package sync failed for {profile_id} after match: {e}")

    async def _record_audit(
        self,
        profile_id: str,
        action: str,
        actor: str,
        crm_customer_id: Optional[str],
        confidence: Optional[float],
        details: dict,
    ) -> None:
        try:
            async with self.session.begin_nested():
                self.session.add(
                    MatchAuditEntryORM(
                        profile_id=profile_id,
                        action=action,
                        actor=actor,
                        crm_customer_id=crm_customer_id,
                        match_confidence=confidence,
                        details=details,
                        trace_id=correlation_id_ctx.get(),
                    )
                )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to write match audit entry for {profile_id}: {e}")

    def _invalidate_status(self, profile_id: str) -> None:
        if self.status_cache is not None:
            self.status_cache.invalidate(profile_id)
