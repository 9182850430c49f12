"""
Bulk Relink Script.
Walks every profile and re-matches those without a valid CRM link, e.g. after
a CRM re-import invalidated stored customer ids.
"""
import asyncio
import argparse
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.config import get_settings
from backend.app.core.database import async_session_maker
from backend.app.core.logging import get_logger, setup_logging
from backend.app.schemas.identity import RelinkReport
from backend.app.services.candidate_ranker import find_best_match
from backend.app.services.crm_adapter import CustomerSnapshotSource, ExternalFetchError, get_crm_source
from backend.app.services.customer_matching import CustomerMatchingService
from backend.app.services.mapping_store import MappingStore, StoreError
from backend.app.services.profile_repository import ProfileNotFound, ProfileRepository

logger = get_logger(__name__)

METHOD_SOURCE = "sync_script"


def confidence_bucket(confidence: float) -> str:
    if confidence >= 0.9:
        return "high"
    if confidence >= 0.7:
        return "medium"
    return "low"


async def _dry_run_profile(session, crm_source, profile_id: str, threshold: float, report: RelinkReport):
    profile = await ProfileRepository(session).get_profile(profile_id)
    if not profile.has_matchable_data():
        report.no_matchable_data += 1
        return
    best = find_best_match(profile, await crm_source.list_customers())
    if best is not None and best.confidence >= threshold:
        report.would_fix += 1
        report.confidence_distribution[confidence_bucket(best.confidence)] += 1
        logger.info(f"Dry run: would link {profile_id} -> {best.customer.id} ({best.confidence})")
    else:
        report.unmatched += 1


async def relink_profiles(
    batch_size: int = 10,
    batch_pause_seconds: float = 2.0,
    profile_pause_seconds: float = 0.1,
    dry_run: bool = False,
    start_after: Optional[str] = None,
    session_factory=async_session_maker,
    crm_source=None,
) -> RelinkReport:
    """Re-match profiles whose stored mapping no longer resolves in the CRM."""
    crm_source = crm_source or get_crm_source()
    threshold = get_settings().match_confidence_threshold
    report = RelinkReport()
    after_id = start_after

    logger.info(f"Starting relink (batch_size={batch_size}, dry_run={dry_run}, start_after={start_after})...")

    batch_number = 0
    while True:
        async with session_factory() as session:
            profile_ids = await ProfileRepository(session).list_profile_ids(after_id=after_id, limit=batch_size)
        if not profile_ids:
            break
        batch_number += 1
        # One CRM scan per batch, shared by every profile in it
        batch_source = CustomerSnapshotSource(crm_source)

        for profile_id in profile_ids:
            report.total_scanned += 1
            async with session_factory() as session:
                try:
                    store = MappingStore(session, batch_source)
                    if await store.get_authoritative_mapping(profile_id) is not None:
                        report.already_valid += 1
                    elif dry_run:
                        await _dry_run_profile(session, batch_source, profile_id, threshold, report)
                    else:
                        matcher = CustomerMatchingService(session, batch_source, threshold=threshold)
                        result = await matcher.match_profile(
                            profile_id, force_refresh=True, method_source=METHOD_SOURCE
                        )
                        await session.commit()
                        if result is None:
                            report.no_matchable_data += 1
                        elif result.matched:
                            report.fixed += 1
                            report.confidence_distribution[confidence_bucket(result.confidence)] += 1
                        else:
                            report.unmatched += 1
                except (StoreError, ExternalFetchError, ProfileNotFound, SQLAlchemyError) as e:
                    await session.rollback()
                    logger.error(f"Relink failed for profile {profile_id}: {e}")
                    report.failed.append({"profile_id": profile_id, "error": str(e)})

            report.last_profile_id = profile_id
            if profile_pause_seconds:
                await asyncio.sleep(profile_pause_seconds)

        after_id = profile_ids[-1]
        logger.info(
            f"Batch {batch_number} done. Scanned {report.total_scanned}, fixed {report.fixed}, "
            f"would fix {report.would_fix}, failed {len(report.failed)}. Last id: {after_id}"
        )
        if len(profile_ids) < batch_size:
            break
        if batch_pause_seconds:
            await asyncio.sleep(batch_pause_seconds)

    logger.info(
        "Relink complete.",
        extra={"extra_data": report.model_dump()},
    )
    return report


if __name__ == "__main__":
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Re-match profiles whose CRM link is missing or stale.")
    parser.add_argument("--batch-size", type=int, default=settings.relink_batch_size, help="Profiles per batch.")
    parser.add_argument("--batch-pause", type=float, default=settings.relink_batch_pause_seconds, help="Seconds to sleep between batches.")
    parser.add_argument("--profile-pause", type=float, default=settings.relink_profile_pause_seconds, help="Seconds to sleep between profiles.")
    parser.add_argument("--start-after", default=None, help="Resume after this profile id.")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing.")
    args = parser.parse_args()

    setup_logging(level=settings.log_level)
    report = asyncio.run(relink_profiles(
        batch_size=args.batch_size,
        batch_pause_seconds=args.batch_pause,
        profile_pause_seconds=args.profile_pause,
        dry_run=args.dry_run,
        start_after=args.start_after,
    ))
    print(report.model_dump_json(indent=2))
