"""Best-candidate selection, profile to customers and customer to profiles."""
from typing import Iterable, Optional

from backend.app.schemas.identity import ExternalCustomer, MatchCandidate, ProfileCandidate, ProfileData
from backend.app.services.match_scorer import score_match


def find_best_match(
    profile: ProfileData,
    customers: Iterable[ExternalCustomer],
) -> Optional[MatchCandidate]:
    """
    Score every customer and keep the highest confidence.

    Ties go to the first customer seen. No threshold is applied here; whether
    the best candidate counts as a match is the caller's decision.
    """
    best: Optional[MatchCandidate] = None
    for customer in customers:
        score = score_match(profile, customer)
        if best is None or score.confidence > best.confidence:
            best = MatchCandidate(customer=customer, confidence=score.confidence, reasons=score.reasons)
    return best


def find_best_profile(
    customer: ExternalCustomer,
    profiles: Iterable[ProfileData],
) -> Optional[ProfileCandidate]:
    """Reverse of find_best_match, with the same first-seen tie rule."""
    best: Optional[ProfileCandidate] = None
    for profile in profiles:
        score = score_match(profile, customer)
        if best is None or score.confidence > best.confidence:
            best = ProfileCandidate(profile=profile, confidence=score.confidence, reasons=score.reasons)
    return best
