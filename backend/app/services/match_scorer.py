"""
Confidence scoring between a profile and a CRM customer.

Weighted additive model capped at 1.0. Phone carries the most weight because
it rarely collides between unrelated people; names are weaker signals that
only become decisive in combination.
"""
from typing import List

from backend.app.schemas.identity import ExternalCustomer, MatchScore, ProfileData
from backend.app.services.normalizer import normalize_phone, normalize_text, split_name

EXACT_PHONE_WEIGHT = 0.7
PARTIAL_PHONE_WEIGHT = 0.3
EXACT_NAME_PART_WEIGHT = 0.5
PARTIAL_NAME_PART_WEIGHT = 0.2
EXACT_EMAIL_WEIGHT = 0.5


def _is_partial(a: str, b: str) -> bool:
    return a in b or b in a


def _score_field(
    ours: str,
    theirs: str,
    field: str,
    exact_weight: float,
    partial_weight: float,
    reasons: List[str],
) -> float:
    """Score one field; at most one tier fires."""
    if not ours or not theirs:
        return 0.0
    if ours == theirs:
        reasons.append(f"exact_{field}_match")
        return exact_weight
    if partial_weight and _is_partial(ours, theirs):
        reasons.append(f"partial_{field}_match")
        return partial_weight
    return 0.0


def score_match(profile: ProfileData, customer: ExternalCustomer) -> MatchScore:
    reasons: List[str] = []
    total = 0.0

    total += _score_field(
        normalize_phone(profile.phone_number),
        normalize_phone(customer.phone_number),
        "phone", EXACT_PHONE_WEIGHT, PARTIAL_PHONE_WEIGHT, reasons,
    )

    profile_name = split_name(profile.match_name)
    customer_name = split_name(customer.name)
    total += _score_field(
        normalize_text(profile_name.first),
        normalize_text(customer_name.first),
        "first_name", EXACT_NAME_PART_WEIGHT, PARTIAL_NAME_PART_WEIGHT, reasons,
    )
    total += _score_field(
        normalize_text(profile_name.last),
        normalize_text(customer_name.last),
        "last_name", EXACT_NAME_PART_WEIGHT, PARTIAL_NAME_PART_WEIGHT, reasons,
    )

    # Email: exact only
    total += _score_field(
        normalize_text(profile.email),
        normalize_text(customer.email),
        "email", EXACT_EMAIL_WEIGHT, 0.0, reasons,
    )

    return MatchScore(confidence=round(min(total, 1.0), 4), reasons=reasons)


def derive_match_method(reasons: List[str], source: str = "auto") -> str:
    """Tag describing which field drove the match, e.g. "auto_phone"."""
    if "exact_phone_match" in reasons:
        suffix = "phone"
    elif "exact_email_match" in reasons:
        suffix = "email"
    elif "exact_first_name_match" in reasons and "exact_last_name_match" in reasons:
        suffix = "full_name"
    elif "exact_first_name_match" in reasons:
        suffix = "first_name"
    else:
        suffix = "partial"
    return f"{source}_{suffix}"
