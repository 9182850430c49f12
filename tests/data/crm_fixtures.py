"""
Shared CRM test records.
"""
from datetime import date, datetime
from typing import Optional

from backend.app.schemas.identity import CrmPackageInfo, ExternalCustomer, ProfileData


def make_customer(
    customer_id: str,
    name: str = "",
    phone: Optional[str] = None,
    email: Optional[str] = None,
    stable_hash_id: Optional[str] = None,
    update_time: Optional[datetime] = None,
) -> ExternalCustomer:
    """CRM customer whose stable_hash_id defaults to "hash-<id>"."""
    return ExternalCustomer(
        id=customer_id,
        name=name,
        phone_number=phone,
        email=email,
        stable_hash_id=stable_hash_id if stable_hash_id is not None else f"hash-{customer_id}",
        additional_data={"update_time": update_time.isoformat()} if update_time else {},
    )


def make_profile_data(**fields) -> ProfileData:
    fields.setdefault("id", "profile-1")
    return ProfileData(**fields)


def make_package(package_id: str, stable_hash_id: str, package_type_name: str = "Gold 10H") -> CrmPackageInfo:
    return CrmPackageInfo(
        crm_package_id=package_id,
        stable_hash_id=stable_hash_id,
        customer_name="Somchai Jaidee",
        package_type_name=package_type_name,
        first_use_date=date(2026, 1, 5),
        expiration_date=date(2026, 12, 31),
        remaining_hours=7.5,
    )
