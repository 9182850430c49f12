"""
CRM Adapter Abstraction Layer.

Vendor-agnostic read interface to the external CRM's customer records.

The LocalCrmCustomerSource reads the CRM database through SQLAlchemy.
The MockCrmCustomerSource is an in-memory stand-in for tests and CI.
CustomerSnapshotSource shares one full scan across a batch job.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.resilience import CircuitBreaker, CircuitBreakerOpenException, crm_circuit_breaker
from backend.app.models.crm_orm import CrmCustomerORM, CrmCustomerPackageORM
from backend.app.schemas.identity import CrmPackageInfo, ExternalCustomer

logger = logging.getLogger(__name__)

# CRM columns passed through untouched in ExternalCustomer.additional_data
_ADDITIONAL_FIELDS = (
    "store", "address", "date_of_birth", "date_joined", "available_credit",
    "available_point", "source", "update_time", "created_at",
)


class ExternalFetchError(Exception):
    """The CRM could not be read."""
    pass


class CrmCustomerSource(ABC):
    """Abstract CRM customer source."""

    @abstractmethod
    async def list_customers(self, updated_since: Optional[datetime] = None) -> List[ExternalCustomer]:
        """Full scan of the CRM customer set, or of those updated at or after updated_since."""
        ...

    @abstractmethod
    async def get_customer_by_stable_hash_id(self, stable_hash_id: str) -> Optional[ExternalCustomer]:
        ...

    @abstractmethod
    async def get_customer_by_id(self, customer_id: str) -> Optional[ExternalCustomer]:
        ...

    @abstractmethod
    async def list_packages(self, stable_hash_id: str) -> List[CrmPackageInfo]:
        ...


def _updated_since(customer: ExternalCustomer, since: datetime) -> bool:
    value = customer.additional_data.get("update_time")
    if not value:
        return False
    updated = datetime.fromisoformat(value)
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return updated >= since


def _to_external_customer(row: CrmCustomerORM) -> ExternalCustomer:
    additional = {}
    for field in _ADDITIONAL_FIELDS:
        value = getattr(row, field)
        if value is not None:
            additional[field] = value.isoformat() if hasattr(value, "isoformat") else value
    return ExternalCustomer(
        id=str(row.id),
        name=row.customer_name or "",
        email=row.email,
        phone_number=row.contact_number,
        stable_hash_id=row.stable_hash_id,
        additional_data=additional,
    )


class LocalCrmCustomerSource(CrmCustomerSource):
    """Reads the CRM database directly."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        breaker: CircuitBreaker = crm_circuit_breaker,
    ):
        self.session_factory = session_factory
        self.breaker = breaker

    @asynccontextmanager
    async def _get_session(self):
        try:
            async with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"CRM query failed: {e}")
            raise ExternalFetchError(f"CRM query failed: {e}") from e

    async def _scan_customers(self, updated_since: Optional[datetime] = None) -> List[ExternalCustomer]:
        query = select(CrmCustomerORM).order_by(CrmCustomerORM.id)
        if updated_since is not None:
            query = query.where(CrmCustomerORM.update_time >= updated_since)
        async with self._get_session() as s:
            result = await s.execute(query)
            return [_to_external_customer(row) for row in result.scalars().all()]

    async def list_customers(self, updated_since: Optional[datetime] = None) -> List[ExternalCustomer]:
        try:
            customers = await self.breaker.call(self._scan_customers, updated_since)
        except CircuitBreakerOpenException as e:
            raise ExternalFetchError(str(e)) from e
        logger.info(f"Fetched {len(customers)} customers from CRM")
        return customers

    async def get_customer_by_stable_hash_id(self, stable_hash_id: str) -> Optional[ExternalCustomer]:
        async with self._get_session() as s:
            result = await s.execute(
                select(CrmCustomerORM).where(CrmCustomerORM.stable_hash_id == stable_hash_id)
            )
            row = result.scalar_one_or_none()
            return _to_external_customer(row) if row else None

    async def get_customer_by_id(self, customer_id: str) -> Optional[ExternalCustomer]:
        async with self._get_session() as s:
            row = await s.get(CrmCustomerORM, customer_id)
            return _to_external_customer(row) if row else None

    async def list_packages(self, stable_hash_id: str) -> List[CrmPackageInfo]:
        async with self._get_session() as s:
            result = await s.execute(
                select(CrmCustomerPackageORM)
                .where(CrmCustomerPackageORM.stable_hash_id == stable_hash_id)
                .order_by(CrmCustomerPackageORM.expiration_date)
            )
            return [
                CrmPackageInfo(
                    crm_package_id=row.crm_package_id,
                    stable_hash_id=row.stable_hash_id,
                    customer_name=row.customer_name,
                    package_type_name=row.package_type_name,
                    first_use_date=row.first_use_date,
                    expiration_date=row.expiration_date,
                    remaining_hours=row.remaining_hours,
                )
                for row in result.scalars().all()
            ]


class MockCrmCustomerSource(CrmCustomerSource):
    """
    Lightweight in-memory CRM for testing and CI where the real CRM is unavailable.
    """
    def __init__(self, customers: Optional[List[ExternalCustomer]] = None):
        self._customers: Dict[str, ExternalCustomer] = {}
        self._packages: Dict[str, List[CrmPackageInfo]] = {}
        self.fail_fetch = False
        self.list_calls = 0
        for customer in customers or []:
            self.add_customer(customer)

    def add_customer(self, customer: ExternalCustomer) -> None:
        self._customers[customer.id] = customer

    def remove_customer(self, customer_id: str) -> None:
        self._customers.pop(customer_id, None)

    def add_package(self, package: CrmPackageInfo) -> None:
        self._packages.setdefault(package.stable_hash_id, []).append(package)

    def replace_packages(self, stable_hash_id: str, packages: List[CrmPackageInfo]) -> None:
        self._packages[stable_hash_id] = list(packages)

    async def list_customers(self, updated_since: Optional[datetime] = None) -> List[ExternalCustomer]:
        self.list_calls += 1
        if self.fail_fetch:
            raise ExternalFetchError("Mock CRM unavailable")
        customers = list(self._customers.values())
        if updated_since is not None:
            customers = [c for c in customers if _updated_since(c, updated_since)]
        return customers

    async def get_customer_by_stable_hash_id(self, stable_hash_id: str) -> Optional[ExternalCustomer]:
        for customer in self._customers.values():
            if customer.stable_hash_id == stable_hash_id:
                return customer
        return None

    async def get_customer_by_id(self, customer_id: str) -> Optional[ExternalCustomer]:
        return self._customers.get(customer_id)

    async def list_packages(self, stable_hash_id: str) -> List[CrmPackageInfo]:
        return list(self._packages.get(stable_hash_id, []))


class CustomerSnapshotSource(CrmCustomerSource):
    """
    Serves one full customer scan of the wrapped source to every caller.

    Batch jobs wrap their source once per batch so that matching N profiles
    costs one CRM scan, not N. Keyed lookups and incremental scans still go to
    the wrapped source. A failed scan is not remembered.
    """
    def __init__(self, source: CrmCustomerSource):
        self.source = source
        self._customers: Optional[List[ExternalCustomer]] = None

    async def list_customers(self, updated_since: Optional[datetime] = None) -> List[ExternalCustomer]:
        if updated_since is not None:
            return await self.source.list_customers(updated_since=updated_since)
        if self._customers is None:
            self._customers = await self.source.list_customers()
        return list(self._customers)

    async def get_customer_by_stable_hash_id(self, stable_hash_id: str) -> Optional[ExternalCustomer]:
        return await self.source.get_customer_by_stable_hash_id(stable_hash_id)

    async def get_customer_by_id(self, customer_id: str) -> Optional[ExternalCustomer]:
        return await self.source.get_customer_by_id(customer_id)

    async def list_packages(self, stable_hash_id: str) -> List[CrmPackageInfo]:
        return await self.source.list_packages(stable_hash_id)


def get_crm_source() -> CrmCustomerSource:
    """FastAPI dependency: the CRM source backed by the CRM database."""
    from backend.app.core.database import crm_session_maker
    return LocalCrmCustomerSource(crm_session_maker)
