import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from dealclaim_api.app import create_app  # noqa: E402
from dealclaim_api.db.base import Base  # noqa: E402
from dealclaim_api.db.session import get_session  # noqa: E402
from dealclaim_api.models import (  # noqa: E402
    Claim,
    Deal,
    DealStatusEnum,
    PaymentProcessorEnum,
    PaymentTierEnum,
    User,
    UserRoleEnum,
    Vendor,
    VendorPaymentMethod,
)
from dealclaim_api.observability.claims import get_claim_observability_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions hold independent connections."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_claim_observability():
    get_claim_observability_store().reset()
    yield


def utc_in(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


class Seeder:
    """Persists users, vendors and deals for lifecycle tests."""

    async def user(self, session, *, role: UserRoleEnum = UserRoleEnum.CUSTOMER, **overrides) -> User:
        values = {
            "email": f"{role.value}-{uuid4().hex[:8]}@example.com",
            "first_name": "Casey",
            "last_name": "Shopper",
            "role": role.value,
        }
        values.update(overrides)
        user = User(**values)
        session.add(user)
        await session.flush()
        return user

    async def vendor(self, session, **overrides) -> Vendor:
        owner = await self.user(session, role=UserRoleEnum.VENDOR, first_name="Vera", last_name="Vendor")
        values = {"id": owner.id, "business_name": "Corner Bakery", "email": owner.email}
        values.update(overrides)
        vendor = Vendor(**values)
        session.add(vendor)
        await session.flush()
        return vendor

    async def payment_method(
        self,
        session,
        vendor: Vendor,
        *,
        processor: PaymentProcessorEnum,
        tier: PaymentTierEnum,
        link: str = "https://pay.example.com/bakery",
        primary: bool = True,
    ) -> VendorPaymentMethod:
        method = VendorPaymentMethod(
            vendor_id=vendor.id,
            processor_type=processor,
            payment_link=link,
            display_name="@corner-bakery",
            payment_tier=tier,
            is_primary=primary,
            is_active=True,
        )
        session.add(method)
        await session.flush()
        return method

    async def deal(self, session, vendor: Vendor, **overrides) -> Deal:
        values = {
            "vendor_id": vendor.id,
            "title": "Two croissants for one",
            "original_price": Decimal("20.00"),
            "deal_price": Decimal("12.00"),
            "deposit_amount": None,
            "max_claims": None,
            "claims_count": 0,
            "expires_at": utc_in(days=7),
            "status": DealStatusEnum.ACTIVE,
        }
        values.update(overrides)
        deal = Deal(**values)
        session.add(deal)
        await session.flush()
        return deal

    async def confirmed_claim(self, session, deal: Deal, customer: User, **overrides) -> Claim:
        """A deposit-confirmed claim with credentials, already counted on the deal."""

        values = {
            "deal_id": deal.id,
            "customer_id": customer.id,
            "session_token": str(uuid4()),
            "payment_tier": PaymentTierEnum.NONE,
            "deposit_confirmed": True,
            "deposit_confirmed_at": utc_in(minutes=-5),
            "qr_code": str(uuid4()),
            "qr_code_url": "http://localhost:3000/redeem/qr",
            "redemption_code": str(100000 + (uuid4().int % 900000)),
            "redeemed": False,
            "expires_at": deal.expires_at,
        }
        values.update(overrides)
        claim = Claim(**values)
        session.add(claim)
        deal.claims_count = (deal.claims_count or 0) + 1
        await session.flush()
        return claim

    async def pending_claim(self, session, deal: Deal, customer: User, **overrides) -> Claim:
        values = {
            "deal_id": deal.id,
            "customer_id": customer.id,
            "session_token": str(uuid4()),
            "payment_tier": PaymentTierEnum.MANUAL,
            "payment_method_type": PaymentProcessorEnum.VENMO,
            "payment_reference": f"SC-{uuid4().hex[:6].upper()}",
            "deposit_confirmed": False,
            "redeemed": False,
            "expires_at": deal.expires_at,
        }
        values.update(overrides)
        claim = Claim(**values)
        session.add(claim)
        await session.flush()
        return claim


@pytest.fixture
def seed() -> Seeder:
    return Seeder()
