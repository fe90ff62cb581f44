"""
Pytest configuration and fixtures for the backend tests.
"""
import os
import tempfile

# Settings are read at import time; point them at throwaway locations first
_WORK_DIR = tempfile.mkdtemp(prefix="vitaclube-tests-")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ADMIN_EMAILS"] = '["admin@vitaclube.com.br"]'
os.environ["LOG_DIR"] = os.path.join(_WORK_DIR, "logs")
os.environ["BACKUP_DIR"] = os.path.join(_WORK_DIR, "backups")
os.environ["EXPORT_DIR"] = os.path.join(_WORK_DIR, "exports")
os.environ.pop("SMTP_HOST", None)

import pytest
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator, Optional
from faker import Faker
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from main import app
from config import config
from core.security import get_password_hash, create_token_pair
from db.base import Base
from db.session import get_db_session
from db.models.user import User as UserModel, BankData
from db.models.subscription import SubscriptionPlan, Subscription, BillingHistory
from db.models.commission import Commission
from db.models.order import Product
from db.models.coupon import Coupon, UserCoupon
from utils.cache import response_cache
from utils.helpers import clean_cpf, generate_referral_code

# Brazilian locale for valid CPFs and names
fake = Faker("pt_BR")

ADMIN_EMAIL = "admin@vitaclube.com.br"
DEFAULT_PASSWORD = "Senha@123"
# bcrypt is slow on purpose; hash once for every fixture user
DEFAULT_PASSWORD_HASH = get_password_hash(DEFAULT_PASSWORD)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, sharing the test session."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep business-rule edits in memory and start every test from config.json."""
    monkeypatch.setattr(config, "_save_config", lambda: None)
    response_cache.invalidate()
    yield
    config.reload()
    response_cache.invalidate()


def auth_headers(user: UserModel) -> dict:
    return {"Authorization": f"Bearer {create_token_pair(user)['access_token']}"}


def register_payload(**overrides) -> dict:
    payload = {
        "email": fake.unique.email(),
        "cpf": fake.unique.cpf(),
        "first_name": "Maria",
        "last_name": "Silva",
        "phone": "11987654321",
        "birth_date": "1990-05-17",
        "password": DEFAULT_PASSWORD,
        "confirm_password": DEFAULT_PASSWORD,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory for users stored directly in the database."""
    async def _make_user(email: Optional[str] = None, verified: bool = True, referred_by: Optional[UserModel] = None, **fields) -> UserModel:
        user = UserModel(
            email=(email or fake.unique.email()).lower(),
            cpf=clean_cpf(fake.unique.cpf()),
            first_name=fields.pop("first_name", "Joao"),
            last_name=fields.pop("last_name", "Souza"),
            birth_date=date(1990, 5, 17),
            hashed_password=DEFAULT_PASSWORD_HASH,
            referral_code=generate_referral_code(),
            referred_by_id=referred_by.id if referred_by else None,
            email_verified=verified,
            is_active=fields.pop("is_active", True),
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user


@pytest.fixture
async def user(make_user) -> UserModel:
    return await make_user()


@pytest.fixture
async def admin(make_user) -> UserModel:
    return await make_user(email=ADMIN_EMAIL, first_name="Admin")


@pytest.fixture
def user_headers(user: UserModel) -> dict:
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin: UserModel) -> dict:
    return auth_headers(admin)


@pytest.fixture
def add_bank_data(db_session: AsyncSession):
    async def _add_bank_data(owner: UserModel) -> BankData:
        bank_data = BankData(
            user_id=owner.id,
            bank_code="341",
            bank_name="Itaú",
            agency="1234",
            account="123456-7",
            account_type="corrente",
            holder_name=owner.full_name,
            holder_cpf=owner.cpf,
            pix_key=owner.email,
            pix_key_type="email",
        )
        db_session.add(bank_data)
        await db_session.commit()
        return bank_data
    return _add_bank_data


@pytest.fixture
def add_commission(db_session: AsyncSession):
    """Ledger rows for an earner, sourced from another user."""
    async def _add_commission(earner: UserModel, source: UserModel, amount, status: str = "AVAILABLE", created_at: Optional[datetime] = None) -> Commission:
        commission = Commission(
            earner_id=earner.id,
            source_id=source.id,
            type="SUBSCRIPTION",
            amount=Decimal(str(amount)),
            percentage=Decimal("0.10"),
            status=status,
            available_at=datetime.utcnow() if status == "AVAILABLE" else None,
            created_at=created_at or datetime.utcnow(),
        )
        db_session.add(commission)
        await db_session.commit()
        return commission
    return _add_commission


@pytest.fixture
async def plan(db_session: AsyncSession) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name="Plano Mensal",
        description="Caixa mensal de suplementos",
        price=Decimal("100.00"),
        billing_cycle="MONTHLY",
        benefits=["Frete grátis"],
        is_active=True,
    )
    db_session.add(plan)
    await db_session.commit()
    return plan


@pytest.fixture
def add_subscription(db_session: AsyncSession):
    async def _add_subscription(owner: UserModel, plan: SubscriptionPlan, status: str = "ACTIVE", billed_at: Optional[datetime] = None) -> Subscription:
        subscription = Subscription(user_id=owner.id, plan_id=plan.id, status=status, start_date=datetime.utcnow())
        subscription.plan = plan
        db_session.add(subscription)
        await db_session.flush()
        if billed_at is not None:
            db_session.add(BillingHistory(
                subscription_id=subscription.id,
                amount=plan.price,
                status="PAID",
                paid_at=billed_at,
                created_at=billed_at,
            ))
        await db_session.commit()
        return subscription
    return _add_subscription


@pytest.fixture
def add_product(db_session: AsyncSession):
    async def _add_product(name: str = "Whey Protein", price="100.00", stock: int = 10, **fields) -> Product:
        product = Product(
            name=name,
            slug=fields.pop("slug", name.lower().replace(" ", "-")),
            description=fields.pop("description", ""),
            price=Decimal(str(price)),
            stock=stock,
            track_stock=fields.pop("track_stock", True),
            images=[],
            is_active=fields.pop("is_active", True),
        )
        db_session.add(product)
        await db_session.commit()
        return product
    return _add_product


@pytest.fixture
def add_coupon(db_session: AsyncSession):
    """Coupon assigned to the given users."""
    async def _add_coupon(code: str = "BEMVINDO10", type: str = "PERCENTAGE", value="10", owners=(), **fields) -> Coupon:
        coupon = Coupon(
            code=code,
            name=fields.pop("name", "Boas-vindas"),
            type=type,
            value=Decimal(str(value)),
            usage_limit_per_user=fields.pop("usage_limit_per_user", 1),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        db_session.add(coupon)
        await db_session.flush()
        for owner in owners:
            db_session.add(UserCoupon(user_id=owner.id, coupon_id=coupon.id, usage_count=0))
        await db_session.commit()
        return coupon
    return _add_coupon
