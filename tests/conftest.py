"""
Marketplace test fixtures

Every test gets its own SQLite file database. Write transactions are opened
with BEGIN IMMEDIATE so concurrent requests serialize the way row locks do
on PostgreSQL. The payment gateway is a scripted fake; the real adapter is
covered separately against httpx.MockTransport.
"""
import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CONFLICT_BASE_DELAY_MS", "1")
os.environ.setdefault("CONFLICT_JITTER_MS", "1")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine

from marketplace.core.config import get_settings
from marketplace.core.errors import GatewayRejected
from marketplace.db.database import Database
from marketplace.main import app
from marketplace.models import Account, CatalogItem, Player
from marketplace.schemas.payment import GatewayPaymentStatus, PaymentDetail, PaymentSession

settings = get_settings()

BUYER_ID = 1
OTHER_BUYER_ID = 2
ADMIN_ID = 99
BUYER_PLAYER_ID = 10
OTHER_PLAYER_ID = 20
ADMIN_PLAYER_ID = 90


class FakeGateway:
    """In-memory stand-in for MercadoPagoGateway with scriptable payments."""

    provider = "mercadopago"

    def __init__(self):
        self.payments: dict[str, PaymentDetail] = {}
        self.sessions: list[tuple[int, Decimal]] = []
        self.charges: list[tuple[int, Decimal]] = []
        self.card_status = GatewayPaymentStatus.APPROVED
        self.card_status_detail = "accredited"
        self.fail_with: Exception | None = None

    def set_payment(self, payment_id, order_id, status, amount, status_detail=None) -> PaymentDetail:
        detail = PaymentDetail(
            payment_id=str(payment_id),
            status=GatewayPaymentStatus(status),
            status_detail=status_detail,
            amount=Decimal(str(amount)),
            external_reference=str(order_id),
            raw={"id": payment_id, "status": status, "external_reference": str(order_id)},
        )
        self.payments[str(payment_id)] = detail
        return detail

    async def create_session(self, order_id, total, payer_email, description):
        if self.fail_with is not None:
            raise self.fail_with
        self.sessions.append((order_id, total))
        return PaymentSession(
            session_id=f"pref-{order_id}",
            redirect_url=f"https://www.mercadopago.test/checkout?pref_id=pref-{order_id}",
            sandbox_redirect_url=f"https://sandbox.mercadopago.test/checkout?pref_id=pref-{order_id}",
        )

    async def get_payment_status(self, payment_id):
        if self.fail_with is not None:
            raise self.fail_with
        try:
            return self.payments[str(payment_id)]
        except KeyError:
            raise GatewayRejected("Payment not found")

    async def charge_card(self, charge, amount, order_reference, description):
        if self.fail_with is not None:
            raise self.fail_with
        self.charges.append((order_reference, amount))
        return self.set_payment(
            f"card-{order_reference}", order_reference, self.card_status.value, amount, self.card_status_detail
        )

    async def search_payments(self, external_reference):
        if self.fail_with is not None:
            raise self.fail_with
        return [p for p in self.payments.values() if p.external_reference == str(external_reference)]


# ─── Fixtures ──────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def database(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    db = Database(engine)
    await db.create_all()
    async with db.transaction() as session:
        session.add_all([
            Account(id=BUYER_ID, name="buyer", email="buyer@example.com", boss_points=100),
            Account(id=OTHER_BUYER_ID, name="other", email="other@example.com", boss_points=100),
            Account(id=ADMIN_ID, name="admin", email="admin@example.com", group_id=settings.ADMIN_GROUP_ID),
        ])
        await session.flush()
        session.add_all([
            Player(id=BUYER_PLAYER_ID, name="Sir Buyer", account_id=BUYER_ID, level=120, vocation=4),
            Player(id=OTHER_PLAYER_ID, name="Other Druid", account_id=OTHER_BUYER_ID, level=80, vocation=2),
            Player(id=ADMIN_PLAYER_ID, name="GM Admin", account_id=ADMIN_ID, level=1, vocation=0),
        ])
    yield db
    await db.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def client(database, gateway):
    app.state.database = database
    app.state.gateway = gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://marketplace.test") as c:
        yield c


# ─── Helpers ───────────────────────────────────────────────────────────────────
def auth_headers(account_id: int) -> dict[str, str]:
    token = jwt.encode(
        {"sub": str(account_id), "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


async def add_item(database: Database, **overrides) -> CatalogItem:
    values = {
        "name": "Demon Set",
        "price": Decimal("50.00"),
        "stock": -1,
        "category": "sets",
        "is_active": True,
        "items_json": [{"itemId": 2494, "count": 1, "name": "Demon Armor"}],
    }
    values.update(overrides)
    async with database.transaction() as session:
        item = CatalogItem(**values)
        session.add(item)
        await session.flush()
        await session.refresh(item)
    return item


async def fetch_all(database: Database, model, *criteria):
    async with database.session() as session:
        return list((await session.execute(select(model).where(*criteria))).scalars().all())


async def fetch_one(database: Database, model, ident):
    async with database.session() as session:
        return await session.get(model, ident)
