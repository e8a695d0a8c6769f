import os
import tempfile

# settings are read at import time, so the test database has to be in place first
_DB_DIR = tempfile.mkdtemp(prefix="cakeshop-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'cakeshop.db')}"

from datetime import timedelta
from uuid import uuid4
import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from cakeshop.common.utils import now
from cakeshop.db.connection import async_engine, async_session
from cakeshop.db.init_db import create_all, drop_all
from cakeshop.main import app
from cakeshop.payments.dependencies import build_gateway_config, get_gateway_client, get_gateway_config
from cakeshop.payments.utils import encode_callback_data, sign_message, signing_message
from cakeshop.schema.full_schema import Coupon, Product, Users

CALLBACK_SIGNED_FIELDS = "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names"


@pytest.fixture(autouse=True)
async def fresh_db():
    await create_all()
    yield
    app.dependency_overrides.clear()
    await drop_all()
    await async_engine.dispose()


@pytest.fixture
async def db_session():
    async with async_session() as session:
        yield session


@pytest.fixture
def gateway_config():
    config = build_gateway_config().model_copy(update={"backoff_base": 0.0})
    app.dependency_overrides[get_gateway_config] = lambda: config
    return config


@pytest.fixture
async def ac_client(gateway_config):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


@pytest.fixture
def make_user(db_session):
    async def _make(role="user", sweet_points=0):
        user = Users(email=f"{uuid4().hex[:12]}@example.com", name="Test Customer",
                     role=role, sweet_points=sweet_points)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user
    return _make


@pytest.fixture
def make_product(db_session):
    async def _make(price=500, is_active=True):
        product = Product(
            name=f"Chocolate Truffle {uuid4().hex[:6]}",
            images=["https://cdn.example.com/cakes/truffle.jpg"],
            weight_options=[
                {"weight_in_kg": 1.0, "label": "1 kg", "price": price},
                {"weight_in_kg": 2.0, "label": "2 kg", "price": price * 2 - 100},
            ],
            is_active=is_active,
        )
        db_session.add(product)
        await db_session.commit()
        await db_session.refresh(product)
        return product
    return _make


@pytest.fixture
def make_coupon(db_session):
    async def _make(user, code="SWEETTEST01", expires_in=timedelta(days=30), is_used=False,
                    discount_value=10, min_order_amount=1000, max_discount=250):
        coupon = Coupon(
            user_id=user.id,
            code=code,
            discount_type="percentage",
            discount_value=discount_value,
            max_discount=max_discount,
            min_order_amount=min_order_amount,
            reward_tier_name="Silver Reward",
            reward_tier_points_cost=250,
            is_used=is_used,
            expires_at=now() + expires_in,
        )
        db_session.add(coupon)
        await db_session.commit()
        await db_session.refresh(coupon)
        return coupon
    return _make

@pytest.fixture
def order_payload():
    def _build(payment_method="cod", days_ahead=3, time_slot="12:00 PM - 03:00 PM"):
        return {
            "contact_email": "customer@example.com",
            "shipping_address": {
                "full_name": "Sita Sharma",
                "phone": "9800000000",
                "street": "Jhamsikhel Road",
                "city": "Lalitpur",
            },
            "delivery_schedule": {
                "date": (now().date() + timedelta(days=days_ahead)).isoformat(),
                "time_slot": time_slot,
            },
            "special_requests": "Less sugar please",
            "payment_method": payment_method,
        }
    return _build


@pytest.fixture
def signed_callback(gateway_config):
    def _build(transaction_uuid, total_amount, status="COMPLETE", secret_key=None, **overrides):
        data = {
            "transaction_code": "000AWEO",
            "status": status,
            "total_amount": total_amount,
            "transaction_uuid": transaction_uuid,
            "product_code": gateway_config.merchant_code,
            "signed_field_names": CALLBACK_SIGNED_FIELDS,
        }
        data.update(overrides)
        message = signing_message(data, CALLBACK_SIGNED_FIELDS)
        data["signature"] = sign_message(message, secret_key or gateway_config.secret_key)
        return encode_callback_data(data)
    return _build


@pytest.fixture
def gateway_responder():
    """Routes the status check through an in-process handler instead of the network."""
    def _install(handler):
        async def _client():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                yield client
        app.dependency_overrides[get_gateway_client] = _client
    return _install

