import asyncio
import pytest
from sqlalchemy import func, select
from cakeshop.common.custom_exceptions import InvariantViolation
from cakeshop.db.connection import async_session
from cakeshop.payments.services import reconcile_callback
from cakeshop.payments.utils import decode_callback_data
from cakeshop.rewards.dependencies import build_rewards_config
from cakeshop.rewards.services import award_points, redeem_points
from cakeshop.schema.full_schema import Coupon, Orders, PointsHistory, Users
from helpers import add_to_cart, auth_headers, place_order, url_prefix

config = build_rewards_config()


async def _in_own_session(fn, *args, **kwargs):
    async with async_session() as session:
        return await fn(session, *args, **kwargs)


@pytest.mark.asyncio
async def test_concurrent_redeems_spend_points_once(db_session, make_user):
    """Balance covers one bronze coupon (190 points, cost 100). Exactly one redemption may win."""
    user = await make_user()
    order = Orders(
        order_number="SN-CONC01",
        user_id=user.id,
        contact_email="customer@example.com",
        shipping_address_json={"full_name": "Sita Sharma", "city": "Lalitpur"},
        delivery_schedule={"date": "2026-01-01", "time_slot": "09:00 AM - 12:00 PM"},
        payment_method="cod",
        order_status="delivered",
        subtotal=1200,
        total=1200,
    )
    db_session.add(order)
    await db_session.commit()
    await award_points(db_session, user.id, order.id, 1200, config)

    results = await asyncio.gather(
        _in_own_session(redeem_points, user.id, "bronze", config),
        _in_own_session(redeem_points, user.id, "bronze", config),
        return_exceptions=True,
    )

    won = [r for r in results if isinstance(r, dict)]
    lost = [r for r in results if isinstance(r, InvariantViolation)]
    assert len(won) == 1, results
    assert len(lost) == 1, results
    assert lost[0].code == "INSUFFICIENT_POINTS"
    assert won[0]["remaining_points"] == 90

    balance = (await db_session.execute(select(Users.sweet_points).where(Users.id == user.id))).scalar_one()
    ledger = (await db_session.execute(
        select(func.sum(PointsHistory.amount)).where(PointsHistory.user_id == user.id)
    )).scalar_one()
    coupons = (await db_session.execute(select(func.count(Coupon.id)).where(Coupon.user_id == user.id))).scalar_one()
    assert balance == ledger == 90
    assert coupons == 1


@pytest.mark.asyncio
async def test_concurrent_success_callbacks_pay_once(ac_client, db_session, gateway_config, make_user, make_product,
                                                     order_payload, signed_callback):
    user = await make_user()
    product = await make_product(price=500)
    await add_to_cart(ac_client, user, product, quantity=2)
    order = (await place_order(ac_client, user, order_payload("esewa"))).json()["data"]
    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    transaction_uuid = response.json()["data"]["transaction_uuid"]
    data = decode_callback_data(signed_callback(transaction_uuid, "1100.0"))

    results = await asyncio.gather(
        _in_own_session(reconcile_callback, dict(data), gateway_config),
        _in_own_session(reconcile_callback, dict(data), gateway_config),
    )

    assert sorted(outcome for outcome, _ in results) == ["already_paid", "paid"]

    row = (await db_session.execute(
        select(Orders.payment_status, Orders.order_status, Orders.gateway_details)
        .where(Orders.order_number == order["order_number"])
    )).one()
    assert row.payment_status == "paid"
    assert row.order_status == "confirmed"
    assert row.gateway_details["transaction_id"] == transaction_uuid

    cart = (await ac_client.get(f"{url_prefix}/cart", headers=auth_headers(user))).json()["data"]
    assert cart["items"] == []
