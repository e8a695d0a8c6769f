import pytest
from sqlalchemy import func, select, update
from cakeshop.orders.utils import can_transition
from cakeshop.schema.full_schema import Orders, PointsHistory, Users
from helpers import add_to_cart, auth_headers, error_code, place_order, set_status, url_prefix


async def _order(ac_client, user, product, order_payload, method="cod", quantity=2):
    await add_to_cart(ac_client, user, product, quantity=quantity)
    return (await place_order(ac_client, user, order_payload(method))).json()["data"]


def test_transition_graph():
    assert can_transition("pending", "confirmed")
    assert can_transition("processing", "cancelled")
    assert not can_transition("pending", "out_for_delivery")
    assert not can_transition("out_for_delivery", "cancelled")
    assert not can_transition("delivered", "cancelled")
    assert not can_transition("cancelled", "pending")


@pytest.mark.asyncio
async def test_cannot_skip_states(ac_client, make_user, make_product, order_payload):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product()
    order = await _order(ac_client, user, product, order_payload, method="esewa")

    response = await set_status(ac_client, admin, order["id"], "out_for_delivery")
    assert response.status_code == 409
    assert error_code(response) == "INVALID_TRANSITION"

    current = (await ac_client.get(f"{url_prefix}/orders/{order['id']}", headers=auth_headers(user))).json()["data"]
    assert current["order_status"] == "pending"


@pytest.mark.asyncio
async def test_delivery_awards_points_once(ac_client, db_session, make_user, make_product, order_payload):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product(price=500)
    order = await _order(ac_client, user, product, order_payload)

    for status in ("processing", "out_for_delivery"):
        response = await set_status(ac_client, admin, order["id"], status, notes=f"moving to {status}")
        assert response.status_code == 200

    response = await set_status(ac_client, admin, order["id"], "delivered")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["order"]["order_status"] == "delivered"
    assert data["order"]["delivered_at"] is not None
    # 1100 / 10 + first order bonus 50 + Rs. 1000 milestone 20
    assert data["points_award"] == {"success": True, "points_earned": 180}

    balance = (await db_session.execute(select(Users.sweet_points).where(Users.id == user.id))).scalar_one()
    assert balance == 180

    response = await set_status(ac_client, admin, order["id"], "cancelled")
    assert response.status_code == 409

    entries = (await db_session.execute(
        select(func.count(PointsHistory.id)).where(PointsHistory.user_id == user.id)
    )).scalar_one()
    assert entries == 1


@pytest.mark.asyncio
async def test_customer_cancel_window(ac_client, make_user, make_product, order_payload):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product()
    headers = auth_headers(user)

    first = await _order(ac_client, user, product, order_payload)
    response = await ac_client.put(f"{url_prefix}/orders/{first['id']}/cancel", headers=headers,
                                   json={"reason": "Changed my mind"})
    assert response.status_code == 200
    cancelled = response.json()["data"]
    assert cancelled["order_status"] == "cancelled"
    assert cancelled["cancel_reason"] == "Changed my mind"
    assert cancelled["cancelled_at"] is not None

    second = await _order(ac_client, user, product, order_payload)
    await set_status(ac_client, admin, second["id"], "processing")
    response = await ac_client.put(f"{url_prefix}/orders/{second['id']}/cancel", headers=headers)
    assert response.status_code == 409
    assert error_code(response) == "NOT_CANCELLABLE"

    # staff can still cancel while processing
    response = await set_status(ac_client, admin, second["id"], "cancelled")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_other_customers_cannot_cancel(ac_client, make_user, make_product, order_payload):
    owner = await make_user()
    stranger = await make_user()
    product = await make_product()
    order = await _order(ac_client, owner, product, order_payload)

    response = await ac_client.put(f"{url_prefix}/orders/{order['id']}/cancel", headers=auth_headers(stranger))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_failed_payment_blocks_fulfillment(ac_client, db_session, make_user, make_product, order_payload):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product()
    order = await _order(ac_client, user, product, order_payload, method="esewa")

    await db_session.execute(
        update(Orders).where(Orders.order_number == order["order_number"]).values(payment_status="failed")
    )
    await db_session.commit()

    response = await set_status(ac_client, admin, order["id"], "confirmed")
    assert response.status_code == 409
    assert error_code(response) == "PAYMENT_FAILED"

    response = await set_status(ac_client, admin, order["id"], "cancelled")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_status_updates_need_admin(ac_client, make_user, make_product, order_payload):
    user = await make_user()
    product = await make_product()
    order = await _order(ac_client, user, product, order_payload)

    response = await set_status(ac_client, user, order["id"], "processing")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_refund_requires_payment(ac_client, make_user, make_product, order_payload):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product()
    order = await _order(ac_client, user, product, order_payload)

    response = await ac_client.put(f"{url_prefix}/admin/orders/{order['id']}/refund", headers=auth_headers(admin),
                                   json={"reason": "Cake damaged"})
    assert response.status_code == 409
    assert error_code(response) == "NOT_PAID"


async def _paid_gateway_order(ac_client, user, product, order_payload, signed_callback):
    order = await _order(ac_client, user, product, order_payload, method="esewa")
    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    transaction_uuid = response.json()["data"]["transaction_uuid"]
    data = signed_callback(transaction_uuid, str(order["total"]))
    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert response.status_code == 303
    return order, data


@pytest.mark.asyncio
async def test_refund_defaults_to_order_total(ac_client, db_session, make_user, make_product, order_payload,
                                              signed_callback):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product(price=500)
    order, data = await _paid_gateway_order(ac_client, user, product, order_payload, signed_callback)

    response = await ac_client.put(f"{url_prefix}/admin/orders/{order['id']}/refund", headers=auth_headers(admin),
                                   json={"notes": "Called the customer"})
    assert response.status_code == 200
    refunded = response.json()["data"]
    assert refunded["payment_status"] == "refunded"
    assert refunded["order_status"] == "confirmed"
    assert refunded["refund"]["amount"] == order["total"] == 1100
    assert refunded["refund"]["reason"] == "Customer requested refund"
    assert refunded["refund"]["notes"] == "Called the customer"
    assert refunded["refund"]["refunded_by"] == admin.id
    assert refunded["refund"]["refunded_at"] is not None

    response = await ac_client.put(f"{url_prefix}/admin/orders/{order['id']}/refund", headers=auth_headers(admin),
                                   json={})
    assert response.status_code == 409
    assert error_code(response) == "NOT_PAID"

    # the original success redirect cannot move it back to paid
    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert response.status_code == 303
    row = (await db_session.execute(
        select(Orders.payment_status, Orders.refund_amount).where(Orders.order_number == order["order_number"])
    )).one()
    assert tuple(row) == ("refunded", 1100)

    current = (await ac_client.get(f"{url_prefix}/orders/{order['id']}", headers=auth_headers(user))).json()["data"]
    assert current["refund"]["amount"] == 1100


@pytest.mark.asyncio
async def test_partial_refund_and_cap(ac_client, make_user, make_product, order_payload, signed_callback):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product(price=500)
    order, _ = await _paid_gateway_order(ac_client, user, product, order_payload, signed_callback)

    response = await ac_client.put(f"{url_prefix}/admin/orders/{order['id']}/refund", headers=auth_headers(admin),
                                   json={"amount": 1101, "reason": "Too much"})
    assert response.status_code == 400
    assert error_code(response) == "VALIDATION_FAILED"

    current = (await ac_client.get(f"{url_prefix}/orders/{order['id']}", headers=auth_headers(user))).json()["data"]
    assert current["payment_status"] == "paid"
    assert current["refund"] is None

    response = await ac_client.put(f"{url_prefix}/admin/orders/{order['id']}/refund", headers=auth_headers(admin),
                                   json={"amount": 400, "reason": "Late delivery"})
    assert response.status_code == 200
    refund = response.json()["data"]["refund"]
    assert refund["amount"] == 400
    assert refund["reason"] == "Late delivery"
