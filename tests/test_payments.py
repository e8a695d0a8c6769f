import httpx
import pytest
from sqlalchemy import select
from cakeshop.common.custom_exceptions import PaymentVerificationFailed, ValidationFailed
from cakeshop.payments.services import reconcile_callback
from cakeshop.payments.utils import (
    amount_matches,
    decode_callback_data,
    encode_callback_data,
    sign_message,
    signing_message,
    verify_signature,
)
from cakeshop.schema.full_schema import Orders
from helpers import add_to_cart, auth_headers, error_code, place_order, url_prefix


async def _gateway_order(ac_client, user, product, order_payload, quantity=2):
    await add_to_cart(ac_client, user, product, quantity=quantity)
    order = (await place_order(ac_client, user, order_payload("esewa"))).json()["data"]
    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    assert response.status_code == 200
    return order, response.json()["data"]


async def _payment_row(db_session, order):
    res = await db_session.execute(
        select(Orders.payment_status, Orders.order_status, Orders.gateway_details, Orders.gateway_transaction_id)
        .where(Orders.order_number == order["order_number"])
    )
    return res.one()


def _redirect_params(response):
    assert response.status_code == 303
    return httpx.URL(response.headers["location"]).params


def test_signature_covers_listed_fields_in_order():
    fields = {"total_amount": "1100", "transaction_uuid": "TXN-1-abc", "product_code": "EPAYTEST",
              "signed_field_names": "total_amount,transaction_uuid,product_code"}
    message = signing_message(fields, fields["signed_field_names"])
    assert message == "total_amount=1100,transaction_uuid=TXN-1-abc,product_code=EPAYTEST"

    fields["signature"] = sign_message(message, "secret")
    assert verify_signature(fields, "secret")
    assert not verify_signature(fields, "other-secret")
    assert not verify_signature({**fields, "total_amount": "11"}, "secret")
    assert not verify_signature({k: v for k, v in fields.items() if k != "product_code"}, "secret")


def test_callback_data_decoding():
    encoded = encode_callback_data({"status": "COMPLETE", "total_amount": "1,100.0"})
    assert decode_callback_data(encoded.rstrip("="))["status"] == "COMPLETE"

    with pytest.raises(ValidationFailed):
        decode_callback_data("not base64 json!")
    with pytest.raises(ValidationFailed):
        decode_callback_data("")


def test_amount_comparison():
    assert amount_matches("1,100.0", 1100)
    assert amount_matches(1100, 1100)
    assert not amount_matches("1099.99", 1100)
    assert not amount_matches("abc", 1100)


@pytest.mark.asyncio
async def test_initiate_builds_signed_form(ac_client, db_session, gateway_config, make_user, make_product, order_payload):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)

    form = payment["form_data"]
    assert payment["payment_url"] == gateway_config.payment_url
    assert form["total_amount"] == "1100"
    assert form["transaction_uuid"].startswith("TXN-")
    assert form["signed_field_names"] == "total_amount,transaction_uuid,product_code"
    assert verify_signature(form, gateway_config.secret_key)

    row = await _payment_row(db_session, order)
    assert row.gateway_transaction_id == form["transaction_uuid"]


@pytest.mark.asyncio
async def test_initiate_rejects_cash_orders(ac_client, make_user, make_product, order_payload):
    user = await make_user()
    product = await make_product()
    await add_to_cart(ac_client, user, product)
    order = (await place_order(ac_client, user, order_payload("cod"))).json()["data"]

    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_success_callback_marks_paid_once(ac_client, db_session, make_user, make_product, order_payload,
                                                signed_callback):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)
    data = signed_callback(payment["transaction_uuid"], "1,100.0")

    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    params = _redirect_params(response)
    assert params["status"] == "success"
    assert params["order_number"] == order["order_number"]

    row = await _payment_row(db_session, order)
    assert row.payment_status == "paid"
    assert row.order_status == "confirmed"
    assert row.gateway_details["reference_id"] == "000AWEO"
    assert row.gateway_details["amount"] == 1100

    cart = (await ac_client.get(f"{url_prefix}/cart", headers=auth_headers(user))).json()["data"]
    assert cart["items"] == []

    # the gateway may redirect more than once
    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert _redirect_params(response)["status"] == "success"
    replay = await _payment_row(db_session, order)
    assert replay.gateway_details == row.gateway_details

    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    assert response.status_code == 409
    assert error_code(response) == "ALREADY_PAID"


@pytest.mark.asyncio
async def test_forged_callback_changes_nothing(ac_client, db_session, make_user, make_product, order_payload,
                                               signed_callback):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)
    data = signed_callback(payment["transaction_uuid"], "1100", secret_key="not-the-merchant-key")

    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert _redirect_params(response)["status"] == "error"

    row = await _payment_row(db_session, order)
    assert row.payment_status == "pending"
    assert row.order_status == "pending"


@pytest.mark.asyncio
async def test_reconcile_checks_signature_first(db_session, gateway_config):
    data = decode_callback_data(encode_callback_data({
        "status": "COMPLETE", "total_amount": "100", "transaction_uuid": "TXN-0-missing",
        "product_code": gateway_config.merchant_code, "signed_field_names": "status", "signature": "bogus",
    }))
    with pytest.raises(PaymentVerificationFailed) as exc:
        await reconcile_callback(db_session, data, gateway_config)
    assert exc.value.code == "SIGNATURE_MISMATCH"


@pytest.mark.asyncio
async def test_amount_mismatch_fails_payment(ac_client, db_session, make_user, make_product, order_payload,
                                             signed_callback):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)
    data = signed_callback(payment["transaction_uuid"], "500.0")

    response = await ac_client.post(f"{url_prefix}/payments/esewa/success", data={"data": data})
    assert _redirect_params(response)["status"] == "error"

    row = await _payment_row(db_session, order)
    assert row.payment_status == "failed"
    assert row.order_status == "pending"


@pytest.mark.asyncio
async def test_failure_redirect_then_retry(ac_client, db_session, make_user, make_product, order_payload,
                                           signed_callback):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)

    response = await ac_client.get(f"{url_prefix}/payments/esewa/failure",
                                   params={"transaction_uuid": payment["transaction_uuid"]})
    assert _redirect_params(response)["status"] == "failed"
    assert (await _payment_row(db_session, order)).payment_status == "failed"

    # a failed attempt can be paid again under a fresh transaction id
    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    retry = response.json()["data"]
    assert retry["transaction_uuid"] != payment["transaction_uuid"]
    assert (await _payment_row(db_session, order)).payment_status == "pending"

    data = signed_callback(retry["transaction_uuid"], "1100.0")
    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert _redirect_params(response)["status"] == "success"
    assert (await _payment_row(db_session, order)).payment_status == "paid"


@pytest.mark.asyncio
async def test_status_refresh_reconciles(ac_client, db_session, gateway_responder, make_user, make_product,
                                         order_payload):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["transaction_uuid"] == payment["transaction_uuid"]
        return httpx.Response(200, json={
            "product_code": "EPAYTEST",
            "transaction_uuid": payment["transaction_uuid"],
            "total_amount": 1100.0,
            "status": "COMPLETE",
            "ref_id": "0007G36",
        })

    gateway_responder(handler)

    response = await ac_client.get(f"{url_prefix}/payments/status/{order['id']}", headers=auth_headers(user))
    assert response.json()["data"]["payment_status"] == "pending"

    response = await ac_client.get(f"{url_prefix}/payments/status/{order['id']}", params={"refresh": "true"},
                                   headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["reconciliation"] == "paid"
    assert data["payment_status"] == "paid"
    assert data["order_status"] == "confirmed"
    assert (await _payment_row(db_session, order)).gateway_details["reference_id"] == "0007G36"


@pytest.mark.asyncio
async def test_status_refresh_gives_up_after_retries(ac_client, db_session, gateway_responder, make_user,
                                                     make_product, order_payload):
    user = await make_user()
    product = await make_product()
    order, _ = await _gateway_order(ac_client, user, product, order_payload)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, json={"message": "maintenance"})

    gateway_responder(handler)

    response = await ac_client.get(f"{url_prefix}/payments/status/{order['id']}", params={"refresh": "true"},
                                   headers=auth_headers(user))
    assert response.status_code == 502
    assert error_code(response) == "GATEWAY_UNAVAILABLE"
    assert len(calls) == 3
    assert (await _payment_row(db_session, order)).payment_status == "pending"


@pytest.mark.asyncio
async def test_signed_cancel_marks_failed(ac_client, db_session, gateway_config, make_user, make_product,
                                          order_payload, signed_callback):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)
    data = signed_callback(payment["transaction_uuid"], "1100.0", status="CANCELED")

    response = await ac_client.get(f"{url_prefix}/payments/esewa/failure", params={"data": data})
    params = _redirect_params(response)
    assert params["status"] == "failed"
    assert params["order_id"] == order["id"]

    row = await _payment_row(db_session, order)
    assert row.payment_status == "failed"
    assert row.order_status == "pending"

    # the same signed payload again, on either route, is a replay
    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert _redirect_params(response)["status"] == "failed"
    outcome, _ = await reconcile_callback(db_session, decode_callback_data(data), gateway_config)
    assert outcome == "already_failed"
    assert (await _payment_row(db_session, order)).payment_status == "failed"

    cart = (await ac_client.get(f"{url_prefix}/cart", headers=auth_headers(user))).json()["data"]
    assert len(cart["items"]) == 1


@pytest.mark.asyncio
async def test_failure_route_fills_missing_status_after_verification(ac_client, db_session, gateway_config,
                                                                     make_user, make_product, order_payload):
    user = await make_user()
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)
    fields = {
        "total_amount": "1100.0",
        "transaction_uuid": payment["transaction_uuid"],
        "product_code": gateway_config.merchant_code,
    }

    # status listed as signed but absent cannot be supplied by the route
    unsigned_status = {**fields, "signed_field_names": "status,total_amount,transaction_uuid,product_code"}
    unsigned_status["signature"] = sign_message("total_amount=1100.0", gateway_config.secret_key)
    with pytest.raises(PaymentVerificationFailed):
        await reconcile_callback(db_session, unsigned_status, gateway_config, default_status="CANCELED")
    assert (await _payment_row(db_session, order)).payment_status == "pending"

    signed = {**fields, "signed_field_names": "total_amount,transaction_uuid,product_code"}
    signed["signature"] = sign_message(signing_message(signed, signed["signed_field_names"]), gateway_config.secret_key)
    response = await ac_client.get(f"{url_prefix}/payments/esewa/failure",
                                   params={"data": encode_callback_data(signed)})
    assert _redirect_params(response)["status"] == "failed"
    assert (await _payment_row(db_session, order)).payment_status == "failed"


@pytest.mark.asyncio
async def test_refunded_payment_is_never_rewritten(ac_client, db_session, gateway_config, gateway_responder,
                                                   make_user, make_product, order_payload, signed_callback):
    user = await make_user()
    admin = await make_user(role="admin")
    product = await make_product(price=500)
    order, payment = await _gateway_order(ac_client, user, product, order_payload)
    data = signed_callback(payment["transaction_uuid"], "1100.0")

    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert _redirect_params(response)["status"] == "success"
    paid = await _payment_row(db_session, order)

    response = await ac_client.put(f"{url_prefix}/admin/orders/{order['id']}/refund", headers=auth_headers(admin),
                                   json={"reason": "Shop closed that day"})
    assert response.status_code == 200

    # a new cart after the refund must survive a replayed success redirect
    await add_to_cart(ac_client, user, product)
    response = await ac_client.get(f"{url_prefix}/payments/esewa/success", params={"data": data})
    assert _redirect_params(response)["status"] == "refunded"

    row = await _payment_row(db_session, order)
    assert row.payment_status == "refunded"
    assert row.gateway_details == paid.gateway_details
    cart = (await ac_client.get(f"{url_prefix}/cart", headers=auth_headers(user))).json()["data"]
    assert len(cart["items"]) == 1

    cancel = signed_callback(payment["transaction_uuid"], "1100.0", status="CANCELED")
    outcome, _ = await reconcile_callback(db_session, decode_callback_data(cancel), gateway_config)
    assert outcome == "already_refunded"
    assert (await _payment_row(db_session, order)).payment_status == "refunded"

    response = await ac_client.post(f"{url_prefix}/payments/esewa/initiate", headers=auth_headers(user),
                                    json={"order_id": order["id"]})
    assert response.status_code == 409
    assert error_code(response) == "ALREADY_REFUNDED"
    row = await _payment_row(db_session, order)
    assert row.payment_status == "refunded"
    assert row.gateway_transaction_id == payment["transaction_uuid"]

    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"status": "COMPLETE", "ref_id": "0007G36"})

    gateway_responder(handler)
    response = await ac_client.get(f"{url_prefix}/payments/status/{order['id']}", params={"refresh": "true"},
                                   headers=auth_headers(user))
    assert response.json()["data"]["reconciliation"] == "already_refunded"
    assert calls == []
