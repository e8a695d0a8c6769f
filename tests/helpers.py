from cakeshop.auth.utils import create_access_token

url_prefix = "/api/v1"


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.public_id, user.role)}"}


def error_code(response) -> str:
    return response.json()["error"]["code"]


async def add_to_cart(ac_client, user, product, quantity=1, weight=1.0):
    return await ac_client.post(f"{url_prefix}/cart/items", headers=auth_headers(user), json={
        "product_id": str(product.public_id),
        "quantity": quantity,
        "selected_weight": {"weight_in_kg": weight},
    })


async def place_order(ac_client, user, payload):
    return await ac_client.post(f"{url_prefix}/orders", headers=auth_headers(user), json=payload)


async def set_status(ac_client, admin, order_id, status, notes=None):
    body = {"status": status}
    if notes:
        body["notes"] = notes
    return await ac_client.put(f"{url_prefix}/admin/orders/{order_id}/status", headers=auth_headers(admin), json=body)
