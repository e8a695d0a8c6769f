from fastapi import APIRouter
from cakeshop.api import version_prefix
from cakeshop.cart.routes import carts_router
from cakeshop.common.routes import home_router
from cakeshop.orders.routes import orders_admin_router, orders_router
from cakeshop.payments.routes import payments_router
from cakeshop.payments.webhooks import webhooks_router
from cakeshop.rewards.routes import rewards_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(carts_router, prefix="/cart", tags=["cart"])
public_routers.include_router(orders_router, prefix="/orders", tags=["orders"])
public_routers.include_router(payments_router, prefix="/payments", tags=["payments"])
public_routers.include_router(webhooks_router, prefix="/payments", tags=["payment-callbacks"])
public_routers.include_router(rewards_router, prefix="/rewards", tags=["rewards"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(orders_admin_router, prefix="/orders", tags=["orders-admin"])
