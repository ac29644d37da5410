from fastapi import APIRouter, Depends
from storefront.api import version_prefix
from storefront.auth.dependencies import require_admin
from storefront.common.routes import home_router
from storefront.orders.routes import orders_admin_router, orders_router
from storefront.payments.routes import payments_admin_router, payments_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(orders_router, tags=["orders"])
public_routers.include_router(payments_router, prefix="/payments", tags=["payments"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin", dependencies=[Depends(require_admin)])

admin_routers.include_router(orders_admin_router, tags=["orders-admin"])
admin_routers.include_router(payments_admin_router, prefix="/payments", tags=["payments-admin"])
