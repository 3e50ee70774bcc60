from fastapi import APIRouter
from fusionmarkt.api import version_prefix
from fusionmarkt.orders.routes import orders_router, orders_admin_router
from fusionmarkt.payments.routes import payments_router
from fusionmarkt.common.routes import home_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(orders_router, tags=["orders"])
public_routers.include_router(payments_router, prefix="/payment", tags=["payment"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(orders_admin_router, prefix="/orders", tags=["orders-admin"])
