from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from storefront.auth.dependencies import get_principal, require_admin
from storefront.auth.models import Principal
from storefront.common.utils import success_response
from storefront.orders.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from storefront.orders.dependencies import get_order_service
from storefront.orders.models import AdminUpdateOrderIn, CreateOrderIn
from storefront.orders.services import OrderService
from storefront.orders.utils import serialize_order

orders_router = APIRouter()
orders_admin_router = APIRouter()


def _page(orders, total: int, page: int, limit: int):
    return {
        "orders": [serialize_order(o) for o in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
        },
    }


@orders_router.post("/orders")
async def create_order(payload: CreateOrderIn,
                       principal: Principal = Depends(get_principal),
                       service: OrderService = Depends(get_order_service)):

    billing = payload.billing_address.model_dump() if payload.billing_address else None
    order = await service.create_order(
        user_id=principal.user_id,
        cart_snapshot=payload.cart_snapshot(),
        shipping_address=payload.shipping_address.model_dump(),
        payment_method=payload.payment_method,
        billing_address=billing,
        notes=payload.notes,
    )
    return success_response({"order": serialize_order(order)}, status_code=status.HTTP_201_CREATED)


@orders_router.get("/orders")
async def list_my_orders(page: int = Query(1, ge=1),
                         limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                         status_filter: Optional[str] = Query(None, alias="status"),
                         principal: Principal = Depends(get_principal),
                         service: OrderService = Depends(get_order_service)):

    orders, total = await service.list_orders(principal.user_id, status=status_filter, page=page, limit=limit)
    return success_response(_page(orders, total, page, limit))


@orders_router.get("/orders/{order_id}")
async def get_order(order_id: str,
                    principal: Principal = Depends(get_principal),
                    service: OrderService = Depends(get_order_service)):
    order = await service.get_order(order_id, principal)
    return success_response({"order": serialize_order(order)})


@orders_router.delete("/orders/{order_id}")
async def delete_order(order_id: str,
                       principal: Principal = Depends(get_principal),
                       service: OrderService = Depends(get_order_service)):
    await service.delete_order(order_id, principal.user_id)
    return success_response({"deleted": True, "order_id": order_id})

#--------------------------------------------------------------------------------------------------------

@orders_admin_router.get("/orders")
async def admin_list_orders(page: int = Query(1, ge=1),
                            limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                            status_filter: Optional[str] = Query(None, alias="status"),
                            payment_status: Optional[str] = Query(None, alias="paymentStatus"),
                            user_id: Optional[str] = Query(None, alias="userId"),
                            service: OrderService = Depends(get_order_service)):

    orders, total = await service.admin_list_orders(status=status_filter, payment_status=payment_status,
                                                    user_id=user_id, page=page, limit=limit)
    return success_response(_page(orders, total, page, limit))


@orders_admin_router.put("/orders/{order_id}")
async def admin_update_order(order_id: str, payload: AdminUpdateOrderIn,
                             admin: Principal = Depends(require_admin),
                             service: OrderService = Depends(get_order_service)):

    order = await service.admin_update_order(order_id, admin, status=payload.status,
                                             tracking_number=payload.tracking_number,
                                             admin_notes=payload.notes)
    return success_response({"order": serialize_order(order)})
