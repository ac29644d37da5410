from fastapi import APIRouter, Depends
from storefront.auth.dependencies import get_principal, require_admin
from storefront.auth.models import Principal
from storefront.common.utils import success_response
from storefront.orders.dependencies import get_order_service
from storefront.orders.models import AdminVerifyIn, InitializePaymentIn, VerifyPaymentIn
from storefront.orders.services import OrderService
from storefront.orders.utils import serialize_order

payments_router = APIRouter()
payments_admin_router = APIRouter()


@payments_router.post("/initialize")
async def initialize_payment(payload: InitializePaymentIn,
                             principal: Principal = Depends(get_principal),
                             service: OrderService = Depends(get_order_service)):

    init = await service.initialize_payment(payload.order_id, principal.user_id, str(payload.email),
                                            callback_url=payload.callback_url)
    data = {
        "authorization_url": init.authorization_url,
        "access_code": init.access_code,
        "reference": init.reference,
    }
    return success_response(data)


@payments_router.post("/verify")
async def verify_payment(payload: VerifyPaymentIn,
                         principal: Principal = Depends(get_principal),
                         service: OrderService = Depends(get_order_service)):

    order = await service.verify_payment(payload.reference, source="user", requester=principal)
    return success_response({"order": serialize_order(order)})


# manual reconciliation when the gateway cannot be reached
@payments_admin_router.post("/verify")
async def admin_verify_payment(payload: AdminVerifyIn,
                               admin: Principal = Depends(require_admin),
                               service: OrderService = Depends(get_order_service)):

    order = await service.admin_manual_verify(payload.order_id, admin)
    return success_response({"order": serialize_order(order)})
