from fastapi import Request
from storefront.orders.services import OrderService
from storefront.payments.repository import WebhookEventStore


# services are built once in the app lifespan and live on app.state
def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


def get_webhook_events(request: Request) -> WebhookEventStore:
    return request.app.state.webhook_events
