import json
from typing import Optional
from fastapi import Depends, Request
from storefront.common.custom_exceptions import InvalidSignature, StoreFrontError, ValidationFailed
from storefront.common.utils import success_response
from storefront.orders.dependencies import get_order_service, get_webhook_events
from storefront.orders.services import OrderService
from storefront.payments.constants import CHARGE_SUCCESS_EVENT, logger
from storefront.payments.repository import WebhookEventStore
from storefront.payments.utils import compute_webhook_signature, secure_compare
from storefront.schema.full_schema import WebhookOutcome


def verify_paystack_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """Raise InvalidSignature unless `signature` is the HMAC of exactly these bytes."""
    if not secret:
        # nothing can be authenticated without a secret, refuse rather than trust
        logger.error("webhook.secret_missing")
        raise InvalidSignature()
    if not signature:
        logger.warning("webhook.signature_missing")
        raise InvalidSignature("Missing signature")

    expected = compute_webhook_signature(raw_body, secret)
    if not secure_compare(expected, signature.strip().lower()):
        logger.warning("webhook.invalid_signature", extra={"body_bytes": len(raw_body)})
        raise InvalidSignature()


async def paystack_webhook(request: Request,
                           service: OrderService = Depends(get_order_service),
                           events: WebhookEventStore = Depends(get_webhook_events)):
    # raw bytes, the signature is over the exact payload paystack sent
    body = await request.body()
    settings = request.app.state.settings

    verify_paystack_signature(body, request.headers.get(settings.PAYSTACK_SIGNATURE_HEADER), settings.webhook_secret)

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationFailed("Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid webhook payload")

    event = payload.get("event")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    reference = data.get("reference")

    if event != CHARGE_SUCCESS_EVENT or not reference:
        await events.record(event, reference, payload, outcome=WebhookOutcome.IGNORED.value,
                            last_error=None if event != CHARGE_SUCCESS_EVENT else "missing reference")
        logger.info("webhook.ignored", extra={"event": event, "reference": reference})
        return success_response({"received": True, "note": "ignored"})

    # from here on paystack gets a 200 whatever the business outcome, failures are reconciled from the log
    try:
        order = await service.verify_payment(str(reference), source="webhook")
    except StoreFrontError as exc:
        reason = getattr(exc, "reason", None) or exc.message
        logger.warning("webhook.processing_failed",
                       extra={"event": event, "reference": reference, "error_code": exc.code, "reason": reason})
        await events.record(event, reference, payload, outcome=WebhookOutcome.FAILED.value,
                            last_error=f"{exc.code}: {reason}")
        return success_response({"received": True, "note": "recorded"})

    await events.record(event, reference, payload, outcome=WebhookOutcome.PROCESSED.value)
    logger.info("webhook.processed", extra={"event": event, "reference": reference, "order_status": order.status})
    return success_response({"received": True, "note": "processed"})
