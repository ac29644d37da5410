import asyncio
from datetime import timedelta
from decimal import Decimal
import pytest
from storefront.common.custom_exceptions import (AlreadyInitialized, AmountMismatch, EmptyCart, Forbidden,
                                                 GatewayUnavailable, InvalidState, InvalidStateForDeletion,
                                                 NotFound, PaymentFailed, PaymentPending, ValidationFailed)
from storefront.common.utils import as_utc
from storefront.orders.services import OrderService
from helpers import ADMIN, OTHER_USER, USER, make_address, make_cart


async def new_order(service, *prices, user=USER, **kwargs):
    return await service.create_order(user.user_id, make_cart(*(prices or (5000, 3000))),
                                      make_address(), **kwargs)


async def test_end_to_end_create_initialize_verify(service, gateway):
    order = await new_order(service, 5000, 3000)

    assert order.subtotal == Decimal("8000")
    assert order.shipping_cost == Decimal("500")
    assert order.tax == Decimal("0")
    assert order.total == Decimal("8500")
    assert order.status == "pending"
    assert order.billing_address == order.shipping_address

    init = await service.initialize_payment(str(order.public_id), USER.user_id, "ada@example.com")
    assert init.authorization_url.endswith(order.order_number)
    assert gateway.init_calls[0]["amount_minor_units"] == 850000
    assert gateway.init_calls[0]["reference"] == order.order_number
    assert gateway.init_calls[0]["metadata"]["order_number"] == order.order_number

    gateway.amount_minor_units = 850000
    confirmed = await service.verify_payment(order.order_number, source="user")

    assert confirmed.status == "confirmed"
    assert confirmed.payment_status == "completed"
    assert confirmed.gateway_transaction_id == "4099260516"
    delta = as_utc(confirmed.estimated_delivery) - as_utc(confirmed.created_at)
    assert abs(delta - timedelta(days=7)) < timedelta(minutes=1)


async def test_verification_is_idempotent(service, gateway, store):
    order = await new_order(service)
    await service.initialize_payment(str(order.public_id), USER.user_id, "ada@example.com")
    gateway.amount_minor_units = 850000

    first = await service.verify_payment(order.order_number, source="user")
    second = await service.verify_payment(order.order_number, source="webhook")

    assert first.status == second.status == "confirmed"
    assert first.payment_status == second.payment_status == "completed"
    assert as_utc(second.updated_at) == as_utc(first.updated_at)
    assert as_utc((await store.find_by_pk(order.id)).updated_at) == as_utc(first.updated_at)
    # the second call short-circuits before asking the gateway
    assert len(gateway.verify_calls) == 1


async def test_concurrent_verifications_confirm_once(service, gateway, store):
    order = await new_order(service)
    await service.initialize_payment(str(order.public_id), USER.user_id, "ada@example.com")
    gateway.amount_minor_units = 850000
    gateway.delay = 0.05

    applied = []
    original = store.update_payment_and_status

    async def recording_update(*args, **kwargs):
        result = await original(*args, **kwargs)
        applied.append(result)
        return result

    store.update_payment_and_status = recording_update

    webhook_result, user_result = await asyncio.gather(
        service.verify_payment(order.order_number, source="webhook"),
        service.verify_payment(order.order_number, source="user"),
    )

    assert webhook_result.status == "confirmed"
    assert user_result.status == "confirmed"
    assert applied.count(True) == 1
    current = await store.find_by_pk(order.id)
    assert current.payment_status == "completed"


async def test_amount_mismatch_cancels_order(service, gateway, store):
    order = await new_order(service)
    await service.initialize_payment(str(order.public_id), USER.user_id, "ada@example.com")
    gateway.amount_minor_units = 765000   # 10% short

    with pytest.raises(AmountMismatch) as exc:
        await service.verify_payment(order.order_number, source="user")
    assert exc.value.message == "Payment was not successful"

    current = await store.find_by_pk(order.id)
    assert current.status == "cancelled"
    assert current.payment_status == "failed"


async def test_amount_within_tolerance_confirms(service, gateway):
    order = await new_order(service)
    gateway.amount_minor_units = 850001
    confirmed = await service.verify_payment(order.order_number, source="webhook")
    assert confirmed.status == "confirmed"


async def test_gateway_failure_cancels_order(service, gateway, store):
    order = await new_order(service)
    gateway.status = "failed"
    gateway.amount_minor_units = 850000

    with pytest.raises(PaymentFailed):
        await service.verify_payment(order.order_number, source="user")
    current = await store.find_by_pk(order.id)
    assert (current.status, current.payment_status) == ("cancelled", "failed")

    # a cancelled order stays cancelled
    with pytest.raises(InvalidState):
        await service.verify_payment(order.order_number, source="user")


async def test_reference_mismatch_changes_nothing(service, gateway, store):
    order = await new_order(service)
    gateway.amount_minor_units = 850000
    gateway.reference_override = "SOMETHING-ELSE"

    with pytest.raises(PaymentFailed) as exc:
        await service.verify_payment(order.order_number, source="user")
    assert exc.value.reason == "reference_mismatch"
    current = await store.find_by_pk(order.id)
    assert (current.status, current.payment_status) == ("pending", "pending")


async def test_gateway_unavailable_during_verify_leaves_order_pending(service, gateway, store):
    order = await new_order(service)
    gateway.verify_error = GatewayUnavailable("ConnectTimeout")

    with pytest.raises(GatewayUnavailable):
        await service.verify_payment(order.order_number, source="user")
    current = await store.find_by_pk(order.id)
    assert (current.status, current.payment_status) == ("pending", "pending")


async def test_charge_still_in_flight_settles_nothing(service, gateway, store):
    order = await new_order(service)
    await service.initialize_payment(str(order.public_id), USER.user_id, "ada@example.com")
    gateway.amount_minor_units = 850000
    gateway.status = "ongoing"

    with pytest.raises(PaymentPending):
        await service.verify_payment(order.order_number, source="user")
    current = await store.find_by_pk(order.id)
    assert (current.status, current.payment_status) == ("pending", "pending")

    # the customer finishes paying, the retry confirms
    gateway.status = "success"
    confirmed = await service.verify_payment(order.order_number, source="webhook")
    assert (confirmed.status, confirmed.payment_status) == ("confirmed", "completed")


async def test_admin_cancel_during_gateway_call_stays_cancelled(service, gateway, store):
    order = await new_order(service)
    gateway.amount_minor_units = 850000

    async def cancel_meanwhile():
        await service.admin_update_order(str(order.public_id), ADMIN, status="cancelled")

    gateway.during_verify = cancel_meanwhile

    with pytest.raises(PaymentFailed):
        await service.verify_payment(order.order_number, source="user")
    current = await store.find_by_pk(order.id)
    assert current.status == "cancelled"
    assert current.payment_status == "pending"
    assert current.gateway_transaction_id is None

    gateway.during_verify = None
    with pytest.raises(InvalidState):
        await service.admin_manual_verify(str(order.public_id), ADMIN)


async def test_failed_answer_after_concurrent_confirmation_returns_confirmed_order(service, gateway, store):
    order = await new_order(service)
    gateway.status = "failed"

    async def confirm_meanwhile():
        await store.update_payment_and_status(order.id, "completed", "confirmed", gateway_transaction_id="t-win")

    gateway.during_verify = confirm_meanwhile

    result = await service.verify_payment(order.order_number, source="webhook")

    assert (result.status, result.payment_status) == ("confirmed", "completed")
    assert result.gateway_transaction_id == "t-win"


async def test_verify_unknown_reference(service):
    with pytest.raises(NotFound):
        await service.verify_payment("TF-DOES-NOT-EXIST", source="webhook")


async def test_verify_hides_other_users_orders(service, gateway):
    order = await new_order(service)
    gateway.amount_minor_units = 850000
    with pytest.raises(NotFound):
        await service.verify_payment(order.order_number, source="user", requester=OTHER_USER)
    assert gateway.verify_calls == []


async def test_initialize_payment_guards(service, gateway, store):
    order = await new_order(service)

    with pytest.raises(NotFound):
        await service.initialize_payment("0190d0a4-8a5e-7000-8000-000000000000", USER.user_id, "a@b.co")
    with pytest.raises(Forbidden):
        await service.initialize_payment(str(order.public_id), OTHER_USER.user_id, "a@b.co")

    await service.initialize_payment(str(order.public_id), USER.user_id, "a@b.co")
    with pytest.raises(AlreadyInitialized):
        await service.initialize_payment(str(order.public_id), USER.user_id, "a@b.co")
    assert len(gateway.init_calls) == 1


async def test_initialize_gateway_down_is_retryable(service, gateway, store):
    order = await new_order(service)
    gateway.init_error = GatewayUnavailable("http_503")

    with pytest.raises(GatewayUnavailable):
        await service.initialize_payment(str(order.public_id), USER.user_id, "a@b.co")
    assert (await store.find_by_pk(order.id)).gateway_reference is None

    gateway.init_error = None
    await service.initialize_payment(str(order.public_id), USER.user_id, "a@b.co")
    assert (await store.find_by_pk(order.id)).gateway_reference == order.order_number


async def test_initialize_rejects_non_pending_and_cash_on_delivery(service):
    cod = await new_order(service, 1000, payment_method="cash_on_delivery")
    with pytest.raises(InvalidState):
        await service.initialize_payment(str(cod.public_id), USER.user_id, "a@b.co")

    order = await new_order(service, 2000)
    await service.admin_manual_verify(str(order.public_id), ADMIN)
    with pytest.raises(InvalidState):
        await service.initialize_payment(str(order.public_id), USER.user_id, "a@b.co")


async def test_admin_manual_verify(service, gateway):
    order = await new_order(service)
    confirmed = await service.admin_manual_verify(str(order.public_id), ADMIN)

    assert confirmed.status == "confirmed"
    assert confirmed.payment_status == "completed"
    assert confirmed.estimated_delivery is not None
    assert gateway.verify_calls == []

    with pytest.raises(InvalidState):
        await service.admin_manual_verify(str(order.public_id), ADMIN)


async def test_create_order_validation(service):
    with pytest.raises(EmptyCart):
        await service.create_order(USER.user_id, [], make_address())
    with pytest.raises(ValidationFailed):
        await service.create_order(USER.user_id, make_cart(100), make_address(email=""))
    with pytest.raises(ValidationFailed):
        await service.create_order(USER.user_id, make_cart(100), make_address(), payment_method="crypto")


async def test_duplicate_submission_returns_existing_order(store, gateway, settings):
    service = OrderService(store, gateway, settings=settings.model_copy(update={"DUPLICATE_ORDER_WINDOW_SECONDS": 300}))

    first = await new_order(service, 4000)
    again = await new_order(service, 4000)
    different = await new_order(service, 4100)

    assert again.id == first.id
    assert different.id != first.id


async def test_delete_order_rules(service):
    pending = await new_order(service, 100)
    await service.delete_order(str(pending.public_id), USER.user_id)
    with pytest.raises(NotFound):
        await service.get_order(str(pending.public_id), USER)

    confirmed = await new_order(service, 200)
    await service.admin_manual_verify(str(confirmed.public_id), ADMIN)
    with pytest.raises(InvalidStateForDeletion) as exc:
        await service.delete_order(str(confirmed.public_id), USER.user_id)
    assert "confirmed" in exc.value.message

    other = await new_order(service, 300)
    with pytest.raises(NotFound):
        await service.delete_order(str(other.public_id), OTHER_USER.user_id)


async def test_cancelled_order_can_be_deleted(service, gateway):
    order = await new_order(service, 100)
    gateway.status = "abandoned"
    with pytest.raises(PaymentFailed):
        await service.verify_payment(order.order_number)
    await service.delete_order(str(order.public_id), USER.user_id)


async def test_admin_fulfilment_flow(service):
    order = await new_order(service)
    await service.admin_manual_verify(str(order.public_id), ADMIN)
    oid = str(order.public_id)

    processing = await service.admin_update_order(oid, ADMIN, status="processing", admin_notes="packed")
    assert processing.status == "processing"
    assert processing.admin_notes == "packed"

    shipped = await service.admin_update_order(oid, ADMIN, status="shipped", tracking_number="GIG-123")
    assert shipped.tracking_number == "GIG-123"
    assert as_utc(shipped.estimated_delivery) - as_utc(shipped.updated_at) > timedelta(days=2)

    delivered = await service.admin_update_order(oid, ADMIN, status="delivered")
    assert delivered.delivered_at is not None

    with pytest.raises(InvalidState):
        await service.admin_update_order(oid, ADMIN, status="cancelled")


async def test_admin_cannot_skip_states_or_confirm_unpaid(service):
    order = await new_order(service)
    with pytest.raises(InvalidState):
        await service.admin_update_order(str(order.public_id), ADMIN, status="shipped")
    with pytest.raises(InvalidState):
        await service.admin_update_order(str(order.public_id), ADMIN, status="confirmed")
    with pytest.raises(ValidationFailed):
        await service.admin_update_order(str(order.public_id), ADMIN, status="teleported")


async def test_owner_and_admin_reads(service):
    order = await new_order(service)
    assert (await service.get_order(str(order.public_id), USER)).id == order.id
    assert (await service.get_order(str(order.public_id), ADMIN)).id == order.id
    with pytest.raises(NotFound):
        await service.get_order(str(order.public_id), OTHER_USER)

    mine, total = await service.list_orders(USER.user_id)
    assert total == 1 and mine[0].id == order.id
    _, all_total = await service.admin_list_orders(status="pending")
    assert all_total == 1
