import asyncio

import pytest

from storefront.checkout import (
    GATEWAY_ORDER_INVALID_MESSAGE,
    MISSING_FIELDS_MESSAGE,
    PAYMENT_CANCELLED_MESSAGE,
    SCRIPT_FAILED_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
    VERIFICATION_ERROR_MESSAGE,
    VERIFICATION_FAILED_MESSAGE,
)
from storefront.exceptions import ApiError, CheckoutInProgressError
from storefront.models import CheckoutStatus, PaymentOutcome

from conftest import paid, seed_login, server_cart, server_item, shipping_form

GUEST_ORDER = {"success": True, "order": {"orderId": "ORD-1", "finalAmount": 649}}
GATEWAY_ORDER = {"success": True, "order": {"id": "order_rzp_1", "amount": 64900, "currency": "INR"}}


@pytest.fixture()
async def guest_session(make_session, make_product):
    session = await make_session()
    await session.cart.add_to_cart(make_product("p1", 200), 2)
    await session.cart.add_to_cart(make_product("p2", 150), 1)
    return session


@pytest.fixture()
async def user_session(make_session, transport, storage):
    seed_login(storage, token="tok-1")
    transport.route("GET", "/cart", {"success": True, "data": server_cart([server_item("i-1", "p1", 250, 2)])})
    transport.route("DELETE", "/cart", {"success": True})
    return await make_session()


# Cash on delivery

async def test_guest_cod_places_one_order_and_empties_cart(guest_session, transport, storage):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)

    result = await guest_session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.SUCCEEDED
    assert result.order_id == "ORD-1"
    assert result.redirect_url == "/order-success?orderId=ORD-1"
    assert guest_session.cart.cart.items == []
    orders = transport.calls_to("POST", "/payments/guest-order")
    assert len(orders) == 1
    body = orders[0]["json"]
    assert body["paymentMethod"] == "cod"
    assert body["products"] == [{"product": "p1", "quantity": 2}, {"product": "p2", "quantity": 1}]
    assert body["guestUser"] == {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"}


async def test_user_cod_uses_token_and_profile_redirect(user_session, transport):
    transport.route("POST", "/orders", {"success": True, "order": {"orderId": "ORD-2", "finalAmount": 500}})

    result = await user_session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.SUCCEEDED
    assert result.redirect_url == "/profile?orderSuccess=true&orderId=ORD-2"
    order_call = transport.calls_to("POST", "/orders")[0]
    assert order_call["token"] == "tok-1"
    assert "guestUser" not in order_call["json"]
    assert len(transport.calls_to("DELETE", "/cart")) == 1
    assert user_session.cart.cart.items == []


async def test_cart_clear_failure_does_not_fail_placed_order(user_session, transport):
    transport.route("POST", "/orders", {"success": True, "order": {"orderId": "ORD-3", "finalAmount": 500}})
    transport.route("DELETE", "/cart", ApiError(500, "Cart service down"))

    result = await user_session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.SUCCEEDED
    assert result.order_id == "ORD-3"


async def test_empty_cart_is_sent_back_to_cart_page(make_session, transport):
    session = await make_session()

    result = await session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.EMPTY_CART
    assert result.redirect_url == "/cart"
    assert transport.calls == []


async def test_missing_fields_are_reported(guest_session, transport):
    result = await guest_session.checkout.pay_cash_on_delivery(shipping_form(phone="", state=""))

    assert result.status == CheckoutStatus.INVALID
    assert result.message == MISSING_FIELDS_MESSAGE
    assert result.missing_fields == ["phone", "state"]
    assert transport.calls == []


async def test_signed_in_user_without_token_must_log_in(make_session, transport, storage):
    seed_login(storage, token=None)
    transport.route("GET", "/cart", {"success": True, "data": server_cart([server_item("i-1", "p1", 250, 1)])})
    session = await make_session()

    result = await session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.AUTH_REQUIRED
    assert result.message == SESSION_EXPIRED_MESSAGE
    assert transport.calls_to("POST", "/orders") == []


@pytest.mark.parametrize("error", [
    ApiError(401, "Not authorized"),
    ApiError(500, "Unauthorized: token expired"),
])
async def test_auth_failure_on_order_creation_cod(user_session, transport, error):
    transport.route("POST", "/orders", error)

    result = await user_session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.AUTH_REQUIRED
    assert result.message == SESSION_EXPIRED_MESSAGE
    assert len(user_session.cart.cart.items) == 1


async def test_other_order_failure_keeps_backend_message(guest_session, transport):
    transport.route("POST", "/payments/guest-order", ApiError(400, "Insufficient stock for Book p1"))

    result = await guest_session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.FAILED
    assert result.message == "Insufficient stock for Book p1"
    assert len(guest_session.cart.cart.items) == 2


@pytest.mark.parametrize("body", [
    {"success": True, "order": {"orderId": "ORD-1", "finalAmount": "six hundred"}},
    {"order": {"orderId": "ORD-1", "finalAmount": 649}},
])
async def test_unusable_order_response_fails_cleanly(guest_session, transport, body):
    transport.route("POST", "/payments/guest-order", body)

    result = await guest_session.checkout.pay_cash_on_delivery(shipping_form())

    assert result.status == CheckoutStatus.FAILED
    assert not guest_session.checkout.in_flight
    assert len(guest_session.cart.cart.items) == 2


# Online payment

async def test_guest_online_payment_succeeds(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    transport.route("POST", "/payments/verify", {"success": True, "message": "Payment verified successfully"})
    widget.outcome = paid()

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.SUCCEEDED
    assert result.redirect_url == "/order-success?orderId=ORD-1"
    assert guest_session.cart.cart.items == []
    options = widget.opened[0]
    assert options.order_id == "order_rzp_1"
    assert options.amount == 64900
    assert options.notes == {"orderId": "ORD-1", "address": "12 MG Road"}
    assert transport.calls_to("POST", "/payments/create-order")[0]["json"] == {"orderId": "ORD-1"}
    assert transport.calls_to("POST", "/payments/verify")[0]["json"]["razorpay_payment_id"] == "pay_1"


async def test_script_failure_stops_before_any_order(guest_session, transport, widget):
    widget.loads = False

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.FAILED
    assert result.message == SCRIPT_FAILED_MESSAGE
    assert transport.calls == []


@pytest.mark.parametrize("gateway_order", [
    {"success": True, "order": {"amount": 64900}},
    {"success": True, "order": {"id": "order_rzp_1"}},
    {"success": True, "order": {"id": "order_rzp_1", "amount": "n/a"}},
])
async def test_incomplete_gateway_order_never_opens_widget(guest_session, transport, widget, gateway_order):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", gateway_order)

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.FAILED
    assert result.message == GATEWAY_ORDER_INVALID_MESSAGE
    assert widget.opened == []
    assert transport.calls_to("POST", "/payments/verify") == []
    assert len(guest_session.cart.cart.items) == 2


async def test_auth_failure_on_order_creation_online(user_session, transport, widget):
    transport.route("POST", "/orders", ApiError(403, "Forbidden"))

    result = await user_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.AUTH_REQUIRED
    assert widget.opened == []


async def test_rejected_verification_keeps_cart(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    transport.route("POST", "/payments/verify", {"success": False, "message": "Invalid signature"})
    widget.outcome = paid()

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.VERIFICATION_FAILED
    assert result.message == VERIFICATION_FAILED_MESSAGE
    assert result.order_id == "ORD-1"
    assert len(guest_session.cart.cart.items) == 2


async def test_verification_request_error(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    transport.route("POST", "/payments/verify", ApiError(0, "Network error: timeout"))
    widget.outcome = paid()

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.VERIFICATION_FAILED
    assert result.message == VERIFICATION_ERROR_MESSAGE
    assert len(guest_session.cart.cart.items) == 2


async def test_dismissed_widget_is_a_cancellation(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    widget.outcome = PaymentOutcome.cancelled()

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.CANCELLED
    assert result.message == PAYMENT_CANCELLED_MESSAGE
    assert transport.calls_to("POST", "/payments/verify") == []
    assert len(guest_session.cart.cart.items) == 2


async def test_gateway_failure_reports_reason(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    transport.route("POST", "/payments/failed", {"success": True})
    widget.outcome = PaymentOutcome.failed("Card declined by issuer")

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.FAILED
    assert result.message == "Payment failed: Card declined by issuer"
    assert transport.calls_to("POST", "/payments/verify") == []
    assert transport.calls_to("POST", "/payments/failed")[0]["json"] == {"razorpay_order_id": "order_rzp_1"}


async def test_unrecorded_gateway_failure_still_reports_failure(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    transport.route("POST", "/payments/failed", ApiError(500, "Payment record not found"))
    widget.outcome = PaymentOutcome.failed("Card declined by issuer")

    result = await guest_session.checkout.pay_online(shipping_form())

    assert result.status == CheckoutStatus.FAILED
    assert len(guest_session.cart.cart.items) == 2


# In-flight latch

async def test_second_attempt_while_in_flight_is_refused(guest_session, transport, widget):
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    transport.route("POST", "/payments/create-order", GATEWAY_ORDER)
    widget.release = asyncio.Event()
    checkout = guest_session.checkout

    first = asyncio.ensure_future(checkout.pay_online(shipping_form()))
    while not widget.opened:
        await asyncio.sleep(0)

    assert checkout.in_flight
    assert checkout.state.status == CheckoutStatus.PROCESSING
    with pytest.raises(CheckoutInProgressError):
        await checkout.pay_cash_on_delivery(shipping_form())
    with pytest.raises(CheckoutInProgressError):
        await checkout.pay_online(shipping_form())

    widget.release.set()
    result = await first

    assert result.status == CheckoutStatus.CANCELLED
    assert not checkout.in_flight
    assert checkout.state.status == CheckoutStatus.CANCELLED
    assert len(transport.calls_to("POST", "/payments/guest-order")) == 1


async def test_latch_is_released_after_failure(guest_session, transport):
    transport.route("POST", "/payments/guest-order", ApiError(500, "boom"))

    first = await guest_session.checkout.pay_cash_on_delivery(shipping_form())
    transport.route("POST", "/payments/guest-order", GUEST_ORDER)
    second = await guest_session.checkout.pay_cash_on_delivery(shipping_form())

    assert first.status == CheckoutStatus.FAILED
    assert second.status == CheckoutStatus.SUCCEEDED
    assert not guest_session.checkout.in_flight
