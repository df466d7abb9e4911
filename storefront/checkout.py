"""
Checkout orchestration: from cart contents and a shipping form to a
confirmed order, paid online through the gateway or cash on delivery.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

from storefront.auth_state import AuthState
from storefront.backend_api import GATEWAY_ORDER_INVALID_MESSAGE, OrdersAPI, PaymentsAPI
from storefront.cart_state import CartManager
from storefront.exceptions import (
    ApiError,
    CheckoutInProgressError,
    StorefrontError,
    is_auth_failure,
)
from storefront.models import (
    CheckoutResult,
    CheckoutStatus,
    GuestUser,
    OrderLine,
    OrderReceipt,
    OrderRequest,
    PaymentMethod,
    PaymentStatus,
    ShippingForm,
)
from storefront.payment_gateway import PaymentWidget, build_widget_options

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Please fill all the required fields"
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."
SCRIPT_FAILED_MESSAGE = "Razorpay SDK failed to load. Please check your internet connection."
VERIFICATION_FAILED_MESSAGE = "Payment verification failed. Please contact support."
VERIFICATION_ERROR_MESSAGE = "Payment processing failed. Please contact support."
PAYMENT_CANCELLED_MESSAGE = "Payment cancelled. You can try again."
ORDER_FAILED_MESSAGE = "Failed to create order. Please try again."


class CheckoutOrchestrator:
    """
    Drives one session's checkout attempts.

    Only one attempt may run at a time: the in-flight latch is taken before
    the first await and released when the attempt ends, whatever the outcome.
    """

    def __init__(
        self,
        auth: AuthState,
        cart: CartManager,
        orders: OrdersAPI,
        payments: PaymentsAPI,
        widget: PaymentWidget,
    ):
        self.auth = auth
        self.cart = cart
        self.orders = orders
        self.payments = payments
        self.widget = widget
        self.state = CheckoutResult(status=CheckoutStatus.IDLE)
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _finish(self, result: CheckoutResult) -> CheckoutResult:
        self.state = result
        logger.info(
            f"Checkout finished: {result.status.value}",
            extra={"status": result.status.value, "order_id": result.order_id},
        )
        return result

    def _acquire(self) -> None:
        if self._in_flight:
            raise CheckoutInProgressError()
        self._in_flight = True
        self.state = CheckoutResult(status=CheckoutStatus.PROCESSING)

    def _release(self) -> None:
        self._in_flight = False
        if self.state.status == CheckoutStatus.PROCESSING:
            self.state = CheckoutResult(status=CheckoutStatus.IDLE)

    def _validate(self, form: ShippingForm) -> Optional[CheckoutResult]:
        """Checks that need no network call; returns the rejection, if any"""
        if not self.cart.cart.items:
            return CheckoutResult(status=CheckoutStatus.EMPTY_CART, redirect_url="/cart")
        missing = form.missing_fields()
        if missing:
            return CheckoutResult(
                status=CheckoutStatus.INVALID,
                message=MISSING_FIELDS_MESSAGE,
                missing_fields=missing,
            )
        if self.auth.user is not None and not self.auth.token:
            return CheckoutResult(status=CheckoutStatus.AUTH_REQUIRED, message=SESSION_EXPIRED_MESSAGE)
        return None

    def _order_failure(self, error: StorefrontError) -> CheckoutResult:
        if is_auth_failure(error):
            return CheckoutResult(status=CheckoutStatus.AUTH_REQUIRED, message=SESSION_EXPIRED_MESSAGE)
        return CheckoutResult(status=CheckoutStatus.FAILED, message=str(error) or ORDER_FAILED_MESSAGE)

    def _build_order(self, form: ShippingForm, method: PaymentMethod, guest: bool) -> OrderRequest:
        return OrderRequest(
            products=[
                OrderLine(product=item.product.id, quantity=item.quantity)
                for item in self.cart.cart.items
            ],
            shipping_address=form.to_shipping_address(),
            payment_method=method,
            guest_user=GuestUser(name=form.full_name, email=form.email, phone=form.phone) if guest else None,
        )

    async def _create_order(self, form: ShippingForm, method: PaymentMethod) -> OrderReceipt:
        if self.auth.user is not None and self.auth.token:
            order = self._build_order(form, method, guest=False)
            return await self.orders.create_for_user(order, self.auth.token)
        order = self._build_order(form, method, guest=True)
        return await self.orders.create_for_guest(order)

    def _success_redirect(self, order_id: str) -> str:
        if self.auth.user is not None and self.auth.token:
            return "/profile?" + urlencode({"orderSuccess": "true", "orderId": order_id})
        return "/order-success?" + urlencode({"orderId": order_id})

    async def _complete(self, receipt: OrderReceipt) -> CheckoutResult:
        try:
            await self.cart.clear_cart()
        except StorefrontError:
            # The order is placed; a stale cart must not turn that into a failure
            logger.exception("Could not clear cart after order", extra={"order_id": receipt.order_id})
        return CheckoutResult(
            status=CheckoutStatus.SUCCEEDED,
            order_id=receipt.order_id,
            redirect_url=self._success_redirect(receipt.order_id),
        )

    async def _report_payment_failure(self, gateway_order_id: str, order_id: str) -> None:
        try:
            await self.payments.mark_failed(gateway_order_id)
        except ApiError as e:
            logger.warning(f"Could not mark payment as failed: {e}", extra={"order_id": order_id})

    async def pay_online(self, form: ShippingForm) -> CheckoutResult:
        """Order, gateway order, widget, verification; each step gates the next"""
        self._acquire()
        try:
            return self._finish(await self._pay_online(form))
        finally:
            self._release()

    async def _pay_online(self, form: ShippingForm) -> CheckoutResult:
        rejection = self._validate(form)
        if rejection is not None:
            return rejection

        if not await self.widget.load():
            return CheckoutResult(status=CheckoutStatus.FAILED, message=SCRIPT_FAILED_MESSAGE)

        try:
            receipt = await self._create_order(form, PaymentMethod.RAZORPAY)
            logger.info("Backend order created", extra={"order_id": receipt.order_id})
            gateway_order = await self.payments.create_gateway_order(receipt.order_id)
        except StorefrontError as e:
            logger.warning(f"Order creation failed: {e}")
            return self._order_failure(e)

        if not gateway_order.is_complete():
            logger.error("Malformed gateway order", extra={"order_id": receipt.order_id})
            return CheckoutResult(
                status=CheckoutStatus.FAILED,
                message=GATEWAY_ORDER_INVALID_MESSAGE,
                order_id=receipt.order_id,
            )

        outcome = await self.widget.collect(build_widget_options(gateway_order, receipt, form))

        if outcome.status == PaymentStatus.CANCELLED:
            return CheckoutResult(
                status=CheckoutStatus.CANCELLED,
                message=PAYMENT_CANCELLED_MESSAGE,
                order_id=receipt.order_id,
            )
        if outcome.status == PaymentStatus.FAILED:
            await self._report_payment_failure(gateway_order.id, receipt.order_id)
            return CheckoutResult(
                status=CheckoutStatus.FAILED,
                message=f"Payment failed: {outcome.reason}",
                order_id=receipt.order_id,
            )

        try:
            verification = await self.payments.verify(outcome.proof)
        except ApiError as e:
            logger.error(f"Payment verification request failed: {e}", extra={"order_id": receipt.order_id})
            return CheckoutResult(
                status=CheckoutStatus.VERIFICATION_FAILED,
                message=VERIFICATION_ERROR_MESSAGE,
                order_id=receipt.order_id,
            )
        if not verification.success:
            return CheckoutResult(
                status=CheckoutStatus.VERIFICATION_FAILED,
                message=VERIFICATION_FAILED_MESSAGE,
                order_id=receipt.order_id,
            )
        return await self._complete(receipt)

    async def pay_cash_on_delivery(self, form: ShippingForm) -> CheckoutResult:
        self._acquire()
        try:
            return self._finish(await self._pay_cash_on_delivery(form))
        finally:
            self._release()

    async def _pay_cash_on_delivery(self, form: ShippingForm) -> CheckoutResult:
        rejection = self._validate(form)
        if rejection is not None:
            return rejection
        try:
            receipt = await self._create_order(form, PaymentMethod.COD)
        except StorefrontError as e:
            logger.warning(f"Cash on delivery order failed: {e}")
            return self._order_failure(e)
        return await self._complete(receipt)
